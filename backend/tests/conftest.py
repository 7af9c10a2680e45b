"""Shared fixtures: sample store data and a stand-in Copilot client."""

import os
from types import SimpleNamespace

import pytest


SAMPLE_TREES_PATH = os.path.join(
    os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))),
    "sample-trees.json",
)


class FakeEvent:
    def __init__(self, event_type: str, data=None):
        self.type = event_type
        self.data = data


class FakeSession:
    """Replays a canned assistant reply, then goes idle unless told to hang."""

    def __init__(self, reply: str, goes_idle: bool = True):
        self.reply = reply
        self.goes_idle = goes_idle
        self.handler = None
        self.sent = []
        self.destroyed = False

    def on(self, handler):
        self.handler = handler

    async def send(self, message):
        self.sent.append(message)
        self.handler(FakeEvent("assistant.message", SimpleNamespace(content=self.reply)))
        if self.goes_idle:
            self.handler(FakeEvent("session.idle"))

    async def destroy(self):
        self.destroyed = True


class FakeCopilotClient:
    def __init__(self, reply: str, goes_idle: bool = True):
        self.reply = reply
        self.goes_idle = goes_idle
        self.session_configs = []
        self.sessions = []

    async def create_session(self, config):
        self.session_configs.append(config)
        session = FakeSession(self.reply, self.goes_idle)
        self.sessions.append(session)
        return session


@pytest.fixture
def sample_trees_path():
    """Path to the sample family store JSON."""
    return SAMPLE_TREES_PATH


@pytest.fixture
def fake_copilot_client():
    """Factory for a fake client that always answers with the given reply."""
    return FakeCopilotClient
