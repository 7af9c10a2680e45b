"""Tests for naming relationship paths through the Copilot client."""

import asyncio
import os
import sys

import pytest

# Add backend to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from relationship_describer import (
    SYSTEM_PROMPT,
    RelationshipDescriber,
    build_prompt,
    parse_description,
)
from relationship_path import PathStep


UNCLE_PATH = [
    PathStep(person_id="u1", person_name="Priya", connection_to_previous="Self"),
    PathStep(person_id="m1", person_name="Raman", connection_to_previous="Father of Priya"),
    PathStep(person_id="m3", person_name="Subramanian", connection_to_previous="Father of Raman"),
    PathStep(person_id="m5", person_name="Venkat", connection_to_previous="Son of Subramanian"),
]


class TestParseDescription:
    """Tests for reading the model's reply."""

    def test_json_reply(self):
        description = parse_description('{"relationship_name": "Paternal Uncle", "explanation": "Father\'s brother"}')
        assert description.relationship_name == "Paternal Uncle"
        assert description.explanation == "Father's brother"

    def test_json_wrapped_in_prose(self):
        reply = 'Here you go:\n```json\n{"relationship_name": "Grandfather"}\n```'
        description = parse_description(reply)
        assert description.relationship_name == "Grandfather"
        assert description.explanation is None

    def test_plain_text_reply(self):
        description = parse_description("  Paternal Uncle \n")
        assert description.relationship_name == "Paternal Uncle"
        assert description.explanation is None

    def test_json_missing_name_falls_back_to_raw(self):
        reply = '{"explanation": "no name"}'
        assert parse_description(reply).relationship_name == reply


class TestBuildPrompt:
    def test_prompt_lists_every_step(self):
        prompt = build_prompt("Priya", "Venkat", UNCLE_PATH)

        assert "Person 1: Priya" in prompt
        assert "Person 2: Venkat" in prompt
        assert "- Raman (Father of Priya)" in prompt
        assert "- Venkat (Son of Subramanian)" in prompt
        assert prompt.rstrip().endswith("What is the relationship of Venkat (Person 2) to Priya (Person 1)?")


class TestRelationshipDescriber:
    """Tests for one describe() round trip against a fake client."""

    def test_describe_uses_session(self, fake_copilot_client):
        client = fake_copilot_client('{"relationship_name": "Paternal Uncle", "explanation": "Father\'s brother"}')
        describer = RelationshipDescriber(client, model="test-model")

        description = asyncio.run(describer.describe("Priya", "Venkat", UNCLE_PATH))

        assert description.relationship_name == "Paternal Uncle"
        assert client.session_configs == [
            {"model": "test-model", "system_message": {"content": SYSTEM_PROMPT}},
        ]
        session = client.sessions[0]
        assert session.sent == [{"prompt": build_prompt("Priya", "Venkat", UNCLE_PATH)}]
        assert session.destroyed is True

    def test_same_person_needs_no_session(self, fake_copilot_client):
        client = fake_copilot_client("unused")
        describer = RelationshipDescriber(client)
        path = [PathStep(person_id="u1", person_name="Priya", connection_to_previous="Self")]

        description = asyncio.run(describer.describe("Priya", "Priya", path))

        assert description.relationship_name == "Self (Same Person)"
        assert client.sessions == []

    def test_session_that_never_goes_idle_times_out(self, fake_copilot_client):
        client = fake_copilot_client('{"relationship_name": "Paternal Uncle"}', goes_idle=False)
        describer = RelationshipDescriber(client, timeout=0.05)

        with pytest.raises(asyncio.TimeoutError):
            asyncio.run(describer.describe("Priya", "Venkat", UNCLE_PATH))
        assert client.sessions[0].destroyed is True

    def test_session_destroyed_when_send_fails(self, fake_copilot_client):
        client = fake_copilot_client("unused")

        async def failing_send(message):
            raise ConnectionError("copilot went away")

        async def run():
            session = await client.create_session({})
            session.send = failing_send
            client.create_session = _returning(session)
            describer = RelationshipDescriber(client)
            try:
                await describer.describe("Priya", "Venkat", UNCLE_PATH)
            except ConnectionError:
                return session
            raise AssertionError("describe() should propagate the send failure")

        session = asyncio.run(run())
        assert session.destroyed is True


def _returning(session):
    async def create_session(config):
        return session
    return create_session
