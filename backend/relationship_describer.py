"""Human-readable relationship names via the Copilot client."""

import asyncio
import json
import logging
import re

from pydantic import BaseModel, ValidationError

from relationship_path import PathStep

logger = logging.getLogger("kinkonnect.relationship_describer")


SYSTEM_PROMPT = """You are a genealogy expert. Given a path between two people in a family tree, you name the genealogical relationship of Person 2 to Person 1.

Each path step lists a person and how that person is related to the person immediately before them. The first step is Person 1 ("Self").

Use the common genealogical term, for example:
- Person 1's father's brother: "Paternal Uncle"
- Person 1's mother's sister's son: "Maternal First Cousin"
- Person 1's wife's mother: "Mother-in-law"
- Person 1's son's daughter: "Granddaughter"
For direct links use the direct term (Father, Mother, Son, Daughter, Husband, Wife, Sibling).
Be precise with terms like "grand-uncle" or "first cousin once removed" when the path supports it.

Reply with only a JSON object: {"relationship_name": "...", "explanation": "..."}. The explanation is optional and brief."""


class RelationshipDescription(BaseModel):
    relationship_name: str
    explanation: str | None = None


_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


def build_prompt(person1_name: str, person2_name: str, path: list[PathStep]) -> str:
    lines = [f"Person 1: {person1_name}", f"Person 2: {person2_name}", "", "Path from Person 1 to Person 2:"]
    lines.extend(f"- {step.person_name} ({step.connection_to_previous})" for step in path)
    lines.append("")
    lines.append(f"What is the relationship of {person2_name} (Person 2) to {person1_name} (Person 1)?")
    return "\n".join(lines)


def parse_description(content: str) -> RelationshipDescription:
    """Parse the model's reply; a reply that is not the expected JSON is used as the name."""
    match = _JSON_OBJECT.search(content)
    if match:
        try:
            return RelationshipDescription.model_validate(json.loads(match.group(0)))
        except (json.JSONDecodeError, ValidationError) as e:
            logger.warning(f"Could not parse relationship JSON, using raw reply: {e}")
    return RelationshipDescription(relationship_name=content.strip())


class RelationshipDescriber:
    """Names a relationship path using one shared, already-started Copilot client."""

    def __init__(self, client, model: str = "gpt-4.1", timeout: float = 60.0):
        self.client = client
        self.model = model
        self.timeout = timeout

    async def describe(self, person1_name: str, person2_name: str, path: list[PathStep]) -> RelationshipDescription:
        """Raises asyncio.TimeoutError when the session does not finish within self.timeout seconds."""
        if len(path) == 1 and person1_name == person2_name:
            return RelationshipDescription(relationship_name="Self (Same Person)")

        logger.info(f"Describing relationship of '{person2_name}' to '{person1_name}' ({len(path)} steps)")
        session = await self.client.create_session({
            "model": self.model,
            "system_message": {"content": SYSTEM_PROMPT},
        })

        done = asyncio.Event()
        response_content = ""

        def on_event(event):
            nonlocal response_content
            event_type = event.type.value if hasattr(event.type, 'value') else str(event.type)
            if event_type == "assistant.message":
                response_content = event.data.content
                logger.debug(f"Received assistant message ({len(response_content)} chars)")
            elif event_type == "session.idle":
                done.set()

        session.on(on_event)
        try:
            await session.send({"prompt": build_prompt(person1_name, person2_name, path)})
            await asyncio.wait_for(done.wait(), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.error(f"Copilot session did not finish within {self.timeout}s")
            raise
        finally:
            await session.destroy()

        description = parse_description(response_content)
        logger.info(f"Relationship described as '{description.relationship_name}'")
        return description
