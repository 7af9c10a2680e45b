"""Relationship path finding within one user's own family tree."""

import logging
from collections import deque
from typing import Iterable

from pydantic import BaseModel

from records import FamilyMemberRecord, OwnerProfile

logger = logging.getLogger("kinkonnect.relationship_path")


class PathStep(BaseModel):
    """One person on the path and how they relate to the person before them."""
    person_id: str
    person_name: str
    connection_to_previous: str


class PathResult(BaseModel):
    path_found: bool
    path: list[PathStep] = []
    # Positive when person 2 is a descendant of person 1, negative for an ancestor
    generation_gap: int | None = None


_LABELS = {
    "parent": ("Father", "Mother", "Parent"),
    "child": ("Son", "Daughter", "Child"),
    "spouse": ("Husband", "Wife", "Spouse"),
}

_GENERATION_STEP = {"parent": -1, "child": 1, "spouse": 0}


def _gendered_label(edge: str, gender: str | None) -> str:
    male, female, neutral = _LABELS[edge]
    g = (gender or "").strip().lower()
    if g in ("m", "male"):
        return male
    if g in ("f", "female"):
        return female
    return neutral


def build_adjacency(people: Iterable[OwnerProfile | FamilyMemberRecord]) -> dict[str, list[tuple[str, str]]]:
    """Map person id -> [(neighbour id, edge)], edge being what the neighbour is.

    Links pointing outside the tree are ignored.
    """
    people = list(people)
    adjacency: dict[str, list[tuple[str, str]]] = {person.id: [] for person in people}

    def link(from_id: str, to_id: str, edge: str) -> None:
        if from_id == to_id or from_id not in adjacency or to_id not in adjacency:
            return
        if (to_id, edge) not in adjacency[from_id]:
            adjacency[from_id].append((to_id, edge))

    for person in people:
        for parent_id in (person.father_id, person.mother_id):
            if parent_id:
                link(person.id, parent_id, "parent")
                link(parent_id, person.id, "child")
        for spouse_id in person.spouse_ids:
            link(person.id, spouse_id, "spouse")
            link(spouse_id, person.id, "spouse")

    return adjacency


def find_relationship_path(
    person1_id: str,
    person2_id: str,
    people: Iterable[OwnerProfile | FamilyMemberRecord],
) -> PathResult:
    """Shortest chain of parent/child/spouse links from person 1 to person 2."""
    by_id = {person.id: person for person in people}
    if person1_id not in by_id or person2_id not in by_id:
        logger.info(f"Path lookup with unknown person: {person1_id} -> {person2_id}")
        return PathResult(path_found=False)

    def name_of(person_id: str) -> str:
        return by_id[person_id].name or "Unnamed"

    adjacency = build_adjacency(by_id.values())

    # BFS, remembering how each person was reached
    came_from: dict[str, tuple[str, str] | None] = {person1_id: None}
    queue = deque([person1_id])
    while queue:
        current = queue.popleft()
        if current == person2_id:
            break
        for neighbour, edge in adjacency[current]:
            if neighbour not in came_from:
                came_from[neighbour] = (current, edge)
                queue.append(neighbour)

    if person2_id not in came_from:
        logger.info(f"No relationship path between {person1_id} and {person2_id}")
        return PathResult(path_found=False)

    steps: list[PathStep] = []
    generation_gap = 0
    cursor = person2_id
    while came_from[cursor] is not None:
        previous, edge = came_from[cursor]
        label = _gendered_label(edge, by_id[cursor].gender)
        steps.append(PathStep(
            person_id=cursor,
            person_name=name_of(cursor),
            connection_to_previous=f"{label} of {name_of(previous)}",
        ))
        generation_gap += _GENERATION_STEP[edge]
        cursor = previous
    steps.append(PathStep(person_id=person1_id, person_name=name_of(person1_id), connection_to_previous="Self"))
    steps.reverse()

    logger.debug(f"Path {person1_id} -> {person2_id}: {len(steps)} step(s), generation gap {generation_gap}")
    return PathResult(path_found=True, path=steps, generation_gap=generation_gap)
