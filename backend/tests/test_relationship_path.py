"""Tests for relationship path finding within one tree."""

import os
import sys

import pytest

# Add backend to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from family_store import JsonFamilyStore
from records import FamilyMemberRecord, OwnerProfile, tree_from_documents
from relationship_path import build_adjacency, find_relationship_path


@pytest.fixture
def priya_tree(sample_trees_path):
    store = JsonFamilyStore(sample_trees_path)
    return tree_from_documents("u_priya", store.get_profile("u_priya"), store.get_family_members("u_priya"))


def connections(result) -> list[str]:
    return [step.connection_to_previous for step in result.path]


class TestBuildAdjacency:
    """Tests for turning parent/spouse links into a graph."""

    def test_links_are_bidirectional(self):
        people = [
            OwnerProfile(id="me", name="Me", father_id="dad"),
            FamilyMemberRecord(id="dad", name="Dad", spouse_ids=["mum"]),
            FamilyMemberRecord(id="mum", name="Mum"),
        ]
        adjacency = build_adjacency(people)

        assert adjacency["me"] == [("dad", "parent")]
        assert ("me", "child") in adjacency["dad"]
        assert ("mum", "spouse") in adjacency["dad"]
        assert adjacency["mum"] == [("dad", "spouse")]

    def test_links_outside_tree_are_ignored(self):
        people = [
            OwnerProfile(id="me", name="Me", father_id="stranger", spouse_ids=["me"]),
        ]
        assert build_adjacency(people) == {"me": []}

    def test_duplicate_links_collapse(self):
        people = [
            FamilyMemberRecord(id="a", name="A", spouse_ids=["b"]),
            FamilyMemberRecord(id="b", name="B", spouse_ids=["a"]),
        ]
        adjacency = build_adjacency(people)
        assert adjacency["a"] == [("b", "spouse")]
        assert adjacency["b"] == [("a", "spouse")]


class TestFindRelationshipPath:
    """Tests for shortest paths over the sample tree."""

    def test_uncle_through_grandfather(self, priya_tree):
        result = find_relationship_path("u_priya", "m_p5", priya_tree)

        assert result.path_found is True
        assert [step.person_id for step in result.path] == ["u_priya", "m_p1", "m_p3", "m_p5"]
        assert connections(result) == [
            "Self",
            "Father of Priya Raman",
            "Father of Raman Subramanian",
            "Son of Subramanian Iyer",
        ]
        assert result.generation_gap == -1

    def test_sibling_is_same_generation(self, priya_tree):
        result = find_relationship_path("u_priya", "m_p4", priya_tree)

        assert [step.person_id for step in result.path] == ["u_priya", "m_p1", "m_p4"]
        assert connections(result)[-1] == "Son of Raman Subramanian"
        assert result.generation_gap == 0

    def test_direct_parent(self, priya_tree):
        result = find_relationship_path("u_priya", "m_p2", priya_tree)

        assert connections(result) == ["Self", "Mother of Priya Raman"]
        assert result.generation_gap == -1

    def test_direct_child_uses_owner_gender(self, priya_tree):
        result = find_relationship_path("m_p1", "u_priya", priya_tree)

        assert connections(result) == ["Self", "Daughter of Raman Subramanian"]
        assert result.generation_gap == 1

    def test_spouse(self, priya_tree):
        result = find_relationship_path("m_p1", "m_p2", priya_tree)

        assert connections(result) == ["Self", "Wife of Raman Subramanian"]
        assert result.generation_gap == 0

    def test_same_person(self, priya_tree):
        result = find_relationship_path("u_priya", "u_priya", priya_tree)

        assert result.path_found is True
        assert len(result.path) == 1
        assert result.path[0].connection_to_previous == "Self"
        assert result.generation_gap == 0

    def test_unknown_person(self, priya_tree):
        result = find_relationship_path("u_priya", "m_k1", priya_tree)
        assert result.path_found is False
        assert result.path == []
        assert result.generation_gap is None

    def test_disconnected_people(self):
        people = [
            OwnerProfile(id="me", name="Me"),
            FamilyMemberRecord(id="cousin", name="Cousin", relationship="Cousin"),
        ]
        assert find_relationship_path("me", "cousin", people).path_found is False

    def test_unknown_gender_uses_neutral_label(self):
        people = [
            OwnerProfile(id="me", name="Me", mother_id="parent"),
            FamilyMemberRecord(id="parent", name="Sam", gender="X"),
        ]
        result = find_relationship_path("me", "parent", people)
        assert connections(result) == ["Self", "Parent of Me"]

    def test_unnamed_person(self):
        people = [
            OwnerProfile(id="me", name="Me", father_id="dad"),
            FamilyMemberRecord(id="dad", gender="m"),
        ]
        result = find_relationship_path("me", "dad", people)
        assert result.path[-1].person_name == "Unnamed"
        assert connections(result) == ["Self", "Father of Me"]
