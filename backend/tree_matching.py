"""Tree-similarity matching between two users' family trees.

Raw person records are normalized into ComparablePerson values, every
cross-tree pair is scored on independent signals, and a greedy one-to-one
selection of the best pairs decides whether the two trees overlap.
"""

import logging
import re
from datetime import datetime
from typing import Iterable

from pydantic import BaseModel, ConfigDict

from records import FamilyMemberRecord, OwnerProfile

logger = logging.getLogger("kinkonnect.tree_matching")


SELF_RELATIONSHIP = "Self"
NO_RELATIONSHIP = "N/A"

# Pair signal points. Every signal is additive, none is ever negative.
NAME_MATCH_POINTS = 10.0
ALIAS_MATCH_POINTS = 7.0  # alias-only match, noisier than the primary name
BIRTH_YEAR_EXACT_POINTS = 5.0
BIRTH_YEAR_CLOSE_POINTS = 3.0
BIRTH_YEAR_TOLERANCE = 2  # years
BIRTH_PLACE_POINTS = 3.0
CURRENT_PLACE_POINTS = 2.0
RELIGION_POINTS = 1.5
CASTE_POINTS = 1.5
DECEASED_AGREEMENT_POINTS = 1.0
ROLE_AGREEMENT_POINTS = 1.0

# Acceptance thresholds
MIN_PAIR_SCORE = NAME_MATCH_POINTS
TREE_SCORE_THRESHOLD = 40.0
MIN_CONTRIBUTING_PAIRS = 3


# ============================================================================
# Models
# ============================================================================

class ComparablePerson(BaseModel):
    """Matching-ready projection of a raw person record."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str = ""
    alias_name: str | None = None
    dob: str | None = None
    birth_year: int | None = None
    is_deceased: bool = False
    birth_place: str | None = None
    current_place: str | None = None
    religion: str | None = None
    caste: str | None = None
    relationship_to_owner: str = NO_RELATIONSHIP
    # Display only, never compared
    original_data: OwnerProfile | FamilyMemberRecord


class PairScore(BaseModel):
    """Outcome of scoring one cross-tree pair."""

    model_config = ConfigDict(frozen=True)

    pair_score: float
    reasons: list[str]


class MatchedIndividualPair(BaseModel):
    """A pair accepted as evidence that two trees overlap."""

    model_config = ConfigDict(frozen=True)

    person1: ComparablePerson
    person2: ComparablePerson
    pair_score: float
    reasons: list[str]


class TreeComparison(BaseModel):
    """Tree-level decision plus the pairs that justify it."""

    model_config = ConfigDict(frozen=True)

    is_similar: bool
    score: float
    contributing_pairs: list[MatchedIndividualPair]


# ============================================================================
# Person Normalizer
# ============================================================================

_LEADING_YEAR = re.compile(r"^(\d{4})(?!\d)")


def normalize_text(value: str | None) -> str | None:
    """Trim and lower-case a free-text field. Blank becomes None."""
    if value is None:
        return None
    cleaned = value.strip().lower()
    return cleaned or None


def normalize_first_name(name: str | None) -> str:
    """First whitespace-delimited token of the name, lower-cased.

    Users are only asked for a first name for matching, so surnames and
    middle names are dropped.
    """
    if not name:
        return ""
    tokens = name.split()
    return tokens[0].lower() if tokens else ""


def normalize_alias(alias: str | None) -> str | None:
    if not alias:
        return None
    collapsed = " ".join(alias.split()).lower()
    return collapsed or None


def parse_birth_year(dob: str | None) -> int | None:
    """Birth year from an ISO date or a leading 4-digit year.

    "N/A", blanks and anything unparseable give None.
    """
    if not dob:
        return None
    dob = dob.strip()
    if not dob or dob.upper() == "N/A":
        return None
    try:
        return datetime.fromisoformat(dob.replace("Z", "+00:00")).year
    except ValueError:
        pass
    match = _LEADING_YEAR.match(dob)
    if match:
        return int(match.group(1))
    return None


def resolve_deceased(record: OwnerProfile | FamilyMemberRecord) -> bool:
    if record.is_deceased is not None:
        return record.is_deceased
    return bool(record.deceased_date and record.deceased_date.strip())


def normalize_person(
    record: OwnerProfile | FamilyMemberRecord,
    is_owner: bool | None = None,
) -> ComparablePerson:
    """Convert a raw record into a ComparablePerson.

    Never raises for missing or malformed fields; they degrade to None.
    When is_owner is not given it is taken from the record's kind.
    """
    if is_owner is None:
        is_owner = isinstance(record, OwnerProfile)

    if is_owner:
        relationship = SELF_RELATIONSHIP
    else:
        relationship = getattr(record, "relationship", None) or NO_RELATIONSHIP

    return ComparablePerson(
        id=record.id,
        name=normalize_first_name(record.name),
        alias_name=normalize_alias(record.alias_name),
        dob=record.dob,
        birth_year=parse_birth_year(record.dob),
        is_deceased=resolve_deceased(record),
        birth_place=normalize_text(record.born_place),
        current_place=normalize_text(record.current_place),
        religion=normalize_text(record.religion),
        caste=normalize_text(record.caste),
        relationship_to_owner=relationship,
        original_data=record,
    )


def normalize_tree(records: Iterable[OwnerProfile | FamilyMemberRecord]) -> list[ComparablePerson]:
    return [normalize_person(record) for record in records]


# ============================================================================
# Pairwise Person Scorer
# ============================================================================

def _name_channel(a: ComparablePerson, b: ComparablePerson) -> str | None:
    """Which channel admits the pair: 'name', 'alias', or None."""
    if a.name and a.name == b.name:
        return "name"
    keys_a = {key for key in (a.name, a.alias_name) if key}
    keys_b = {key for key in (b.name, b.alias_name) if key}
    if keys_a & keys_b:
        return "alias"
    return None


def score_pair(a: ComparablePerson, b: ComparablePerson) -> PairScore:
    """Score two persons from different trees.

    The name (or alias) is the admission gate: without it the pair scores 0
    and nothing else is looked at. Other signals only add points when both
    sides carry the field.
    """
    channel = _name_channel(a, b)
    if channel is None:
        return PairScore(pair_score=0.0, reasons=[])

    if channel == "name":
        score = NAME_MATCH_POINTS
        reasons = ["Name match"]
    else:
        score = ALIAS_MATCH_POINTS
        reasons = ["Alias name match"]

    if a.birth_year is not None and b.birth_year is not None:
        year_diff = abs(a.birth_year - b.birth_year)
        if year_diff == 0:
            score += BIRTH_YEAR_EXACT_POINTS
            reasons.append("Same birth year")
        elif year_diff <= BIRTH_YEAR_TOLERANCE:
            score += BIRTH_YEAR_CLOSE_POINTS
            reasons.append("Birth year within range")

    if a.birth_place and a.birth_place == b.birth_place:
        score += BIRTH_PLACE_POINTS
        reasons.append("Same birth place")
    if a.current_place and a.current_place == b.current_place:
        score += CURRENT_PLACE_POINTS
        reasons.append("Same current place")

    if a.religion and a.religion == b.religion:
        score += RELIGION_POINTS
        reasons.append("Same religion")
    if a.caste and a.caste == b.caste:
        score += CASTE_POINTS
        reasons.append("Same caste")

    if a.is_deceased == b.is_deceased:
        score += DECEASED_AGREEMENT_POINTS
        reasons.append("Both deceased" if a.is_deceased else "Both living")

    role_a = a.relationship_to_owner.strip().lower()
    if role_a and role_a != NO_RELATIONSHIP.lower() and role_a == b.relationship_to_owner.strip().lower():
        score += ROLE_AGREEMENT_POINTS
        reasons.append(f"Same role ({a.relationship_to_owner})")

    return PairScore(pair_score=score, reasons=reasons)


# ============================================================================
# Tree Matcher
# ============================================================================

def compare_trees(tree_a: list[ComparablePerson], tree_b: list[ComparablePerson]) -> TreeComparison:
    """Decide whether two trees represent the same or overlapping family.

    Pairs clearing MIN_PAIR_SCORE are taken best-first; a pair is skipped if
    either person was already claimed. Equal scores keep cross-product order
    (tree_a outer, tree_b inner). Similar means the summed score reaches
    TREE_SCORE_THRESHOLD with at least MIN_CONTRIBUTING_PAIRS pairs.
    """
    if not tree_a or not tree_b:
        return TreeComparison(is_similar=False, score=0.0, contributing_pairs=[])

    candidates: list[MatchedIndividualPair] = []
    for person_a in tree_a:
        for person_b in tree_b:
            result = score_pair(person_a, person_b)
            if result.pair_score >= MIN_PAIR_SCORE:
                candidates.append(MatchedIndividualPair(
                    person1=person_a,
                    person2=person_b,
                    pair_score=result.pair_score,
                    reasons=result.reasons,
                ))

    # sort() is stable, so ties keep iteration order
    candidates.sort(key=lambda pair: pair.pair_score, reverse=True)

    claimed_a: set[str] = set()
    claimed_b: set[str] = set()
    accepted: list[MatchedIndividualPair] = []
    for pair in candidates:
        if pair.person1.id in claimed_a or pair.person2.id in claimed_b:
            continue
        claimed_a.add(pair.person1.id)
        claimed_b.add(pair.person2.id)
        accepted.append(pair)

    score = sum(pair.pair_score for pair in accepted)
    is_similar = score >= TREE_SCORE_THRESHOLD and len(accepted) >= MIN_CONTRIBUTING_PAIRS

    logger.debug(
        f"Compared trees ({len(tree_a)} x {len(tree_b)}): {len(candidates)} candidate pairs, "
        f"{len(accepted)} accepted, score={score:.1f}, similar={is_similar}"
    )

    return TreeComparison(is_similar=is_similar, score=score, contributing_pairs=accepted)
