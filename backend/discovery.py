"""Similar-tree discovery across all other users.

Pre-filters candidates cheaply (konnections, privacy, religion/caste) and
runs the tree matcher on the survivors. The store is only ever read.
"""

import logging
import time
from datetime import datetime

from pydantic import BaseModel, ValidationError

from family_store import FamilyStore, StoreDeadlineExceeded, StoreError
from records import OwnerProfile, members_from_documents, owner_from_document
from tree_matching import (
    SELF_RELATIONSHIP,
    ComparablePerson,
    TreeComparison,
    compare_trees,
    normalize_text,
    normalize_tree,
)

logger = logging.getLogger("kinkonnect.discovery")


TIMEOUT_MESSAGE = (
    "The search took too long and timed out. This can happen if there are many users "
    "or very large family trees. Please try again later."
)


# ============================================================================
# Errors
# ============================================================================

class DiscoveryError(Exception):
    """Base class for failures surfaced to the discovery caller."""


class UnauthenticatedError(DiscoveryError):
    pass


class ProfileNotFoundError(DiscoveryError):
    pass


class DiscoveryTimeoutError(DiscoveryError):
    """The scan ran past its deadline; retrying later may succeed."""


class DiscoveryInternalError(DiscoveryError):
    pass


# ============================================================================
# Result Models
# ============================================================================

class MatchedMemberInfo(BaseModel):
    """Person fields that are safe to show to another user."""
    id: str
    name: str
    alias_name: str | None = None
    dob: str | None = None
    gender: str | None = None
    relationship_to_their_owner: str
    is_deceased: bool
    born_place: str | None = None
    current_place: str | None = None
    religion: str | None = None
    caste: str | None = None


class MatchedPairDisplay(BaseModel):
    person1_id: str
    person1_name: str
    person1_details: str
    person2_id: str
    person2_name: str
    person2_details: str
    pair_score: float
    match_reasons: list[str]


class MatchedTreeResult(BaseModel):
    """One candidate user whose tree overlaps the caller's."""
    matched_user_id: str
    matched_user_name: str
    score: float
    total_members_in_tree: int
    detailed_contributing_pairs: list[MatchedPairDisplay]
    my_matched_persons: list[MatchedMemberInfo]
    other_matched_persons: list[MatchedMemberInfo]


# ============================================================================
# Display Formatting
# ============================================================================

def _present(value: str | None) -> bool:
    return bool(value and value.strip())


def _format_dob(dob: str) -> str:
    try:
        parsed = datetime.fromisoformat(dob.strip().replace("Z", "+00:00"))
    except ValueError:
        return dob
    return f"{parsed.day} {parsed:%b %Y}"


def format_person_details(person: ComparablePerson) -> str:
    """One-line summary shown next to a matched person, e.g.
    "DOB: 12 Mar 1950, Alive, Born: Chennai, Hindu, Iyer, Role: Father".
    """
    od = person.original_data
    details = []

    if _present(od.dob) and od.dob.strip().upper() != "N/A":
        details.append(f"DOB: {_format_dob(od.dob)}")
    elif od.dob and od.dob.strip().upper() == "N/A":
        details.append("DOB: N/A")

    details.append("Deceased" if person.is_deceased else "Alive")

    details.append(f"Born: {od.born_place.strip()}" if _present(od.born_place) else "Born: N/A")
    if _present(od.current_place):
        details.append(f"Lives: {od.current_place.strip()}")

    for value in (od.religion, od.caste):
        if _present(value):
            value = value.strip()
            details.append(value[0].upper() + value[1:])

    if person.relationship_to_owner != SELF_RELATIONSHIP:
        details.append(f"Role: {person.relationship_to_owner}")

    return ", ".join(details)


def to_member_info(person: ComparablePerson) -> MatchedMemberInfo:
    od = person.original_data
    return MatchedMemberInfo(
        id=person.id,
        name=od.name or "Unnamed",
        alias_name=od.alias_name or None,
        dob=od.dob,
        gender=od.gender,
        relationship_to_their_owner=person.relationship_to_owner,
        is_deceased=person.is_deceased,
        born_place=od.born_place,
        current_place=od.current_place,
        religion=od.religion,
        caste=od.caste,
    )


def build_match_result(
    user_id: str,
    user_name: str,
    tree_size: int,
    comparison: TreeComparison,
) -> MatchedTreeResult:
    pairs = comparison.contributing_pairs
    return MatchedTreeResult(
        matched_user_id=user_id,
        matched_user_name=user_name,
        score=round(comparison.score, 1),
        total_members_in_tree=tree_size,
        detailed_contributing_pairs=[
            MatchedPairDisplay(
                person1_id=pair.person1.id,
                person1_name=pair.person1.original_data.name or "Unnamed",
                person1_details=format_person_details(pair.person1),
                person2_id=pair.person2.id,
                person2_name=pair.person2.original_data.name or "Unnamed",
                person2_details=format_person_details(pair.person2),
                pair_score=pair.pair_score,
                match_reasons=list(pair.reasons),
            )
            for pair in pairs
        ],
        my_matched_persons=[to_member_info(pair.person1) for pair in pairs],
        other_matched_persons=[to_member_info(pair.person2) for pair in pairs],
    )


# ============================================================================
# Discovery Scan
# ============================================================================

def find_similar_family_trees(
    store: FamilyStore,
    caller_uid: str | None,
    deadline: float | None = None,
) -> list[MatchedTreeResult]:
    """Scan every other user's tree for overlap with the caller's tree.

    Args:
        store: document store to read users, family members and konnections from
        caller_uid: authenticated caller, None/empty when unauthenticated
        deadline: time.monotonic() instant after which the scan gives up

    Returns matches in store iteration order (not ranked by score).

    Raises:
        UnauthenticatedError, ProfileNotFoundError, DiscoveryTimeoutError,
        DiscoveryInternalError
    """
    if not caller_uid:
        logger.warning("Unauthenticated call to find_similar_family_trees")
        raise UnauthenticatedError("The request must be made while authenticated.")

    logger.info(f"[Discovery] Scan requested by UID: {caller_uid}")

    try:
        return _scan(store, caller_uid, deadline)
    except DiscoveryError:
        raise
    except StoreDeadlineExceeded as e:
        logger.error(f"[Discovery] Store deadline exceeded during scan for UID: {caller_uid}: {e}")
        raise DiscoveryTimeoutError(TIMEOUT_MESSAGE) from e
    except Exception as e:
        logger.exception(f"[Discovery] Scan failed for UID: {caller_uid}")
        raise DiscoveryInternalError(
            f"An internal error occurred. Please check server logs for details. Reference UID: {caller_uid}."
        ) from e


def _display_name(owner: OwnerProfile) -> str:
    for candidate in (owner.name, owner.email):
        if _present(candidate):
            return candidate.strip()
    return "Unnamed User"


def _deadline_passed(deadline: float | None) -> bool:
    return deadline is not None and time.monotonic() > deadline


def _scan(store: FamilyStore, caller_uid: str, deadline: float | None) -> list[MatchedTreeResult]:
    profile_doc = store.get_profile(caller_uid)
    if profile_doc is None:
        logger.warning(f"[Discovery] Caller's profile not found. UID: {caller_uid}")
        raise ProfileNotFoundError("Caller's profile not found. Please complete your profile.")
    caller = owner_from_document(caller_uid, profile_doc)

    if caller.is_private:
        logger.info(f"[Discovery] Caller {caller_uid} is in private mode. Aborting scan.")
        return []

    konnections = store.get_konnections(caller_uid)
    logger.info(f"[Discovery] Caller {caller_uid} has {len(konnections)} existing konnections, excluded from scan")

    caller_religion = normalize_text(caller.religion)
    caller_caste = normalize_text(caller.caste)
    apply_prefilter = bool(caller_religion and caller_caste)
    logger.info(
        f"[Discovery] Religion/caste pre-filter {'ACTIVE' if apply_prefilter else 'SKIPPED'} "
        f"(religion='{caller_religion or 'N/A'}', caste='{caller_caste or 'N/A'}')"
    )

    caller_members = members_from_documents(caller_uid, store.get_family_members(caller_uid))
    my_tree = normalize_tree([caller, *caller_members])
    if not any(person.name for person in my_tree):
        logger.info(f"[Discovery] Caller's tree (UID: {caller_uid}) has no named individuals. Returning 0 matches.")
        return []
    logger.info(f"[Discovery] Caller's tree has {len(my_tree)} members for comparison")
    for person in my_tree:
        logger.debug(
            f"  Caller tree member: name={person.name}, alias={person.alias_name or 'N/A'}, "
            f"birth_year={person.birth_year}, born={person.birth_place}, role={person.relationship_to_owner}"
        )

    other_uids = [
        uid for uid in store.list_user_ids()
        if uid != caller_uid and uid not in konnections
    ]
    logger.info(f"[Discovery] {len(other_uids)} other user(s) to consider after excluding self and konnections")

    matches: list[MatchedTreeResult] = []
    private_skipped = 0
    prefiltered_out = 0
    failed = 0
    compared = 0

    for other_uid in other_uids:
        if _deadline_passed(deadline):
            logger.error(f"[Discovery] Deadline passed after comparing {compared} tree(s) for UID: {caller_uid}")
            raise DiscoveryTimeoutError(TIMEOUT_MESSAGE)

        try:
            other_doc = store.get_profile(other_uid)
            if other_doc is None:
                logger.warning(f"[DiscoveryLoop] Profile not found for user {other_uid}, skipped")
                failed += 1
                continue
            other = owner_from_document(other_uid, other_doc)
        except StoreDeadlineExceeded:
            raise
        except (StoreError, ValidationError, TypeError) as e:
            logger.warning(f"[DiscoveryLoop] Could not load profile for user {other_uid}, skipped: {e}")
            failed += 1
            continue

        if other.is_private:
            private_skipped += 1
            logger.info(f"[DiscoveryLoop] Skipped user {other_uid}: profile is private")
            continue

        if apply_prefilter:
            other_religion = normalize_text(other.religion)
            other_caste = normalize_text(other.caste)
            if other_religion != caller_religion or other_caste != caller_caste:
                prefiltered_out += 1
                logger.info(
                    f"[DiscoveryLoop] Skipped user {other_uid}: pre-filter mismatch "
                    f"(religion='{other_religion or 'N/A'}', caste='{other_caste or 'N/A'}')"
                )
                continue

        try:
            other_members = members_from_documents(other_uid, store.get_family_members(other_uid))
        except StoreDeadlineExceeded:
            raise
        except (StoreError, TypeError) as e:
            logger.warning(f"[DiscoveryLoop] Could not load family members for user {other_uid}, skipped: {e}")
            failed += 1
            continue

        other_tree = normalize_tree([other, *other_members])
        if not any(person.name for person in other_tree):
            logger.info(f"[DiscoveryLoop] User {other_uid}'s tree has no named individuals, skipped")
            continue

        compared += 1
        comparison = compare_trees(my_tree, other_tree)
        logger.info(
            f"[DiscoveryLoop] {other_uid}: similar={comparison.is_similar}, score={comparison.score:.1f}, "
            f"pairs={len(comparison.contributing_pairs)}"
        )

        if comparison.is_similar:
            matches.append(build_match_result(
                user_id=other_uid,
                user_name=_display_name(other),
                tree_size=len(other_members) + 1,
                comparison=comparison,
            ))

    logger.info(
        f"[Discovery] Scan complete for UID: {caller_uid}. Konnections excluded: {len(konnections)}. "
        f"Private skipped: {private_skipped}. Pre-filtered out: {prefiltered_out}. "
        f"Failed: {failed}. Compared: {compared}. Matches: {len(matches)}."
    )
    return matches
