"""Raw person records as stored in the family document store.

A tree is the owner's profile plus the family members they entered. Both
shapes share most fields, so they are modelled as one tagged union and the
tag is resolved once, at the normalizer boundary.

Stored documents are user-entered and loosely typed, so field values are
coerced rather than rejected: a number where text is expected becomes text,
anything else unusable becomes None. Only a record without an id is invalid.
"""

import logging
from typing import Annotated, Any, Iterable, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

logger = logging.getLogger("kinkonnect.records")


def _coerce_text(value: Any) -> str | None:
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return str(value)
    return None


class _PersonFields(BaseModel):
    """Fields common to the owner profile and family member records."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = Field(min_length=1)
    name: str | None = None
    alias_name: str | None = Field(default=None, alias="aliasName")
    dob: str | None = None
    gender: str | None = None
    is_deceased: bool | None = Field(default=None, alias="isDeceased")
    deceased_date: str | None = Field(default=None, alias="deceasedDate")
    born_place: str | None = Field(default=None, alias="bornPlace")
    current_place: str | None = Field(default=None, alias="currentPlace")
    religion: str | None = None
    caste: str | None = None
    # Edges within the owner's own tree
    father_id: str | None = Field(default=None, alias="fatherId")
    mother_id: str | None = Field(default=None, alias="motherId")
    spouse_ids: list[str] = Field(default_factory=list, alias="spouseIds")

    @field_validator(
        "id", "name", "alias_name", "dob", "gender", "deceased_date", "born_place",
        "current_place", "religion", "caste", "father_id", "mother_id",
        mode="before",
    )
    @classmethod
    def coerce_text(cls, v: Any) -> str | None:
        return _coerce_text(v)

    @field_validator("is_deceased", mode="before")
    @classmethod
    def coerce_flag(cls, v: Any) -> bool | None:
        if isinstance(v, bool):
            return v
        if isinstance(v, str):
            return {"true": True, "yes": True, "false": False, "no": False}.get(v.strip().lower())
        if isinstance(v, int) and v in (0, 1):
            return bool(v)
        return None

    @field_validator("spouse_ids", mode="before")
    @classmethod
    def coerce_id_list(cls, v: Any) -> list[str]:
        if not isinstance(v, (list, tuple)):
            v = [v]
        ids = (_coerce_text(item) for item in v)
        return [spouse_id for spouse_id in ids if spouse_id]


class OwnerProfile(_PersonFields):
    """The tree owner's own profile (implicitly 'Self')."""

    kind: Literal["owner"] = "owner"
    email: str | None = None
    # Kept as stored: anything other than an explicit False is visible
    is_public: Any = Field(default=None, alias="isPublic")

    @field_validator("email", mode="before")
    @classmethod
    def coerce_email(cls, v: Any) -> str | None:
        return _coerce_text(v)

    @property
    def is_private(self) -> bool:
        return self.is_public is False


class FamilyMemberRecord(_PersonFields):
    """A family member entered by the tree owner."""

    kind: Literal["member"] = "member"
    relationship: str | None = None

    @field_validator("relationship", mode="before")
    @classmethod
    def coerce_relationship(cls, v: Any) -> str | None:
        return _coerce_text(v)


RawPersonRecord = Annotated[
    Union[OwnerProfile, FamilyMemberRecord],
    Field(discriminator="kind"),
]

_RECORD_ADAPTER: TypeAdapter[OwnerProfile | FamilyMemberRecord] = TypeAdapter(RawPersonRecord)


def owner_from_document(uid: str, doc: dict[str, Any]) -> OwnerProfile:
    """Build the owner profile from a stored user document (keyed by uid)."""
    if not isinstance(doc, dict):
        raise TypeError(f"Profile document for {uid} is {type(doc).__name__}, not an object")
    return _RECORD_ADAPTER.validate_python({**doc, "id": uid, "kind": "owner"})


def member_from_document(doc: dict[str, Any]) -> FamilyMemberRecord:
    """Build a family member record from a stored document (must carry its id)."""
    if not isinstance(doc, dict):
        raise TypeError(f"Family member document is {type(doc).__name__}, not an object")
    return _RECORD_ADAPTER.validate_python({**doc, "kind": "member"})


def members_from_documents(uid: str, docs: Iterable[Any]) -> list[FamilyMemberRecord]:
    """Build every usable member record of one tree, skipping unusable ones."""
    members = []
    for index, doc in enumerate(docs):
        try:
            members.append(member_from_document(doc))
        except (TypeError, ValidationError) as e:
            logger.warning(f"Skipping family member #{index} of user {uid}: {e}")
    return members


def tree_from_documents(
    uid: str,
    profile_doc: dict[str, Any],
    member_docs: list[dict[str, Any]],
) -> list[OwnerProfile | FamilyMemberRecord]:
    """Owner first, then members in store order."""
    tree: list[OwnerProfile | FamilyMemberRecord] = [owner_from_document(uid, profile_doc)]
    tree.extend(members_from_documents(uid, member_docs))
    return tree
