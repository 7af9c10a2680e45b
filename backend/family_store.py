"""Read-only access to the family document store.

Discovery only consumes plain documents: one profile per user, that user's
family members, and the ids of users they are already konnected with.
"""

import json
import logging
from pathlib import Path
from typing import Any, Protocol

logger = logging.getLogger("kinkonnect.family_store")


class StoreError(Exception):
    """A read from the document store failed."""


class StoreDeadlineExceeded(StoreError):
    """The store gave up because the request deadline passed."""


class FamilyStore(Protocol):
    def get_profile(self, uid: str) -> dict[str, Any] | None: ...

    def list_user_ids(self) -> list[str]: ...

    def get_family_members(self, uid: str) -> list[dict[str, Any]]: ...

    def get_konnections(self, uid: str) -> set[str]: ...


class InMemoryFamilyStore:
    """Store over a dict of user documents.

    Layout per user id:
        {"profile": {...}, "familyMembers": [{"id": ..., ...}], "konnections": [uid, ...]}
    A user without a "profile" key exists in the listing but has no profile.
    """

    def __init__(self, users: dict[str, dict[str, Any]] | None = None):
        self._users = users if users is not None else {}

    def _user(self, uid: str) -> dict[str, Any]:
        user = self._users.get(uid)
        return user if isinstance(user, dict) else {}

    def get_profile(self, uid: str) -> dict[str, Any] | None:
        profile = self._user(uid).get("profile")
        return dict(profile) if isinstance(profile, dict) else profile

    def list_user_ids(self) -> list[str]:
        return list(self._users.keys())

    def get_family_members(self, uid: str) -> list[dict[str, Any]]:
        members = self._user(uid).get("familyMembers") or []
        return [dict(member) if isinstance(member, dict) else member for member in members]

    def get_konnections(self, uid: str) -> set[str]:
        return set(self._user(uid).get("konnections") or [])


class JsonFamilyStore:
    """Store backed by a JSON file with a top-level "users" object.

    The parsed file is reused until its modification time or size changes,
    so a scan parses it once while later calls still see edits.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._cache: tuple[tuple[int, int], InMemoryFamilyStore] | None = None

    def _load(self) -> InMemoryFamilyStore:
        try:
            stat = self.path.stat()
        except FileNotFoundError:
            logger.warning(f"Family store file not found: {self.path}; treating as empty")
            self._cache = None
            return InMemoryFamilyStore({})
        except OSError as e:
            raise StoreError(f"Failed to read family store {self.path}: {e}") from e

        version = (stat.st_mtime_ns, stat.st_size)
        if self._cache is not None and self._cache[0] == version:
            return self._cache[1]

        try:
            with self.path.open(encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            logger.warning(f"Family store file not found: {self.path}; treating as empty")
            return InMemoryFamilyStore({})
        except (OSError, json.JSONDecodeError) as e:
            raise StoreError(f"Failed to read family store {self.path}: {e}") from e

        users = data.get("users") if isinstance(data, dict) else None
        if not isinstance(users, dict):
            raise StoreError(f"Family store {self.path} has no 'users' object")
        logger.debug(f"Loaded family store {self.path} with {len(users)} user(s)")
        self._cache = (version, InMemoryFamilyStore(users))
        return self._cache[1]

    def get_profile(self, uid: str) -> dict[str, Any] | None:
        return self._load().get_profile(uid)

    def list_user_ids(self) -> list[str]:
        return self._load().list_user_ids()

    def get_family_members(self, uid: str) -> list[dict[str, Any]]:
        return self._load().get_family_members(uid)

    def get_konnections(self, uid: str) -> set[str]:
        return self._load().get_konnections(uid)
