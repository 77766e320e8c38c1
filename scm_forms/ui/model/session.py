"""Session context injected into the form engine.

The account identifier and the acting user's role/allocation are set once at
login and cleared at logout.  Engines and selectors read them through the
context they were constructed with instead of reaching into app storage.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Mapping

TEACHER_USER_TYPE = "TEACHER"


@dataclass(frozen=True, slots=True)
class Allocation:
    """One (class, division) pair a teacher is allocated to."""

    class_id: Any = None
    division_id: Any = None

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> "Allocation":
        return cls(class_id=raw.get("classId"), division_id=raw.get("divisionId"))


@dataclass(frozen=True, slots=True)
class CurrentUser:
    """Acting user as reported by the backend."""

    user_type: str = ""
    school_id: Any = None
    allocated_classes: tuple[Allocation, ...] = ()
    account_id: Any = None

    @property
    def is_teacher(self) -> bool:
        return str(self.user_type or "").strip().upper() == TEACHER_USER_TYPE

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any] | None) -> "CurrentUser":
        """Build a user from the ``userDetails`` payload shape."""
        if not isinstance(raw, Mapping):
            return cls()
        allocations: list[Allocation] = []
        for item in raw.get("allocatedClasses") or ():
            if isinstance(item, Mapping):
                allocations.append(Allocation.from_mapping(item))
        return cls(
            user_type=str(raw.get("type") or ""),
            school_id=raw.get("schoolId"),
            allocated_classes=tuple(allocations),
            account_id=raw.get("accountId"),
        )


@dataclass
class SessionContext:
    """Mutable holder for the logged-in account and user."""

    account_id: Any = None
    user: CurrentUser | None = None
    _listeners: list[Callable[["SessionContext"], None]] = field(default_factory=list, repr=False)

    # -- lifecycle ------------------------------------------------------
    def login(self, account_id: Any, user: CurrentUser | Mapping[str, Any] | None = None) -> None:
        """Populate the session after a successful sign-in."""
        if isinstance(user, Mapping) or user is None:
            user = CurrentUser.from_mapping(user)
        self.account_id = None if account_id in (None, "") else account_id
        self.user = user
        logging.debug("Session opened for account %s (type=%s)", self.account_id, user.user_type)
        self._notify()

    def logout(self) -> None:
        """Clear every piece of session state."""
        self.account_id = None
        self.user = None
        logging.debug("Session cleared")
        self._notify()

    def subscribe(self, callback: Callable[["SessionContext"], None]) -> None:
        """Register *callback* to be invoked after login/logout."""
        if callback not in self._listeners:
            self._listeners.append(callback)

    def unsubscribe(self, callback: Callable[["SessionContext"], None]) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)

    def _notify(self) -> None:
        for callback in list(self._listeners):
            callback(self)

    # -- accessors ------------------------------------------------------
    @property
    def is_authenticated(self) -> bool:
        return self.account_id is not None

    @property
    def is_teacher(self) -> bool:
        return bool(self.user and self.user.is_teacher)

    @property
    def teacher_school_id(self) -> Any:
        """Return the pinned school id for teachers, ``None`` otherwise."""
        if not self.is_teacher or self.user is None:
            return None
        return self.user.school_id

    @property
    def allocations(self) -> tuple[Allocation, ...]:
        if self.user is None:
            return ()
        return self.user.allocated_classes

    @classmethod
    def from_auth_payload(cls, raw: str | Mapping[str, Any] | None, user: Any = None) -> "SessionContext":
        """Build a logged-in session from the stored auth blob.

        The blob is the JSON document persisted after sign-in, shaped as
        ``{"data": {"accountId": ...}}``.  Unreadable blobs produce an
        anonymous session rather than an error.
        """
        session = cls()
        data: Any = raw
        if isinstance(raw, str):
            try:
                data = json.loads(raw)
            except ValueError:
                logging.warning("Stored auth payload is not valid JSON; starting anonymous session")
                return session
        if not isinstance(data, Mapping):
            return session
        inner = data.get("data")
        account_id = inner.get("accountId") if isinstance(inner, Mapping) else None
        if account_id is None:
            return session
        session.login(account_id, user)
        return session


def allocation_ids(allocations: Iterable[Allocation]) -> tuple[list[Any], list[Any]]:
    """Split allocations into (class ids, division ids)."""
    class_ids = [a.class_id for a in allocations]
    division_ids = [a.division_id for a in allocations]
    return class_ids, division_ids


__all__ = [
    "Allocation",
    "CurrentUser",
    "SessionContext",
    "TEACHER_USER_TYPE",
    "allocation_ids",
]
