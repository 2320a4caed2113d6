"""
Collaborator interfaces consumed by the Toolgate core.

The host application (CMS, API layer) supplies these:
- Clock: the current time, injectable so decisions are reproducible
- EntityLookup: post type / status (and content) of the targeted entity
- CapabilityProvider: whether an actor may bypass approval workflows

Each interface ships with a small concrete implementation suitable for
tests and for hosts that keep the data in memory.
"""

from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from datetime import UTC, datetime, timedelta
from typing import Any


class Clock(ABC):
    """Source of the current time."""

    @abstractmethod
    def now(self) -> datetime:
        """Return the current time as a timezone-aware datetime."""


class SystemClock(Clock):
    """Wall-clock time in UTC."""

    def now(self) -> datetime:
        return datetime.now(UTC)


class FixedClock(Clock):
    """
    A clock that only moves when told to.

    Usage:
        clock = FixedClock(datetime(2024, 1, 8, 10, 0, tzinfo=UTC))
        clock.advance(hours=1)
    """

    def __init__(self, current: datetime) -> None:
        if current.tzinfo is None:
            current = current.replace(tzinfo=UTC)
        self.current = current

    def now(self) -> datetime:
        return self.current

    def set(self, current: datetime) -> None:
        """Jump to an absolute time."""
        if current.tzinfo is None:
            current = current.replace(tzinfo=UTC)
        self.current = current

    def advance(self, **kwargs: float) -> None:
        """Move forward by a timedelta expressed as keyword arguments."""
        self.current = self.current + timedelta(**kwargs)


class EntityLookup(ABC):
    """Read access to the entities tool calls operate on."""

    @abstractmethod
    def get_type_and_status(self, entity_id: int) -> tuple[str | None, str | None] | None:
        """
        Return (post_type, status) for an entity, or None if it does not exist.
        """

    def get_content(self, entity_id: int) -> dict[str, Any] | None:
        """
        Return the content fields of an entity, used for audit content hashes.

        Hosts that cannot provide content return None and no hash is stored.
        """
        return None


class StaticEntityLookup(EntityLookup):
    """EntityLookup backed by a dict of entity id -> attributes."""

    def __init__(self, entities: Mapping[int, Mapping[str, Any]] | None = None) -> None:
        self.entities: dict[int, dict[str, Any]] = {
            int(k): dict(v) for k, v in (entities or {}).items()
        }

    def get_type_and_status(self, entity_id: int) -> tuple[str | None, str | None] | None:
        entity = self.entities.get(entity_id)
        if entity is None:
            return None
        return entity.get("post_type"), entity.get("post_status")

    def get_content(self, entity_id: int) -> dict[str, Any] | None:
        entity = self.entities.get(entity_id)
        return dict(entity) if entity is not None else None


class CapabilityProvider(ABC):
    """Answers capability questions about actors."""

    @abstractmethod
    def has_admin_bypass(self, actor_id: int) -> bool:
        """Whether the actor may skip approval workflows."""


class StaticCapabilityProvider(CapabilityProvider):
    """CapabilityProvider with a fixed set of admin actor ids."""

    def __init__(self, admin_ids: Iterable[int] = ()) -> None:
        self.admin_ids = set(admin_ids)

    def has_admin_bypass(self, actor_id: int) -> bool:
        return actor_id in self.admin_ids
