"""
Base Domain Classes

Foundational building blocks shared by the booking and subscription contexts:
- ChoiceEnum: string enums that double as Django field choices
- ValueObject: Immutable snapshots compared by value
- DomainEvent: Facts published after a transaction commits
"""

from abc import ABC
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Tuple
from uuid import UUID, uuid4


class ChoiceEnum(str, Enum):
    """
    String enum usable both in pure domain code and as model choices.

    Members compare equal to their stored value, so a model field holding
    "Confirmed" matches BookingStatus.CONFIRMED without conversion.
    """

    @property
    def label(self) -> str:
        return self.value

    @classmethod
    def choices(cls) -> List[Tuple[str, str]]:
        return [(member.value, member.label) for member in cls]

    @classmethod
    def coerce(cls, value, default=None):
        """Convert a stored value to a member, falling back to default."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            return default

    def __str__(self):
        return self.value


@dataclass(frozen=True)
class ValueObject(ABC):
    """
    Base class for value objects

    Value objects are immutable and have no identity.
    Two value objects are equal if all their attributes are equal.
    """
    pass


@dataclass(kw_only=True)
class DomainEvent:
    """
    Base class for domain events

    Domain events represent something that happened in the domain.
    They are handed to the message bus only after the surrounding
    transaction has committed.
    """
    event_id: UUID = field(default_factory=uuid4)
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        """Convert event to dictionary for logging and task payloads"""
        return {
            'event_id': str(self.event_id),
            'event_type': self.__class__.__name__,
            'occurred_at': self.occurred_at.isoformat(),
        }
