"""Carries selected pipeline state across recreation of the write pipeline.

A component opts in by implementing ``capture_carryover`` (returning its
own snapshot type) and ``restore_carryover``. Values are aliased, not
copied; the component decides what is safe to share.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol, Tuple, runtime_checkable

from .config import LOGGER


@runtime_checkable
class CarryoverCapable(Protocol):
    def capture_carryover(self) -> Any: ...

    def restore_carryover(self, snapshot: Any) -> None: ...


@dataclass
class FieldSnapshot:
    """Snapshot produced by ``DeclaredFieldsCarryover``."""

    component: str
    values: Dict[str, Any] = field(default_factory=dict)


class DeclaredFieldsCarryover:
    """Mixin for components whose eligible state is a fixed set of attributes."""

    CARRYOVER_FIELDS: Tuple[str, ...] = ()

    def capture_carryover(self) -> FieldSnapshot:
        return FieldSnapshot(
            component=type(self).__name__,
            values={name: getattr(self, name) for name in self.CARRYOVER_FIELDS},
        )

    def restore_carryover(self, snapshot: FieldSnapshot) -> None:
        for name in self.CARRYOVER_FIELDS:
            if name in snapshot.values:
                setattr(self, name, snapshot.values[name])


class StateCarryoverCache:
    def __init__(self) -> None:
        self._slots: Dict[str, Any] = {}

    def __contains__(self, key: object) -> bool:
        return key in self._slots

    def get(self, key: str) -> Optional[Any]:
        return self._slots.get(key)

    def sync(self, key: str, instance: Any) -> Optional[str]:
        """Restore ``instance`` from the slot for ``key``, or capture it if the slot is empty.

        Returns ``"restored"``, ``"captured"``, or None when the instance does
        not take part in carryover.
        """
        if not isinstance(instance, CarryoverCapable):
            return None
        if key in self._slots:
            instance.restore_carryover(self._slots[key])
            LOGGER.debug("carryover restored for %s", key)
            return "restored"
        self._slots[key] = instance.capture_carryover()
        LOGGER.debug("carryover captured for %s", key)
        return "captured"

    def clear(self) -> None:
        self._slots.clear()


__all__ = ["CarryoverCapable", "FieldSnapshot", "DeclaredFieldsCarryover", "StateCarryoverCache"]
