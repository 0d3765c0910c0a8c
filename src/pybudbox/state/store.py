"""In-memory holder of the current device snapshot.

This is the only component allowed to replace the current snapshot.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from datetime import UTC, datetime

from pybudbox.exceptions import BudboxSchemaError
from pybudbox.models.variables import DeviceSnapshot, DeviceVariable, VariableKind
from pybudbox.state.policy import should_accept_snapshot

_logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class SnapshotStore:
    """Keeps the latest accepted :class:`DeviceSnapshot` for one controller.

    Given the same sequence of ``build`` / ``commit`` calls it produces the
    same snapshots.  It also remembers the kind of every variable it has
    ever seen and treats a kind change as a schema error.
    """

    def __init__(
        self,
        *,
        required: Iterable[str] = (),
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._required = tuple(required)
        self._clock = clock
        self._current: DeviceSnapshot | None = None
        self._kinds: dict[str, VariableKind] = {}

    @property
    def current(self) -> DeviceSnapshot | None:
        return self._current

    @property
    def required(self) -> tuple[str, ...]:
        return self._required

    @property
    def known_kinds(self) -> dict[str, VariableKind]:
        return dict(self._kinds)

    def build(self, variables: Mapping[str, DeviceVariable], generation: int) -> DeviceSnapshot:
        """Validate parsed variables and wrap them in a snapshot.

        Raises
        ------
        BudboxSchemaError
            If required names are missing or a known variable changed kind.
        """
        changed = [
            name for name, variable in variables.items() if self._kinds.get(name, variable.kind) is not variable.kind
        ]
        if changed:
            raise BudboxSchemaError(
                f"Variable type changed for: {', '.join(changed)}",
                changed=changed,
            )

        snapshot = DeviceSnapshot(variables=dict(variables), captured_at=self._clock(), generation=generation)
        missing = snapshot.missing(self._required)
        if missing:
            raise BudboxSchemaError(
                f"Missing required variables: {', '.join(missing)}",
                missing=missing,
            )
        return snapshot

    def commit(self, snapshot: DeviceSnapshot) -> bool:
        """Make *snapshot* current unless a newer generation is already stored."""
        current_generation = self._current.generation if self._current is not None else None
        if not should_accept_snapshot(current_generation=current_generation, incoming_generation=snapshot.generation):
            _logger.debug(
                "Dropping stale snapshot generation=%d (current=%s)",
                snapshot.generation,
                current_generation,
            )
            return False
        for name, variable in snapshot.variables.items():
            self._kinds.setdefault(name, variable.kind)
        self._current = snapshot
        return True

    def clear(self) -> None:
        """Forget the current snapshot; learned variable kinds are kept."""
        self._current = None
