from __future__ import annotations

import logging
from typing import Callable, Iterable

from app.pipeline.models import ProgressStep, StepStatus

logger = logging.getLogger(__name__)

ProgressObserver = Callable[[tuple[ProgressStep, ...]], None]

_ALLOWED_TRANSITIONS: dict[StepStatus, frozenset[StepStatus]] = {
    "pending": frozenset({"processing"}),
    "processing": frozenset({"completed", "error"}),
    "completed": frozenset(),
    "error": frozenset(),
}


class InvalidStepTransition(RuntimeError):
    pass


class StepTracker:
    """Finite-state machine over a fixed, ordered list of named steps.

    Steps only move forward (pending -> processing -> completed|error), at most
    one step is processing, and once a step errors no later step may start.
    Observers receive an immutable snapshot after every transition.
    """

    def __init__(self, names: Iterable[str], observers: Iterable[ProgressObserver] = ()):
        ordered = tuple(names)
        if not ordered:
            raise ValueError("StepTracker needs at least one step")
        if len(set(ordered)) != len(ordered):
            raise ValueError("Step names must be unique")
        self._names = ordered
        self._status: dict[str, StepStatus] = {name: "pending" for name in ordered}
        self._observers = list(observers)

    def snapshot(self) -> tuple[ProgressStep, ...]:
        return tuple(ProgressStep(name=name, status=self._status[name]) for name in self._names)

    @property
    def current(self) -> str | None:
        for name in self._names:
            if self._status[name] == "processing":
                return name
        return None

    @property
    def failed(self) -> str | None:
        for name in self._names:
            if self._status[name] == "error":
                return name
        return None

    def start(self, name: str) -> None:
        if self.failed is not None:
            raise InvalidStepTransition(f"Cannot start '{name}': step '{self.failed}' already failed")
        active = self.current
        if active is not None:
            raise InvalidStepTransition(f"Cannot start '{name}' while '{active}' is processing")
        index = self._index(name)
        for earlier in self._names[:index]:
            if self._status[earlier] != "completed":
                raise InvalidStepTransition(f"Cannot start '{name}' before '{earlier}' completes")
        self._transition(name, "processing")

    def complete(self, name: str) -> None:
        self._transition(name, "completed")

    def fail(self, name: str) -> None:
        self._transition(name, "error")

    def _index(self, name: str) -> int:
        try:
            return self._names.index(name)
        except ValueError as exc:
            raise InvalidStepTransition(f"Unknown step '{name}'") from exc

    def _transition(self, name: str, target: StepStatus) -> None:
        self._index(name)
        current = self._status[name]
        if target not in _ALLOWED_TRANSITIONS[current]:
            raise InvalidStepTransition(f"Step '{name}' cannot move from {current} to {target}")
        self._status[name] = target
        snapshot = self.snapshot()
        for observer in list(self._observers):
            try:
                observer(snapshot)
            except Exception:  # noqa: BLE001 - observers must not break the pipeline
                logger.warning("progress_observer_failed step=%s status=%s", name, target, exc_info=True)
