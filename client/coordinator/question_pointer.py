"""
Question-boundary coordinator.

Owns the Active Question Pointer, the single piece of shared mutable state
between the session controller and the audio recorder.

Ordering contract:
- switch_question() never changes the pointer under an accumulating chunk.
  It records the new value as pending and forces that chunk to seal.
- seal_boundary() is the only read used for attribution. It returns the
  value that was active for the whole chunk, then applies any pending value.
  A seal therefore never observes a switch requested during its own
  recording window, and the next chunk always does.

Single-threaded cooperative model: the ordering is structural, no locks.
"""

from __future__ import annotations

from typing import Protocol

from constants import FIRST_QUESTION_NUMBER
from observability.logger import log_event


class SealTarget(Protocol):
    """The recorder capabilities the coordinator needs."""

    @property
    def is_accumulating(self) -> bool: ...

    def request_early_seal(self) -> None: ...


class QuestionBoundaryCoordinator:
    """
    Single writer of the Active Question Pointer.

    Invariants:
    - At most one pending switch; a later call overwrites it (last write wins).
    - The pointer only changes in switch_question() (recorder idle) or in
      seal_boundary() (after the snapshot).
    """

    def __init__(self, *, initial_question: int = FIRST_QUESTION_NUMBER) -> None:
        self._active: int = initial_question
        self._pending: int | None = None
        self._target: SealTarget | None = None

    def attach(self, target: SealTarget) -> None:
        """Attach the recorder whose chunks this pointer attributes."""
        self._target = target

    def detach(self) -> None:
        self._target = None

    # ------------------------------------------------------------------
    # Reads (display only)
    # ------------------------------------------------------------------

    @property
    def active(self) -> int:
        return self._active

    @property
    def pending(self) -> int | None:
        return self._pending

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def switch_question(self, new_number: int) -> None:
        """
        Request that subsequent audio be attributed to new_number.

        Recorder idle: applied immediately.
        Recorder accumulating: deferred; the in-progress chunk is sealed now
        under the current question, then the pointer moves.
        """
        target = self._target
        if target is None or not target.is_accumulating:
            previous = self._active
            self._active = new_number
            self._pending = None
            log_event({
                "event_type": "QUESTION_SWITCH_APPLIED",
                "from_question": previous,
                "to_question": new_number,
            })
            return

        overwritten = self._pending
        self._pending = new_number
        log_event({
            "event_type": "QUESTION_SWITCH_DEFERRED",
            "active_question": self._active,
            "pending_question": new_number,
            "overwrote_pending": overwritten,
        })
        target.request_early_seal()

    def seal_boundary(self) -> int:
        """
        Called exactly once per seal by the recorder.

        Returns the question number to tag the sealing chunk with, then
        applies the pending switch (if any) for the next chunk.
        """
        snapshot = self._active

        if self._pending is not None:
            self._active = self._pending
            self._pending = None
            log_event({
                "event_type": "QUESTION_SWITCH_APPLIED",
                "from_question": snapshot,
                "to_question": self._active,
            })

        return snapshot

    def reset(self, *, initial_question: int = FIRST_QUESTION_NUMBER) -> None:
        """Clear session-scoped pointer state on completion."""
        self._active = initial_question
        self._pending = None
