"""Error types raised inside the automation core.

Failures are contained at the smallest scope (one channel, one rule) by the
callers; none of these types is meant to escape a tick.
"""

from __future__ import annotations

from typing import Optional


class MetronomeError(Exception):
    """Base class for metronome errors."""


class ConfigurationError(MetronomeError):
    """Malformed or missing configuration (a rule's cadence or engine settings)."""

    def __init__(self, message: str, rule_id: Optional[str] = None) -> None:
        self.rule_id = rule_id
        super().__init__(message)


class TransientCollaboratorError(MetronomeError):
    """A call into an external collaborator failed (network, backend error)."""

    def __init__(self, step: str, detail: str) -> None:
        self.step = step
        self.detail = detail
        super().__init__(f"{step} failed: {detail}")


class CollaboratorTimeout(TransientCollaboratorError):
    """A collaborator call exceeded its timeout."""

    def __init__(self, step: str, timeout: float) -> None:
        self.timeout = timeout
        super().__init__(step, f"timed out after {timeout:g}s")


class InvalidTransitionError(MetronomeError):
    def __init__(self, current: str, requested: str) -> None:
        self.current = current
        self.requested = requested
        super().__init__(f"Invalid attempt state transition: {current} -> {requested}")
