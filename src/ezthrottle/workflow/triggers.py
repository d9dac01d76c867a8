"""Trigger conditions gating fallback branches."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from ezthrottle.workflow.payload import FallbackTrigger


@dataclass(frozen=True, slots=True)
class OnError:
    """Eligible when the failed attempt returned one of ``codes``."""

    codes: frozenset[int]

    def matches(self, status_code: int | None) -> bool:
        # A network failure has no status code, so it never matches.
        return status_code is not None and status_code in self.codes

    def to_wire(self) -> FallbackTrigger:
        return FallbackTrigger(type="on_error", codes=sorted(self.codes))


@dataclass(frozen=True, slots=True)
class OnTimeout:
    """Eligible after a timeout.

    The duration tells the remote service how long to wait before activating
    the fallback. Locally the branch is always eligible, since the local attempt
    is already bounded by the step timeout.
    """

    timeout_ms: int

    def matches(self, status_code: int | None) -> bool:
        return True

    def to_wire(self) -> FallbackTrigger:
        return FallbackTrigger(type="on_timeout", timeout_ms=self.timeout_ms)


@dataclass(frozen=True, slots=True)
class Always:
    """No condition; the branch is eligible for every qualifying failure."""

    def matches(self, status_code: int | None) -> bool:
        return True

    def to_wire(self) -> FallbackTrigger:
        return FallbackTrigger()


TriggerCondition = OnError | OnTimeout | Always


def trigger_from_options(
    trigger_on_error: Iterable[int] | None = None,
    trigger_on_timeout: int | None = None,
) -> TriggerCondition:
    """Build a condition from the ``Step.fallback`` keyword options.

    Error codes take precedence over a timeout; with neither, the branch is
    always eligible.
    """

    codes = frozenset(trigger_on_error or ())
    if codes:
        return OnError(codes=codes)
    if trigger_on_timeout:
        return OnTimeout(timeout_ms=trigger_on_timeout)
    return Always()
