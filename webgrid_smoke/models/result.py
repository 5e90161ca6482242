"""Models for session outcomes and their aggregate."""

from collections import Counter
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Literal, TypeAlias

OutcomeStatus: TypeAlias = Literal["success", "failure", "timeout"]
FailureStage: TypeAlias = Literal["session", "workload", "internal"]


@dataclass(frozen=True, kw_only=True)
class SessionOutcome:
    """Outcome of a single fork.

    ``stage`` is only set for failures and tells whether the session could not
    be established, the workload failed inside a live session, or the fork
    crashed outside both.
    """

    fork: int
    status: OutcomeStatus
    duration: float
    stage: FailureStage | None = None
    message: str | None = None
    session_id: str | None = None


@dataclass(frozen=True, kw_only=True)
class AggregateResult:
    """Tally of all outcomes collected by one dispatch."""

    outcomes: Sequence[SessionOutcome]

    @property
    def total(self) -> int:
        return len(self.outcomes)

    @property
    def passed(self) -> int:
        return sum(1 for o in self.outcomes if o.status == "success")

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if o.status == "failure")

    @property
    def timeouts(self) -> int:
        return sum(1 for o in self.outcomes if o.status == "timeout")

    @property
    def failures_by_stage(self) -> Mapping[FailureStage, int]:
        return dict(
            Counter(
                o.stage
                for o in self.outcomes
                if o.status == "failure" and o.stage is not None
            )
        )

    @property
    def succeeded(self) -> bool:
        """Overall verdict: true only when every fork succeeded."""
        return self.total > 0 and self.passed == self.total
