"""
Orchestrator policy configuration.

Retry, escalation and sprint thresholds are tunable per organisation, so
they are named parameters with documented defaults rather than constants.
Loading from JSON lives in sdlcflow.infrastructure.config.
"""

from dataclasses import dataclass, field

from sdlcflow.domain.models import Severity


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff with cap and jitter."""

    max_retries: int = 3  # Failures tolerated before a task is failed
    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 60.0
    jitter: float = 0.1  # Fraction of the delay, applied as +/-

    def delay_for(self, failure_number: int) -> float:
        """Un-jittered delay after the n-th failure (1-based)."""
        exponent = max(failure_number - 1, 0)
        return min(self.base_delay_seconds * (2**exponent), self.max_delay_seconds)


DEFAULT_RESPONSE_BUDGETS: tuple[tuple[Severity, float | None], ...] = (
    (Severity.SEV1, 5 * 60.0),
    (Severity.SEV2, 15 * 60.0),
    (Severity.SEV3, 60 * 60.0),
    (Severity.SEV4, None),  # Next business cycle: never auto-escalated
)


@dataclass(frozen=True)
class IncidentPolicy:
    response_budgets_seconds: tuple[tuple[Severity, float | None], ...] = (
        DEFAULT_RESPONSE_BUDGETS
    )
    escalating_severities: tuple[Severity, ...] = (Severity.SEV1, Severity.SEV2)
    default_severity: Severity = Severity.SEV3
    severity_by_capability: tuple[tuple[str, Severity], ...] = ()

    def budget_for(self, severity: Severity) -> float | None:
        return dict(self.response_budgets_seconds).get(severity)

    def severity_for_capability(self, capability: str) -> Severity:
        return dict(self.severity_by_capability).get(
            capability, self.default_severity
        )


@dataclass(frozen=True)
class GatePolicy:
    escalate_after_seconds: float | None = None  # None: never page


@dataclass(frozen=True)
class SprintPolicy:
    seed_capacity: int | None = None  # Capacity of the first sprint
    duration_seconds: float = 14 * 24 * 3600.0
    velocity_window: int = 3  # Closed sprints in the rolling capacity average


@dataclass(frozen=True)
class OrchestratorConfig:
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    incidents: IncidentPolicy = field(default_factory=IncidentPolicy)
    gates: GatePolicy = field(default_factory=GatePolicy)
    sprints: SprintPolicy = field(default_factory=SprintPolicy)
    tick_interval_seconds: float = 5.0
    max_parallel_tasks: int = 8
