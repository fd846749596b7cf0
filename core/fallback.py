"""
Provider Fallback Chain.

Candidate sources for one hazard are tried strictly in order, one at a
time, until one produces a usable (non-sentinel) level. Every outbound
call any source makes is charged to a shared AttemptBudget so a degraded
provider cannot trigger an unbounded retry storm.
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from core.models import AdminUnit, AttemptTrace, Coordinate, Outcome, RiskResult
from core.taxonomy import RiskLevel

log = logging.getLogger(__name__)


class AttemptBudget:
    """
    Caps the number of outbound calls one resolution may make.

    Also carries the cooperative cancellation token: once ``cancel_event``
    is set, no further attempts are granted. A budget made with ``share``
    draws from its parent as well, so one source can be capped without
    letting it starve the sources after it.
    """

    def __init__(self, max_attempts: int, cancel_event: Optional[threading.Event] = None,
                 parent: Optional["AttemptBudget"] = None, timeout_limit: Optional[int] = None):
        self.max_attempts = max_attempts
        self.used = 0
        self.cancel_event = cancel_event
        self.parent = parent
        self.timeout_limit = timeout_limit
        self.consecutive_timeouts = 0

    @property
    def cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()

    @property
    def remaining(self) -> int:
        return max(0, self.max_attempts - self.used)

    @property
    def timed_out(self) -> bool:
        """Too many timeouts in a row: the provider has gone silent."""
        return self.timeout_limit is not None and self.consecutive_timeouts >= self.timeout_limit

    @property
    def exhausted(self) -> bool:
        if self.cancelled or self.remaining == 0 or self.timed_out:
            return True
        return self.parent is not None and self.parent.exhausted

    def take(self) -> bool:
        """Reserve one attempt. False when exhausted or cancelled."""
        if self.exhausted:
            return False
        if self.parent is not None and not self.parent.take():
            return False
        self.used += 1
        return True

    def record(self, outcome: Outcome):
        if outcome is Outcome.TIMEOUT:
            self.consecutive_timeouts += 1
        else:
            self.consecutive_timeouts = 0

    def share(self, max_attempts: Optional[int] = None,
              timeout_limit: Optional[int] = None) -> "AttemptBudget":
        """Child budget for one source, capped at ``max_attempts``."""
        cap = self.remaining if max_attempts is None else max_attempts
        return AttemptBudget(cap, self.cancel_event, parent=self, timeout_limit=timeout_limit)


@dataclass(frozen=True)
class SourceOutcome:
    """What a single source concluded, before the chain picks a winner."""
    level: RiskLevel
    provider: str
    label: Optional[str] = None
    score: Optional[float] = None
    admin_unit: Optional[AdminUnit] = None
    note: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def to_result(self, trace: AttemptTrace) -> RiskResult:
        return RiskResult(
            level=self.level,
            label=self.label,
            score=self.score,
            admin_unit=self.admin_unit,
            provider=self.provider,
            trace=trace.attempts,
            note=self.note,
            details=dict(self.details),
        )


class DataSource:
    """
    One candidate provider for a hazard.

    Subclasses implement ``fetch``; returning None means "nothing usable
    here" and is treated like an UNDETERMINED outcome.
    """

    name = "source"

    def fetch(self, coordinate: Coordinate, budget: AttemptBudget,
              trace: AttemptTrace) -> Optional[SourceOutcome]:
        raise NotImplementedError


class ProviderChain:
    """
    Try sources in order; first usable level wins.

    Each source runs on its own share of the budget, capped at
    ``source_attempts`` and cut off after ``timeout_limit`` timeouts in a
    row, so a slow or silent first source still leaves room for the next.
    """

    def __init__(self, sources: Sequence[DataSource], source_attempts: Optional[int] = None,
                 timeout_limit: Optional[int] = None):
        self.sources: List[DataSource] = list(sources)
        self.source_attempts = source_attempts
        self.timeout_limit = timeout_limit

    def resolve(self, coordinate: Coordinate, budget: AttemptBudget,
                trace: Optional[AttemptTrace] = None) -> RiskResult:
        """
        Run the chain for one coordinate.

        Exhaustion: NOT_APPLICABLE if any source said so, otherwise
        UNDETERMINED. Either way provider is None and the trace is kept.
        """
        trace = trace if trace is not None else AttemptTrace()
        inapplicable: Optional[SourceOutcome] = None
        last_details: Dict[str, Any] = {}

        for source in self.sources:
            if budget.exhausted:
                log.debug(f"Budget exhausted before {source.name} "
                          f"(used {budget.used}/{budget.max_attempts}, cancelled={budget.cancelled})")
                break

            share = budget.share(self.source_attempts, self.timeout_limit)
            outcome = source.fetch(coordinate, share, trace)
            if share.timed_out:
                log.warning(f"{source.name}: gave up after {share.consecutive_timeouts} timeouts in a row")
            if outcome is None:
                log.debug(f"{source.name}: nothing usable at ({coordinate.lat:.5f}, {coordinate.lon:.5f})")
                continue

            if outcome.level.is_usable:
                log.debug(f"{source.name}: {outcome.level.value}")
                return outcome.to_result(trace)

            last_details = outcome.details
            if outcome.level is RiskLevel.NOT_APPLICABLE and inapplicable is None:
                inapplicable = outcome

        if inapplicable is not None:
            return RiskResult(
                level=RiskLevel.NOT_APPLICABLE,
                label=inapplicable.label,
                trace=trace.attempts,
                note=inapplicable.note,
                details=dict(inapplicable.details),
            )
        return RiskResult(
            level=RiskLevel.UNDETERMINED,
            trace=trace.attempts,
            note="No usable rating from any source.",
            details=dict(last_details),
        )
