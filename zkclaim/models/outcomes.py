"""
Job poller outcomes.

``JobOutcome`` is a tagged union: exactly one of :class:`JobSuccess`,
:class:`JobFailed` or :class:`JobTimeout`. Each member reports the
:class:`PollState` it ended in.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Union

from .proofs import AggregationDetails, AggregationId, TargetStatus


class PollState(str, Enum):
    SUBMITTED = "Submitted"
    POLLING = "Polling"
    FINALIZED = "Finalized"
    AGGREGATED = "Aggregated"
    FAILED = "Failed"
    TIMED_OUT = "TimedOut"


@dataclass(frozen=True)
class JobSuccess:
    job_id: str
    status: TargetStatus
    tx_hash: Optional[str] = None
    block_hash: Optional[str] = None
    aggregation_id: Optional[AggregationId] = None
    aggregation: Optional[AggregationDetails] = None
    attempts: int = 0
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def state(self) -> PollState:
        return PollState(self.status.value)


@dataclass(frozen=True)
class JobFailed:
    job_id: str
    detail: Any
    attempts: int = 0

    @property
    def state(self) -> PollState:
        return PollState.FAILED


@dataclass(frozen=True)
class JobTimeout:
    job_id: str
    attempts_made: int

    @property
    def state(self) -> PollState:
        return PollState.TIMED_OUT


JobOutcome = Union[JobSuccess, JobFailed, JobTimeout]


__all__ = ["PollState", "JobSuccess", "JobFailed", "JobTimeout", "JobOutcome"]
