"""
Relay job poller.

States: Submitted -> Polling -> {Finalized | Aggregated | Failed | TimedOut}

Each attempt reads the job status once:

- status == target state        -> JobSuccess (tx/block/aggregation fields attached)
- status == "Failed"            -> JobFailed, no further calls
- HTTP 503                      -> sleep ``retry_interval`` and retry; does not
                                   consume an attempt
- any other error               -> propagates
- anything else (Pending, ...)  -> sleep the poll interval, next attempt

After ``max_attempts`` non-terminal answers the poller returns JobTimeout.
A wall-clock ``deadline_s`` bounds the whole poll including 503 retries:
expiring inside a 503 streak raises PollTransientError, otherwise the poll
ends with JobTimeout.

``sleep`` and ``clock`` are injectable so tests can run the state machine on
a fake clock.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Awaitable, Callable, Optional

from ..adapters.relay import RelayClient
from ..errors import PollTransientError, RelayHttpError
from ..logging import get_logger
from ..models.outcomes import JobFailed, JobOutcome, JobSuccess, JobTimeout, PollState
from ..models.proofs import STATUS_FAILED, JobStatus, SubmissionJob, TargetStatus

log = get_logger(__name__)

SleepFn = Callable[[float], Awaitable[Any]]
ClockFn = Callable[[], float]


class JobPoller:
    def __init__(
        self,
        relay: RelayClient,
        *,
        max_attempts: int = 30,
        interval_direct: float = 5.0,
        interval_aggregating: float = 20.0,
        retry_interval: float = 5.0,
        deadline_s: Optional[float] = 900.0,
        sleep: SleepFn = asyncio.sleep,
        clock: ClockFn = time.monotonic,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.relay = relay
        self.max_attempts = max_attempts
        self.interval_direct = interval_direct
        self.interval_aggregating = interval_aggregating
        self.retry_interval = retry_interval
        self.deadline_s = deadline_s
        self._sleep = sleep
        self._clock = clock

    @classmethod
    def from_settings(cls, relay: RelayClient, settings: Any, **kw: Any) -> "JobPoller":
        return cls(
            relay,
            max_attempts=settings.poll_max_attempts,
            interval_direct=settings.poll_interval_direct_s,
            interval_aggregating=settings.poll_interval_aggregating_s,
            retry_interval=settings.poll_retry_interval_s,
            deadline_s=settings.poll_deadline_s,
            **kw,
        )

    def interval_for(self, target: TargetStatus) -> float:
        if target is TargetStatus.AGGREGATED:
            return self.interval_aggregating
        return self.interval_direct

    def _success(self, job: SubmissionJob, status: JobStatus, attempts: int) -> JobSuccess:
        return JobSuccess(
            job_id=job.job_id,
            status=job.target_state,
            tx_hash=status.tx_hash,
            block_hash=status.block_hash,
            aggregation_id=status.aggregation_id,
            aggregation=status.aggregation,
            attempts=attempts,
            raw=status.raw,
        )

    async def poll(self, job: SubmissionJob) -> JobOutcome:
        target = TargetStatus(job.target_state)
        interval = self.interval_for(target)
        started = self._clock()
        attempts = 0
        unavailable: Optional[RelayHttpError] = None

        log.info(
            "poll_state",
            job_id=job.job_id,
            role=job.role,
            state=PollState.POLLING.value,
            target=target.value,
            interval_s=interval,
        )

        while attempts < self.max_attempts:
            elapsed = self._clock() - started
            if self.deadline_s is not None and elapsed >= self.deadline_s:
                if unavailable is not None:
                    log.warning("poll_deadline_unavailable", job_id=job.job_id, waited_s=elapsed)
                    raise PollTransientError(
                        job.job_id,
                        http_status=unavailable.http_status,
                        body=unavailable.body,
                        waited_s=elapsed,
                    )
                log.warning("poll_deadline", job_id=job.job_id, attempts=attempts, waited_s=elapsed)
                return JobTimeout(job_id=job.job_id, attempts_made=attempts)

            try:
                status = await self.relay.get_job_status(job.job_id)
            except RelayHttpError as e:
                if not e.retryable:
                    raise
                unavailable = e
                log.info("poll_relay_unavailable", job_id=job.job_id, attempts=attempts)
                await self._sleep(self.retry_interval)
                continue

            unavailable = None
            attempts += 1

            if status.status == target.value:
                log.info(
                    "poll_state",
                    job_id=job.job_id,
                    role=job.role,
                    state=target.value,
                    attempts=attempts,
                    tx_hash=status.tx_hash,
                )
                return self._success(job, status, attempts)

            if status.status == STATUS_FAILED:
                log.warning("poll_state", job_id=job.job_id, role=job.role, state=PollState.FAILED.value, attempts=attempts)
                return JobFailed(job_id=job.job_id, detail=status.raw, attempts=attempts)

            log.debug("poll_pending", job_id=job.job_id, status=status.status, attempt=attempts)
            if attempts < self.max_attempts:
                await self._sleep(interval)

        log.warning("poll_state", job_id=job.job_id, role=job.role, state=PollState.TIMED_OUT.value, attempts=attempts)
        return JobTimeout(job_id=job.job_id, attempts_made=self.max_attempts)


__all__ = ["JobPoller"]
