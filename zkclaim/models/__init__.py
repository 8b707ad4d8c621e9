"""
Data models for zkclaim.

- proofs   : ProofArtifact, VerificationKeyRecord, SubmissionJob, relay JobStatus
- outcomes : JobOutcome union produced by the job poller
- receipts : AggregationReceipt persisted for the on-chain approval step
- claims   : API-facing inputs and results
"""

from __future__ import annotations

from .claims import ClaimRequest, ClaimResult, DoctorInput, PatientInput, ProofResult
from .outcomes import JobFailed, JobOutcome, JobSuccess, JobTimeout, PollState
from .proofs import (
    AggregationDetails,
    JobStatus,
    ProofArtifact,
    SubmissionJob,
    SubmitResponse,
    TargetStatus,
    VerificationKeyRecord,
)
from .receipts import AggregationReceipt

__all__ = [
    "AggregationDetails",
    "AggregationReceipt",
    "ClaimRequest",
    "ClaimResult",
    "DoctorInput",
    "JobFailed",
    "JobOutcome",
    "JobStatus",
    "JobSuccess",
    "JobTimeout",
    "PatientInput",
    "PollState",
    "ProofArtifact",
    "ProofResult",
    "SubmissionJob",
    "SubmitResponse",
    "TargetStatus",
    "VerificationKeyRecord",
]
