"""
Proof, verification-key and relay-job types.

These are internal value objects passed between the prover adapter, the relay
client, the poller and the orchestrator. API-facing models live in
``zkclaim.models.claims``.

Relay job-status shapes
-----------------------
The relay has reported aggregation metadata in two shapes over time; both are
accepted by :meth:`JobStatus.from_relay`:

    {"status": "Aggregated", "txHash": "0x..", "aggregationId": 7,
     "merkleRoot": "0x..", "merklePath": ["0x..", ...], "leafIndex": 3, "leafDigest": "0x.."}

    {"status": "Aggregated", "txHash": "0x..", "aggregationId": 7,
     "aggregationDetails": {"root": "0x..", "merkleProof": [...], "leafIndex": 3, "leaf": "0x.."}}
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

AggregationId = Union[int, str]


class TargetStatus(str, Enum):
    """Relay status that ends a successful poll."""

    FINALIZED = "Finalized"
    AGGREGATED = "Aggregated"


# Relay-defined vocabulary. Only the terminal subset matters to the poller.
STATUS_PENDING = "Pending"
STATUS_AGGREGATING = "Aggregating"
STATUS_FINALIZED = "Finalized"
STATUS_AGGREGATED = "Aggregated"
STATUS_FAILED = "Failed"


@dataclass(frozen=True)
class ProofArtifact:
    """Proof + ordered public signals for one role. The first signal is the proof hash."""

    role: str
    proof: Dict[str, Any]
    public_signals: Tuple[str, ...]

    @classmethod
    def build(cls, role: str, proof: Mapping[str, Any], public_signals: List[Any]) -> "ProofArtifact":
        return cls(role=role, proof=dict(proof), public_signals=tuple(str(s) for s in public_signals))

    @property
    def proof_hash(self) -> str:
        if not self.public_signals:
            raise ValueError(f"{self.role} proof has no public signals")
        return self.public_signals[0]


@dataclass(frozen=True)
class VerificationKeyRecord:
    role: str
    vk_id: str


@dataclass(frozen=True)
class SubmissionJob:
    job_id: str
    role: str
    target_state: TargetStatus
    submitted_at: float = field(default_factory=time.time)


@dataclass(frozen=True)
class SubmitResponse:
    job_id: Optional[str]
    optimistic_verify: Optional[str]
    raw: Dict[str, Any]

    @property
    def accepted(self) -> bool:
        return self.optimistic_verify == "success" and bool(self.job_id)

    @classmethod
    def from_relay(cls, data: Any) -> "SubmitResponse":
        if not isinstance(data, Mapping):
            raise ValueError("submit-proof response is not a JSON object")
        job_id = data.get("jobId")
        return cls(
            job_id=str(job_id) if job_id is not None else None,
            optimistic_verify=data.get("optimisticVerify"),
            raw=dict(data),
        )


@dataclass(frozen=True)
class AggregationDetails:
    """Membership material for one proof inside a relay aggregation."""

    root: str
    merkle_path: Tuple[str, ...]
    leaf_index: int
    leaf_digest: str
    aggregation_id: Optional[AggregationId] = None
    receipt_block_hash: Optional[str] = None


@dataclass(frozen=True)
class JobStatus:
    status: str
    tx_hash: Optional[str] = None
    block_hash: Optional[str] = None
    aggregation_id: Optional[AggregationId] = None
    merkle_root: Optional[str] = None
    merkle_path: Optional[Tuple[str, ...]] = None
    leaf_index: Optional[int] = None
    leaf_digest: Optional[str] = None
    receipt_block_hash: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_relay(cls, data: Any) -> "JobStatus":
        if not isinstance(data, Mapping):
            raise ValueError("job-status response is not a JSON object")
        status = data.get("status")
        if not isinstance(status, str) or not status:
            raise ValueError("job-status response has no status")

        nested = data.get("aggregationDetails")
        agg: Mapping[str, Any] = nested if isinstance(nested, Mapping) else {}

        path = data.get("merklePath")
        if path is None:
            path = agg.get("merkleProof", agg.get("merklePath"))
        leaf_index = data.get("leafIndex", agg.get("leafIndex"))

        return cls(
            status=status,
            tx_hash=data.get("txHash"),
            block_hash=data.get("blockHash"),
            aggregation_id=data.get("aggregationId", agg.get("aggregationId")),
            merkle_root=data.get("merkleRoot") or agg.get("root"),
            merkle_path=tuple(str(p) for p in path) if isinstance(path, (list, tuple)) else None,
            leaf_index=int(leaf_index) if leaf_index is not None else None,
            leaf_digest=data.get("leafDigest") or agg.get("leaf"),
            receipt_block_hash=agg.get("receiptBlockHash"),
            raw=dict(data),
        )

    @property
    def aggregation(self) -> Optional[AggregationDetails]:
        """Aggregation membership material, or None when any required piece is missing."""
        if (
            self.merkle_root is None
            or self.merkle_path is None
            or self.leaf_index is None
            or self.leaf_digest is None
        ):
            return None
        return AggregationDetails(
            root=self.merkle_root,
            merkle_path=self.merkle_path,
            leaf_index=self.leaf_index,
            leaf_digest=self.leaf_digest,
            aggregation_id=self.aggregation_id,
            receipt_block_hash=self.receipt_block_hash,
        )


__all__ = [
    "AggregationId",
    "TargetStatus",
    "STATUS_PENDING",
    "STATUS_AGGREGATING",
    "STATUS_FINALIZED",
    "STATUS_AGGREGATED",
    "STATUS_FAILED",
    "ProofArtifact",
    "VerificationKeyRecord",
    "SubmissionJob",
    "SubmitResponse",
    "AggregationDetails",
    "JobStatus",
]
