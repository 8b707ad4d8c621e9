"""
Aggregation receipt model.

The persisted JSON uses the argument names of the verifier contract's approval
call (``root``, ``path``, ``index``, ``leaf``) so the UI can pass the file
through unchanged. The relay-side names (``merkleRoot``, ``merklePath``,
``leafIndex``, ``leafDigest``) are accepted on input.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from .proofs import AggregationDetails


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AggregationReceipt(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    role: str
    root: str = Field(validation_alias=AliasChoices("root", "merkleRoot"))
    merkle_path: List[str] = Field(
        validation_alias=AliasChoices("path", "merklePath", "merkle_path"),
        serialization_alias="path",
    )
    leaf_index: int = Field(
        validation_alias=AliasChoices("index", "leafIndex", "leaf_index"),
        serialization_alias="index",
    )
    leaf_digest: str = Field(
        validation_alias=AliasChoices("leaf", "leafDigest", "leaf_digest"),
        serialization_alias="leaf",
    )
    aggregation_id: Optional[Union[int, str]] = Field(
        default=None,
        validation_alias=AliasChoices("aggregationId", "aggregation_id"),
        serialization_alias="aggregationId",
    )
    proof_hash: str = Field(
        validation_alias=AliasChoices("proofHash", "proof_hash"),
        serialization_alias="proofHash",
    )
    tx_hash: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("txHash", "tx_hash"),
        serialization_alias="txHash",
    )
    claim_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("claimId", "claim_id"),
        serialization_alias="claimId",
    )
    saved_at: datetime = Field(
        default_factory=_utcnow,
        validation_alias=AliasChoices("timestamp", "saved_at"),
        serialization_alias="timestamp",
    )

    @classmethod
    def from_details(
        cls,
        role: str,
        details: AggregationDetails,
        *,
        proof_hash: str,
        tx_hash: Optional[str] = None,
        claim_id: Optional[str] = None,
    ) -> "AggregationReceipt":
        return cls(
            role=role,
            root=details.root,
            merkle_path=list(details.merkle_path),
            leaf_index=details.leaf_index,
            leaf_digest=details.leaf_digest,
            aggregation_id=details.aggregation_id,
            proof_hash=proof_hash,
            tx_hash=tx_hash,
            claim_id=claim_id,
        )

    def to_json_dict(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


__all__ = ["AggregationReceipt"]
