"""
Claim models

- DoctorInput / PatientInput: named circuit inputs for each role. Values are
  decimal strings (field elements); integers are accepted and stringified.
- ClaimRequest: both input sets for a full two-phase claim.
- ProofResult: per-phase outcome returned to callers.
- ClaimResult: doctor + patient results plus the aggregation receipt, if any.
- SavedProofRequest / SavedProofCheck: verification of a proof generated earlier.

Notes
-----
* JSON uses camelCase (``proofHash``, ``jobId``...) for results and snake_case
  for circuit inputs, matching the circuit signal names.
* ``claim_amount`` may not exceed ``policy_limit``.
"""

from __future__ import annotations

import re
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .receipts import AggregationReceipt

_DECIMAL_RE = re.compile(r"^[0-9]+$")

DOCTOR_PROOF_HASH_FIELD = "doctor_proof_hash"


def _field_element(v: Any) -> Any:
    if isinstance(v, bool):
        raise ValueError("boolean is not a field element")
    if isinstance(v, int):
        if v < 0:
            raise ValueError("field element must be non-negative")
        return str(v)
    if isinstance(v, str):
        s = v.strip()
        if not _DECIMAL_RE.fullmatch(s):
            raise ValueError("field element must be a non-negative decimal string")
        return s
    return v


class _CircuitInput(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    def to_circuit_inputs(self) -> Dict[str, str]:
        return {k: v for k, v in self.model_dump().items() if v is not None}


class DoctorInput(_CircuitInput):
    procedure_code: str
    doctor_id: str
    date: str

    @field_validator("procedure_code", "doctor_id", "date", mode="before")
    @classmethod
    def _coerce(cls, v: Any) -> Any:
        return _field_element(v)


class PatientInput(_CircuitInput):
    patient_id: str
    claim_amount: str
    policy_limit: str
    doctor_proof_hash: Optional[str] = None

    @field_validator("patient_id", "claim_amount", "policy_limit", mode="before")
    @classmethod
    def _coerce(cls, v: Any) -> Any:
        return _field_element(v)

    @field_validator("doctor_proof_hash", mode="before")
    @classmethod
    def _proof_hash(cls, v: Any) -> Any:
        # Passed through from the doctor proof's public signals; blank means "not linked yet".
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        if isinstance(v, str):
            return v.strip() or None
        return v

    @model_validator(mode="after")
    def _within_policy(self) -> "PatientInput":
        if int(self.claim_amount) > int(self.policy_limit):
            raise ValueError("claim_amount cannot exceed policy_limit")
        return self


class ClaimRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    doctor_input: DoctorInput = Field(alias="doctorInput")
    patient_input: PatientInput = Field(alias="patientInput")


class ProofResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    role: str
    proof_hash: str = Field(alias="proofHash")
    job_id: str = Field(alias="jobId")
    status: str
    tx_hash: Optional[str] = Field(default=None, alias="txHash")
    block_hash: Optional[str] = Field(default=None, alias="blockHash")
    aggregation_id: Optional[Union[int, str]] = Field(default=None, alias="aggregationId")


class ClaimResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    claim_id: str = Field(alias="claimId")
    doctor: ProofResult
    patient: ProofResult
    receipt: Optional[AggregationReceipt] = None


class SavedProofRequest(BaseModel):
    """A proof generated earlier (e.g. by ``snarkjs`` directly), submitted for verification."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    proof_type: str = Field(alias="proofType")
    proof_data: Dict[str, Any] = Field(alias="proofData")
    public_signals: List[Union[str, int]] = Field(alias="publicSignals", min_length=1)


class SavedProofCheck(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    proof_type: str = Field(alias="proofType")
    verified: bool
    proof_hash: Optional[str] = Field(default=None, alias="proofHash")
    job_id: Optional[str] = Field(default=None, alias="jobId")
    status: Optional[str] = None
    error: Optional[str] = None


DEMO_DOCTOR_INPUT = DoctorInput(procedure_code="12345", doctor_id="67890", date="20240101")
DEMO_PATIENT_INPUT = PatientInput(patient_id="54321", claim_amount="1000", policy_limit="5000")


__all__ = [
    "DOCTOR_PROOF_HASH_FIELD",
    "DoctorInput",
    "PatientInput",
    "ClaimRequest",
    "ProofResult",
    "ClaimResult",
    "SavedProofRequest",
    "SavedProofCheck",
    "DEMO_DOCTOR_INPUT",
    "DEMO_PATIENT_INPUT",
]
