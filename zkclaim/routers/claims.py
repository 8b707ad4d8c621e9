from __future__ import annotations

"""
Claim routers

Endpoints:
  - POST /api/doctor-proof           : doctor phase only
  - POST /api/patient-proof          : patient phase, bound to ``doctor_proof_hash``
  - POST /api/submit-claims          : full doctor -> patient claim
  - POST /api/verify-saved-proof     : register, submit and poll a proof generated elsewhere
  - POST /api/verify-proofs-from-files : the same for <PROOFS_DIR>/<role>/{proof,public}.json
  - POST /api/demo                   : full claim over fixed sample inputs
  - GET  /api/read-aggregation-data  : stored aggregation receipt (latest or by claim id)

These are thin shims over ``zkclaim.services.orchestrator``; errors surface as
problem+json through the installed handlers.
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Query, Request

from ..logging import get_logger
from ..models.claims import (
    DEMO_DOCTOR_INPUT,
    DEMO_PATIENT_INPUT,
    ClaimRequest,
    DoctorInput,
    PatientInput,
    SavedProofRequest,
)
from ..services.orchestrator import ClaimOrchestrator
from ..storage.receipts import AggregationReceiptStore

log = get_logger(__name__)
router = APIRouter(prefix="/api", tags=["claims"])


def _orchestrator(request: Request) -> ClaimOrchestrator:
    return request.app.state.orchestrator


def _receipts(request: Request) -> AggregationReceiptStore:
    return request.app.state.receipts


@router.post("/doctor-proof", summary="Prove, register and verify the doctor statement", response_model=None)
async def doctor_proof(body: DoctorInput, request: Request) -> Dict[str, Any]:
    result = await _orchestrator(request).run_doctor_flow(body)
    return {"success": True, "proof": result.model_dump(mode="json", by_alias=True)}


@router.post("/patient-proof", summary="Prove the patient statement against a doctor proof", response_model=None)
async def patient_proof(body: PatientInput, request: Request) -> Dict[str, Any]:
    """
    ``doctor_proof_hash`` is required here; without it the claim cannot be
    linked and the request fails with 409.
    """
    result = await _orchestrator(request).run_patient_flow(body, body.doctor_proof_hash)
    return {"success": True, "proof": result.model_dump(mode="json", by_alias=True)}


@router.post("/submit-claims", summary="Run a full two-phase claim", response_model=None)
async def submit_claims(
    body: ClaimRequest,
    request: Request,
    deadline_s: Optional[float] = Query(
        default=None,
        gt=0,
        description="Abort the whole claim after N seconds (504 claim_cancelled).",
    ),
) -> Dict[str, Any]:
    result = await _orchestrator(request).run_claim(body.doctor_input, body.patient_input, deadline=deadline_s)
    return {"success": True, "data": result.model_dump(mode="json", by_alias=True)}


@router.post("/verify-saved-proof", summary="Verify a proof generated elsewhere", response_model=None)
async def verify_saved_proof(body: SavedProofRequest, request: Request) -> Dict[str, Any]:
    result = await _orchestrator(request).verify_proof(body.proof_type, body.proof_data, body.public_signals)
    return {
        "success": True,
        "verified": True,
        "proofType": body.proof_type,
        "proof": result.model_dump(mode="json", by_alias=True),
    }


@router.post("/verify-proofs-from-files", summary="Verify the proofs saved under PROOFS_DIR", response_model=None)
async def verify_proofs_from_files(request: Request) -> Dict[str, Any]:
    """
    Each role is checked independently; a missing or rejected proof shows up
    as ``verified: false`` in ``results`` rather than failing the request.
    """
    checks = await _orchestrator(request).verify_proof_files(request.app.state.settings.proofs_dir)
    verified = sum(1 for c in checks if c.verified)
    return {
        "success": True,
        "message": f"Verified {verified}/{len(checks)} proofs from files",
        "results": [c.model_dump(mode="json", by_alias=True) for c in checks],
        "allVerified": verified == len(checks),
    }


@router.post("/demo", summary="Run a full claim over sample inputs", response_model=None)
async def demo(request: Request) -> Dict[str, Any]:
    result = await _orchestrator(request).run_claim(DEMO_DOCTOR_INPUT, DEMO_PATIENT_INPUT)
    return {"success": True, "data": result.model_dump(mode="json", by_alias=True)}


@router.get("/read-aggregation-data", summary="Read a stored aggregation receipt", response_model=None)
def read_aggregation_data(
    request: Request,
    claim_id: Optional[str] = Query(default=None, description="Receipt of one claim; latest when omitted."),
    role: Optional[str] = Query(default=None, description="Defaults to AGGREGATION_ROLE."),
) -> Dict[str, Any]:
    role = role or request.app.state.settings.aggregation_role
    receipt = _receipts(request).load(role, claim_id)
    return receipt.to_json_dict()
