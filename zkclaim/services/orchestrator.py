"""
Two-phase claim orchestrator.

A claim is a doctor proof followed by a patient proof that commits to it:

  doctor  : generate -> register vk -> submit -> poll
  patient : inject doctor_proof_hash -> generate -> register vk -> submit -> poll
            -> persist aggregation receipt (aggregation role, Aggregated only)

A proof generated elsewhere can be pushed through the same register -> submit
-> poll steps with ``verify_proof``.

The patient phase never starts unless the doctor phase reached its target
state; the doctor's first public signal is written into the patient inputs
before the patient proof is generated.

Outcome mapping
---------------
- optimisticVerify != "success" / relay rejection -> SubmissionError
- JobFailed  -> PollFailure
- JobTimeout -> PollTimeout
- outer deadline on run_claim -> ClaimCancelled (only when that deadline expired)
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass
from functools import partial
from pathlib import Path
from typing import Any, List, Mapping, Optional, Sequence, Union

from pydantic import ValidationError

from ..adapters.prover import ProofGenerator
from ..adapters.relay import RelayClient
from ..errors import (
    BadRequest,
    ClaimCancelled,
    LinkageError,
    PollFailure,
    PollTimeout,
    RelayHttpError,
    SubmissionError,
    ZkClaimError,
)
from ..logging import bind_claim_context, clear_claim_context, get_logger
from ..models.claims import (
    DOCTOR_PROOF_HASH_FIELD,
    ClaimResult,
    DoctorInput,
    PatientInput,
    ProofResult,
    SavedProofCheck,
)
from ..models.outcomes import JobFailed, JobTimeout
from ..models.proofs import ProofArtifact, SubmissionJob, TargetStatus
from ..models.receipts import AggregationReceipt
from ..storage.fs import read_json
from ..storage.receipts import AggregationReceiptStore
from ..storage.vk_cache import VkCache
from .poller import JobPoller
from .registrar import VkRegistrar

log = get_logger(__name__)

DOCTOR = "doctor"
PATIENT = "patient"


@dataclass
class _Progress:
    phase: Optional[str] = None
    job_id: Optional[str] = None


@dataclass(frozen=True)
class PhaseOutcome:
    result: ProofResult
    receipt: Optional[AggregationReceipt] = None


def _validate(model, data: Union[Mapping[str, Any], Any], role: str):
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except ValidationError as e:
        errors = e.errors(include_url=False, include_context=False, include_input=False)
        raise BadRequest(f"invalid {role} inputs", details={"errors": errors}) from e


def new_claim_id() -> str:
    return uuid.uuid4().hex


class ClaimOrchestrator:
    def __init__(
        self,
        *,
        prover: ProofGenerator,
        registrar: VkRegistrar,
        relay: RelayClient,
        poller: JobPoller,
        receipts: Optional[AggregationReceiptStore] = None,
        chain_id: int = 0,
        aggregation_role: str = PATIENT,
    ):
        self.prover = prover
        self.registrar = registrar
        self.relay = relay
        self.poller = poller
        self.receipts = receipts
        self.chain_id = chain_id
        self.aggregation_role = aggregation_role

    @classmethod
    def from_settings(
        cls,
        settings: Any,
        *,
        relay: RelayClient,
        prover: ProofGenerator,
        registrar: Optional[VkRegistrar] = None,
        poller: Optional[JobPoller] = None,
        receipts: Optional[AggregationReceiptStore] = None,
    ) -> "ClaimOrchestrator":
        return cls(
            prover=prover,
            registrar=registrar or VkRegistrar(relay, VkCache.from_settings(settings)),
            relay=relay,
            poller=poller or JobPoller.from_settings(relay, settings),
            receipts=receipts or AggregationReceiptStore.from_settings(settings),
            chain_id=settings.chain_id,
            aggregation_role=settings.aggregation_role,
        )

    @property
    def target_status(self) -> TargetStatus:
        return TargetStatus.AGGREGATED if self.chain_id else TargetStatus.FINALIZED

    # ------------------------------------------------------------------ phases

    async def _run_phase(
        self,
        role: str,
        inputs: Optional[Mapping[str, str]] = None,
        *,
        artifact: Optional[ProofArtifact] = None,
        claim_id: Optional[str] = None,
        progress: Optional[_Progress] = None,
    ) -> PhaseOutcome:
        progress = progress or _Progress()
        progress.phase, progress.job_id = role, None
        bind_claim_context(role=role)
        try:
            log.info("phase_started", role=role, pregenerated=artifact is not None)
            if artifact is None:
                artifact = await self.prover.generate(role, inputs or {})
            record = await self.registrar.ensure(role, partial(self.prover.load_verification_key, role))

            try:
                resp = await self.relay.submit_proof(
                    role,
                    artifact.proof,
                    artifact.public_signals,
                    record.vk_id,
                    chain_id=self.chain_id or None,
                )
            except RelayHttpError as e:
                raise SubmissionError(role, str(e), body=e.body, http_status=e.http_status) from e
            if not resp.accepted:
                raise SubmissionError(
                    role,
                    f"optimisticVerify={resp.optimistic_verify!r}",
                    body=resp.raw,
                )

            job = SubmissionJob(job_id=resp.job_id, role=role, target_state=self.target_status)
            progress.job_id = job.job_id
            bind_claim_context(job_id=job.job_id)

            outcome = await self.poller.poll(job)
            if isinstance(outcome, JobFailed):
                raise PollFailure(role, job.job_id, outcome.detail)
            if isinstance(outcome, JobTimeout):
                raise PollTimeout(role, job.job_id, outcome.attempts_made)

            result = ProofResult(
                role=role,
                proof_hash=artifact.proof_hash,
                job_id=job.job_id,
                status=outcome.status.value,
                tx_hash=outcome.tx_hash,
                block_hash=outcome.block_hash,
                aggregation_id=outcome.aggregation_id,
            )

            receipt = None
            if (
                outcome.status is TargetStatus.AGGREGATED
                and outcome.aggregation is not None
                and role == self.aggregation_role
            ):
                receipt = AggregationReceipt.from_details(
                    role,
                    outcome.aggregation,
                    proof_hash=artifact.proof_hash,
                    tx_hash=outcome.tx_hash,
                    claim_id=claim_id,
                )
                if self.receipts is not None:
                    self.receipts.save(role, receipt, claim_id=claim_id)

            log.info("phase_completed", role=role, job_id=job.job_id, status=result.status)
            return PhaseOutcome(result=result, receipt=receipt)
        finally:
            clear_claim_context("role", "job_id")

    async def run_doctor_flow(
        self, doctor_inputs: Union[DoctorInput, Mapping[str, Any]], *, claim_id: Optional[str] = None
    ) -> ProofResult:
        doctor = _validate(DoctorInput, doctor_inputs, DOCTOR)
        outcome = await self._run_phase(DOCTOR, doctor.to_circuit_inputs(), claim_id=claim_id)
        return outcome.result

    def _link(self, patient: PatientInput, doctor_proof_hash: Optional[str]) -> PatientInput:
        if not doctor_proof_hash:
            raise LinkageError()
        supplied = patient.doctor_proof_hash
        if supplied is not None and supplied != doctor_proof_hash:
            log.warning("doctor_proof_hash_overridden", supplied=supplied, bound=doctor_proof_hash)
        try:
            return PatientInput.model_validate(
                {**patient.model_dump(), DOCTOR_PROOF_HASH_FIELD: doctor_proof_hash}
            )
        except ValidationError as e:
            raise LinkageError(f"invalid doctor proof hash: {doctor_proof_hash!r}") from e

    async def _patient_phase(
        self,
        patient_inputs: Union[PatientInput, Mapping[str, Any]],
        doctor_proof_hash: Optional[str],
        *,
        claim_id: Optional[str] = None,
        progress: Optional[_Progress] = None,
    ) -> PhaseOutcome:
        patient = self._link(_validate(PatientInput, patient_inputs, PATIENT), doctor_proof_hash)
        return await self._run_phase(PATIENT, patient.to_circuit_inputs(), claim_id=claim_id, progress=progress)

    async def run_patient_flow(
        self,
        patient_inputs: Union[PatientInput, Mapping[str, Any]],
        doctor_proof_hash: Optional[str],
        *,
        claim_id: Optional[str] = None,
    ) -> ProofResult:
        outcome = await self._patient_phase(patient_inputs, doctor_proof_hash, claim_id=claim_id)
        return outcome.result

    # ------------------------------------------------------------ saved proofs

    async def verify_proof(
        self,
        role: str,
        proof: Mapping[str, Any],
        public_signals: Sequence[Any],
        *,
        claim_id: Optional[str] = None,
    ) -> ProofResult:
        """
        Register, submit and poll a proof that was generated elsewhere. The
        cached vk id is reused; the key file is only read on a cache miss.
        """
        if role not in (DOCTOR, PATIENT):
            raise BadRequest(f"unknown proof type {role!r}", details={"proofType": role})
        if not isinstance(proof, Mapping) or not proof:
            raise BadRequest("proofData must be a non-empty JSON object", details={"proofType": role})
        if isinstance(public_signals, (str, bytes)) or not isinstance(public_signals, Sequence) or not public_signals:
            raise BadRequest("publicSignals must be a non-empty list", details={"proofType": role})
        artifact = ProofArtifact.build(role, proof, list(public_signals))
        outcome = await self._run_phase(role, artifact=artifact, claim_id=claim_id)
        return outcome.result

    async def verify_proof_files(self, proofs_dir: Path) -> List[SavedProofCheck]:
        """
        Verify ``<proofs_dir>/<role>/proof.json`` + ``public.json`` for each role.

        A role whose files are missing, unreadable or rejected is reported as
        unverified; the other role is still checked.
        """
        checks: List[SavedProofCheck] = []
        for role in (DOCTOR, PATIENT):
            proof_path = Path(proofs_dir) / role / "proof.json"
            public_path = Path(proofs_dir) / role / "public.json"
            if not (proof_path.is_file() and public_path.is_file()):
                checks.append(SavedProofCheck(proof_type=role, verified=False, error=f"{role} proof files not found"))
                continue
            try:
                proof, public = read_json(proof_path), read_json(public_path)
            except (OSError, ValueError) as e:
                checks.append(SavedProofCheck(proof_type=role, verified=False, error=f"unreadable {role} proof files: {e}"))
                continue

            proof_hash = str(public[0]) if isinstance(public, list) and public else None
            try:
                result = await self.verify_proof(role, proof, public)
            except ZkClaimError as e:
                log.warning("saved_proof_unverified", role=role, code=e.code, error=str(e))
                checks.append(SavedProofCheck(proof_type=role, verified=False, proof_hash=proof_hash, error=str(e)))
                continue
            checks.append(
                SavedProofCheck(
                    proof_type=role,
                    verified=True,
                    proof_hash=result.proof_hash,
                    job_id=result.job_id,
                    status=result.status,
                )
            )
        return checks

    # ------------------------------------------------------------------ claims

    async def _claim(
        self,
        doctor_inputs: Union[DoctorInput, Mapping[str, Any]],
        patient_inputs: Union[PatientInput, Mapping[str, Any]],
        claim_id: str,
        progress: _Progress,
    ) -> ClaimResult:
        bind_claim_context(claim_id=claim_id)
        try:
            doctor = _validate(DoctorInput, doctor_inputs, DOCTOR)
            patient = _validate(PatientInput, patient_inputs, PATIENT)
            doctor_out = await self._run_phase(
                DOCTOR, doctor.to_circuit_inputs(), claim_id=claim_id, progress=progress
            )
            patient_out = await self._patient_phase(
                patient, doctor_out.result.proof_hash, claim_id=claim_id, progress=progress
            )
            log.info("claim_completed", patient_job_id=patient_out.result.job_id)
            return ClaimResult(
                claim_id=claim_id,
                doctor=doctor_out.result,
                patient=patient_out.result,
                receipt=patient_out.receipt,
            )
        finally:
            clear_claim_context()

    async def run_claim(
        self,
        doctor_inputs: Union[DoctorInput, Mapping[str, Any]],
        patient_inputs: Union[PatientInput, Mapping[str, Any]],
        *,
        deadline: Optional[float] = None,
        claim_id: Optional[str] = None,
    ) -> ClaimResult:
        """
        Run both phases for one claim.

        ``deadline`` (seconds) bounds the whole claim; when it expires the
        in-flight relay call or poll sleep is cancelled and ClaimCancelled is
        raised with the phase and job that were running.
        """
        claim_id = claim_id or new_claim_id()
        progress = _Progress()
        loop = asyncio.get_running_loop()
        started = loop.time()
        try:
            return await asyncio.wait_for(
                self._claim(doctor_inputs, patient_inputs, claim_id, progress), timeout=deadline
            )
        except asyncio.TimeoutError as e:
            # Only the outer deadline means cancelled; a timeout raised inside a phase propagates.
            if deadline is None or loop.time() - started < deadline:
                raise
            log.warning("claim_cancelled", claim_id=claim_id, phase=progress.phase, job_id=progress.job_id)
            raise ClaimCancelled(progress.phase, claim_id=claim_id, job_id=progress.job_id) from e


__all__ = ["ClaimOrchestrator", "PhaseOutcome", "new_claim_id", "DOCTOR", "PATIENT"]
