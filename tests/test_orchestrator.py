from __future__ import annotations

import asyncio
import json
from typing import Any, Dict, List, Optional

import httpx
import pytest
import respx
import structlog

from conftest import DOCTOR_INPUTS, PATIENT_INPUTS, FakeClock, FakeProver, make_settings, relay_path
from zkclaim.adapters.relay import RelayClient, RelayConfig
from zkclaim.errors import (
    BadRequest,
    ClaimCancelled,
    LinkageError,
    PollFailure,
    PollTimeout,
    SubmissionError,
)
from zkclaim.services.orchestrator import ClaimOrchestrator
from zkclaim.services.poller import JobPoller
from zkclaim.services.registrar import VkRegistrar
from zkclaim.storage.receipts import AggregationReceiptStore
from zkclaim.storage.vk_cache import InMemoryVkCache

AGGREGATED_PATIENT = {
    "status": "Aggregated",
    "txHash": "0xptx",
    "blockHash": "0xpblock",
    "aggregationId": 9,
    "aggregationDetails": {"root": "0xroot", "merkleProof": ["0xa", "0xb"], "leafIndex": 2, "leaf": "0xleaf"},
}


def accepted(job_id: str) -> httpx.Response:
    return httpx.Response(200, json={"optimisticVerify": "success", "jobId": job_id})


def mock_relay(
    relay_mock: respx.MockRouter,
    *,
    doctor_status: Any,
    patient_status: Any = None,
):
    relay_mock.post(relay_path("register-vk")).mock(return_value=httpx.Response(200, json={"vkHash": "0xvk"}))
    submit = relay_mock.post(relay_path("submit-proof")).mock(side_effect=[accepted("d-1"), accepted("p-1")])

    def _as_side_effect(status: Any) -> Dict[str, Any]:
        if callable(status):
            return {"side_effect": status}
        return {"return_value": httpx.Response(200, json=status)}

    doctor = relay_mock.get(relay_path("job-status", "d-1")).mock(**_as_side_effect(doctor_status))
    patient = relay_mock.get(relay_path("job-status", "p-1")).mock(
        **_as_side_effect(patient_status or {"status": "Finalized"})
    )
    return submit, doctor, patient


def build(settings, prover, relay: RelayClient, clock: Optional[FakeClock] = None) -> ClaimOrchestrator:
    poller_kw: Dict[str, Any] = {}
    if clock is not None:
        poller_kw = {"sleep": clock.sleep, "clock": clock}
    return ClaimOrchestrator.from_settings(
        settings,
        relay=relay,
        prover=prover,
        registrar=VkRegistrar(relay, InMemoryVkCache()),
        poller=JobPoller.from_settings(relay, settings, **poller_kw),
    )


@pytest.mark.asyncio
async def test_end_to_end_aggregated_claim(aggregating_settings, fake_prover, fake_clock, relay_mock):
    submit, _, _ = mock_relay(
        relay_mock,
        doctor_status={"status": "Aggregated", "txHash": "0xdtx"},
        patient_status=AGGREGATED_PATIENT,
    )

    async with RelayClient(RelayConfig.from_settings(aggregating_settings)) as relay:
        result = await build(aggregating_settings, fake_prover, relay, fake_clock).run_claim(
            DOCTOR_INPUTS, PATIENT_INPUTS, claim_id="claim-1"
        )

    assert result.doctor.proof_hash == "H1"
    assert result.doctor.status == "Aggregated"
    assert result.patient.proof_hash == "P1"
    assert result.patient.aggregation_id == 9

    # patient circuit got the doctor's hash injected
    role, patient_inputs = fake_prover.calls[1]
    assert role == "patient"
    assert patient_inputs == {**PATIENT_INPUTS, "doctor_proof_hash": "H1"}

    # receipt commits to the patient's own proof, not the doctor's
    assert result.receipt is not None
    assert result.receipt.proof_hash == "P1"
    assert result.receipt.root == "0xroot"
    assert result.receipt.claim_id == "claim-1"

    store = AggregationReceiptStore.from_settings(aggregating_settings)
    assert store.load("patient").proof_hash == "P1"
    assert store.load("patient", "claim-1").leaf_index == 2

    payloads = [json.loads(c.request.content) for c in submit.calls]
    assert [p["chainId"] for p in payloads] == [11155111, 11155111]
    assert payloads[1]["proofData"]["publicSignals"] == ["P1", "H1", "1"]


@pytest.mark.asyncio
async def test_direct_mode_has_no_receipt(settings, fake_prover, fake_clock, relay_mock):
    submit, _, _ = mock_relay(relay_mock, doctor_status={"status": "Finalized"})

    async with RelayClient(RelayConfig.from_settings(settings)) as relay:
        result = await build(settings, fake_prover, relay, fake_clock).run_claim(DOCTOR_INPUTS, PATIENT_INPUTS)

    assert result.patient.status == "Finalized"
    assert result.receipt is None
    assert all("chainId" not in json.loads(c.request.content) for c in submit.calls)
    assert not (settings.storage_dir / "aggregation").exists()


@pytest.mark.asyncio
async def test_patient_generation_waits_for_doctor_success(settings, fake_clock, relay_mock):
    events: List[str] = []

    class TracingProver(FakeProver):
        async def generate(self, role, inputs):
            events.append(f"generate:{role}")
            return await super().generate(role, inputs)

    answers = iter(["Pending", "Pending", "Finalized"])

    def doctor_status(request: httpx.Request) -> httpx.Response:
        status = next(answers)
        events.append(f"doctor-status:{status}")
        return httpx.Response(200, json={"status": status})

    mock_relay(relay_mock, doctor_status=doctor_status)

    async with RelayClient(RelayConfig.from_settings(settings)) as relay:
        await build(settings, TracingProver(), relay, fake_clock).run_claim(DOCTOR_INPUTS, PATIENT_INPUTS)

    assert events == [
        "generate:doctor",
        "doctor-status:Pending",
        "doctor-status:Pending",
        "doctor-status:Finalized",
        "generate:patient",
    ]


@pytest.mark.asyncio
async def test_doctor_failure_aborts_before_patient(settings, fake_prover, fake_clock, relay_mock):
    submit, _, patient = mock_relay(relay_mock, doctor_status={"status": "Failed", "error": "bad proof"})

    async with RelayClient(RelayConfig.from_settings(settings)) as relay:
        with pytest.raises(PollFailure) as ei:
            await build(settings, fake_prover, relay, fake_clock).run_claim(DOCTOR_INPUTS, PATIENT_INPUTS)

    assert ei.value.role == "doctor"
    assert ei.value.detail == {"status": "Failed", "error": "bad proof"}
    assert [role for role, _ in fake_prover.calls] == ["doctor"]
    assert submit.call_count == 1
    assert not patient.called


@pytest.mark.asyncio
async def test_doctor_timeout_is_poll_timeout(tmp_path, fake_prover, fake_clock, relay_mock):
    settings = make_settings(tmp_path, poll_max_attempts=3)
    mock_relay(relay_mock, doctor_status={"status": "Pending"})

    async with RelayClient(RelayConfig.from_settings(settings)) as relay:
        with pytest.raises(PollTimeout) as ei:
            await build(settings, fake_prover, relay, fake_clock).run_claim(DOCTOR_INPUTS, PATIENT_INPUTS)

    assert ei.value.attempts_made == 3
    assert ei.value.job_id == "d-1"
    assert len(fake_prover.calls) == 1


@pytest.mark.asyncio
async def test_optimistic_rejection_is_submission_error(settings, fake_prover, fake_clock, relay_mock):
    relay_mock.post(relay_path("register-vk")).mock(return_value=httpx.Response(200, json={"vkHash": "0xvk"}))
    body = {"optimisticVerify": "failed", "error": "Invalid proof"}
    relay_mock.post(relay_path("submit-proof")).mock(return_value=httpx.Response(200, json=body))

    async with RelayClient(RelayConfig.from_settings(settings)) as relay:
        with pytest.raises(SubmissionError) as ei:
            await build(settings, fake_prover, relay, fake_clock).run_doctor_flow(DOCTOR_INPUTS)

    assert ei.value.body == body
    assert ei.value.status_code == 502


@pytest.mark.asyncio
async def test_relay_rejection_is_submission_error(settings, fake_prover, fake_clock, relay_mock):
    relay_mock.post(relay_path("register-vk")).mock(return_value=httpx.Response(200, json={"vkHash": "0xvk"}))
    relay_mock.post(relay_path("submit-proof")).mock(return_value=httpx.Response(400, json={"error": "bad vk"}))

    async with RelayClient(RelayConfig.from_settings(settings)) as relay:
        with pytest.raises(SubmissionError) as ei:
            await build(settings, fake_prover, relay, fake_clock).run_doctor_flow(DOCTOR_INPUTS)

    assert ei.value.http_status == 400
    assert ei.value.body == {"error": "bad vk"}


@pytest.mark.asyncio
@pytest.mark.parametrize("doctor_hash", [None, ""])
async def test_patient_flow_requires_doctor_hash(settings, fake_prover, relay_config, doctor_hash):
    async with RelayClient(relay_config) as relay:
        with pytest.raises(LinkageError):
            await build(settings, fake_prover, relay).run_patient_flow(PATIENT_INPUTS, doctor_hash)

    assert fake_prover.calls == []


@pytest.mark.asyncio
async def test_supplied_doctor_hash_is_overwritten(settings, fake_prover, fake_clock, relay_mock):
    relay_mock.post(relay_path("register-vk")).mock(return_value=httpx.Response(200, json={"vkHash": "0xvk"}))
    relay_mock.post(relay_path("submit-proof")).mock(return_value=accepted("p-1"))
    relay_mock.get(relay_path("job-status", "p-1")).mock(return_value=httpx.Response(200, json={"status": "Finalized"}))

    async with RelayClient(RelayConfig.from_settings(settings)) as relay:
        result = await build(settings, fake_prover, relay, fake_clock).run_patient_flow(
            {**PATIENT_INPUTS, "doctor_proof_hash": "999"}, "12345678901234567890"
        )

    assert result.proof_hash == "P1"
    assert fake_prover.calls[0][1]["doctor_proof_hash"] == "12345678901234567890"


@pytest.mark.asyncio
async def test_invalid_inputs_rejected_before_any_work(settings, fake_prover, relay_config):
    async with RelayClient(relay_config) as relay:
        orch = build(settings, fake_prover, relay)
        with pytest.raises(BadRequest):
            await orch.run_claim(DOCTOR_INPUTS, {**PATIENT_INPUTS, "claim_amount": "9000"})
        with pytest.raises(BadRequest):
            await orch.run_claim({**DOCTOR_INPUTS, "doctor_id": "abc"}, PATIENT_INPUTS)

    assert fake_prover.calls == []


@pytest.mark.asyncio
async def test_outer_deadline_reports_cancelled(tmp_path, fake_prover, relay_mock):
    settings = make_settings(tmp_path, poll_interval_direct_s=0.01, poll_max_attempts=10_000)
    mock_relay(relay_mock, doctor_status={"status": "Pending"})

    async with RelayClient(RelayConfig.from_settings(settings)) as relay:
        with pytest.raises(ClaimCancelled) as ei:
            await build(settings, fake_prover, relay).run_claim(DOCTOR_INPUTS, PATIENT_INPUTS, deadline=0.2)

    err = ei.value
    assert err.phase == "doctor"
    assert err.job_id == "d-1"
    assert err.code == "claim_cancelled"
    assert not isinstance(err, PollTimeout)


@pytest.mark.asyncio
async def test_receipt_write_failure_does_not_fail_claim(tmp_path, fake_prover, fake_clock, relay_mock):
    blocker = tmp_path / "blocked"
    blocker.write_text("")
    settings = make_settings(tmp_path, chain_id=1, storage_dir=blocker)
    mock_relay(
        relay_mock,
        doctor_status={"status": "Aggregated"},
        patient_status=AGGREGATED_PATIENT,
    )

    async with RelayClient(RelayConfig.from_settings(settings)) as relay:
        result = await build(settings, fake_prover, relay, fake_clock).run_claim(DOCTOR_INPUTS, PATIENT_INPUTS)

    assert result.patient.status == "Aggregated"
    assert result.receipt is not None and result.receipt.proof_hash == "P1"


@pytest.mark.asyncio
async def test_independent_claims_run_concurrently(settings, fake_prover, fake_clock, relay_mock):
    relay_mock.post(relay_path("register-vk")).mock(return_value=httpx.Response(200, json={"vkHash": "0xvk"}))
    relay_mock.post(relay_path("submit-proof")).mock(side_effect=[accepted(f"job-{i}") for i in range(4)])
    for i in range(4):
        relay_mock.get(relay_path("job-status", f"job-{i}")).mock(
            return_value=httpx.Response(200, json={"status": "Finalized"})
        )

    async with RelayClient(RelayConfig.from_settings(settings)) as relay:
        orch = build(settings, fake_prover, relay, fake_clock)
        first, second = await asyncio.gather(
            orch.run_claim(DOCTOR_INPUTS, PATIENT_INPUTS, claim_id="a"),
            orch.run_claim(DOCTOR_INPUTS, PATIENT_INPUTS, claim_id="b"),
        )

    assert (first.claim_id, second.claim_id) == ("a", "b")
    job_ids = {first.doctor.job_id, first.patient.job_id, second.doctor.job_id, second.patient.job_id}
    assert job_ids == {"job-0", "job-1", "job-2", "job-3"}


@pytest.mark.asyncio
async def test_direct_mode_ignores_merkle_fields(settings, fake_prover, fake_clock, relay_mock):
    finalized_with_merkle = {
        "status": "Finalized",
        "merkleRoot": "0xr",
        "merklePath": ["0xp"],
        "leafIndex": 0,
        "leafDigest": "0xl",
    }
    mock_relay(relay_mock, doctor_status={"status": "Finalized"}, patient_status=finalized_with_merkle)

    async with RelayClient(RelayConfig.from_settings(settings)) as relay:
        result = await build(settings, fake_prover, relay, fake_clock).run_claim(DOCTOR_INPUTS, PATIENT_INPUTS)

    assert result.patient.status == "Finalized"
    assert result.receipt is None
    assert not (settings.storage_dir / "aggregation").exists()


@pytest.mark.asyncio
async def test_inner_timeout_is_not_reported_as_cancelled(settings, relay_config):
    class StuckProver(FakeProver):
        async def generate(self, role, inputs):
            raise asyncio.TimeoutError()

    async with RelayClient(relay_config) as relay:
        orch = build(settings, StuckProver(), relay)
        with pytest.raises(asyncio.TimeoutError):
            await orch.run_claim(DOCTOR_INPUTS, PATIENT_INPUTS)
        with pytest.raises(asyncio.TimeoutError):
            await orch.run_claim(DOCTOR_INPUTS, PATIENT_INPUTS, deadline=30)


@pytest.mark.asyncio
async def test_failed_phase_clears_log_context(settings, fake_prover, fake_clock, relay_mock):
    mock_relay(relay_mock, doctor_status={"status": "Failed"})

    async with RelayClient(RelayConfig.from_settings(settings)) as relay:
        with pytest.raises(PollFailure):
            await build(settings, fake_prover, relay, fake_clock).run_doctor_flow(DOCTOR_INPUTS)

    bound = structlog.contextvars.get_contextvars()
    assert "role" not in bound
    assert "job_id" not in bound


@pytest.mark.asyncio
async def test_verify_saved_proof_skips_generation(aggregating_settings, fake_prover, fake_clock, relay_mock):
    register = relay_mock.post(relay_path("register-vk")).mock(
        return_value=httpx.Response(200, json={"vkHash": "0xnew"})
    )
    submit = relay_mock.post(relay_path("submit-proof")).mock(return_value=accepted("p-1"))
    relay_mock.get(relay_path("job-status", "p-1")).mock(return_value=httpx.Response(200, json=AGGREGATED_PATIENT))
    proof = {"pi_a": ["1"], "protocol": "groth16"}

    async with RelayClient(RelayConfig.from_settings(aggregating_settings)) as relay:
        orch = ClaimOrchestrator.from_settings(
            aggregating_settings,
            relay=relay,
            prover=fake_prover,
            registrar=VkRegistrar(relay, InMemoryVkCache({"patient": "0xcached"})),
            poller=JobPoller.from_settings(relay, aggregating_settings, sleep=fake_clock.sleep, clock=fake_clock),
        )
        result = await orch.verify_proof("patient", proof, [7, "H1", "1"])

    assert result.proof_hash == "7"
    assert result.status == "Aggregated"
    assert fake_prover.calls == []
    assert fake_prover.vk_loads == []
    assert not register.called

    payload = json.loads(submit.calls[0].request.content)
    assert payload["proofData"] == {"proof": proof, "publicSignals": ["7", "H1", "1"], "vk": "0xcached"}

    receipt = AggregationReceiptStore.from_settings(aggregating_settings).load("patient")
    assert receipt.proof_hash == "7"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "role, proof, signals",
    [
        ("insurer", {"pi_a": []}, ["1"]),
        ("doctor", {}, ["1"]),
        ("doctor", {"pi_a": []}, []),
        ("doctor", {"pi_a": []}, "123"),
    ],
    ids=["unknown-role", "empty-proof", "no-signals", "signals-not-a-list"],
)
async def test_verify_saved_proof_rejects_malformed(settings, fake_prover, relay_config, role, proof, signals):
    async with RelayClient(relay_config) as relay:
        with pytest.raises(BadRequest):
            await build(settings, fake_prover, relay).verify_proof(role, proof, signals)


@pytest.mark.asyncio
async def test_verify_proof_files_reports_each_role(tmp_path, settings, fake_prover, fake_clock, relay_mock):
    proofs = tmp_path / "proofs"
    (proofs / "doctor").mkdir(parents=True)
    (proofs / "doctor" / "proof.json").write_text(json.dumps({"pi_a": ["1"]}))
    (proofs / "doctor" / "public.json").write_text(json.dumps(["H1", "67890"]))
    relay_mock.post(relay_path("register-vk")).mock(return_value=httpx.Response(200, json={"vkHash": "0xvk"}))
    relay_mock.post(relay_path("submit-proof")).mock(return_value=accepted("d-1"))
    relay_mock.get(relay_path("job-status", "d-1")).mock(return_value=httpx.Response(200, json={"status": "Finalized"}))

    async with RelayClient(RelayConfig.from_settings(settings)) as relay:
        checks = await build(settings, fake_prover, relay, fake_clock).verify_proof_files(proofs)

    doctor, patient = checks
    assert (doctor.proof_type, doctor.verified, doctor.job_id, doctor.proof_hash) == ("doctor", True, "d-1", "H1")
    assert (patient.proof_type, patient.verified) == ("patient", False)
    assert "not found" in patient.error


@pytest.mark.asyncio
async def test_verify_proof_files_keeps_going_after_rejection(tmp_path, settings, fake_prover, fake_clock, relay_mock):
    proofs = tmp_path / "proofs"
    for role in ("doctor", "patient"):
        (proofs / role).mkdir(parents=True)
        (proofs / role / "proof.json").write_text(json.dumps({"pi_a": ["1"]}))
        (proofs / role / "public.json").write_text(json.dumps([f"{role}-hash"]))
    relay_mock.post(relay_path("register-vk")).mock(return_value=httpx.Response(200, json={"vkHash": "0xvk"}))
    relay_mock.post(relay_path("submit-proof")).mock(
        side_effect=[httpx.Response(200, json={"optimisticVerify": "failed"}), accepted("p-1")]
    )
    relay_mock.get(relay_path("job-status", "p-1")).mock(return_value=httpx.Response(200, json={"status": "Finalized"}))

    async with RelayClient(RelayConfig.from_settings(settings)) as relay:
        doctor, patient = await build(settings, fake_prover, relay, fake_clock).verify_proof_files(proofs)

    assert not doctor.verified
    assert doctor.proof_hash == "doctor-hash"
    assert "optimisticVerify" in doctor.error
    assert patient.verified and patient.job_id == "p-1"
