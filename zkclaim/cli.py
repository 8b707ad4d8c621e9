"""
Admin CLI for zkclaim.

Utilities:
  - register-vk ROLE     : register (or read from cache) a role's verification key
  - status JOB_ID        : print one relay job status
  - poll JOB_ID          : poll a job until it reaches its target status
  - claim                : run a full doctor -> patient claim
  - verify ROLE P.json S.json : verify a proof generated elsewhere
  - verify-files         : verify the proofs saved under PROOFS_DIR
  - aggregation          : print a stored aggregation receipt

Usage:
  python -m zkclaim.cli <command> [options]

Errors are printed as problem+json on stderr with exit code 1 (2 for
configuration errors).
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, TypeVar

import typer

from .adapters.prover import ProofGenerator, SnarkjsProver
from .adapters.relay import RelayClient, RelayConfig
from .config import Settings, load_settings
from .errors import ConfigurationError, ZkClaimError
from .logging import setup_logging
from .models.outcomes import JobFailed, JobSuccess
from .models.proofs import SubmissionJob, TargetStatus
from .services.orchestrator import ClaimOrchestrator
from .services.poller import JobPoller
from .services.registrar import VkRegistrar
from .storage.fs import read_json
from .storage.receipts import AggregationReceiptStore
from .storage.vk_cache import VkCache

app = typer.Typer(add_completion=False, help="zkclaim: two-phase ZK claim verification")

T = TypeVar("T")


@dataclass
class AppCtx:
    settings: Settings


_ctx: Optional[AppCtx] = None


def _settings() -> Settings:
    if _ctx is None:
        raise typer.Exit(code=2)
    return _ctx.settings


def _make_prover(settings: Settings) -> ProofGenerator:
    return SnarkjsProver.from_settings(settings)


def _echo_json(data: Any) -> None:
    typer.echo(json.dumps(data, indent=2, sort_keys=False, default=str))


def _fail(err: ZkClaimError, code: int = 1) -> None:
    typer.echo(json.dumps(err.to_problem(), indent=2, default=str), err=True)
    raise typer.Exit(code=code)


def _run(fn: Callable[[RelayClient], Awaitable[T]]) -> T:
    """Run ``fn`` with a started relay client; map zkclaim errors to exit codes."""
    settings = _settings()

    async def _main() -> T:
        async with RelayClient(RelayConfig.from_settings(settings)) as relay:
            return await fn(relay)

    try:
        return asyncio.run(_main())
    except ZkClaimError as e:
        _fail(e)
        raise  # unreachable; _fail always exits


def _read_json_file(path: Path) -> Any:
    try:
        return read_json(path)
    except (OSError, ValueError) as e:
        raise typer.BadParameter(f"{path}: {e}") from e


def _parse_json_option(name: str, raw: str) -> Any:
    try:
        return json.loads(raw)
    except ValueError as e:
        raise typer.BadParameter(f"{name} is not valid JSON: {e}") from e


@app.callback()
def main(
    env_file: Optional[str] = typer.Option(".env", "--env-file", help="Path to a .env file (optional)"),
    log_format: Optional[str] = typer.Option(None, "--log-format", help="json or console (default: LOG_FORMAT)"),
):
    """
    Shared options for all subcommands.
    """
    global _ctx
    try:
        settings = load_settings(env_file=env_file)
    except ConfigurationError as e:
        _fail(e, code=2)
    setup_logging(level=settings.log_level, log_format=log_format or settings.log_format)
    _ctx = AppCtx(settings=settings)


@app.command("register-vk")
def register_vk(
    role: str = typer.Argument(..., help="Circuit role (doctor or patient)"),
):
    """
    Register a role's verification key with the relay and print its id.
    Cached ids are returned without contacting the relay.
    """
    settings = _settings()
    prover = _make_prover(settings)

    async def _go(relay: RelayClient) -> str:
        registrar = VkRegistrar(relay, VkCache.from_settings(settings))
        return await registrar.register(role, prover.load_verification_key(role))

    vk_id = _run(_go)
    _echo_json({"role": role, "vkHash": vk_id})


@app.command("status")
def status(job_id: str = typer.Argument(..., help="Relay job id")):
    """
    Print the relay's current status document for a job.
    """
    async def _go(relay: RelayClient):
        return await relay.get_job_status(job_id)

    st = _run(_go)
    _echo_json(st.raw)


@app.command("poll")
def poll(
    job_id: str = typer.Argument(..., help="Relay job id"),
    aggregated: Optional[bool] = typer.Option(
        None,
        "--aggregated/--direct",
        help="Target status (default: Aggregated when CHAIN_ID is non-zero, else Finalized)",
    ),
    role: str = typer.Option("patient", "--role", help="Role label for logs and errors"),
):
    """
    Poll an existing job until it reaches its target status, fails or times out.
    Exit code 0 on success, 1 otherwise.
    """
    settings = _settings()
    if aggregated is None:
        target = settings.target_status
    else:
        target = TargetStatus.AGGREGATED if aggregated else TargetStatus.FINALIZED

    async def _go(relay: RelayClient):
        poller = JobPoller.from_settings(relay, settings)
        return await poller.poll(SubmissionJob(job_id=job_id, role=role, target_state=target))

    outcome = _run(_go)
    out: dict = {"jobId": job_id, "state": outcome.state.value}
    if isinstance(outcome, JobSuccess):
        out.update(txHash=outcome.tx_hash, blockHash=outcome.block_hash, aggregationId=outcome.aggregation_id)
        _echo_json(out)
        return
    if isinstance(outcome, JobFailed):
        out["detail"] = outcome.detail
    else:
        out["attemptsMade"] = outcome.attempts_made
    _echo_json(out)
    raise typer.Exit(code=1)


@app.command("claim")
def claim(
    doctor: str = typer.Option(..., "--doctor", help='Doctor inputs as JSON, e.g. {"procedure_code":"12345",...}'),
    patient: str = typer.Option(..., "--patient", help="Patient inputs as JSON"),
    deadline: Optional[float] = typer.Option(None, "--deadline", min=0.0, help="Abort the claim after N seconds"),
):
    """
    Run a full doctor -> patient claim and print the result.
    """
    settings = _settings()
    doctor_inputs = _parse_json_option("--doctor", doctor)
    patient_inputs = _parse_json_option("--patient", patient)
    prover = _make_prover(settings)

    async def _go(relay: RelayClient):
        orch = ClaimOrchestrator.from_settings(settings, relay=relay, prover=prover)
        return await orch.run_claim(doctor_inputs, patient_inputs, deadline=deadline or None)

    result = _run(_go)
    _echo_json(result.model_dump(mode="json", by_alias=True))


@app.command("verify")
def verify(
    role: str = typer.Argument(..., help="Proof type (doctor or patient)"),
    proof_file: Path = typer.Argument(..., exists=True, dir_okay=False, help="snarkjs proof.json"),
    public_file: Path = typer.Argument(..., exists=True, dir_okay=False, help="snarkjs public.json"),
):
    """
    Register, submit and poll a proof generated outside zkclaim.
    """
    settings = _settings()
    proof = _read_json_file(proof_file)
    public = _read_json_file(public_file)
    prover = _make_prover(settings)

    async def _go(relay: RelayClient):
        orch = ClaimOrchestrator.from_settings(settings, relay=relay, prover=prover)
        return await orch.verify_proof(role, proof, public)

    result = _run(_go)
    _echo_json({"verified": True, "proofType": role, "proof": result.model_dump(mode="json", by_alias=True)})


@app.command("verify-files")
def verify_files(
    proofs_dir: Optional[Path] = typer.Option(None, "--proofs-dir", help="Default: PROOFS_DIR"),
):
    """
    Verify <proofs-dir>/<role>/proof.json + public.json for both roles.
    Exit code 0 only when every proof verified.
    """
    settings = _settings()
    prover = _make_prover(settings)

    async def _go(relay: RelayClient):
        orch = ClaimOrchestrator.from_settings(settings, relay=relay, prover=prover)
        return await orch.verify_proof_files(proofs_dir or settings.proofs_dir)

    checks = _run(_go)
    _echo_json([c.model_dump(mode="json", by_alias=True) for c in checks])
    if not all(c.verified for c in checks):
        raise typer.Exit(code=1)


@app.command("aggregation")
def aggregation(
    claim_id: Optional[str] = typer.Option(None, "--claim-id", help="Receipt of one claim (default: latest)"),
    role: Optional[str] = typer.Option(None, "--role", help="Default: AGGREGATION_ROLE"),
):
    """
    Print a stored aggregation receipt.
    """
    settings = _settings()
    store = AggregationReceiptStore.from_settings(settings)
    try:
        receipt = store.load(role or settings.aggregation_role, claim_id)
    except ZkClaimError as e:
        _fail(e)
    _echo_json(receipt.to_json_dict())


def _entry():
    # Allow: python -m zkclaim.cli
    app()


if __name__ == "__main__":
    _entry()
