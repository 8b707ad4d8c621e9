"""
Proof generation adapter.

The proving engine is external; the orchestrator only depends on the
:class:`ProofGenerator` protocol. :class:`SnarkjsProver` implements it by
driving the ``snarkjs`` CLI over the compiled circuit artifacts:

    <build_dir>/<role>/<role>.wasm
    <build_dir>/<role>/<role>_final.zkey
    <build_dir>/<role>/<role>_vk.json

It runs ``snarkjs groth16 fullprove input.json <wasm> <zkey> proof.json public.json``
in a scratch directory as an asyncio subprocess, so proving one claim does not
stall the event loop for other claims.
"""

from __future__ import annotations

import asyncio
import json
import tempfile
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Protocol, runtime_checkable

from ..errors import ProofGenerationError
from ..logging import get_logger
from ..models.proofs import ProofArtifact
from ..storage.fs import read_json

log = get_logger(__name__)


@runtime_checkable
class ProofGenerator(Protocol):
    async def generate(self, role: str, inputs: Mapping[str, str]) -> ProofArtifact:
        """Prove ``inputs`` for ``role``'s circuit; returns proof + public signals."""
        ...

    def load_verification_key(self, role: str) -> Dict[str, Any]:
        """Return the raw (snarkjs JSON) verification key for ``role``."""
        ...


async def _reap(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is None:
        proc.kill()
    await proc.wait()


class SnarkjsProver:
    def __init__(self, build_dir: Path, *, snarkjs_bin: str = "snarkjs", timeout_s: Optional[float] = 600.0):
        self.build_dir = Path(build_dir)
        self.snarkjs_bin = snarkjs_bin
        self.timeout_s = timeout_s

    @classmethod
    def from_settings(cls, settings: Any) -> "SnarkjsProver":
        return cls(settings.build_dir, snarkjs_bin=settings.snarkjs_bin, timeout_s=settings.proof_timeout_s)

    def _artifact(self, role: str, suffix: str) -> Path:
        return self.build_dir / role / f"{role}{suffix}"

    def load_verification_key(self, role: str) -> Dict[str, Any]:
        path = self._artifact(role, "_vk.json")
        if not path.is_file():
            raise ProofGenerationError(role, f"verification key not found at {path}")
        try:
            vk = read_json(path)
        except (OSError, ValueError) as e:
            raise ProofGenerationError(role, f"unreadable verification key {path}: {e}") from e
        if not isinstance(vk, dict) or vk.get("protocol") != "groth16":
            raise ProofGenerationError(role, f"{path} is not a groth16 verification key")
        return vk

    async def generate(self, role: str, inputs: Mapping[str, str]) -> ProofArtifact:
        wasm = self._artifact(role, ".wasm")
        zkey = self._artifact(role, "_final.zkey")
        missing = [str(p) for p in (wasm, zkey) if not p.is_file()]
        if missing:
            raise ProofGenerationError(role, f"circuit artifacts missing: {', '.join(missing)}")

        with tempfile.TemporaryDirectory(prefix=f"zkclaim-{role}-") as scratch:
            work = Path(scratch)
            input_path = work / "input.json"
            proof_path = work / "proof.json"
            public_path = work / "public.json"
            input_path.write_text(json.dumps(dict(inputs)), encoding="utf-8")

            cmd = [
                self.snarkjs_bin, "groth16", "fullprove",
                str(input_path), str(wasm), str(zkey), str(proof_path), str(public_path),
            ]
            log.debug("snarkjs_fullprove", role=role, wasm=str(wasm))
            try:
                proc = await asyncio.create_subprocess_exec(
                    *cmd, stdout=asyncio.subprocess.PIPE, stderr=asyncio.subprocess.PIPE
                )
            except OSError as e:
                raise ProofGenerationError(role, f"cannot run {self.snarkjs_bin}: {e}") from e

            try:
                _, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout_s)
            except asyncio.TimeoutError as e:
                await _reap(proc)
                raise ProofGenerationError(role, f"snarkjs timed out after {self.timeout_s}s") from e
            except asyncio.CancelledError:
                await _reap(proc)
                raise

            if proc.returncode != 0:
                raise ProofGenerationError(
                    role,
                    f"snarkjs exited with status {proc.returncode}",
                    stderr=stderr.decode("utf-8", "replace"),
                )
            try:
                proof = read_json(proof_path)
                public = read_json(public_path)
            except (OSError, ValueError) as e:
                raise ProofGenerationError(role, f"snarkjs produced unreadable output: {e}") from e

        if not isinstance(public, list) or not public:
            raise ProofGenerationError(role, "proof has no public signals")
        artifact = ProofArtifact.build(role, proof, public)
        log.info("proof_generated", role=role, proof_hash=artifact.proof_hash, signals=len(public))
        return artifact


__all__ = ["ProofGenerator", "SnarkjsProver"]
