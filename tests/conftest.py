from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

import pytest
import respx

from zkclaim.adapters.relay import RelayConfig
from zkclaim.config import Settings, load_settings
from zkclaim.models.proofs import ProofArtifact

RELAY = "https://relay.test/api/v1"
KEY = "test-key"

DOCTOR_INPUTS = {"procedure_code": "12345", "doctor_id": "67890", "date": "20240101"}
PATIENT_INPUTS = {"patient_id": "54321", "claim_amount": "1000", "policy_limit": "5000"}

GROTH16_PROOF = {
    "pi_a": ["1", "2", "1"],
    "pi_b": [["3", "4"], ["5", "6"], ["1", "0"]],
    "pi_c": ["7", "8", "1"],
    "protocol": "groth16",
    "curve": "bn128",
}

# Relay env vars that would otherwise leak from the developer's shell into Settings.
_ENV_VARS = (
    "RELAYER_API",
    "RELAYER_KEY",
    "CHAIN_ID",
    "POLL_MAX_ATTEMPTS",
    "POLL_DEADLINE_S",
    "STORAGE_DIR",
    "BUILD_DIR",
    "PROOFS_DIR",
    "PROOF_TIMEOUT_S",
    "AGGREGATION_ROLE",
)


def relay_path(endpoint: str, *segments: str) -> str:
    return "/" + "/".join((endpoint, KEY) + segments)


class FakeClock:
    """Monotonic clock + sleep pair; sleeping advances time instantly."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeProver:
    """
    In-memory ProofGenerator. Public signals per role are configurable; the
    first signal plays the role of the proof hash.
    """

    def __init__(self, signals: Optional[Mapping[str, Sequence[str]]] = None):
        self.signals: Dict[str, Sequence[str]] = dict(
            signals or {"doctor": ["H1", "67890"], "patient": ["P1", "H1", "1"]}
        )
        self.calls: List[Tuple[str, Dict[str, str]]] = []
        self.vk_loads: List[str] = []

    async def generate(self, role: str, inputs: Mapping[str, str]) -> ProofArtifact:
        self.calls.append((role, dict(inputs)))
        return ProofArtifact.build(role, GROTH16_PROOF, list(self.signals[role]))

    def load_verification_key(self, role: str) -> Dict[str, Any]:
        self.vk_loads.append(role)
        return {"protocol": "groth16", "curve": "bn128", "nPublic": len(self.signals[role]), "role": role}


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def make_settings(tmp_path: Path, **overrides: Any) -> Settings:
    values: Dict[str, Any] = dict(
        relayer_api=RELAY,
        relayer_key=KEY,
        chain_id=0,
        storage_dir=tmp_path / "store",
        build_dir=tmp_path / "build",
        proofs_dir=tmp_path / "proofs",
        poll_interval_direct_s=5,
        poll_interval_aggregating_s=20,
        poll_retry_interval_s=5,
    )
    values.update(overrides)
    return load_settings(env_file=None, **values)


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return make_settings(tmp_path)


@pytest.fixture
def aggregating_settings(tmp_path: Path) -> Settings:
    return make_settings(tmp_path, chain_id=11155111)


@pytest.fixture
def relay_config() -> RelayConfig:
    return RelayConfig(base_url=RELAY, api_key=KEY, timeout_s=5.0)


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_prover() -> FakeProver:
    return FakeProver()


@pytest.fixture
def relay_mock() -> Iterator[respx.MockRouter]:
    with respx.mock(base_url=RELAY, assert_all_called=False) as mock:
        yield mock
