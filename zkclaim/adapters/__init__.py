"""
Adapters to external collaborators.

- relay  : HTTP client for the proof-verification relay
- prover : ProofGenerator protocol + snarkjs CLI implementation
"""

from __future__ import annotations

from .prover import ProofGenerator, SnarkjsProver
from .relay import RelayClient, RelayConfig

__all__ = ["ProofGenerator", "SnarkjsProver", "RelayClient", "RelayConfig"]
