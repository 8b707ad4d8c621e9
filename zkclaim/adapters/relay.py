"""
HTTP client for the proof-verification relay.

This adapter is intentionally stateless apart from its connection pool. It provides:
- register_vk        : POST /register-vk/{apiKey}
- submit_proof       : POST /submit-proof/{apiKey}
- get_job_status     : GET  /job-status/{apiKey}/{jobId}
- read_aggregation_data : job status reduced to its aggregation membership material

Notes
-----
* Every call is a single round trip with a bounded timeout; retries are the
  caller's business (the job poller retries 503s, nothing else does).
* Non-2xx answers raise RelayHttpError with the relay's status and decoded body.
  HTTP 503 is flagged ``retryable``.
* The API key is a path segment of every URL. Errors and log events carry the
  endpoint name only.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Sequence
from urllib.parse import quote

import httpx

from ..errors import AggregationNotFound, RelayHttpError, RelayResponseError, RelayTransportError
from ..logging import get_logger
from ..models.proofs import AggregationDetails, JobStatus, SubmitResponse
from ..version import user_agent

log = get_logger(__name__)

PROOF_TYPE = "groth16"
PROOF_LIBRARY = "snarkjs"
PROOF_CURVE = "bn128"


def _build_headers(extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
    hdrs = {
        "content-type": "application/json",
        "accept": "application/json",
        "user-agent": user_agent(),
    }
    if extra:
        hdrs.update(extra)
    return hdrs


def _decode_body(resp: httpx.Response) -> Any:
    try:
        return resp.json()
    except ValueError:
        return resp.text


def _proof_options(library: str = PROOF_LIBRARY, curve: str = PROOF_CURVE) -> Dict[str, str]:
    return {"library": library, "curve": curve}


@dataclass
class RelayConfig:
    base_url: str
    api_key: str
    timeout_s: float = 30.0
    headers: Optional[Dict[str, str]] = None

    @classmethod
    def from_settings(cls, settings: Any) -> "RelayConfig":
        return cls(
            base_url=settings.relay_base_url,
            api_key=settings.relayer_key,
            timeout_s=settings.relay_timeout_s,
        )


class RelayClient:
    """
    Minimal async client for the verification relay.
    """

    def __init__(self, config: RelayConfig, *, client: Optional[httpx.AsyncClient] = None):
        self._cfg = config
        self._client = client
        self._owns_client = client is None

    # ---------- lifecycle ----------

    async def start(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._cfg.base_url,
                timeout=self._cfg.timeout_s,
                headers=_build_headers(self._cfg.headers),
            )
            self._owns_client = True

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None

    async def __aenter__(self) -> "RelayClient":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # ---------- core transport ----------

    def _path(self, endpoint: str, *segments: str) -> str:
        parts = [endpoint, quote(self._cfg.api_key, safe="")]
        parts.extend(quote(s, safe="") for s in segments)
        return "/" + "/".join(parts)

    async def _request(
        self,
        method: str,
        endpoint: str,
        *segments: str,
        json: Optional[Mapping[str, Any]] = None,
    ) -> Any:
        if self._client is None:
            await self.start()
        assert self._client is not None

        try:
            resp = await self._client.request(method, self._path(endpoint, *segments), json=json)
        except httpx.HTTPError as exc:
            log.warning("relay_transport_error", endpoint=endpoint, method=method, error=str(exc))
            raise RelayTransportError(exc, endpoint=endpoint, method=method) from exc

        body = _decode_body(resp)
        if not resp.is_success:
            log.info("relay_http_error", endpoint=endpoint, method=method, http_status=resp.status_code)
            raise RelayHttpError(resp.status_code, body, endpoint=endpoint, method=method)
        return body

    # ---------- typed methods ----------

    async def register_vk(
        self, vk: Mapping[str, Any], *, library: str = PROOF_LIBRARY, curve: str = PROOF_CURVE
    ) -> Any:
        """
        Register a Groth16 verification key. Returns the decoded relay body
        untouched; extracting the key id is the registrar's job.
        """
        payload = {"proofType": PROOF_TYPE, "proofOptions": _proof_options(library, curve), "vk": dict(vk)}
        return await self._request("POST", "register-vk", json=payload)

    async def submit_proof(
        self,
        role: str,
        proof: Mapping[str, Any],
        public_signals: Sequence[str],
        vk_id: str,
        *,
        chain_id: Optional[int] = None,
    ) -> SubmitResponse:
        """
        Submit a proof against a registered key. ``chain_id`` (non-zero) asks the
        relay to aggregate the proof for cross-chain publication.
        """
        payload: Dict[str, Any] = {
            "proofType": PROOF_TYPE,
            "vkRegistered": True,
            "proofOptions": _proof_options(),
            "proofData": {
                "proof": dict(proof),
                "publicSignals": list(public_signals),
                "vk": vk_id,
            },
        }
        if chain_id:
            payload["chainId"] = int(chain_id)

        body = await self._request("POST", "submit-proof", json=payload)
        try:
            resp = SubmitResponse.from_relay(body)
        except ValueError as e:
            raise RelayResponseError(str(e), endpoint="submit-proof", body=body) from e
        log.info(
            "proof_submitted",
            role=role,
            job_id=resp.job_id,
            optimistic_verify=resp.optimistic_verify,
            aggregation=bool(chain_id),
        )
        return resp

    async def get_job_status(self, job_id: str) -> JobStatus:
        body = await self._request("GET", "job-status", job_id)
        try:
            return JobStatus.from_relay(body)
        except (ValueError, TypeError) as e:
            raise RelayResponseError(str(e), endpoint="job-status", body=body) from e

    async def read_aggregation_data(self, job_id: str) -> AggregationDetails:
        """
        Fetch a job's aggregation membership material (root, path, leaf).

        Raises AggregationNotFound while the relay has not published it.
        """
        status = await self.get_job_status(job_id)
        details = status.aggregation
        if details is None:
            raise AggregationNotFound(f"job {job_id}", details={"job_id": job_id, "status": status.status})
        return details


__all__ = ["RelayClient", "RelayConfig", "PROOF_TYPE", "PROOF_LIBRARY", "PROOF_CURVE"]
