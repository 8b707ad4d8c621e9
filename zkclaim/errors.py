"""
Error hierarchy and helpers for zkclaim.

Every failure the orchestrator can report is a subclass of :class:`ZkClaimError`.
The errors are framework-agnostic; ``zkclaim.middleware.errors`` maps them to
RFC 7807 "problem+json" responses for the HTTP API, and the CLI prints
``to_problem()`` directly.

Design
------
- Every error has:
  - ``status_code`` (int): HTTP status used when surfaced over the API
  - ``code`` (str): stable machine code (e.g., "verification_failed")
  - ``message`` (str): human-friendly summary
  - ``details`` (dict|None): structured diagnostics (relay status/body, role, job id)
- Relay-facing errors keep the relay's HTTP status and body untouched.
- The relay API key is part of every relay URL; errors only ever carry the
  endpoint name, never the URL.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Sequence

DEFAULT_ERROR_DOCS_BASE = "https://docs.zkclaim.dev/errors"


@dataclass(eq=False)
class ZkClaimError(Exception):
    message: str
    status_code: int = 500
    code: str = "server_error"
    details: Optional[Mapping[str, Any]] = None
    type_uri_base: str = DEFAULT_ERROR_DOCS_BASE

    def __post_init__(self) -> None:
        super().__init__(self.message)

    def __str__(self) -> str:
        return self.message

    # --- RFC 7807 helpers -------------------------------------------------- #

    def type_uri(self) -> str:
        return f"{self.type_uri_base}#{self.code}"

    def title(self) -> str:
        return {
            "bad_request": "Bad Request",
            "configuration_error": "Configuration Error",
            "relay_http_error": "Relay HTTP Error",
            "relay_transport_error": "Relay Unreachable",
            "relay_bad_response": "Unexpected Relay Response",
            "registration_failed": "Verification Key Registration Failed",
            "submission_rejected": "Proof Submission Rejected",
            "relay_unavailable": "Relay Unavailable",
            "verification_failed": "Verification Failed",
            "verification_timeout": "Verification Timeout",
            "claim_cancelled": "Claim Cancelled",
            "linkage_error": "Claim Linkage Error",
            "proof_generation_failed": "Proof Generation Failed",
            "aggregation_not_found": "Aggregation Data Not Found",
            "server_error": "Internal Server Error",
        }.get(self.code, self.message or "Error")

    def to_problem(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "type": self.type_uri(),
            "title": self.title(),
            "status": self.status_code,
            "code": self.code,
            "detail": self.message,
        }
        if self.details:
            body["details"] = dict(self.details)
        return body


# ------------------------------ Request / config ----------------------------- #


class BadRequest(ZkClaimError):
    def __init__(self, message: str = "Bad request", *, details: Optional[Mapping[str, Any]] = None):
        super().__init__(message=message, status_code=400, code="bad_request", details=details)


class ConfigurationError(ZkClaimError):
    """Missing or invalid startup configuration. Fatal, never retried."""

    def __init__(self, message: str, *, missing: Sequence[str] = ()):
        super().__init__(
            message=message,
            status_code=500,
            code="configuration_error",
            details={"missing": list(missing)} if missing else None,
        )
        self.missing = list(missing)


# --------------------------------- Relay layer ------------------------------- #


class RelayError(ZkClaimError):
    """Base class for errors raised by the relay client."""


class RelayHttpError(RelayError):
    """The relay answered with a non-2xx status. Status and body are preserved."""

    def __init__(self, http_status: int, body: Any, *, endpoint: str, method: str = "GET"):
        super().__init__(
            message=f"relay {method} {endpoint} returned HTTP {http_status}",
            status_code=502,
            code="relay_http_error",
            details={"endpoint": endpoint, "http_status": http_status, "body": body},
        )
        self.http_status = http_status
        self.body = body
        self.endpoint = endpoint
        self.method = method

    @property
    def retryable(self) -> bool:
        return self.http_status == 503


class RelayTransportError(RelayError):
    """Network-level failure (connect, read timeout, protocol) talking to the relay."""

    def __init__(self, cause: BaseException, *, endpoint: str, method: str = "GET"):
        super().__init__(
            message=f"relay {method} {endpoint} failed: {cause.__class__.__name__}: {cause}",
            status_code=502,
            code="relay_transport_error",
            details={"endpoint": endpoint, "cause": f"{cause.__class__.__name__}: {cause}"},
        )
        self.cause = cause
        self.endpoint = endpoint
        self.method = method


class RelayResponseError(RelayError):
    """2xx answer whose body does not match any known response shape."""

    def __init__(self, reason: str, *, endpoint: str, body: Any):
        super().__init__(
            message=f"unexpected relay response from {endpoint}: {reason}",
            status_code=502,
            code="relay_bad_response",
            details={"endpoint": endpoint, "body": body},
        )
        self.endpoint = endpoint
        self.body = body


def _relay_diagnostics(cause: BaseException) -> Dict[str, Any]:
    diag: Dict[str, Any] = {"cause": str(cause)}
    if isinstance(cause, RelayHttpError):
        diag["http_status"] = cause.http_status
        diag["body"] = cause.body
    return diag


# --------------------------------- Phase errors ------------------------------ #


class RegistrationError(ZkClaimError):
    """Verification key registration failed; aborts the phase."""

    def __init__(self, role: str, cause: BaseException | str):
        reason = cause if isinstance(cause, str) else f"{cause.__class__.__name__}: {cause}"
        details: Dict[str, Any] = {"role": role}
        if isinstance(cause, BaseException):
            details.update(_relay_diagnostics(cause))
        else:
            details["cause"] = cause
        super().__init__(
            message=f"verification key registration failed for {role}: {reason}",
            status_code=502,
            code="registration_failed",
            details=details,
        )
        self.role = role
        self.cause = cause


class SubmissionError(ZkClaimError):
    """The relay rejected a proof, or its optimistic verification did not succeed."""

    def __init__(self, role: str, reason: str, *, body: Any = None, http_status: Optional[int] = None):
        details: Dict[str, Any] = {"role": role, "body": body}
        if http_status is not None:
            details["http_status"] = http_status
        super().__init__(
            message=f"proof submission rejected for {role}: {reason}",
            status_code=502,
            code="submission_rejected",
            details=details,
        )
        self.role = role
        self.body = body
        self.http_status = http_status


class PollTransientError(ZkClaimError):
    """The relay stayed unavailable (HTTP 503) past the poll deadline."""

    def __init__(self, job_id: str, *, http_status: int, body: Any, waited_s: float):
        super().__init__(
            message=f"relay unavailable while polling job {job_id} (gave up after {waited_s:.1f}s)",
            status_code=503,
            code="relay_unavailable",
            details={"job_id": job_id, "http_status": http_status, "body": body, "waited_s": waited_s},
        )
        self.job_id = job_id
        self.http_status = http_status
        self.body = body
        self.waited_s = waited_s


class PollFailure(ZkClaimError):
    """The relay reported the job as Failed."""

    def __init__(self, role: str, job_id: str, detail: Any):
        super().__init__(
            message=f"relay reported job {job_id} ({role}) as Failed",
            status_code=422,
            code="verification_failed",
            details={"role": role, "job_id": job_id, "relay_detail": detail},
        )
        self.role = role
        self.job_id = job_id
        self.detail = detail


class PollTimeout(ZkClaimError):
    """The local attempt budget ran out before a terminal status was reported."""

    def __init__(self, role: str, job_id: str, attempts_made: int):
        super().__init__(
            message=f"job {job_id} ({role}) not terminal after {attempts_made} attempts",
            status_code=504,
            code="verification_timeout",
            details={"role": role, "job_id": job_id, "attempts_made": attempts_made},
        )
        self.role = role
        self.job_id = job_id
        self.attempts_made = attempts_made


class ClaimCancelled(ZkClaimError):
    """The caller's outer deadline expired, or the claim was cancelled, mid-flight."""

    def __init__(self, phase: Optional[str], *, claim_id: Optional[str] = None, job_id: Optional[str] = None):
        super().__init__(
            message=f"claim cancelled during {phase or 'startup'} phase",
            status_code=504,
            code="claim_cancelled",
            details={"phase": phase, "claim_id": claim_id, "job_id": job_id},
        )
        self.phase = phase
        self.claim_id = claim_id
        self.job_id = job_id


class LinkageError(ZkClaimError):
    """Patient phase attempted without a successful doctor proof hash."""

    def __init__(self, message: str = "patient phase requires a doctor proof hash"):
        super().__init__(message=message, status_code=409, code="linkage_error")


class ProofGenerationError(ZkClaimError):
    """The external proving engine failed or its artifacts are missing."""

    def __init__(self, role: str, reason: str, *, stderr: Optional[str] = None):
        details: Dict[str, Any] = {"role": role}
        if stderr:
            details["stderr"] = stderr[-2048:]
        super().__init__(
            message=f"proof generation failed for {role}: {reason}",
            status_code=500,
            code="proof_generation_failed",
            details=details,
        )
        self.role = role
        self.stderr = stderr


class AggregationNotFound(ZkClaimError):
    def __init__(self, what: str, *, details: Optional[Mapping[str, Any]] = None):
        super().__init__(
            message=f"aggregation data not found for {what}",
            status_code=404,
            code="aggregation_not_found",
            details=details,
        )


__all__ = [
    "ZkClaimError",
    "BadRequest",
    "ConfigurationError",
    "RelayError",
    "RelayHttpError",
    "RelayTransportError",
    "RelayResponseError",
    "RegistrationError",
    "SubmissionError",
    "PollTransientError",
    "PollFailure",
    "PollTimeout",
    "ClaimCancelled",
    "LinkageError",
    "ProofGenerationError",
    "AggregationNotFound",
]
