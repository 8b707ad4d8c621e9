"""
Aggregation receipt store.

Layout under ``<storage_dir>/aggregation/<role>/``:

    aggregation_data.json   latest receipt for the role (overwritten)
    <claim_id>.json         one receipt per claim, when a claim id is known

Saving is best-effort: a claim whose proof was verified and aggregated is
still a successful claim if the receipt cannot be written, so write errors are
logged and swallowed. Reads raise :class:`AggregationNotFound`.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from ..errors import AggregationNotFound, BadRequest
from ..logging import get_logger
from ..models.receipts import AggregationReceipt
from .fs import read_json, write_json_atomic

log = get_logger(__name__)

LATEST_FILE = "aggregation_data.json"
_SAFE_ID = re.compile(r"^[A-Za-z0-9_.-]{1,128}$")


def _check_id(kind: str, value: str) -> str:
    if not _SAFE_ID.match(value) or value in (".", ".."):
        raise BadRequest(f"invalid {kind}", details={kind: value})
    return value


class AggregationReceiptStore:
    def __init__(self, root: Path):
        self.root = Path(root) / "aggregation"

    @classmethod
    def from_settings(cls, settings) -> "AggregationReceiptStore":
        return cls(settings.storage_dir)

    def _dir(self, role: str) -> Path:
        return self.root / _check_id("role", role)

    def path_for(self, role: str, claim_id: Optional[str] = None) -> Path:
        if claim_id is None:
            return self._dir(role) / LATEST_FILE
        return self._dir(role) / f"{_check_id('claim_id', claim_id)}.json"

    def save(self, role: str, receipt: AggregationReceipt, claim_id: Optional[str] = None) -> Optional[Path]:
        """
        Persist ``receipt`` as the role's latest and, if ``claim_id`` is given,
        under the claim id. Returns the latest path, or None if writing failed.
        """
        doc = receipt.to_json_dict()
        try:
            targets = [self.path_for(role)]
            if claim_id is not None:
                targets.append(self.path_for(role, claim_id))
            latest = targets[0]
            for path in targets:
                write_json_atomic(path, doc)
        except (OSError, BadRequest) as e:
            log.error("receipt_save_failed", role=role, claim_id=claim_id, error=str(e))
            return None
        log.info("receipt_saved", role=role, claim_id=claim_id, path=str(latest))
        return latest

    def load(self, role: str, claim_id: Optional[str] = None) -> AggregationReceipt:
        path = self.path_for(role, claim_id)
        what = f"claim {claim_id}" if claim_id else f"role {role}"
        if not path.is_file():
            raise AggregationNotFound(what, details={"role": role, "claim_id": claim_id})
        try:
            return AggregationReceipt.model_validate(read_json(path))
        except (OSError, ValueError, ValidationError) as e:
            log.warning("receipt_unreadable", role=role, claim_id=claim_id, error=str(e))
            raise AggregationNotFound(what, details={"role": role, "claim_id": claim_id, "reason": "unreadable"}) from e


__all__ = ["AggregationReceiptStore", "LATEST_FILE"]
