"""
Verification-key registration.

``VkRegistrar.register(role, raw_vk)`` returns the relay's id for a role's
Groth16 key, registering it at most once per cache:

  1) cache hit  -> cached id, no network call
  2) cache miss -> POST register-vk, parse the id, cache it, return it

The relay has answered with the id in two places over time. ``parse_vk_id``
tries the known shapes in order and raises when none matches.
"""

from __future__ import annotations

from typing import Any, Callable, Mapping, Optional, Sequence, Tuple

from ..adapters.relay import RelayClient
from ..errors import RegistrationError, RelayError, RelayHttpError
from ..logging import get_logger
from ..models.proofs import VerificationKeyRecord
from ..storage.vk_cache import VkIdStore

log = get_logger(__name__)


def _top_level(body: Mapping[str, Any]) -> Optional[Any]:
    return body.get("vkHash")


def _meta(body: Mapping[str, Any]) -> Optional[Any]:
    meta = body.get("meta")
    if isinstance(meta, Mapping):
        return meta.get("vkHash")
    return None


VK_ID_SHAPES: Sequence[Tuple[str, Callable[[Mapping[str, Any]], Optional[Any]]]] = (
    ("vkHash", _top_level),
    ("meta.vkHash", _meta),
)


def parse_vk_id(body: Any) -> str:
    """
    Extract the vk id from a register-vk response.

    Raises ValueError naming the shapes tried when none yields a non-empty string.
    """
    if isinstance(body, Mapping):
        for _, getter in VK_ID_SHAPES:
            value = getter(body)
            if isinstance(value, str) and value:
                return value
    tried = ", ".join(name for name, _ in VK_ID_SHAPES)
    raise ValueError(f"register-vk response carries no vk id (tried {tried})")


def _recover_existing(err: RelayHttpError) -> Optional[Mapping[str, Any]]:
    if err.http_status in (400, 409) and isinstance(err.body, Mapping):
        try:
            parse_vk_id(err.body)
        except ValueError:
            return None
        return err.body
    return None


class VkRegistrar:
    def __init__(self, relay: RelayClient, cache: VkIdStore):
        self.relay = relay
        self.cache = cache

    async def ensure(self, role: str, load_vk: Callable[[], Mapping[str, Any]]) -> VerificationKeyRecord:
        """
        Return the role's key record. ``load_vk`` is only called on a cache
        miss, so proofs can be verified against a cached id without the key file.
        """
        cached = self.cache.get(role)
        if cached:
            log.debug("vk_cache_hit", role=role)
            return VerificationKeyRecord(role=role, vk_id=cached)

        raw_vk = load_vk()
        try:
            body = await self.relay.register_vk(raw_vk)
        except RelayHttpError as e:
            # "already registered" answers still carry the id
            body = _recover_existing(e)
            if body is None:
                log.warning("vk_registration_failed", role=role, error=str(e))
                raise RegistrationError(role, e) from e
            log.info("vk_already_registered", role=role, http_status=e.http_status)
        except RelayError as e:
            log.warning("vk_registration_failed", role=role, error=str(e))
            raise RegistrationError(role, e) from e

        try:
            vk_id = parse_vk_id(body)
        except ValueError as e:
            log.warning("vk_registration_unparseable", role=role)
            raise RegistrationError(role, str(e)) from e

        self.cache.put(role, vk_id)
        log.info("vk_registered", role=role, vk_id=vk_id)
        return VerificationKeyRecord(role=role, vk_id=vk_id)

    async def register(self, role: str, raw_vk: Mapping[str, Any]) -> str:
        record = await self.ensure(role, lambda: raw_vk)
        return record.vk_id


__all__ = ["VkRegistrar", "parse_vk_id", "VK_ID_SHAPES"]
