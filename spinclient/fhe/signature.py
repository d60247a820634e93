"""Decryption signature cache: load a still-valid authorization or sign a new one.

A decryption signature lets the encryption service reveal clear values to a
single user for a fixed set of contracts during a time window. Obtaining one
is interactive (the wallet asks the user to sign), so signatures are cached
and reused for as long as they remain valid.

Usage:
    from spinclient.fhe.signature import SignatureCache

    cache = SignatureCache(encryption, storage=MemorySignatureStorage())
    sig = await cache.obtain(signer.address, [contract_address], signer)
    if sig is None:
        ...  # user rejected or signer unavailable: cannot decrypt now
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable
from typing import Any, Protocol

import redis.asyncio as aioredis
from pydantic import ValidationError

from spinclient.chain.signer import Signer, signer_identity
from spinclient.core.config import Settings, get_settings
from spinclient.core.types import DecryptionSignature, normalize_address
from spinclient.fhe.service import EncryptionService

logger = logging.getLogger(__name__)

DEFAULT_DURATION_DAYS = 365


# ── Storage backends ─────────────────────────────────────────────────────────


class SignatureStorage(Protocol):
    """String key/value store for serialized signatures."""

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str, ttl: int | None = None) -> None: ...

    async def delete(self, key: str) -> None: ...


class MemorySignatureStorage:
    """Process-local storage. Expiry is enforced by the cache on read."""

    def __init__(self) -> None:
        self._store: dict[str, str] = {}

    async def get(self, key: str) -> str | None:
        return self._store.get(key)

    async def set(self, key: str, value: str, ttl: int | None = None) -> None:
        self._store[key] = value

    async def delete(self, key: str) -> None:
        self._store.pop(key, None)

    def __len__(self) -> int:
        return len(self._store)


class RedisSignatureStorage:
    """Redis-backed storage shared across client processes.

    Storage failures never break decryption: an unreachable Redis behaves
    like an empty cache and the user is asked to sign again.
    """

    def __init__(self, url: str, prefix: str = "fhevm-sig", client: Any | None = None) -> None:
        self._url = url
        self._prefix = prefix
        self._client = client
        self._enabled = True

    async def _get_client(self) -> Any:
        if not self._enabled:
            return None
        if self._client is None:
            try:
                self._client = aioredis.from_url(
                    self._url,
                    decode_responses=True,
                    socket_connect_timeout=2,
                )
                await self._client.ping()
            except Exception as exc:
                logger.warning("Redis signature storage unavailable: %s, using no storage", exc)
                self._enabled = False
                self._client = None
        return self._client

    def _key(self, key: str) -> str:
        return f"{self._prefix}:{key}"

    async def get(self, key: str) -> str | None:
        client = await self._get_client()
        if not client:
            return None
        try:
            return await client.get(self._key(key))
        except Exception as exc:
            logger.debug("Signature storage GET error for %s: %s", key, exc)
            return None

    async def set(self, key: str, value: str, ttl: int | None = None) -> None:
        client = await self._get_client()
        if not client:
            return
        try:
            await client.set(self._key(key), value, ex=ttl)
        except Exception as exc:
            logger.debug("Signature storage SET error for %s: %s", key, exc)

    async def delete(self, key: str) -> None:
        client = await self._get_client()
        if not client:
            return
        try:
            await client.delete(self._key(key))
        except Exception as exc:
            logger.debug("Signature storage DELETE error for %s: %s", key, exc)

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None


# ── Cache ────────────────────────────────────────────────────────────────────


def cache_key(user_address: str, contract_addresses: Iterable[str]) -> str:
    """Deterministic key for ``(user, sorted contract addresses)``."""
    addresses = sorted({normalize_address(a) for a in contract_addresses})
    return f"{normalize_address(user_address)}:{','.join(addresses)}"


class SignatureCache:
    """Issues and caches time-boxed decryption signatures."""

    def __init__(
        self,
        encryption: EncryptionService,
        storage: SignatureStorage | None = None,
        duration_days: int = DEFAULT_DURATION_DAYS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._encryption = encryption
        self._storage = storage if storage is not None else MemorySignatureStorage()
        self._duration_days = duration_days
        self._clock = clock

    @classmethod
    def from_settings(
        cls, encryption: EncryptionService, settings: Settings | None = None
    ) -> SignatureCache:
        settings = settings or get_settings()
        storage: SignatureStorage
        if settings.signature_redis_url:
            storage = RedisSignatureStorage(
                settings.signature_redis_url, prefix=settings.signature_key_prefix
            )
        else:
            storage = MemorySignatureStorage()
        return cls(encryption, storage=storage, duration_days=settings.signature_duration_days)

    @property
    def duration_days(self) -> int:
        return self._duration_days

    async def load(
        self, user_address: str, contract_addresses: Iterable[str]
    ) -> DecryptionSignature | None:
        """Return the cached signature if it is still usable, else None."""
        addresses = list(contract_addresses)
        key = cache_key(user_address, addresses)
        raw = await self._storage.get(key)
        if raw is None:
            return None
        try:
            sig = DecryptionSignature.model_validate_json(raw)
        except ValidationError as exc:
            logger.warning("Discarding unreadable decryption signature %s: %s", key, exc)
            await self._storage.delete(key)
            return None
        if not sig.covers(user_address, addresses):
            return None
        if not sig.is_valid(self._clock()):
            logger.info("Decryption signature for %s expired", key)
            return None
        return sig

    async def obtain(
        self,
        user_address: str,
        contract_addresses: Iterable[str],
        signer: Signer,
    ) -> DecryptionSignature | None:
        """Load a valid signature or ask ``signer`` for a fresh one.

        Returns None when the signer rejects the request or is unavailable;
        callers treat that as "cannot decrypt now".
        """
        addresses = sorted({normalize_address(a) for a in contract_addresses})
        if signer_identity(signer) != normalize_address(user_address):
            logger.warning(
                "Signer %s cannot sign for user %s", signer_identity(signer), user_address
            )
            return None

        cached = await self.load(user_address, addresses)
        if cached is not None:
            return cached

        sig = await self._sign(user_address, addresses, signer)
        if sig is None:
            return None
        ttl = max(1, int(sig.expires_at - self._clock()))
        await self._storage.set(cache_key(user_address, addresses), sig.model_dump_json(), ttl=ttl)
        return sig

    async def _sign(
        self, user_address: str, addresses: list[str], signer: Signer
    ) -> DecryptionSignature | None:
        start_timestamp = int(self._clock())
        try:
            public_key, private_key = self._encryption.generate_keypair()
            payload = self._encryption.create_eip712(
                public_key, addresses, start_timestamp, self._duration_days
            )
            signature = await signer.sign_typed_data(payload)
        except Exception as exc:
            logger.warning("Decryption signature request failed: %s", exc)
            return None

        logger.info(
            "Issued decryption signature for %s (%d contracts, %d days)",
            user_address, len(addresses), self._duration_days,
        )
        return DecryptionSignature(
            public_key=public_key,
            private_key=private_key,
            signature=signature,
            contract_addresses=tuple(addresses),
            user_address=user_address,
            start_timestamp=start_timestamp,
            duration_days=self._duration_days,
        )
