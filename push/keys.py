"""VAPID key pair: loading, caching and token signing."""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional, Protocol

import aiohttp
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
from jose import jwt
from jose.exceptions import JOSEError
from py_vapid import Vapid02, VapidException
from py_vapid.utils import b64urldecode, b64urlencode

from push import variables
from push.errors import KeyUnavailable

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class KeyPair:
    public_key: str
    private_pem: Optional[str] = None

    @property
    def can_sign(self) -> bool:
        return self.private_pem is not None

    @property
    def public_pem(self) -> str:
        point = ec.EllipticCurvePublicKey.from_encoded_point(
            ec.SECP256R1(), b64urldecode(self.public_key)
        )
        return point.public_bytes(
            serialization.Encoding.PEM,
            serialization.PublicFormat.SubjectPublicKeyInfo,
        ).decode()

    @classmethod
    def from_vapid(cls, vapid: Vapid02) -> "KeyPair":
        public_raw = vapid.public_key.public_bytes(
            serialization.Encoding.X962,
            serialization.PublicFormat.UncompressedPoint,
        )
        private_pem = vapid.private_key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        ).decode()
        return cls(public_key=b64urlencode(public_raw), private_pem=private_pem)

    @classmethod
    def from_private_key(cls, private_key: str) -> "KeyPair":
        """Parse a raw base64url, DER or PEM encoded P-256 private key."""
        private_key = private_key.strip()
        try:
            if "-----BEGIN" in private_key:
                vapid = Vapid02.from_pem(private_key.encode())
            else:
                vapid = Vapid02.from_string(private_key)
        except (VapidException, ValueError, TypeError) as exc:
            raise KeyUnavailable(f"invalid VAPID private key: {exc}") from exc
        return cls.from_vapid(vapid)

    @classmethod
    def generate(cls) -> "KeyPair":
        vapid = Vapid02()
        vapid.generate_keys()
        return cls.from_vapid(vapid)


class KeySource(Protocol):
    async def load(self) -> KeyPair: ...


class StaticKeySource:
    def __init__(self, keys: KeyPair):
        self.keys = keys

    async def load(self) -> KeyPair:
        return self.keys


class EnvKeySource:
    """Reads the pair from VAPID_PRIVATE_KEY / VAPID_PUBLIC_KEY."""

    def __init__(self, private_key: Optional[str] = None, public_key: Optional[str] = None):
        self.private_key = private_key if private_key is not None else variables.VAPID_PRIVATE_KEY
        self.public_key = public_key if public_key is not None else variables.VAPID_PUBLIC_KEY

    async def load(self) -> KeyPair:
        if not self.private_key:
            if self.public_key:
                log.warning("VAPID private key not configured, signing disabled")
                return KeyPair(public_key=self.public_key)
            raise KeyUnavailable("VAPID keys not configured")

        keys = KeyPair.from_private_key(self.private_key)
        if self.public_key and self.public_key != keys.public_key:
            log.warning("VAPID_PUBLIC_KEY does not match the private key, using the derived one")
        return keys


class RemoteKeySource:
    """Fetches the public half from the service's ``/vapid_public_key``."""

    def __init__(self, url: str, timeout: int = 30):
        self.url = url
        self.timeout = timeout

    async def load(self) -> KeyPair:
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.get(self.url) as resp:
                    resp.raise_for_status()
                    data = await resp.json()
        except asyncio.TimeoutError as exc:
            raise KeyUnavailable(f"timed out fetching VAPID key from {self.url}") from exc
        except aiohttp.ClientError as exc:
            raise KeyUnavailable(f"failed to fetch VAPID key: {exc}") from exc

        key = (data or {}).get("key") or (data or {}).get("publicKey")
        if not key:
            raise KeyUnavailable("VAPID key missing from response")
        return KeyPair(public_key=key)


class KeyProvider:
    """Caches the key pair for the process lifetime and signs VAPID tokens.

    The first caller loads the pair from ``source``; concurrent callers wait
    on the same load. A failed load leaves the cache empty so a later call
    can try again.
    """

    def __init__(
        self,
        source: Optional[KeySource] = None,
        keys: Optional[KeyPair] = None,
        subject: Optional[str] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.source = source
        self.subject = subject or variables.VAPID_SUBJECT
        self.clock = clock
        self._keys = keys
        self._lock = asyncio.Lock()

    @property
    def cached(self) -> Optional[KeyPair]:
        return self._keys

    async def get_keys(self) -> KeyPair:
        if self._keys is not None:
            return self._keys

        async with self._lock:
            if self._keys is not None:
                return self._keys
            if self.source is None:
                raise KeyUnavailable("no key source configured")
            try:
                keys = await self.source.load()
            except KeyUnavailable:
                raise
            except Exception as exc:
                raise KeyUnavailable(str(exc)) from exc
            self._keys = keys
            log.info("VAPID keys ready (public=%s…)", keys.public_key[:20])
            return keys

    async def get_public_key(self) -> str:
        return (await self.get_keys()).public_key

    def build_claims(self, audience: str, claims: Optional[dict] = None) -> dict:
        issued = int(self.clock())
        return {
            **(claims or {}),
            "aud": audience,
            "exp": issued + variables.TOKEN_TTL,
            "sub": self.subject,
        }

    def sign(self, claims: Optional[dict], audience: str) -> str:
        """Return a compact ES256 JWS over ``claims`` for ``audience``.

        ``audience`` is the scheme and host of the target push service.
        """
        keys = self._keys
        if keys is None or not keys.can_sign:
            raise KeyUnavailable("private key not loaded")
        payload = self.build_claims(audience, claims)
        try:
            return jwt.encode(payload, keys.private_pem, algorithm="ES256")
        except JOSEError as exc:
            raise KeyUnavailable(f"signing failed: {exc}") from exc

    def authorization_header(self, token: str) -> str:
        keys = self._keys
        if keys is None:
            raise KeyUnavailable("keys not loaded")
        return f"vapid t={token}, k={keys.public_key}"


_provider: Optional[KeyProvider] = None


def init_key_provider(provider: Optional[KeyProvider] = None, **kwargs: Any) -> KeyProvider:
    global _provider

    if provider is None:
        if variables.VAPID_KEY_URL and not variables.VAPID_PRIVATE_KEY:
            source: KeySource = RemoteKeySource(variables.VAPID_KEY_URL)
        else:
            source = EnvKeySource()
        provider = KeyProvider(source=source, **kwargs)

    _provider = provider
    return _provider


def get_key_provider() -> KeyProvider:
    if _provider is None:
        return init_key_provider()
    return _provider
