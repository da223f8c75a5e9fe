import hmac
import logging
from dataclasses import dataclass
from typing import Dict, Optional, Protocol

from push import variables

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Caller:
    identity: str
    role: str

    @property
    def privileged(self) -> bool:
        return self.role in variables.PRIVILEGED_ROLES


class Authorizer(Protocol):
    async def resolve(self, credential: Optional[str]) -> Optional[Caller]: ...


def parse_tokens(raw: str) -> Dict[str, str]:
    """Parse ``identity:token,identity:token`` into ``{token: identity}``."""
    tokens: Dict[str, str] = {}
    for item in (raw or "").split(","):
        item = item.strip()
        if not item or ":" not in item:
            continue
        identity, token = item.split(":", 1)
        identity, token = identity.strip(), token.strip()
        if identity and token:
            tokens[token] = identity
    return tokens


def bearer_credential(header: Optional[str]) -> Optional[str]:
    if not header:
        return None
    scheme, _, value = header.partition(" ")
    if scheme.lower() == "bearer" and value.strip():
        return value.strip()
    return None


class TokenAuthorizer:
    """Static bearer tokens mapped to admin callers."""

    def __init__(self, tokens: Optional[Dict[str, Caller]] = None):
        self.tokens = dict(tokens or {})

    @classmethod
    def from_env(cls) -> "TokenAuthorizer":
        tokens: Dict[str, Caller] = {}
        if variables.NOTIFY_PASS:
            tokens[variables.NOTIFY_PASS] = Caller(identity="operator", role="admin")
        for token, identity in parse_tokens(variables.BROADCAST_TOKENS).items():
            tokens[token] = Caller(identity=identity, role="admin")
        if not tokens:
            log.warning("No broadcast tokens configured, every broadcast will be rejected")
        return cls(tokens)

    async def resolve(self, credential: Optional[str]) -> Optional[Caller]:
        if not credential:
            return None
        for token, caller in self.tokens.items():
            if hmac.compare_digest(token.encode(), credential.encode()):
                return caller
        return None
