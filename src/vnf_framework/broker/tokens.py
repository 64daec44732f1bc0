"""Scope-limited authorization tokens for broker requests.

Every request to an appliance carries a token bound to the target address
and the operation. The broker refuses requests whose target does not match
the token scope.
"""
import base64
import hashlib
import hmac
import json
import logging
import secrets
import time
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Optional

from ..appliance.models import Appliance
from ..models import ScopedToken

logger = logging.getLogger(__name__)


class TokenIssuer(ABC):
    """External collaborator that issues and validates broker tokens."""

    @abstractmethod
    def generate_token(
        self,
        appliance: Appliance,
        operation: str,
        expiry_seconds: int
    ) -> ScopedToken:
        """Issue a token for ``operation`` against ``appliance``."""
        pass

    @abstractmethod
    def validate_token(self, token: str) -> bool:
        """True if ``token`` is authentic and not expired."""
        pass


def _b64encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode()


def _b64decode(data: str) -> bytes:
    return base64.urlsafe_b64decode(data + "=" * (-len(data) % 4))


class HmacTokenIssuer(TokenIssuer):
    """HMAC-SHA256 signed tokens: ``<claims>.<signature>``, base64url encoded."""

    def __init__(self, secret: Optional[str] = None):
        if not secret:
            logger.warning(
                "No token secret configured (VNF_TOKEN_SECRET); "
                "using a per-process random key"
            )
            secret = secrets.token_hex(32)
        self._key = secret.encode()

    def _sign(self, payload: str) -> str:
        digest = hmac.new(self._key, payload.encode(), hashlib.sha256).digest()
        return _b64encode(digest)

    def generate_token(
        self,
        appliance: Appliance,
        operation: str,
        expiry_seconds: int
    ) -> ScopedToken:
        expires = int(time.time()) + max(1, int(expiry_seconds))
        claims = {
            "sub": appliance.id,
            "tgt": appliance.management_ip,
            "op": operation,
            "exp": expires,
            "jti": uuid.uuid4().hex,
        }
        payload = _b64encode(json.dumps(claims, separators=(",", ":")).encode())
        return ScopedToken(
            value=f"{payload}.{self._sign(payload)}",
            target_address=appliance.management_ip,
            operation=operation,
            expires_at=datetime.fromtimestamp(expires, tz=timezone.utc),
        )

    def decode(self, token: str) -> Optional[dict[str, Any]]:
        """Claims of an authentic token, or None if the signature is wrong."""
        try:
            payload, signature = token.split(".", 1)
        except (AttributeError, ValueError):
            return None

        if not hmac.compare_digest(signature, self._sign(payload)):
            return None

        try:
            return json.loads(_b64decode(payload))
        except (ValueError, TypeError):
            return None

    def validate_token(self, token: str) -> bool:
        claims = self.decode(token)
        if claims is None:
            return False
        return int(claims.get("exp", 0)) > time.time()

    def token_target(self, token: str) -> Optional[str]:
        """Target address the token was scoped for."""
        claims = self.decode(token)
        return claims.get("tgt") if claims else None
