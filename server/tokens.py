"""
Token Module

Issues and checks the short-lived tokens handed to the host page after a
successful verification. Tokens use the compact JWS layout
(header.payload.signature, base64url without padding) with an HMAC-SHA256
signature, so relying parties can check them with any HS256 JWT library.
"""

import base64
import hashlib
import hmac
import json
import time
from typing import Callable

from pydantic import ValidationError

from shared.errors import InvalidTokenError, TokenExpiredError
from shared.models import TokenClaims

_HEADER = {"alg": "HS256", "typ": "JWT"}


def _b64encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _b64decode(segment: str) -> bytes:
    padding = "=" * (-len(segment) % 4)
    return base64.urlsafe_b64decode(segment + padding)


class TokenSigner:
    """Signs and verifies verification tokens with a service-held secret."""

    def __init__(self, secret: str, ttl: int = 600, clock: Callable[[], float] = time.time):
        """
        Args:
            secret: HMAC key; never leaves the server.
            ttl: Validity window in seconds.
            clock: Unix-seconds clock.
        """
        if not secret:
            raise ValueError("Token secret must not be empty")
        self._key = secret.encode("utf-8")
        self.ttl = ttl
        self._clock = clock

    def _sign(self, signing_input: bytes) -> str:
        return _b64encode(hmac.new(self._key, signing_input, hashlib.sha256).digest())

    def issue(self, identity: str, score: float) -> str:
        """Issue a token asserting that `identity` passed with `score`."""
        now = int(self._clock())
        claims = TokenClaims(identity=identity, is_human=True, score=score, iat=now, exp=now + self.ttl)
        header = _b64encode(json.dumps(_HEADER, separators=(",", ":")).encode("utf-8"))
        payload = _b64encode(claims.model_dump_json().encode("utf-8"))
        signing_input = f"{header}.{payload}".encode("ascii")
        return f"{header}.{payload}.{self._sign(signing_input)}"

    def verify(self, token: str) -> TokenClaims:
        """
        Check signature and expiry and return the claims.

        Raises:
            InvalidTokenError: malformed token or bad signature.
            TokenExpiredError: the validity window has elapsed.
        """
        parts = token.split(".")
        if len(parts) != 3:
            raise InvalidTokenError("Malformed token")
        header, payload, signature = parts

        expected = self._sign(f"{header}.{payload}".encode("utf-8"))
        if not hmac.compare_digest(signature.encode("utf-8"), expected.encode("ascii")):
            raise InvalidTokenError("Invalid signature")

        try:
            decoded_header = json.loads(_b64decode(header))
            claims = TokenClaims.model_validate_json(_b64decode(payload))
        except (ValueError, ValidationError) as e:
            raise InvalidTokenError(f"Malformed token: {e}") from e

        if not isinstance(decoded_header, dict) or decoded_header.get("alg") != _HEADER["alg"]:
            raise InvalidTokenError("Unsupported algorithm")

        if self._clock() >= claims.exp:
            raise TokenExpiredError("Token expired")
        return claims
