import base64
import json

import pytest

from server.tokens import TokenSigner, _b64encode
from shared.errors import InvalidTokenError, TokenExpiredError


def decode_segment(segment):
    return json.loads(base64.urlsafe_b64decode(segment + "=" * (-len(segment) % 4)))


def test_token_uses_compact_jws_layout(signer):
    token = signer.issue("site-a", 0.8)
    header, payload, signature = token.split(".")

    assert decode_segment(header) == {"alg": "HS256", "typ": "JWT"}
    claims = decode_segment(payload)
    assert claims["identity"] == "site-a"
    assert claims["is_human"] is True
    assert claims["score"] == pytest.approx(0.8)
    assert "=" not in token


def test_round_trip(signer):
    claims = signer.verify(signer.issue("site-a", 0.8))
    assert claims.identity == "site-a"


def test_tampered_payload_rejected(signer):
    header, payload, signature = signer.issue("site-a", 0.8).split(".")
    forged = decode_segment(payload)
    forged["identity"] = "site-b"
    forged_payload = _b64encode(json.dumps(forged).encode("utf-8"))

    with pytest.raises(InvalidTokenError, match="signature"):
        signer.verify(f"{header}.{forged_payload}.{signature}")


def test_other_secret_rejected(signer, clock):
    other = TokenSigner("another-secret", clock=clock)
    with pytest.raises(InvalidTokenError):
        signer.verify(other.issue("site-a", 0.8))


@pytest.mark.parametrize("token", ["", "abc", "a.b", "a.b.c.d", "ä.ö.ü"])
def test_malformed_tokens_rejected(signer, token):
    with pytest.raises(InvalidTokenError):
        signer.verify(token)


def test_unsupported_algorithm_rejected(signer):
    header = _b64encode(json.dumps({"alg": "none"}).encode("utf-8"))
    payload = signer.issue("site-a", 0.8).split(".")[1]
    signature = signer._sign(f"{header}.{payload}".encode("ascii"))

    with pytest.raises(InvalidTokenError, match="algorithm"):
        signer.verify(f"{header}.{payload}.{signature}")


def test_expired_token_is_an_invalid_token(signer, clock):
    token = signer.issue("site-a", 0.8)
    clock.advance(601)

    with pytest.raises(TokenExpiredError):
        signer.verify(token)
    with pytest.raises(InvalidTokenError):
        signer.verify(token)


def test_empty_secret_not_allowed():
    with pytest.raises(ValueError):
        TokenSigner("")
