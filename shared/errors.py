"""
Error Taxonomy

Exceptions raised across the client pipeline and the verification server.
Infrastructure failures (asset load, inference, persistence, network) are
caught close to where they happen and degrade to a fallback path.
Integrity failures (malformed request, replayed nonce, bad token) propagate
to the caller and are rejected explicitly.
"""


class EchoCheckError(Exception):
    """Base class for all EchoCheck errors."""


# ----------------------------------------------------------------------
# Infrastructure failures – absorbed, never fatal
# ----------------------------------------------------------------------

class AssetLoadError(EchoCheckError):
    """The scoring model asset could not be fetched or parsed."""


class InferenceError(EchoCheckError):
    """The model strategy failed while scoring a feature vector."""


class SubmissionError(EchoCheckError):
    """The verification request could not be delivered or answered."""


class PersistenceUnavailableError(EchoCheckError):
    """Durable storage (nonce ledger or audit log) could not be reached."""


# ----------------------------------------------------------------------
# Integrity failures – rejected explicitly
# ----------------------------------------------------------------------

class MalformedRequestError(EchoCheckError):
    """A verification request is missing a required field or is out of range."""


class ReplayedNonceError(EchoCheckError):
    """A nonce was presented that has already been consumed."""

    def __init__(self, nonce: str):
        super().__init__("Nonce already used")
        self.nonce = nonce


class InvalidTokenError(EchoCheckError):
    """A token is malformed or its signature does not match."""


class TokenExpiredError(InvalidTokenError):
    """A token's validity window has elapsed."""
