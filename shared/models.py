# shared/models.py
"""
Shared Data Models (Pydantic)

Defines the data structures exchanged between the capture client, the
verification server, and relying parties that redeem tokens.
Only numeric scores, nonces and an opaque identity (site key) travel over
the wire. Raw pointer samples never leave the client.

These models are used for:
- Serialization/deserialization in the API
- Building the submission payload in the verification client
- Shaping audit query results
"""

from pydantic import BaseModel, Field
from typing import List, Optional


# ----------------------------------------------------------------------
# Verification (client → server)
# ----------------------------------------------------------------------

class VerifyRequest(BaseModel):
    """
    Payload sent to POST /api/verify.
    Fields are optional at the schema level so that a missing field is
    reported by the request validator as a 400, not by FastAPI as a 422.
    """
    score: Optional[float] = Field(None, description="Client-side humanness score (0–1)")
    nonce: Optional[str] = Field(None, description="Single-use random value")
    identity: Optional[str] = Field(None, description="Site key of the embedding page")
    timestamp: Optional[float] = Field(None, description="Client timestamp (ms since epoch)")


class VerifyResponse(BaseModel):
    """Success envelope returned for every well-formed, non-replayed request."""
    success: bool
    token: Optional[str] = None
    error: Optional[str] = None


# ----------------------------------------------------------------------
# Tokens (relying party → server)
# ----------------------------------------------------------------------

class TokenClaims(BaseModel):
    """Claims carried by a signed verification token."""
    identity: str
    is_human: bool = True
    score: float = Field(..., ge=0.0, le=1.0)
    iat: int = Field(..., description="Issued-at (Unix seconds)")
    exp: int = Field(..., description="Expiry (Unix seconds)")


class TokenVerifyRequest(BaseModel):
    token: str


class TokenVerifyResponse(BaseModel):
    valid: bool
    claims: Optional[TokenClaims] = None
    reason: Optional[str] = None


# ----------------------------------------------------------------------
# Audit & health
# ----------------------------------------------------------------------

class AuditRecord(BaseModel):
    """One verification attempt, as stored in the audit log."""
    identity: str
    score: float
    decision: bool = Field(..., description="True if the score passed the threshold")
    timestamp: float = Field(..., description="Client timestamp (ms since epoch)")
    nonce: str


class AuditRecordList(BaseModel):
    identity: str
    records: List[AuditRecord]


class HealthResponse(BaseModel):
    status: str
    ledger: str
    durable: bool
