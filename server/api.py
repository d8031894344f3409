"""
FastAPI Backend API Module

Exposes the verification protocol over HTTP:
- POST /api/verify          score + nonce + identity -> signed token
- POST /api/token/verify    relying parties check a token
- GET  /api/verifications   audit history for one identity
- GET  /health              liveness and storage durability

CORS is enabled so embedding pages on other origins can submit.
Run with: uvicorn server.api:create_app --factory
"""

from typing import Optional

from fastapi import FastAPI, HTTPException, Depends, Query, Request
from fastapi.middleware.cors import CORSMiddleware

from server.verification_service import VerificationService, build_service
from shared.config import Config
from shared.errors import InvalidTokenError, MalformedRequestError, ReplayedNonceError, TokenExpiredError
from shared.models import (
    AuditRecordList,
    HealthResponse,
    TokenVerifyRequest,
    TokenVerifyResponse,
    VerifyRequest,
    VerifyResponse,
)


def get_service(request: Request) -> VerificationService:
    """Dependency to obtain the app's verification service."""
    return request.app.state.service


def create_app(service: Optional[VerificationService] = None) -> FastAPI:
    """Build the API around `service` (default: wired from Config)."""
    app = FastAPI(title="EchoCheck Verification API", version="1.0.0")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=Config.ALLOWED_ORIGINS,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    app.state.service = service or build_service()

    @app.post("/api/verify", response_model=VerifyResponse)
    def verify(payload: VerifyRequest, service: VerificationService = Depends(get_service)):
        """
        Verify a client score and issue a token.

        Steps:
        1. Validate the request (400 on missing fields).
        2. Consume the nonce (403 on replay).
        3. Re-check the threshold and log the attempt.
        4. Return a token, or success=false below threshold.
        """
        try:
            outcome = service.submit(
                score=payload.score,
                nonce=payload.nonce,
                identity=payload.identity,
                timestamp=payload.timestamp,
            )
        except MalformedRequestError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except ReplayedNonceError as e:
            raise HTTPException(status_code=403, detail=str(e))

        if not outcome.success:
            return VerifyResponse(success=False, error=outcome.error)
        return VerifyResponse(success=True, token=outcome.token)

    @app.post("/api/token/verify", response_model=TokenVerifyResponse)
    def verify_token(payload: TokenVerifyRequest, service: VerificationService = Depends(get_service)):
        """Check a token's signature and expiry for a relying party."""
        try:
            claims = service.signer.verify(payload.token)
        except TokenExpiredError:
            return TokenVerifyResponse(valid=False, reason="expired")
        except InvalidTokenError as e:
            return TokenVerifyResponse(valid=False, reason=str(e))
        return TokenVerifyResponse(valid=True, claims=claims)

    @app.get("/api/verifications", response_model=AuditRecordList)
    def list_verifications(
        identity: str,
        limit: int = Query(20, ge=1, le=500),
        service: VerificationService = Depends(get_service),
    ):
        """Most recent verification attempts for one identity."""
        return AuditRecordList(identity=identity, records=service.recent(identity, limit))

    @app.get("/health", response_model=HealthResponse)
    def health_check(service: VerificationService = Depends(get_service)):
        """Liveness, plus whether replay protection is durable."""
        return HealthResponse(status="healthy", ledger=service.ledger.name, durable=service.durable)

    return app
