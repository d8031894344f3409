"""
Verification Client Module

Submits a passing score to the verification server and returns its answer.
A fresh nonce is generated for every submission. Failures to reach the
server, or non-200 answers, are raised as SubmissionError; the client
does not retry.
"""

import time
import uuid
from typing import Optional
import logging

import requests

from shared.errors import SubmissionError
from shared.models import VerifyRequest, VerifyResponse

logger = logging.getLogger(__name__)


class VerificationClient:
    """Thin wrapper around POST /api/verify."""

    def __init__(self, endpoint: str, timeout: float = 5.0, http=None):
        """
        Args:
            endpoint: Full URL of the verify endpoint.
            timeout: Request timeout in seconds.
            http: Object with a requests-compatible `post` method;
                  defaults to a new requests.Session.
        """
        self.endpoint = endpoint
        self.timeout = timeout
        self._http = http or requests.Session()

    @staticmethod
    def new_nonce() -> str:
        return str(uuid.uuid4())

    def submit(
        self,
        score: float,
        identity: str,
        nonce: Optional[str] = None,
        timestamp: Optional[float] = None,
    ) -> VerifyResponse:
        """
        Send the score for server-side verification.

        Returns:
            The server's VerifyResponse (success with token, or failure).

        Raises:
            SubmissionError: on network failure or an error status.
        """
        payload = VerifyRequest(
            score=score,
            nonce=nonce or self.new_nonce(),
            identity=identity,
            timestamp=timestamp if timestamp is not None else time.time() * 1000.0,
        )

        try:
            resp = self._http.post(self.endpoint, json=payload.model_dump(), timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise SubmissionError(f"Cannot reach verification server: {e}") from e

        if resp.status_code != 200:
            try:
                body = resp.json()
                detail = body.get("detail", "") if isinstance(body, dict) else body
            except ValueError:
                detail = resp.text
            raise SubmissionError(f"Server error {resp.status_code}: {detail}")

        try:
            result = VerifyResponse.model_validate(resp.json())
        except ValueError as e:
            raise SubmissionError(f"Invalid response from verification server: {e}") from e

        logger.debug(f"Verification response for nonce {payload.nonce}: success={result.success}")
        return result
