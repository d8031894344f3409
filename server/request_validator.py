"""
Request Validator Module

Checks that a verification request carries everything the protocol needs
before any ledger or audit state is touched. Only presence, type and range
are checked; the score itself is judged later by the service.
"""

import math
from typing import Any, Dict, Tuple

from pydantic import ValidationError

from shared.models import VerifyRequest


class RequestValidator:
    """
    Validates verification requests.
    Missing fields and out-of-range scores make a request malformed.
    """

    def __init__(self):
        # Acceptable ranges (tunable parameters)
        self.score_min = 0.0
        self.score_max = 1.0
        self.max_nonce_length = 128
        self.max_identity_length = 256

    def validate(self, payload: VerifyRequest) -> Tuple[bool, str]:
        """
        Check if the incoming request is complete and plausible.

        Returns:
            Tuple (is_valid, reason). If valid, reason is empty string.
        """
        # 1. Required fields
        missing = [
            name for name, value in (
                ("score", payload.score),
                ("nonce", payload.nonce),
                ("identity", payload.identity),
            )
            if value is None or (isinstance(value, str) and not value.strip())
        ]
        if missing:
            return False, f"Missing required fields: {', '.join(missing)}"

        # 2. Score bounds
        if not math.isfinite(payload.score) or not (self.score_min <= payload.score <= self.score_max):
            return False, f"Score {payload.score} out of range [{self.score_min}, {self.score_max}]"

        # 3. Field lengths
        if len(payload.nonce) > self.max_nonce_length:
            return False, "Nonce is too long"
        if len(payload.identity) > self.max_identity_length:
            return False, "Identity is too long"

        # 4. Timestamp is optional, but must be positive when present
        if payload.timestamp is not None and (not math.isfinite(payload.timestamp) or payload.timestamp <= 0):
            return False, "Invalid timestamp"

        return True, ""

    def validate_dict(self, data: Dict[str, Any]) -> Tuple[bool, str]:
        """
        Convenience method for validating raw dictionaries.
        Attempts to construct a VerifyRequest first.
        """
        try:
            payload = VerifyRequest.model_validate(data)
        except ValidationError as e:
            return False, f"Payload parsing failed: {e}"
        return self.validate(payload)
