"""
Error taxonomy for the delegation protocol.

Each error carries the HTTP status and a stable public code. Messages are
written for the caller and never include codes, seeds or token contents.
"""

from __future__ import annotations

from typing import Optional


class AccessError(Exception):
    status_code = 400
    code = "access_error"
    message = "Request could not be processed"

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message or self.message)
        self.detail = message or self.message

    def to_dict(self) -> dict:
        return {"error": self.code, "detail": self.detail}


class InvalidInputFormat(AccessError):
    status_code = 400
    code = "invalid_format"
    message = "Invalid input format"


class NoMatchingSecret(AccessError):
    # Same response for a wrong code and an unknown patient
    status_code = 401
    code = "invalid_code"
    message = "Invalid or expired code"


class TokenInvalid(AccessError):
    status_code = 401
    code = "token_invalid"
    message = "Exchange token is not valid"


class TokenExpired(TokenInvalid):
    code = "token_expired"
    message = "Exchange token has expired"


class TokenMalformed(TokenInvalid):
    code = "token_malformed"
    message = "Exchange token is malformed"


class TokenPatientMismatch(TokenInvalid):
    code = "token_patient_mismatch"
    message = "Exchange token was not issued for this patient"


class TokenAlreadyUsed(TokenInvalid):
    code = "token_already_used"
    message = "Exchange token has already been used"


class GrantNotFound(AccessError):
    status_code = 404
    code = "grant_not_found"
    message = "No active grant for this clinician"


class StoreUnavailable(AccessError):
    status_code = 503
    code = "store_unavailable"
    message = "Access store is temporarily unavailable"
