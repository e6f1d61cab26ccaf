from .errors import (
    AccessError,
    InvalidInputFormat,
    NoMatchingSecret,
    TokenInvalid,
    TokenExpired,
    TokenMalformed,
    TokenPatientMismatch,
    TokenAlreadyUsed,
    GrantNotFound,
    StoreUnavailable,
)
from .models import Base, PatientSecret, MedicalAccessGrant, ConsumedExchangeToken
from .code_clock import CodeClock, CurrentCode
from .seed_cipher import SeedCipher
from .secret_store import SecretStore
from .tokens import ExchangeTokenService, ExchangeClaims, IssuedExchangeToken
from .redeemer import CodeRedeemer
from .ledger import GrantLedger
from .gate import AuthorizationGate, AccessDecision

__all__ = [
    "AccessError",
    "InvalidInputFormat",
    "NoMatchingSecret",
    "TokenInvalid",
    "TokenExpired",
    "TokenMalformed",
    "TokenPatientMismatch",
    "TokenAlreadyUsed",
    "GrantNotFound",
    "StoreUnavailable",
    "Base",
    "PatientSecret",
    "MedicalAccessGrant",
    "ConsumedExchangeToken",
    "CodeClock",
    "CurrentCode",
    "SeedCipher",
    "SecretStore",
    "ExchangeTokenService",
    "ExchangeClaims",
    "IssuedExchangeToken",
    "CodeRedeemer",
    "GrantLedger",
    "AuthorizationGate",
    "AccessDecision",
]
