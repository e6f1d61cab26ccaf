import base64
import json
from datetime import timedelta

import jwt
import pytest

from medaccess.access.errors import TokenExpired, TokenMalformed, TokenPatientMismatch
from medaccess.access.tokens import EXCHANGE_AUDIENCE, EXCHANGE_TOKEN_TYPE, ExchangeTokenService

SECRET = "token-test-secret-0123456789abcdef012345"


@pytest.fixture
def tokens(clock):
    return ExchangeTokenService(SECRET, ttl=timedelta(minutes=5), clock=clock)


def test_issue_binds_patient_and_five_minute_expiry(tokens, clock):
    issued = tokens.issue("patient-1")
    assert issued.patient_id == "patient-1"
    assert issued.expires_in == 300
    assert issued.expires_at == clock.now() + timedelta(minutes=5)

    claims = tokens.verify(issued.token, "patient-1")
    assert claims.patient_id == "patient-1"
    assert claims.expires_at == issued.expires_at
    assert claims.jti


def test_each_token_has_a_distinct_id(tokens):
    a = tokens.verify(tokens.issue("p").token, "p")
    b = tokens.verify(tokens.issue("p").token, "p")
    assert a.jti != b.jti


def test_token_for_other_patient_is_rejected(tokens):
    issued = tokens.issue("patient-1")
    with pytest.raises(TokenPatientMismatch):
        tokens.verify(issued.token, "patient-2")


def test_token_expires_after_window(tokens, clock):
    issued = tokens.issue("patient-1")
    clock.advance(minutes=4, seconds=59)
    tokens.verify(issued.token, "patient-1")
    clock.advance(seconds=1)
    with pytest.raises(TokenExpired):
        tokens.verify(issued.token, "patient-1")


def test_unsigned_base64_payload_is_rejected(tokens, clock):
    forged = base64.b64encode(
        json.dumps(
            {"patientId": "patient-1", "expiresAt": int((clock.now().timestamp() + 3600) * 1000)}
        ).encode()
    ).decode()
    with pytest.raises(TokenMalformed):
        tokens.verify(forged, "patient-1")


def test_token_signed_with_other_key_is_rejected(clock):
    theirs = ExchangeTokenService("someone-elses-secret-0123456789abcdef", clock=clock)
    ours = ExchangeTokenService(SECRET, clock=clock)
    with pytest.raises(TokenMalformed):
        ours.verify(theirs.issue("patient-1").token, "patient-1")


def test_extended_expiry_breaks_signature(tokens):
    issued = tokens.issue("patient-1")
    header, payload, signature = issued.token.split(".")
    claims = json.loads(base64.urlsafe_b64decode(payload + "=" * (-len(payload) % 4)))
    claims["exp"] += 86400
    claims["sub"] = "patient-2"
    tampered_payload = base64.urlsafe_b64encode(json.dumps(claims).encode()).decode().rstrip("=")
    with pytest.raises(TokenMalformed):
        tokens.verify(f"{header}.{tampered_payload}.{signature}", "patient-2")


def test_alg_none_token_is_rejected(tokens, clock):
    now = int(clock.now().timestamp())
    token = jwt.encode(
        {
            "sub": "patient-1",
            "typ": EXCHANGE_TOKEN_TYPE,
            "aud": EXCHANGE_AUDIENCE,
            "iat": now,
            "exp": now + 300,
            "jti": "x",
        },
        None,
        algorithm="none",
    )
    with pytest.raises(TokenMalformed):
        tokens.verify(token, "patient-1")


def test_session_style_token_with_same_key_is_not_an_exchange_token(tokens, clock):
    now = int(clock.now().timestamp())
    token = jwt.encode(
        {"sub": "patient-1", "type": "user", "aud": EXCHANGE_AUDIENCE, "iat": now, "exp": now + 300, "jti": "j"},
        SECRET,
        algorithm="HS256",
    )
    with pytest.raises(TokenMalformed):
        tokens.verify(token, "patient-1")


@pytest.mark.parametrize("garbage", ["", "   ", "not-a-token", "a.b.c", None])
def test_garbage_is_malformed(tokens, garbage):
    with pytest.raises(TokenMalformed):
        tokens.verify(garbage, "patient-1")


def test_error_messages_do_not_echo_token(tokens):
    issued = tokens.issue("patient-1")
    with pytest.raises(TokenPatientMismatch) as excinfo:
        tokens.verify(issued.token, "patient-2")
    assert issued.token not in str(excinfo.value)
    assert "patient-1" not in excinfo.value.to_dict()["detail"]


def test_sub_second_issue_time_never_shortens_lifetime(tokens, clock):
    clock.advance(seconds=0.4)
    issued = tokens.issue("patient-1")
    assert issued.expires_in == 300
    assert issued.expires_at >= clock.now() + timedelta(minutes=5)

    clock.advance(seconds=299.8)
    assert tokens.verify(issued.token, "patient-1").patient_id == "patient-1"
    clock.advance(seconds=1)
    with pytest.raises(TokenExpired):
        tokens.verify(issued.token, "patient-1")
