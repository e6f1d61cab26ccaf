import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker

from medaccess.access.errors import (
    GrantNotFound,
    InvalidInputFormat,
    TokenAlreadyUsed,
    TokenExpired,
    TokenMalformed,
    TokenPatientMismatch,
)
from medaccess.access.ledger import GrantLedger
from medaccess.access.models import ConsumedExchangeToken, MedicalAccessGrant
from medaccess.access.predicates import grant_status
from medaccess.access.tokens import ExchangeTokenService
from medaccess.database import create_engine_for_url
from medaccess.services import init_schema


@pytest.fixture
def tokens(clock):
    return ExchangeTokenService("ledger-secret-0123456789abcdef012345", clock=clock)


@pytest.fixture
def ledger(session_factory, tokens, clock, audit):
    return GrantLedger(session_factory, tokens, clock=clock, audit=audit)


async def _active_rows(session_factory, patient_id, doctor_id):
    async with session_factory() as session:
        return await session.scalar(
            select(func.count())
            .select_from(MedicalAccessGrant)
            .where(
                MedicalAccessGrant.patient_id == patient_id,
                MedicalAccessGrant.doctor_id == doctor_id,
                MedicalAccessGrant.is_active.is_(True),
            )
        )


@pytest.mark.asyncio
async def test_create_sets_24h_expiry(ledger, tokens, clock):
    grant = await ledger.create_or_renew("p1", "d1", tokens.issue("p1").token)
    assert grant.is_active is True
    assert grant.revoked_at is None
    assert grant.granted_at == clock.now()
    assert grant.expires_at == clock.now() + timedelta(hours=24)


@pytest.mark.asyncio
async def test_repeat_grant_renews_same_row(ledger, tokens, clock, session_factory):
    first = await ledger.create_or_renew("p1", "d1", tokens.issue("p1").token)
    clock.advance(hours=3)
    second = await ledger.create_or_renew("p1", "d1", tokens.issue("p1").token)

    assert second.id == first.id
    assert second.granted_at == clock.now()
    assert second.expires_at == clock.now() + timedelta(hours=24)
    assert await _active_rows(session_factory, "p1", "d1") == 1


@pytest.mark.asyncio
async def test_token_is_single_use(ledger, tokens, session_factory):
    token = tokens.issue("p1").token
    await ledger.create_or_renew("p1", "d1", token)
    with pytest.raises(TokenAlreadyUsed):
        await ledger.create_or_renew("p1", "d1", token)
    with pytest.raises(TokenAlreadyUsed):
        await ledger.create_or_renew("p1", "d2", token)

    async with session_factory() as session:
        consumed = (await session.execute(select(ConsumedExchangeToken))).scalars().all()
    assert len(consumed) == 1
    assert consumed[0].doctor_id == "d1"


@pytest.mark.asyncio
async def test_token_for_other_patient_grants_nothing(ledger, tokens, session_factory):
    with pytest.raises(TokenPatientMismatch):
        await ledger.create_or_renew("p2", "d1", tokens.issue("p1").token)
    assert await _active_rows(session_factory, "p2", "d1") == 0
    assert await _active_rows(session_factory, "p1", "d1") == 0


@pytest.mark.asyncio
async def test_expired_and_malformed_tokens_rejected(ledger, tokens, clock):
    token = tokens.issue("p1").token
    clock.advance(minutes=5)
    with pytest.raises(TokenExpired):
        await ledger.create_or_renew("p1", "d1", token)
    with pytest.raises(TokenMalformed):
        await ledger.create_or_renew("p1", "d1", "garbage")


@pytest.mark.asyncio
async def test_missing_ids_are_input_errors(ledger, tokens):
    with pytest.raises(InvalidInputFormat):
        await ledger.create_or_renew("", "d1", tokens.issue("p1").token)
    with pytest.raises(InvalidInputFormat):
        await ledger.create_or_renew("p1", "", tokens.issue("p1").token)


@pytest.mark.asyncio
async def test_expired_grant_is_hidden_but_never_rewritten(ledger, tokens, clock, session_factory):
    grant = await ledger.create_or_renew("p1", "d1", tokens.issue("p1").token)
    clock.advance(hours=24)

    assert await ledger.list_active("p1") == []
    assert await ledger.list_for_doctor("d1") == []
    assert await ledger.get_active("p1", "d1") is None

    async with session_factory() as session:
        row = await session.get(MedicalAccessGrant, grant.id)
    assert row.is_active is True
    assert grant_status(row, clock.now()) == "expired"


@pytest.mark.asyncio
async def test_expired_grant_is_renewed_in_place(ledger, tokens, clock, session_factory):
    first = await ledger.create_or_renew("p1", "d1", tokens.issue("p1").token)
    clock.advance(hours=30)
    second = await ledger.create_or_renew("p1", "d1", tokens.issue("p1").token)
    assert second.id == first.id
    assert await ledger.get_active("p1", "d1") is not None
    assert await _active_rows(session_factory, "p1", "d1") == 1


@pytest.mark.asyncio
async def test_list_active_is_scoped_to_patient(ledger, tokens, clock):
    await ledger.create_or_renew("p1", "d1", tokens.issue("p1").token)
    clock.advance(minutes=1)
    await ledger.create_or_renew("p1", "d2", tokens.issue("p1").token)
    await ledger.create_or_renew("p2", "d1", tokens.issue("p2").token)

    p1 = await ledger.list_active("p1")
    assert [g.doctor_id for g in p1] == ["d2", "d1"]
    assert {g.patient_id for g in await ledger.list_for_doctor("d1")} == {"p1", "p2"}


@pytest.mark.asyncio
async def test_revoke_deactivates_and_records_time(ledger, tokens, clock, session_factory):
    await ledger.create_or_renew("p1", "d1", tokens.issue("p1").token)
    clock.advance(minutes=10)
    revoked = await ledger.revoke("p1", "d1")

    assert revoked.is_active is False
    assert revoked.revoked_at == clock.now()
    assert await ledger.list_active("p1") == []
    assert await ledger.get_active("p1", "d1") is None

    with pytest.raises(GrantNotFound):
        await ledger.revoke("p1", "d1")


@pytest.mark.asyncio
async def test_revoke_without_grant_or_after_expiry_is_not_found(ledger, tokens, clock):
    with pytest.raises(GrantNotFound):
        await ledger.revoke("p1", "d1")
    await ledger.create_or_renew("p1", "d1", tokens.issue("p1").token)
    clock.advance(hours=25)
    with pytest.raises(GrantNotFound):
        await ledger.revoke("p1", "d1")


@pytest.mark.asyncio
async def test_grant_after_revoke_starts_a_new_row(ledger, tokens, session_factory):
    first = await ledger.create_or_renew("p1", "d1", tokens.issue("p1").token)
    await ledger.revoke("p1", "d1")
    second = await ledger.create_or_renew("p1", "d1", tokens.issue("p1").token)

    assert second.id != first.id
    assert second.is_active is True and second.revoked_at is None
    assert await _active_rows(session_factory, "p1", "d1") == 1
    async with session_factory() as session:
        total = await session.scalar(select(func.count()).select_from(MedicalAccessGrant))
    assert total == 2


@pytest.mark.asyncio
async def test_store_rejects_second_active_row_for_pair(session_factory, clock):
    now = clock.now()
    async with session_factory() as session:
        session.add(MedicalAccessGrant(patient_id="p1", doctor_id="d1", granted_at=now, expires_at=now, is_active=True))
        session.add(MedicalAccessGrant(patient_id="p1", doctor_id="d1", granted_at=now, expires_at=now, is_active=True))
        with pytest.raises(IntegrityError):
            await session.commit()


@pytest.mark.asyncio
async def test_racing_creator_becomes_renewal(ledger, tokens, clock, session_factory, monkeypatch, audit):
    winner = await ledger.create_or_renew("p1", "d1", tokens.issue("p1").token)

    real_find = ledger._find_active
    calls = {"n": 0}

    async def stale_then_real(session, patient_id, doctor_id):
        # First lookup misses the winner's row, as a concurrent reader would
        calls["n"] += 1
        if calls["n"] == 1:
            return None
        return await real_find(session, patient_id, doctor_id)

    monkeypatch.setattr(ledger, "_find_active", stale_then_real)
    clock.advance(minutes=1)
    loser = await ledger.create_or_renew("p1", "d1", tokens.issue("p1").token)

    assert calls["n"] == 2
    assert loser.id == winner.id
    assert loser.expires_at == clock.now() + timedelta(hours=24)
    assert await _active_rows(session_factory, "p1", "d1") == 1
    renewed = await audit.list_events(event_type="grant_renewed")
    assert renewed["items"][0]["resource_id"] == winner.id


@pytest.mark.asyncio
async def test_spent_token_records_are_pruned_once_expired(ledger, tokens, clock, session_factory):
    await ledger.create_or_renew("p1", "d1", tokens.issue("p1").token)
    await ledger.create_or_renew("p2", "d1", tokens.issue("p2").token)

    clock.advance(minutes=5)
    latest = tokens.issue("p1")
    await ledger.create_or_renew("p1", "d2", latest.token)

    async with session_factory() as session:
        consumed = (await session.execute(select(ConsumedExchangeToken))).scalars().all()
    assert [c.jti for c in consumed] == [tokens.verify(latest.token, "p1").jti]


@pytest.mark.asyncio
async def test_unexpired_spent_tokens_survive_pruning(ledger, tokens, clock):
    token = tokens.issue("p1").token
    await ledger.create_or_renew("p1", "d1", token)
    clock.advance(minutes=4, seconds=59)
    await ledger.create_or_renew("p2", "d1", tokens.issue("p2").token)
    with pytest.raises(TokenAlreadyUsed):
        await ledger.create_or_renew("p1", "d1", token)


@pytest.mark.asyncio
async def test_concurrent_grants_on_shared_database_leave_one_active_row(tmp_path, clock):
    engine = create_engine_for_url(f"sqlite+aiosqlite:///{tmp_path / 'grants.db'}")
    await init_schema(engine)
    factory = async_sessionmaker(engine, expire_on_commit=False)
    tokens = ExchangeTokenService("ledger-secret-0123456789abcdef012345", clock=clock)
    ledger = GrantLedger(factory, tokens, clock=clock)
    try:
        grants = await asyncio.gather(
            *(ledger.create_or_renew("p1", "d1", tokens.issue("p1").token) for _ in range(8))
        )
        assert {g.id for g in grants} == {grants[0].id}
        assert await _active_rows(factory, "p1", "d1") == 1
    finally:
        await engine.dispose()
