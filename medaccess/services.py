"""
Wiring for the delegation components.

Each component takes its collaborators explicitly; this container is the
one place that builds them from settings for the HTTP app.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine

from .access import (
    AuthorizationGate,
    CodeClock,
    CodeRedeemer,
    ExchangeTokenService,
    GrantLedger,
    SecretStore,
    SeedCipher,
)
from .access.models import Base as AccessBase
from .access.storage import SessionFactory
from .audit.service import AuditService
from .clock import Clock, SystemClock
from .config.settings import AccessSettings
from .directory.models import Base as DirectoryBase
from .directory.service import (
    RELATIONSHIP_STATUSES,
    ClinicianDirectory,
    EncounterRelationshipChecker,
)

logger = logging.getLogger(__name__)


@dataclass
class AccessServices:
    settings: AccessSettings
    clock: Clock
    audit: AuditService
    secrets: SecretStore
    code_clock: CodeClock
    tokens: ExchangeTokenService
    redeemer: CodeRedeemer
    ledger: GrantLedger
    gate: AuthorizationGate
    clinicians: ClinicianDirectory

    @classmethod
    def build(
        cls,
        session_factory: SessionFactory,
        settings: Optional[AccessSettings] = None,
        clock: Optional[Clock] = None,
        audit: Optional[AuditService] = None,
    ) -> "AccessServices":
        settings = settings or AccessSettings.from_provider()
        clock = clock or SystemClock()
        audit = audit or AuditService()

        cipher = SeedCipher(settings.seed_key)
        if not cipher.enabled:
            logger.warning("MEDACCESS_SEED_KEY not set; patient seeds are stored unencrypted")

        code_clock = CodeClock(step_seconds=settings.code_step_seconds, digits=settings.code_digits)
        secrets = SecretStore(session_factory, cipher=cipher, clock=clock, audit=audit)
        tokens = ExchangeTokenService(settings.exchange_secret, ttl=settings.exchange_ttl, clock=clock)
        ledger = GrantLedger(
            session_factory, tokens, clock=clock, grant_ttl=settings.grant_ttl, audit=audit
        )
        return cls(
            settings=settings,
            clock=clock,
            audit=audit,
            secrets=secrets,
            code_clock=code_clock,
            tokens=tokens,
            redeemer=CodeRedeemer(
                secrets,
                code_clock,
                tokens,
                clock=clock,
                drift_steps=settings.code_drift_steps,
                audit=audit,
            ),
            ledger=ledger,
            gate=AuthorizationGate(
                ledger,
                relationships=EncounterRelationshipChecker(
                    session_factory,
                    statuses=settings.relationship_statuses or RELATIONSHIP_STATUSES,
                ),
                audit=audit,
            ),
            clinicians=ClinicianDirectory(session_factory),
        )


async def init_schema(engine: AsyncEngine, include_directory: bool = False) -> None:
    """Create the delegation tables; directory tables only for standalone/dev use."""
    async with engine.begin() as conn:
        await conn.run_sync(AccessBase.metadata.create_all)
        if include_directory:
            await conn.run_sync(DirectoryBase.metadata.create_all)
