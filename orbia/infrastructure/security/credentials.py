"""Per-user, per-provider access credentials for tool back-ends."""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Callable, Dict, Optional, Tuple

import structlog
from sqlalchemy import select

from orbia.domain.errors import CredentialError
from orbia.infrastructure.persistence.database import Database
from orbia.infrastructure.persistence.models import LinkedAccountRow

logger = structlog.get_logger(__name__)

GOOGLE_PROVIDER = "google"


class CredentialProvider(ABC):
    """Contract: None when no account is linked, CredentialError when the credential is unusable"""

    @abstractmethod
    async def get_access_token(self, user_id: str, provider: str) -> Optional[str]:
        pass


class InMemoryCredentialProvider(CredentialProvider):
    """Static token table for development and tests"""

    def __init__(self, tokens: Optional[Dict[Tuple[str, str], Optional[str]]] = None):
        self.tokens: Dict[Tuple[str, str], Optional[str]] = dict(tokens or {})

    def link(self, user_id: str, token: Optional[str], provider: str = GOOGLE_PROVIDER):
        self.tokens[(user_id, provider)] = token

    async def get_access_token(self, user_id: str, provider: str) -> Optional[str]:
        key = (user_id, provider)
        if key not in self.tokens:
            return None
        token = self.tokens[key]
        if not token:
            raise CredentialError(f"Stored {provider} credential is unusable")
        return token


class SqlCredentialProvider(CredentialProvider):
    """Reads access tokens from the ``linked_accounts`` table"""

    def __init__(self, database: Database, clock: Callable[[], datetime] = datetime.utcnow):
        self.database = database
        self.clock = clock

    async def get_access_token(self, user_id: str, provider: str) -> Optional[str]:
        async with self.database.session_factory() as session:
            row = await session.scalar(
                select(LinkedAccountRow).where(
                    LinkedAccountRow.user_id == user_id,
                    LinkedAccountRow.provider == provider
                )
            )

        if row is None:
            return None
        if not row.access_token:
            raise CredentialError(f"No valid {provider} access token available")
        if row.expires_at is not None and row.expires_at <= self.clock():
            logger.info("Linked account token expired", user_id=user_id, provider=provider)
            raise CredentialError(f"{provider} access token expired, reconnect the account")
        return row.access_token
