"""
Session resolution for incoming requests.

The identity provider issues opaque session tokens; this module only looks
them up. Cookie issuance and login flows live elsewhere.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Optional

import structlog

from orbia.infrastructure.persistence.database import Database
from orbia.infrastructure.persistence.models import SessionRow

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Principal:
    """Caller identity as seen by tools and the executor"""
    user_id: str
    authenticated: bool = True

    @classmethod
    def anonymous(cls, user_id: str = "anonymous") -> "Principal":
        return cls(user_id=user_id, authenticated=False)


def extract_token(authorization: Optional[str], cookie: Optional[str] = None) -> Optional[str]:
    """Bearer token from the Authorization header, falling back to the session cookie"""

    if authorization:
        scheme, _, value = authorization.partition(" ")
        if scheme.lower() == "bearer" and value.strip():
            return value.strip()
    if cookie and cookie.strip():
        return cookie.strip()
    return None


class SessionProvider(ABC):
    """Resolves a session token to an authenticated principal"""

    @abstractmethod
    async def resolve(self, token: Optional[str]) -> Optional[Principal]:
        """Principal for a valid token, None otherwise"""
        pass


class InMemorySessionProvider(SessionProvider):
    """Token table held in memory, for development and tests"""

    def __init__(self, sessions: Optional[Dict[str, str]] = None):
        self.sessions: Dict[str, str] = dict(sessions or {})

    async def resolve(self, token: Optional[str]) -> Optional[Principal]:
        if not token:
            return None
        user_id = self.sessions.get(token)
        return Principal(user_id=user_id) if user_id else None


class SqlSessionProvider(SessionProvider):
    """Looks session tokens up in the ``sessions`` table"""

    def __init__(self, database: Database, clock: Callable[[], datetime] = datetime.utcnow):
        self.database = database
        self.clock = clock

    async def resolve(self, token: Optional[str]) -> Optional[Principal]:
        if not token:
            return None

        async with self.database.session_factory() as session:
            row = await session.get(SessionRow, token)

        if row is None:
            logger.info("Unknown session token", token_prefix=token[:6])
            return None
        if row.expires_at <= self.clock():
            logger.info("Expired session", user_id=row.user_id)
            return None
        return Principal(user_id=row.user_id)
