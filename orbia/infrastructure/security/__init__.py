from .credentials import (
    GOOGLE_PROVIDER,
    CredentialProvider,
    InMemoryCredentialProvider,
    SqlCredentialProvider,
)
from .session import (
    InMemorySessionProvider,
    Principal,
    SessionProvider,
    SqlSessionProvider,
    extract_token,
)

__all__ = [
    "GOOGLE_PROVIDER",
    "CredentialProvider",
    "InMemoryCredentialProvider",
    "InMemorySessionProvider",
    "Principal",
    "SessionProvider",
    "SqlCredentialProvider",
    "SqlSessionProvider",
    "extract_token",
]
