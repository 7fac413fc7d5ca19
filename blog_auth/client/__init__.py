from .api_client import AuthClientError, BlogAuthClient
from .session_store import (
    ClientSessionStore,
    FileSessionStorage,
    MemorySessionStorage,
    SessionBroadcaster,
    SessionStorage,
)

__all__ = [
    "AuthClientError",
    "BlogAuthClient",
    "ClientSessionStore",
    "FileSessionStorage",
    "MemorySessionStorage",
    "SessionBroadcaster",
    "SessionStorage",
]
