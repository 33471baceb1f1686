"""Session issuing and validation backed by the shared state store."""

from typing import Optional

from usagegate.app.core.config import settings
from usagegate.app.core.logging import get_log_context, get_logger
from usagegate.app.core.security import generate_session_token
from usagegate.app.core.store import StateStore
from usagegate.app.exceptions import AuthError

logger = get_logger(__name__)


class SessionGate:
    """Resolves opaque session tokens to caller identities.

    Redis key format:
    - {prefix}:session:{token} - caller identity, expires after the session TTL
    """

    def __init__(
        self,
        store: StateStore,
        ttl_seconds: Optional[int] = None,
        key_prefix: Optional[str] = None,
    ) -> None:
        self._store = store
        self._ttl_seconds = (
            ttl_seconds if ttl_seconds is not None else settings.session_ttl_seconds
        )
        self._key_prefix = key_prefix or settings.key_prefix

    def _make_key(self, token: str) -> str:
        return f"{self._key_prefix}:session:{token}"

    async def create_session(self, caller: str) -> str:
        """Issue a new session token bound to caller.

        The session expires after the configured TTL and is never renewed.
        """
        token = generate_session_token()
        await self._store.set_string(self._make_key(token), caller, ttl=self._ttl_seconds)
        logger.info(
            "session.created",
            extra=get_log_context(caller=caller, ttl_s=self._ttl_seconds),
        )
        return token

    async def validate(self, token: Optional[str]) -> str:
        """Return the caller identity bound to token.

        Raises:
            AuthError: If the token is empty, expired or was never issued.
            StoreUnavailableError: If the store cannot be reached.
        """
        if not token:
            raise AuthError("Missing session token")

        caller = await self._store.get_string(self._make_key(token))
        if not caller:
            logger.info("session.rejected")
            raise AuthError("Invalid or expired session")
        return caller
