"""Access control for qdamcp.

Two independent switches guard a research team's coding data:
``QDA_AUTH_TOKEN`` makes every MCP request carry a shared bearer token, and
read-only mode (``QDA_READ_ONLY`` or ``--read-only``) lets collaborators
browse codes, excerpts and exports without being able to change them.
"""

import hmac
import logging

from fastmcp.server.auth import AccessToken, TokenVerifier

from qda_mcp.config import Config

logger = logging.getLogger(__name__)

READ_SCOPE = "read"
WRITE_SCOPE = "write"


class AuthError(Exception):
    """Raised when a request is not authenticated or a write is not allowed."""


def granted_scopes(config: Config) -> list[str]:
    """Scopes handed to an accepted client: no write scope in read-only mode."""
    if config.read_only:
        return [READ_SCOPE]
    return [READ_SCOPE, WRITE_SCOPE]


class BearerTokenVerifier(TokenVerifier):
    """Checks bearer tokens against the team's QDA_AUTH_TOKEN.

    Without a configured token every caller is let in as ``anonymous``.
    """

    def __init__(self, config: Config):
        super().__init__()
        self._config = config

    async def verify_token(self, token: str) -> AccessToken | None:
        """
        Verify a bearer token and return access info if valid.

        Args:
            token: The bearer token (without "Bearer " prefix)

        Returns:
            AccessToken with the scopes the server grants, None if rejected
        """
        scopes = granted_scopes(self._config)
        if self._config.auth_token is None:
            return AccessToken(token=token or "anonymous", client_id="anonymous", scopes=scopes)

        if not token:
            logger.warning("Rejected request without a bearer token")
            return None

        # Constant-time comparison
        if not hmac.compare_digest(token.encode(), self._config.auth_token.encode()):
            logger.warning("Rejected request with an invalid bearer token")
            return None

        return AccessToken(token=token, client_id="researcher", scopes=scopes)


def get_auth_provider(config: Config) -> BearerTokenVerifier | None:
    """Verifier for the server when QDA_AUTH_TOKEN is set, None otherwise."""
    if config.auth_token is None:
        return None
    return BearerTokenVerifier(config)


def check_write_permission(config: Config, operation: str | None = None) -> None:
    """
    Refuse a study mutation while the server is read-only.

    Args:
        config: Server configuration
        operation: Name of the rejected operation, for the log

    Raises:
        AuthError: If the server is in read-only mode
    """
    if not config.read_only:
        return
    if operation:
        logger.warning("Rejected %s: server is in read-only mode", operation)
    else:
        logger.warning("Rejected write: server is in read-only mode")
    raise AuthError("Server is in read-only mode")
