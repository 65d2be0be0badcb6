"""Configuration module for qdamcp.

Loads configuration from environment variables with sensible defaults.
"""

import os
from dataclasses import dataclass
from pathlib import Path

DEFAULT_AI_API_URL = "https://api.openai.com/v1/chat/completions"
DEFAULT_AI_MODEL = "gpt-4"


def _int_from_env(name: str, default: str, minimum: int) -> int:
    raw = os.getenv(name, default)
    try:
        value = int(raw)
        if value < minimum:
            raise ValueError(f"must be >= {minimum}, got {value}")
    except ValueError as e:
        raise ValueError(f"Invalid {name} value '{raw}': {e}") from e
    return value


@dataclass
class Config:
    """Application configuration."""

    qda_root: Path
    qda_port: int
    qda_state: Path
    auth_token: str | None
    read_only: bool
    autosave_interval: int = 30
    max_analytics_logs: int = 5000
    ai_api_key: str | None = None
    ai_api_url: str = DEFAULT_AI_API_URL
    ai_model: str = DEFAULT_AI_MODEL
    ai_timeout: float = 30.0

    @classmethod
    def from_env(
        cls,
        read_only_override: bool | None = None,
        state_override: Path | None = None,
    ) -> "Config":
        """Load configuration from environment variables.

        Args:
            read_only_override: If provided, overrides the QDA_READ_ONLY env var.
            state_override: If provided, overrides the QDA_STATE env var.
        """
        default_root = str(Path.home() / ".qda")
        qda_root = Path(os.getenv("QDA_ROOT", default_root)).expanduser()

        port_str = os.getenv("QDA_PORT", "8080")
        try:
            qda_port = int(port_str)
            if not 1 <= qda_port <= 65535:
                raise ValueError(f"Port must be between 1 and 65535, got {qda_port}")
        except ValueError as e:
            raise ValueError(f"Invalid QDA_PORT value '{port_str}': {e}") from e

        if state_override is not None:
            qda_state = Path(state_override).expanduser()
        else:
            default_state = str(qda_root / "qda-storage.json")
            qda_state = Path(os.getenv("QDA_STATE", default_state)).expanduser()

        # Auth token - must be at least 32 bytes if set
        auth_token = os.getenv("QDA_AUTH_TOKEN")
        if auth_token is not None:
            if len(auth_token) < 32:
                raise ValueError(
                    "QDA_AUTH_TOKEN must be at least 32 characters for security"
                )

        # Read-only mode - CLI flag takes precedence over env var
        if read_only_override is not None:
            read_only = read_only_override
        else:
            read_only = os.getenv("QDA_READ_ONLY", "").lower() in ("1", "true", "yes")

        # 0 disables the background thread; writes are then flushed immediately
        autosave_interval = _int_from_env("QDA_AUTOSAVE_INTERVAL", "30", 0)
        max_analytics_logs = _int_from_env("QDA_MAX_ANALYTICS_LOGS", "5000", 1)

        timeout_str = os.getenv("QDA_AI_TIMEOUT", "30")
        try:
            ai_timeout = float(timeout_str)
            if ai_timeout <= 0:
                raise ValueError(f"Timeout must be positive, got {ai_timeout}")
        except ValueError as e:
            raise ValueError(f"Invalid QDA_AI_TIMEOUT value '{timeout_str}': {e}") from e

        return cls(
            qda_root=qda_root,
            qda_port=qda_port,
            qda_state=qda_state,
            auth_token=auth_token,
            read_only=read_only,
            autosave_interval=autosave_interval,
            max_analytics_logs=max_analytics_logs,
            ai_api_key=os.getenv("QDA_AI_API_KEY") or None,
            ai_api_url=os.getenv("QDA_AI_API_URL", DEFAULT_AI_API_URL),
            ai_model=os.getenv("QDA_AI_MODEL", DEFAULT_AI_MODEL),
            ai_timeout=ai_timeout,
        )


# Global config instance (lazy loaded)
_config: Config | None = None
_read_only_override: bool | None = None


def set_read_only_override(read_only: bool | None) -> None:
    """Set the read-only override from CLI.

    Args:
        read_only: If True, forces read-only mode. If None, uses env var.
    """
    global _read_only_override
    _read_only_override = read_only


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = Config.from_env(read_only_override=_read_only_override)
    return _config


def reset_config() -> None:
    """Reset the global configuration (useful for testing)."""
    global _config, _read_only_override
    _config = None
    _read_only_override = None
