import os
from dataclasses import dataclass
from typing import Optional

from .arena import MEGABYTE


@dataclass
class AppConfig:
    """Application-level configuration loaded from environment variables."""

    spotify_client_id: str
    spotify_client_secret: str
    spotify_redirect_uri: str

    # Refresh-token cache; only used when both are set
    fernet_key: str = ""
    token_cache_path: str = ""

    output_dir: str = "."

    # Crawl tuning
    connection_count: int = 128  # general slots, one more is reserved for token refresh
    job_queue_capacity: int = 1024
    slot_arena_size: int = 64 * 1024  # grows on demand
    scratch_arena_size: int = MEGABYTE
    poll_timeout: float = 0.3  # seconds
    request_timeout: float = 30.0  # seconds

    @property
    def token_cache_enabled(self) -> bool:
        return bool(self.fernet_key and self.token_cache_path)

    @classmethod
    def from_env(cls) -> "AppConfig":
        """Load configuration from environment variables with basic validation."""

        def env(name: str, required: bool = True, default: Optional[str] = None) -> str:
            value = os.getenv(name, default)
            if required and not value:
                raise RuntimeError(f"Environment variable {name} is required")
            return value or ""

        connection_count = env("EXPORT_CONNECTION_COUNT", required=False, default="128")
        try:
            connections = int(connection_count)
        except ValueError as exc:
            raise RuntimeError(f"EXPORT_CONNECTION_COUNT must be an integer, got {connection_count!r}") from exc
        if connections < 1:
            raise RuntimeError("EXPORT_CONNECTION_COUNT must be at least 1")

        return cls(
            spotify_client_id=env("SPOTIFY_CLIENT_ID"),
            spotify_client_secret=env("SPOTIFY_CLIENT_SECRET"),
            spotify_redirect_uri=env("SPOTIFY_REDIRECT_URI"),
            fernet_key=env("FERNET_KEY", required=False),
            token_cache_path=env("TOKEN_CACHE_PATH", required=False),
            output_dir=env("EXPORT_OUTPUT_DIR", required=False, default="."),
            connection_count=connections,
        )


def get_config() -> AppConfig:
    """Convenience accessor used by the CLI."""
    return AppConfig.from_env()
