from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from .date_utils import now_utc_iso


logger = logging.getLogger(__name__)


def encrypt_refresh_token(refresh_token: str, fernet_key: str) -> str:
    """Fernet token of `refresh_token`, as text."""
    return Fernet(fernet_key.encode("utf-8")).encrypt(refresh_token.encode("utf-8")).decode("utf-8")


def decrypt_refresh_token(refresh_token_enc: str, fernet_key: str) -> str:
    """Raises ValueError for an empty value and InvalidToken when the key does not match."""
    if not refresh_token_enc:
        raise ValueError("empty encrypted refresh token")
    return Fernet(fernet_key.encode("utf-8")).decrypt(refresh_token_enc.encode("utf-8")).decode("utf-8")


def save_refresh_token(path: str | Path, refresh_token: str, fernet_key: str) -> None:
    """
    Store the refresh token encrypted, so the next run can start without an
    authorization code.
    """
    path = Path(path)
    state = {
        "refresh_token_enc": encrypt_refresh_token(refresh_token, fernet_key),
        "updated_at": now_utc_iso(),
    }
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(state), encoding="utf-8")


def load_refresh_token(path: str | Path, fernet_key: str) -> Optional[str]:
    """Return the cached refresh token, or None when there is no usable cache."""
    path = Path(path)
    if not path.exists():
        return None
    try:
        state = json.loads(path.read_text(encoding="utf-8"))
        return decrypt_refresh_token(str(state.get("refresh_token_enc", "")), fernet_key)
    except (OSError, ValueError, AttributeError, InvalidToken) as exc:
        logger.warning("Ignoring unreadable token cache %s: %s", path, exc)
        return None
