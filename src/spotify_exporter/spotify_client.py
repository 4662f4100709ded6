from __future__ import annotations

from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlencode

import httpx
import requests

from .arena import MEGABYTE, Arena
from .config import AppConfig
from .errors import AuthError
from .json_parser import JsonElement, get_count, get_element, get_string, parse_json
from .transport import Request


SPOTIFY_AUTHORIZE_URL = "https://accounts.spotify.com/authorize"
SPOTIFY_TOKEN_URL = "https://accounts.spotify.com/api/token"
SPOTIFY_API_BASE = "https://api.spotify.com/v1"

PLAYLIST_LIST_URI = f"{SPOTIFY_API_BASE}/me/playlists"
PLAYLIST_URI = f"{SPOTIFY_API_BASE}/playlists"

SCOPES = "playlist-read-private playlist-read-collaborative"

OK_RESPONSE = 200
EXPIRED_TOKEN_RESPONSE = 401


@dataclass
class Credentials:
    access_token: str = ""
    refresh_token: str = ""
    token_type: str = "Bearer"
    expires_in: int = 0
    scope: Optional[str] = None


def authorization_url(cfg: AppConfig) -> str:
    """URL the user opens to grant access and obtain an authorization code."""
    params = {
        "client_id": cfg.spotify_client_id,
        "response_type": "code",
        "redirect_uri": cfg.spotify_redirect_uri,
        "scope": SCOPES,
    }
    return f"{SPOTIFY_AUTHORIZE_URL}?{urlencode(params)}"


def credentials_from_json(token_json: JsonElement, previous: Optional[Credentials] = None) -> Credentials:
    """
    Read a token endpoint response.

    Fields missing from the response keep their previous value; Spotify only
    sends a new refresh_token when it rotates it.
    """
    previous = previous or Credentials()
    access_token = get_string(get_element(token_json, "access_token"))
    refresh_token = get_string(get_element(token_json, "refresh_token"))
    token_type = get_string(get_element(token_json, "token_type"))
    expires_in = get_count(get_element(token_json, "expires_in"))
    scope = get_string(get_element(token_json, "scope"))
    return Credentials(
        access_token=access_token or previous.access_token,
        refresh_token=refresh_token or previous.refresh_token,
        token_type=token_type or previous.token_type,
        expires_in=expires_in if expires_in is not None else previous.expires_in,
        scope=scope if scope is not None else previous.scope,
    )


def exchange_code_for_tokens(code: str, cfg: AppConfig, arena: Optional[Arena] = None) -> Credentials:
    """
    Exchange authorization code for access + refresh tokens.
    """
    data = {
        "grant_type": "authorization_code",
        "code": code,
        "redirect_uri": cfg.spotify_redirect_uri,
    }
    try:
        resp = requests.post(
            SPOTIFY_TOKEN_URL,
            data=data,
            auth=(cfg.spotify_client_id, cfg.spotify_client_secret),
            timeout=cfg.request_timeout,
        )
    except requests.RequestException as exc:
        raise AuthError(f"problem while connecting with spotify: {exc}") from exc
    if resp.status_code != OK_RESPONSE:
        raise AuthError(
            "problem while connecting with spotify, "
            "check if you copied the authorization code correctly"
        )

    arena = arena or Arena(MEGABYTE)
    try:
        token_json = parse_json(arena, resp.content)
        if not token_json.is_valid or get_element(token_json, "error").is_valid:
            raise AuthError("invalid authorization code, check if you copied it correctly")
        tokens = credentials_from_json(token_json)
    finally:
        arena.clear()
    if not tokens.access_token:
        raise AuthError("spotify did not return an access token")
    return tokens


def build_refresh_request(cfg: AppConfig, refresh_token: str) -> Request:
    """
    Token refresh request; the client authenticates with HTTP basic auth.
    """
    return Request(
        method="POST",
        url=SPOTIFY_TOKEN_URL,
        data={"grant_type": "refresh_token", "refresh_token": refresh_token},
        auth=(cfg.spotify_client_id, cfg.spotify_client_secret),
    )


def build_page_request(uri: str, access_token: str) -> Request:
    headers = {"Authorization": f"Bearer {access_token}"}
    return Request(method="GET", url=uri, headers=headers)


def page_uri(uri: str, offset: int, limit: int) -> str:
    return str(httpx.URL(uri).copy_merge_params({"offset": offset, "limit": limit}))


def playlist_uri(playlist_id: str) -> str:
    return f"{PLAYLIST_URI}/{playlist_id}"


def playlist_tracks_uri(uri: str, offset: int, limit: int) -> str:
    return page_uri(f"{uri}/tracks", offset, limit)
