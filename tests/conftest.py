from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

import httpx
import pytest

from spotify_exporter.arena import Arena
from spotify_exporter.config import AppConfig
from spotify_exporter.processor import Playlist
from spotify_exporter.transport import Completion, Request


@dataclass
class FakePlaylist:
    playlist_id: str
    name: str
    track_count: int
    broken_tracks: Tuple[int, ...] = ()


def track_item(playlist: FakePlaylist, index: int) -> dict:
    if index in playlist.broken_tracks:
        return {"added_at": "2021-03-04T05:06:07Z", "track": None}
    return {
        "added_at": "2021-03-04T05:06:07Z",
        "track": {
            "name": f"{playlist.name} song {index}",
            "album": {"name": f"{playlist.name} album"},
            "artists": [{"name": "First"}, {"name": "Second"}],
            "duration_ms": 1000 * (index + 1),
        },
    }


class FakeSpotify:
    """In-memory Web API serving the playlist endpoints and the token endpoint."""

    def __init__(
        self,
        playlists: List[FakePlaylist],
        list_limit: int = 2,
        track_limit: int = 20,
        valid_tokens: Tuple[str, ...] = ("new",),
    ) -> None:
        self.playlists = {playlist.playlist_id: playlist for playlist in playlists}
        self.order = [playlist.playlist_id for playlist in playlists]
        self.list_limit = list_limit
        self.track_limit = track_limit
        self.valid_tokens = set(valid_tokens)
        self.refreshed_token = "new"
        self.refresh_status = 200
        self.status_overrides: Dict[str, int] = {}
        self.served: List[str] = []
        self.token_requests = 0
        # the first N requests made with "old" succeed, later ones get 401
        self.old_token_budget: Optional[int] = None

    def respond(self, method: str, url: str, headers: Dict[str, str]) -> Tuple[int, bytes]:
        parsed = httpx.URL(url)
        if parsed.path == "/api/token":
            self.token_requests += 1
            if self.refresh_status != 200:
                return self.refresh_status, b'{"error": "invalid_grant"}'
            body = {"access_token": self.refreshed_token, "token_type": "Bearer", "expires_in": 3600}
            return 200, json.dumps(body).encode()

        lowered = {key.lower(): value for key, value in headers.items()}
        token = lowered.get("authorization", "").replace("Bearer ", "")
        if token == "old" and self.old_token_budget is not None:
            if self.old_token_budget <= 0:
                return 401, b'{"error": {"status": 401, "message": "The access token expired"}}'
            self.old_token_budget -= 1
        elif token not in self.valid_tokens:
            return 401, b'{"error": {"status": 401, "message": "The access token expired"}}'

        self.served.append(url)
        if url in self.status_overrides:
            return self.status_overrides[url], b"{}"

        offset = int(parsed.params.get("offset", 0))
        path = parsed.path
        if path == "/v1/me/playlists":
            limit = int(parsed.params.get("limit", self.list_limit))
            return 200, json.dumps(self.list_page(offset, limit)).encode()

        parts = path.split("/")
        playlist = self.playlists[parts[3]]
        if len(parts) == 4:
            body = {"name": playlist.name, "tracks": self.track_page(playlist, 0, self.track_limit)}
            return 200, json.dumps(body).encode()
        limit = int(parsed.params.get("limit", self.track_limit))
        return 200, json.dumps(self.track_page(playlist, offset, limit)).encode()

    def list_page(self, offset: int, limit: int) -> dict:
        ids = self.order[offset:offset + limit]
        return {
            "items": [{"id": playlist_id, "name": self.playlists[playlist_id].name} for playlist_id in ids],
            "total": len(self.order),
            "limit": limit,
            "offset": offset,
        }

    def track_page(self, playlist: FakePlaylist, offset: int, limit: int) -> dict:
        end = min(offset + limit, playlist.track_count)
        return {
            "items": [track_item(playlist, index) for index in range(offset, end)],
            "total": playlist.track_count,
            "limit": limit,
            "offset": offset,
        }

    def httpx_handler(self, request: httpx.Request) -> httpx.Response:
        status_code, body = self.respond(request.method, str(request.url), dict(request.headers))
        return httpx.Response(status_code, content=body)


class FakeTransport:
    """
    Scheduler transport answering from a FakeSpotify.

    Every in-flight request finishes on the next `perform`, and completions are
    reported newest first so the crawl sees pages out of order.
    """

    def __init__(self, server: FakeSpotify) -> None:
        self.server = server
        self.in_flight: Dict[int, Tuple[Request, Arena]] = {}
        self.finished: List[Completion] = []
        self.handles_used: List[int] = []
        self.max_in_flight = 0
        self.errors: Dict[str, BaseException] = {}
        self.closed = False

    def add(self, handle: int, request: Request, sink: Arena) -> None:
        assert handle not in self.in_flight
        self.in_flight[handle] = (request, sink)
        self.handles_used.append(handle)
        self.max_in_flight = max(self.max_in_flight, len(self.in_flight))

    def remove(self, handle: int) -> None:
        self.in_flight.pop(handle, None)

    async def perform(self) -> int:
        for handle, (request, sink) in list(self.in_flight.items()):
            if any(completion.handle == handle for completion in self.finished):
                continue
            if request.url in self.errors:
                self.finished.append(Completion(handle, 0, self.errors[request.url]))
                continue
            status_code, body = self.server.respond(request.method, request.url, request.headers)
            sink.push_bytes(body)
            self.finished.append(Completion(handle, status_code))
        return 0

    async def wait(self, timeout: float) -> None:
        return None

    def info_read(self) -> List[Completion]:
        finished, self.finished = self.finished, []
        return list(reversed(finished))

    async def send(self, request: Request, sink: Arena) -> int:
        status_code, body = self.server.respond(request.method, request.url, request.headers)
        sink.push_bytes(body)
        return status_code

    async def close(self) -> None:
        self.closed = True


class RecordingWriter:
    def __init__(self) -> None:
        self.expected: List[int] = []
        self.written: List[Playlist] = []

    def expect(self, count: int) -> None:
        self.expected.append(count)

    def write(self, playlist: Playlist) -> None:
        self.written.append(playlist)

    def by_name(self) -> Dict[str, Playlist]:
        return {playlist.name: playlist for playlist in self.written}


@pytest.fixture
def cfg() -> AppConfig:
    return AppConfig(
        spotify_client_id="client-id",
        spotify_client_secret="client-secret",
        spotify_redirect_uri="http://localhost:8888/callback",
        connection_count=4,
        slot_arena_size=256,
        scratch_arena_size=1024,
        poll_timeout=0.01,
    )


@pytest.fixture
def writer() -> RecordingWriter:
    return RecordingWriter()


@pytest.fixture
def arena() -> Arena:
    return Arena(4096)
