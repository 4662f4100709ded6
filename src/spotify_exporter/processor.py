from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Protocol

from .errors import InvariantError, MalformedResponseError
from .job_queue import Job, JobKind, JobQueue
from .json_parser import MISSING, JsonElement, JsonTag, get_count, get_element, get_string
from .spotify_client import page_uri, playlist_tracks_uri, playlist_uri


logger = logging.getLogger(__name__)


@dataclass
class Track:
    title: str = ""
    album: str = ""
    artists: List[str] = field(default_factory=list)
    added_at: str = ""
    duration_ms: int = 0


@dataclass
class Playlist:
    name: str
    expected_count: int
    page_size: int
    tracks: List[Optional[Track]]
    filled_count: int = 0
    written: bool = False

    @property
    def is_complete(self) -> bool:
        return self.filled_count == self.expected_count

    def finished_tracks(self) -> List[Track]:
        """Tracks in playlist order, without the ones that could not be read."""
        return [track for track in self.tracks if track is not None]


class PlaylistWriter(Protocol):
    def expect(self, count: int) -> None: ...

    def write(self, playlist: Playlist) -> None: ...


def _page_count(total: int, limit: int) -> int:
    return (total + limit - 1) // limit if limit > 0 else 0


def read_track(item: JsonElement) -> Optional[Track]:
    """Build a Track from one playlist-track object; None when it has no track object."""
    track_json = get_element(item, "track")
    if track_json.tag is not JsonTag.OBJECT:
        return None

    artists_json = get_element(track_json, "artists")
    artists: List[str] = []
    if artists_json.tag is JsonTag.ARRAY:
        artists = [get_string(get_element(artist, "name")) or "" for artist in artists_json.children]

    album = get_element(track_json, "album")
    return Track(
        title=get_string(get_element(track_json, "name")) or "",
        album=get_string(get_element(album, "name")) or "",
        artists=artists,
        added_at=get_string(get_element(item, "added_at")) or "",
        duration_ms=get_count(get_element(track_json, "duration_ms")) or 0,
    )


class JobProcessor:
    """
    Turns completed jobs into playlists.

    Header jobs size the output and schedule the remaining pages; page jobs
    fill the pre-sized playlists. Pages can arrive in any order, so a playlist
    is written as soon as its filled count reaches the announced total.
    """

    def __init__(self, queue: JobQueue, writer: PlaylistWriter) -> None:
        self.queue = queue
        self.writer = writer
        self.playlists: List[Optional[Playlist]] = []
        self.written_count = 0
        self.skipped_count = 0
        self._handlers: Dict[JobKind, Callable[[Job], None]] = {
            JobKind.LIST_PAGE_HEADER: self._process_list_header,
            JobKind.LIST_PAGE: self._process_list_page,
            JobKind.COLLECTION_HEADER: self._process_collection_header,
            JobKind.ITEM_PAGE: self._process_item_page,
        }

    def process(self, job: Job) -> None:
        if job.kind.is_header and job.offset != 0:
            raise InvariantError(f"{job.kind.value} job must be the first page of {job.uri} (offset {job.offset})")
        self._handlers[job.kind](job)

    def finish(self) -> int:
        """Warn about playlists that never completed; return how many were written."""
        for playlist in self.playlists:
            if playlist is not None and not playlist.written:
                logger.warning(
                    'Playlist "%s" is incomplete (%d of %d tracks), not written',
                    playlist.name,
                    playlist.filled_count,
                    playlist.expected_count,
                )
        return self.written_count

    # playlist list

    def _read_list_items(self, job: Job) -> JsonElement:
        root = job.response or MISSING
        if not root.is_valid:
            raise MalformedResponseError("couldn't get list of playlists from spotify")
        items = get_element(root, "items")
        if items.tag is not JsonTag.ARRAY:
            raise MalformedResponseError("couldn't retrieve playlists from spotify")
        return items

    def _process_list_header(self, job: Job) -> None:
        items = self._read_list_items(job)
        root = job.response or MISSING
        total = get_count(get_element(root, "total"))
        limit = get_count(get_element(root, "limit"))
        if total is None or limit is None:
            raise MalformedResponseError("couldn't read the number of playlists from spotify")

        for page_index in range(1, _page_count(total, limit)):
            offset = limit * page_index
            self.queue.enqueue(Job(kind=JobKind.LIST_PAGE, uri=page_uri(job.uri, offset, limit), offset=offset))

        self.playlists = [None] * total
        self.writer.expect(total)
        logger.info("Found %d playlists", total)
        self._queue_playlists(job, items)

    def _process_list_page(self, job: Job) -> None:
        self._queue_playlists(job, self._read_list_items(job))

    def _queue_playlists(self, job: Job, items: JsonElement) -> None:
        index = job.offset
        for item in items.children:
            if index >= len(self.playlists):
                logger.warning("Spotify listed more playlists than announced, ignoring the rest")
                break
            playlist_id = get_string(get_element(item, "id"))
            if playlist_id:
                self.queue.enqueue(
                    Job(kind=JobKind.COLLECTION_HEADER, uri=playlist_uri(playlist_id), playlist_index=index)
                )
            else:
                logger.warning("Couldn't read a playlist id, skipping playlist")
                self.skipped_count += 1
            index += 1

    # tracks

    def _process_collection_header(self, job: Job) -> None:
        root = job.response or MISSING
        if not root.is_valid:
            logger.warning("Couldn't retrieve playlist from spotify, skipping playlist")
            self.skipped_count += 1
            return

        name = get_string(get_element(root, "name")) or ""
        tracks_json = get_element(root, "tracks")
        if tracks_json.tag is not JsonTag.OBJECT:
            logger.warning('Couldn\'t read the tracks of playlist "%s", skipping playlist', name)
            self.skipped_count += 1
            return

        total = get_count(get_element(tracks_json, "total"))
        limit = get_count(get_element(tracks_json, "limit"))
        if total is None or limit is None:
            logger.warning('Couldn\'t read the track count of playlist "%s", skipping playlist', name)
            self.skipped_count += 1
            return
        logger.info('Reading playlist "%s" (%d tracks)', name, total)

        for page_index in range(1, _page_count(total, limit)):
            offset = limit * page_index
            self.queue.enqueue(
                Job(
                    kind=JobKind.ITEM_PAGE,
                    uri=playlist_tracks_uri(job.uri, offset, limit),
                    playlist_index=job.playlist_index,
                    offset=offset,
                )
            )

        playlist = Playlist(name=name, expected_count=total, page_size=limit, tracks=[None] * total)
        self.playlists[job.playlist_index] = playlist
        self._read_tracks(playlist, tracks_json, job.offset)

    def _process_item_page(self, job: Job) -> None:
        playlist = self.playlists[job.playlist_index] if job.playlist_index < len(self.playlists) else None
        if playlist is None:
            logger.warning("Got a tracks page for an unknown playlist (%s), ignoring it", job.uri)
            return
        root = job.response or MISSING
        if not root.is_valid:
            logger.warning("Couldn't access tracks page, skipping some tracks")
            self._skip_page(playlist, job.offset)
            return
        self._read_tracks(playlist, root, job.offset)

    def _read_tracks(self, playlist: Playlist, tracks_json: JsonElement, offset: int) -> None:
        items = get_element(tracks_json, "items")
        if items.tag is not JsonTag.ARRAY:
            logger.warning(
                'Couldn\'t read tracks %d+ of playlist "%s", skipping them', offset, playlist.name
            )
            self._skip_page(playlist, offset)
            return

        index = offset
        for item in items.children:
            if index >= playlist.expected_count:
                logger.warning('Playlist "%s" has more tracks than announced, ignoring the rest', playlist.name)
                break
            track = read_track(item)
            if track is None:
                logger.warning('Couldn\'t get track\'s information in playlist "%s", skipping track', playlist.name)
            else:
                playlist.tracks[index] = track
            playlist.filled_count += 1
            index += 1
        self._write_if_done(playlist)

    def _skip_page(self, playlist: Playlist, offset: int) -> None:
        remaining = max(0, playlist.expected_count - offset)
        if playlist.page_size > 0:
            remaining = min(playlist.page_size, remaining)
        playlist.filled_count += remaining
        self._write_if_done(playlist)

    def _write_if_done(self, playlist: Playlist) -> None:
        if playlist.written or playlist.filled_count < playlist.expected_count:
            return
        if playlist.filled_count > playlist.expected_count:
            logger.warning('Playlist "%s" received overlapping pages', playlist.name)
        playlist.written = True
        self.written_count += 1
        self.writer.write(playlist)
