import json
import logging

import pytest

from conftest import FakePlaylist, FakeSpotify, track_item
from spotify_exporter.arena import Arena
from spotify_exporter.errors import InvariantError, MalformedResponseError
from spotify_exporter.job_queue import Job, JobKind, JobQueue
from spotify_exporter.json_parser import parse_json
from spotify_exporter.processor import JobProcessor, read_track
from spotify_exporter.spotify_client import PLAYLIST_LIST_URI


def parsed(arena: Arena, body) -> object:
    return parse_json(arena, json.dumps(body).encode())


@pytest.fixture
def queue():
    return JobQueue(8)


@pytest.fixture
def processor(queue, writer):
    return JobProcessor(queue, writer)


def drain(queue):
    jobs = []
    while not queue.is_empty():
        jobs.append(queue.dequeue())
    return jobs


def test_list_header_schedules_pages_and_playlists(arena, queue, processor, writer):
    server = FakeSpotify([FakePlaylist(f"id{i}", f"list {i}", 1) for i in range(5)], list_limit=2)
    response = parsed(arena, server.list_page(0, 2))

    processor.process(Job(kind=JobKind.LIST_PAGE_HEADER, uri=PLAYLIST_LIST_URI, response=response))

    jobs = drain(queue)
    pages = [job for job in jobs if job.kind is JobKind.LIST_PAGE]
    headers = [job for job in jobs if job.kind is JobKind.COLLECTION_HEADER]
    assert [job.offset for job in pages] == [2, 4]
    assert pages[0].uri == f"{PLAYLIST_LIST_URI}?offset=2&limit=2"
    assert [(job.uri, job.playlist_index) for job in headers] == [
        ("https://api.spotify.com/v1/playlists/id0", 0),
        ("https://api.spotify.com/v1/playlists/id1", 1),
    ]
    assert len(processor.playlists) == 5
    assert writer.expected == [5]


def test_list_page_uses_its_offset(arena, queue, processor):
    processor.playlists = [None] * 5
    response = parsed(arena, {"items": [{"id": "a"}, {"id": "b"}], "total": 5, "limit": 2})

    processor.process(Job(kind=JobKind.LIST_PAGE, uri="x", response=response, offset=2))

    assert [job.playlist_index for job in drain(queue)] == [2, 3]


def test_malformed_playlist_list_is_fatal(arena, processor):
    with pytest.raises(MalformedResponseError):
        processor.process(Job(kind=JobKind.LIST_PAGE_HEADER, uri=PLAYLIST_LIST_URI, response=parsed(arena, {"total": 3})))
    with pytest.raises(MalformedResponseError):
        processor.process(Job(kind=JobKind.LIST_PAGE, uri=PLAYLIST_LIST_URI, response=parse_json(arena, b"oops")))


def test_playlist_without_id_is_skipped(arena, queue, processor, caplog):
    response = parsed(arena, {"items": [{"name": "no id"}, {"id": "b"}], "total": 2, "limit": 20})
    with caplog.at_level(logging.WARNING):
        processor.process(Job(kind=JobKind.LIST_PAGE_HEADER, uri=PLAYLIST_LIST_URI, response=response))
    assert [job.playlist_index for job in drain(queue)] == [1]
    assert processor.skipped_count == 1
    assert "Couldn't read a playlist id" in caplog.text


def test_header_with_offset_is_rejected(arena, processor):
    job = Job(kind=JobKind.COLLECTION_HEADER, uri="x", response=parsed(arena, {}), offset=20)
    with pytest.raises(InvariantError):
        processor.process(job)


def collection_header(server, playlist, arena):
    body = {"name": playlist.name, "tracks": server.track_page(playlist, 0, server.track_limit)}
    return Job(
        kind=JobKind.COLLECTION_HEADER,
        uri=f"https://api.spotify.com/v1/playlists/{playlist.playlist_id}",
        response=parsed(arena, body),
        playlist_index=0,
    )


def test_collection_is_written_once_all_pages_arrive(arena, queue, processor, writer):
    playlist = FakePlaylist("p1", "Road trip", 45)
    server = FakeSpotify([playlist], track_limit=20)
    processor.playlists = [None]

    processor.process(collection_header(server, playlist, arena))
    pages = drain(queue)
    assert [job.offset for job in pages] == [20, 40]
    assert pages[1].uri == "https://api.spotify.com/v1/playlists/p1/tracks?offset=40&limit=20"
    assert writer.written == []

    for job in reversed(pages):
        job.response = parsed(arena, server.track_page(playlist, job.offset, 20))
        processor.process(job)

    assert len(writer.written) == 1
    written = writer.written[0]
    assert written.name == "Road trip"
    assert [track.title for track in written.finished_tracks()] == [f"Road trip song {i}" for i in range(45)]
    assert processor.written_count == 1


def test_unreadable_track_is_left_out(arena, queue, processor, writer, caplog):
    playlist = FakePlaylist("p1", "Mixed", 3, broken_tracks=(1,))
    server = FakeSpotify([playlist])
    processor.playlists = [None]

    with caplog.at_level(logging.WARNING):
        processor.process(collection_header(server, playlist, arena))

    written = writer.written[0]
    assert [track.title for track in written.finished_tracks()] == ["Mixed song 0", "Mixed song 2"]
    assert written.filled_count == 3
    assert "skipping track" in caplog.text


def test_unreadable_collection_header_skips_the_playlist(arena, queue, processor, writer, caplog):
    processor.playlists = [None]
    job = Job(kind=JobKind.COLLECTION_HEADER, uri="x", response=parsed(arena, {"name": "broken"}))

    with caplog.at_level(logging.WARNING):
        processor.process(job)

    assert processor.playlists == [None]
    assert processor.skipped_count == 1
    assert queue.is_empty()
    assert writer.written == []


def test_unreadable_item_page_counts_as_skipped(arena, queue, processor, writer):
    playlist = FakePlaylist("p1", "Long", 50)
    server = FakeSpotify([playlist], track_limit=20)
    processor.playlists = [None]
    processor.process(collection_header(server, playlist, arena))
    second, third = drain(queue)

    third.response = parsed(arena, server.track_page(playlist, 40, 20))
    processor.process(third)
    second.response = parse_json(arena, b"<html>")
    processor.process(second)

    written = writer.written[0]
    assert written.filled_count == 50
    assert len(written.finished_tracks()) == 30


def test_empty_playlist_is_written_immediately(arena, queue, processor, writer):
    playlist = FakePlaylist("p1", "Empty", 0)
    processor.playlists = [None]
    processor.process(collection_header(FakeSpotify([playlist]), playlist, arena))
    assert [p.name for p in writer.written] == ["Empty"]
    assert queue.is_empty()


def test_finish_reports_incomplete_playlists(arena, queue, processor, writer, caplog):
    playlist = FakePlaylist("p1", "Half", 30)
    processor.playlists = [None]
    processor.process(collection_header(FakeSpotify([playlist]), playlist, arena))

    with caplog.at_level(logging.WARNING):
        assert processor.finish() == 0
    assert 'Playlist "Half" is incomplete (20 of 30 tracks)' in caplog.text


def test_read_track_fields(arena):
    item = parsed(arena, track_item(FakePlaylist("p", "Jazz", 1), 0))
    track = read_track(item)
    assert track.title == "Jazz song 0"
    assert track.album == "Jazz album"
    assert track.artists == ["First", "Second"]
    assert track.added_at == "2021-03-04T05:06:07Z"
    assert track.duration_ms == 1000


def test_read_track_without_track_object(arena):
    assert read_track(parsed(arena, {"added_at": "2021", "track": None})) is None


def with_raw_number(body: dict, raw: str) -> bytes:
    """Encode `body`, writing `raw` verbatim where the value "RAW" appears."""
    return json.dumps(body).replace('"RAW"', raw).encode()


@pytest.mark.parametrize("raw", ["1e400", "0e400"])
def test_out_of_range_duration_reads_as_zero(arena, queue, processor, writer, raw):
    playlist = FakePlaylist("p1", "Huge", 2)
    body = {"name": "Huge", "tracks": FakeSpotify([playlist]).track_page(playlist, 0, 20)}
    body["tracks"]["items"][1]["track"]["duration_ms"] = "RAW"
    processor.playlists = [None]

    processor.process(
        Job(kind=JobKind.COLLECTION_HEADER, uri="x", response=parse_json(arena, with_raw_number(body, raw)))
    )

    tracks = writer.written[0].finished_tracks()
    assert [track.duration_ms for track in tracks] == [1000, 0]


@pytest.mark.parametrize("raw", ["1e400", "0e400", "-3"])
def test_collection_with_unreadable_total_is_skipped(arena, queue, processor, writer, caplog, raw):
    body = {"name": "Broken", "tracks": {"items": [], "total": "RAW", "limit": 20}}
    processor.playlists = [None]

    with caplog.at_level(logging.WARNING):
        processor.process(
            Job(kind=JobKind.COLLECTION_HEADER, uri="x", response=parse_json(arena, with_raw_number(body, raw)))
        )

    assert processor.playlists == [None]
    assert processor.skipped_count == 1
    assert writer.written == []
    assert queue.is_empty()
    assert "Couldn't read the track count" in caplog.text


@pytest.mark.parametrize("raw", ["1e400", "0e400"])
def test_playlist_list_with_unreadable_total_is_fatal(arena, processor, raw):
    body = {"items": [], "total": "RAW", "limit": 20}
    job = Job(kind=JobKind.LIST_PAGE_HEADER, uri=PLAYLIST_LIST_URI, response=parse_json(arena, with_raw_number(body, raw)))
    with pytest.raises(MalformedResponseError):
        processor.process(job)
