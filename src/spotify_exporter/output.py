from __future__ import annotations

import csv
import logging
import re
from pathlib import Path
from typing import Optional, Set

import pandas as pd
from tqdm import tqdm

from .date_utils import format_duration
from .processor import Playlist


logger = logging.getLogger(__name__)


CSV_HEADERS = ["title", "album", "artists", "date added", "duration"]

_UNSAFE_FILENAME_RE = re.compile(r"[\\/\x00]")


def playlist_filename(name: str, copy: int = 1) -> str:
    """File name for a playlist; path separators cannot appear in it. `copy` > 1 adds a " (n)" suffix."""
    cleaned = _UNSAFE_FILENAME_RE.sub("_", name).strip()
    if cleaned in ("", ".", ".."):
        cleaned = "untitled"
    if copy > 1:
        cleaned = f"{cleaned} ({copy})"
    return f"{cleaned}.csv"


def playlist_to_frame(playlist: Playlist) -> pd.DataFrame:
    rows = [
        [
            track.title,
            track.album,
            ",".join(track.artists),
            track.added_at,
            format_duration(track.duration_ms),
        ]
        for track in playlist.finished_tracks()
    ]
    return pd.DataFrame(rows, columns=CSV_HEADERS)


class CsvPlaylistWriter:
    """Writes every finished playlist to `<output_dir>/<name>.csv`."""

    def __init__(self, output_dir: str | Path = ".", progress: Optional[tqdm] = None) -> None:
        self.output_dir = Path(output_dir)
        self.progress = progress
        self.failed_count = 0
        self._used_filenames: Set[str] = set()

    def expect(self, count: int) -> None:
        if self.progress is not None:
            self.progress.reset(total=count)

    def _unique_path(self, name: str) -> Path:
        """Path for a playlist, suffixed when an earlier playlist of this run took the same file name."""
        copy = 1
        filename = playlist_filename(name)
        while filename.casefold() in self._used_filenames:
            copy += 1
            filename = playlist_filename(name, copy)
        if copy > 1:
            logger.warning('Another playlist is already named "%s", writing this one to "%s"', name, filename)
        self._used_filenames.add(filename.casefold())
        return self.output_dir / filename

    def write(self, playlist: Playlist) -> None:
        path = self._unique_path(playlist.name)
        try:
            self.output_dir.mkdir(parents=True, exist_ok=True)
            playlist_to_frame(playlist).to_csv(path, index=False, quoting=csv.QUOTE_ALL)
        except OSError as exc:
            # a playlist that cannot be written does not stop the others
            logger.warning('Couldn\'t create playlist file "%s", skipping playlist: %s', path, exc)
            self.failed_count += 1
            return
        finally:
            if self.progress is not None:
                self.progress.update(1)
        logger.info('Wrote playlist "%s" to %s', playlist.name, path)
