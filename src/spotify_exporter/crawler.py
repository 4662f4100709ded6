from __future__ import annotations

import logging
from typing import Optional

from .config import AppConfig
from .job_queue import Job, JobKind, JobQueue
from .processor import JobProcessor, PlaylistWriter
from .scheduler import Scheduler, Transport
from .spotify_client import PLAYLIST_LIST_URI, Credentials
from .transport import HttpxTransport


logger = logging.getLogger(__name__)


class Crawler:
    """
    Owns one export run: the job queue, the processor and the scheduler.

    `credentials` always reflects the latest tokens, including after a failed
    run, so callers can persist a rotated refresh token.
    """

    def __init__(
        self,
        cfg: AppConfig,
        credentials: Credentials,
        writer: PlaylistWriter,
        transport: Optional[Transport] = None,
    ) -> None:
        self.cfg = cfg
        self.queue = JobQueue(cfg.job_queue_capacity)
        self.processor = JobProcessor(self.queue, writer)
        self._credentials = credentials
        self._transport = transport
        self.scheduler: Optional[Scheduler] = None

    @property
    def credentials(self) -> Credentials:
        if self.scheduler is not None:
            return self.scheduler.credentials
        return self._credentials

    async def run(self) -> int:
        """Export every playlist of the current user; return how many were written."""
        transport = self._transport
        owns_transport = transport is None
        if transport is None:
            transport = HttpxTransport(timeout=self.cfg.request_timeout)

        self.scheduler = Scheduler(self.cfg, transport, self.queue, self.processor, self._credentials)
        self.queue.enqueue(Job(kind=JobKind.LIST_PAGE_HEADER, uri=PLAYLIST_LIST_URI))
        try:
            await self.scheduler.run()
        finally:
            if owns_transport:
                await transport.close()

        written = self.processor.finish()
        logger.info(
            "Exported %d playlists (%d skipped, %d token refreshes)",
            written,
            self.processor.skipped_count,
            self.scheduler.refresh_count,
        )
        return written
