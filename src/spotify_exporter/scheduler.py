from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Protocol

from .arena import Arena
from .config import AppConfig
from .errors import AuthError, InvariantError, ResponseError
from .job_queue import Job, JobQueue
from .json_parser import get_element, parse_json, to_python
from .processor import JobProcessor
from .spotify_client import (
    EXPIRED_TOKEN_RESPONSE,
    OK_RESPONSE,
    Credentials,
    build_page_request,
    build_refresh_request,
    credentials_from_json,
)
from .transport import Completion, Request


logger = logging.getLogger(__name__)


REFRESH_SLOT = 0


class Transport(Protocol):
    def add(self, handle: int, request: Request, sink: Arena) -> None: ...

    def remove(self, handle: int) -> None: ...

    async def perform(self) -> int: ...

    async def wait(self, timeout: float) -> None: ...

    def info_read(self) -> List[Completion]: ...

    async def send(self, request: Request, sink: Arena) -> int: ...


class SlotState(Enum):
    FREE = "free"
    BUSY = "busy"
    REFRESHING = "refreshing"


@dataclass
class Slot:
    arena: Arena
    state: SlotState = SlotState.FREE
    job: Optional[Job] = None


class Scheduler:
    """
    Binds queued jobs to a bounded set of request slots and drives the transport.

    Slot 0 is kept for token refreshes and never runs a crawl job, so at most
    `len(slots) - 1` requests are in flight. Every slot owns an arena that
    receives its response body and is cleared before each reuse.
    """

    def __init__(
        self,
        cfg: AppConfig,
        transport: Transport,
        queue: JobQueue,
        processor: JobProcessor,
        credentials: Credentials,
    ) -> None:
        if cfg.connection_count < 1:
            raise ValueError("connection_count must be at least 1")
        self.cfg = cfg
        self.transport = transport
        self.queue = queue
        self.processor = processor
        self.credentials = credentials
        self.slots = [Slot(arena=Arena(cfg.slot_arena_size)) for _ in range(cfg.connection_count + 1)]
        self.scratch = Arena(cfg.scratch_arena_size)
        self.busy_count = 0
        self.refresh_count = 0

    @property
    def slot_count(self) -> int:
        return len(self.slots)

    def find_free_slot(self) -> Optional[int]:
        """First free general slot, or None when every one of them is busy."""
        for index in range(REFRESH_SLOT + 1, self.slot_count):
            if self.slots[index].state is SlotState.FREE:
                return index
        return None

    def all_slots_busy(self) -> bool:
        return self.busy_count + 1 >= self.slot_count

    def bind_and_launch(self, index: int, job: Job) -> None:
        if index == REFRESH_SLOT:
            raise InvariantError("slot 0 is reserved for token refresh")
        slot = self.slots[index]
        if slot.state is not SlotState.FREE:
            raise InvariantError(f"slot {index} is already {slot.state.value}")
        if self.busy_count + 1 >= self.slot_count:
            raise InvariantError("every general slot is already busy")
        slot.arena.clear()
        self.transport.add(index, build_page_request(job.uri, self.credentials.access_token), slot.arena)
        slot.state = SlotState.BUSY
        slot.job = job
        self.busy_count += 1

    def release_slot(self, index: int) -> None:
        if self.busy_count == 0:
            raise InvariantError(f"slot {index} released while no slot is busy")
        slot = self.slots[index]
        self.transport.remove(index)
        slot.arena.clear()
        slot.state = SlotState.FREE
        slot.job = None
        self.busy_count -= 1

    def add_request(self, job: Job) -> None:
        if not job.uri:
            return
        index = self.find_free_slot()
        if index is None:
            self.queue.enqueue(job)
        else:
            self.bind_and_launch(index, job)

    async def run(self) -> None:
        """Crawl until the queue is empty and no request is in flight."""
        if not self.credentials.access_token:
            await self.refresh_credentials()

        while not self.queue.is_empty() or self.busy_count:
            while not self.queue.is_empty() and not self.all_slots_busy():
                job = self.queue.dequeue()
                if job is not None:
                    self.add_request(job)

            await self.transport.perform()
            await self.drain_completions()

            if self.queue.is_empty() or self.all_slots_busy():
                await self.transport.wait(self.cfg.poll_timeout)

    async def drain_completions(self) -> None:
        must_refresh = False
        for completion in self.transport.info_read():
            index = completion.handle
            job = self.slots[index].job
            if job is None:
                raise InvariantError(f"slot {index} finished without a job")
            try:
                if completion.error is not None:
                    raise completion.error
                if completion.status_code == EXPIRED_TOKEN_RESPONSE:
                    logger.debug("Access token expired while fetching %s, retrying later", job.uri)
                    self.queue.enqueue(job)
                    must_refresh = True
                elif completion.status_code != OK_RESPONSE:
                    raise ResponseError(completion.status_code, job.uri)
                else:
                    body = self.slots[index].arena.getvalue()
                    response = parse_json(self.scratch, body)
                    self.processor.process(dataclasses.replace(job, response=response))
            finally:
                self.scratch.clear()
                self.release_slot(index)

        # one refresh covers every request that hit the expired token
        if must_refresh:
            await self.refresh_credentials()

    async def refresh_credentials(self) -> None:
        if not self.credentials.refresh_token:
            raise AuthError("no refresh token available to renew the access token")

        slot = self.slots[REFRESH_SLOT]
        slot.state = SlotState.REFRESHING
        slot.arena.clear()
        logger.info("Refreshing access token")
        try:
            request = build_refresh_request(self.cfg, self.credentials.refresh_token)
            status_code = await self.transport.send(request, slot.arena)
            if status_code != OK_RESPONSE:
                raise AuthError(f"problem while connecting with spotify (token refresh returned {status_code})")

            token_json = parse_json(self.scratch, slot.arena.getvalue())
            error = get_element(token_json, "error")
            if not token_json.is_valid or error.is_valid:
                raise AuthError(f"problem while refreshing the access token: {to_python(error)}")
            credentials = credentials_from_json(token_json, self.credentials)
            if not credentials.access_token:
                raise AuthError("spotify did not return an access token")
            self.credentials = credentials
            self.refresh_count += 1
        finally:
            self.scratch.clear()
            slot.arena.clear()
            slot.state = SlotState.FREE
