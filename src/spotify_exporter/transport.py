from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import httpx

from .arena import Arena


logger = logging.getLogger(__name__)


@dataclass
class Request:
    method: str
    url: str
    headers: Dict[str, str] = field(default_factory=dict)
    data: Optional[Dict[str, str]] = None
    auth: Optional[Tuple[str, str]] = None


@dataclass(frozen=True)
class Completion:
    handle: int
    status_code: int
    error: Optional[BaseException] = None


class HttpxTransport:
    """
    Multiplexes many requests over one `httpx.AsyncClient`.

    Each request runs as an asyncio task that streams its body into the arena
    it was given. Finished requests are collected until `info_read` drains them;
    a request that fails at the network level finishes with status 0.
    """

    def __init__(self, client: Optional[httpx.AsyncClient] = None, timeout: float = 30.0) -> None:
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._tasks: Dict[int, asyncio.Task] = {}
        self._finished: List[Completion] = []

    async def _fetch(self, request: Request, sink: Arena) -> int:
        try:
            async with self._client.stream(
                request.method,
                request.url,
                headers=request.headers,
                data=request.data,
                auth=request.auth,
            ) as response:
                async for chunk in response.aiter_bytes():
                    sink.push_bytes(chunk)
                return response.status_code
        except httpx.HTTPError as exc:
            logger.warning("Request to %s failed: %s", request.url, exc)
            return 0

    async def _run(self, handle: int, request: Request, sink: Arena) -> None:
        try:
            status_code = await self._fetch(request, sink)
        except Exception as exc:  # noqa: BLE001  # re-raised by the scheduler
            self._finished.append(Completion(handle, 0, exc))
            return
        self._finished.append(Completion(handle, status_code))

    def add(self, handle: int, request: Request, sink: Arena) -> None:
        if handle in self._tasks:
            raise ValueError(f"handle {handle} already has a request in flight")
        self._tasks[handle] = asyncio.create_task(self._run(handle, request, sink))

    def remove(self, handle: int) -> None:
        task = self._tasks.pop(handle, None)
        if task is not None and not task.done():
            task.cancel()

    @property
    def running(self) -> int:
        return sum(1 for task in self._tasks.values() if not task.done())

    async def perform(self) -> int:
        """Let every in-flight request make progress without blocking; return how many still run."""
        await asyncio.sleep(0)
        return self.running

    async def wait(self, timeout: float) -> None:
        """Block until a request finishes or `timeout` seconds pass."""
        pending = [task for task in self._tasks.values() if not task.done()]
        if pending:
            await asyncio.wait(pending, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)

    def info_read(self) -> List[Completion]:
        finished, self._finished = self._finished, []
        return finished

    async def send(self, request: Request, sink: Arena) -> int:
        """Perform one request to completion outside the multiplexed set."""
        return await self._fetch(request, sink)

    async def close(self) -> None:
        for task in self._tasks.values():
            task.cancel()
        self._tasks.clear()
        if self._owns_client:
            await self._client.aclose()
