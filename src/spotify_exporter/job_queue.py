from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from .json_parser import JsonElement


class JobKind(Enum):
    LIST_PAGE_HEADER = "list_page_header"
    LIST_PAGE = "list_page"
    COLLECTION_HEADER = "collection_header"
    ITEM_PAGE = "item_page"

    @property
    def is_header(self) -> bool:
        return self in (JobKind.LIST_PAGE_HEADER, JobKind.COLLECTION_HEADER)


@dataclass
class Job:
    kind: JobKind
    uri: str
    response: Optional[JsonElement] = None
    playlist_index: int = 0
    offset: int = 0


class JobQueue:
    """
    FIFO of pending crawl jobs stored in a circular buffer.

    When full, the buffer doubles and the pending jobs are re-packed from
    index 0 in their original order.
    """

    def __init__(self, capacity: int = 1024) -> None:
        self._data: List[Optional[Job]] = [None] * capacity
        self.capacity = capacity
        self.count = 0
        self.head = 0
        self.tail = 0

    def __len__(self) -> int:
        return self.count

    def is_empty(self) -> bool:
        return self.count == 0

    def _grow(self) -> None:
        new_capacity = max(1, 2 * self.capacity)
        new_data: List[Optional[Job]] = [None] * new_capacity
        index = self.head
        for position in range(self.count):
            new_data[position] = self._data[index]
            index = (index + 1) % self.capacity
        self._data = new_data
        self.capacity = new_capacity
        self.head = 0
        self.tail = self.count % new_capacity

    def enqueue(self, job: Job) -> None:
        if self.count + 1 > self.capacity:
            self._grow()
        self._data[self.tail] = job
        self.tail = (self.tail + 1) % self.capacity
        self.count += 1

    def dequeue(self) -> Optional[Job]:
        """Pop the oldest job, or return None when the queue is empty."""
        if not self.count:
            return None
        job = self._data[self.head]
        self._data[self.head] = None
        self.head = (self.head + 1) % self.capacity
        self.count -= 1
        return job
