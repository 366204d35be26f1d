"""Polling log stream for one share contract.

Each stream follows the chain head with `eth_getLogs`, decodes the logs
it cares about and hands them to a queue in (block, log index) order.
A failed poll is retried with exponential backoff; the stream only stops
when asked to.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from web3 import AsyncWeb3

from artist_shares_sync.chain.abi import ALL_TOPICS
from artist_shares_sync.chain.client import UpstreamUnavailableError
from artist_shares_sync.chain.events import ContractEvent, EventDecodeError, decode_log

if TYPE_CHECKING:
    from artist_shares_sync.chain.client import ChainClient

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_SECONDS = 2.0
DEFAULT_CHUNK_SIZE_BLOCKS = 10_000
DEFAULT_MAX_BACKOFF_SECONDS = 60.0


class StreamState(Enum):
    IDLE = "idle"
    RUNNING = "running"
    BACKING_OFF = "backing_off"
    STOPPED = "stopped"


@dataclass
class StreamStats:
    polls: int = 0
    logs_received: int = 0
    poll_errors: int = 0
    last_block: int | None = None
    last_poll_time: float | None = None
    last_error: str | None = None


def build_filter(
    address: str,
    *,
    from_block: int,
    to_block: int,
    topics: tuple[str, ...] = ALL_TOPICS,
) -> dict[str, Any]:
    """eth_getLogs filter matching any of `topics` on one contract."""
    return {
        "address": AsyncWeb3.to_checksum_address(address),
        "fromBlock": from_block,
        "toBlock": to_block,
        "topics": [list(topics)],
    }


async def fetch_events(
    client: ChainClient,
    address: str,
    *,
    from_block: int,
    to_block: int,
    chunk_size: int = DEFAULT_CHUNK_SIZE_BLOCKS,
    topics: tuple[str, ...] = ALL_TOPICS,
) -> list[ContractEvent]:
    """Scan [from_block, to_block] in chunks and decode matching logs.

    Malformed logs are logged and skipped.
    """
    events: list[ContractEvent] = []
    start = from_block
    while start <= to_block:
        end = min(start + chunk_size - 1, to_block)
        logs = await client.get_logs(build_filter(address, from_block=start, to_block=end, topics=topics))
        for log in logs:
            try:
                event = decode_log(log)
            except EventDecodeError as e:
                logger.warning("Skipping malformed log on %s (tx=%s): %s", address, log.get("transactionHash"), e)
                continue
            if event is not None:
                events.append(event)
        start = end + 1
    return events


class ContractLogStream:
    """Follows one contract's logs and queues decoded events in chain order."""

    def __init__(
        self,
        client: ChainClient,
        address: str,
        *,
        queue: asyncio.Queue[ContractEvent] | None = None,
        start_block: int | None = None,
        replay_blocks: int = 0,
        poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
        chunk_size: int = DEFAULT_CHUNK_SIZE_BLOCKS,
        max_backoff_seconds: float = DEFAULT_MAX_BACKOFF_SECONDS,
    ) -> None:
        self._client = client
        self.address = address.lower()
        self.queue: asyncio.Queue[ContractEvent] = queue if queue is not None else asyncio.Queue()
        self._next_block = start_block
        self._replay_blocks = replay_blocks
        self._poll_interval = poll_interval_seconds
        self._chunk_size = chunk_size
        self._max_backoff = max_backoff_seconds

        self._state = StreamState.IDLE
        self._stats = StreamStats()
        self._task: asyncio.Task[None] | None = None
        self._stop_event = asyncio.Event()

    @property
    def state(self) -> StreamState:
        return self._state

    @property
    def stats(self) -> StreamStats:
        return self._stats

    async def poll_once(self) -> int:
        """Fetch logs up to the current head.

        Returns:
            Number of events queued.
        """
        head = await self._client.get_block_number()
        if self._next_block is None:
            self._next_block = max(0, head - self._replay_blocks)
        if self._next_block > head:
            return 0

        events = await fetch_events(
            self._client,
            self.address,
            from_block=self._next_block,
            to_block=head,
            chunk_size=self._chunk_size,
        )
        for event in events:
            await self.queue.put(event)

        self._next_block = head + 1
        self._stats.polls += 1
        self._stats.logs_received += len(events)
        self._stats.last_block = head
        self._stats.last_poll_time = time.time()
        return len(events)

    async def _run(self) -> None:
        delay = self._poll_interval
        self._state = StreamState.RUNNING
        while not self._stop_event.is_set():
            try:
                await self.poll_once()
                delay = self._poll_interval
                self._state = StreamState.RUNNING
            except UpstreamUnavailableError as e:
                self._stats.poll_errors += 1
                self._stats.last_error = str(e)
                self._state = StreamState.BACKING_OFF
                delay = min(delay * 2, self._max_backoff)
                logger.warning("Log poll failed for %s, retrying in %.1fs: %s", self.address, delay, e)
            except Exception as e:
                self._stats.poll_errors += 1
                self._stats.last_error = str(e)
                self._state = StreamState.BACKING_OFF
                delay = min(delay * 2, self._max_backoff)
                logger.error("Unexpected log poll error for %s: %s", self.address, e, exc_info=True)
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
            except TimeoutError:
                pass
        self._state = StreamState.STOPPED

    def start(self) -> None:
        if self._task is not None and not self._task.done():
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run(), name=f"log-stream:{self.address}")

    async def stop(self) -> None:
        self._stop_event.set()
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        self._state = StreamState.STOPPED
