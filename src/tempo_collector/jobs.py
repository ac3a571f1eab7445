"""
Job manager: periodic head ingestion and retention sweeps.

This is the long-running entry point. Each tick is wrapped in a
rate-limit-aware retry, and a failing tick never stops its loop.
"""

import asyncio
import signal
from typing import Awaitable, Callable, Optional, TypeVar

import structlog

from .ingestion import BlockIngestor, IngestionError
from .rate_limit import calculate_exponential_backoff, get_retry_after_ms, is_rate_limit_error
from .retention import RetentionSweeper
from .rpc import RPCClient

logger = structlog.get_logger()

T = TypeVar("T")


async def run_with_retry(
    fn: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    name: str = "job",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Run fn, retrying failures.

    Rate-limit errors wait for the server's Retry-After, falling back to
    exponential backoff; other errors wait for the backoff alone. At most
    max_attempts calls are made. IngestionError (bad input, missing block)
    is never retried.
    """
    attempt = 0
    while True:
        try:
            return await fn()
        except IngestionError:
            raise
        except Exception as e:
            attempt += 1
            if attempt >= max_attempts:
                logger.error("Job failed permanently", job=name, attempts=attempt, error=str(e))
                raise

            if is_rate_limit_error(e):
                delay_ms = get_retry_after_ms(e)
                if delay_ms is None:
                    delay_ms = calculate_exponential_backoff(attempt - 1)
                logger.warning("Rate limited, backing off", job=name, attempt=attempt, delay_ms=delay_ms)
            else:
                delay_ms = calculate_exponential_backoff(attempt - 1)
                logger.warning(
                    "Job failed, retrying",
                    job=name,
                    attempt=attempt,
                    max_attempts=max_attempts,
                    delay_ms=delay_ms,
                    error=str(e),
                )

            await sleep(delay_ms / 1000)


class JobManager:
    """
    Runs the scheduled jobs for one chain.

    Features:
    - Ingests the current head block every ingest_interval seconds
    - Sweeps expired transactions every cleanup_interval seconds
    - Graceful shutdown on SIGINT / SIGTERM
    """

    def __init__(
        self,
        rpc: RPCClient,
        ingestor: BlockIngestor,
        sweeper: RetentionSweeper,
        ingest_interval: float = 300.0,
        cleanup_interval: float = 3600.0,
        ttl_days: float = 0.0,
        max_attempts: int = 3,
    ):
        self.rpc = rpc
        self.ingestor = ingestor
        self.sweeper = sweeper
        self.ingest_interval = ingest_interval
        self.cleanup_interval = cleanup_interval
        self.ttl_days = ttl_days
        self.max_attempts = max_attempts

        self._running = False
        self._shutdown_event = asyncio.Event()
        self._last_ingested: Optional[int] = None

    async def run(self) -> None:
        """Main run loop."""
        self._running = True
        self._setup_signal_handlers()

        logger.info(
            "Job manager starting",
            ingest_interval=self.ingest_interval,
            cleanup_interval=self.cleanup_interval,
            ttl_days=self.ttl_days,
        )

        tasks = [
            asyncio.create_task(self._ingest_loop()),
            asyncio.create_task(self._cleanup_loop()),
        ]
        try:
            await self._shutdown_event.wait()
        finally:
            self._running = False
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info("Shutdown complete")

    def stop(self) -> None:
        """Signal the manager to stop."""
        logger.info("Shutdown signal received")
        self._running = False
        self._shutdown_event.set()

    def _setup_signal_handlers(self) -> None:
        try:
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.add_signal_handler(sig, self.stop)
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            signal.signal(signal.SIGINT, lambda s, f: self.stop())
            signal.signal(signal.SIGTERM, lambda s, f: self.stop())

    async def _sleep(self, seconds: float) -> None:
        """Sleep, waking early on shutdown."""
        try:
            await asyncio.wait_for(self._shutdown_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def ingest_latest(self) -> None:
        """Ingest the current head block (one scheduled tick)."""
        head = await run_with_retry(self.rpc.get_block_number, self.max_attempts, name="get-block-number")
        if head == self._last_ingested:
            logger.debug("Head unchanged, skipping", head=head)
            return

        result = await run_with_retry(
            lambda: self.ingestor.ingest_block(str(head)),
            self.max_attempts,
            name="ingest-latest-block",
        )
        self._last_ingested = result.block_number
        logger.info(
            "Ingested latest block",
            block_number=result.block_number,
            transactions=result.transactions_ingested,
        )

    async def cleanup(self) -> None:
        """Run one retention sweep (one scheduled tick)."""
        await run_with_retry(
            lambda: self.sweeper.cleanup_expired(self.ttl_days),
            self.max_attempts,
            name="cleanup-expired",
        )

    async def _ingest_loop(self) -> None:
        while self._running:
            try:
                await self.ingest_latest()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("Error ingesting latest block", error=str(e))
            await self._sleep(self.ingest_interval)

    async def _cleanup_loop(self) -> None:
        while self._running:
            try:
                await self.cleanup()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("Error sweeping expired transactions", error=str(e))
            await self._sleep(self.cleanup_interval)
