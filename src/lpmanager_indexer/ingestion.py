"""Ingestion run orchestrator.

This module provides the IngestionRun class that validates configuration,
builds one snapshot and appends it to the price history, reporting a
structured outcome instead of raising.

Run flow:
    Validate config → Build snapshot (chain reads) → Append to store

State machine:
    NOT_STARTED → VALIDATING → READING → STORING → SUCCEEDED
    any non-terminal state → FAILED(stage, cause)
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING

from lpmanager_indexer.chain.reader import ChainReader
from lpmanager_indexer.config import ConfigError, IngestionConfig, InvalidConfigError
from lpmanager_indexer.errors import IndexerError
from lpmanager_indexer.snapshot.builder import Clock, SnapshotBuilder, utc_now
from lpmanager_indexer.storage.store import SnapshotStore, StoreReceipt

if TYPE_CHECKING:
    from lpmanager_indexer.snapshot.models import Snapshot

logger = logging.getLogger(__name__)


class RunState(str, Enum):
    """Ingestion run lifecycle states."""

    NOT_STARTED = "not_started"
    VALIDATING = "validating"
    READING = "reading"
    STORING = "storing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class RunStage(str, Enum):
    """Stage a failure originated in."""

    CONFIG = "config"
    READ = "read"
    STORE = "store"


_STAGE_BY_STATE = {
    RunState.NOT_STARTED: RunStage.CONFIG,
    RunState.VALIDATING: RunStage.CONFIG,
    RunState.READING: RunStage.READ,
    RunState.STORING: RunStage.STORE,
}


class RunTimeoutError(IndexerError):
    """Raised when a run exceeds its deadline and is cancelled."""

    retryable = True


class UnexpectedRunError(IndexerError):
    """Wraps an exception no component translated, tagged with the stage it hit."""


@dataclass(frozen=True)
class RunOutcome:
    """Result of one ingestion run."""

    state: RunState
    started_at: datetime
    finished_at: datetime
    receipt: StoreReceipt | None = None
    snapshot: Snapshot | None = None
    stage: RunStage | None = None
    error: IndexerError | None = None

    @property
    def ok(self) -> bool:
        return self.state == RunState.SUCCEEDED

    @property
    def retryable(self) -> bool:
        """Whether re-invoking the run may succeed."""
        return self.error is not None and self.error.retryable

    def describe(self) -> str:
        if self.ok and self.receipt is not None:
            return (
                f"succeeded: stored block {self.receipt.block_number} "
                f"for {self.receipt.contract_address} (row id={self.receipt.row_id})"
            )
        if self.ok:
            return "succeeded"
        stage = self.stage.value if self.stage else "unknown"
        error_type = type(self.error).__name__ if self.error else "UnknownError"
        return f"failed at {stage}: {error_type}: {self.error}"


class IngestionRun:
    """Runs one end-to-end ingestion cycle.

    The chain reader and store may be injected; a long-lived scheduler reuses
    them across runs and owns their lifecycle. When omitted they are built
    from the validated config and closed when the run ends.

    Example:
        ```python
        config = IngestionConfig.from_settings(get_settings())
        outcome = await IngestionRun(config).run()
        if not outcome.ok:
            print(outcome.stage, outcome.error)
        ```
    """

    def __init__(
        self,
        config: IngestionConfig,
        *,
        reader: ChainReader | None = None,
        store: SnapshotStore | None = None,
        clock: Clock = utc_now,
        timeout_seconds: float | None = None,
    ) -> None:
        """Initialize the run.

        Args:
            config: Run configuration; validated at the start of every run.
            reader: Chain reader to use instead of building one.
            store: Snapshot store to use instead of building one.
            clock: Source of ingestion timestamps.
            timeout_seconds: Whole-run deadline; defaults to the config's
                ``run_timeout_seconds`` (None there disables the deadline).
        """
        self._config = config
        self._reader = reader
        self._store = store
        self._clock = clock
        self._timeout = timeout_seconds if timeout_seconds is not None else config.run_timeout_seconds

        self._state = RunState.NOT_STARTED
        self._snapshot: Snapshot | None = None
        self._in_flight = False

    @property
    def state(self) -> RunState:
        """Current run state."""
        return self._state

    async def run(self) -> RunOutcome:
        """Execute one ingestion cycle.

        Returns:
            ``SUCCEEDED`` with the store receipt, or ``FAILED`` tagged with the
            stage and cause of the first error.

        Raises:
            RuntimeError: If called while a previous invocation is in flight.
        """
        if self._in_flight:
            raise RuntimeError(f"Ingestion run already in flight (state={self._state.value})")

        self._in_flight = True
        self._state = RunState.NOT_STARTED
        self._snapshot = None
        started_at = datetime.now(UTC)
        try:
            try:
                if self._timeout is not None:
                    receipt = await asyncio.wait_for(self._execute(), self._timeout)
                else:
                    receipt = await self._execute()
            except TimeoutError:
                return self._fail(
                    RunTimeoutError(f"Run exceeded {self._timeout}s during {self._state.value}"),
                    started_at=started_at,
                )
            except IndexerError as e:
                return self._fail(e, started_at=started_at)
            except Exception as e:
                logger.exception("Unexpected error during %s", self._state.value)
                error = UnexpectedRunError(f"{type(e).__name__}: {e}")
                error.__cause__ = e
                return self._fail(error, started_at=started_at)

            self._state = RunState.SUCCEEDED
            outcome = RunOutcome(
                state=self._state,
                started_at=started_at,
                finished_at=datetime.now(UTC),
                receipt=receipt,
                snapshot=self._snapshot,
            )
            logger.info("Ingestion run %s", outcome.describe())
            return outcome
        finally:
            self._in_flight = False

    async def _execute(self) -> StoreReceipt:
        self._state = RunState.VALIDATING
        self._config.validate()
        target = self._config.valuation_target()
        logger.info(
            "Starting ingestion run: contract=%s chain=%d pair=%s/%s amount_in=%d",
            target.contract_address,
            target.chain_id,
            target.pair.token0,
            target.pair.token1,
            target.amount_in,
        )

        async with contextlib.AsyncExitStack() as stack:
            reader = self._reader
            if reader is None:
                reader = await stack.enter_async_context(ChainReader.from_config(self._config))
            store = self._store
            if store is None:
                store = await stack.enter_async_context(SnapshotStore.from_config(self._config))

            self._state = RunState.READING
            if self._config.verify_chain_id:
                await self._verify_chain_id(reader, expected=target.chain_id)
            builder = SnapshotBuilder(
                reader,
                pin_to_block=self._config.pin_reads_to_block,
                clock=self._clock,
            )
            snapshot = await builder.build(target)
            self._snapshot = snapshot

            self._state = RunState.STORING
            return await store.append(snapshot)

    async def _verify_chain_id(self, reader: ChainReader, *, expected: int) -> None:
        actual = await reader.chain_id()
        if actual != expected:
            raise InvalidConfigError(f"CHAIN_ID is {expected} but the RPC endpoint serves chain {actual}")

    def _fail(self, error: IndexerError, *, started_at: datetime) -> RunOutcome:
        stage = RunStage.CONFIG if isinstance(error, ConfigError) else _STAGE_BY_STATE[self._state]
        self._state = RunState.FAILED
        outcome = RunOutcome(
            state=self._state,
            started_at=started_at,
            finished_at=datetime.now(UTC),
            snapshot=self._snapshot,
            stage=stage,
            error=error,
        )
        logger.warning("Ingestion run %s", outcome.describe())
        return outcome
