"""Snapshot builder: one consistent spot/oracle read per snapshot.

The builder issues ``fetchSpot`` and ``fetchOracle`` with identical arguments,
concurrently, and attaches the block height and timestamp they belong to.

Two read modes are supported:

- pinned (default): read the block height first, then issue both valuation
  calls and the block header lookup at that explicit height. All three reads
  observe the same chain state.
- latest: issue both valuation calls against the node's latest view, then read
  the height and the block at that height. The height read is the as-of
  marker, and a block boundary may fall between the calls and the height read.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any

from web3 import AsyncWeb3

from lpmanager_indexer.chain.abi import FETCH_ORACLE, FETCH_SPOT, LP_MANAGER_ABI, missing_functions
from lpmanager_indexer.chain.reader import BlockInfo, ChainReader, RpcError
from lpmanager_indexer.errors import IndexerError
from lpmanager_indexer.snapshot.models import Snapshot, ValuationTarget, is_uint256

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(UTC)


class SnapshotBuildError(IndexerError):
    """Raised when a consistent snapshot cannot be assembled.

    Read failures carry the ``RpcError`` as ``__cause__`` and are retryable;
    uninterpretable contract output is permanent (likely an ABI mismatch).
    """

    def __init__(self, message: str, *, retryable: bool = False) -> None:
        super().__init__(message)
        self.retryable = retryable


async def _gather_all(*aws: Awaitable[Any]) -> list[Any]:
    """Await every read jointly; raise the first failure once all settle."""
    results = await asyncio.gather(*aws, return_exceptions=True)
    for result in results:
        if isinstance(result, BaseException):
            raise result
    return list(results)


def _as_uint(value: Any, *, name: str) -> int:
    if isinstance(value, str) and value.isascii() and value.isdigit():
        value = int(value)
    if not is_uint256(value):
        raise SnapshotBuildError(f"{name} returned a value that is not an unsigned integer: {value!r}")
    return int(value)


class SnapshotBuilder:
    """Builds one internally-consistent ``Snapshot`` from a chain reader."""

    def __init__(
        self,
        reader: ChainReader,
        *,
        pin_to_block: bool = True,
        abi: list[dict[str, Any]] | None = None,
        clock: Clock = utc_now,
    ) -> None:
        """Initialize the builder.

        Args:
            reader: Chain reader for the target network.
            pin_to_block: Pin valuation calls to the height that is recorded.
            abi: Contract ABI; defaults to the LP manager valuation fragment.
            clock: Source of the ingestion timestamp.

        Raises:
            ValueError: If ``abi`` lacks ``fetchSpot`` or ``fetchOracle``.
        """
        if abi is not None:
            absent = missing_functions(abi)
            if absent:
                raise ValueError(f"ABI is missing valuation functions: {', '.join(absent)}")
        self._reader = reader
        self._pin_to_block = pin_to_block
        self._abi = abi if abi is not None else LP_MANAGER_ABI
        self._clock = clock

    async def build(self, target: ValuationTarget) -> Snapshot:
        """Read and assemble one snapshot for ``target``.

        Raises:
            SnapshotBuildError: If any read fails or any value is not an
                unsigned integer. No partial snapshot is ever returned.
        """
        try:
            if self._pin_to_block:
                block, spot, oracle = await self._read_pinned(target)
            else:
                block, spot, oracle = await self._read_latest(target)
        except RpcError as e:
            raise SnapshotBuildError(
                f"Chain read failed for {target.contract_address}: {e}",
                retryable=True,
            ) from e

        fetch_spot = _as_uint(spot, name=FETCH_SPOT)
        fetch_oracle = _as_uint(oracle, name=FETCH_ORACLE)
        try:
            snapshot = Snapshot.from_target(
                target,
                fetch_spot=fetch_spot,
                fetch_oracle=fetch_oracle,
                block_number=block.height,
                block_timestamp=block.timestamp,
                timestamp=self._clock(),
            )
        except ValueError as e:
            raise SnapshotBuildError(f"Invalid snapshot for {target.contract_address}: {e}") from e

        logger.info(
            "Built snapshot: contract=%s chain=%d block=%d spot=%d oracle=%d",
            snapshot.contract_address,
            snapshot.chain_id,
            snapshot.block_number,
            snapshot.fetch_spot,
            snapshot.fetch_oracle,
        )
        return snapshot

    async def _read_pinned(self, target: ValuationTarget) -> tuple[BlockInfo, Any, Any]:
        height = await self._reader.current_block_height()
        block, spot, oracle = await _gather_all(
            self._reader.block_by_height(height),
            self._valuation_call(target, FETCH_SPOT, block_identifier=height),
            self._valuation_call(target, FETCH_ORACLE, block_identifier=height),
        )
        return block, spot, oracle

    async def _read_latest(self, target: ValuationTarget) -> tuple[BlockInfo, Any, Any]:
        spot, oracle = await _gather_all(
            self._valuation_call(target, FETCH_SPOT, block_identifier="latest"),
            self._valuation_call(target, FETCH_ORACLE, block_identifier="latest"),
        )
        height = await self._reader.current_block_height()
        block = await self._reader.block_by_height(height)
        return block, spot, oracle

    async def _valuation_call(
        self,
        target: ValuationTarget,
        function_name: str,
        *,
        block_identifier: int | str,
    ) -> Any:
        # Same ordering and amount for both valuation functions
        args = (
            AsyncWeb3.to_checksum_address(target.pair.token0),
            AsyncWeb3.to_checksum_address(target.pair.token1),
            target.amount_in,
        )
        return await self._reader.call_view(
            target.contract_address,
            function_name,
            args,
            abi=self._abi,
            block_identifier=block_identifier,
        )
