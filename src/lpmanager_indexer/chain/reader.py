"""Read-only JSON-RPC chain client.

This module provides the chain reader used by the snapshot builder:
- Read-only contract calls (``eth_call``), optionally pinned to a block
- Block height and block-by-height lookups
- Uniform ``RpcError`` for transport failures, reverts and malformed responses

Every call is a fresh read. There is no caching and no retry: a failed read
fails the run, and the scheduler re-invokes the whole run.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, TypeVar

import aiohttp
from web3 import AsyncWeb3
from web3.exceptions import Web3Exception
from web3.middleware import ExtraDataToPOAMiddleware
from web3.providers import AsyncHTTPProvider

from lpmanager_indexer.errors import IndexerError

if TYPE_CHECKING:
    from web3.types import BlockIdentifier

    from lpmanager_indexer.config import IngestionConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_REQUEST_TIMEOUT = 30.0

# Chains whose block headers carry oversized extraData (proof-of-authority)
POA_CHAIN_IDS = frozenset({56, 97, 137, 80002})

_RPC_FAILURES: tuple[type[BaseException], ...] = (
    Web3Exception,
    aiohttp.ClientError,
    asyncio.TimeoutError,
    OSError,
    ValueError,
    KeyError,
)


class RpcError(IndexerError):
    """Raised when a read against the chain fails.

    Covers transport errors, timeouts, contract reverts, unknown blocks and
    malformed responses. The underlying exception is chained as ``__cause__``.
    """

    retryable = True


@dataclass(frozen=True)
class BlockInfo:
    """Height and wall-clock time of one block."""

    height: int
    timestamp: datetime


class ChainReader:
    """Read-only access to one JSON-RPC endpoint.

    Example:
        ```python
        async with ChainReader("https://mainnet.base.org", chain_id=8453) as reader:
            height = await reader.current_block_height()
            block = await reader.block_by_height(height)
        ```
    """

    def __init__(
        self,
        rpc_url: str,
        *,
        chain_id: int | None = None,
        request_timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT,
        web3: AsyncWeb3[Any] | None = None,
    ) -> None:
        """Initialize the chain reader.

        Args:
            rpc_url: JSON-RPC endpoint URL.
            chain_id: Expected chain ID; selects PoA header handling.
            request_timeout_seconds: Per-request HTTP timeout.
            web3: Pre-built client (tests); when omitted one is created.
        """
        self._rpc_url = rpc_url
        self._chain_id = chain_id
        self._w3 = web3 if web3 is not None else self._new_web3_client(rpc_url, request_timeout_seconds)

    @classmethod
    def from_config(cls, config: IngestionConfig) -> ChainReader:
        assert config.rpc_url
        return cls(
            config.rpc_url,
            chain_id=config.chain_id,
            request_timeout_seconds=config.rpc_timeout_seconds,
        )

    def _new_web3_client(self, rpc_url: str, timeout_seconds: float) -> AsyncWeb3[AsyncHTTPProvider]:
        provider = AsyncHTTPProvider(
            rpc_url,
            request_kwargs={"timeout": aiohttp.ClientTimeout(total=timeout_seconds)},
        )
        client = AsyncWeb3(provider)
        if self._chain_id in POA_CHAIN_IDS:
            client.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
        return client

    async def _execute(self, description: str, call: Callable[[], Awaitable[T]]) -> T:
        """Run one RPC call, translating every failure into ``RpcError``.

        ``call`` is a factory so that errors raised while building the request
        (ABI encoding, address validation) are translated as well.
        """
        try:
            return await call()
        except _RPC_FAILURES as e:
            raise RpcError(f"RPC call {description} failed: {e!r}") from e

    async def call_view(
        self,
        contract_address: str,
        function_name: str,
        args: Sequence[Any],
        *,
        abi: list[dict[str, Any]],
        block_identifier: BlockIdentifier = "latest",
    ) -> Any:
        """Perform a read-only contract call.

        Args:
            contract_address: Contract to call.
            function_name: ABI function name.
            args: Positional call arguments.
            abi: ABI describing ``function_name``.
            block_identifier: Block height (or tag) the call is evaluated at.

        Returns:
            The decoded return value.

        Raises:
            RpcError: On transport failure, revert or undecodable output.
        """

        async def call() -> Any:
            contract = self._w3.eth.contract(
                address=AsyncWeb3.to_checksum_address(contract_address),
                abi=abi,
            )
            function = getattr(contract.functions, function_name)
            return await function(*args).call(block_identifier=block_identifier)

        result = await self._execute(f"{function_name}@{block_identifier}", call)
        logger.debug("%s(%s) at %s -> %s", function_name, args, block_identifier, result)
        return result

    async def current_block_height(self) -> int:
        """Get the node's current block number."""

        async def call() -> Any:
            return await self._w3.eth.block_number

        height = await self._execute("eth_blockNumber", call)
        return int(height)

    async def block_by_height(self, height: int) -> BlockInfo:
        """Get the height and timestamp of the block at ``height``.

        Raises:
            RpcError: If the block is unknown to the node (may not be visible
                yet) or the response lacks a timestamp.
        """
        if height < 0:
            raise ValueError("height must be >= 0")

        async def call() -> BlockInfo:
            block = await self._w3.eth.get_block(height)
            if block is None:
                raise ValueError(f"block {height} not found")
            number = int(block["number"])
            if number != height:
                raise ValueError(f"node returned block {number} for height {height}")
            return BlockInfo(
                height=number,
                timestamp=datetime.fromtimestamp(int(block["timestamp"]), tz=UTC),
            )

        return await self._execute(f"eth_getBlockByNumber({height})", call)

    async def chain_id(self) -> int:
        """Get the chain ID reported by the node."""

        async def call() -> Any:
            return await self._w3.eth.chain_id

        return int(await self._execute("eth_chainId", call))

    async def has_code(self, address: str) -> bool:
        """Check that ``address`` holds deployed contract code."""

        async def call() -> Any:
            return await self._w3.eth.get_code(AsyncWeb3.to_checksum_address(address))

        code = await self._execute("eth_getCode", call)
        return len(bytes(code)) > 0

    async def health_check(self) -> bool:
        """Check if the reader can reach the RPC.

        Returns:
            True if healthy, False otherwise.
        """
        try:
            await self.current_block_height()
            return True
        except RpcError as e:
            logger.warning("RPC health check failed (rpc=%s): %s", self._rpc_url, e)
            return False

    async def aclose(self) -> None:
        """Close the async HTTP provider session to avoid leaked aiohttp sessions."""
        disconnect = getattr(self._w3.provider, "disconnect", None)
        if not callable(disconnect):
            return
        try:
            result = disconnect()
            if asyncio.iscoroutine(result):
                await result
        except Exception as e:
            logger.warning("Failed to close RPC provider session: %s", e)

    async def __aenter__(self) -> ChainReader:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()
