"""Tests for the read-only chain reader."""

from __future__ import annotations

from datetime import UTC, datetime
from types import SimpleNamespace
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest
from web3 import AsyncWeb3
from web3.exceptions import BlockNotFound, ContractLogicError

from lpmanager_indexer.chain.abi import FETCH_SPOT, LP_MANAGER_ABI, missing_functions
from lpmanager_indexer.chain.reader import BlockInfo, ChainReader, RpcError

CONTRACT = "0xd6dab267b7c23edb2ed5605d9f3f37420e88e291"
TOKEN0 = "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913"
TOKEN1 = "0xa411c9Aa00E020e4f88Bc19996d29c5B7ADB4ACf"
JAN_1_2024 = 1_704_067_200


class FakeEth:
    """Stand-in for ``AsyncWeb3.eth`` with awaitable properties."""

    def __init__(self, *, height: int = 100, chain_id: int = 8453) -> None:
        self._height = height
        self._chain_id = chain_id
        self.height_error: BaseException | None = None
        self.get_block = AsyncMock(return_value={"number": height, "timestamp": JAN_1_2024})
        self.get_code = AsyncMock(return_value=b"\x60\x80")
        self.contract = MagicMock()

    @property
    async def block_number(self) -> int:
        if self.height_error is not None:
            raise self.height_error
        return self._height

    @property
    async def chain_id(self) -> int:
        return self._chain_id


def _make_reader(eth: FakeEth) -> tuple[ChainReader, Any]:
    provider = MagicMock()
    provider.disconnect = AsyncMock()
    w3 = SimpleNamespace(eth=eth, provider=provider)
    return ChainReader("https://mainnet.base.org", chain_id=8453, web3=w3), provider


def _function_call(eth: FakeEth, name: str) -> MagicMock:
    """The bound ``contract.functions.<name>(...)`` object."""
    return getattr(eth.contract.return_value.functions, name).return_value


class TestChainMetadata:
    @pytest.mark.asyncio
    async def test_current_block_height(self) -> None:
        reader, _ = _make_reader(FakeEth(height=12_345_678))
        assert await reader.current_block_height() == 12_345_678

    @pytest.mark.asyncio
    async def test_block_by_height_returns_utc_timestamp(self) -> None:
        eth = FakeEth(height=42)
        reader, _ = _make_reader(eth)

        block = await reader.block_by_height(42)

        assert block == BlockInfo(height=42, timestamp=datetime(2024, 1, 1, tzinfo=UTC))
        eth.get_block.assert_awaited_once_with(42)

    @pytest.mark.asyncio
    async def test_unknown_block_is_rpc_error(self) -> None:
        eth = FakeEth()
        eth.get_block.side_effect = BlockNotFound("Block with id: '0x3e8' not found.")
        reader, _ = _make_reader(eth)

        with pytest.raises(RpcError) as exc_info:
            await reader.block_by_height(1000)

        assert isinstance(exc_info.value.__cause__, BlockNotFound)
        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    async def test_malformed_block_is_rpc_error(self) -> None:
        eth = FakeEth()
        eth.get_block.return_value = {"number": 100}
        reader, _ = _make_reader(eth)

        with pytest.raises(RpcError):
            await reader.block_by_height(100)

    @pytest.mark.asyncio
    async def test_block_for_wrong_height_is_rpc_error(self) -> None:
        eth = FakeEth()
        eth.get_block.return_value = {"number": 101, "timestamp": JAN_1_2024}
        reader, _ = _make_reader(eth)

        with pytest.raises(RpcError, match="101"):
            await reader.block_by_height(100)

    @pytest.mark.asyncio
    async def test_transport_failure_is_rpc_error(self) -> None:
        eth = FakeEth()
        eth.height_error = aiohttp.ClientConnectionError("connection refused")
        reader, _ = _make_reader(eth)

        with pytest.raises(RpcError) as exc_info:
            await reader.current_block_height()

        assert isinstance(exc_info.value.__cause__, aiohttp.ClientConnectionError)

    @pytest.mark.asyncio
    async def test_chain_id(self) -> None:
        reader, _ = _make_reader(FakeEth(chain_id=137))
        assert await reader.chain_id() == 137

    @pytest.mark.asyncio
    async def test_has_code(self) -> None:
        eth = FakeEth()
        reader, _ = _make_reader(eth)
        assert await reader.has_code(CONTRACT) is True

        eth.get_code.return_value = b""
        assert await reader.has_code(CONTRACT) is False


class TestCallView:
    @pytest.mark.asyncio
    async def test_call_is_pinned_to_block(self) -> None:
        eth = FakeEth()
        call = _function_call(eth, FETCH_SPOT)
        call.call = AsyncMock(return_value=995_000_000_000_000_000)
        reader, _ = _make_reader(eth)

        result = await reader.call_view(
            CONTRACT,
            FETCH_SPOT,
            (TOKEN0, TOKEN1, 100_000_000),
            abi=LP_MANAGER_ABI,
            block_identifier=12_345_678,
        )

        assert result == 995_000_000_000_000_000
        eth.contract.assert_called_once_with(
            address=AsyncWeb3.to_checksum_address(CONTRACT),
            abi=LP_MANAGER_ABI,
        )
        eth.contract.return_value.functions.fetchSpot.assert_called_once_with(TOKEN0, TOKEN1, 100_000_000)
        call.call.assert_awaited_once_with(block_identifier=12_345_678)

    @pytest.mark.asyncio
    async def test_defaults_to_latest(self) -> None:
        eth = FakeEth()
        call = _function_call(eth, FETCH_SPOT)
        call.call = AsyncMock(return_value=1)
        reader, _ = _make_reader(eth)

        await reader.call_view(CONTRACT, FETCH_SPOT, (TOKEN0, TOKEN1, 1), abi=LP_MANAGER_ABI)

        call.call.assert_awaited_once_with(block_identifier="latest")

    @pytest.mark.asyncio
    async def test_revert_is_rpc_error(self) -> None:
        eth = FakeEth()
        _function_call(eth, FETCH_SPOT).call = AsyncMock(side_effect=ContractLogicError("execution reverted"))
        reader, _ = _make_reader(eth)

        with pytest.raises(RpcError) as exc_info:
            await reader.call_view(CONTRACT, FETCH_SPOT, (TOKEN0, TOKEN1, 1), abi=LP_MANAGER_ABI)

        assert isinstance(exc_info.value.__cause__, ContractLogicError)

    @pytest.mark.asyncio
    async def test_invalid_contract_address_is_rpc_error(self) -> None:
        reader, _ = _make_reader(FakeEth())

        with pytest.raises(RpcError):
            await reader.call_view("0xnot-an-address", FETCH_SPOT, (TOKEN0, TOKEN1, 1), abi=LP_MANAGER_ABI)


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_health_check(self) -> None:
        eth = FakeEth()
        reader, _ = _make_reader(eth)
        assert await reader.health_check() is True

        eth.height_error = TimeoutError()
        assert await reader.health_check() is False

    @pytest.mark.asyncio
    async def test_context_manager_closes_provider(self) -> None:
        reader, provider = _make_reader(FakeEth())

        async with reader:
            pass

        provider.disconnect.assert_awaited_once()

    def test_construction_does_not_connect(self) -> None:
        reader = ChainReader("https://polygon-rpc.com", chain_id=137, request_timeout_seconds=5)
        assert reader is not None


def test_abi_exposes_valuation_functions() -> None:
    assert missing_functions(LP_MANAGER_ABI) == []
    assert missing_functions([]) == ["fetchSpot", "fetchOracle"]
