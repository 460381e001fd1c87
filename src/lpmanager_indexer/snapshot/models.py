"""Data models for valuation snapshots."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import UTC, datetime

UINT256_MAX = 2**256 - 1

_HEX_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


def is_hex_address(value: object) -> bool:
    """Check for a 0x-prefixed, 42-character hex address."""
    return isinstance(value, str) and _HEX_ADDRESS_RE.match(value) is not None


def is_uint256(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and 0 <= value <= UINT256_MAX


def isoformat_utc(ts: datetime) -> str:
    return ts.astimezone(UTC).isoformat()


@dataclass(frozen=True)
class TokenPair:
    """Ordered token pair; token0 is the amount-in token."""

    token0: str
    token1: str

    def __post_init__(self) -> None:
        for name, value in (("token0", self.token0), ("token1", self.token1)):
            if not is_hex_address(value):
                raise ValueError(f"{name} must be a 0x-prefixed 42-character hex address, got {value!r}")


@dataclass(frozen=True)
class ValuationTarget:
    """What one snapshot values: contract, network, pair and input amount."""

    contract_address: str
    chain_id: int
    pair: TokenPair
    amount_in: int

    def __post_init__(self) -> None:
        if not is_hex_address(self.contract_address):
            raise ValueError(f"contract_address must be a hex address, got {self.contract_address!r}")
        if isinstance(self.chain_id, bool) or not isinstance(self.chain_id, int) or self.chain_id <= 0:
            raise ValueError(f"chain_id must be a positive integer, got {self.chain_id!r}")
        if not is_uint256(self.amount_in):
            raise ValueError(f"amount_in must be a uint256, got {self.amount_in!r}")


@dataclass(frozen=True)
class Snapshot:
    """One immutable spot/oracle valuation of a contract at a block height.

    Integers are kept as Python ints in memory and rendered as decimal strings
    by ``to_row()``; ``fetch_spot`` and ``fetch_oracle`` always belong to
    ``block_number``.
    """

    contract_address: str
    chain_id: int
    token0_address: str
    token1_address: str
    amount_in: int
    fetch_spot: int
    fetch_oracle: int
    block_number: int
    block_timestamp: datetime
    timestamp: datetime

    def __post_init__(self) -> None:
        for name in ("contract_address", "token0_address", "token1_address"):
            value = getattr(self, name)
            if not is_hex_address(value):
                raise ValueError(f"{name} must be a 0x-prefixed 42-character hex address, got {value!r}")
        if isinstance(self.chain_id, bool) or not isinstance(self.chain_id, int) or self.chain_id <= 0:
            raise ValueError(f"chain_id must be a positive integer, got {self.chain_id!r}")
        for name in ("amount_in", "fetch_spot", "fetch_oracle", "block_number"):
            value = getattr(self, name)
            if not is_uint256(value):
                raise ValueError(f"{name} must be an unsigned integer, got {value!r}")
        for name in ("block_timestamp", "timestamp"):
            value = getattr(self, name)
            if not isinstance(value, datetime) or value.tzinfo is None:
                raise ValueError(f"{name} must be a timezone-aware datetime, got {value!r}")

    @classmethod
    def from_target(
        cls,
        target: ValuationTarget,
        *,
        fetch_spot: int,
        fetch_oracle: int,
        block_number: int,
        block_timestamp: datetime,
        timestamp: datetime,
    ) -> Snapshot:
        return cls(
            contract_address=target.contract_address,
            chain_id=target.chain_id,
            token0_address=target.pair.token0,
            token1_address=target.pair.token1,
            amount_in=target.amount_in,
            fetch_spot=fetch_spot,
            fetch_oracle=fetch_oracle,
            block_number=block_number,
            block_timestamp=block_timestamp,
            timestamp=timestamp,
        )

    def to_row(self) -> dict[str, str | int]:
        """Render the persisted price history row shape."""
        return {
            "contract_address": self.contract_address,
            "chain_id": self.chain_id,
            "block_number": str(self.block_number),
            "timestamp": isoformat_utc(self.timestamp),
            "block_timestamp": isoformat_utc(self.block_timestamp),
            "fetch_spot": str(self.fetch_spot),
            "fetch_oracle": str(self.fetch_oracle),
            "amount_in": str(self.amount_in),
            "token0_address": self.token0_address,
            "token1_address": self.token1_address,
        }
