"""ABI fragment for the LP manager valuation surface."""

from __future__ import annotations

from typing import Any

FETCH_SPOT = "fetchSpot"
FETCH_ORACLE = "fetchOracle"
REQUIRED_FUNCTIONS = (FETCH_SPOT, FETCH_ORACLE)


def _valuation_function(name: str) -> dict[str, Any]:
    return {
        "type": "function",
        "name": name,
        "stateMutability": "view",
        "inputs": [
            {"name": "token0", "type": "address", "internalType": "address"},
            {"name": "token1", "type": "address", "internalType": "address"},
            {"name": "amountIn", "type": "uint256", "internalType": "uint256"},
        ],
        "outputs": [{"name": "amountOut", "type": "uint256", "internalType": "uint256"}],
    }


LP_MANAGER_ABI: list[dict[str, Any]] = [_valuation_function(name) for name in REQUIRED_FUNCTIONS]


def missing_functions(abi: list[dict[str, Any]]) -> list[str]:
    """Required valuation functions absent from ``abi``."""
    names = {item.get("name") for item in abi if item.get("type") == "function"}
    return [name for name in REQUIRED_FUNCTIONS if name not in names]
