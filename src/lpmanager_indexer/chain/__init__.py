"""Read-only chain access."""

from lpmanager_indexer.chain.reader import BlockInfo, ChainReader, RpcError

__all__ = ["BlockInfo", "ChainReader", "RpcError"]
