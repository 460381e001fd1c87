"""LP Manager price indexer.

Samples the spot and oracle valuations exposed by an LP manager contract and
records each sample as an append-only price history row.
"""

__version__ = "0.1.0"
