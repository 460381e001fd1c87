"""Repository for price history rows.

Insert-only by design of the history: there is no update or delete path.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from lpmanager_indexer.storage.models import PriceHistoryModel

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from lpmanager_indexer.snapshot.models import Snapshot

logger = logging.getLogger(__name__)


class PriceHistoryRepository:
    """Repository for the append-only price history."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def insert(self, snapshot: Snapshot) -> PriceHistoryModel:
        """Insert one row for ``snapshot`` and flush it.

        Raises:
            IntegrityError: If a row for the same contract, chain and block
                already exists.
        """
        model = PriceHistoryModel(
            contract_address=snapshot.contract_address,
            chain_id=snapshot.chain_id,
            block_number=str(snapshot.block_number),
            timestamp=snapshot.timestamp,
            block_timestamp=snapshot.block_timestamp,
            fetch_spot=str(snapshot.fetch_spot),
            fetch_oracle=str(snapshot.fetch_oracle),
            amount_in=str(snapshot.amount_in),
            token0_address=snapshot.token0_address,
            token1_address=snapshot.token1_address,
        )
        self.session.add(model)
        await self.session.flush()
        return model
