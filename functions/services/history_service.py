"""Historical bid context for Myers Construct.

Grounds new estimates in the contractor's own track record by pulling a
handful of previously won bids from the ledger. Historical context only
improves estimate quality, so an unreachable ledger yields no context
rather than an error.
"""

from typing import List, Optional

import structlog

from config.errors import HistoryUnavailable
from models.pipeline import StageOutcome
from models.project import HistoricalBid
from services.firestore_service import EstimateStatus, FirestoreService

logger = structlog.get_logger(__name__)

MAX_HISTORICAL_BIDS = 5


class HistoryService:
    """Historical Bid Context Builder."""

    def __init__(self, ledger: Optional[FirestoreService] = None, limit: int = MAX_HISTORICAL_BIDS):
        self.ledger = ledger or FirestoreService()
        self.limit = min(limit, MAX_HISTORICAL_BIDS)

    async def fetch_won_bids(self, user_id: str) -> List[HistoricalBid]:
        """Fetch up to ``limit`` won bids, most recent first.

        Raises:
            HistoryUnavailable: If the ledger could not be read.
        """
        try:
            docs = await self.ledger.get_won_bids(user_id, limit=self.limit)
            bids = [
                HistoricalBid.from_ledger_document(doc)
                for doc in docs
                if doc.get("status") == EstimateStatus.WON
            ]
        except Exception as e:
            raise HistoryUnavailable(
                f"Historical bids unavailable: {e}",
                details={"user_id": user_id},
                cause=e,
            )
        return bids[: self.limit]

    async def build_context(self, user_id: Optional[str]) -> StageOutcome[List[HistoricalBid]]:
        """Return the user's won bids for the synthesis prompt.

        Anonymous requests get no context. An unreadable ledger degrades to
        an empty list, with the error kept on the outcome.
        """
        if not user_id:
            return StageOutcome.ok([])

        try:
            bids = await self.fetch_won_bids(user_id)
        except HistoryUnavailable as e:
            logger.warning("history_unavailable", user_id=user_id, error=e.message)
            return StageOutcome.degrade([], e.message)

        logger.info("history_context_built", user_id=user_id, bid_count=len(bids))
        return StageOutcome.ok(bids)
