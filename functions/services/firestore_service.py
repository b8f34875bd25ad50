"""Firestore ledger service for Myers Construct.

Persists accepted estimates to the per-user ledger and reads them back,
including the "won" bids used as historical context for new estimates.
"""

from typing import Dict, Any, Optional, List, Tuple
import inspect
import structlog

from firebase_admin import firestore

from config.errors import EstimatorError, ErrorCode, PlanLimitReached
from models.estimate import EstimateResult
from models.financials import FinancialSummary
from models.project import ProjectRequest

logger = structlog.get_logger()


class EstimateStatus:
    """Ledger status values for a saved estimate."""

    DRAFT = "draft"
    SENT = "sent"
    WON = "won"
    LOST = "lost"

    ALL = (DRAFT, SENT, WON, LOST)


UNLIMITED = -1


class FirestoreService:
    """Service for Firestore operations.

    Note: Firebase Admin SDK for Python is synchronous. Methods are
    marked async for interface compatibility but operations are sync.
    """

    COLLECTION_ESTIMATES = "estimates"
    COLLECTION_USERS = "users"

    HISTORY_PAGE_SIZE = 20

    def __init__(self, db=None):
        """Initialize FirestoreService.

        Args:
            db: Optional Firestore client. If not provided, uses default.
        """
        self._db = db

    @property
    def db(self):
        """Get Firestore client (lazy initialization)."""
        if self._db is None:
            self._db = firestore.client()
        return self._db

    async def _maybe_await(self, result: Any) -> Any:
        """Await result if it is awaitable (supports AsyncMock in unit tests)."""
        if inspect.isawaitable(result):
            return await result
        return result

    async def get_estimate(self, estimate_id: str) -> Optional[Dict[str, Any]]:
        """Fetch estimate document by ID.

        Returns:
            Estimate document data or None if not found.

        Raises:
            EstimatorError: If Firestore operation fails.
        """
        try:
            doc_ref = self.db.collection(self.COLLECTION_ESTIMATES).document(estimate_id)
            doc = await self._maybe_await(doc_ref.get())

            if doc.exists:
                return {"id": doc.id, **doc.to_dict()}
            return None

        except Exception as e:
            logger.error("firestore_get_failed", estimate_id=estimate_id, error=str(e))
            raise EstimatorError(
                code=ErrorCode.FIRESTORE_ERROR,
                message=f"Failed to get estimate: {str(e)}",
                details={"estimate_id": estimate_id}
            )

    async def get_user_profile(self, user_id: str) -> Optional[Dict[str, Any]]:
        """Fetch the user's session/profile document (plan and usage)."""
        try:
            doc = await self._maybe_await(
                self.db.collection(self.COLLECTION_USERS).document(user_id).get()
            )
            return doc.to_dict() if doc.exists else None
        except Exception as e:
            logger.error("firestore_user_get_failed", user_id=user_id, error=str(e))
            raise EstimatorError(
                code=ErrorCode.FIRESTORE_ERROR,
                message=f"Failed to get user profile: {str(e)}",
                details={"user_id": user_id}
            )

    async def get_won_bids(self, user_id: str, limit: int = 5) -> List[Dict[str, Any]]:
        """Fetch the user's most recent won estimates.

        Args:
            user_id: Owner user ID.
            limit: Maximum number of documents.

        Returns:
            Estimate documents, most recent first.

        Raises:
            EstimatorError: If Firestore operation fails.
        """
        try:
            query = (
                self.db.collection(self.COLLECTION_ESTIMATES)
                .where("userId", "==", user_id)
                .where("status", "==", EstimateStatus.WON)
                .order_by("createdAt", direction=firestore.Query.DESCENDING)
                .limit(int(limit))
            )
            docs = await self._maybe_await(query.get())
            return [{"id": doc.id, **(doc.to_dict() or {})} for doc in docs]

        except Exception as e:
            logger.error("firestore_won_bids_failed", user_id=user_id, error=str(e))
            raise EstimatorError(
                code=ErrorCode.FIRESTORE_ERROR,
                message=f"Failed to fetch won bids: {str(e)}",
                details={"user_id": user_id}
            )

    async def save_estimate(
        self,
        user_id: str,
        estimate: EstimateResult,
        project: ProjectRequest,
        financials: FinancialSummary
    ) -> str:
        """Persist an accepted estimate to the user's ledger.

        Enforces the monthly estimate allowance from the user's plan
        (``usage.estimatesLimit``, -1 for unlimited) and bumps the usage
        counter after a successful write.

        Returns:
            The new estimate document ID.

        Raises:
            PlanLimitReached: If the user's monthly allowance is used up.
            EstimatorError: If Firestore operation fails.
        """
        profile = await self.get_user_profile(user_id)
        usage = (profile or {}).get("usage") or {}
        estimates_limit = usage.get("estimatesLimit", UNLIMITED)
        used = usage.get("estimatesThisMonth", 0) or 0

        if estimates_limit != UNLIMITED and used >= estimates_limit:
            logger.warning(
                "feature_gate_hit",
                user_id=user_id,
                plan=(profile or {}).get("plan"),
                feature="estimate_limit",
                limit=estimates_limit
            )
            raise PlanLimitReached(limit=estimates_limit, details={"user_id": user_id})

        try:
            doc_ref = self.db.collection(self.COLLECTION_ESTIMATES).document()
            estimate_data = {
                **estimate.to_dict(),
                "userId": user_id,
                "status": EstimateStatus.DRAFT,
                "isAccepted": True,
                "project": {
                    "scope": project.scope,
                    "location": project.location,
                    "description": project.description,
                },
                "baseCost": financials.base,
                "grandTotal": financials.final,
                "margins": financials.markup,
                "overhead": financials.overhead,
                "createdAt": firestore.SERVER_TIMESTAMP,
                "updatedAt": firestore.SERVER_TIMESTAMP
            }
            await self._maybe_await(doc_ref.set(estimate_data))

            if profile is not None:
                user_ref = self.db.collection(self.COLLECTION_USERS).document(user_id)
                await self._maybe_await(user_ref.update({
                    "usage.estimatesThisMonth": firestore.Increment(1),
                    "updatedAt": firestore.SERVER_TIMESTAMP
                }))

            logger.info(
                "estimate_created",
                estimate_id=doc_ref.id,
                user_id=user_id,
                grand_total=round(financials.final, 2)
            )
            return doc_ref.id

        except Exception as e:
            logger.error("estimate_create_failed", user_id=user_id, error=str(e))
            raise EstimatorError(
                code=ErrorCode.FIRESTORE_WRITE_FAILED,
                message=f"Failed to save estimate: {str(e)}",
                details={"user_id": user_id}
            )

    async def get_history(
        self,
        user_id: str,
        page_size: int = HISTORY_PAGE_SIZE,
        start_after: Optional[str] = None
    ) -> Tuple[List[Dict[str, Any]], Optional[str]]:
        """List the user's estimates, newest first.

        Args:
            user_id: Owner user ID.
            page_size: Maximum documents per page.
            start_after: Document ID of the last item on the previous page.

        Returns:
            (items, last_id). A failed read returns an empty page.
        """
        try:
            collection = self.db.collection(self.COLLECTION_ESTIMATES)
            query = (
                collection
                .where("userId", "==", user_id)
                .order_by("createdAt", direction=firestore.Query.DESCENDING)
                .limit(int(page_size))
            )

            if start_after:
                cursor = await self._maybe_await(collection.document(start_after).get())
                if cursor.exists:
                    query = query.start_after(cursor)

            docs = await self._maybe_await(query.get())
            items = [{"id": doc.id, **(doc.to_dict() or {})} for doc in docs]
            last_id = items[-1]["id"] if items else None
            return items, last_id

        except Exception as e:
            logger.warning("history_fetch_failed", user_id=user_id, error=str(e))
            return [], None

    async def update_estimate_status(self, estimate_id: str, user_id: str, status: str) -> None:
        """Set a saved estimate's outcome (draft, sent, won, lost).

        Raises:
            EstimatorError: On unknown status, missing estimate, foreign
                ownership or Firestore failure.
        """
        if status not in EstimateStatus.ALL:
            raise EstimatorError(
                code=ErrorCode.VALIDATION_ERROR,
                message=f"Unknown estimate status: {status}",
                details={"status": status, "allowed": list(EstimateStatus.ALL)}
            )

        estimate = await self.get_estimate(estimate_id)
        if estimate is None:
            raise EstimatorError(
                code=ErrorCode.ESTIMATE_NOT_FOUND,
                message=f"Estimate not found: {estimate_id}",
                details={"estimate_id": estimate_id}
            )
        if estimate.get("userId") != user_id:
            raise EstimatorError(
                code=ErrorCode.VALIDATION_ERROR,
                message="Not authorized to update this estimate",
                details={"estimate_id": estimate_id}
            )

        try:
            doc_ref = self.db.collection(self.COLLECTION_ESTIMATES).document(estimate_id)
            await self._maybe_await(doc_ref.update({
                "status": status,
                "updatedAt": firestore.SERVER_TIMESTAMP
            }))
            logger.info("estimate_status_updated", estimate_id=estimate_id, status=status)

        except Exception as e:
            logger.error("firestore_update_failed", estimate_id=estimate_id, error=str(e))
            raise EstimatorError(
                code=ErrorCode.FIRESTORE_WRITE_FAILED,
                message=f"Failed to update estimate: {str(e)}",
                details={"estimate_id": estimate_id}
            )
