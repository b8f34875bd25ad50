"""Unit tests for the Firestore ledger service."""

import pytest
from unittest.mock import AsyncMock

from config.errors import EstimatorError, PlanLimitReached
from models.financials import compute_financial_summary
from models.project import ProjectRequest
from services.firestore_service import EstimateStatus
from validators.estimate_validator import validate_estimate
from tests.fixtures.mock_estimate_data import HARBOR_RENO_PROJECT, harbor_reno_estimate, make_doc


@pytest.fixture
def accepted_estimate():
    estimate = validate_estimate(harbor_reno_estimate())
    return estimate, compute_financial_summary(estimate.items)


class TestFirestoreService:
    """Tests for FirestoreService."""

    @pytest.mark.asyncio
    async def test_get_estimate(self, mock_firestore_service):
        """Test fetching an estimate."""
        result = await mock_firestore_service.get_estimate("est-123")

        assert result["id"] == "est-123"
        assert result["userId"] == "user-123"

    @pytest.mark.asyncio
    async def test_get_estimate_not_found(self, mock_firestore_service):
        """Test fetching non-existent estimate."""
        mock_firestore_service.db.collection.return_value.document.return_value.get = AsyncMock(
            return_value=make_doc("missing", None, exists=False)
        )

        assert await mock_firestore_service.get_estimate("missing") is None

    @pytest.mark.asyncio
    async def test_firestore_error_handling(self, mock_firestore_service):
        """Test error handling for Firestore operations."""
        mock_firestore_service.db.collection.return_value.document.return_value.get = AsyncMock(
            side_effect=Exception("Connection failed")
        )

        with pytest.raises(EstimatorError) as exc_info:
            await mock_firestore_service.get_estimate("est-123")

        assert exc_info.value.code == "FIRESTORE_ERROR"

    @pytest.mark.asyncio
    async def test_get_won_bids_query(self, mock_firestore_service, mock_firestore_client):
        """Test the won-bid query shape."""
        collection = mock_firestore_client.collection.return_value
        query = collection.where.return_value
        query.get = AsyncMock(return_value=[make_doc("est-1", {"status": "won", "margins": 30})])

        bids = await mock_firestore_service.get_won_bids("user-123", limit=5)

        assert bids == [{"id": "est-1", "status": "won", "margins": 30}]
        collection.where.assert_called_once_with("userId", "==", "user-123")
        query.where.assert_called_once_with("status", "==", "won")
        query.limit.assert_called_once_with(5)

    @pytest.mark.asyncio
    async def test_save_estimate(self, mock_firestore_service, mock_firestore_client, accepted_estimate):
        """Test saving an accepted estimate and bumping usage."""
        estimate, financials = accepted_estimate
        users_doc = make_doc("user-123", {"plan": "pro", "usage": {"estimatesLimit": 10, "estimatesThisMonth": 3}})
        document = mock_firestore_client.collection.return_value.document.return_value
        document.get = AsyncMock(return_value=users_doc)

        estimate_id = await mock_firestore_service.save_estimate(
            "user-123", estimate, ProjectRequest(**HARBOR_RENO_PROJECT), financials
        )

        assert estimate_id == "est-generated-id"
        saved = document.set.call_args[0][0]
        assert saved["userId"] == "user-123"
        assert saved["status"] == EstimateStatus.DRAFT
        assert saved["projectSummary"] == estimate.project_summary
        assert saved["grandTotal"] == pytest.approx(financials.final)
        assert saved["margins"] == 35.0
        assert saved["project"]["location"] == "Chicago, IL"
        document.update.assert_called_once()

    @pytest.mark.asyncio
    async def test_save_estimate_plan_limit(self, mock_firestore_service, mock_firestore_client, accepted_estimate):
        """Test the monthly allowance gate."""
        estimate, financials = accepted_estimate
        document = mock_firestore_client.collection.return_value.document.return_value
        document.get = AsyncMock(return_value=make_doc(
            "user-123", {"plan": "free", "usage": {"estimatesLimit": 3, "estimatesThisMonth": 3}}
        ))

        with pytest.raises(PlanLimitReached) as exc_info:
            await mock_firestore_service.save_estimate(
                "user-123", estimate, ProjectRequest(**HARBOR_RENO_PROJECT), financials
            )

        assert exc_info.value.limit == 3
        document.set.assert_not_called()

    @pytest.mark.asyncio
    async def test_save_estimate_unlimited_plan(self, mock_firestore_service, mock_firestore_client, accepted_estimate):
        estimate, financials = accepted_estimate
        document = mock_firestore_client.collection.return_value.document.return_value
        document.get = AsyncMock(return_value=make_doc(
            "user-123", {"plan": "enterprise", "usage": {"estimatesLimit": -1, "estimatesThisMonth": 500}}
        ))

        await mock_firestore_service.save_estimate(
            "user-123", estimate, ProjectRequest(**HARBOR_RENO_PROJECT), financials
        )

        document.set.assert_called_once()

    @pytest.mark.asyncio
    async def test_get_history_page(self, mock_firestore_service, mock_firestore_client):
        query = mock_firestore_client.collection.return_value.where.return_value
        query.get = AsyncMock(return_value=[
            make_doc("est-2", {"status": "won"}),
            make_doc("est-1", {"status": "draft"}),
        ])

        items, last_id = await mock_firestore_service.get_history("user-123", page_size=2)

        assert [i["id"] for i in items] == ["est-2", "est-1"]
        assert last_id == "est-1"

    @pytest.mark.asyncio
    async def test_get_history_failure_is_empty_page(self, mock_firestore_service, mock_firestore_client):
        query = mock_firestore_client.collection.return_value.where.return_value
        query.get = AsyncMock(side_effect=Exception("index missing"))

        assert await mock_firestore_service.get_history("user-123") == ([], None)

    @pytest.mark.asyncio
    async def test_update_estimate_status(self, mock_firestore_service, mock_firestore_client):
        await mock_firestore_service.update_estimate_status("est-123", "user-123", EstimateStatus.WON)

        update = mock_firestore_client.collection.return_value.document.return_value.update
        assert update.call_args[0][0]["status"] == "won"

    @pytest.mark.asyncio
    async def test_update_estimate_status_rejects_unknown_status(self, mock_firestore_service):
        with pytest.raises(EstimatorError) as exc_info:
            await mock_firestore_service.update_estimate_status("est-123", "user-123", "archived")

        assert exc_info.value.code == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_update_estimate_status_checks_owner(self, mock_firestore_service):
        with pytest.raises(EstimatorError) as exc_info:
            await mock_firestore_service.update_estimate_status("est-123", "someone-else", EstimateStatus.LOST)

        assert exc_info.value.message == "Not authorized to update this estimate"
