"""Cloud Function entry points for the Myers Construct estimator.

Provides HTTP endpoints for:
- Synthesizing an estimate from a project request
- Looking up a single market price
- Committing an accepted estimate to the ledger
- Listing estimate history and updating bid outcomes
"""

import asyncio
import json
from typing import Dict, Any, Optional
from datetime import datetime, date

import structlog
from firebase_functions import https_fn, options
from firebase_admin import initialize_app

from config.settings import settings
from config.errors import (
    EstimatorError,
    ErrorCode,
    FinancialsUndefined,
    GENERIC_FAILURE_MESSAGE,
    GenerationUnavailable,
    InvalidRequest,
    MalformedOutput,
    PlanLimitReached,
    SchemaError,
)
from models.financials import DEFAULT_MARKUP, DEFAULT_OVERHEAD, compute_financial_summary
from models.project import ProjectRequest
from services.firestore_service import FirestoreService
from utils.pipeline_logger import configure_logging
from validators.estimate_validator import validate_estimate

# Initialize Firebase Admin SDK
try:
    initialize_app()
except ValueError:
    # Already initialized
    pass

configure_logging(settings.log_level, json_output=not settings.is_emulator_mode)

logger = structlog.get_logger()

# ============================================================================
# Helper Functions
# ============================================================================


def success_response(data: Dict[str, Any]) -> Dict[str, Any]:
    """Build success response."""
    return {"success": True, "data": data}


def error_response(code: str, message: str, details: Dict[str, Any] = None) -> Dict[str, Any]:
    """Build error response."""
    return {
        "success": False,
        "error": {
            "code": code,
            "message": message,
            "details": details or {}
        }
    }


def get_request_json(req: https_fn.Request) -> Dict[str, Any]:
    """Extract JSON from request body.

    Args:
        req: HTTP request object.

    Returns:
        Parsed JSON data.

    Raises:
        InvalidRequest: If JSON is invalid.
    """
    try:
        data = req.get_json(force=True) or {}
    except Exception as e:
        raise InvalidRequest(f"Invalid JSON in request body: {str(e)}", fields=["$"])
    if not isinstance(data, dict):
        raise InvalidRequest("Request body must be a JSON object", fields=["$"])
    return data


def get_user_id(data: Dict[str, Any]) -> str:
    """Extract user ID from a request body.

    In production, this would validate the Firebase Auth token.
    For now, we accept userId in the request body.

    Raises:
        InvalidRequest: If userId is missing.
    """
    user_id = data.get("userId")
    if not user_id:
        raise InvalidRequest("Missing userId in request", fields=["userId"])
    return user_id


def _pipeline_error_response(e: EstimatorError) -> https_fn.Response:
    """Map a pipeline failure to a client-safe response.

    Provider text stays in the logs; the client only sees the error code,
    the failing stage and a generic retry message.
    """
    if isinstance(e, InvalidRequest):
        return _json_response(
            error_response(e.code, e.user_message, {"fields": e.fields}),
            status=400
        )

    details = {"retryable": e.retryable}
    if e.stage:
        details["stage"] = e.stage
    if isinstance(e, SchemaError):
        details["field"] = e.field

    status = 502 if isinstance(e, (GenerationUnavailable, MalformedOutput)) else 500
    return _json_response(error_response(e.code, e.user_message, details), status=status)


# ============================================================================
# Estimate Synthesis
# ============================================================================


@https_fn.on_request(
    timeout_sec=300,
    memory=options.MemoryOption.GB_1,
    region="us-central1"
)
def generate_estimate(req: https_fn.Request) -> https_fn.Response:
    """Synthesize an estimate for a project.

    Request body:
    {
        "userId": "user-123",  // Optional: enables historical weighting
        "project": {"scope": "...", "location": "...", "description": "..."},
        "attachment": {"data": "data:image/png;base64,...", "mimeType": "image/png"}  // Optional
    }

    Response:
    {
        "success": true,
        "data": {
            "estimate": {...},  // EstimateResult
            "financials": {...}  // Default markup/overhead
        }
    }
    """
    if req.method == "OPTIONS":
        return _cors_response()

    try:
        data = get_request_json(req)
        request = ProjectRequest.from_payload(data.get("project"), data.get("attachment"))
        user_id = data.get("userId")

        logger.info(
            "estimate_request_received",
            user_id=user_id,
            has_attachment=request.attachment is not None
        )

        result = asyncio.run(_generate_estimate_async(request, user_id))
        return _json_response(success_response(result))

    except EstimatorError as e:
        logger.error("estimate_generation_error", code=e.code, stage=e.stage, error=e.message)
        return _pipeline_error_response(e)
    except Exception as e:
        logger.exception("estimate_generation_exception", error=str(e))
        return _json_response(
            error_response(ErrorCode.PIPELINE_FAILED, GENERIC_FAILURE_MESSAGE),
            status=500
        )


async def _generate_estimate_async(request: ProjectRequest, user_id: Optional[str]) -> Dict[str, Any]:
    """Run the orchestrator and attach default financials."""
    from agents.orchestrator import compute_financials, create_orchestrator
    from services.serpapi_service import get_serpapi_service

    orchestrator = create_orchestrator(settings, market_client=get_serpapi_service(settings))
    estimate = await orchestrator.synthesize_estimate(request, user_id)
    financials = compute_financials(estimate, DEFAULT_MARKUP, DEFAULT_OVERHEAD)

    return {
        "estimate": estimate.to_dict(),
        "financials": financials.model_dump(by_alias=True)
    }


@https_fn.on_request(
    timeout_sec=60,
    memory=options.MemoryOption.MB_256,
    region="us-central1"
)
def market_price(req: https_fn.Request) -> https_fn.Response:
    """Look up the current retail price for one material.

    Request body:
    {
        "material": "2x4 lumber",
        "location": "Austin, TX"
    }

    Response:
    {
        "success": true,
        "data": {"result": {...} | null}
    }
    """
    if req.method == "OPTIONS":
        return _cors_response()

    try:
        data = get_request_json(req)
        material = (data.get("material") or "").strip()
        location = (data.get("location") or "").strip()

        missing = [name for name, value in (("material", material), ("location", location)) if not value]
        if missing:
            raise InvalidRequest(f"Missing {', '.join(missing)} in request", fields=missing)

        record = asyncio.run(_market_price_async(material, location))
        return _json_response(success_response({
            "result": record.model_dump(by_alias=True) if record else None
        }))

    except InvalidRequest as e:
        return _json_response(error_response(e.code, e.message, e.details), status=400)
    except EstimatorError as e:
        logger.warning("market_price_unavailable", code=e.code, error=e.message)
        return _json_response(
            error_response(e.code, "Market pricing is temporarily unavailable."),
            status=503
        )


async def _market_price_async(material: str, location: str):
    from services.serpapi_service import get_serpapi_service

    return await get_serpapi_service(settings).lookup_price(material, location)


# ============================================================================
# Ledger Endpoints
# ============================================================================


@https_fn.on_request(
    timeout_sec=60,
    memory=options.MemoryOption.MB_256,
    region="us-central1"
)
def commit_estimate(req: https_fn.Request) -> https_fn.Response:
    """Save an accepted estimate to the user's ledger.

    Request body:
    {
        "userId": "user-123",
        "estimate": {...},  // EstimateResult
        "project": {"scope": "...", "location": "...", "description": "..."},
        "markup": 35,
        "overhead": 15
    }

    Response:
    {
        "success": true,
        "data": {"estimateId": "...", "financials": {...}}
    }
    """
    if req.method == "OPTIONS":
        return _cors_response()

    try:
        data = get_request_json(req)
        user_id = get_user_id(data)
        project = ProjectRequest.from_payload(data.get("project") or {})
        estimate = validate_estimate(data.get("estimate"))

        markup = float(data.get("markup", DEFAULT_MARKUP))
        overhead = float(data.get("overhead", DEFAULT_OVERHEAD))
        financials = compute_financial_summary(estimate.items, markup=markup, overhead=overhead)

        firestore_service = FirestoreService()
        estimate_id = asyncio.run(
            firestore_service.save_estimate(user_id, estimate, project, financials)
        )

        return _json_response(success_response({
            "estimateId": estimate_id,
            "financials": financials.model_dump(by_alias=True)
        }))

    except (TypeError, ValueError) as e:
        return _json_response(
            error_response(ErrorCode.VALIDATION_ERROR, f"markup and overhead must be numbers: {e}"),
            status=400
        )
    except (InvalidRequest, SchemaError, FinancialsUndefined) as e:
        return _json_response(error_response(e.code, e.message, e.details), status=400)
    except PlanLimitReached as e:
        return _json_response(error_response(e.code, e.message, e.details), status=403)
    except EstimatorError as e:
        logger.error("commit_estimate_error", code=e.code, error=e.message)
        return _json_response(
            error_response(e.code, "Failed to save estimate, please retry."),
            status=500
        )


@https_fn.on_request(
    timeout_sec=30,
    memory=options.MemoryOption.MB_256,
    region="us-central1"
)
def estimate_history(req: https_fn.Request) -> https_fn.Response:
    """List the user's estimates, newest first.

    Request body:
    {
        "userId": "user-123",
        "pageSize": 20,  // Optional
        "startAfter": "estimate-id"  // Optional: last ID of previous page
    }
    """
    if req.method == "OPTIONS":
        return _cors_response()

    try:
        data = get_request_json(req)
        user_id = get_user_id(data)
        page_size = int(data.get("pageSize") or FirestoreService.HISTORY_PAGE_SIZE)

        items, last_id = asyncio.run(
            FirestoreService().get_history(user_id, page_size=page_size, start_after=data.get("startAfter"))
        )
        return _json_response(success_response({"items": items, "lastId": last_id}))

    except InvalidRequest as e:
        return _json_response(error_response(e.code, e.message, e.details), status=400)
    except (TypeError, ValueError):
        return _json_response(
            error_response(ErrorCode.VALIDATION_ERROR, "pageSize must be an integer"),
            status=400
        )


@https_fn.on_request(
    timeout_sec=30,
    memory=options.MemoryOption.MB_256,
    region="us-central1"
)
def update_estimate_status(req: https_fn.Request) -> https_fn.Response:
    """Record a bid outcome (draft, sent, won, lost).

    Request body:
    {
        "userId": "user-123",
        "estimateId": "...",
        "status": "won"
    }
    """
    if req.method == "OPTIONS":
        return _cors_response()

    try:
        data = get_request_json(req)
        user_id = get_user_id(data)
        estimate_id = data.get("estimateId")
        if not estimate_id:
            raise InvalidRequest("Missing estimateId in request", fields=["estimateId"])

        asyncio.run(
            FirestoreService().update_estimate_status(estimate_id, user_id, data.get("status"))
        )
        return _json_response(success_response({"estimateId": estimate_id, "status": data.get("status")}))

    except EstimatorError as e:
        status = {
            ErrorCode.INVALID_REQUEST: 400,
            ErrorCode.VALIDATION_ERROR: 400,
            ErrorCode.ESTIMATE_NOT_FOUND: 404,
        }.get(e.code, 500)
        if status == 500:
            logger.error("update_status_error", code=e.code, error=e.message)
        return _json_response(error_response(e.code, e.message, e.details), status=status)


CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization",
    "Access-Control-Max-Age": "3600"
}


def _cors_response() -> https_fn.Response:
    """Return CORS preflight response."""
    return https_fn.Response(
        "",
        status=204,
        headers=CORS_HEADERS
    )


def _json_response(data: dict, status: int = 200) -> https_fn.Response:
    """Return JSON response with CORS headers."""

    def _json_default(o: Any):
        # Firestore timestamps behave like datetimes but are not JSON serializable.
        if isinstance(o, (datetime, date)):
            return o.isoformat()
        if hasattr(o, "isoformat"):
            return o.isoformat()
        return str(o)

    return https_fn.Response(
        json.dumps(data, default=_json_default),
        status=status,
        mimetype="application/json",
        headers=CORS_HEADERS
    )
