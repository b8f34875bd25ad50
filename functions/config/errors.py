"""Myers Construct error handling.

Custom exceptions and error codes for the estimate-synthesis pipeline.

Optimization-stage errors (GroundingUnavailable, HistoryUnavailable) are
absorbed by the orchestrator and only logged. Correctness-stage errors
(GenerationUnavailable, MalformedOutput, SchemaError) propagate to the
caller tagged with the pipeline stage that failed.
"""

from typing import Optional, Dict, Any, List


# Error Codes
class ErrorCode:
    """Error code constants."""

    # Request Errors (1xxx)
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_REQUEST = "INVALID_REQUEST"
    MISSING_FIELD = "MISSING_FIELD"

    # Output Errors (2xxx)
    SCHEMA_ERROR = "SCHEMA_ERROR"
    MALFORMED_OUTPUT = "MALFORMED_OUTPUT"

    # Pipeline Errors (3xxx)
    PIPELINE_FAILED = "PIPELINE_FAILED"
    PIPELINE_TIMEOUT = "PIPELINE_TIMEOUT"

    # Grounding Errors (4xxx)
    GROUNDING_UNAVAILABLE = "GROUNDING_UNAVAILABLE"
    HISTORY_UNAVAILABLE = "HISTORY_UNAVAILABLE"

    # Firestore Errors (5xxx)
    FIRESTORE_ERROR = "FIRESTORE_ERROR"
    ESTIMATE_NOT_FOUND = "ESTIMATE_NOT_FOUND"
    FIRESTORE_WRITE_FAILED = "FIRESTORE_WRITE_FAILED"
    PLAN_LIMIT_REACHED = "PLAN_LIMIT_REACHED"

    # LLM Errors (6xxx)
    GENERATION_UNAVAILABLE = "GENERATION_UNAVAILABLE"
    LLM_RATE_LIMIT = "LLM_RATE_LIMIT"
    LLM_CONTEXT_TOO_LONG = "LLM_CONTEXT_TOO_LONG"

    # Financial Errors (7xxx)
    FINANCIALS_UNDEFINED = "FINANCIALS_UNDEFINED"


GENERIC_FAILURE_MESSAGE = "Estimate synthesis failed, please retry."


class EstimatorError(Exception):
    """Base exception for Myers Construct errors.

    Provides structured error information for API responses.

    Attributes:
        code: Error code from ErrorCode constants
        message: Human-readable error message (diagnostic, may contain provider text)
        details: Additional error context
        stage: Pipeline stage that failed, set by the orchestrator
        cause: Underlying exception, if any
        trace: PipelineTrace of the failed run, when the caller asked for one
    """

    retryable: bool = False

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[BaseException] = None
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details or {}
        self.stage: Optional[str] = None
        self.cause = cause
        self.trace: Optional[Any] = None

    @property
    def user_message(self) -> str:
        """Message that is safe to show to an end user."""
        return GENERIC_FAILURE_MESSAGE

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for API response.

        Returns:
            Dictionary with code, message, and details.
        """
        payload = {
            "code": self.code,
            "message": self.message,
            "details": self.details
        }
        if self.stage:
            payload["stage"] = self.stage
        return payload

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, message={self.message!r}, stage={self.stage!r})"


class InvalidRequest(EstimatorError):
    """Caller input failed presence validation. Never reaches a provider."""

    def __init__(self, message: str, fields: Optional[List[str]] = None, details: Optional[Dict] = None):
        self.fields = list(fields or [])
        super().__init__(
            code=ErrorCode.INVALID_REQUEST,
            message=message,
            details={**(details or {}), "fields": self.fields}
        )

    @property
    def user_message(self) -> str:
        return self.message


class GroundingUnavailable(EstimatorError):
    """Price-search provider unreachable (credentials, transport, non-2xx)."""

    def __init__(self, message: str, details: Optional[Dict] = None, cause: Optional[BaseException] = None):
        super().__init__(ErrorCode.GROUNDING_UNAVAILABLE, message, details, cause)


class HistoryUnavailable(EstimatorError):
    """Ledger unreachable while building historical bid context."""

    def __init__(self, message: str, details: Optional[Dict] = None, cause: Optional[BaseException] = None):
        super().__init__(ErrorCode.HISTORY_UNAVAILABLE, message, details, cause)


class GenerationUnavailable(EstimatorError):
    """Generative model unreachable or returned a transport/auth error."""

    retryable = True

    def __init__(
        self,
        message: str,
        code: str = ErrorCode.GENERATION_UNAVAILABLE,
        details: Optional[Dict] = None,
        cause: Optional[BaseException] = None
    ):
        super().__init__(code, message, details, cause)


class MalformedOutput(EstimatorError):
    """Final synthesis response was not a parseable JSON object."""

    retryable = True

    def __init__(self, message: str, details: Optional[Dict] = None, cause: Optional[BaseException] = None):
        super().__init__(ErrorCode.MALFORMED_OUTPUT, message, details, cause)


class SchemaError(EstimatorError):
    """Parseable output that violates the estimate structure.

    Attributes:
        field: First offending field path (dotted, e.g. ``items.0.category``)
        fields: Every offending field path
    """

    def __init__(self, message: str, fields: List[str], details: Optional[Dict] = None):
        self.fields = list(fields) or ["$"]
        self.field = self.fields[0]
        super().__init__(
            code=ErrorCode.SCHEMA_ERROR,
            message=message,
            details={**(details or {}), "field": self.field, "fields": self.fields}
        )


class FinancialsUndefined(EstimatorError):
    """Markup plus overhead reaches 100%, so no sell price exists."""

    def __init__(self, markup: float, overhead: float):
        super().__init__(
            code=ErrorCode.FINANCIALS_UNDEFINED,
            message=f"Markup ({markup}%) plus overhead ({overhead}%) must stay below 100%",
            details={"markup": markup, "overhead": overhead}
        )

    @property
    def user_message(self) -> str:
        return self.message


class PlanLimitReached(EstimatorError):
    """Monthly estimate allowance for the user's plan is used up."""

    def __init__(self, limit: int, details: Optional[Dict] = None):
        super().__init__(
            code=ErrorCode.PLAN_LIMIT_REACHED,
            message=(
                f"Plan limit reached: You can only create {limit} estimates per month. "
                "Upgrade to create more."
            ),
            details={**(details or {}), "limit": limit}
        )
        self.limit = limit

    @property
    def user_message(self) -> str:
        return self.message
