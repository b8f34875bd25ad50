"""Pipeline Logger for Myers Construct.

Provides highly visible, formatted logging for estimate pipeline runs
with distinctive visual markers that stand out in log streams, plus the
structlog configuration used by entry points.
"""

import logging
import sys
from typing import Any, Dict, List, Optional
from datetime import datetime

import structlog

logger = structlog.get_logger()

# Visual markers for different log types
BANNER_WIDTH = 80
STAGE_BANNER_CHAR = "─"
PIPELINE_BANNER_CHAR = "█"


def configure_logging(level: str = "INFO", json_output: bool = False) -> None:
    """Configure structlog for Cloud Functions or local development."""
    log_level = getattr(logging, level.upper(), logging.INFO)
    renderer = structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer()
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
    )


def _create_banner(char: str, text: str, width: int = BANNER_WIDTH) -> str:
    """Create a centered banner with given character."""
    text_with_spaces = f" {text} "
    padding = (width - len(text_with_spaces)) // 2
    return char * padding + text_with_spaces + char * (width - padding - len(text_with_spaces))


def log_pipeline_start(request_id: str, user_id: Optional[str], has_attachment: bool) -> None:
    """Log pipeline start with prominent banner."""
    print("\n")
    print(PIPELINE_BANNER_CHAR * BANNER_WIDTH)
    print(_create_banner(PIPELINE_BANNER_CHAR, "ESTIMATE SYNTHESIS STARTED"))
    print(PIPELINE_BANNER_CHAR * BANNER_WIDTH)
    print(f"║ Request ID  : {request_id}")
    print(f"║ User        : {user_id or '-'}")
    print(f"║ Timestamp   : {datetime.utcnow().isoformat()}")
    print(f"║ Blueprint   : {'yes' if has_attachment else 'no'}")
    print(PIPELINE_BANNER_CHAR * BANNER_WIDTH)

    logger.info(
        "pipeline_started",
        request_id=request_id,
        user_id=user_id,
        has_attachment=has_attachment
    )


def log_stage(request_id: str, stage: str, status: str, duration_ms: int, **detail: Any) -> None:
    """Log the end of one pipeline stage."""
    print(_create_banner(STAGE_BANNER_CHAR, f"{stage.upper()} {status.upper()} ({duration_ms}ms)"))

    log = logger.warning if status == "degraded" else logger.info
    log(
        f"stage_{status}",
        request_id=request_id,
        stage=stage,
        duration_ms=duration_ms,
        **detail
    )


def log_pipeline_complete(
    request_id: str,
    item_count: int,
    source_count: int,
    degraded_stages: List[str],
    duration_ms: int
) -> None:
    """Log pipeline completion with summary banner."""
    print(PIPELINE_BANNER_CHAR * BANNER_WIDTH)
    print(_create_banner(PIPELINE_BANNER_CHAR, "ESTIMATE SYNTHESIS COMPLETE"))
    print(f"║ Request ID  : {request_id}")
    print(f"║ Line Items  : {item_count}")
    print(f"║ Sources     : {source_count}")
    print(f"║ Degraded    : {', '.join(degraded_stages) or 'none'}")
    print(f"║ Duration    : {duration_ms}ms ({duration_ms / 1000:.1f}s)")
    print(PIPELINE_BANNER_CHAR * BANNER_WIDTH + "\n")

    logger.info(
        "pipeline_completed",
        request_id=request_id,
        item_count=item_count,
        source_count=source_count,
        degraded_stages=degraded_stages,
        duration_ms=duration_ms
    )


def log_pipeline_failed(request_id: str, stage: str, error: Dict[str, Any], duration_ms: int) -> None:
    """Log pipeline failure with error banner."""
    print(PIPELINE_BANNER_CHAR * BANNER_WIDTH)
    print(_create_banner(PIPELINE_BANNER_CHAR, "ESTIMATE SYNTHESIS FAILED"))
    print(f"║ Request ID  : {request_id}")
    print(f"║ Stage       : {stage}")
    print(f"║ Error       : {error.get('code')} {str(error.get('message', ''))[:200]}")
    print(PIPELINE_BANNER_CHAR * BANNER_WIDTH + "\n")

    logger.error(
        "pipeline_failed",
        request_id=request_id,
        stage=stage,
        error_code=error.get("code"),
        error=error.get("message"),
        duration_ms=duration_ms
    )
