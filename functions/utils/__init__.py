"""Utility modules for Myers Construct functions."""

from utils.pipeline_logger import (
    configure_logging,
    log_pipeline_start,
    log_pipeline_complete,
    log_pipeline_failed,
    log_stage,
)

__all__ = [
    "configure_logging",
    "log_pipeline_start",
    "log_pipeline_complete",
    "log_pipeline_failed",
    "log_stage",
]
