"""Credentials for the estimator's external providers.

Two keys are needed: OPENAI_API_KEY for synthesis and SERP_API_KEY for
market grounding. Deployed functions read them from Secret Manager; the
emulator reads them from the environment (or .env).
"""

import os
from functools import lru_cache
from typing import Optional

import structlog

logger = structlog.get_logger(__name__)

DEFAULT_PROJECT_ID = "myers-construct"

# The web tier deploys the SerpAPI key under this name
SERP_API_KEY_ALIAS = "SERPAPI_KEY"


def is_emulator_mode() -> bool:
    return (
        os.environ.get("FUNCTIONS_EMULATOR") == "true"
        or os.environ.get("FIRESTORE_EMULATOR_HOST") is not None
    )


def _secret_version_name(secret_id: str) -> str:
    project_id = os.environ.get("GCLOUD_PROJECT") or os.environ.get("GOOGLE_CLOUD_PROJECT", DEFAULT_PROJECT_ID)
    return f"projects/{project_id}/secrets/{secret_id}/versions/latest"


def get_secret(secret_id: str) -> Optional[str]:
    """Resolve one provider credential.

    A Secret Manager failure falls back to the environment so a function
    deployed with plain env vars still runs; callers treat a missing key as
    "provider unavailable".

    Args:
        secret_id: Secret name, e.g. ``SERP_API_KEY``.

    Returns:
        The secret value, or None.
    """
    if is_emulator_mode():
        value = os.environ.get(secret_id)
        if not value:
            logger.warning("secret_missing_from_environment", secret_id=secret_id)
        return value

    try:
        from google.cloud import secretmanager

        response = secretmanager.SecretManagerServiceClient().access_secret_version(
            request={"name": _secret_version_name(secret_id)}
        )
        logger.debug("secret_loaded", secret_id=secret_id, source="secret_manager")
        return response.payload.data.decode("UTF-8")
    except Exception as e:
        logger.warning("secret_manager_lookup_failed", secret_id=secret_id, error=str(e))
        return os.environ.get(secret_id)


@lru_cache(maxsize=1)
def get_openai_api_key() -> Optional[str]:
    return get_secret("OPENAI_API_KEY")


@lru_cache(maxsize=1)
def get_serp_api_key() -> Optional[str]:
    return get_secret("SERP_API_KEY") or os.environ.get(SERP_API_KEY_ALIAS)


def clear_secret_cache() -> None:
    """Forget resolved keys, e.g. after rotation."""
    get_openai_api_key.cache_clear()
    get_serp_api_key.cache_clear()
