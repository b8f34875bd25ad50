"""Myers Construct configuration.

This package contains:
- settings: Environment variables and configuration
- secrets: Unified secret access (Firebase Secrets Manager)
- errors: Custom exceptions and error codes
"""

from config.settings import Settings, settings
from config.errors import EstimatorError
from config.secrets import get_secret, get_openai_api_key, get_serp_api_key

__all__ = [
    "Settings",
    "settings",
    "EstimatorError",
    "get_secret",
    "get_openai_api_key",
    "get_serp_api_key",
]
