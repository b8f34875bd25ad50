"""Myers Construct configuration settings.

Loads configuration from environment variables with sensible defaults.
Secrets are loaded via Firebase Secrets Manager (production) or environment variables (emulator).
"""

import os
from typing import Optional
from dataclasses import dataclass, field
from dotenv import load_dotenv

# Load .env file for non-secret configuration (emulator hosts, feature flags, etc.)
# Secrets should come from Firebase Secrets Manager or environment variables
load_dotenv()


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() == "true"


@dataclass
class Settings:
    """Application settings loaded from environment variables.

    A Settings instance is handed to the estimate orchestrator explicitly,
    so test and production configurations can live side by side in one
    process. The module-level ``settings`` singleton is only for entry points.

    Note: Secrets (OPENAI_API_KEY, SERP_API_KEY) are resolved lazily through
    the config.secrets module unless passed in directly.
    """

    # LLM Configuration (non-secrets)
    llm_model: str = field(default_factory=lambda: os.getenv("LLM_MODEL", "gpt-4o"))
    llm_temperature: float = field(default_factory=lambda: float(os.getenv("LLM_TEMPERATURE", "0.2")))
    llm_max_output_tokens: int = field(default_factory=lambda: int(os.getenv("LLM_MAX_OUTPUT_TOKENS", "8192")))
    enable_web_search: bool = field(default_factory=lambda: _env_bool("ENABLE_WEB_SEARCH", "true"))

    # Firebase Configuration
    firebase_project_id: Optional[str] = field(default_factory=lambda: os.getenv("FIREBASE_PROJECT_ID"))
    use_firebase_emulators: bool = field(default_factory=lambda: _env_bool("USE_FIREBASE_EMULATORS"))
    firestore_emulator_host: str = field(default_factory=lambda: os.getenv("FIRESTORE_EMULATOR_HOST", "localhost:8081"))

    # Pipeline stage timeouts (seconds). Synthesis gets a generous budget
    # because reasoning models can legitimately take minutes.
    identification_timeout_seconds: float = field(default_factory=lambda: float(os.getenv("IDENTIFICATION_TIMEOUT_SECONDS", "45")))
    market_timeout_seconds: float = field(default_factory=lambda: float(os.getenv("MARKET_TIMEOUT_SECONDS", "30")))
    history_timeout_seconds: float = field(default_factory=lambda: float(os.getenv("HISTORY_TIMEOUT_SECONDS", "10")))
    synthesis_timeout_seconds: float = field(default_factory=lambda: float(os.getenv("SYNTHESIS_TIMEOUT_SECONDS", "180")))

    # Grounding bounds
    history_limit: int = field(default_factory=lambda: int(os.getenv("HISTORY_LIMIT", "5")))
    max_grounded_materials: int = field(default_factory=lambda: int(os.getenv("MAX_GROUNDED_MATERIALS", "3")))

    # Logging
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))

    # Internal: cached secret values (use the properties instead)
    _openai_api_key: Optional[str] = field(default=None, repr=False)
    _serp_api_key: Optional[str] = field(default=None, repr=False)

    @property
    def openai_api_key(self) -> Optional[str]:
        """Get OpenAI API key from Firebase Secrets Manager or environment."""
        if self._openai_api_key is None:
            from config.secrets import get_openai_api_key
            self._openai_api_key = get_openai_api_key()
        return self._openai_api_key

    @property
    def serp_api_key(self) -> Optional[str]:
        """Get SerpAPI key from Firebase Secrets Manager or environment."""
        if self._serp_api_key is None:
            from config.secrets import get_serp_api_key
            self._serp_api_key = get_serp_api_key()
        return self._serp_api_key

    def validate(self) -> None:
        """Validate required settings and pipeline bounds.

        Raises:
            ValueError: If required settings are missing.
        """
        if not self.openai_api_key and not self.use_firebase_emulators:
            raise ValueError("OPENAI_API_KEY is required in production")
        if self.max_grounded_materials < 0:
            raise ValueError("MAX_GROUNDED_MATERIALS must not be negative")
        if self.history_limit < 0:
            raise ValueError("HISTORY_LIMIT must not be negative")
        timeouts = (
            self.identification_timeout_seconds,
            self.market_timeout_seconds,
            self.history_timeout_seconds,
            self.synthesis_timeout_seconds,
        )
        if any(t <= 0 for t in timeouts):
            raise ValueError("Stage timeouts must be positive")

    @property
    def is_emulator_mode(self) -> bool:
        """Check if running in emulator mode."""
        return self.use_firebase_emulators


# Singleton settings instance
settings = Settings()
