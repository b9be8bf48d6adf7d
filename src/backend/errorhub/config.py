"""AppSettings -- ErrorHub application configuration.

All environment variables are read via pydantic-settings. Nothing is
required; the defaults give a production-safe mapping (no diagnostics,
validation failures rendered as 400).
"""

from pydantic_settings import BaseSettings, SettingsConfigDict

from errorhub.mapping.builder import DEFAULT_SENSITIVE_KEY_PATTERNS


class AppSettings(BaseSettings):
    """ErrorHub application settings, loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    APP_NAME: str = "ErrorHub"

    # "development" turns on diagnostics in error bodies
    ENVIRONMENT: str = "production"
    EXPOSE_DIAGNOSTICS: bool = False

    # Context keys matching any of these (case-insensitive regex search) are
    # never rendered to clients
    SENSITIVE_KEY_PATTERNS: list[str] = list(DEFAULT_SENSITIVE_KEY_PATTERNS)

    # Status used for the Validation category, e.g. 422
    VALIDATION_STATUS: int = 400

    # Frames whose filename contains any of these are hidden from diagnostics
    STACK_TRACE_FILTERS: list[str] = ["starlette", "fastapi", "anyio", "uvicorn"]

    # Serve an HTML page to browsers that do not accept JSON
    HTML_ERROR_PAGES: bool = True

    # Realm advertised in WWW-Authenticate for 401 responses
    AUTH_REALM: str | None = None

    @property
    def diagnostics_enabled(self) -> bool:
        return self.EXPOSE_DIAGNOSTICS or self.ENVIRONMENT == "development"


settings = AppSettings()
