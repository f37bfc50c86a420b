"""
Runtime settings of the worker action.

Values come from environment variables (and an optional `.env` file) and
are validated once, when first requested.

The serverless runtime hands us its context through `__OW_*` environment
variables. They are read here, once, and threaded through the call chain as
plain values instead of being looked up deep inside the library.
"""

from functools import lru_cache
from typing import Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_TIMEOUT_MS = 60000  # default openwhisk action timeout


class Settings(BaseSettings):
    """Every field can be set through the environment variable of the same name."""

    # API Configuration
    api_title: str = "Asset Compute Worker"
    api_version: str = "v1"

    # Serverless runtime context
    ow_action_name: str = Field(
        default="",
        validation_alias=AliasChoices("__OW_ACTION_NAME", "ow_action_name"),
        description="Fully qualified action name, e.g. /namespace/package/action"
    )
    ow_namespace: str = Field(
        default="",
        validation_alias=AliasChoices("__OW_NAMESPACE", "ow_namespace"),
        description="Namespace the action runs in"
    )
    ow_activation_id: str = Field(
        default="",
        validation_alias=AliasChoices("__OW_ACTIVATION_ID", "ow_activation_id"),
        description="Activation id of the current invocation"
    )
    ow_deadline: Optional[int] = Field(
        default=None,
        validation_alias=AliasChoices("__OW_DEADLINE", "ow_deadline"),
        description="Activation deadline as unix epoch milliseconds"
    )
    ow_api_host: str = Field(
        default="",
        validation_alias=AliasChoices("__OW_API_HOST", "ow_api_host"),
        description="OpenWhisk API host used for asynchronous self-invocation"
    )
    ow_api_key: str = Field(
        default="",
        validation_alias=AliasChoices("__OW_API_KEY", "ow_api_key"),
        description="OpenWhisk API key in the form user:password"
    )
    default_timeout_ms: int = Field(
        default=DEFAULT_TIMEOUT_MS,
        description="Assumed time left when no activation deadline is known"
    )
    unit_test_mode: bool = Field(
        default=False,
        validation_alias=AliasChoices("NUI_UNIT_TEST_MODE", "unit_test_mode"),
        description="Report a fixed action name so error locations are stable in tests"
    )
    invoker_mock_mode: bool = Field(
        default=False,
        description="Do not call OpenWhisk for async invocation, return fake activation ids instead"
    )

    # Temporary cloud storage (presigned URLs for data URI sources)
    temporary_storage_bucket: str = Field(
        default="",
        description="Bucket used for temporary uploads"
    )
    temporary_storage_region: str = Field(
        default="us-east-1",
        description="Region of the temporary storage bucket"
    )
    temporary_storage_access_key: str = Field(
        default="",
        description="Access key for the temporary storage bucket"
    )
    temporary_storage_secret_key: str = Field(
        default="",
        description="Secret key for the temporary storage bucket"
    )
    temporary_storage_endpoint_url: Optional[str] = Field(
        default=None,
        description="Custom S3-compatible endpoint. Leave empty for AWS."
    )
    temporary_storage_mock_mode: bool = Field(
        default=False,
        description="Use in-memory temporary storage instead of S3"
    )
    presign_max_attempts: int = Field(
        default=3,
        ge=1,
        description="How many times callers retry presigned URL generation"
    )

    # Telemetry
    events_url: str = Field(
        default="",
        description="Endpoint receiving rendition events. Empty logs events instead."
    )
    events_api_key: str = Field(
        default="",
        description="API key sent with rendition events"
    )
    new_relic_events_url: str = Field(
        default="",
        description="New Relic insights endpoint for metrics"
    )
    new_relic_api_key: str = Field(
        default="",
        description="New Relic insert key"
    )
    telemetry_mock_mode: bool = Field(
        default=False,
        description="Log events and metrics instead of sending them"
    )

    # Application Behavior
    disable_retries: bool = Field(
        default=False,
        validation_alias=AliasChoices("ASSET_COMPUTE_DISABLE_RETRIES", "disable_retries"),
        description="Disable retries of presigned URL generation"
    )
    work_dir: str = Field(
        default=".",
        description="Directory under which per-activation in/out directories are created"
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Root log level name, e.g. INFO or DEBUG"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,
    )

    @property
    def action_name(self) -> str:
        """
        Short action name, the last segment of `__OW_ACTION_NAME`.

        Used as prefix of error locations (`<action>_download`, ...).
        """
        if self.unit_test_mode:
            return "test_action"
        return self.ow_action_name.split("/")[-1]

    @property
    def package_name(self) -> Optional[str]:
        """Package segment of a /namespace/package/action name, if any."""
        parts = self.ow_action_name.strip("/").split("/")
        if len(parts) > 2:
            return parts[-2]
        return None

    @property
    def effective_presign_attempts(self) -> int:
        """Presign attempts honoring the global retry switch."""
        if self.disable_retries:
            return 1
        return self.presign_max_attempts

    def validate_required_fields(self) -> list[str]:
        """Names of settings that must be set for the configured modes but are empty."""
        missing = []

        if not self.invoker_mock_mode:
            if not self.ow_api_host:
                missing.append("__OW_API_HOST")
            if not self.ow_api_key:
                missing.append("__OW_API_KEY")

        if not self.temporary_storage_mock_mode:
            if not self.temporary_storage_bucket:
                missing.append("TEMPORARY_STORAGE_BUCKET")
            if not self.temporary_storage_access_key:
                missing.append("TEMPORARY_STORAGE_ACCESS_KEY")
            if not self.temporary_storage_secret_key:
                missing.append("TEMPORARY_STORAGE_SECRET_KEY")

        return missing


@lru_cache()
def get_settings() -> Settings:
    """Process-wide settings. Tests reset them with `get_settings.cache_clear()`."""
    return Settings()
