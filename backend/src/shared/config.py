from typing import TYPE_CHECKING, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

if TYPE_CHECKING:
    from certvault.ca.auth import AuthMethod


class ConfigurationError(Exception):
    """Raised when settings are missing or contradictory."""

    pass


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Application
    APP_NAME: str = "Certificate Vault"
    APP_ENV: str = "development"
    LOG_LEVEL: str = "INFO"

    # Vault
    VAULT_KEYS_DIR: str = "./keys"

    # Certificate Authority (Origin CA)
    CA_API_URL: str = "https://api.cloudflare.com/client/v4"
    CA_TIMEOUT_SECONDS: float = 30.0
    CA_ZONE_ID: Optional[str] = None

    # CA auth: either the email/key pair or the service key, never both
    CA_AUTH_EMAIL: Optional[str] = None
    CA_AUTH_KEY: Optional[str] = None
    CA_SERVICE_KEY: Optional[str] = None

    # Toolchain
    OPENSSL_BINARY: str = "openssl"

    # Lifecycle
    DEFAULT_HOST_NAMES: list[str] = []
    CLEANUP_ORPHANED_KEYS: bool = False

    # Rotation
    ROTATION_TIME_UNIT_SECONDS: float = 86400.0
    ROTATION_FAILURE_POLICY: str = "keep_cadence"
    ROTATION_BACKOFF_MAX_FACTOR: int = 8

    def build_auth(self) -> "AuthMethod":
        """Resolve the single configured CA authentication scheme.

        Raises:
            ConfigurationError: If no scheme or both schemes are configured.
        """
        from certvault.ca.auth import ApiKeyAuth, ServiceKeyAuth

        service_key = self.CA_SERVICE_KEY
        email, key = self.CA_AUTH_EMAIL, self.CA_AUTH_KEY

        if service_key and email and key:
            raise ConfigurationError(
                "Configure either CA_AUTH_EMAIL/CA_AUTH_KEY or CA_SERVICE_KEY, not both"
            )
        if service_key:
            return ServiceKeyAuth(token=service_key)
        if email and key:
            return ApiKeyAuth(email=email, key=key)
        raise ConfigurationError(
            "No CA credentials configured: set CA_SERVICE_KEY or CA_AUTH_EMAIL/CA_AUTH_KEY"
        )


settings = Settings()
