from pathlib import Path
from urllib.parse import urlparse

from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PATH = Path(__file__).resolve().parent.parent / ".env.local"


class Settings(BaseSettings):
    # Environment settings
    environment: str = "development"
    debug: bool = False
    LOG_LEVEL: str = "INFO"

    # Relayer (FHE network gateway) settings
    RELAYER_URL: str = "https://relayer.testnet.zama.cloud"
    RELAYER_TIMEOUT: float = 30.0
    RELAYER_MAX_RETRIES: int = 3

    # Registry contract address; resolved from the contract when left empty
    CONTRACT_ADDRESS: str = ""

    # =================================================================
    # STATUS CHANNEL - auto-dismiss delays in seconds
    # =================================================================
    STATUS_SUCCESS_DISMISS_SECONDS: float = 2.0
    STATUS_ERROR_DISMISS_SECONDS: float = 3.0

    # Upper bound (exclusive) of the random public view seed written on create
    VIEW_SEED_MAX: int = 1000

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def relayer_base_url(self) -> str:
        return self.RELAYER_URL.rstrip("/")

    def relayer_host(self) -> str | None:
        """
        Host part of RELAYER_URL, used as a log field.
        """
        try:
            return urlparse(self.RELAYER_URL).hostname
        except ValueError:
            return None

    def get_relayer_client_config(self) -> dict:
        """
        Get relayer HTTP client configuration.
        Development uses a shorter timeout and fewer retries.
        """
        config = {
            "timeout": self.RELAYER_TIMEOUT,
            "max_retries": self.RELAYER_MAX_RETRIES,
        }

        if self.environment == "development":
            config.update(
                {
                    "timeout": min(self.RELAYER_TIMEOUT, 15.0),
                    "max_retries": min(self.RELAYER_MAX_RETRIES, 2),
                }
            )

        return config


settings = Settings()
