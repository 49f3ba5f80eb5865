"""
Settings and configuration for the DRACOON client.

`settings` is a single ClientSettings instance created at module load time that can be imported
and used throughout the entire package. It holds tunables that rarely change per client.

`ClientConfig` is the configuration envelope of one client (base url, OAuth2 credentials, retry policy, ...).
It can be loaded from a YAML file or from environment variables and fed into DracoonClientBuilder.from_config.
"""

import os
from dataclasses import dataclass
from pathlib import Path

import yaml
from pydantic import SecretStr

from dracoon_client.constants import (
    CHUNK_SIZE,
    HTTP_TIMEOUT_SECONDS,
    POLLING_MAX_DELAY,
    POLLING_START_DELAY,
    POLLING_TIMEOUT_SECONDS,
)


@dataclass
class ClientSettings:
    """
    Package wide settings.
    NOTE: Do not create an instance of this class yourself,
    import the 'settings' instance created at this module's load time.

    The defaults are likely fine, the use case for changing the env variables is tuning and running with pytest.
    """

    CHUNK_SIZE: int = int(os.getenv("DRACOON_CHUNK_SIZE", CHUNK_SIZE))
    POLLING_START_DELAY_MS: int = int(os.getenv("DRACOON_POLLING_START_DELAY_MS", POLLING_START_DELAY))
    POLLING_MAX_DELAY_MS: int = int(os.getenv("DRACOON_POLLING_MAX_DELAY_MS", POLLING_MAX_DELAY))
    POLLING_TIMEOUT_SECONDS: float = float(os.getenv("DRACOON_POLLING_TIMEOUT_SECONDS", POLLING_TIMEOUT_SECONDS))
    HTTP_TIMEOUT_SECONDS: float = float(os.getenv("DRACOON_HTTP_TIMEOUT_SECONDS", HTTP_TIMEOUT_SECONDS))


settings = ClientSettings()


@dataclass(frozen=True)
class PollingPolicy:
    """
    How the upload status is polled after finalizing an upload.

    The delay starts at start_delay_ms and doubles after every non final status, capped at max_delay_ms.
    Polling gives up once timeout_seconds have passed.
    """

    start_delay_ms: int = settings.POLLING_START_DELAY_MS
    max_delay_ms: int = settings.POLLING_MAX_DELAY_MS
    timeout_seconds: float = settings.POLLING_TIMEOUT_SECONDS


@dataclass
class ClientConfig:
    """
    Configuration of a single DRACOON client.
    Optional values left as None fall back to the builder defaults.
    """

    base_url: str | None = None
    client_id: str | None = None
    client_secret: SecretStr | None = None
    redirect_uri: str | None = None
    user_agent: str | None = None
    max_retries: int | None = None
    min_retry_delay_ms: int | None = None
    max_retry_delay_ms: int | None = None
    encryption_password: SecretStr | None = None

    @classmethod
    def from_dict(cls, config_dict: dict) -> "ClientConfig":
        unknown_keys = set(config_dict) - set(cls.__dataclass_fields__)
        if unknown_keys:
            raise ValueError(f"Unknown keys in DRACOON client config: {sorted(unknown_keys)}")

        config_dict = dict(config_dict)
        for secret_key in ("client_secret", "encryption_password"):
            if config_dict.get(secret_key) is not None:
                config_dict[secret_key] = SecretStr(str(config_dict[secret_key]))
        return cls(**config_dict)

    @classmethod
    def from_env(cls) -> "ClientConfig":
        """Create the config from DRACOON_* environment variables."""

        def _int_env(name: str) -> int | None:
            value = os.getenv(name)
            return int(value) if value else None

        def _secret_env(name: str) -> SecretStr | None:
            value = os.getenv(name)
            return SecretStr(value) if value else None

        return cls(
            base_url=os.getenv("DRACOON_BASE_URL"),
            client_id=os.getenv("DRACOON_CLIENT_ID"),
            client_secret=_secret_env("DRACOON_CLIENT_SECRET"),
            redirect_uri=os.getenv("DRACOON_REDIRECT_URI"),
            user_agent=os.getenv("DRACOON_USER_AGENT"),
            max_retries=_int_env("DRACOON_MAX_RETRIES"),
            min_retry_delay_ms=_int_env("DRACOON_MIN_RETRY_DELAY_MS"),
            max_retry_delay_ms=_int_env("DRACOON_MAX_RETRY_DELAY_MS"),
            encryption_password=_secret_env("DRACOON_ENCRYPTION_PASSWORD"),
        )

    def dump_config(self, output_path: Path) -> None:
        """
        Dump the configuration to a YAML file.
        Secrets are not written, they should come from the environment or a secret store.
        """
        output_path.parent.mkdir(parents=True, exist_ok=True)
        config_dict = {
            "base_url": self.base_url,
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "user_agent": self.user_agent,
            "max_retries": self.max_retries,
            "min_retry_delay_ms": self.min_retry_delay_ms,
            "max_retry_delay_ms": self.max_retry_delay_ms,
        }
        with open(output_path, "w") as file:
            yaml.safe_dump(config_dict, file, sort_keys=False)


def load_client_config(config_path: Path) -> ClientConfig:
    """
    Load a client configuration from a YAML file.
    """
    if not config_path.exists():
        raise FileNotFoundError(f"DRACOON client config file not found at '{config_path}'.")

    with open(config_path, "r") as file:
        config_dict = yaml.safe_load(file) or {}

    if not isinstance(config_dict, dict):
        raise ValueError(f"DRACOON client config at '{config_path}' must be a mapping.")

    return ClientConfig.from_dict(config_dict)
