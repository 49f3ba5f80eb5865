"""
Builder for DRACOON sessions.

Validates the configuration and produces a DisconnectedSession:

    dracoon = (
        DracoonClientBuilder()
        .with_base_url("https://dracoon.team")
        .with_client_id("client_id")
        .with_client_secret("client_secret")
        .build()
    )
    dracoon = await dracoon.connect(PasswordFlow("username", SecretStr("password")))
"""

import logging

import httpx
from pydantic import SecretStr

from dracoon_client import __version__
from dracoon_client.config import ClientConfig, PollingPolicy, settings
from dracoon_client.constants import APP_NAME, DRACOON_REDIRECT_URL
from dracoon_client.exceptions import (
    InvalidUrlError,
    MissingBaseUrlError,
    MissingClientIdError,
    MissingClientSecretError,
)
from dracoon_client.retries import RetryPolicy
from dracoon_client.session import DisconnectedSession, SessionCore

logger = logging.getLogger(__name__)

APP_USER_AGENT = f"{APP_NAME}/{__version__}"


def _parse_absolute_url(url: str) -> str:
    """Validate an absolute http(s) url, returned without trailing slash."""
    try:
        parsed = httpx.URL(url)
    except (httpx.InvalidURL, TypeError) as err:
        raise InvalidUrlError(url, reason=str(err)) from err

    if parsed.scheme not in ("http", "https") or not parsed.host:
        raise InvalidUrlError(url)
    return str(parsed).rstrip("/")


class DracoonClientBuilder:
    """Fluent configuration of a DRACOON session, call build() to validate and get a DisconnectedSession."""

    def __init__(self):
        self._base_url: str | None = None
        self._redirect_uri: str | None = None
        self._client_id: str | None = None
        self._client_secret: SecretStr | None = None
        self._user_agent: str = APP_USER_AGENT
        self._max_retries: int | None = None
        self._min_retry_delay: int | None = None
        self._max_retry_delay: int | None = None
        self._encryption_password: SecretStr | None = None
        self._polling_policy: PollingPolicy = PollingPolicy()
        self._transport: httpx.AsyncBaseTransport | None = None
        self._timeout: float = settings.HTTP_TIMEOUT_SECONDS

    @classmethod
    def from_config(cls, config: ClientConfig) -> "DracoonClientBuilder":
        """Builder pre-filled from a configuration envelope (see config.load_client_config)."""
        builder = cls()
        if config.base_url is not None:
            builder.with_base_url(config.base_url)
        if config.client_id is not None:
            builder.with_client_id(config.client_id)
        if config.client_secret is not None:
            builder.with_client_secret(config.client_secret)
        if config.redirect_uri is not None:
            builder.with_redirect_uri(config.redirect_uri)
        if config.user_agent is not None:
            builder.with_user_agent(config.user_agent)
        if config.max_retries is not None:
            builder.with_max_retries(config.max_retries)
        if config.min_retry_delay_ms is not None:
            builder.with_min_retry_delay(config.min_retry_delay_ms)
        if config.max_retry_delay_ms is not None:
            builder.with_max_retry_delay(config.max_retry_delay_ms)
        if config.encryption_password is not None:
            builder.with_encryption_password(config.encryption_password)
        return builder

    def with_base_url(self, base_url: str) -> "DracoonClientBuilder":
        self._base_url = base_url
        return self

    def with_redirect_uri(self, redirect_uri: str) -> "DracoonClientBuilder":
        """Redirect uri for the auth code flow, defaults to {base_url}/oauth/callback"""
        self._redirect_uri = redirect_uri
        return self

    def with_client_id(self, client_id: str) -> "DracoonClientBuilder":
        self._client_id = client_id
        return self

    def with_client_secret(self, client_secret: str | SecretStr) -> "DracoonClientBuilder":
        self._client_secret = client_secret if isinstance(client_secret, SecretStr) else SecretStr(client_secret)
        return self

    def with_user_agent(self, user_agent: str) -> "DracoonClientBuilder":
        self._user_agent = user_agent
        return self

    def with_max_retries(self, max_retries: int) -> "DracoonClientBuilder":
        self._max_retries = max_retries
        return self

    def with_min_retry_delay(self, min_retry_delay_ms: int) -> "DracoonClientBuilder":
        self._min_retry_delay = min_retry_delay_ms
        return self

    def with_max_retry_delay(self, max_retry_delay_ms: int) -> "DracoonClientBuilder":
        self._max_retry_delay = max_retry_delay_ms
        return self

    def with_encryption_password(self, encryption_password: str | SecretStr) -> "DracoonClientBuilder":
        """Passphrase of the user's keypair, the keypair is unlocked when connecting."""
        if not isinstance(encryption_password, SecretStr):
            encryption_password = SecretStr(encryption_password)
        self._encryption_password = encryption_password
        return self

    def with_polling_policy(self, polling_policy: PollingPolicy) -> "DracoonClientBuilder":
        self._polling_policy = polling_policy
        return self

    def with_timeout(self, timeout_seconds: float) -> "DracoonClientBuilder":
        self._timeout = timeout_seconds
        return self

    def with_transport(self, transport: httpx.AsyncBaseTransport) -> "DracoonClientBuilder":
        """Custom httpx transport (proxies, mounts, mock transports in tests)."""
        self._transport = transport
        return self

    def build(self) -> DisconnectedSession:
        """
        Validate the configuration and return a disconnected session.
        Fails if any of the required fields are missing or a url is invalid.
        """
        if not self._base_url:
            logger.error("Missing base url")
            raise MissingBaseUrlError()
        base_url = _parse_absolute_url(self._base_url)

        if not self._client_id:
            logger.error("Missing client id")
            raise MissingClientIdError()

        if self._client_secret is None or not self._client_secret.get_secret_value():
            logger.error("Missing client secret")
            raise MissingClientSecretError()

        if self._redirect_uri is not None:
            redirect_uri = _parse_absolute_url(self._redirect_uri)
        else:
            redirect_uri = f"{base_url}/{DRACOON_REDIRECT_URL}"

        retry_policy = RetryPolicy.create(
            max_retries=self._max_retries,
            min_delay_ms=self._min_retry_delay,
            max_delay_ms=self._max_retry_delay,
        )

        http = httpx.AsyncClient(
            headers={"User-Agent": self._user_agent},
            timeout=self._timeout,
            transport=self._transport,
        )

        core = SessionCore(
            base_url=base_url,
            client_id=self._client_id,
            client_secret=self._client_secret,
            redirect_uri=redirect_uri,
            http=http,
            retry_policy=retry_policy,
            polling_policy=self._polling_policy,
        )
        return DisconnectedSession(core, encryption_password=self._encryption_password)
