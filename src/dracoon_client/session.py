"""
Manage the OAuth2 session with a DRACOON instance.

A session is either disconnected (no tokens) or connected (holds an access + refresh token pair).
The two states are distinct classes: DisconnectedSession.connect returns a ConnectedSession,
ConnectedSession.disconnect returns a DisconnectedSession. Only the connected session exposes
calls that need an Authorization header.

Connected sessions refresh the access token on demand. Clones of a connected session share the
HTTP client and the token cell, so at most one refresh is in flight per session.
"""

import asyncio
import base64
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

import httpx
from cryptography.hazmat.primitives.asymmetric import rsa
from pydantic import SecretStr

from dracoon_client.api_schemas.auth import (
    OAuth2AuthCodeFlow,
    OAuth2PasswordFlow,
    OAuth2RefreshTokenFlow,
    OAuth2TokenResponse,
    OAuth2TokenRevoke,
)
from dracoon_client.api_schemas.keypairs import UserKeyPairContainer
from dracoon_client.config import PollingPolicy
from dracoon_client.constants import (
    DRACOON_API_PREFIX,
    DRACOON_AUTHORIZE_URL,
    DRACOON_REDIRECT_URL,
    DRACOON_TOKEN_REVOKE_URL,
    DRACOON_TOKEN_URL,
    TOKEN_TYPE_HINT_ACCESS_TOKEN,
    TOKEN_TYPE_HINT_REFRESH_TOKEN,
    USER_ACCOUNT_KEYPAIR,
)
from dracoon_client.crypto import decrypt_private_key
from dracoon_client.exceptions import (
    AuthenticationError,
    ConnectionClosedError,
    DracoonAPIError,
    DracoonClientError,
    DracoonIOError,
    MissingEncryptionSecretError,
)
from dracoon_client.retries import RETRYABLE_STATUS_CODES, RetryPolicy
from dracoon_client.services.public_uploads import PublicEndpoint

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PasswordFlow:
    username: str
    password: SecretStr


@dataclass(frozen=True)
class AuthCodeFlow:
    code: str


@dataclass(frozen=True)
class RefreshTokenFlow:
    refresh_token: str


OAuth2Flow = PasswordFlow | AuthCodeFlow | RefreshTokenFlow


@dataclass
class Connection:
    """
    OAuth2 token pair of a connected session.
    """

    access_token: SecretStr
    refresh_token: SecretStr
    expires_in: int
    connected_at: datetime

    @classmethod
    def from_token_response(cls, token_response: OAuth2TokenResponse) -> "Connection":
        return cls(
            access_token=SecretStr(token_response.access_token),
            refresh_token=SecretStr(token_response.refresh_token),
            expires_in=token_response.expires_in,
            connected_at=datetime.now(timezone.utc),
        )

    def is_access_token_valid(self, now: datetime | None = None) -> bool:
        """Valid while less than expires_in whole seconds have passed since the tokens were issued."""
        now = now or datetime.now(timezone.utc)
        return int((now - self.connected_at).total_seconds()) < self.expires_in


@dataclass
class UserKeyPair:
    """The user's keypair with the private key already decrypted."""

    container: UserKeyPairContainer
    private_key: rsa.RSAPrivateKey


@dataclass
class SessionCore:
    """Configuration and HTTP client shared by every state of one session."""

    base_url: str
    client_id: str
    client_secret: SecretStr
    redirect_uri: str
    http: httpx.AsyncClient
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)
    polling_policy: PollingPolicy = field(default_factory=PollingPolicy)


@dataclass
class TokenCell:
    """
    Holds the token pair shared by a connected session and its clones.
    connection is None once the session was disconnected.
    """

    connection: Connection | None
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)


class DracoonSession:
    """
    Functionality available in every session state: building urls, public (unauthenticated) endpoints and
    sending requests with the retry policy applied.
    """

    def __init__(self, core: SessionCore):
        self._core = core

    @property
    def base_url(self) -> str:
        return self._core.base_url

    @property
    def redirect_uri(self) -> str:
        return self._core.redirect_uri

    @property
    def retry_policy(self) -> RetryPolicy:
        return self._core.retry_policy

    @property
    def polling_policy(self) -> PollingPolicy:
        return self._core.polling_policy

    @property
    def http(self) -> httpx.AsyncClient:
        return self._core.http

    @property
    def public(self) -> PublicEndpoint:
        """Public endpoints (system info, upload shares), usable without being connected."""
        return PublicEndpoint(self)

    def build_api_url(self, url_part: str) -> str:
        return f"{self._core.base_url}/{DRACOON_API_PREFIX}/{url_part.lstrip('/')}"

    def _token_url(self) -> str:
        return f"{self._core.base_url}/{DRACOON_TOKEN_URL}"

    def _basic_auth_header(self) -> str:
        """client id and secret, base64 url safe encoded without padding, for the Basic auth header"""
        client_credentials = f"{self._core.client_id}:{self._core.client_secret.get_secret_value()}"
        encoded = base64.urlsafe_b64encode(client_credentials.encode()).decode().rstrip("=")
        return f"Basic {encoded}"

    async def send_request(self, method: str, url: str, retry: bool = True, **kwargs) -> httpx.Response:
        """
        Send a request and return the (successful) response.

        Transport errors and 429/5xx responses are retried according to the retry policy if retry is True,
        which should only be the case for idempotent requests.
        Non-2xx responses raise DracoonAPIError, transport errors raise DracoonIOError.
        """
        retry_policy = self._core.retry_policy if retry else RetryPolicy(max_retries=0)
        try:
            async for attempt in retry_policy.retry_context():
                with attempt:
                    response = await self._core.http.request(method, url, **kwargs)
                    if response.is_error:
                        raise DracoonAPIError.from_response(response)
        except httpx.TransportError as err:
            logger.error(f"Error sending {method} request to {url}: {err!r}")
            raise DracoonIOError(f"Error sending {method} request to {url}: {err!r}") from err

        return response

    async def _request_tokens(self, form: dict, headers: dict | None = None) -> Connection:
        """
        POST a grant to the token endpoint.
        Credentials are in the form/headers, so errors are re-raised without the request details.
        """
        token_url = self._token_url()
        try:
            async for attempt in self._core.retry_policy.retry_context():
                with attempt:
                    response = await self._core.http.post(token_url, data=form, headers=headers)
                    if response.status_code in RETRYABLE_STATUS_CODES:
                        raise AuthenticationError.from_response(response)
        except httpx.TransportError as err:
            logger.error(f"Error connecting to token endpoint {token_url}: {type(err).__name__}")
            raise DracoonIOError(f"Unable to reach the token endpoint {token_url}.") from None

        if response.is_error:
            error = AuthenticationError.from_response(response)
            logger.error(f"Token request rejected with status {response.status_code}: {error.code}")
            raise error

        try:
            token_response = OAuth2TokenResponse(**response.json())
        except ValueError as err:
            raise AuthenticationError(
                status_code=response.status_code, message=f"Invalid token response: {err}"
            ) from None
        return Connection.from_token_response(token_response)

    async def aclose(self) -> None:
        """Close the HTTP client, which is shared with every other state and clone of this session."""
        await self._core.http.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()


class DisconnectedSession(DracoonSession):
    """
    Session without tokens. Use connect with one of the OAuth2 flows to get a ConnectedSession.
    """

    def __init__(self, core: SessionCore, encryption_password: SecretStr | None = None):
        super().__init__(core)
        self._encryption_password = encryption_password
        # errors from revoking tokens in the disconnect that produced this session
        self.revocation_errors: list[DracoonClientError] = []

    def authorize_url(self) -> str:
        """
        Url the user has to open in a browser to start the authorization code flow.
        The redirect uri used is recorded on the session, the auth code flow must use the same one.
        """
        redirect_uri = self._core.redirect_uri or f"{self._core.base_url}/{DRACOON_REDIRECT_URL}"
        self._core.redirect_uri = redirect_uri

        authorize_url = httpx.URL(
            f"{self._core.base_url}/{DRACOON_AUTHORIZE_URL}",
            params={
                "response_type": "code",
                "client_id": self._core.client_id,
                "redirect_uri": redirect_uri,
                "scope": "all",
            },
        )
        return str(authorize_url)

    async def connect(self, oauth_flow: OAuth2Flow) -> "ConnectedSession":
        """
        Get a token pair with the given flow and return the connected session.
        If an encryption password was configured, the user's keypair is fetched and unlocked as well.
        On failure this session stays usable (still disconnected).
        """
        match oauth_flow:
            case PasswordFlow(username=username, password=password):
                logger.debug("Connecting with password flow")
                form = OAuth2PasswordFlow(username=username, password=password.get_secret_value())
                connection = await self._request_tokens(
                    form.model_dump(), headers={"Authorization": self._basic_auth_header()}
                )
            case AuthCodeFlow(code=code):
                logger.debug("Connecting with auth code flow")
                form = OAuth2AuthCodeFlow(code=code, redirect_uri=self._core.redirect_uri)
                connection = await self._request_tokens(
                    form.model_dump(), headers={"Authorization": self._basic_auth_header()}
                )
            case RefreshTokenFlow(refresh_token=refresh_token):
                logger.debug("Connecting with refresh token flow")
                form = OAuth2RefreshTokenFlow(
                    client_id=self._core.client_id,
                    client_secret=self._core.client_secret.get_secret_value(),
                    refresh_token=refresh_token,
                )
                connection = await self._request_tokens(form.model_dump())
            case _:
                raise TypeError(f"Unknown OAuth2 flow: {type(oauth_flow).__name__}")

        connected = ConnectedSession(self._core, TokenCell(connection=connection))

        if self._encryption_password is not None:
            await connected._unlock_keypair(self._encryption_password)

        return connected


class ConnectedSession(DracoonSession):
    """
    Session holding a token pair. Every method raises ConnectionClosedError once the session
    (or any clone of it) was disconnected.
    """

    def __init__(self, core: SessionCore, token_cell: TokenCell, keypair: UserKeyPair | None = None):
        super().__init__(core)
        self._token_cell = token_cell
        self._keypair = keypair

    def _connection(self) -> Connection:
        connection = self._token_cell.connection
        if connection is None:
            raise ConnectionClosedError()
        return connection

    @property
    def is_connected(self) -> bool:
        return self._token_cell.connection is not None

    def get_base_url(self) -> str:
        self._connection()
        return self._core.base_url

    def get_refresh_token(self) -> str:
        """Refresh token of the current connection, persist it to reconnect later with RefreshTokenFlow."""
        return self._connection().refresh_token.get_secret_value()

    def clone(self) -> "ConnectedSession":
        """New handle on the same session (shared HTTP client, tokens and keypair)."""
        self._connection()
        return ConnectedSession(self._core, self._token_cell, self._keypair)

    async def get_auth_header(self) -> str:
        """
        Authorization header for API calls.
        Refreshes the tokens first if the access token expired.
        """
        connection = self._connection()
        if not connection.is_access_token_valid():
            connection = await self._refresh_expired_tokens()

        return f"Bearer {connection.access_token.get_secret_value()}"

    async def refresh_tokens(self) -> Connection:
        """Exchange the refresh token for a new token pair, regardless of the access token's lifetime."""
        async with self._token_cell.lock:
            return await self._refresh_locked()

    async def _refresh_expired_tokens(self) -> Connection:
        async with self._token_cell.lock:
            connection = self._connection()
            # another caller may have refreshed while we waited for the lock
            if connection.is_access_token_valid():
                return connection
            logger.debug("Access token expired, refreshing tokens")
            return await self._refresh_locked()

    async def _refresh_locked(self) -> Connection:
        """
        Caller must hold the token cell lock.
        A failed refresh leaves the old tokens in place, so the next call retries.
        """
        connection = self._connection()
        form = OAuth2RefreshTokenFlow(
            client_id=self._core.client_id,
            client_secret=self._core.client_secret.get_secret_value(),
            refresh_token=connection.refresh_token.get_secret_value(),
        )
        new_connection = await self._request_tokens(form.model_dump())
        self._token_cell.connection = new_connection
        return new_connection

    async def make_authenticated_request(
        self, method: str, api_route: str, retry: bool = True, **kwargs
    ) -> httpx.Response:
        """
        Make an authenticated request to the DRACOON API (api_route is relative to the API prefix).
        The header is fetched per attempt, so a retry after the token expired uses a fresh one.
        """
        url = self.build_api_url(api_route)
        headers = dict(kwargs.pop("headers", None) or {})

        retry_policy = self._core.retry_policy if retry else RetryPolicy(max_retries=0)
        try:
            async for attempt in retry_policy.retry_context():
                with attempt:
                    headers["Authorization"] = await self.get_auth_header()
                    response = await self._core.http.request(method, url, headers=headers, **kwargs)
                    if response.is_error:
                        raise DracoonAPIError.from_response(response)
        except httpx.TransportError as err:
            logger.error(f"Error sending {method} request to {url}: {err!r}")
            raise DracoonIOError(f"Error sending {method} request to {url}: {err!r}") from err

        return response

    async def get_user_keypair(self) -> UserKeyPairContainer:
        """Fetch the user's keypair, the private key is still encrypted with the user's passphrase."""
        response = await self.make_authenticated_request("GET", USER_ACCOUNT_KEYPAIR)
        return UserKeyPairContainer(**response.json())

    async def _unlock_keypair(self, encryption_password: SecretStr) -> None:
        keypair_container = await self.get_user_keypair()
        private_key = decrypt_private_key(
            keypair_container.private_key_container, encryption_password.get_secret_value()
        )
        self._keypair = UserKeyPair(container=keypair_container, private_key=private_key)

    def get_keypair(self) -> UserKeyPair:
        """The user's unlocked keypair, only available if an encryption password was set on the builder."""
        self._connection()
        if self._keypair is None:
            raise MissingEncryptionSecretError()
        return self._keypair

    async def disconnect(
        self, revoke_access_token: bool = True, revoke_refresh_token: bool = False
    ) -> DisconnectedSession:
        """
        Disconnect, optionally revoking the tokens first (access token by default, refresh token not).
        Revocation errors are logged and kept on the returned session, they never stop the disconnect.
        """
        async with self._token_cell.lock:
            connection = self._connection()

            revocation_errors = []
            tokens_to_revoke = []
            if revoke_access_token:
                tokens_to_revoke.append((connection.access_token, TOKEN_TYPE_HINT_ACCESS_TOKEN))
            if revoke_refresh_token:
                tokens_to_revoke.append((connection.refresh_token, TOKEN_TYPE_HINT_REFRESH_TOKEN))

            for token, token_type_hint in tokens_to_revoke:
                logger.debug(f"Revoking {token_type_hint}")
                try:
                    await self._revoke_token(token, token_type_hint)
                except DracoonClientError as err:
                    logger.warning(f"Could not revoke {token_type_hint}: {err}")
                    revocation_errors.append(err)

            self._token_cell.connection = None
            self._keypair = None

        disconnected = DisconnectedSession(self._core)
        disconnected.revocation_errors = revocation_errors
        return disconnected

    async def _revoke_token(self, token: SecretStr, token_type_hint: str) -> None:
        form = OAuth2TokenRevoke(
            client_id=self._core.client_id,
            client_secret=self._core.client_secret.get_secret_value(),
            token=token.get_secret_value(),
            token_type_hint=token_type_hint,
        )
        await self.send_request("POST", f"{self._core.base_url}/{DRACOON_TOKEN_REVOKE_URL}", data=form.model_dump())
