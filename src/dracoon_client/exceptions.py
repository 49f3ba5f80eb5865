"""
Custom exceptions for the DRACOON client.

These are raised by lower-level functions/methods which understand the context of the error.

Note: By adding the `__str__` method to each exception,
we ensure that when you manually raise a specific exception the error message looks good
"""

import httpx


class DracoonClientError(Exception):
    """Base exception for all DRACOON client errors."""

    status_code: int | None = None

    def __init__(self, error_message: str = "Unknown DRACOON client error."):
        super().__init__(error_message)
        self.error_message = error_message

    def __str__(self):
        return self.error_message

    def is_not_found(self) -> bool:
        return self.status_code == 404

    def is_unauthorized(self) -> bool:
        return self.status_code == 401

    def is_forbidden(self) -> bool:
        return self.status_code == 403

    def is_conflict(self) -> bool:
        return self.status_code == 409

    def is_payload_too_large(self) -> bool:
        return self.status_code == 413


class MissingBaseUrlError(DracoonClientError):
    """Raised when the client is built without a base url."""

    def __init__(self):
        super().__init__("Missing base url, set one with 'with_base_url'.")


class MissingClientIdError(DracoonClientError):
    """Raised when the client is built without (or with an empty) OAuth2 client id."""

    def __init__(self):
        super().__init__("Missing client id, set one with 'with_client_id'.")


class MissingClientSecretError(DracoonClientError):
    """Raised when the client is built without (or with an empty) OAuth2 client secret."""

    def __init__(self):
        super().__init__("Missing client secret, set one with 'with_client_secret'.")


class InvalidUrlError(DracoonClientError):
    """Raised when the base url or redirect uri is not an absolute http(s) url."""

    def __init__(self, url: str, reason: str = "not an absolute http(s) url"):
        self.url = url
        super().__init__(f"Invalid url '{url}': {reason}.")


class AuthenticationError(DracoonClientError):
    """
    Raised when the OAuth2 token endpoint rejects a grant (invalid_grant, invalid_client, ...).
    Carries the server's error body when one was provided.
    """

    def __init__(self, status_code: int | None = None, code: str | None = None, message: str | None = None):
        self.status_code = status_code
        self.code = code
        self.message = message

        error_message = (
            "DRACOON authentication failed:\n"
            f"HTTP Status code: {status_code}\n"
            f"Error: {code or 'unknown'}\n"
            f"Details: {message or 'Not Provided'}\n"
        )
        super().__init__(error_message)

    @classmethod
    def from_response(cls, response: httpx.Response) -> "AuthenticationError":
        try:
            body = response.json()
        except ValueError:
            return cls(status_code=response.status_code, message=response.text or None)

        if not isinstance(body, dict):
            return cls(status_code=response.status_code, message=str(body))
        return cls(
            status_code=response.status_code,
            code=body.get("error"),
            message=body.get("error_description"),
        )


class DracoonAPIError(DracoonClientError):
    """
    Raised when the DRACOON API (or the object storage behind a presigned url)
    responds with an error status code.
    Provides a helpful and easy-to-read error message for the user.
    """

    def __init__(
        self,
        status_code: int | None = None,
        message: str = "Not Provided",
        code: int | None = None,
        debug_info: str | None = None,
        http_method: str = "unknown",
        url: str = "unknown",
    ):
        self.status_code = status_code
        self.message = message
        self.code = code
        self.debug_info = debug_info
        self.http_method = http_method
        self.url = url

        error_message = (
            f"DRACOON returned an error response:\n"
            f"HTTP Status code: {status_code}\n"
            f"HTTP method: {http_method}\n"
            f"URL: {url}\n"
            f"Error code: {code if code is not None else 'unknown'}\n"
            f"Details: {message}\n"
        )
        if debug_info:
            error_message += f"Debug info: {debug_info}\n"
        super().__init__(error_message)

    @classmethod
    def from_response(cls, response: httpx.Response) -> "DracoonAPIError":
        """Build the error from a non-2xx response, parsing the DRACOON error body when there is one."""
        try:
            http_method, url = response.request.method, str(response.request.url)
        except RuntimeError:
            # response was built without a request (e.g. in tests)
            http_method, url = "unknown", "unknown"

        try:
            body = response.json()
        except ValueError:
            body = None

        if not isinstance(body, dict):
            return cls(
                status_code=response.status_code,
                message=response.text or response.reason_phrase,
                http_method=http_method,
                url=url,
            )

        return cls(
            status_code=response.status_code,
            message=body.get("message", "Not Provided"),
            code=body.get("errorCode", body.get("code")),
            debug_info=body.get("debugInfo"),
            http_method=http_method,
            url=url,
        )


class DracoonIOError(DracoonClientError):
    """Raised when bytes are lost on the way: short reads from the source or network I/O failures."""

    def __init__(self, error_message: str = "I/O error while transferring data."):
        super().__init__(error_message)


class DracoonCryptoError(DracoonClientError):
    """Raised when encryption, decryption or the wrapping of a file key fails."""

    def __init__(self, error_message: str = "Cryptographic operation failed."):
        super().__init__(error_message)


class MissingEncryptionSecretError(DracoonClientError):
    """Raised when an encrypted operation is requested but no keypair (or recipient key) is available."""

    def __init__(
        self,
        error_message: str = "No keypair available, build the client with 'with_encryption_password' first.",
    ):
        super().__init__(error_message)


class UnsupportedStorageModeError(DracoonClientError):
    """Raised when the DRACOON instance does not store files in S3 (NFS uploads are not supported)."""

    def __init__(self):
        super().__init__("The DRACOON instance does not use S3 storage, NFS uploads are not supported.")


class ConnectionClosedError(DracoonClientError):
    """Raised when a connected session (or a clone of it) is used after disconnect."""

    def __init__(self, error_message: str = "This session is no longer connected, connect again to continue."):
        super().__init__(error_message)


class InvalidChunkSizeError(DracoonClientError, ValueError):
    """Raised when a chunk size cannot be used to split a file into S3 parts."""

    def __init__(self, chunk_size: int, reason: str):
        self.chunk_size = chunk_size
        super().__init__(f"Invalid chunk size {chunk_size}: {reason}.")


class UploadPollingTimeoutError(DracoonClientError):
    """Raised when an upload did not reach a final status before the polling deadline."""

    def __init__(self, upload_id: str, timeout_seconds: float):
        self.upload_id = upload_id
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Upload '{upload_id}' did not finish within {timeout_seconds} seconds. "
            "It may still complete on the server."
        )
