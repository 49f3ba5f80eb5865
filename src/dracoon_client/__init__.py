"""
Async client for DRACOON: OAuth2 sessions and (encrypted) uploads to public upload shares via presigned S3 urls.
"""

__version__ = "0.1.0"

from dracoon_client.api_schemas.public_shares import FileMeta, PublicUploadShare, ResolutionStrategy, UploadOptions
from dracoon_client.builder import DracoonClientBuilder
from dracoon_client.config import ClientConfig, PollingPolicy, load_client_config
from dracoon_client.exceptions import (
    AuthenticationError,
    ConnectionClosedError,
    DracoonAPIError,
    DracoonClientError,
    DracoonCryptoError,
    DracoonIOError,
    InvalidChunkSizeError,
    InvalidUrlError,
    MissingBaseUrlError,
    MissingClientIdError,
    MissingClientSecretError,
    MissingEncryptionSecretError,
    UnsupportedStorageModeError,
    UploadPollingTimeoutError,
)
from dracoon_client.readers import AsyncReader, BytesReader, FileReader
from dracoon_client.retries import RetryPolicy
from dracoon_client.session import (
    AuthCodeFlow,
    ConnectedSession,
    DisconnectedSession,
    PasswordFlow,
    RefreshTokenFlow,
)

__all__ = [
    "__version__",
    "AsyncReader",
    "AuthCodeFlow",
    "AuthenticationError",
    "BytesReader",
    "ClientConfig",
    "ConnectedSession",
    "ConnectionClosedError",
    "DisconnectedSession",
    "DracoonAPIError",
    "DracoonClientBuilder",
    "DracoonClientError",
    "DracoonCryptoError",
    "DracoonIOError",
    "FileMeta",
    "FileReader",
    "InvalidChunkSizeError",
    "InvalidUrlError",
    "MissingBaseUrlError",
    "MissingClientIdError",
    "MissingClientSecretError",
    "MissingEncryptionSecretError",
    "PasswordFlow",
    "PollingPolicy",
    "PublicUploadShare",
    "RefreshTokenFlow",
    "ResolutionStrategy",
    "RetryPolicy",
    "UnsupportedStorageModeError",
    "UploadOptions",
    "UploadPollingTimeoutError",
    "load_client_config",
]
