"""
Service layer for DRACOON's public endpoints: system info, upload shares and uploading files to them.

Upload protocol (S3 storage only):
    1. create an upload channel for the share
    2. for every part: get one presigned url, PUT the part, keep the ETag
    3. finalize the upload with all parts (and the wrapped file keys for encrypted shares)
    4. poll the upload status until DRACOON reports done or error

Encrypted shares get the whole file encrypted client side first, with a fresh file key that is then
wrapped for every public key listed on the share.
"""

import logging
from typing import TYPE_CHECKING

from dracoon_client.api_schemas.keypairs import UserFileKey
from dracoon_client.api_schemas.public_shares import (
    CompleteS3ShareUploadRequest,
    CreateShareUploadChannelRequest,
    CreateShareUploadChannelResponse,
    GeneratePresignedUrlsRequest,
    PresignedUrl,
    PresignedUrlList,
    PublicUploadShare,
    S3ShareUploadStatus,
    SystemInfo,
    UploadOptions,
    UserUserPublicKey,
)
from dracoon_client.config import settings
from dracoon_client.constants import (
    FILES_S3_COMPLETE,
    FILES_S3_URLS,
    PUBLIC_BASE,
    PUBLIC_SHARES_BASE,
    PUBLIC_SYSTEM_INFO,
    PUBLIC_UPLOAD_SHARES,
)
from dracoon_client.crypto import FileEncrypter, PlainFileKey, encrypt_file_key, zeroize
from dracoon_client.exceptions import (
    DracoonAPIError,
    DracoonCryptoError,
    MissingEncryptionSecretError,
    UnsupportedStorageModeError,
)
from dracoon_client.readers import AsyncReader, BytesReader, read_into
from dracoon_client.services.pre_signed_urls import UploadProgressCallback, upload_parts
from dracoon_client.services.upload_planner import validate_chunk_size
from dracoon_client.services.upload_polling import poll_upload_status

if TYPE_CHECKING:
    from dracoon_client.session import DracoonSession

logger = logging.getLogger(__name__)


def wrap_file_key_for_recipients(
    plain_file_key: PlainFileKey, recipients: list[UserUserPublicKey], skip_invalid_recipient_keys: bool = False
) -> list[UserFileKey]:
    """
    Wrap the plain file key for every recipient.
    A key that can not be used raises DracoonCryptoError, unless skip_invalid_recipient_keys is set,
    in which case that recipient is left out (and logged).
    """
    user_file_keys = []
    for recipient in recipients:
        try:
            file_key = encrypt_file_key(plain_file_key, recipient.public_key_container)
        except DracoonCryptoError as err:
            if not skip_invalid_recipient_keys:
                logger.error(f"Could not wrap the file key for user {recipient.id}: {err}")
                raise DracoonCryptoError(f"Could not wrap the file key for user {recipient.id}: {err}") from err
            logger.warning(f"Skipping user {recipient.id}, could not wrap the file key: {err}")
            continue
        user_file_keys.append(UserFileKey(user_id=recipient.id, file_key=file_key))

    return user_file_keys


class PublicEndpoint:
    """Public (unauthenticated) DRACOON endpoints, available on connected and disconnected sessions."""

    def __init__(self, session: "DracoonSession"):
        self._session = session

    def _upload_share_url(self, access_key: str, *url_parts: str) -> str:
        url_part = "/".join((PUBLIC_BASE, PUBLIC_SHARES_BASE, PUBLIC_UPLOAD_SHARES, access_key, *url_parts))
        return self._session.build_api_url(url_part)

    async def get_system_info(self) -> SystemInfo:
        url = self._session.build_api_url(f"{PUBLIC_BASE}/{PUBLIC_SYSTEM_INFO}")
        response = await self._session.send_request("GET", url)
        return SystemInfo(**response.json())

    async def get_public_upload_share(self, access_key: str) -> PublicUploadShare:
        response = await self._session.send_request("GET", self._upload_share_url(access_key))
        share = PublicUploadShare(**response.json())
        if share.access_key is None:
            share.access_key = access_key
        return share

    async def upload(
        self,
        access_key: str,
        share: PublicUploadShare,
        upload_options: UploadOptions,
        reader: AsyncReader,
        callback: UploadProgressCallback | None = None,
        chunk_size: int | None = None,
        skip_invalid_recipient_keys: bool = False,
    ) -> str:
        """
        Upload upload_options.file_meta.size bytes from the reader to the upload share.
        Returns the name DRACOON stored the file with (it may be renamed on conflicts).

        The callback is called after every part with (bytes transferred so far, total size).
        """
        chunk_size = chunk_size or settings.CHUNK_SIZE
        validate_chunk_size(chunk_size)

        system_info = await self.get_system_info()
        if not system_info.use_s3_storage:
            logger.error("DRACOON instance does not use S3 storage, NFS uploads are not supported")
            raise UnsupportedStorageModeError()

        logger.info(f"Starting upload of '{upload_options.file_meta.name}' ({upload_options.file_meta.size} bytes)")
        if share.is_encrypted:
            file_name = await self._upload_to_s3_encrypted(
                access_key, share, upload_options, reader, callback, chunk_size, skip_invalid_recipient_keys
            )
        else:
            file_name = await self._upload_to_s3_unencrypted(access_key, upload_options, reader, callback, chunk_size)

        logger.info(f"Upload of '{upload_options.file_meta.name}' done, stored as '{file_name}'")
        return file_name

    async def _upload_to_s3_unencrypted(
        self,
        access_key: str,
        upload_options: UploadOptions,
        reader: AsyncReader,
        callback: UploadProgressCallback | None,
        chunk_size: int,
    ) -> str:
        return await self._upload_through_channel(
            access_key, upload_options, reader, callback, chunk_size, user_file_keys=None
        )

    async def _upload_to_s3_encrypted(
        self,
        access_key: str,
        share: PublicUploadShare,
        upload_options: UploadOptions,
        reader: AsyncReader,
        callback: UploadProgressCallback | None,
        chunk_size: int,
        skip_invalid_recipient_keys: bool,
    ) -> str:
        """
        Encrypt the whole file in memory, wrap the file key for all recipients and upload the ciphertext.
        Plaintext and the plain file key are wiped as soon as they are no longer needed.
        """
        recipients = share.recipient_public_keys
        if not recipients:
            raise MissingEncryptionSecretError("The upload share is encrypted but lists no recipient public keys.")

        size = upload_options.file_meta.size
        plain_buffer = bytearray(size)
        try:
            await read_into(reader, plain_buffer)

            encrypter = FileEncrypter()
            with memoryview(plain_buffer) as plain_view:
                for offset in range(0, size, chunk_size):
                    encrypter.update(plain_view[offset : offset + chunk_size])
            encrypter.finalize()
        finally:
            zeroize(plain_buffer)
            del plain_buffer

        ciphertext = encrypter.take_message()
        if len(ciphertext) != size:
            raise DracoonCryptoError(f"Encrypted size {len(ciphertext)} does not match file size {size}.")

        plain_file_key = encrypter.plain_file_key
        try:
            user_file_keys = wrap_file_key_for_recipients(plain_file_key, recipients, skip_invalid_recipient_keys)
        finally:
            plain_file_key.zeroize()
        del encrypter

        # the reader holds the only reference to the ciphertext until it is released
        crypto_reader = BytesReader(ciphertext)
        del ciphertext
        try:
            return await self._upload_through_channel(
                access_key, upload_options, crypto_reader, callback, chunk_size, user_file_keys=user_file_keys
            )
        finally:
            crypto_reader.release()

    async def _upload_through_channel(
        self,
        access_key: str,
        upload_options: UploadOptions,
        reader: AsyncReader,
        callback: UploadProgressCallback | None,
        chunk_size: int,
        user_file_keys: list[UserFileKey] | None,
    ) -> str:
        file_meta = upload_options.file_meta
        channel_request = CreateShareUploadChannelRequest(
            name=file_meta.name,
            size=file_meta.size,
            timestamp_creation=upload_options.timestamp_creation,
            timestamp_modification=upload_options.timestamp_modification,
            direct_s3_upload=True,
        )
        upload_channel = await self._create_upload_channel(access_key, channel_request)
        upload_id = upload_channel.upload_id

        async def get_presigned_url(part_number: int, part_size: int) -> PresignedUrl:
            urls_request = GeneratePresignedUrlsRequest(
                size=part_size, first_part_number=part_number, last_part_number=part_number
            )
            url_list = await self._create_s3_upload_urls(access_key, urls_request)
            matching_urls = [url for url in url_list.urls if url.part_number == part_number]
            if not matching_urls:
                raise DracoonAPIError(message=f"DRACOON returned no presigned url for part {part_number}.")
            return matching_urls[0]

        s3_parts = await upload_parts(
            http=self._session.http,
            reader=reader,
            size=file_meta.size,
            chunk_size=chunk_size,
            get_presigned_url=get_presigned_url,
            retry_policy=self._session.retry_policy,
            callback=callback,
        )

        await self._finalize_upload(
            access_key,
            CompleteS3ShareUploadRequest(parts=s3_parts, user_file_key_list=user_file_keys),
        )

        return await poll_upload_status(
            get_status=lambda: self._get_upload_status(access_key, upload_id),
            upload_id=upload_id,
            polling_policy=self._session.polling_policy,
        )

    async def _create_upload_channel(
        self, access_key: str, channel_request: CreateShareUploadChannelRequest
    ) -> CreateShareUploadChannelResponse:
        response = await self._session.send_request(
            "POST", self._upload_share_url(access_key), json=channel_request.to_json_body()
        )
        return CreateShareUploadChannelResponse(**response.json())

    async def _create_s3_upload_urls(
        self, access_key: str, urls_request: GeneratePresignedUrlsRequest
    ) -> PresignedUrlList:
        response = await self._session.send_request(
            "POST", self._upload_share_url(access_key, FILES_S3_URLS), json=urls_request.to_json_body()
        )
        return PresignedUrlList(**response.json())

    async def _finalize_upload(
        self, access_key: str, complete_request: CompleteS3ShareUploadRequest
    ) -> None:
        # parts are listed in ascending part number order
        complete_request.parts.sort(key=lambda part: part.part_number)
        await self._session.send_request(
            "PUT",
            self._upload_share_url(access_key, FILES_S3_COMPLETE),
            json=complete_request.to_json_body(exclude_none=False),
        )

    async def _get_upload_status(self, access_key: str, upload_id: str) -> S3ShareUploadStatus:
        response = await self._session.send_request("GET", self._upload_share_url(access_key, upload_id))
        return S3ShareUploadStatus(**response.json())


__all__ = ["PublicEndpoint", "wrap_file_key_for_recipients"]
