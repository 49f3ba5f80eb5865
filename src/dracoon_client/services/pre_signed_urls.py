"""
Module responsible for streaming a file, part by part, to presigned S3 urls.

Parts are uploaded sequentially: read one part from the source, ask DRACOON for exactly one presigned url
for it, PUT the bytes and keep the returned ETag. Asking for one url at a time keeps the url lifetime short.
"""

import logging
from typing import Awaitable, Callable

import httpx

from dracoon_client.api_schemas.public_shares import PresignedUrl, S3FileUploadPart
from dracoon_client.exceptions import DracoonAPIError, DracoonIOError
from dracoon_client.readers import AsyncReader, read_exact
from dracoon_client.retries import RetryPolicy, retry_only_on_retryable_errors
from dracoon_client.services.upload_planner import calculate_s3_url_count

logger = logging.getLogger(__name__)

# called with (bytes transferred so far, total size)
UploadProgressCallback = Callable[[int, int], None]

# called with (part number, part size), returns the presigned url for that part
PresignedUrlFactory = Callable[[int, int], Awaitable[PresignedUrl]]


class PartBody:
    """
    Streaming request body of one part.
    Remembers whether httpx started consuming it: from then on the PUT can not be retried.
    """

    def __init__(self, chunk: bytes):
        self.chunk = chunk
        self.started = False

    async def __aiter__(self):
        self.started = True
        yield self.chunk


async def upload_chunk_to_s3(
    http: httpx.AsyncClient, presigned_url: PresignedUrl, chunk: bytes, retry_policy: RetryPolicy
) -> str:
    """
    PUT one part to its presigned url and return the ETag S3 responds with.

    Retryable failures are only retried while the body has not been sent yet,
    once bytes went out the error is raised as is.
    """
    body = PartBody(chunk)

    def retry_if_body_not_sent(exc: Exception) -> bool:
        return not body.started and retry_only_on_retryable_errors(exc)

    try:
        async for attempt in retry_policy.retry_context(on=retry_if_body_not_sent):
            with attempt:
                body = PartBody(chunk)
                # S3 rejects chunked transfer encoding, so the length must be sent up front
                response = await http.put(
                    presigned_url.url, content=body, headers={"Content-Length": str(len(chunk))}
                )
                if response.is_error:
                    raise DracoonAPIError.from_response(response)
    except httpx.TransportError as err:
        logger.error(f"Error uploading part {presigned_url.part_number} to S3: {err!r}")
        raise DracoonIOError(f"Error uploading part {presigned_url.part_number} to S3: {err!r}") from err

    etag = response.headers.get("ETag")
    if not etag:
        raise DracoonAPIError(
            status_code=response.status_code,
            message=f"S3 did not return an ETag for part {presigned_url.part_number}.",
            http_method="PUT",
        )
    # ETag is returned with quotes, which must be stripped
    return etag.strip('"')


async def upload_parts(
    http: httpx.AsyncClient,
    reader: AsyncReader,
    size: int,
    chunk_size: int,
    get_presigned_url: PresignedUrlFactory,
    retry_policy: RetryPolicy,
    callback: UploadProgressCallback | None = None,
) -> list[S3FileUploadPart]:
    """
    Upload `size` bytes from the reader and return the uploaded parts in ascending part number order.
    A source that ends before `size` bytes were read raises DracoonIOError.
    """
    count_urls, last_chunk_size = calculate_s3_url_count(size, chunk_size)

    uploaded_parts: list[S3FileUploadPart] = []
    transferred = 0
    for part_number in range(1, count_urls + 1):
        part_size = chunk_size if part_number < count_urls else last_chunk_size

        chunk = await read_exact(reader, part_size)
        presigned_url = await get_presigned_url(part_number, part_size)
        etag = await upload_chunk_to_s3(http, presigned_url, chunk, retry_policy)

        transferred += part_size
        if callback is not None:
            callback(transferred, size)

        logger.debug(f"Uploaded part {part_number}/{count_urls} ({part_size} bytes)")
        uploaded_parts.append(S3FileUploadPart(part_number=part_number, part_etag=etag))

    return uploaded_parts
