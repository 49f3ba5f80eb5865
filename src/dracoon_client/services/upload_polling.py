"""
Polls the status of a finalized upload until DRACOON reports it as done or failed.

S3 uploads are assembled asynchronously by DRACOON after finalizing, so the client polls with
exponential backoff: start delay, doubled after every non-final status, capped, and bounded by an overall timeout.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable

from dracoon_client.api_schemas.public_shares import S3ShareUploadStatus, S3UploadStatus
from dracoon_client.config import PollingPolicy
from dracoon_client.exceptions import DracoonAPIError, UploadPollingTimeoutError

logger = logging.getLogger(__name__)


async def poll_upload_status(
    get_status: Callable[[], Awaitable[S3ShareUploadStatus]],
    upload_id: str,
    polling_policy: PollingPolicy,
) -> str:
    """
    Poll until the upload is done and return the name the file was stored with.

    An upload in status error raises DracoonAPIError with the error details DRACOON reported.
    Raises UploadPollingTimeoutError if the upload is still in progress after the policy's timeout.
    """
    delay_ms = polling_policy.start_delay_ms
    deadline = time.monotonic() + polling_policy.timeout_seconds

    while True:
        status_response = await get_status()
        logger.debug(f"Upload '{upload_id}' has status '{status_response.status}'")

        if status_response.status == S3UploadStatus.DONE:
            if status_response.file_name is None:
                raise DracoonAPIError(message=f"Upload '{upload_id}' done without a file name.")
            return status_response.file_name

        if status_response.status == S3UploadStatus.ERROR:
            error_details = status_response.error_details
            if error_details is None:
                raise DracoonAPIError(message=f"Upload '{upload_id}' failed without error details.")
            logger.error(f"Error uploading file: {error_details.message}")
            raise DracoonAPIError(
                status_code=error_details.code,
                message=error_details.message,
                code=error_details.error_code,
                debug_info=error_details.debug_info,
            )

        # the last sleep is cut short so one more poll happens at the deadline
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise UploadPollingTimeoutError(upload_id=upload_id, timeout_seconds=polling_policy.timeout_seconds)

        await asyncio.sleep(min(delay_ms / 1000, remaining))
        delay_ms = min(delay_ms * 2, polling_policy.max_delay_ms)
