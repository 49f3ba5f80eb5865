"""
Splits a file of known size into the parts sent to presigned S3 urls.
"""

from typing import NamedTuple

from dracoon_client.constants import MAX_PART_NUMBER, MAX_S3_PART_SIZE
from dracoon_client.exceptions import InvalidChunkSizeError


class ChunkPlan(NamedTuple):
    count_urls: int
    last_chunk_size: int


def validate_chunk_size(chunk_size: int) -> None:
    if chunk_size <= 0:
        raise InvalidChunkSizeError(chunk_size, "must be positive")
    if chunk_size > MAX_S3_PART_SIZE:
        raise InvalidChunkSizeError(chunk_size, f"S3 parts are limited to {MAX_S3_PART_SIZE} bytes")


def calculate_s3_url_count(size: int, chunk_size: int) -> ChunkPlan:
    """
    Number of presigned urls needed for a file and the size of the (possibly short) last part.

    (count_urls - 1) * chunk_size + last_chunk_size == size always holds.
    An empty file is still uploaded as one empty part.
    """
    validate_chunk_size(chunk_size)
    if size < 0:
        raise ValueError(f"File size must not be negative, got {size}.")

    if size == 0:
        return ChunkPlan(count_urls=1, last_chunk_size=0)

    count_urls = -(-size // chunk_size)
    if count_urls > MAX_PART_NUMBER:
        raise InvalidChunkSizeError(chunk_size, f"a file of {size} bytes would need more than {MAX_PART_NUMBER} parts")

    last_chunk_size = size - (count_urls - 1) * chunk_size
    return ChunkPlan(count_urls=count_urls, last_chunk_size=last_chunk_size)
