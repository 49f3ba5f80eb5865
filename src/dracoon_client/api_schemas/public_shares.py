"""
Schemas for DRACOON's public routes used to upload files to an upload share (file request).
"""

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, Field

from dracoon_client.api_schemas.base import DracoonModel
from dracoon_client.api_schemas.keypairs import PublicKeyContainer, UserFileKey


class SystemInfo(DracoonModel):
    """Public system information, only the storage mode matters for uploads."""

    use_s3_storage: bool = Field(..., description="True if files are stored in S3 (direct uploads possible)")
    language_default: str | None = None
    s3_enforce_direct_upload: bool | None = None


class UserUserPublicKey(DracoonModel):
    id: int = Field(..., description="Id of the user the public key belongs to")
    public_key_container: PublicKeyContainer


class UserUserPublicKeyList(DracoonModel):
    items: list[UserUserPublicKey] = Field(default_factory=list)


class PublicUploadShare(DracoonModel):
    """
    Upload share as seen by an anonymous uploader.
    Encrypted shares list the public keys of every user the file key must be wrapped for.
    """

    access_key: str | None = None
    name: str | None = None
    is_protected: bool | None = None
    is_encrypted: bool | None = None
    created_at: datetime | None = None
    expire_at: datetime | None = None
    user_user_public_key_list: UserUserPublicKeyList | None = None

    @property
    def recipient_public_keys(self) -> list[UserUserPublicKey]:
        if self.user_user_public_key_list is None:
            return []
        return self.user_user_public_key_list.items


class CreateShareUploadChannelRequest(DracoonModel):
    name: str
    size: int | None = None
    password: str | None = None
    direct_s3_upload: bool | None = None
    timestamp_creation: datetime | None = None
    timestamp_modification: datetime | None = None


class CreateShareUploadChannelResponse(DracoonModel):
    upload_id: str
    upload_url: str | None = None
    token: str | None = None


class GeneratePresignedUrlsRequest(DracoonModel):
    size: int = Field(..., description="Size in bytes of each requested part")
    first_part_number: int
    last_part_number: int


class PresignedUrl(DracoonModel):
    url: str
    part_number: int


class PresignedUrlList(DracoonModel):
    urls: list[PresignedUrl]


class S3FileUploadPart(DracoonModel):
    part_number: int
    part_etag: str


class CompleteS3ShareUploadRequest(DracoonModel):
    parts: list[S3FileUploadPart]
    user_file_key_list: list[UserFileKey] | None = None


class S3UploadStatus(StrEnum):
    TRANSFERRING = "transfer"
    FINISHING = "finishing"
    DONE = "done"
    ERROR = "error"


class DracoonErrorResponse(DracoonModel):
    code: int
    message: str
    debug_info: str | None = None
    error_code: int | None = None


class S3ShareUploadStatus(DracoonModel):
    status: S3UploadStatus
    file_name: str | None = None
    size: int | None = None
    error_details: DracoonErrorResponse | None = None


class ResolutionStrategy(StrEnum):
    AUTORENAME = "autorename"
    OVERWRITE = "overwrite"
    FAIL = "fail"


class FileMeta(BaseModel):
    """Name and exact size in bytes of the file to upload."""

    name: str
    size: int = Field(..., ge=0)


class UploadOptions(BaseModel):
    """Client side options for one upload."""

    file_meta: FileMeta
    classification: int | None = None
    timestamp_creation: datetime | None = None
    timestamp_modification: datetime | None = None
    expiration: datetime | None = None
    resolution_strategy: ResolutionStrategy = ResolutionStrategy.AUTORENAME
    keep_share_links: bool = False
