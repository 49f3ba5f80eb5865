from datetime import datetime, timezone

import httpx
import pytest
from pydantic import SecretStr

from dracoon_client import (
    BytesReader,
    DracoonAPIError,
    DracoonCryptoError,
    DracoonIOError,
    FileMeta,
    InvalidChunkSizeError,
    MissingEncryptionSecretError,
    PasswordFlow,
    PublicUploadShare,
    UnsupportedStorageModeError,
    UploadOptions,
)
from dracoon_client.api_schemas.keypairs import FileKey
from dracoon_client.constants import CHUNK_SIZE
from dracoon_client.crypto import (
    FileDecrypter,
    decrypt_file_key,
    decrypt_private_key,
    generate_user_keypair,
)
from tests.helpers.fake_dracoon import (
    ACCESS_KEY,
    S3_COMPLETE_PATH,
    S3_URLS_PATH,
    SYSTEM_INFO_PATH,
    TOKEN_PATH,
    UPLOAD_PATH,
    UPLOAD_SHARE_PATH,
    build_session,
    json_of,
    json_response,
    token_response,
)

KEYPAIR_PASSWORD = "recipient password"


@pytest.fixture(scope="module")
def recipient_keypairs():
    """Two recipient keypairs, 2048 bit keys keep the tests fast."""
    return {
        7: generate_user_keypair(KEYPAIR_PASSWORD, key_size=2048),
        9: generate_user_keypair(KEYPAIR_PASSWORD, key_size=2048),
    }


def upload_options(name: str, size: int) -> UploadOptions:
    return UploadOptions(file_meta=FileMeta(name=name, size=size))


def encrypted_share(keypairs: dict) -> PublicUploadShare:
    return PublicUploadShare(
        **{
            "accessKey": ACCESS_KEY,
            "isEncrypted": True,
            "userUserPublicKeyList": {
                "items": [
                    {"id": user_id, "publicKeyContainer": keypair.public_key_container.model_dump(by_alias=True)}
                    for user_id, keypair in keypairs.items()
                ]
            },
        }
    )


@pytest.mark.asyncio
async def test_get_system_info(dracoon, fake_dracoon):
    fake_dracoon.add_route("GET", SYSTEM_INFO_PATH, json_response(200, {"useS3Storage": True, "languageDefault": "de"}))

    system_info = await dracoon.public.get_system_info()

    assert system_info.use_s3_storage is True
    assert system_info.language_default == "de"


@pytest.mark.asyncio
async def test_get_public_upload_share(dracoon, fake_dracoon):
    fake_dracoon.add_route("GET", UPLOAD_SHARE_PATH, json_response(200, {"name": "Inbox", "isEncrypted": False}))

    share = await dracoon.public.get_public_upload_share(ACCESS_KEY)

    assert share.name == "Inbox"
    assert share.access_key == ACCESS_KEY
    assert share.is_encrypted is False
    assert share.recipient_public_keys == []


@pytest.mark.asyncio
async def test_small_unencrypted_upload(dracoon, fake_dracoon):
    fake_dracoon.add_s3_upload_routes(file_name="x.txt")
    fake_dracoon.add_s3_part_route(1)
    progress = []

    file_name = await dracoon.public.upload(
        ACCESS_KEY,
        PublicUploadShare(access_key=ACCESS_KEY, is_encrypted=False),
        upload_options("x.txt", 10),
        BytesReader(b"0123456789"),
        callback=lambda transferred, total: progress.append((transferred, total)),
    )

    assert file_name == "x.txt"
    assert progress == [(10, 10)]

    (channel_request,) = fake_dracoon.requests_to("POST", UPLOAD_SHARE_PATH)
    assert json_of(channel_request) == {"name": "x.txt", "size": 10, "directS3Upload": True}

    (urls_request,) = fake_dracoon.requests_to("POST", S3_URLS_PATH)
    assert json_of(urls_request) == {"size": 10, "firstPartNumber": 1, "lastPartNumber": 1}

    (part_request,) = fake_dracoon.s3_part_requests()
    assert part_request.content == b"0123456789"
    assert part_request.headers["Content-Length"] == "10"
    assert "Transfer-Encoding" not in part_request.headers

    (complete_request,) = fake_dracoon.requests_to("PUT", S3_COMPLETE_PATH)
    assert json_of(complete_request) == {
        "parts": [{"partNumber": 1, "partEtag": "e1"}],
        "userFileKeyList": None,
    }

    assert len(fake_dracoon.requests_to("GET", UPLOAD_PATH)) == 2


@pytest.mark.asyncio
async def test_upload_protocol_order(dracoon, fake_dracoon):
    fake_dracoon.add_s3_upload_routes()
    fake_dracoon.add_s3_part_route(1)
    fake_dracoon.add_s3_part_route(2)

    await dracoon.public.upload(
        ACCESS_KEY,
        PublicUploadShare(is_encrypted=False),
        upload_options("x.txt", 8),
        BytesReader(b"abcdefgh"),
        chunk_size=4,
    )

    steps = [(r.method, r.url.path) for r in fake_dracoon.requests]
    assert steps == [
        ("GET", SYSTEM_INFO_PATH),
        ("POST", UPLOAD_SHARE_PATH),
        ("POST", S3_URLS_PATH),
        ("PUT", "/bucket/part1"),
        ("POST", S3_URLS_PATH),
        ("PUT", "/bucket/part2"),
        ("PUT", S3_COMPLETE_PATH),
        ("GET", UPLOAD_PATH),
        ("GET", UPLOAD_PATH),
    ]


@pytest.mark.asyncio
async def test_presigned_urls_and_finalize_use_share_paths_without_upload_id(dracoon, fake_dracoon):
    fake_dracoon.add_s3_upload_routes()
    fake_dracoon.add_s3_part_route(1)

    await dracoon.public.upload(
        ACCESS_KEY, PublicUploadShare(is_encrypted=False), upload_options("x.txt", 1), BytesReader(b"x")
    )

    paths = [(r.method, r.url.path) for r in fake_dracoon.requests]
    assert ("POST", "/api/v4/public/shares/uploads/AK/s3_urls") in paths
    assert ("PUT", "/api/v4/public/shares/uploads/AK/s3") in paths
    assert ("GET", "/api/v4/public/shares/uploads/AK/U1") in paths
    assert not any("/U1/" in path for _, path in paths)


@pytest.mark.asyncio
async def test_two_chunk_upload(dracoon, fake_dracoon):
    fake_dracoon.add_s3_upload_routes()
    fake_dracoon.add_s3_part_route(1)
    fake_dracoon.add_s3_part_route(2)
    data = bytes(CHUNK_SIZE) + b"tail!"
    progress = []

    await dracoon.public.upload(
        ACCESS_KEY,
        PublicUploadShare(is_encrypted=False),
        upload_options("big.bin", len(data)),
        BytesReader(data),
        callback=lambda transferred, total: progress.append((transferred, total)),
    )

    url_requests = [json_of(r) for r in fake_dracoon.requests_to("POST", S3_URLS_PATH)]
    assert url_requests == [
        {"size": CHUNK_SIZE, "firstPartNumber": 1, "lastPartNumber": 1},
        {"size": 5, "firstPartNumber": 2, "lastPartNumber": 2},
    ]

    part_requests = fake_dracoon.s3_part_requests()
    assert [len(r.content) for r in part_requests] == [CHUNK_SIZE, 5]
    assert part_requests[1].content == b"tail!"

    (complete_request,) = fake_dracoon.requests_to("PUT", S3_COMPLETE_PATH)
    assert json_of(complete_request)["parts"] == [
        {"partNumber": 1, "partEtag": "e1"},
        {"partNumber": 2, "partEtag": "e2"},
    ]
    assert progress == [(CHUNK_SIZE, len(data)), (len(data), len(data))]


@pytest.mark.asyncio
async def test_zero_byte_upload(dracoon, fake_dracoon):
    fake_dracoon.add_s3_upload_routes(file_name="empty.txt")
    fake_dracoon.add_s3_part_route(1)

    file_name = await dracoon.public.upload(
        ACCESS_KEY, PublicUploadShare(is_encrypted=False), upload_options("empty.txt", 0), BytesReader(b"")
    )

    assert file_name == "empty.txt"
    (urls_request,) = fake_dracoon.requests_to("POST", S3_URLS_PATH)
    assert json_of(urls_request) == {"size": 0, "firstPartNumber": 1, "lastPartNumber": 1}
    (part_request,) = fake_dracoon.s3_part_requests()
    assert part_request.content == b""
    (complete_request,) = fake_dracoon.requests_to("PUT", S3_COMPLETE_PATH)
    assert json_of(complete_request)["parts"] == [{"partNumber": 1, "partEtag": "e1"}]


@pytest.mark.asyncio
async def test_short_source_raises_io_error(dracoon, fake_dracoon):
    fake_dracoon.add_s3_upload_routes()
    fake_dracoon.add_s3_part_route(1)

    with pytest.raises(DracoonIOError):
        await dracoon.public.upload(
            ACCESS_KEY,
            PublicUploadShare(is_encrypted=False),
            upload_options("x.txt", 10),
            BytesReader(b"too short"),
        )

    assert fake_dracoon.requests_to("PUT", S3_COMPLETE_PATH) == []


@pytest.mark.asyncio
async def test_nfs_storage_is_not_supported(dracoon, fake_dracoon):
    fake_dracoon.add_s3_upload_routes(use_s3_storage=False)

    with pytest.raises(UnsupportedStorageModeError):
        await dracoon.public.upload(
            ACCESS_KEY, PublicUploadShare(is_encrypted=False), upload_options("x.txt", 1), BytesReader(b"x")
        )

    assert fake_dracoon.requests_to("POST", UPLOAD_SHARE_PATH) == []


@pytest.mark.asyncio
async def test_invalid_chunk_size_is_rejected_before_any_request(dracoon, fake_dracoon):
    with pytest.raises(InvalidChunkSizeError):
        await dracoon.public.upload(
            ACCESS_KEY,
            PublicUploadShare(is_encrypted=False),
            upload_options("x.txt", 1),
            BytesReader(b"x"),
            chunk_size=-5,
        )

    assert fake_dracoon.requests == []


@pytest.mark.asyncio
async def test_finalize_error_is_raised(dracoon, fake_dracoon):
    fake_dracoon.add_s3_upload_routes()
    fake_dracoon.add_s3_part_route(1)
    fake_dracoon.add_route(
        "PUT", S3_COMPLETE_PATH, json_response(409, {"code": 409, "message": "File already exists", "errorCode": -40010})
    )

    with pytest.raises(DracoonAPIError) as exc_info:
        await dracoon.public.upload(
            ACCESS_KEY, PublicUploadShare(is_encrypted=False), upload_options("x.txt", 1), BytesReader(b"x")
        )

    assert exc_info.value.is_conflict()
    assert exc_info.value.code == -40010


@pytest.mark.asyncio
async def test_upload_error_status_is_raised(dracoon, fake_dracoon):
    fake_dracoon.add_s3_upload_routes()
    fake_dracoon.add_s3_part_route(1)
    fake_dracoon.add_route(
        "GET",
        UPLOAD_PATH,
        json_response(200, {"status": "error", "errorDetails": {"code": 507, "message": "Quota exceeded"}}),
    )

    with pytest.raises(DracoonAPIError) as exc_info:
        await dracoon.public.upload(
            ACCESS_KEY, PublicUploadShare(is_encrypted=False), upload_options("x.txt", 1), BytesReader(b"x")
        )

    assert exc_info.value.status_code == 507
    assert "Quota exceeded" in str(exc_info.value)


@pytest.mark.asyncio
async def test_encrypted_upload_with_two_recipients(dracoon, fake_dracoon, recipient_keypairs):
    fake_dracoon.add_s3_upload_routes(file_name="secret.txt")
    fake_dracoon.add_s3_part_route(1)
    fake_dracoon.add_s3_part_route(2)
    data = b"top secret content, split into two parts"

    file_name = await dracoon.public.upload(
        ACCESS_KEY,
        encrypted_share(recipient_keypairs),
        upload_options("secret.txt", len(data)),
        BytesReader(data),
        chunk_size=32,
    )

    assert file_name == "secret.txt"
    ciphertext = b"".join(r.content for r in fake_dracoon.s3_part_requests())
    assert len(ciphertext) == len(data)
    assert ciphertext != data

    (complete_request,) = fake_dracoon.requests_to("PUT", S3_COMPLETE_PATH)
    user_file_keys = json_of(complete_request)["userFileKeyList"]
    assert sorted(ufk["userId"] for ufk in user_file_keys) == [7, 9]

    plain_keys = []
    for user_file_key in user_file_keys:
        keypair = recipient_keypairs[user_file_key["userId"]]
        private_key = decrypt_private_key(keypair.private_key_container, KEYPAIR_PASSWORD)
        file_key = FileKey(**user_file_key["fileKey"])
        assert file_key.version == "A"
        plain_keys.append(decrypt_file_key(file_key, private_key))

    assert plain_keys[0].key == plain_keys[1].key

    decrypter = FileDecrypter(plain_keys[0])
    decrypter.update(ciphertext)
    assert decrypter.finalize() == data


@pytest.mark.asyncio
async def test_encrypted_share_without_recipients_fails(dracoon, fake_dracoon):
    fake_dracoon.add_s3_upload_routes()

    with pytest.raises(MissingEncryptionSecretError):
        await dracoon.public.upload(
            ACCESS_KEY, PublicUploadShare(is_encrypted=True), upload_options("x.txt", 1), BytesReader(b"x")
        )

    assert fake_dracoon.requests_to("POST", UPLOAD_SHARE_PATH) == []


def share_with_broken_recipient(keypairs: dict) -> PublicUploadShare:
    share = encrypted_share(keypairs)
    broken = share.user_user_public_key_list.items[0].model_copy(deep=True)
    broken.id = 13
    broken.public_key_container.public_key = "not a pem key"
    share.user_user_public_key_list.items.append(broken)
    return share


@pytest.mark.asyncio
async def test_recipient_key_wrap_failure_raises_by_default(dracoon, fake_dracoon, recipient_keypairs):
    fake_dracoon.add_s3_upload_routes()

    with pytest.raises(DracoonCryptoError):
        await dracoon.public.upload(
            ACCESS_KEY,
            share_with_broken_recipient(recipient_keypairs),
            upload_options("x.txt", 3),
            BytesReader(b"abc"),
        )

    assert fake_dracoon.requests_to("POST", UPLOAD_SHARE_PATH) == []


@pytest.mark.asyncio
async def test_recipient_key_wrap_failure_can_be_skipped(dracoon, fake_dracoon, recipient_keypairs):
    fake_dracoon.add_s3_upload_routes()
    fake_dracoon.add_s3_part_route(1)

    await dracoon.public.upload(
        ACCESS_KEY,
        share_with_broken_recipient(recipient_keypairs),
        upload_options("x.txt", 3),
        BytesReader(b"abc"),
        skip_invalid_recipient_keys=True,
    )

    (complete_request,) = fake_dracoon.requests_to("PUT", S3_COMPLETE_PATH)
    user_ids = sorted(ufk["userId"] for ufk in json_of(complete_request)["userFileKeyList"])
    assert user_ids == [7, 9]


@pytest.mark.asyncio
async def test_public_endpoint_works_on_connected_session(fake_dracoon):
    fake_dracoon.add_route("POST", TOKEN_PATH, token_response())
    fake_dracoon.add_route("GET", SYSTEM_INFO_PATH, json_response(200, {"useS3Storage": False}))
    connected = await build_session(fake_dracoon).connect(PasswordFlow("user", SecretStr("pass")))

    system_info = await connected.public.get_system_info()

    assert system_info.use_s3_storage is False
    (request,) = fake_dracoon.requests_to("GET", SYSTEM_INFO_PATH)
    assert "Authorization" not in request.headers


@pytest.mark.asyncio
async def test_presigned_url_list_without_requested_part_fails(dracoon, fake_dracoon):
    fake_dracoon.add_s3_upload_routes()
    fake_dracoon.add_route("POST", S3_URLS_PATH, lambda request: httpx.Response(200, json={"urls": []}))

    with pytest.raises(DracoonAPIError):
        await dracoon.public.upload(
            ACCESS_KEY, PublicUploadShare(is_encrypted=False), upload_options("x.txt", 1), BytesReader(b"x")
        )


@pytest.mark.asyncio
async def test_timestamps_are_sent_with_the_upload_channel(dracoon, fake_dracoon):
    fake_dracoon.add_s3_upload_routes()
    fake_dracoon.add_s3_part_route(1)
    options = UploadOptions(
        file_meta=FileMeta(name="x.txt", size=1),
        timestamp_creation=datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc),
        timestamp_modification=datetime(2024, 5, 2, 8, 30, tzinfo=timezone.utc),
    )

    await dracoon.public.upload(ACCESS_KEY, PublicUploadShare(is_encrypted=False), options, BytesReader(b"x"))

    (channel_request,) = fake_dracoon.requests_to("POST", UPLOAD_SHARE_PATH)
    body = json_of(channel_request)
    assert body["timestampCreation"] == "2024-05-01T12:00:00Z"
    assert body["timestampModification"] == "2024-05-02T08:30:00Z"
