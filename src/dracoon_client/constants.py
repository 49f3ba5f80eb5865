"""
Constants that the client and the DRACOON API need to agree on.
"""

ONE_MiB = 1024 * 1024
ONE_GiB = 1024 * ONE_MiB

DRACOON_API_PREFIX = "api/v4"

# OAuth2 routes live outside of the API prefix
DRACOON_TOKEN_URL = "oauth/token"
DRACOON_TOKEN_REVOKE_URL = "oauth/revoke"
DRACOON_AUTHORIZE_URL = "oauth/authorize"
DRACOON_REDIRECT_URL = "oauth/callback"

TOKEN_TYPE_HINT_ACCESS_TOKEN = "access_token"
TOKEN_TYPE_HINT_REFRESH_TOKEN = "refresh_token"

PUBLIC_BASE = "public"
PUBLIC_SHARES_BASE = "shares"
PUBLIC_UPLOAD_SHARES = "uploads"
PUBLIC_SYSTEM_INFO = "system/info"
FILES_S3_URLS = "s3_urls"
FILES_S3_COMPLETE = "s3"
USER_ACCOUNT_KEYPAIR = "user/account/keypair"

# Size of each part sent to a presigned URL
CHUNK_SIZE = 32 * ONE_MiB

# S3 limits a single part to 5 GiB, part numbers are sent as unsigned 32 bit integers.
MAX_S3_PART_SIZE = 5 * ONE_GiB
MAX_PART_NUMBER = 2**32 - 1

# Polling of the upload status after finalizing (milliseconds / seconds)
POLLING_START_DELAY = 300
POLLING_MAX_DELAY = 30_000
POLLING_TIMEOUT_SECONDS = 900

# Retry policy bounds (delays in milliseconds).
# Values passed to the builder are clamped into these ranges.
DEFAULT_MAX_RETRIES = 5
MIN_MAX_RETRIES = 1
MAX_MAX_RETRIES = 10

DEFAULT_MIN_RETRY_DELAY = 600
MIN_MIN_RETRY_DELAY = 100
MAX_MIN_RETRY_DELAY = 2_000

DEFAULT_MAX_RETRY_DELAY = 20_000
MIN_MAX_RETRY_DELAY = 1_000
MAX_MAX_RETRY_DELAY = 60_000

HTTP_TIMEOUT_SECONDS = 30.0

APP_NAME = "dracoon-client"
