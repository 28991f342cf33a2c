"""
Shared constants used across the desk.
"""

# Storage keys
PHOTO_KEY_PREFIX = "photo_"
MUSIC_KEY_PREFIX = "music_"
NOTES_COLLECTION_KEY = "date_ideas_entries"
SELF_TEST_KEY_PREFIX = "sync_test_"

# Bucket layout
RECORDS_PREFIX = "records/"
BLOB_ROOT = "shared"
BLOB_KIND_PHOTOS = "photos"
BLOB_KIND_AUDIO = "audio"
BLOB_KIND_MEDIA = "media"

# Image limits
MAX_IMAGE_SIZE = 10 * 1024 * 1024  # 10MB, before compression
MIN_IMAGE_SIZE = 100  # bytes
MAX_PHOTO_FINAL_SIZE = 15 * 1024 * 1024  # absolute ceiling after compression

IMAGE_MIME_TYPES = [
    "image/jpeg", "image/jpg", "image/png", "image/gif", "image/webp"
]
IMAGE_EXTENSIONS = ["jpg", "jpeg", "png", "gif", "webp"]

UNSAFE_EXTENSIONS = [".exe", ".bat", ".cmd", ".scr", ".com"]

# Types a browser or OS reports when it cannot tell
GENERIC_MIME_TYPES = ["", "application/octet-stream"]

# Audio limits
MAX_AUDIO_SIZE = 15 * 1024 * 1024  # 15MB

AUDIO_MIME_TYPES = [
    "audio/mpeg", "audio/mp3", "audio/wav", "audio/ogg",
    "audio/aac", "audio/m4a", "audio/flac", "audio/x-m4a",
    "audio/mp4", "audio/x-aac", "audio/webm"
]
AUDIO_EXTENSIONS = ["mp3", "wav", "ogg", "aac", "m4a", "flac", "webm"]

# Compression settings
COMPRESS_SIZE_THRESHOLD = 2 * 1024 * 1024  # 2MB
COMPRESS_DIMENSION_THRESHOLD = 2560  # pixels
DEFAULT_MAX_WIDTH = 1920
DEFAULT_MAX_HEIGHT = 1080
DEFAULT_QUALITY = 0.8

# Notes
NOTE_MAX_LENGTH = 500
NOTE_PREVIEW_LENGTH = 100

# Gateway settings
INLINE_SIZE_THRESHOLD = 800_000  # bytes of serialized JSON kept inline in a record
LARGE_PAYLOAD_THRESHOLD = 500_000  # above this a document uses the long timeout
MAX_BLOB_SIZE = 15 * 1024 * 1024
DEFAULT_SMALL_TIMEOUT = 10  # seconds
DEFAULT_LARGE_TIMEOUT = 30  # seconds
DEFAULT_CONNECT_TIMEOUT = 3  # seconds, connectivity probe
PRESIGNED_URL_EXPIRY = 7 * 24 * 3600  # seconds

# Optimistic updates
MAX_SAVE_ATTEMPTS = 2
RETRY_BACKOFF_SECONDS = 2.0

# S3 Provider endpoints
CLOUDFLARE_R2_ENDPOINT_TEMPLATE = "https://{account_id}.r2.cloudflarestorage.com"
BACKBLAZE_B2_ENDPOINT_TEMPLATE = "https://s3.{region}.backblazeb2.com"
AWS_S3_ENDPOINT_TEMPLATE = "https://s3.{region}.amazonaws.com"

# Configuration paths
DEFAULT_CONFIG_DIR = "~/.config/homedesk"
CONFIG_FILENAME = "config.json"
IDENTITY_FILENAME = "user_id"
DEFAULT_LOCAL_STORE = "~/.local/share/homedesk"
