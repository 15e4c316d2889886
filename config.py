# 📦 Configuration and constants

import os

# ---------------------------
# Environment
# ---------------------------
PORT = int(os.environ.get("PORT", 5000))
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

# 🗄 "memory" (single process / tests) or "redis" (shared between workers)
STORE_BACKEND = os.environ.get("STORE_BACKEND", "memory")
REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379/0")
REDIS_NAMESPACE = os.environ.get("REDIS_NAMESPACE", "imgbed:")

# 🏷 How stored files are named: "index", "default" or "origin"
UPLOAD_NAME_TYPE = os.environ.get("UPLOAD_NAME_TYPE", "index")

# ---------------------------
# Store keys
# ---------------------------
WEBHOOK_CONFIG_KEY = "manage@sysConfig@telegram@webhook"
UPLOAD_CONFIG_KEY = "manage@sysConfig@upload"
CHAT_DIRECTORY_PREFIX = "manage@telegram@directory@"
INDEX_OPERATION_PREFIX = "manage@index@operation@"

BATCH_STATE_PREFIX = "telegram@batchState@"
BATCH_MESSAGE_PREFIX = "telegram@batchMessage@"
BATCH_INDEX_PREFIX = "telegram@batchIndex@"
BATCH_ARRIVAL_PREFIX = "telegram@batchArrival@"
BATCH_NOTIFY_FAILED_PREFIX = "telegram@batchNotifyFailed@"

# Keys under these prefixes are never stored files
INTERNAL_KEY_PREFIXES = ("manage@", "telegram@")

# ---------------------------
# Media groups
# ---------------------------
# ⏱️ quiet period before a media group is considered complete
MEDIA_GROUP_QUIET_SECS = 5
# 🧠 batch state must outlive the arrival window of sibling files
BATCH_STATE_TTL = 60
# 📇 per-file membership records, read only by finalize
BATCH_INDEX_TTL = 3600

# ---------------------------
# Files
# ---------------------------
METADATA_CHANNEL = "TelegramNew"
DEFAULT_IMAGE_TYPE = "image/jpeg"
MAX_NAME_SUFFIX = 1000

# ---------------------------
# Result reasons
# ---------------------------
REASON_NO_MESSAGE = "no_message"
REASON_NOT_IMAGE = "not_image"
REASON_WEBHOOK_NOT_CONFIGURED = "webhook_not_configured"
REASON_WEBHOOK_DISABLED = "webhook_disabled"
REASON_CHANNEL_NOT_FOUND = "channel_not_found"
REASON_ALREADY_SAVED = "already_saved"
REASON_DATABASE_ERROR = "database_error"
REASON_INVALID_DIRECTORY = "invalid_directory"

DIRECTORY_COMMAND = "/dir"
