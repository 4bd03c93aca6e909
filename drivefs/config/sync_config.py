# drivefs/config/sync_config.py

MAX_RETRIES = 3
BASE_BACKOFF_SECONDS = 2
UPLOAD_WORKERS = 4

# Single-request uploads above this size are rejected by the Graph API
SIMPLE_UPLOAD_LIMIT = 4 * 1024 * 1024
