# drivefs/config/sync_states.py

SYNC_STATE_SYNCHRONIZED = "synced"
SYNC_STATE_PENDING_PUSH = "pending_push"
SYNC_STATE_UPLOADING = "uploading"
SYNC_STATE_ERROR = "error"
