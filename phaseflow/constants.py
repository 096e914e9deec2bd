"""Default values shared across phaseflow components."""

DEFAULT_STORAGE_DIR = ".phaseflow"
DEFAULT_MAX_INSTANCES = 100
DEFAULT_MONITORING_INTERVAL = 30.0
DEFAULT_STALL_THRESHOLD = 2 * 60 * 60.0
DEFAULT_MAX_BACKUPS = 5

STATE_FILENAME = "state.json"
BACKUP_PREFIX = "state-backup-"
