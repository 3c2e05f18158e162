"""Shared constants for the deployment pipeline."""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Stage names
# ---------------------------------------------------------------------------
STAGE_RESOLVE_IMAGE = "resolve_image"
STAGE_START_DB = "start_db"
STAGE_WAIT_DB = "wait_db_healthy"
STAGE_START_APP_TIER = "start_app_tier"
STAGE_WAIT_APP = "wait_app_healthy"
STAGE_BACKUP_DB = "backup_db"
STAGE_MIGRATIONS = "run_migrations"
STAGE_FINAL_HEALTH = "final_health_check"

ALL_STAGES = [
    STAGE_RESOLVE_IMAGE,
    STAGE_START_DB,
    STAGE_WAIT_DB,
    STAGE_START_APP_TIER,
    STAGE_WAIT_APP,
    STAGE_BACKUP_DB,
    STAGE_MIGRATIONS,
    STAGE_FINAL_HEALTH,
]

# ---------------------------------------------------------------------------
# Service names (docker compose service keys on the host)
# ---------------------------------------------------------------------------
SERVICE_DB = "db"
SERVICE_CACHE = "redis"
SERVICE_APP = "app"
SERVICE_QUEUE = "queue"
SERVICE_SCHEDULER = "scheduler"

# ---------------------------------------------------------------------------
# Health gate defaults
# ---------------------------------------------------------------------------
DEFAULT_HEALTH_INTERVAL = 2.0
DEFAULT_DB_MAX_ATTEMPTS = 30
DEFAULT_APP_MAX_ATTEMPTS = 60
DEFAULT_HEALTH_PATH = "/up"
DEFAULT_APP_PORT = 8080

# ---------------------------------------------------------------------------
# Stack / remote defaults
# ---------------------------------------------------------------------------
DEFAULT_STOP_TIMEOUT = 30
DEFAULT_COMMAND_TIMEOUT = 600
DEFAULT_CONNECT_TIMEOUT = 10
SSH_TRANSPORT_EXIT_CODE = 255

# Environment variable the compose file reads the application image from.
IMAGE_ENV_VAR = "APP_IMAGE"

# ---------------------------------------------------------------------------
# Architecture aliases -> canonical docker architecture names
# ---------------------------------------------------------------------------
ARCH_ALIASES: dict[str, str] = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "x64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "armv8": "arm64",
    "armv7l": "arm",
    "armhf": "arm",
}

# ---------------------------------------------------------------------------
# Build defaults
# ---------------------------------------------------------------------------
DEFAULT_BUILD_TIMEOUT = 1800  # 30 minutes per attempt
DEFAULT_BUILD_RETRIES = 2
DEFAULT_HEARTBEAT_INTERVAL = 60
DEFAULT_PIPELINE_TIMEOUT = 1800

# ---------------------------------------------------------------------------
# Framework caches rebuilt after migrations
# ---------------------------------------------------------------------------
CACHE_COMMANDS = ["config:cache", "route:cache", "view:cache"]

# ---------------------------------------------------------------------------
# Secrets are replaced with this marker in every log line
# ---------------------------------------------------------------------------
REDACTED = "******"

# ---------------------------------------------------------------------------
# State persistence
# ---------------------------------------------------------------------------
STATE_DIR = ".deploy"
STATE_FILE = "DEPLOY_STATE.json"
