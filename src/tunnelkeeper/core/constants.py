"""Default values shared across tunnelkeeper."""

from pathlib import Path

DEFAULT_DATA_DIR = Path.home() / ".tunnelkeeper"
DEFAULT_CONFIG_DIR = Path.home() / ".cloudflared"
DEFAULT_DAEMON_BINARY = "cloudflared"
DEFAULT_REGISTRY_URL = "https://api.cloudflare.com/client/v4"

STORE_FILENAME = "store.json"
TUNNELS_KEY = "tunnels"
CREDENTIALS_KEY = "registry.credentials"

# Lifecycle timings, in seconds.
STOP_GRACE_SECONDS = 1.5
KILL_TIMEOUT_SECONDS = 5.0
RESTART_DELAY_SECONDS = 2.0
SIMULATED_START_DELAY_SECONDS = 2.0
START_TIMEOUT_SECONDS = 60.0
REMOTE_CLEANUP_DELAY_SECONDS = 1.0
REQUEST_TIMEOUT_SECONDS = 30.0
VERSION_CHECK_TIMEOUT_SECONDS = 10.0

LOG_BUFFER_CAPACITY = 1000

CATCH_ALL_SERVICE = "http_status:404"
CONNECTED_MARKER = "registered tunnel connection"
VERSION_PREFIX = "cloudflared version "
TUNNEL_SECRET_BYTES = 32
CNAME_SUFFIX = "cfargotunnel.com"

ENV_PREFIX = "TUNNELKEEPER_"
