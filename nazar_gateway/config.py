import os

# --- Configuration ---
SERVICE_NAME = "nazar-gateway"
SERVICE_VERSION = "1.0.0"

# The database file path.
# This is a relative path by default, so it will be created in the current
# working directory. It can be overridden with the NAZAR_DB_PATH environment variable.
DATABASE_FILE = os.getenv('NAZAR_DB_PATH', 'nazar_events.db')

# 'sqlite' persists events in DATABASE_FILE, 'memory' keeps them in-process only.
STORE_BACKEND = os.getenv('NAZAR_STORE_BACKEND', 'sqlite')

SERVER_HOST = os.getenv('NAZAR_HOST', "0.0.0.0")
SERVER_PORT = int(os.getenv('NAZAR_PORT', '3000'))
MAX_REQUEST_BYTES = 10 * 1024 * 1024  # 10MB request bodies
ENABLE_RESET_ENDPOINT = os.getenv('NAZAR_ENABLE_RESET', '0') == '1'
HEARTBEAT_INTERVAL_SECONDS = 60

# --- Database Concurrency Configuration ---
DB_THREAD_POOL_SIZE = 10  # One worker per concurrent sub-aggregate plus headroom for writes
DB_CONNECTION_TIMEOUT = 30.0  # seconds
DB_MAX_RETRIES = 3  # Number of retry attempts for locked database
DB_RETRY_BASE_DELAY = 0.5  # Base delay between retries (seconds)
DB_RETRY_MAX_DELAY = 5.0  # Maximum delay between retries (seconds)

# --- Broker Hand-off ---
# Events are POSTed to BROKER_URL as {topic, key, value, timestamp}.
# Leave empty to disable publishing entirely.
BROKER_URL = os.getenv('NAZAR_BROKER_URL', '')
BROKER_TOPIC = os.getenv('NAZAR_BROKER_TOPIC', 'file-changes')
BROKER_CLIENT_ID = os.getenv('NAZAR_BROKER_CLIENT_ID', SERVICE_NAME)
BROKER_TIMEOUT_SECONDS = 5

# --- Dashboard Windows ---
TOP_N_LIMIT = 10  # Rows kept for top extensions, directories and clients
HOURLY_WINDOW_HOURS = 24
DAILY_WINDOW_DAYS = 7

# --- Sample Data ---
SAMPLE_MAC_ADDRESSES = [
    '00:14:22:01:23:45',
    '00:15:5D:FF:FF:FF',
    '08:00:27:12:34:56',
    '52:54:00:12:34:56',
    '02:42:AC:11:00:02',
    '00:0C:29:AB:CD:EF',
]
