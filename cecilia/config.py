import os

from dotenv import load_dotenv

load_dotenv()

PACKAGE_DIR = os.path.dirname(os.path.abspath(__file__))

# Logging
LOG_LEVEL = os.getenv("CECILIA_LOG_LEVEL", "INFO").upper()

# Automation agent (desktop control service reached through the connection manager)
AGENT_API_KEY = os.getenv("CECILIA_AGENT_API_KEY", "")
AGENT_CONNECT_DELAY = 1.0  # Simulated handshake latency (seconds)
AGENT_TASK_DURATION = 2.0  # Simulated work duration per task (seconds)
AGENT_FAILURE_RATE = 0.1  # Simulated transient failure probability (90% success)

# Task lifecycle
TASK_POLL_INTERVAL = 0.5  # Seconds between agent status polls
TASK_RETRY_DELAY = 1.0  # Base delay before the first retry
TASK_RETRY_BACKOFF = 2.0  # Multiplier applied per retry (exponential backoff)
TASK_RETRY_MAX_DELAY = 30.0  # Cap on a single retry delay
MAX_TASK_RETRIES = 5  # Hard cap, regardless of what the caller asks for
TASK_HISTORY_LIMIT = 50  # Finished tasks kept for get()/tasks()

# Screen capture (simulated agent renders placeholder images at this size)
SCREEN_WIDTH = 1280
SCREEN_HEIGHT = 800

# Personality
PERSONALITY = os.getenv("CECILIA_PERSONALITY", "cecilia")
HUMOR_PROBABILITY = 0.2  # Chance of a joke in the welcome message
IDLE_REMINDER_MINUTES = 30  # UI treats the user as idle after this long

# Application registry (static, loaded once at startup)
APP_REGISTRY_FILE = os.getenv("CECILIA_APP_REGISTRY", os.path.join(PACKAGE_DIR, "apps.yaml"))

# Dashboard state retention
STATE_MAX_TASKS = 20
STATE_MAX_CONVERSATION = 50
