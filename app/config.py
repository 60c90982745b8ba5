import os
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# Application
APP_NAME = os.getenv("APP_NAME", "CodeArena")
APP_VERSION = os.getenv("APP_VERSION", "1.0.0")
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")
DEBUG = os.getenv("DEBUG", "True").lower() == "true"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# MongoDB
MONGODB_URL = os.getenv("MONGODB_URL", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "codearena")
# Upper bound for server selection, connect and socket operations
MONGODB_TIMEOUT_MS = int(os.getenv("MONGODB_TIMEOUT_MS", "5000"))

# JWT (tokens are issued by the account service)
SECRET_KEY = os.getenv("SECRET_KEY", "change-me")
ALGORITHM = os.getenv("ALGORITHM", "HS256")

# Gamification
DEFAULT_XP_REWARD = int(os.getenv("DEFAULT_XP_REWARD", "50"))
# 1st, 2nd, 3rd place bonus
WINNER_XP_REWARDS = [
    int(value) for value in os.getenv("WINNER_XP_REWARDS", "200,100,50").split(",")
]

# Event bus
EVENT_WORKERS = int(os.getenv("EVENT_WORKERS", "4"))
EVENT_MAX_ATTEMPTS = int(os.getenv("EVENT_MAX_ATTEMPTS", "5"))
EVENT_RETRY_BASE_SECONDS = float(os.getenv("EVENT_RETRY_BASE_SECONDS", "1.0"))
EVENT_RETRY_MAX_SECONDS = float(os.getenv("EVENT_RETRY_MAX_SECONDS", "60.0"))
# Time stop() waits for queued deliveries before giving up on them
EVENT_DRAIN_TIMEOUT_SECONDS = float(os.getenv("EVENT_DRAIN_TIMEOUT_SECONDS", "10.0"))
# Failed deliveries kept in memory for inspection
EVENT_DEAD_LETTER_LIMIT = int(os.getenv("EVENT_DEAD_LETTER_LIMIT", "1000"))

# Scheduler
SCHEDULER_ENABLED = os.getenv("SCHEDULER_ENABLED", "True").lower() == "true"
SCHEDULER_INTERVAL_MINUTES = int(os.getenv("SCHEDULER_INTERVAL_MINUTES", "1"))
