"""Configuration module for the GCE identity store.

This module provides centralized configuration management, including directory
paths, database settings, credential hashing cost, identifier format and
legacy cache behaviour. All configuration values can be overridden via
environment variables.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# --- Directory Configuration ---

# Root directory of the project
ROOT_DIR = Path(__file__).parent.parent.resolve()

# Data directory name
DATA_DIR_NAME = os.getenv("DATA_DIR_NAME", "data")
DATA_DIR = ROOT_DIR / DATA_DIR_NAME

# --- Database Configuration ---

# Async SQLAlchemy URL. Every partition, the email claims, transfer intents
# and the audit tables live behind this single URL.
DATABASE_URL: str = os.getenv(
    "DATABASE_URL", f"sqlite+aiosqlite:///{DATA_DIR}/gce_identity.db"
)

# Echo SQL statements (set to "true" for debugging)
DATABASE_ECHO: bool = os.getenv("DATABASE_ECHO", "false").lower() == "true"

# --- Identifier Configuration ---

# Organizational tag at the front of every identifier, e.g. GCE2025-ST-...
ORG_TAG: str = os.getenv("ORG_TAG", "GCE2025")

# --- Credential Configuration ---

# Bcrypt cost factor. Fixed so hashing time does not depend on input.
BCRYPT_ROUNDS: int = int(os.getenv("BCRYPT_ROUNDS", "12"))

# Default security question for students who registered without choosing one
DEFAULT_SECURITY_QUESTION: str = "What is your favorite color?"

# --- Legacy Cache Configuration ---

# Maximum age of a cached identity before it is treated as a miss
LEGACY_CACHE_TTL_SECONDS: float = float(os.getenv("LEGACY_CACHE_TTL_SECONDS", "300"))

# Populate the legacy cache from the fixed seed set at process start
LEGACY_CACHE_SEED_ENABLED: bool = (
    os.getenv("LEGACY_CACHE_SEED_ENABLED", "true").lower() == "true"
)

# --- Transfer Configuration ---

# Pending transfer intents older than this are considered abandoned
TRANSFER_PENDING_TIMEOUT_SECONDS: int = int(
    os.getenv("TRANSFER_PENDING_TIMEOUT_SECONDS", "900")
)

# --- Logging Configuration ---

LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

# "text" or "json"
LOG_FORMAT: str = os.getenv("LOG_FORMAT", "text")

# Logger that receives audit-trail failures for operational alerting
AUDIT_ALERT_LOGGER: str = os.getenv("AUDIT_ALERT_LOGGER", "gce_identity.alerts")

# --- Statistics Configuration ---

# Region used for accounts that did not declare one
DEFAULT_REGION: str = "National"
