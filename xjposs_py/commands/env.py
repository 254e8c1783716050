import os
from pathlib import Path

# Local data directory
DATA_DIR = Path(os.getenv("XJPOSS_DATA_DIR", "~/.xjposs-py")).expanduser()

# Auth data path
AUTH_DATA_PATH = DATA_DIR / "auth.pk"

# Logging path
LOG_PATH = DATA_DIR / "running.log"

# Logging level
LOG_LEVEL = os.getenv("LOG_LEVEL", "CRITICAL")

# Configuration path
CONFIG_PATH = DATA_DIR / "config.toml"
