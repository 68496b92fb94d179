"""Centralized path definitions for campmail.

A single source of truth for the files the CLI and logging layers touch.
Set CAMPMAIL_HOME to relocate everything.
"""

import os
from pathlib import Path

# Base application directory
CAMPMAIL_DIR = Path(os.environ.get("CAMPMAIL_HOME", Path.home() / ".campmail"))

# Subdirectories
LOGS_DIR = CAMPMAIL_DIR / "logs"

# Specific files
CONFIG_PATH = CAMPMAIL_DIR / "config.json"
