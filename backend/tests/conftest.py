# ruff: noqa: INP001
"""Pytest configuration shared across backend tests."""

import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# Import-time settings and engine creation must never reach real services.
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["RQ_REDIS_URL"] = "redis://localhost:6379/15"
os.environ["MAIL_API_URL"] = ""
os.environ["MAIL_SENDER"] = ""
