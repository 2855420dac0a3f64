"""
Process configuration read from the environment.

Runtime policy values (demo mode, eligibility constants) live in the
``system_config`` table instead, see ``fingerprint_attendance.policy``.
"""

import os
from pathlib import Path

# ============== Configuration ==============
DATABASE_URL = os.environ.get("DATABASE_URL", f"sqlite:///{Path.cwd() / 'attendance.db'}")
SQL_ECHO = os.environ.get("SQL_ECHO", "false").lower() in ("true", "1", "yes", "on")

UPLOAD_DIR = Path(os.environ.get("UPLOAD_DIR", "uploads/students"))
UPLOAD_URL_PREFIX = "/uploads/students"
MAX_UPLOAD_BYTES = int(os.environ.get("MAX_UPLOAD_BYTES", str(5 * 1024 * 1024)))

# Seeds the demo_mode row of system_config on first start
DEMO_MODE = os.environ.get("DEMO_MODE", "false").lower() in ("true", "1", "yes", "on")

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

HOST = os.environ.get("HOST", "0.0.0.0")
PORT = int(os.environ.get("PORT", "8000"))
# ==========================================
