#!/usr/bin/env python3
"""One janitor pass for cron / external schedulers. From the project root: python3 scripts/cleanup_threat_data.py"""
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.append(str(ROOT))

from dotenv import load_dotenv  # noqa: E402

load_dotenv(ROOT / ".env")

from vaultguard.core.config import settings  # noqa: E402
from vaultguard.core.database import init_db  # noqa: E402
from vaultguard.logging import setup_logging  # noqa: E402
from vaultguard.services.janitor import cleanup_threat_data  # noqa: E402


def main() -> int:
    setup_logging(level=settings.log_level)
    init_db()
    cleanup_threat_data()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
