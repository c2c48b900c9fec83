"""
One-shot commission header status sweep, suitable for cron

Usage:
    python scripts/refresh_commission_status.py
"""
import os
import sys
import logging

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.core.database import get_session_local, init_db  # noqa: E402
from app.services.commission_service import CommissionService  # noqa: E402

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("commission_status_sweep")


def main() -> int:
    init_db()
    db = get_session_local()()
    try:
        changed = CommissionService.refresh_statuses(db)
    except Exception as e:
        logger.error(f"Status sweep failed: {e}")
        return 1
    finally:
        db.close()

    print(f"RESULT: {len(changed)} header(s) updated")
    for header_id in changed:
        print(f"- header {header_id}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
