"""
Scheduled jobs, run by an external scheduler (cron, k8s CronJob):

    python -m timegate.jobs

Each job runs in its own transaction so a failure in one does not undo the other.
"""

import asyncio
import logging
from datetime import datetime, timezone

from timegate.core.approvals.service import run_auto_approval_sweep
from timegate.core.invitations.service import expire_stale_invitations
from timegate.db.session import get_session
from timegate.logging_config import configure_logging
from timegate.settings import get_settings

logger = logging.getLogger(__name__)


async def run_jobs(now: datetime | None = None) -> None:
    now = now or datetime.now(timezone.utc)
    try:
        async with get_session() as db:
            await run_auto_approval_sweep(db, now)
    except Exception:
        logger.exception("auto-approval sweep failed")

    try:
        async with get_session() as db:
            await expire_stale_invitations(db, now)
    except Exception:
        logger.exception("invitation expiry sweep failed")


def main() -> None:
    configure_logging(get_settings())
    asyncio.run(run_jobs())


if __name__ == "__main__":
    main()
