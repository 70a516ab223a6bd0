from __future__ import annotations

from datetime import datetime, timezone
from uuid import UUID

import structlog
from celery.schedules import crontab

from loyalty.db.repo.points_repo import PointsRepo
from loyalty.db.repo.reconciliation_runs_repo import ReconciliationRunsRepo
from loyalty.db.repo.wallets_repo import WalletsRepo
from loyalty.db.session import SessionLocal
from loyalty.points.ledger import PointsLedger
from loyalty.services.alerts import send_ops_alert
from loyalty.services.reconciliation import (
    WalletDrift,
    drift_details,
    find_wallet_drift,
    reconciliation_status,
)
from loyalty.workers.asyncio_runner import run_async_job
from loyalty.workers.celery_app import celery_app

logger = structlog.get_logger(__name__)
EXPIRY_BATCH_SIZE = 500
RECONCILIATION_PAGE_SIZE = 500


async def run_points_expiry_async(*, batch_size: int = EXPIRY_BATCH_SIZE) -> dict[str, int]:
    outcome = await PointsLedger().expire_points(batch_size=batch_size)
    result = {
        "expired_transactions": outcome.expired_transactions or 0,
        "expired_points": outcome.points_expired or 0,
    }
    if not outcome.success:
        await send_ops_alert(event="points_expiry_failed", payload=result)
        logger.error("points_expiry_task_failed", error_code=outcome.error_code, **result)
        return result

    logger.info("points_expiry_task_finished", **result)
    return result


async def _collect_wallet_drift() -> tuple[int, list[WalletDrift]]:
    wallets_checked = 0
    drifts: list[WalletDrift] = []
    after_user_id: UUID | None = None
    while True:
        async with SessionLocal() as session:
            wallets = await WalletsRepo.list_page(
                session,
                after_user_id=after_user_id,
                limit=RECONCILIATION_PAGE_SIZE,
            )
            if not wallets:
                break
            type_sums = await PointsRepo.sum_amounts_by_user_and_type(
                session,
                user_ids=[wallet.user_id for wallet in wallets],
            )

        wallets_checked += len(wallets)
        drifts.extend(
            find_wallet_drift(
                cached_balances={wallet.user_id: wallet.balance for wallet in wallets},
                type_sums_by_user=type_sums,
            )
        )
        if len(wallets) < RECONCILIATION_PAGE_SIZE:
            break
        after_user_id = wallets[-1].user_id
    return wallets_checked, drifts


async def run_points_reconciliation_async() -> dict[str, int | str]:
    started_at = datetime.now(timezone.utc)
    wallets_checked, drifts = await _collect_wallet_drift()
    diff_count = len(drifts)
    status = reconciliation_status(diff_count)

    async with SessionLocal.begin() as session:
        await ReconciliationRunsRepo.create(
            session,
            started_at=started_at,
            finished_at=datetime.now(timezone.utc),
            status=status,
            wallets_checked=wallets_checked,
            diff_count=diff_count,
            details=drift_details(drifts),
        )

    result: dict[str, int | str] = {
        "wallets_checked": wallets_checked,
        "diff_count": diff_count,
        "status": status,
    }
    if diff_count > 0:
        await send_ops_alert(
            event="points_reconciliation_diff_detected",
            payload={**result, **drift_details(drifts)},
        )
        logger.warning("points_reconciliation_diff_detected", **result)
    else:
        logger.info("points_reconciliation_finished", **result)
    return result


@celery_app.task(name="loyalty.workers.tasks.points_maintenance.run_points_expiry")
def run_points_expiry(batch_size: int = EXPIRY_BATCH_SIZE) -> dict[str, int]:
    return run_async_job(run_points_expiry_async(batch_size=batch_size))


@celery_app.task(name="loyalty.workers.tasks.points_maintenance.run_points_reconciliation")
def run_points_reconciliation() -> dict[str, int | str]:
    return run_async_job(run_points_reconciliation_async())


celery_app.conf.beat_schedule = celery_app.conf.beat_schedule or {}
celery_app.conf.beat_schedule.update(
    {
        "points-expiry-daily-0310-seoul": {
            "task": "loyalty.workers.tasks.points_maintenance.run_points_expiry",
            "schedule": crontab(hour=3, minute=10),
            "options": {"queue": "q_normal"},
        },
        "points-reconciliation-every-30-minutes": {
            "task": "loyalty.workers.tasks.points_maintenance.run_points_reconciliation",
            "schedule": 1800.0,
            "options": {"queue": "q_normal"},
        },
    }
)
