import logging

from apscheduler.schedulers.background import BackgroundScheduler

from studentpipe.config import Settings
from studentpipe.progress import ProgressRegistry
from studentpipe.tasks import OperationLauncher


logger = logging.getLogger(__name__)


def sweep_progress(registry: ProgressRegistry, launcher: OperationLauncher, retention_seconds: float) -> int:
    purged = registry.purge_finished(retention_seconds)
    pruned = launcher.prune_finished()
    logger.debug(
        "progress sweep finished",
        extra={"purged_entries": purged, "pruned_handles": pruned, "remaining": len(registry)},
    )
    return purged


def start_progress_sweeper(
    settings: Settings,
    registry: ProgressRegistry,
    launcher: OperationLauncher,
) -> BackgroundScheduler:
    scheduler = BackgroundScheduler(timezone="UTC")
    scheduler.add_job(
        sweep_progress,
        "interval",
        args=[registry, launcher, settings.progress_retention_seconds],
        minutes=settings.progress_sweep_minutes,
        id="progress_sweep",
        replace_existing=True,
    )
    scheduler.start()

    logger.info(
        "progress sweeper started",
        extra={
            "sweep_minutes": settings.progress_sweep_minutes,
            "retention_seconds": settings.progress_retention_seconds,
        },
    )
    return scheduler
