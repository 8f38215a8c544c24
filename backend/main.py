#!/usr/bin/env python3
"""
shipwatch - container image updater

Watches the local container runtime for out-of-date images and replaces
the affected containers in dependency order. Runs update cycles on a
schedule and, optionally, on demand through an authenticated HTTP trigger.
"""

import asyncio
import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from api import metrics_routes, update_routes
from config.settings import AppConfig, HealthCheckFilter, setup_logging
from notifications import ReportNotifier
from runtime.docker_client import DockerRuntimeClient
from updates.cleanup import check_for_multiple_instances
from updates.errors import UpdateError
from updates.scheduler import UpdateScheduler
from updates.session import check_for_sanity
from updates.types import CPUCopyMode, HeadFailureWarning
from utils.async_docker import async_docker_call

setup_logging()
logger = logging.getLogger(__name__)


# ==================== Lifecycle ====================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle"""
    # Validate configuration early to fail fast on misconfiguration
    AppConfig.validate()

    logger.info("Starting shipwatch...")

    # Reapply health check filter to uvicorn access logger (must be done after uvicorn starts)
    uvicorn_access = logging.getLogger("uvicorn.access")
    uvicorn_access.addFilter(HealthCheckFilter())

    def _handle_task_exception(task: asyncio.Task):
        """Handle exceptions from background tasks"""
        try:
            task.result()
        except asyncio.CancelledError:
            pass  # Normal shutdown
        except Exception as e:
            logger.error(f"Background task failed: {e}", exc_info=True)

    runtime = DockerRuntimeClient.from_env(
        AppConfig.DOCKER_HOST,
        include_stopped=AppConfig.INCLUDE_STOPPED,
        include_restarting=AppConfig.INCLUDE_RESTARTING,
        cpu_copy_mode=CPUCopyMode(AppConfig.CPU_COPY_MODE),
        warn_on_head_failure=HeadFailureWarning(AppConfig.WARN_ON_HEAD_FAILURE),
    )
    params = AppConfig.build_update_params()
    logger.info(params.filter_description)

    # Containers with dependency cycles or colliding identifiers can never be updated
    containers = await runtime.list_containers(params.filter)
    check_for_sanity(containers, AppConfig.ROLLING_RESTART)

    try:
        await check_for_multiple_instances(runtime, AppConfig.CLEANUP, AppConfig.SCOPE)
    except UpdateError as e:
        logger.error(f"Failed to remove other updater instances: {e}")

    notifier = None
    if AppConfig.NOTIFICATION_URLS:
        notifier = ReportNotifier(AppConfig.NOTIFICATION_URLS, AppConfig.NOTIFICATION_TITLE_TAG)
        logger.info(f"Sending update reports to {len(notifier.targets)} notification targets")

    scheduler = UpdateScheduler(
        runtime,
        params,
        poll_interval=AppConfig.POLL_INTERVAL,
        run_once=AppConfig.RUN_ONCE,
        notifier=notifier,
    )
    app.state.scheduler = scheduler
    app.state.api_token = AppConfig.HTTP_API_TOKEN
    task = scheduler.start()
    task.add_done_callback(_handle_task_exception)
    logger.info("Update scheduler started")

    yield

    logger.info("Shutting down shipwatch...")
    await scheduler.stop()
    if notifier is not None:
        await notifier.close()
    await async_docker_call(runtime.client.close)
    logger.info("shipwatch shutdown complete")


# ==================== FastAPI Application ====================

app = FastAPI(
    title="shipwatch API",
    version="1.0.0",
    lifespan=lifespan
)

if AppConfig.HTTP_API_UPDATE:
    app.include_router(update_routes.router)

if AppConfig.HTTP_API_METRICS:
    app.include_router(metrics_routes.router)


@app.get("/health")
async def health_check():
    """Health check endpoint for Docker health checks - no authentication required"""
    return {"status": "ok"}


if __name__ == "__main__":
    uvicorn.run(app, host=AppConfig.HOST, port=AppConfig.PORT)
