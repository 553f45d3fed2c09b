"""Temporal worker process for validation sessions.

Started with ``python -m rto_validator.temporal.worker``. It connects to
Temporal, registers every discovered workflow and activity on its task
queue, relays committed outbox events, and exposes a small liveness
endpoint for the container orchestrator.
"""

import asyncio
import os

import uvicorn
from fastapi import FastAPI
from temporalio.client import Client
from temporalio.worker import Worker
from temporalio.worker.workflow_sandbox import SandboxedWorkflowRunner, SandboxRestrictions

from rto_validator.core.config import settings
from rto_validator.core.database import async_session_maker
from rto_validator.core.temporal_client import TemporalPublisher
from rto_validator.services.outbox_dispatcher import OutboxDispatcher
from rto_validator.temporal.core.activity_registry import ActivityRegistry
from rto_validator.temporal.core.constants import DEFAULT_TASK_QUEUE
from rto_validator.temporal.core.discovery import discover_all
from rto_validator.temporal.core.workflow_registry import WorkflowRegistry
from rto_validator.utils.logging import get_logger

logger = get_logger(__name__)

liveness_app = FastAPI(title="rto-validator worker")


@liveness_app.get("/health")
async def liveness():
    return {"status": "ok", "service": "rto-validator-worker"}


async def serve_liveness() -> None:
    port = int(os.getenv("WORKER_HEALTH_PORT", "8001"))
    logger.info(f"Worker liveness endpoint listening on :{port}")
    server = uvicorn.Server(
        uvicorn.Config(liveness_app, host=settings.host, port=port, log_level="warning")
    )
    await server.serve()


async def connect_temporal(attempts: int = 5, backoff_seconds: float = 5.0) -> Client:
    """Connect to Temporal, waiting for the frontend to come up."""
    address = settings.temporal.address
    for attempt in range(1, attempts + 1):
        logger.info(f"Connecting to Temporal at {address} ({attempt}/{attempts})")
        try:
            return await Client.connect(address, namespace=settings.temporal.namespace)
        except Exception as e:
            if attempt == attempts:
                logger.error(f"Temporal unreachable at {address}: {e}")
                raise
            logger.warning(f"Temporal not ready ({e}); next attempt in {backoff_seconds}s")
            await asyncio.sleep(backoff_seconds)


def group_workflows_by_queue() -> dict:
    queues = {}
    for name, metadata in WorkflowRegistry.get_all_workflows().items():
        queue = metadata.task_queue or DEFAULT_TASK_QUEUE
        queues.setdefault(queue, []).append(metadata.workflow_class)
        logger.debug(f"{name} -> {queue}")
    return queues


async def run_workers(client: Client):
    discover_all()

    activities = list(ActivityRegistry.get_all_activities().values())
    queues = group_workflows_by_queue()
    logger.info(
        f"Discovered {sum(len(w) for w in queues.values())} workflows "
        f"and {len(activities)} activities"
    )

    runners = [
        Worker(
            client,
            task_queue=queue,
            workflows=workflows,
            activities=activities,
            max_concurrent_activities=settings.validation.max_concurrency * 2,
            workflow_runner=SandboxedWorkflowRunner(
                restrictions=SandboxRestrictions.default.with_passthrough_all_modules()
            ),
        ).run()
        for queue, workflows in queues.items()
    ]

    logger.info(f"Polling task queues: {sorted(queues)}")
    await asyncio.gather(*runners)


async def run_outbox_dispatcher(client: Client):
    dispatcher = OutboxDispatcher(
        async_session_maker,
        TemporalPublisher(client),
        batch_size=settings.outbox.batch_size,
        max_attempts=settings.outbox.max_attempts,
    )
    await dispatcher.run_forever(poll_interval=settings.outbox.poll_interval_seconds)


async def main():
    client = await connect_temporal()
    await asyncio.gather(
        serve_liveness(),
        run_workers(client),
        run_outbox_dispatcher(client),
    )


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Workers stopped by user")
    except Exception as e:
        logger.error(f"Worker failed: {e}", exc_info=True)
        raise
