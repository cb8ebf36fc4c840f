"""Worker for the separation upload pipeline.

Polls the separation task queue and runs the upload workflow together
with its activities. The queue name comes from TEMPORAL_TASK_QUEUE and
can be overridden with --queue.
"""

import argparse
import asyncio
import sys
from pathlib import Path

from temporalio.worker import Worker

# Add repo root to path
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from config import get_settings
from core.observability.logging import configure_logging, get_logger
from separation_engine.db import init_db
from reports.db import init_reports_db
from temporal_client import get_temporal_client
from workflows.ping_workflow import PingWorkflow
from workflows.separation_workflow import SeparationUploadWorkflow
from activities.separation import apply_sheet, record_separation_audit


logger = get_logger(__name__)

WORKFLOWS = [PingWorkflow, SeparationUploadWorkflow]

ACTIVITIES = [
    apply_sheet,
    record_separation_audit,
]


async def run_worker(queue: str = None):
    """Start worker listening on the separation task queue.

    Args:
        queue: Task queue to poll (defaults to TEMPORAL_TASK_QUEUE)

    Raises:
        Exception: If connection to Temporal fails
    """
    settings = get_settings()
    task_queue = queue or settings.temporal_task_queue
    client = None

    init_db(settings.db_path)
    init_reports_db(settings.db_path)

    try:
        client = await get_temporal_client()
        logger.info(f"Connected to Temporal: {client.namespace}")

        worker = Worker(
            client,
            task_queue=task_queue,
            workflows=WORKFLOWS,
            activities=ACTIVITIES,
        )

        logger.info(
            f"Worker created for queue '{task_queue}'",
            extra_fields={"workflows": len(WORKFLOWS), "activities": len(ACTIVITIES)},
        )
        logger.info("Worker running... (Ctrl+C to stop)")
        await worker.run()

    except KeyboardInterrupt:
        logger.info("Worker interrupted by user")
    except Exception as e:
        logger.error(f"Worker error: {e}", exc_info=True)
        raise


def main():
    """Entry point for worker with CLI args."""
    settings = get_settings()
    configure_logging()

    parser = argparse.ArgumentParser(description="Separation Temporal Worker")
    parser.add_argument(
        "--queue", "-q",
        default=settings.temporal_task_queue,
        help=f"Task queue to poll (default: {settings.temporal_task_queue})"
    )

    args = parser.parse_args()
    asyncio.run(run_worker(queue=args.queue))


if __name__ == "__main__":
    main()
