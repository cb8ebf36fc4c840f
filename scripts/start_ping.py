"""Check that a separation worker is polling the task queue.

Starts a PingWorkflow on the configured task queue and prints its result.
"""

import asyncio
import sys
from pathlib import Path

# Add repo root to path
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from config import get_settings
from core.observability.logging import configure_logging, get_logger
from temporal_client import get_temporal_client
from workflows.ping_workflow import PingWorkflow

logger = get_logger(__name__)


async def start_ping_workflow() -> str:
    """Run PingWorkflow and wait for its result ("ok")."""
    settings = get_settings()
    client = await get_temporal_client()
    logger.info(f"Connected to Temporal: {client.namespace}")

    handle = await client.start_workflow(
        PingWorkflow.run,
        task_queue=settings.temporal_task_queue,
        id=f"ping-{int(asyncio.get_event_loop().time() * 1000)}",
    )
    logger.info(f"Workflow started: {handle.id} on '{settings.temporal_task_queue}'")
    return await handle.result()


def main():
    configure_logging()
    try:
        print(asyncio.run(start_ping_workflow()))
        return 0
    except Exception as e:
        logger.error(f"Ping failed: {e}", exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
