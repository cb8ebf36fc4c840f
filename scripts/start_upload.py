"""Start a sheet upload workflow on Temporal.

Reads a workbook, starts a SeparationUploadWorkflow for the given owner
and mode, and prints the result.
"""

import asyncio
import sys
import uuid
from dataclasses import asdict
from pathlib import Path

# Add repo root to path
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from api.services.workbook import read_workbook_grid
from config import get_settings
from core.observability.logging import get_logger
from separation_engine.models import Mode, SeparationType
from temporal_client import get_temporal_client
from workflows.separation_workflow import SeparationUploadWorkflow, SeparationUploadInput


logger = get_logger(__name__)


async def start_upload_workflow(
    owner_id: str,
    mode: str,
    workbook_path: str,
    separation_type: str = None,
    date: str = None,
    material_code: str = None,
):
    """Start an upload workflow and return its result.

    Args:
        owner_id: Separation owner
        mode: create, reinforcement, redistribution or melancia
        workbook_path: Path to the .xlsx/.xlsm sheet
        separation_type: SP, ES or RJ (create only)
        date: Separation date (create only)
        material_code: Melancia material (melancia only)

    Returns:
        SeparationUploadOutput from the workflow
    """
    path = Path(workbook_path)
    if not path.exists():
        raise FileNotFoundError(f"Workbook not found: {workbook_path}")

    grid = read_workbook_grid(path.read_bytes(), path.name)
    task_queue = get_settings().temporal_task_queue
    workflow_id = f"upload-{mode}-{owner_id}-{uuid.uuid4().hex[:8]}"

    client = await get_temporal_client()
    logger.info(f"Connected to Temporal: {client.namespace}")

    input_data = SeparationUploadInput(
        owner_id=owner_id,
        mode=mode,
        grid=grid,
        file_name=path.name,
        separation_type=separation_type,
        date=date,
        material_code=material_code,
    )

    logger.info(f"Starting SeparationUploadWorkflow on task queue '{task_queue}'...")
    handle = await client.start_workflow(
        SeparationUploadWorkflow.run,
        input_data,
        task_queue=task_queue,
        id=workflow_id,
    )

    logger.info(f"Workflow started: {handle.id}")
    return await handle.result()


def main():
    """Entry point."""
    import argparse

    parser = argparse.ArgumentParser(description="Start a sheet upload workflow")
    parser.add_argument("workbook", help="Path to the .xlsx/.xlsm sheet")
    parser.add_argument("--owner", required=True, help="Owner id (X-User-Id)")
    parser.add_argument(
        "--mode",
        choices=[m.value for m in Mode],
        default=Mode.REINFORCEMENT.value,
    )
    parser.add_argument("--type", dest="separation_type", choices=[t.value for t in SeparationType])
    parser.add_argument("--date", help="Separation date (create only)")
    parser.add_argument("--material", dest="material_code", help="Melancia material code")
    args = parser.parse_args()

    try:
        result = asyncio.run(start_upload_workflow(
            owner_id=args.owner,
            mode=args.mode,
            workbook_path=args.workbook,
            separation_type=args.separation_type,
            date=args.date,
            material_code=args.material_code,
        ))
        print("\n=== WORKFLOW RESULT ===")
        for key, value in asdict(result).items():
            print(f"  {key}: {value}")
        print("=======================\n")
        return 0 if result.status == "COMPLETED" else 1
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
