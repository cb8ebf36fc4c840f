"""Workflow definitions module."""

from workflows.ping_workflow import PingWorkflow
from workflows.separation_workflow import (
    SeparationUploadWorkflow,
    SeparationUploadInput,
    SeparationUploadOutput,
)

__all__ = [
    "PingWorkflow",
    "SeparationUploadWorkflow",
    "SeparationUploadInput",
    "SeparationUploadOutput",
]
