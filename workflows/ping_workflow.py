"""Connectivity check workflow for the separation worker."""

from temporalio import workflow


@workflow.defn
class PingWorkflow:
    """Returns "ok" once a worker picks it up."""

    @workflow.run
    async def run(self) -> str:
        return "ok"
