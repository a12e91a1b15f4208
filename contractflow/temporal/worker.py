"""Temporal worker running the contract workflow and its activities.

Run with ``python -m contractflow.temporal.worker``.
"""

import asyncio

from temporalio.client import Client
from temporalio.worker import Worker
from temporalio.worker.workflow_sandbox import SandboxedWorkflowRunner, SandboxRestrictions

from contractflow.core.config import settings
from contractflow.temporal.activities.contract_activities import CONTRACT_ACTIVITIES
from contractflow.temporal.workflows.process_contract import ProcessContractWorkflow
from contractflow.utils.logging import get_logger

logger = get_logger(__name__)


async def connect_with_retries(max_retries: int = 5, retry_delay: int = 5) -> Client:
    """Connect to Temporal, retrying while the server comes up."""
    for attempt in range(max_retries):
        try:
            logger.info(
                f"Connecting to Temporal server at {settings.temporal.target_host} "
                f"(Attempt {attempt + 1}/{max_retries})"
            )
            return await Client.connect(
                target_host=settings.temporal.target_host,
                namespace=settings.temporal.namespace,
            )
        except Exception as e:
            if attempt < max_retries - 1:
                logger.warning(f"Connection attempt {attempt + 1} failed: {e}. Retrying in {retry_delay}s...")
                await asyncio.sleep(retry_delay)
            else:
                logger.error(f"Failed to connect to Temporal server after {max_retries} attempts: {e}")
                raise
    raise RuntimeError("max_retries must be at least 1")


def build_worker(client: Client) -> Worker:
    return Worker(
        client,
        task_queue=settings.temporal.task_queue,
        workflows=[ProcessContractWorkflow],
        activities=CONTRACT_ACTIVITIES,
        max_concurrent_activities=10,
        max_concurrent_workflow_tasks=20,
        workflow_runner=SandboxedWorkflowRunner(
            restrictions=SandboxRestrictions.default.with_passthrough_all_modules()
        ),
    )


async def main():
    """Start the Temporal worker."""
    client = await connect_with_retries()
    worker = build_worker(client)

    logger.info(
        f"Worker polling queue '{settings.temporal.task_queue}' with "
        f"{len(CONTRACT_ACTIVITIES)} activities"
    )
    await worker.run()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Worker stopped by user")
    except Exception as e:
        logger.error(f"Worker failed: {e}", exc_info=True)
        raise
