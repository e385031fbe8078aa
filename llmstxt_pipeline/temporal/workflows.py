"""
Temporal workflow definition for a generation job.
"""

from dataclasses import dataclass
from datetime import timedelta

from temporalio import workflow
from temporalio.common import RetryPolicy

with workflow.unsafe.imports_passed_through():
    from llmstxt_pipeline.models import JobMessage
    from llmstxt_pipeline.temporal import JOB_WORKFLOW_NAME, RUN_JOB_ACTIVITY
    from llmstxt_pipeline.temporal.activities import JobActivityInput


@dataclass
class JobWorkflowInput:
    """
    Input for the job workflow.

    Retry settings travel with the input so the workflow stays
    deterministic when the worker's configuration changes.
    """

    message: JobMessage
    queue_name: str
    max_attempts: int
    backoff_delay: float
    backoff_coefficient: float
    lock_duration: float
    job_timeout: float = 6 * 60 * 60


def retry_policy_for(input: JobWorkflowInput) -> RetryPolicy:
    return RetryPolicy(
        initial_interval=timedelta(seconds=input.backoff_delay if input.backoff_delay > 0 else 1),
        backoff_coefficient=input.backoff_coefficient,
        maximum_attempts=input.max_attempts,
    )


@workflow.defn(name=JOB_WORKFLOW_NAME)
class GenerationJobWorkflow:
    @workflow.run
    async def run(self, input: JobWorkflowInput) -> None:
        workflow.logger.info(f"Job {workflow.info().workflow_id} started for {input.message.hostname}")
        await workflow.execute_activity(
            RUN_JOB_ACTIVITY,
            JobActivityInput(
                message=input.message,
                queue_name=input.queue_name,
                max_attempts=input.max_attempts,
                heartbeat_interval=max(input.lock_duration / 2, 1.0),
            ),
            start_to_close_timeout=timedelta(seconds=input.job_timeout),
            heartbeat_timeout=timedelta(seconds=input.lock_duration),
            retry_policy=retry_policy_for(input),
        )
