"""
Temporal-backed JobQueue.

Admission starts a workflow whose id is the job id. A second start for an id
whose workflow is still running attaches to the existing run instead of
creating a new one; once the previous run has closed, a new run is allowed.
"""

import logging
from typing import Iterable, List, Optional

from temporalio.api.common.v1 import WorkflowExecution
from temporalio.api.enums.v1 import PendingActivityState
from temporalio.api.workflowservice.v1 import DeleteWorkflowExecutionRequest
from temporalio.client import Client, WorkflowExecutionDescription, WorkflowExecutionStatus
from temporalio.common import WorkflowIDConflictPolicy, WorkflowIDReusePolicy
from temporalio.exceptions import WorkflowAlreadyStartedError
from temporalio.service import RPCError, RPCStatusCode

from llmstxt_pipeline.config import QueueConfig
from llmstxt_pipeline.jobs.base import JobHandler, JobQueue, JobState, is_removable
from llmstxt_pipeline.models import JobMessage
from llmstxt_pipeline.temporal import JOB_WORKFLOW_NAME
from llmstxt_pipeline.temporal.workflows import JobWorkflowInput

logger = logging.getLogger(__name__)

_CLOSED_AS_FAILED = (
    WorkflowExecutionStatus.FAILED,
    WorkflowExecutionStatus.TIMED_OUT,
)
_CLOSED_AS_REMOVED = (
    WorkflowExecutionStatus.TERMINATED,
    WorkflowExecutionStatus.CANCELED,
)


def workflow_input_for(message: JobMessage, config: QueueConfig) -> JobWorkflowInput:
    return JobWorkflowInput(
        message=message,
        queue_name=config.name,
        max_attempts=config.max_attempts,
        backoff_delay=config.backoff.delay,
        backoff_coefficient=2.0 if config.backoff.type == "exponential" else 1.0,
        lock_duration=config.lock_duration,
    )


def state_from_description(desc: WorkflowExecutionDescription) -> JobState:
    """Map a workflow description onto the queue's job states."""
    status = desc.status
    if status == WorkflowExecutionStatus.COMPLETED:
        return JobState.COMPLETED
    if status in _CLOSED_AS_FAILED:
        return JobState.FAILED
    if status != WorkflowExecutionStatus.RUNNING:
        return JobState.UNKNOWN

    pending = list(desc.raw_description.pending_activities)
    if not pending:
        return JobState.WAITING
    job_activity = pending[0]
    if job_activity.state == PendingActivityState.PENDING_ACTIVITY_STATE_STARTED:
        return JobState.ACTIVE
    if job_activity.attempt > 1:
        return JobState.DELAYED
    return JobState.WAITING


class TemporalJobQueue(JobQueue):
    def __init__(self, client: Client, config: QueueConfig):
        super().__init__(config)
        self.client = client

    async def enqueue(self, message: JobMessage, job_id: str) -> bool:
        state = await self.get_state(job_id)
        if state not in (JobState.UNKNOWN, JobState.COMPLETED, JobState.FAILED):
            logger.info(f"Job {job_id} is already {state.value}; enqueue ignored")
            return False

        try:
            await self.client.start_workflow(
                JOB_WORKFLOW_NAME,
                workflow_input_for(message, self.config),
                id=job_id,
                task_queue=self.name,
                id_reuse_policy=WorkflowIDReusePolicy.ALLOW_DUPLICATE,
                id_conflict_policy=WorkflowIDConflictPolicy.USE_EXISTING,
            )
        except WorkflowAlreadyStartedError:
            logger.info(f"Job {job_id} was started concurrently; enqueue ignored")
            return False
        logger.info(f"Enqueued job {job_id} on {self.name}")
        return True

    async def get_state(self, job_id: str) -> JobState:
        handle = self.client.get_workflow_handle(job_id)
        try:
            desc = await handle.describe()
        except RPCError as e:
            if e.status == RPCStatusCode.NOT_FOUND:
                return JobState.UNKNOWN
            raise
        return state_from_description(desc)

    async def remove(self, job_id: str, allowed_states: Iterable[JobState] = ()) -> bool:
        state = await self.get_state(job_id)
        if not is_removable(state, allowed_states):
            return False

        if state in (JobState.WAITING, JobState.DELAYED):
            await self.client.get_workflow_handle(job_id).terminate(reason=f"Removed from queue while {state.value}")
        else:
            await self.client.workflow_service.delete_workflow_execution(
                DeleteWorkflowExecutionRequest(
                    namespace=self.client.namespace,
                    workflow_execution=WorkflowExecution(workflow_id=job_id),
                )
            )
        logger.info(f"Removed job {job_id} ({state.value}) from {self.name}")
        return True

    async def position(self, job_id: str) -> Optional[int]:
        if await self.get_state(job_id) != JobState.WAITING:
            return None

        query = f'TaskQueue = "{self.name}" AND ExecutionStatus = "Running"'
        running = []
        async for execution in self.client.list_workflows(query):
            running.append(execution)
        running.sort(key=lambda execution: execution.start_time)

        ahead: List[str] = []
        for execution in running:
            if execution.id == job_id:
                return len(ahead) + 1
            if await self.get_state(execution.id) == JobState.WAITING:
                ahead.append(execution.id)
        return None

    def create_worker(self, handler: JobHandler):
        from llmstxt_pipeline.temporal.worker import TemporalJobWorker

        return TemporalJobWorker(self, handler)
