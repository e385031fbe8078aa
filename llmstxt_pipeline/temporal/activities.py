"""
Activity that runs the generation job handler inside a Temporal worker.
"""

import asyncio
from dataclasses import asdict, dataclass

from temporalio import activity
from temporalio.exceptions import ApplicationError

from llmstxt_pipeline.errors import FatalJobError
from llmstxt_pipeline.jobs.base import JobContext, JobEvent, JobHandler, QueueEvents
from llmstxt_pipeline.models import JobMessage, ProgressEvent
from llmstxt_pipeline.temporal import RUN_JOB_ACTIVITY


@dataclass
class JobActivityInput:
    """Input for the job activity."""

    message: JobMessage
    queue_name: str
    max_attempts: int
    heartbeat_interval: float = 15.0


class JobActivities:
    """
    Binds a job handler and a queue's event channel to the activity.

    The activity heartbeats every ``heartbeat_interval`` seconds while the
    handler runs; if the worker dies, the heartbeat timeout expires and
    Temporal hands the job to another worker.
    """

    def __init__(self, handler: JobHandler, events: QueueEvents):
        self.handler = handler
        self.events = events

    @activity.defn(name=RUN_JOB_ACTIVITY)
    async def run_job(self, input: JobActivityInput) -> None:
        info = activity.info()
        job_id = info.workflow_id

        async def report_progress(event: ProgressEvent) -> None:
            activity.heartbeat(asdict(event))
            await self.events.emit(
                JobEvent("progress", job_id, input.queue_name, info.attempt, input.max_attempts, progress=event)
            )

        ctx = JobContext(
            job_id=job_id,
            message=input.message,
            attempt=info.attempt,
            max_attempts=input.max_attempts,
            report_progress=report_progress,
        )

        activity.logger.info(f"Running job {job_id} (attempt {ctx.attempt}/{ctx.max_attempts})")
        await self.events.emit(JobEvent("active", job_id, input.queue_name, ctx.attempt, ctx.max_attempts))

        keep_alive = asyncio.create_task(self._keep_alive(input.heartbeat_interval))
        try:
            await self.handler(ctx)
        except FatalJobError as e:
            await self._emit_failed(ctx, input.queue_name, e, final=True)
            raise ApplicationError(str(e), type=type(e).__name__, non_retryable=True) from e
        except Exception as e:
            await self._emit_failed(ctx, input.queue_name, e, final=ctx.is_last_attempt)
            raise
        finally:
            keep_alive.cancel()

        await self.events.emit(
            JobEvent("completed", job_id, input.queue_name, ctx.attempt, ctx.max_attempts, final=True)
        )

    async def _emit_failed(self, ctx: JobContext, queue_name: str, error: Exception, final: bool) -> None:
        activity.logger.error(f"Job {ctx.job_id} attempt {ctx.attempt} failed: {error}")
        await self.events.emit(
            JobEvent(
                "failed",
                ctx.job_id,
                queue_name,
                ctx.attempt,
                ctx.max_attempts,
                error=str(error) or type(error).__name__,
                final=final,
            )
        )

    @staticmethod
    async def _keep_alive(interval: float) -> None:
        while True:
            activity.heartbeat()
            await asyncio.sleep(interval)
