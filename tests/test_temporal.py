#!/usr/bin/env python3
"""
Tests for the Temporal queue backend.

These tests run without a Temporal server. They check:
- Queue settings map onto the workflow input and retry policy
- Workflow descriptions map onto job states
- Enqueue starts one workflow per job id and ignores pending duplicates
- Remove terminates waiting jobs, deletes finished ones and refuses running ones
- The job activity heartbeats, emits lifecycle events and turns fatal
  errors into non-retryable application errors
"""

import asyncio
import sys
from datetime import timedelta
from types import SimpleNamespace

from temporalio.api.enums.v1 import PendingActivityState
from temporalio.client import WorkflowExecutionStatus
from temporalio.exceptions import ApplicationError
from temporalio.service import RPCError, RPCStatusCode
from temporalio.testing import ActivityEnvironment

from llmstxt_pipeline.config import BackoffConfig, QueueConfig
from llmstxt_pipeline.errors import SubjectNotFoundError
from llmstxt_pipeline.jobs.base import JobState, QueueEvents
from llmstxt_pipeline.models import JobMessage, ProgressEvent
from llmstxt_pipeline.temporal import JOB_WORKFLOW_NAME
from llmstxt_pipeline.temporal.activities import JobActivities, JobActivityInput
from llmstxt_pipeline.temporal.client import TemporalJobQueue, state_from_description, workflow_input_for
from llmstxt_pipeline.temporal.workflows import retry_policy_for

MESSAGE = JobMessage(subject_id=42, request_id=7, hostname="docs.example.com", provider="gemini")


def _description(status, pending=()):
    return SimpleNamespace(status=status, raw_description=SimpleNamespace(pending_activities=list(pending)))


def _activity(state, attempt=1):
    return SimpleNamespace(state=state, attempt=attempt)


class FakeHandle:
    def __init__(self, client, workflow_id):
        self.client = client
        self.workflow_id = workflow_id

    async def describe(self):
        desc = self.client.descriptions.get(self.workflow_id)
        if desc is None:
            raise RPCError("workflow not found", RPCStatusCode.NOT_FOUND, b"")
        return desc

    async def terminate(self, reason=None):
        self.client.terminated.append((self.workflow_id, reason))


class FakeWorkflowService:
    def __init__(self):
        self.deleted = []

    async def delete_workflow_execution(self, request):
        self.deleted.append(request.workflow_execution.workflow_id)


class FakeClient:
    namespace = "default"

    def __init__(self):
        self.descriptions = {}
        self.started = []
        self.terminated = []
        self.workflow_service = FakeWorkflowService()

    def get_workflow_handle(self, workflow_id):
        return FakeHandle(self, workflow_id)

    async def start_workflow(self, workflow, arg, id, task_queue, **kwargs):
        self.started.append((workflow, arg, id, task_queue, kwargs))
        self.descriptions[id] = _description(WorkflowExecutionStatus.RUNNING)


def test_workflow_input_and_retry_policy():
    config = QueueConfig(
        name="gemini-generation",
        lock_duration=20.0,
        retry_limit=2,
        backoff=BackoffConfig("exponential", 5.0),
    )
    data = workflow_input_for(MESSAGE, config)
    assert data.message == MESSAGE
    assert data.queue_name == "gemini-generation"
    assert data.max_attempts == 3
    assert data.backoff_coefficient == 2.0
    assert data.lock_duration == 20.0

    policy = retry_policy_for(data)
    assert policy.maximum_attempts == 3
    assert policy.initial_interval == timedelta(seconds=5)
    assert policy.backoff_coefficient == 2.0

    fixed = workflow_input_for(MESSAGE, QueueConfig(name="q", backoff=BackoffConfig("fixed", 10.0)))
    assert fixed.backoff_coefficient == 1.0
    print("  Workflow input test passed!")


def test_state_from_description():
    started = PendingActivityState.PENDING_ACTIVITY_STATE_STARTED
    scheduled = PendingActivityState.PENDING_ACTIVITY_STATE_SCHEDULED
    cases = [
        (_description(WorkflowExecutionStatus.RUNNING), JobState.WAITING),
        (_description(WorkflowExecutionStatus.RUNNING, [_activity(scheduled)]), JobState.WAITING),
        (_description(WorkflowExecutionStatus.RUNNING, [_activity(started)]), JobState.ACTIVE),
        (_description(WorkflowExecutionStatus.RUNNING, [_activity(scheduled, attempt=2)]), JobState.DELAYED),
        (_description(WorkflowExecutionStatus.COMPLETED), JobState.COMPLETED),
        (_description(WorkflowExecutionStatus.FAILED), JobState.FAILED),
        (_description(WorkflowExecutionStatus.TIMED_OUT), JobState.FAILED),
        (_description(WorkflowExecutionStatus.TERMINATED), JobState.UNKNOWN),
    ]
    for desc, expected in cases:
        assert state_from_description(desc) == expected, f"{desc.status} -> {expected}"
    print("  Job state mapping test passed!")


def test_enqueue_is_idempotent():
    client = FakeClient()
    queue = TemporalJobQueue(client, QueueConfig(name="gemini-generation"))

    async def scenario():
        first = await queue.enqueue(MESSAGE, "order-42")
        second = await queue.enqueue(MESSAGE, "order-42")
        client.descriptions["order-42"] = _description(WorkflowExecutionStatus.COMPLETED)
        third = await queue.enqueue(MESSAGE, "order-42")
        return first, second, third

    first, second, third = asyncio.run(scenario())
    assert (first, second, third) == (True, False, True)
    assert len(client.started) == 2
    workflow, arg, workflow_id, task_queue, _ = client.started[0]
    assert workflow == JOB_WORKFLOW_NAME
    assert arg.message == MESSAGE
    assert (workflow_id, task_queue) == ("order-42", "gemini-generation")
    print("  Enqueue idempotency test passed!")


def test_remove():
    client = FakeClient()
    queue = TemporalJobQueue(client, QueueConfig(name="q"))
    started = PendingActivityState.PENDING_ACTIVITY_STATE_STARTED
    client.descriptions.update(
        {
            "order-1": _description(WorkflowExecutionStatus.RUNNING),
            "order-2": _description(WorkflowExecutionStatus.RUNNING, [_activity(started)]),
            "order-3": _description(WorkflowExecutionStatus.COMPLETED),
        }
    )

    async def scenario():
        return [
            await queue.remove("order-1", (JobState.WAITING, JobState.DELAYED)),
            await queue.remove("order-2"),
            await queue.remove("order-3", (JobState.WAITING,)),
            await queue.remove("order-3", (JobState.COMPLETED, JobState.FAILED)),
            await queue.remove("order-4"),
            await queue.get_state("order-4"),
        ]

    results = asyncio.run(scenario())
    assert results == [True, False, False, True, False, JobState.UNKNOWN]
    assert [workflow_id for workflow_id, _ in client.terminated] == ["order-1"]
    assert client.workflow_service.deleted == ["order-3"]
    print("  Remove test passed!")


def test_activity_runs_handler():
    events = QueueEvents()
    seen = []
    for name in ("active", "progress", "completed", "failed"):
        events.on(name, lambda event: seen.append((event.name, event.final)))
    heartbeats = []

    async def handler(ctx):
        await ctx.report_progress(ProgressEvent(5, 10))
        return 10

    env = ActivityEnvironment()
    env.on_heartbeat = lambda *details: heartbeats.append(details)
    activities = JobActivities(handler, events)
    data = JobActivityInput(message=MESSAGE, queue_name="q", max_attempts=3, heartbeat_interval=60)

    asyncio.run(env.run(activities.run_job, data))

    assert seen == [("active", False), ("progress", False), ("completed", True)]
    assert ({"processed_units": 5, "total_units": 10},) in heartbeats
    print("  Activity run test passed!")


def test_activity_fatal_error_is_non_retryable():
    events = QueueEvents()
    seen = []
    events.on("failed", lambda event: seen.append((event.error, event.final)))

    async def handler(ctx):
        raise SubjectNotFoundError(ctx.message.subject_id)

    env = ActivityEnvironment()
    activities = JobActivities(handler, events)
    data = JobActivityInput(message=MESSAGE, queue_name="q", max_attempts=3)

    try:
        asyncio.run(env.run(activities.run_job, data))
    except ApplicationError as e:
        assert e.non_retryable
        assert e.type == "SubjectNotFoundError"
    else:
        raise AssertionError("Expected ApplicationError")

    assert seen == [("Subject 42 not found", True)]
    print("  Fatal activity error test passed!")


def run_tests():
    print("\nTemporal backend tests:")
    test_workflow_input_and_retry_policy()
    test_state_from_description()
    test_enqueue_is_idempotent()
    test_remove()
    test_activity_runs_handler()
    test_activity_fatal_error_is_non_retryable()
    return True


def main():
    """Main test function."""
    success = run_tests()
    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
