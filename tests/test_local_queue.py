#!/usr/bin/env python3
"""
Tests for the in-process job queue and the queue registry.

Verifies that:
- Enqueuing a job id that is already running is ignored (one execution)
- A failing job runs retry_limit + 1 times with backoff between attempts
- A fatal error stops retries after the first attempt
- Waiting jobs can be removed, running jobs cannot
- Positions are 1-indexed among waiting jobs
- No more than ``concurrency`` jobs run at once
- The registry routes providers to queues and finds jobs across queues
"""

import asyncio
import sys

from support import RecordingSleep

from llmstxt_pipeline.config import BackoffConfig, ProviderConfig, QueueConfig, Settings
from llmstxt_pipeline.errors import QueueNotFoundError, SubjectNotFoundError
from llmstxt_pipeline.jobs.base import JobState
from llmstxt_pipeline.jobs.local import LocalJobQueue
from llmstxt_pipeline.jobs.registry import QueueRegistry
from llmstxt_pipeline.models import JobMessage


def _message(subject_id=1):
    return JobMessage(subject_id=subject_id, request_id=0, hostname="docs.example.com", provider="gemini")


def _recorder(queue):
    events = []
    for name in ("active", "progress", "completed", "failed"):
        queue.events.on(name, lambda event: events.append((event.name, event.attempt, event.final)))
    return events


def test_enqueue_while_active_is_ignored():
    async def scenario():
        queue = LocalJobQueue(QueueConfig(name="q"))
        started = asyncio.Event()
        release = asyncio.Event()
        runs = []

        async def handler(ctx):
            runs.append(ctx.attempt)
            started.set()
            await release.wait()

        worker = queue.create_worker(handler)
        await worker.start()

        assert await queue.enqueue(_message(), "order-1") is True
        await started.wait()
        assert await queue.get_state("order-1") == JobState.ACTIVE
        assert await queue.enqueue(_message(), "order-1") is False

        waiter = asyncio.create_task(queue.wait_for("order-1"))
        release.set()
        state = await waiter
        await worker.close()
        return runs, state

    runs, state = asyncio.run(scenario())
    assert runs == [1]
    assert state == JobState.COMPLETED
    print("  Idempotent enqueue test passed!")


def test_retries_then_fails():
    async def scenario():
        sleep = RecordingSleep()
        config = QueueConfig(name="q", retry_limit=2, backoff=BackoffConfig("exponential", 1.0))
        queue = LocalJobQueue(config, sleep=sleep)
        events = _recorder(queue)
        attempts = []

        async def handler(ctx):
            attempts.append((ctx.attempt, ctx.max_attempts, ctx.is_last_attempt))
            raise RuntimeError("site unreachable")

        worker = queue.create_worker(handler)
        await worker.start()
        await queue.enqueue(_message(), "order-1")
        state = await queue.wait_for("order-1")
        await worker.close()
        return attempts, state, sleep.delays, events, await queue.get_state("order-1")

    attempts, state, delays, events, after = asyncio.run(scenario())
    assert attempts == [(1, 3, False), (2, 3, False), (3, 3, True)]
    assert state == JobState.FAILED
    assert delays == [1.0, 2.0]
    assert [e for e in events if e[0] == "failed"] == [("failed", 1, False), ("failed", 2, False), ("failed", 3, True)]
    # remove_on_fail drops the record
    assert after == JobState.UNKNOWN
    print("  Retry test passed!")


def test_fatal_error_is_not_retried():
    async def scenario():
        queue = LocalJobQueue(QueueConfig(name="q", retry_limit=2), sleep=RecordingSleep())
        events = _recorder(queue)
        attempts = []

        async def handler(ctx):
            attempts.append(ctx.attempt)
            raise SubjectNotFoundError(ctx.message.subject_id)

        worker = queue.create_worker(handler)
        await worker.start()
        await queue.enqueue(_message(), "order-1")
        state = await queue.wait_for("order-1")
        await worker.close()
        return attempts, state, events

    attempts, state, events = asyncio.run(scenario())
    assert attempts == [1]
    assert state == JobState.FAILED
    assert ("failed", 1, True) in events
    print("  Fatal error test passed!")


def test_remove_and_position():
    async def scenario():
        queue = LocalJobQueue(QueueConfig(name="q"))
        for subject_id in (1, 2, 3):
            await queue.enqueue(_message(subject_id), f"order-{subject_id}")

        positions = [await queue.position(f"order-{i}") for i in (1, 2, 3)]
        removed = await queue.remove("order-1", (JobState.WAITING, JobState.DELAYED))
        after = [await queue.position(f"order-{i}") for i in (1, 2, 3)]
        missing = await queue.remove("order-9")

        started = asyncio.Event()
        release = asyncio.Event()

        async def handler(ctx):
            started.set()
            await release.wait()

        worker = queue.create_worker(handler)
        await worker.start()
        await started.wait()
        active_removed = await queue.remove("order-2")
        active_position = await queue.position("order-2")
        release.set()
        await worker.close()
        return positions, removed, after, missing, active_removed, active_position

    positions, removed, after, missing, active_removed, active_position = asyncio.run(scenario())
    assert positions == [1, 2, 3]
    assert removed is True
    assert after == [None, 1, 2]
    assert missing is False
    assert active_removed is False
    assert active_position is None
    print("  Remove and position test passed!")


def test_concurrency_cap():
    async def scenario():
        queue = LocalJobQueue(QueueConfig(name="q", concurrency=2, remove_on_complete=False))
        running = 0
        peak = 0

        async def handler(ctx):
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.01)
            running -= 1

        worker = queue.create_worker(handler)
        await worker.start()
        job_ids = [f"order-{i}" for i in range(6)]
        for i, job_id in enumerate(job_ids):
            await queue.enqueue(_message(i), job_id)
        states = await asyncio.gather(*(queue.wait_for(job_id) for job_id in job_ids))
        await worker.close()
        return peak, states

    peak, states = asyncio.run(scenario())
    assert peak == 2
    assert set(states) == {JobState.COMPLETED}
    print("  Concurrency cap test passed!")


def test_registry_routing():
    settings = Settings(
        providers=(
            ProviderConfig(id="gemini", model_name="m", queue_name="gemini-generation", concurrency=5),
            ProviderConfig(id="ollama", model_name="m", queue_name="ollama-generation", concurrency=1),
            ProviderConfig(id="openai", model_name="m", queue_name="ollama-generation", concurrency=3),
        )
    )

    async def scenario():
        registry = QueueRegistry(settings, LocalJobQueue)
        await registry.init()
        names = sorted(registry.queue_names)
        concurrency = registry.get("ollama-generation").config.concurrency
        await registry.enqueue(registry.queue_name_for("openai"), _message(4), "order-4")
        found = await registry.find("order-4")
        unknown = await registry.find("order-5")
        try:
            registry.get("nope")
        except QueueNotFoundError:
            not_found = True
        else:
            not_found = False
        await registry.shutdown()
        return names, concurrency, found, unknown, not_found

    names, concurrency, found, unknown, not_found = asyncio.run(scenario())
    assert names == ["gemini-generation", "ollama-generation"]
    assert concurrency == 3
    assert found == ("ollama-generation", JobState.WAITING)
    assert unknown == (None, JobState.UNKNOWN)
    assert not_found
    print("  Registry routing test passed!")


def run_tests():
    print("\nLocal queue tests:")
    test_enqueue_while_active_is_ignored()
    test_retries_then_fails()
    test_fatal_error_is_not_retried()
    test_remove_and_position()
    test_concurrency_cap()
    test_registry_routing()
    return True


def main():
    """Main test function."""
    success = run_tests()
    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
