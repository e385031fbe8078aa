"""
Job queue abstraction: deterministic job ids, idempotent enqueue, removal of
pending jobs, and workers with a per-queue concurrency cap.
"""

from llmstxt_pipeline.jobs.base import JobContext, JobEvent, JobQueue, JobState, JobWorker, QueueEvents

__all__ = ["JobContext", "JobEvent", "JobQueue", "JobState", "JobWorker", "QueueEvents"]
