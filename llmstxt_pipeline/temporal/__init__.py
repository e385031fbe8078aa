"""
Temporal backend for the job queue.

One workflow per job (workflow id = job id) on the provider's task queue.
The workflow runs a single activity that invokes the job handler; queue
retries are the activity's RetryPolicy.
"""

JOB_WORKFLOW_NAME = "GenerationJobWorkflow"
RUN_JOB_ACTIVITY = "run_generation_job"
