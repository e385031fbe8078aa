"""
Worker process for the generation pipeline.

Starts one worker per configured queue and runs until SIGINT/SIGTERM, then
stops taking jobs and waits up to the shutdown timeout for running ones:

    llmstxt-pipeline-worker
    llmstxt-pipeline-worker --orchestrator temporal --temporal-address localhost:7233
"""

import argparse
import asyncio
import logging
import signal
import sys
from dataclasses import replace
from typing import List, Optional

from llmstxt_pipeline.app import create_pipeline
from llmstxt_pipeline.config import Settings, load_settings
from llmstxt_pipeline.errors import PipelineError
from llmstxt_pipeline.logging_setup import setup_logging
from llmstxt_pipeline.styling import color_text, draw_box, status_message

logger = logging.getLogger(__name__)

SHUTDOWN_TIMEOUT = 10.0


async def run_worker(
    settings: Settings,
    queue_names: Optional[List[str]] = None,
    shutdown_timeout: float = SHUTDOWN_TIMEOUT,
    stop: Optional[asyncio.Event] = None,
) -> None:
    """
    Run workers for ``queue_names`` (all configured queues by default) until ``stop`` is set.

    Args:
        settings: Loaded settings
        queue_names: Subset of queues to serve
        shutdown_timeout: Seconds to wait for running jobs on shutdown
        stop: Event that ends the run; SIGINT/SIGTERM set it when not given
    """
    stop = stop or asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except (NotImplementedError, RuntimeError):
            # Not supported on this platform / not the main thread
            pass

    pipeline = await create_pipeline(settings)
    try:
        workers = await pipeline.start_workers(queue_names)
        started = f"{len(workers)} worker(s) started ({settings.orchestrator}). Ctrl+C to stop."
        print(status_message(started, "success"))
        for name in queue_names or pipeline.registry.queue_names:
            print(status_message(f"Serving queue {name}", "info"))
        await stop.wait()
        print(status_message(f"Shutting down, waiting up to {shutdown_timeout:g}s for running jobs...", "processing"))
    finally:
        await pipeline.close(shutdown_timeout)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse worker CLI arguments."""
    parser = argparse.ArgumentParser(description="llms.txt generation worker")
    parser.add_argument(
        "--orchestrator",
        choices=["local", "temporal"],
        help="Queue backend (default: LLMSTXT_ORCHESTRATOR or local)",
    )
    parser.add_argument(
        "--temporal-address",
        help="Temporal server address (default: TEMPORAL_ADDRESS or localhost:7233)",
    )
    parser.add_argument(
        "--queue",
        action="append",
        dest="queues",
        help="Queue to serve; repeat for several (default: all configured queues)",
    )
    parser.add_argument(
        "--shutdown-timeout",
        type=float,
        default=SHUTDOWN_TIMEOUT,
        help=f"Seconds to wait for running jobs on shutdown (default: {SHUTDOWN_TIMEOUT:g})",
    )
    parser.add_argument("--log-level", help="Logging level (default: LOG_LEVEL or INFO)")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> None:
    args = parse_args(argv)
    setup_logging(args.log_level)
    print(color_text(draw_box("llms.txt generation worker", 2), "green"))

    try:
        settings = load_settings()
        overrides = {}
        if args.orchestrator:
            overrides["orchestrator"] = args.orchestrator
        if args.temporal_address:
            overrides["temporal_address"] = args.temporal_address
        settings = replace(settings, **overrides)
        asyncio.run(run_worker(settings, args.queues, args.shutdown_timeout))
    except KeyboardInterrupt:
        print(color_text("\nWorker stopped.", "yellow"))
    except PipelineError as e:
        print(color_text(f"Error: {e}", "red"))
        sys.exit(1)


if __name__ == "__main__":
    main()
