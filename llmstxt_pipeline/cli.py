"""
Command-line interface for the llms.txt generation pipeline.

    llmstxt-pipeline init-db
    llmstxt-pipeline generate docs.example.com --provider gemini --output-file llms.txt
    llmstxt-pipeline create docs.example.com --provider ollama --submit
    llmstxt-pipeline status 42
    llmstxt-pipeline cancel 42
    llmstxt-pipeline sweep --retention-days 30
"""

import argparse
import asyncio
import sys
from dataclasses import replace
from datetime import timedelta
from pathlib import Path
from typing import Awaitable, Callable, List, Optional

from llmstxt_pipeline.app import Pipeline, create_pipeline
from llmstxt_pipeline.config import Settings, load_settings
from llmstxt_pipeline.errors import PipelineError, SubjectNotFoundError
from llmstxt_pipeline.logging_setup import setup_logging
from llmstxt_pipeline.status import OrderStatus
from llmstxt_pipeline.storage.database import create_db_engine, init_schema
from llmstxt_pipeline.styling import color_text, draw_box, generate_summary_report, status_message


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(description="Generate llms.txt files for websites using LLM summarization")
    parser.add_argument("--database-url", help="SQLAlchemy database URL (default: LLMSTXT_DATABASE_URL)")
    parser.add_argument(
        "--orchestrator",
        choices=["local", "temporal"],
        help="Queue backend (default: LLMSTXT_ORCHESTRATOR or local)",
    )
    parser.add_argument("--temporal-address", help="Temporal server address (default: TEMPORAL_ADDRESS)")
    parser.add_argument("--log-level", default="WARNING", help="Logging level (default: WARNING)")

    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("init-db", help="Create the database schema")

    generate = commands.add_parser("generate", help="Create a subject and generate its llms.txt in this process")
    generate.add_argument("hostname", help="Site to index, e.g. docs.example.com")
    generate.add_argument("--provider", default="gemini", help="LLM provider id (default: gemini)")
    generate.add_argument("--output-file", help="Write the generated llms.txt here instead of stdout")

    create = commands.add_parser("create", help="Create a subject")
    create.add_argument("hostname", help="Site to index, e.g. docs.example.com")
    create.add_argument("--provider", default="gemini", help="LLM provider id (default: gemini)")
    create.add_argument("--submit", action="store_true", help="Queue the subject right away")

    for name, help_text in (
        ("submit", "Queue a subject for generation"),
        ("cancel", "Cancel a subject whose job has not started"),
        ("refund", "Refund a failed subject"),
        ("position", "Show a subject's position in its queue"),
    ):
        command = commands.add_parser(name, help=help_text)
        command.add_argument("subject_id", type=int)

    status = commands.add_parser("status", help="Show a subject's status and progress")
    status.add_argument("subject_id", type=int)
    status.add_argument("--output-file", help="Write the subject's llms.txt here when completed")

    sweep = commands.add_parser("sweep", help="Delete unreferenced page content and expired cache rows")
    sweep.add_argument(
        "--retention-days",
        type=int,
        help="Keep unused content this long (default: CONTENT_RETENTION_DAYS)",
    )
    sweep.add_argument("--time-budget", type=float, default=30.0, help="Stop sweeping after this many seconds")

    return parser.parse_args(argv)


def build_settings(args: argparse.Namespace) -> Settings:
    settings = load_settings()
    overrides = {}
    if args.database_url:
        overrides["database_url"] = args.database_url
    if args.orchestrator:
        overrides["orchestrator"] = args.orchestrator
    if args.temporal_address:
        overrides["temporal_address"] = args.temporal_address
    return replace(settings, **overrides)


async def with_pipeline(settings: Settings, action: Callable[[Pipeline], Awaitable[None]]) -> None:
    pipeline = await create_pipeline(settings)
    try:
        await action(pipeline)
    finally:
        await pipeline.close()


def write_output(output: str, output_file: Optional[str]) -> None:
    if output_file:
        Path(output_file).write_text(output, encoding="utf-8")
        print(status_message(f"llms.txt written to {output_file}", "success"))
    else:
        print(output)


async def generate(pipeline: Pipeline, hostname: str, provider: str, output_file: Optional[str]) -> None:
    """Run one subject end to end on an in-process queue."""
    queue_name = pipeline.registry.queue_name_for(provider)
    subject_id = await pipeline.subjects.create(hostname, provider)
    print(status_message(f"Created subject {subject_id} for {hostname} ({provider})", "info"))

    await pipeline.start_workers([queue_name])
    job_id = await pipeline.service.submit(subject_id)
    print(status_message(f"Generating llms.txt for {hostname} (job {job_id})...", "processing"))
    await pipeline.registry.get(queue_name).wait_for(job_id)

    subject = await pipeline.subjects.get(subject_id)
    print(generate_summary_report(subject))
    if subject.status != OrderStatus.COMPLETED:
        raise PipelineError(f"Generation for {hostname} ended with status {subject.status.value}")
    write_output(subject.output, output_file)


async def show_status(pipeline: Pipeline, subject_id: int, output_file: Optional[str]) -> None:
    subject = await pipeline.subjects.get(subject_id)
    if subject is None:
        raise SubjectNotFoundError(subject_id)
    position = None
    if subject.status == OrderStatus.QUEUED:
        position = await pipeline.service.queue_position(subject_id)
    print(generate_summary_report(subject, position))
    if output_file and subject.output:
        write_output(subject.output, output_file)


async def sweep(pipeline: Pipeline, retention_days: Optional[int], time_budget: float) -> None:
    days = retention_days if retention_days is not None else pipeline.settings.content_retention_days
    removed = await pipeline.content_store.sweep(retention=timedelta(days=days), time_budget=time_budget)
    purged = await pipeline.cache.purge_expired()
    print(status_message(f"Removed {removed} unused content row(s) and {purged} expired cache row(s)", "success"))


async def run_command(args: argparse.Namespace, settings: Settings) -> None:
    if args.command == "generate":
        settings = replace(settings, orchestrator="local")

    async def action(pipeline: Pipeline) -> None:
        service = pipeline.service
        if args.command == "generate":
            await generate(pipeline, args.hostname, args.provider, args.output_file)
        elif args.command == "create":
            pipeline.settings.provider(args.provider)
            subject_id = await pipeline.subjects.create(args.hostname, args.provider)
            print(status_message(f"Created subject {subject_id} for {args.hostname} ({args.provider})", "success"))
            if args.submit:
                job_id = await service.submit(subject_id)
                print(status_message(f"Queued as job {job_id}", "success"))
        elif args.command == "submit":
            job_id = await service.submit(args.subject_id)
            print(status_message(f"Queued subject {args.subject_id} as job {job_id}", "success"))
        elif args.command == "cancel":
            await service.cancel(args.subject_id)
            print(status_message(f"Cancelled subject {args.subject_id}", "success"))
        elif args.command == "refund":
            await service.refund(args.subject_id)
            print(status_message(f"Refunded subject {args.subject_id}", "success"))
        elif args.command == "position":
            position = await service.queue_position(args.subject_id)
            if position is None:
                print(status_message(f"Subject {args.subject_id} is not waiting in a queue", "info"))
            else:
                print(status_message(f"Subject {args.subject_id} is at position {position}", "info"))
        elif args.command == "status":
            await show_status(pipeline, args.subject_id, args.output_file)
        elif args.command == "sweep":
            await sweep(pipeline, args.retention_days, args.time_budget)

    await with_pipeline(settings, action)


def show_splash() -> None:
    print(color_text(draw_box("llms.txt pipeline - generate llms.txt files from sitemaps", 2), "green"))
    print()


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point for the CLI."""
    args = parse_args(argv)
    setup_logging(args.log_level)
    show_splash()

    try:
        settings = build_settings(args)
        if args.command == "init-db":
            engine = create_db_engine(settings.database_url)
            init_schema(engine)
            engine.dispose()
            print(status_message(f"Schema ready at {settings.database_url}", "success"))
            return
        queues_remotely = args.command == "submit" or (args.command == "create" and args.submit)
        if queues_remotely and settings.orchestrator == "local":
            print(
                color_text(
                    "Error: the local queue lives inside one process; use 'generate' "
                    "or --orchestrator temporal with a running worker",
                    "red",
                )
            )
            sys.exit(1)
        asyncio.run(run_command(args, settings))
    except KeyboardInterrupt:
        print(color_text("\nOperation cancelled by user.", "yellow"))
        sys.exit(1)
    except PipelineError as e:
        print(color_text(f"Error: {e}", "red"))
        sys.exit(1)


if __name__ == "__main__":
    main()
