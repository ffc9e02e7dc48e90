"""Utterflow diagnostics CLI."""

from __future__ import annotations

import argparse
import json

from utterflow.config import UtterflowSettings
from utterflow.storage import PipelineStore, StoreUnavailableError, TaskStatus


def load_store(settings: UtterflowSettings) -> PipelineStore:
    try:
        store = PipelineStore(settings.chroma_persist_path)
        store.ping()
        return store
    except StoreUnavailableError as exc:
        print(f"Store unavailable: {exc}")
        raise SystemExit(1)


def cmd_tasks(args: argparse.Namespace) -> None:
    settings = UtterflowSettings()
    store = load_store(settings)
    status = TaskStatus(args.status) if args.status else None
    try:
        tasks = store.fetch_tasks(status=status)
    except StoreUnavailableError as exc:
        print(f"Store unavailable: {exc}")
        raise SystemExit(1)
    if args.json:
        payload = [
            {
                "id": task.id,
                "title": task.title,
                "mode": task.mode.value,
                "status": task.status.value,
                "project": task.project_name,
                "workflow": task.workflow_id,
                "pending_question": task.pending_question,
            }
            for task in tasks
        ]
        print(json.dumps(payload, indent=2))
    else:
        for task in tasks:
            print(f"{task.id} [{task.status.value}/{task.mode.value}] {task.title}")


def cmd_steps(args: argparse.Namespace) -> None:
    settings = UtterflowSettings()
    store = load_store(settings)
    try:
        steps = store.fetch_steps(args.task_id)
    except StoreUnavailableError as exc:
        print(f"Store unavailable: {exc}")
        raise SystemExit(1)
    for step in steps:
        print(f"{step.step_index:>3} [{step.status.value}] {step.description}")


def cmd_transcripts(args: argparse.Namespace) -> None:
    settings = UtterflowSettings()
    store = load_store(settings)
    try:
        transcripts = store.fetch_recent_cleaned(limit=args.limit)
    except StoreUnavailableError as exc:
        print(f"Store unavailable: {exc}")
        raise SystemExit(1)
    payload = [
        {
            "id": transcript.id,
            "session_id": transcript.session_id,
            "chunks": transcript.source_chunk_count,
            "continued": transcript.is_continued,
            "speaker": transcript.speaker_name,
            "text": transcript.cleaned_text,
            "timestamp": transcript.timestamp.isoformat(),
        }
        for transcript in transcripts
    ]
    print(json.dumps(payload, indent=2))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Utterflow diagnostics")
    sub = parser.add_subparsers(dest="cmd")

    p_tasks = sub.add_parser("tasks", help="List replayed tasks")
    p_tasks.add_argument("--status", choices=[status.value for status in TaskStatus])
    p_tasks.add_argument("--json", action="store_true", help="Output JSON")
    p_tasks.set_defaults(func=cmd_tasks)

    p_steps = sub.add_parser("steps", help="Show the execution step log of a task")
    p_steps.add_argument("task_id")
    p_steps.set_defaults(func=cmd_steps)

    p_transcripts = sub.add_parser("transcripts", help="List recent cleaned transcripts")
    p_transcripts.add_argument(
        "--limit",
        type=int,
        default=20,
        help="Show only the latest N transcripts",
    )
    p_transcripts.set_defaults(func=cmd_transcripts)

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return
    args.func(args)


if __name__ == "__main__":
    main()
