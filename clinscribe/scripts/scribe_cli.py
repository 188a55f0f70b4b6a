from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional, TextIO

from clinscribe.internal_core.config import ScribeConfig, load_config
from clinscribe.internal_core.contracts import GenerationSnapshot, ProcessStatus
from clinscribe.internal_core.updates import Subscription
from clinscribe.note.generation import GenerationClient
from clinscribe.runtime.supervisor import OllamaSupervisor


def _format_status(status: ProcessStatus) -> str:
    parts = [f"server={status.lifecycle}", f"model={status.model_state}"]
    if status.model_state == "downloading":
        parts.append(f"progress={status.download_progress * 100:.0f}%")
    if status.status_message:
        parts.append(status.status_message)
    return " ".join(parts)


def _format_summary(snapshot: GenerationSnapshot) -> str:
    summary = (
        f"{snapshot.phase_label} tokens={snapshot.tokens_generated} "
        f"tok/s={snapshot.tokens_per_second:.1f} elapsed={snapshot.elapsed_seconds:.1f}s"
    )
    if snapshot.load_seconds is not None:
        summary += f" load={snapshot.load_seconds:.1f}s"
    return summary


async def _print_status_updates(subscription: Subscription[ProcessStatus], out: TextIO) -> None:
    last_line = ""
    async for status in subscription:
        line = _format_status(status)
        if line != last_line:
            print(line, file=out, flush=True)
            last_line = line


async def _print_note_deltas(subscription: Subscription[GenerationSnapshot], out: TextIO) -> None:
    async for snapshot in subscription:
        if snapshot.delta:
            out.write(snapshot.delta)
            out.flush()


async def run_setup(supervisor: OllamaSupervisor, *, out: TextIO = sys.stderr) -> ProcessStatus:
    subscription = supervisor.updates.subscribe(replay_last=False)
    printer = asyncio.create_task(_print_status_updates(subscription, out))
    try:
        return await supervisor.ensure_model()
    finally:
        subscription.close()
        await printer


async def run_generate(
    supervisor: OllamaSupervisor,
    client: GenerationClient,
    conversation: str,
    *,
    model: Optional[str] = None,
    out: TextIO = sys.stdout,
    err: TextIO = sys.stderr,
) -> GenerationSnapshot:
    status = await run_setup(supervisor, out=err)
    if status.lifecycle != "running":
        raise SystemExit(f"Ollama is not running: {status.lifecycle_error or status.status_message}")
    if status.model_state != "ready":
        raise SystemExit(f"Model is not ready: {status.model_error or status.status_message}")

    subscription = client.updates.subscribe(replay_last=False, maxsize=0)
    printer = asyncio.create_task(_print_note_deltas(subscription, out))
    try:
        snapshot = await client.generate(conversation, model)
    finally:
        subscription.close()
        await printer
    out.write("\n")
    print(_format_summary(snapshot), file=err)
    return snapshot


async def _main_async(args: argparse.Namespace, config: ScribeConfig) -> int:
    supervisor = OllamaSupervisor(config)
    client = GenerationClient.from_config(supervisor.base_url, config)
    try:
        if args.command == "setup":
            status = await run_setup(supervisor)
            return 0 if status.model_state == "ready" else 1

        if args.command == "models":
            await supervisor.start()
            for name in await client.list_models():
                print(name)
            return 0 if client.is_connected else 1

        conversation = Path(args.input).expanduser().read_text(encoding="utf-8")
        snapshot = await run_generate(supervisor, client, conversation, model=args.model)
        return 0 if snapshot.phase == "complete" else 1
    finally:
        await client.aclose()
        await supervisor.shutdown()


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(
        description="Run the local Ollama runtime and generate clinical notes from conversations."
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Logging level (default: SCRIBE_LOG_LEVEL or INFO)",
    )
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("setup", help="Start Ollama and download the required model if missing.")
    sub.add_parser("models", help="List models known to the local Ollama server.")
    gen = sub.add_parser("generate", help="Generate a clinical note from a conversation text file.")
    gen.add_argument("--input", required=True, help="Path to a UTF-8 conversation transcript.")
    gen.add_argument("--model", default=None, help="Model name (default: SCRIBE_REQUIRED_MODEL).")
    args = parser.parse_args(argv)

    config = load_config()
    logging.basicConfig(
        level=(args.log_level or config.SCRIBE_LOG_LEVEL).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "generate":
        path = Path(args.input).expanduser()
        if not path.exists():
            raise SystemExit(f"conversation file not found: {path}")

    try:
        code = asyncio.run(_main_async(args, config))
    except KeyboardInterrupt:
        code = 130
    raise SystemExit(code)


if __name__ == "__main__":
    main()
