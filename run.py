#!/usr/bin/env python3
"""
Orvion command core - interactive console.
Entry point for trying the orchestrator from a terminal.

Usage:
    python run.py                        # Remote reasoning at the configured URL
    python run.py --llm off              # Local fast path + offline fallback only
    python run.py --user alice --name Alice
    python run.py --stats                # Print cache/latency/diagnostic stats on exit

Type an utterance and press Enter. Lines starting with "/" are commands:
    /partial <text>   instant acknowledgment from a partial utterance
    /stats            cache, latency and diagnostic summaries
    /quit             exit
Ctrl+C while a reply is streaming cancels that reply.
"""
import sys
import argparse
import json

from rich.console import Console

from orvion.core.logger import init_logger, get_logger
from orvion.core.config import Config
from orvion.core.errors import ConfigurationError


def parse_args():
    """Parse command line arguments"""
    parser = argparse.ArgumentParser(
        description="Orvion - command resolution and streaming console",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python run.py                     # Remote reasoning enabled
  python run.py --llm off           # Offline: local patterns and knowledge only
  python run.py --batch-words 3     # Smaller stream batches
  python run.py --log-level DEBUG   # Show cache/latency/diagnostic chatter
        """
    )

    parser.add_argument(
        "--user",
        type=str,
        default="console",
        help="User id for the session (default: console)"
    )

    parser.add_argument(
        "--name",
        type=str,
        default=Config.DEFAULT_USER_NAME,
        help=f"User display name (default: {Config.DEFAULT_USER_NAME})"
    )

    parser.add_argument(
        "--mode",
        type=str,
        default="voice",
        choices=["voice", "chat"],
        help="Prompt mode for the reasoning service (default: voice)"
    )

    parser.add_argument(
        "--log-level",
        type=str,
        default=Config.LOG_LEVEL,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help=f"Logging level (default: {Config.LOG_LEVEL})"
    )

    parser.add_argument(
        "--quiet",
        action="store_true",
        help="Hide sweep/cache/latency chatter"
    )

    parser.add_argument(
        "--batch-words",
        type=int,
        default=Config.STREAM_BATCH_WORDS,
        help=f"Words per stream token (default: {Config.STREAM_BATCH_WORDS})"
    )

    parser.add_argument(
        "--delay-ms",
        type=int,
        default=Config.STREAM_DELAY_MS,
        help=f"Delay between stream tokens in ms (default: {Config.STREAM_DELAY_MS})"
    )

    # Reasoning service arguments
    parser.add_argument(
        "--llm",
        type=str,
        default=Config.REASONING_MODE,
        choices=["ollama", "off"],
        help=f"Reasoning mode: ollama or off (default: {Config.REASONING_MODE})"
    )

    parser.add_argument(
        "--reasoning-model",
        type=str,
        default=Config.REASONING_MODEL,
        help=f"Reasoning model name (default: {Config.REASONING_MODEL})"
    )

    parser.add_argument(
        "--reasoning-url",
        type=str,
        default=Config.REASONING_URL,
        help=f"Reasoning API base URL (default: {Config.REASONING_URL})"
    )

    parser.add_argument(
        "--llm-timeout",
        type=float,
        default=Config.REASONING_TIMEOUT_SEC,
        help=f"Reasoning request timeout in seconds (default: {Config.REASONING_TIMEOUT_SEC})"
    )

    parser.add_argument(
        "--stats",
        action="store_true",
        help="Print statistics on exit"
    )

    return parser.parse_args()


class ConsoleSink:
    """EventSink that renders stream events on a rich console."""

    def __init__(self, console: Console):
        self.console = console

    def __call__(self, event: str, payload: dict) -> None:
        if event == "stream-token":
            self.console.print(payload.get("content", ""), end="\n" if payload.get("final") else " ")
        elif event == "stream-start":
            self.console.print("[bold cyan]Orvion:[/bold cyan] ", end="")
        elif event == "stream-end":
            self.console.print(f"[dim]({payload.get('totalLatency')} ms)[/dim]")
        elif event == "stream-error":
            self.console.print(f"\n[red]error: {payload.get('message')}[/red]")
        elif event == "stream-cancelled":
            self.console.print(f"\n[yellow]cancelled ({payload.get('reason')})[/yellow]")
        elif event == "stream-event":
            kind = payload.get("type")
            if kind in ("action", "intent-detected", "sources"):
                details = {k: v for k, v in payload.items() if k != "type"}
                self.console.print(f"\n[dim]<{kind}> {json.dumps(details, default=str)}[/dim]", end=" ")
        else:
            self.console.print(f"\n[magenta]<{event}>[/magenta] {json.dumps(payload, default=str)}", end=" ")


def print_stats(console: Console, orchestrator) -> None:
    console.print("[bold]Cache[/bold]", orchestrator.cache.stats())
    console.print("[bold]Latency[/bold]", orchestrator.latency.stats())
    console.print("[bold]Diagnostics[/bold]", orchestrator.diagnostics.summary())


def main():
    """Main entry point"""
    args = parse_args()

    # Initialize logger
    init_logger(args.log_level, quiet_mode=args.quiet or Config.QUIET_MODE)
    logger = get_logger()

    Config.REASONING_MODE = args.llm
    Config.REASONING_MODEL = args.reasoning_model
    Config.REASONING_URL = args.reasoning_url
    Config.REASONING_TIMEOUT_SEC = args.llm_timeout

    try:
        Config.validate()
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return 1

    console = Console()
    console.rule(f"[bold]{Config.ASSISTANT_NAME} command core[/bold]")
    console.print(f"  User: {args.user} ({args.name})")
    console.print(f"  Reasoning: {args.llm}")
    if Config.remote_enabled():
        console.print(f"  Model: {Config.REASONING_MODEL}")
        console.print(f"  URL: {Config.REASONING_URL}")
    console.print(f"  Mode: {args.mode}")
    console.print(f"  Log Level: {args.log_level}")
    console.rule()

    # Import after the logger is initialized
    from orvion.brain.stream_dispatcher import StreamDispatcher
    from orvion.core.orchestrator import CommandOrchestrator, SessionWorker
    from orvion.core.scheduler import SweepScheduler
    from orvion.core.state import SessionRegistry

    orchestrator = CommandOrchestrator(
        dispatcher=StreamDispatcher(batch_words=args.batch_words, delay_ms=args.delay_ms),
        mode=args.mode,
    )
    if orchestrator.reasoning is not None and not orchestrator.reasoning.ping():
        logger.warning(f"Reasoning service not reachable at {Config.REASONING_URL}; offline fallback will be used")

    scheduler = SweepScheduler()
    orchestrator.register_sweeps(scheduler)
    scheduler.start()

    registry = SessionRegistry()
    session = registry.open_session(args.user, user_name=args.name)
    worker = SessionWorker(orchestrator, session, ConsoleSink(console))
    worker.start()

    logger.info("Ready. Type /quit to exit.")
    try:
        while True:
            try:
                line = console.input("[bold green]You:[/bold green] ").strip()
            except EOFError:
                break
            if not line:
                continue
            if line in ("/quit", "/exit"):
                break
            if line == "/stats":
                print_stats(console, orchestrator)
                continue
            if line.startswith("/partial "):
                ack = orchestrator.acknowledge_partial(line[len("/partial "):])
                console.print(ack.to_dict() if ack else "[dim]no acknowledgment[/dim]")
                continue
            worker.submit(line)
            try:
                worker.join_idle()
            except KeyboardInterrupt:
                # Ctrl+C during a reply cancels just that request
                orchestrator.cancel(session.user_id)
                worker.join_idle()
    except KeyboardInterrupt:
        logger.info("\nShutdown requested by user")
    finally:
        worker.stop()
        scheduler.stop()
        registry.end_session(session.id)
        if args.stats:
            print_stats(console, orchestrator)

    return 0


if __name__ == "__main__":
    sys.exit(main())
