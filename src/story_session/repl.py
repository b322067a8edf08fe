"""Interactive terminal front-end for a story session."""

from __future__ import annotations

import asyncio
import logging
import os
import sys
from pathlib import Path

from .config import load_config
from .errors import ConfigError, CredentialError, PersistenceError, TransportError
from .provider_factory import ProviderFactory
from .session_manager import Notice, SessionManager
from .telemetry import StoryTracer, TelemetryConfig

_HELP = (
    "Commands: /save, /load <name>, /latest, /list, /undo, /export [name], /quit\n"
    "Anything else is what your character says or does"
)


def _print_notice(notice: Notice) -> None:
    print(f"  [{notice.level}] {notice.message}")


def _print_chunk(chunk: str) -> None:
    sys.stdout.write(chunk)
    sys.stdout.flush()


async def async_main(project_root: Path) -> None:
    """Play a story rooted at *project_root* until the player quits."""
    try:
        config = load_config(project_root)
    except ConfigError as exc:
        print(f"Configuration error: {exc}")
        return

    provider = ProviderFactory.create(config.chat)
    tracer = StoryTracer(TelemetryConfig.from_env())
    tracer.init()
    manager = SessionManager(
        project_root, provider, config=config, tracer=tracer, on_notice=_print_notice
    )

    print("Story Session REPL v0.1.0")
    print(f"Provider: {ProviderFactory.describe(provider)}")
    print(_HELP)
    print()

    try:
        print(await manager.start_new_session())
        while True:
            try:
                # Read in a thread so background compaction keeps running.
                user_input = await asyncio.to_thread(input, "\n> ")
            except (EOFError, KeyboardInterrupt):
                print("\nBye!")
                break

            stripped = user_input.strip()
            if not stripped:
                continue
            if stripped in ("/quit", "/exit"):
                print("Bye!")
                break
            if stripped == "/help":
                print(_HELP)
                continue
            if stripped == "/save":
                await manager.save_session()
                continue
            if stripped == "/list":
                for name in manager.list_saved_sessions():
                    print(f"  {name}")
                continue
            if stripped == "/latest":
                await manager.load_latest_session()
                continue
            if stripped.startswith("/load"):
                name = stripped[len("/load") :].strip()
                if not name:
                    print("  Usage: /load <name> (see /list)")
                    continue
                await manager.load_session(name)
                continue
            if stripped == "/undo":
                result = await manager.undo_last_turn()
                print("  Last round undone." if result.success else f"  {result.reason}")
                continue
            if stripped.startswith("/export"):
                name = stripped[len("/export") :].strip() or None
                try:
                    print(f"  Exported to {manager.export_markdown(name)}")
                except PersistenceError as exc:
                    print(f"  Export failed: {exc}")
                continue

            try:
                await manager.take_turn(stripped, on_chunk=_print_chunk)
                print()
            except CredentialError as exc:
                print(f"\n  {exc}\n  Set OPENROUTER_API_KEY and try again.")
            except TransportError as exc:
                print(f"\n  The narrator could not answer: {exc}")
    finally:
        await manager.dispose()
        tracer.shutdown()


def run_async_main() -> None:
    """Entry point for the ``story-session-repl`` command."""
    logging.basicConfig(level=os.environ.get("STORY_LOG_LEVEL", "WARNING").upper())
    root = Path(sys.argv[1]) if len(sys.argv) > 1 else Path.cwd()
    asyncio.run(async_main(root))


if __name__ == "__main__":
    run_async_main()
