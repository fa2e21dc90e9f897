"""Command line entry point: create, resume, list and delete threads."""
from __future__ import annotations

import argparse
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

import questionary  # type: ignore
from openai import OpenAI  # type: ignore

from .app import ChatApp
from .config import AssistantProfile, Config
from .core import ChatSession, OpenAIClientWrapper, Store, StreamCoordinator, ThreadInfo
from .core.session import clean_title, title_prompt
from .errors import ChatError, ConfigError, NotFound, StorageError
from .utils import ERROR_LABEL, Ansi, Spinner, console
from .utils.log import init_logger
from .utils.terminal import Terminal

logger = logging.getLogger(__name__)


class ChatCLI:
    """Implements the ``gptui`` subcommands on top of a config and a store."""

    def __init__(self, config: Config, store: Store, coordinator: Optional[StreamCoordinator] = None):
        self.config = config
        self.store = store
        self._coordinator = coordinator

    # ---------------- Utility ----------------

    @property
    def coordinator(self) -> StreamCoordinator:
        """Coordinator talking to the configured endpoint (needs an API key)."""
        if self._coordinator is None:
            client_kwargs = {"api_key": self.config.api_key()}
            base_url = self.config.resolved_base_url()
            if base_url:
                client_kwargs["base_url"] = base_url
            client = OpenAI(**client_kwargs)  # type: ignore[arg-type]
            self._coordinator = StreamCoordinator(OpenAIClientWrapper(client))
        return self._coordinator

    def thread_at(self, index: int) -> ThreadInfo:
        """Return the thread shown at 1-based *index* by ``list``."""
        threads = self.store.list_threads()
        if not 1 <= index <= len(threads):
            raise NotFound(f"No thread at index {index} ({len(threads)} thread(s) stored)")
        return threads[index - 1]

    @staticmethod
    def _describe(index: int, info: ThreadInfo) -> str:
        when = (
            datetime.fromtimestamp(info.last_active).strftime("%Y-%m-%d %H:%M")
            if info.last_active is not None
            else "never"
        )
        return f"{index:>3}. {info.display_name}  ({info.model}, {when})"

    # -------------- Interactive pickers ---------------

    @staticmethod
    def _interactive_picker(title: str, options: List[questionary.Choice]) -> Optional[object]:
        """Present *options* to the user and return the selected value."""
        if not options:
            console.print("(no items available)")
            return None
        try:
            return questionary.select(title, choices=options).ask()
        except (KeyboardInterrupt, EOFError):
            console.print()
            return None

    @staticmethod
    def _profile_title(profile: AssistantProfile) -> List[Tuple[str, str]]:
        """Picker entry for *profile*, the label in its configured colour."""
        label_style = f"fg:{profile.color} bold" if profile.color else "bold"
        return [(label_style, profile.label), ("", f" ({profile.model})")]

    def _pick_profile(self) -> Optional[AssistantProfile]:
        if len(self.config.prompts) == 1 or not sys.stdin.isatty():
            return self.config.default_profile
        choices = [questionary.Choice(self._profile_title(p), value=p) for p in self.config.prompts]
        return self._interactive_picker("Start a thread with:", choices)  # type: ignore[return-value]

    def _pick_thread(self) -> Optional[ThreadInfo]:
        threads = self.store.list_threads()
        choices = [
            questionary.Choice(self._describe(i, info), value=info)
            for i, info in enumerate(threads, start=1)
        ]
        return self._interactive_picker("Resume thread:", choices)  # type: ignore[return-value]

    # ---------------- Commands ---------------

    def chat(self, session: ChatSession) -> None:
        ChatApp(
            session,
            Terminal(console),
            theme=self.config.syntax_theme,
            editor_command=self.config.editor,
        ).run()
        console.print(f"thread saved: {session.title or session.thread_id}", style=Ansi.DIM, markup=False)

    def cmd_new(self, prompt: Optional[str] = None) -> int:
        if prompt is not None:
            profile = self.config.get_prompt(prompt)
            if profile is None:
                labels = ", ".join(p.label for p in self.config.prompts)
                console.print(f"[{ERROR_LABEL}] Unknown prompt '{prompt}'. Available: {labels}")
                return 1
        else:
            profile = self._pick_profile()
            if profile is None:
                return 0

        session = ChatSession.open(
            self.store,
            self.coordinator,
            profile=profile,
            **self.config.session_options(),
        )
        self.chat(session)
        return 0

    def cmd_resume(self, index: Optional[int] = None) -> int:
        if index is None:
            info = self._pick_thread()
            if info is None:
                return 0
        else:
            info = self.thread_at(index)

        session = ChatSession.open(
            self.store,
            self.coordinator,
            thread_id=info.id,
            **self.config.session_options(),
        )
        self.chat(session)
        return 0

    def cmd_delete(self, index: int) -> int:
        info = self.thread_at(index)
        self.store.delete_thread(info.id)
        console.print(f"deleted thread {index}: {info.display_name}", markup=False)
        return 0

    def cmd_clear(self, yes: bool = False) -> int:
        if not yes:
            try:
                confirmed = questionary.confirm("Delete every stored thread?", default=False).ask()
            except (KeyboardInterrupt, EOFError):
                confirmed = False
            if not confirmed:
                console.print("nothing deleted")
                return 0
        self.store.clear()
        console.print("all threads deleted")
        return 0

    def _backfill_titles(self, threads: Sequence[ThreadInfo]) -> bool:
        """Name untitled threads; return True if any title was stored."""
        untitled = [t for t in threads if t.title is None and t.preview is not None]
        if not untitled:
            return False
        try:
            coordinator = self.coordinator
        except ConfigError:
            return False

        stored = False
        with Spinner(prefix=Ansi.style("naming threads ", Ansi.DIM)) as spinner:
            for done, info in enumerate(untitled):
                spinner.update(f"{done}/{len(untitled)}")
                try:
                    messages = self.store.load_messages(info.id)
                    title = clean_title(coordinator.complete(title_prompt(messages), info.model))
                    if title:
                        self.store.upsert_title(info.id, title)
                        stored = True
                except ChatError as exc:
                    logger.warning("Could not name thread %s: %s", info.id, exc)
                    break
        return stored

    def cmd_list(self) -> int:
        threads = self.store.list_threads()
        if not threads:
            console.print("(no threads yet, start one with `gptui new`)")
            return 0
        if self._backfill_titles(threads):
            threads = self.store.list_threads()
        for i, info in enumerate(threads, start=1):
            console.print(self._describe(i, info), markup=False, highlight=False)
        return 0


# ---------------------------------------------------------------------------
# Entrypoint helpers (keeping it separate simplifies __main__ handling)
# ---------------------------------------------------------------------------


def _parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="gptui",
        description="Terminal chat client for OpenAI models with persistent threads.",
    )
    parser.add_argument("--config", type=Path, help="Path to config.toml (default: platform config dir)")
    sub = parser.add_subparsers(dest="command")

    new = sub.add_parser("new", help="Start a new thread")
    new.add_argument("--prompt", "-p", help="Label of the assistant profile to use")

    resume = sub.add_parser("resume", help="Resume a thread (pick interactively if no index)")
    resume.add_argument("index", type=int, nargs="?", help="Index shown by `gptui list`")

    delete = sub.add_parser("delete", help="Delete a thread")
    delete.add_argument("index", type=int, help="Index shown by `gptui list`")

    sub.add_parser("list", help="List stored threads, most recent first")

    clear = sub.add_parser("clear", help="Delete every thread")
    clear.add_argument("--yes", "-y", action="store_true", help="Do not ask for confirmation")

    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = _parse_args(argv)
    init_logger()

    try:
        config = Config.load(args.config)
        store = Store(config.db_path)
    except (ConfigError, StorageError) as exc:
        console.print(f"[{ERROR_LABEL}] {exc.describe()}", highlight=False)
        return 1

    cli = ChatCLI(config, store)
    try:
        if args.command == "resume":
            return cli.cmd_resume(args.index)
        if args.command == "delete":
            return cli.cmd_delete(args.index)
        if args.command == "list":
            return cli.cmd_list()
        if args.command == "clear":
            return cli.cmd_clear(args.yes)
        return cli.cmd_new(getattr(args, "prompt", None))
    except ChatError as exc:
        logger.error("%s failed: %s", args.command or "new", exc)
        console.print(f"[{ERROR_LABEL}] {exc.describe()}", highlight=False)
        return 1
    finally:
        store.close()


def run_cli() -> None:  # pragma: no cover
    sys.exit(main())


if __name__ == "__main__":  # pragma: no cover
    run_cli()
