# src/aicoder/cli/commands.py

from __future__ import annotations

import inspect
import logging
import os
import platform
import sys
from collections.abc import Callable
from dataclasses import dataclass
from typing import cast

from .. import __version__
from ..config import DEFAULT_BASE_URLS
from ..core.chat import ChatSession
from ..core.state import AppState
from ..errors import AlreadyRunningError
from ..llm.factory import create_completion_client
from ..llm.types import Provider
from ..tasks.supervisor import TaskSupervisor
from ..tasks.task_models import format_duration, short_id

CommandEmitter = Callable[[str], None]
logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CommandContext:
    """What command handlers may touch."""

    state: AppState
    session: ChatSession
    supervisor: TaskSupervisor
    request_quit: Callable[[], None]


CommandHandler2 = Callable[[CommandContext, list[str]], "str | None"]
CommandHandler3 = Callable[[CommandContext, list[str], CommandEmitter | None], "str | None"]
CommandHandler = CommandHandler2 | CommandHandler3


class CommandRegistry:
    """Simple slash-command registry (/help, /status, /cancel, ...)."""

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}
        self._help: dict[str, str] = {}

    def register(
        self,
        name: str,
        handler: CommandHandler,
        help_text: str,
        aliases: list[str] | None = None,
    ) -> None:
        aliases = aliases or []
        key = name.lower()
        self._handlers[key] = handler
        self._help[key] = help_text
        for alias in aliases:
            self._handlers[alias.lower()] = handler

    def handle(
        self,
        ctx: CommandContext,
        line: str,
        emit: CommandEmitter | None = None,
    ) -> str | None:
        """
        Handle a string like "/command args".
        Returns a reply string or None if not a command (or nothing to say).
        """
        if not line.startswith("/"):
            return None

        parts = line[1:].split()
        if not parts:
            return "Empty command. Use /help to list available commands."

        name = parts[0].lower()
        args = parts[1:]

        handler = self._handlers.get(name)
        if not handler:
            return f"Unknown command: /{name}. Use /help to list available commands."

        try:
            nparams = len(inspect.signature(handler).parameters)
        except (TypeError, ValueError):
            nparams = 3

        logger.debug("Command /%s args=%s", name, args)
        if nparams >= 3:
            h3 = cast(CommandHandler3, handler)
            return h3(ctx, args, emit)

        h2 = cast(CommandHandler2, handler)
        return h2(ctx, args)

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()

_HELP_TOPICS = {
    "ai": (
        "AI mode: type your question directly, without a prefix.\n"
        "  The reply streams in; Ctrl+C or /cancel aborts it."
    ),
    "bash": (
        "Shell mode: prefix a command with ! to run it, e.g. !ls -la\n"
        "  Output is shown with its run time and exit code. Destructive commands are refused."
    ),
    "config": (
        "Config: /config shows the current settings; /config <key> <value> changes one for this session.\n"
        "  Keys: model, provider, temperature (0.0-1.0), max_tokens, history. /config reset restores startup values."
    ),
    "models": "Models: /models lists the backend's models. Switch with /config model <name>.",
    "cost": "Cost: /cost shows token counts and the estimated cost of this session.",
}


def cmd_help(ctx: CommandContext, args: list[str]) -> str:
    if args:
        topic = args[0].lower()
        text = _HELP_TOPICS.get(topic)
        if text is None:
            return f"No help available for '{topic}'. Topics: {', '.join(_HELP_TOPICS)}."
        return text
    return (
        "Input:\n"
        "  <text>   ask the AI\n"
        "  !<cmd>   run a shell command\n"
        "  /<cmd>   run a built-in command\n"
        "  Ctrl+C   cancel the running task (quit when idle)\n\n"
        f"{registry.build_help()}"
    )


def cmd_status(ctx: CommandContext, args: list[str]) -> str:
    setting = ctx.state.setting
    stats = ctx.state.stats
    task = ctx.supervisor.active_task
    if task is not None and task.is_running:
        running = f"{task.kind.value} {short_id(task.id)} '{task.label}' ({format_duration(task.duration())})"
    else:
        running = "idle"
    return (
        "Status:\n"
        f"  Provider: {setting('provider', '?')} ({setting('base_url', '') or '-'})\n"
        f"  Model: {setting('model', '?')}\n"
        f"  Task: {running}\n"
        f"  Submit policy: {ctx.supervisor.policy.value}\n"
        f"  Dialog history: {len(ctx.state.history)} messages\n"
        f"  Usage: {stats.ai_count} AI, {stats.bash_count} shell, {stats.command_count} commands"
    )


def cmd_cancel(ctx: CommandContext, args: list[str]) -> str:
    if ctx.session.cancel_current():
        return "Cancelling the running task."
    return "No task is running."


def cmd_clear(ctx: CommandContext, args: list[str]) -> str:
    ctx.state.clear_output()
    ctx.session.clear_history()
    return "🚀 Output and dialog history cleared."


def cmd_cost(ctx: CommandContext, args: list[str]) -> str:
    stats = ctx.state.stats
    costs = ctx.state.costs()
    return (
        "Session usage:\n"
        f"  Tokens: {stats.total_tokens} ({stats.prompt_tokens} prompt, {stats.completion_tokens} completion)\n"
        f"  Rates per 1K: ${costs.prompt_cost_per_1k:.4f} prompt, ${costs.completion_cost_per_1k:.4f} completion\n"
        f"  Estimated cost: ${stats.total_cost:.6f}\n"
        f"  Session time: {format_duration(stats.uptime())}"
    )


_BUSY_SWITCH = "⚠ A task is running. Cancel it (/cancel) before switching providers."
_CONFIG_KEYS = "model, provider, temperature, max_tokens, history, reset"


def _show_config(ctx: CommandContext) -> str:
    setting = ctx.state.setting
    overrides = ", ".join(sorted(ctx.state.overrides)) or "none"
    return (
        "Current configuration:\n"
        f"  Provider: {setting('provider', '?')} ({setting('base_url', '') or '-'})\n"
        f"  Model: {setting('model', '?')}\n"
        f"  Temperature: {setting('temperature', '?')}\n"
        f"  Max tokens: {setting('max_tokens', '?')}\n"
        f"  History size: {setting('history_max_messages', '?')} messages\n"
        f"  Session overrides: {overrides}\n\n"
        "Use /config <key> <value> to change a setting for this session."
    )


def _rebuild_client(ctx: CommandContext) -> None:
    ctx.session.replace_client(create_completion_client(ctx.state.settings, **ctx.state.overrides))


def _config_provider(ctx: CommandContext, value: str) -> str:
    try:
        provider = Provider.parse(value)
    except ValueError as e:
        return f"⚠ {e}"
    if ctx.supervisor.task_running:
        return _BUSY_SWITCH

    overrides = ctx.state.overrides
    if provider.value == str(getattr(ctx.state.settings, "provider", "")).strip().lower():
        overrides.pop("provider", None)
        overrides.pop("base_url", None)
    else:
        overrides["provider"] = provider.value
        overrides["base_url"] = DEFAULT_BASE_URLS.get(provider.value, "")
    _rebuild_client(ctx)
    return f"✅ Provider set to: {provider.value} ({ctx.state.setting('base_url', '') or '-'})"


def cmd_config(ctx: CommandContext, args: list[str]) -> str:
    """
    /config [key value]: view or change settings for this session only.

    Nothing is written back to the environment or .env; a change applies to
    the next submission.
    """
    if not args:
        return _show_config(ctx)

    key = args[0].lower()
    value = " ".join(args[1:]).strip()
    overrides = ctx.state.overrides

    if key == "reset":
        switching = "provider" in overrides
        if switching and ctx.supervisor.task_running:
            return _BUSY_SWITCH
        overrides.clear()
        if switching:
            _rebuild_client(ctx)
        ctx.session.trim_history()
        return "✅ Configuration reset to startup values."

    if key not in ("model", "provider", "temperature", "max_tokens", "maxtokens", "history", "history_size"):
        return f"⚠ Unknown configuration key: {key}. Keys: {_CONFIG_KEYS}."
    if not value:
        return f"⚠ Value required for key: {key}"

    if key == "model":
        overrides["model"] = value
        return f"✅ Model set to: {value}"

    if key == "provider":
        return _config_provider(ctx, value)

    if key == "temperature":
        try:
            temperature = float(value)
        except ValueError:
            temperature = -1.0
        if not 0.0 <= temperature <= 1.0:
            return "⚠ Temperature must be between 0.0 and 1.0"
        overrides["temperature"] = temperature
        return f"✅ Temperature set to: {temperature}"

    try:
        number = int(value)
    except ValueError:
        number = 0

    if key in ("max_tokens", "maxtokens"):
        if number <= 0:
            return "⚠ Max tokens must be a positive number"
        overrides["max_tokens"] = number
        return f"✅ Max tokens set to: {number}"

    if number <= 0:
        return "⚠ History size must be a positive number"
    overrides["history_max_messages"] = number
    ctx.session.trim_history()
    return f"✅ History size set to: {number}"


def cmd_models(ctx: CommandContext, args: list[str]) -> str:
    # Listing goes over the network, so it runs as a supervised task.
    superseding = ctx.supervisor.task_running
    try:
        ctx.session.submit_model_list()
    except AlreadyRunningError:
        return "A task is already running. Press Ctrl+C or use /cancel first."
    note = " (previous task cancelled)" if superseding else ""
    return f"Fetching models from {ctx.session.client.provider.value}…{note}"


def cmd_history(ctx: CommandContext, args: list[str]) -> str:
    count = len(ctx.state.history)
    ctx.session.clear_history()
    return f"Dialog history cleared ({count} messages)."


def cmd_echo(ctx: CommandContext, args: list[str]) -> str:
    return " ".join(args)


def cmd_version(ctx: CommandContext, args: list[str]) -> str:
    return f"aicoder v{__version__} (Python {platform.python_version()})"


def cmd_system(ctx: CommandContext, args: list[str]) -> str:
    return (
        "System:\n"
        f"  OS: {platform.system()} {platform.release()} ({platform.machine()})\n"
        f"  Python: {sys.version.split()[0]} ({sys.executable})\n"
        f"  Working directory: {os.getcwd()}"
    )


def cmd_exit(ctx: CommandContext, args: list[str], emit: CommandEmitter | None = None) -> str | None:
    if ctx.supervisor.task_running and emit is not None:
        emit("Cancelling the running task before exit.")
    ctx.request_quit()
    return "Bye."


registry.register("help", cmd_help, help_text="Show help: /help [ai|bash|config|models|cost].", aliases=["h", "?"])
registry.register("status", cmd_status, help_text="Show backend, model and task status.")
registry.register("cancel", cmd_cancel, help_text="Cancel the running task.")
registry.register("clear", cmd_clear, help_text="Clear the output and the dialog history.")
registry.register("cost", cmd_cost, help_text="Show token usage and estimated cost.")
registry.register("config", cmd_config, help_text="View or change settings for this session: /config [key value].")
registry.register("models", cmd_models, help_text="List the models the backend offers.")
registry.register("history", cmd_history, help_text="Clear the dialog history only.")
registry.register("echo", cmd_echo, help_text="Print the arguments.")
registry.register("version", cmd_version, help_text="Show version information.")
registry.register("system", cmd_system, help_text="Show system information.")
registry.register("exit", cmd_exit, help_text="Quit.", aliases=["quit", "q"])
