"""Command-line entry point for tabdigest."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
import uuid
from dataclasses import fields, replace
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Sequence, TextIO, get_args, get_type_hints

from .ai.client import AIClient, ClientSettings
from .content.worker import PostPage
from .runtime import SummaryRuntime, build_runtime
from .services.job_cache import summary_key
from .services.settings import SecretVault, Settings
from .services.store import JsonFileStore, default_store_path
from .ui.summary_panel import PanelState
from .utils import logging as logging_utils
from .utils.tasks import pending_background_tasks

_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}
_FALSE_VALUES = {"0", "false", "no", "off", "disabled"}
_LOGGER = logging.getLogger(__name__)
_DEFAULT_WAIT_SECONDS = 300.0
_DRAIN_SECONDS = 2.0


def configure_logging(debug: bool = False, *, force: bool = False) -> None:
    """Configure structured logging for the command-line tool."""

    level = logging.DEBUG if debug else logging.WARNING
    logging_utils.setup_logging(level, force=force)
    _LOGGER.debug("Logging configured (level=%s)", logging.getLevelName(level))


def main(argv: Sequence[str] | None = None) -> None:
    """Entry point invoked by the `tabdigest` console script."""

    parser = _build_parser()
    args = parser.parse_args(argv)

    debug = args.debug or _env_flag("TABDIGEST_DEBUG", default=False)
    configure_logging(debug)

    try:
        overrides = _coerce_cli_overrides(args.overrides or [])
    except ValueError as exc:
        print(f"Invalid --set override: {exc}", file=sys.stderr)
        raise SystemExit(2) from exc

    store_path = Path(args.store).expanduser() if args.store else _resolve_store_path()
    store = JsonFileStore(store_path)
    runtime = build_runtime(
        store,
        vault=SecretVault(key_path=store_path.with_suffix(".key")),
        settings_overrides=overrides or None,
    )
    try:
        exit_code = asyncio.run(_dispatch(runtime, args))
    except KeyboardInterrupt:  # pragma: no cover - manual shutdown path
        _LOGGER.info("Interrupted by user.")
        exit_code = 130
    finally:
        runtime.shutdown()
    raise SystemExit(exit_code)


async def _dispatch(runtime: SummaryRuntime, args: argparse.Namespace) -> int:
    handlers = {
        "configure": _cmd_configure,
        "settings": _cmd_settings,
        "summarize": _cmd_summarize,
        "status": _cmd_status,
        "clear": _cmd_clear,
        "models": _cmd_models,
    }
    try:
        return await handlers[args.command](runtime, args)
    finally:
        await _drain_background_tasks()


async def _cmd_configure(runtime: SummaryRuntime, args: argparse.Namespace, *, stream: TextIO | None = None) -> int:
    current = await runtime.settings_store.load()
    updates: Dict[str, Any] = {}
    if args.base_url is not None:
        updates["base_url"] = args.base_url
    if args.model is not None:
        updates["model"] = args.model
    if args.api_key is not None:
        updates["api_key"] = args.api_key
    settings = replace(current, **updates)
    await runtime.settings_store.save(settings)
    destination = stream or sys.stdout
    destination.write(f"Saved. Requests will go to {settings.chat_completions_url} (model={settings.model_name}).\n")
    return 0


async def _cmd_settings(runtime: SummaryRuntime, args: argparse.Namespace, *, stream: TextIO | None = None) -> int:
    settings = await runtime.settings_store.load()
    payload = {
        "settings": runtime.settings_store.serialize(settings),
        "meta": {
            "configured": await runtime.settings_store.is_configured(),
            "store": str(getattr(runtime.store, "path", "")),
            "environment_variables": _active_env_overrides(),
        },
    }
    _write_json(payload, stream)
    return 0


async def _cmd_summarize(runtime: SummaryRuntime, args: argparse.Namespace, *, stream: TextIO | None = None) -> int:
    destination = stream or sys.stdout
    try:
        body = _read_post_body(args)
    except OSError as exc:
        print(f"Unable to read post text: {exc}", file=sys.stderr)
        return 2

    key = args.key or uuid.uuid4().hex[:12]
    url = args.url or f"https://www.reddit.com/r/local/comments/{key}/"
    runtime.host.open_context(url, page=PostPage(title=args.title or "", body=body), context_id=key)

    loop = asyncio.get_running_loop()
    outcome: asyncio.Future[PanelState] = loop.create_future()
    armed = False

    def _on_change(state: PanelState) -> None:
        if not armed or outcome.done():
            return
        if state.summary is not None or state.error is not None:
            outcome.set_result(state)

    panel = runtime.create_panel(on_change=_on_change)
    await panel.start()
    armed = True
    try:
        started = await panel.request_summary()
        if not started:
            print(panel.state.notice or "Summary could not be started.", file=sys.stderr)
            return 2
        try:
            state = await asyncio.wait_for(outcome, timeout=args.wait)
        except asyncio.TimeoutError:
            print(f"Timed out after {args.wait:.0f}s; the job is still cached as loading under {summary_key(key)}.", file=sys.stderr)
            return 1
    finally:
        panel.close()

    if state.error is not None:
        print(state.error_text, file=sys.stderr)
        return 1
    destination.write(f"{state.summary}\n")
    return 0


async def _cmd_status(runtime: SummaryRuntime, args: argparse.Namespace, *, stream: TextIO | None = None) -> int:
    entry = await runtime.cache.read_job(args.key)
    payload: Dict[str, Any] = {"key": str(args.key)}
    if entry is None:
        payload["status"] = "idle"
    else:
        payload.update(entry.to_record())
    _write_json(payload, stream)
    return 0


async def _cmd_clear(runtime: SummaryRuntime, args: argparse.Namespace, *, stream: TextIO | None = None) -> int:
    await runtime.cache.clear_job(args.key)
    return 0


async def _cmd_models(runtime: SummaryRuntime, args: argparse.Namespace, *, stream: TextIO | None = None) -> int:
    settings = await runtime.settings_store.load()
    client = AIClient(
        ClientSettings(
            base_url=settings.api_base_url,
            model=settings.model_name,
            api_key=settings.api_key,
            request_timeout=settings.request_timeout,
        )
    )
    try:
        models = await client.list_models()
    except Exception as exc:
        print(f"Could not list models from {settings.api_base_url}: {exc}", file=sys.stderr)
        return 1
    finally:
        await client.aclose()
    destination = stream or sys.stdout
    for model in models:
        destination.write(f"{model}\n")
    return 0


async def _drain_background_tasks() -> None:
    tasks = [task for task in pending_background_tasks() if task is not asyncio.current_task()]
    if not tasks:
        return
    _LOGGER.debug("Waiting for %s background task(s) before exit.", len(tasks))
    _, pending = await asyncio.wait(tasks, timeout=_DRAIN_SECONDS)
    for task in pending:
        task.cancel()


def _read_post_body(args: argparse.Namespace) -> str:
    if args.file:
        if args.file == "-":
            return sys.stdin.read()
        return Path(args.file).expanduser().read_text(encoding="utf-8")
    return args.text or ""


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tabdigest",
        description="Summarize posts through a local OpenAI-compatible endpoint with tab-scoped caching.",
    )
    parser.add_argument(
        "--store",
        metavar="PATH",
        help="Override the default ~/.tabdigest/storage.json path.",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging.")
    parser.add_argument(
        "--set",
        dest="overrides",
        metavar="KEY=VALUE",
        action="append",
        default=[],
        help="Override persisted settings for this invocation (repeatable).",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    configure = commands.add_parser("configure", help="Save endpoint settings.")
    configure.add_argument("--base-url", help="LM Studio base URL, with or without a trailing /v1.")
    configure.add_argument("--model", help="Model identifier to request.")
    configure.add_argument("--api-key", help="API key for endpoints that require one (stored encrypted).")

    commands.add_parser("settings", help="Print effective settings with secrets redacted.")

    summarize = commands.add_parser("summarize", help="Summarize a post and wait for the result.")
    source = summarize.add_mutually_exclusive_group(required=True)
    source.add_argument("--file", metavar="PATH", help="Read the post body from PATH ('-' for stdin).")
    source.add_argument("--text", help="Post body text.")
    summarize.add_argument("--title", help="Post title.")
    summarize.add_argument("--key", help="Context key to cache the job under (defaults to a random id).")
    summarize.add_argument("--url", help="URL of the post page (defaults to a synthetic post URL).")
    summarize.add_argument(
        "--wait",
        type=float,
        default=_DEFAULT_WAIT_SECONDS,
        metavar="SECONDS",
        help="How long to wait for the job to finish.",
    )

    status = commands.add_parser("status", help="Show the cached job for a context key.")
    status.add_argument("--key", required=True)

    clear = commands.add_parser("clear", help="Delete the cached job for a context key.")
    clear.add_argument("--key", required=True)

    commands.add_parser("models", help="List models advertised by the configured endpoint.")
    return parser


def _resolve_store_path() -> Path:
    override = os.environ.get("TABDIGEST_STORE_PATH")
    return Path(override).expanduser() if override else default_store_path()


def _env_flag(name: str, *, default: bool = False) -> bool:
    raw = os.environ.get(name)
    return default if raw is None else _parse_bool(raw, strict=False)


def _coerce_cli_overrides(items: Sequence[str]) -> Dict[str, Any]:
    """Turn repeated ``--set KEY=VALUE`` entries into typed :class:`Settings` values."""

    hints = get_type_hints(Settings)
    known = {field.name for field in fields(Settings)}
    overrides: Dict[str, Any] = {}
    for entry in items:
        name, separator, raw = entry.partition("=")
        name = name.strip()
        if not separator:
            raise ValueError(f"Override '{entry}' must use KEY=VALUE syntax.")
        if not name:
            raise ValueError("Override is missing a field name.")
        if name not in known:
            raise ValueError(f"Unknown setting '{name}'. Choose from: {', '.join(sorted(known))}.")
        overrides[name] = _coerce_value(hints[name], raw.strip())
    return overrides


def _coerce_value(annotation: Any, raw: str) -> Any:
    members = [arg for arg in get_args(annotation) if arg is not type(None)] or [annotation]
    if len(members) < len(get_args(annotation)) and raw.lower() in {"none", "null", ""}:
        return None
    parser = _VALUE_PARSERS.get(members[0], str)
    try:
        return parser(raw)
    except ValueError as exc:
        raise ValueError(f"Cannot coerce '{raw}' to {getattr(members[0], '__name__', members[0])}.") from exc


def _parse_bool(raw: str, *, strict: bool = True) -> bool:
    lowered = raw.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES or not strict:
        return False
    raise ValueError(f"Cannot coerce '{raw}' to a boolean.")


_VALUE_PARSERS: Dict[Any, Callable[[str], Any]] = {
    bool: _parse_bool,
    int: lambda raw: int(raw, 10),
    float: float,
    str: str,
}


def _write_json(payload: Mapping[str, Any], stream: TextIO | None = None) -> None:
    destination = stream or sys.stdout
    json.dump(payload, destination, indent=2)
    destination.write("\n")


def _active_env_overrides() -> list[str]:
    return sorted(name for name in os.environ if name.startswith("TABDIGEST_"))
