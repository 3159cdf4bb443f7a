#!/usr/bin/env python3
"""
Lumai CLI.

    COMMAND         ALIASES         WHAT IT DOES
    -------         -------         ----------------------------------
    serve           start, up       Start the HTTP API
    chat            ask             Run one chat turn and print the reply
    history         log             Print a user's stored conversation
    flash           info, config    Show config and storage stats at a glance
    tap             tail            Print recent wire log entries
"""

import argparse
import asyncio
import json
import sys

from lumai import __version__


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def cmd_serve(args):
    """Start the Lumai HTTP API."""
    import uvicorn
    from lumai.config import get_config

    cfg = get_config()
    host = args.host or cfg.get("server", {}).get("host", "0.0.0.0")
    port = args.port or cfg.get("server", {}).get("port", 4000)

    print(f"  Lumai {__version__} on {host}:{port}")
    print(f"  Model: {cfg.get('completion', {}).get('model') or '(default)'}")
    print()

    uvicorn.run(
        "lumai.main:app",
        host=host,
        port=port,
        reload=args.reload,
        log_level="info",
    )


def cmd_chat(args):
    """One chat turn against the configured model."""
    from lumai.config import get_config
    from lumai.errors import ApiError, CompletionError
    from lumai.main import _setup_logging, build_assistant, make_wire_log

    cfg = get_config()
    _setup_logging({"logging": {"level": "WARNING"}} if not args.verbose else cfg)
    wire = make_wire_log(cfg)
    service = build_assistant(cfg, wire=wire)

    try:
        result = asyncio.run(service.chat(args.user, args.name, " ".join(args.message)))
    except ApiError as e:
        print(f"  Error ({e.status_code}): {e.message}", file=sys.stderr)
        sys.exit(1)
    except CompletionError as e:
        print(f"  Assistant unavailable: {e}", file=sys.stderr)
        sys.exit(2)
    finally:
        if wire:
            wire.close()

    if args.json:
        print(json.dumps(result, indent=2, ensure_ascii=False))
        return

    print(result["message"]["content"])
    calls = result["trace"]["function_calls"]
    if calls:
        print()
        for call in calls:
            print(f"  ⚡ {call['name']} [{call['status']}] {json.dumps(call['arguments'])}")


def cmd_history(args):
    """Print the stored turns for one user."""
    from lumai.config import get_config
    from lumai.storage import make_store

    state = make_store(get_config()).get(args.user)
    if state.summary:
        print("  Summary")
        for line in state.summary.splitlines():
            print(f"  │ {line}")
        print()
    if not state.messages:
        print(f"  No stored messages for {args.user}")
        return
    for m in state.messages:
        stamp = m.created_at.strftime("%Y-%m-%d %H:%M")
        content = m.content.replace("\n", " ")
        print(f"  {stamp} {m.role:>9}: {content}")


def cmd_flash(args):
    """Show config and storage stats."""
    from lumai.config import get_config
    from lumai.storage import SQLiteConversationStore, make_store

    cfg = get_config()
    c_cfg = cfg.get("completion", {})
    a_cfg = cfg.get("assistant", {})
    s_cfg = cfg.get("storage", {})

    print(f"  Lumai {__version__}")
    print("  Configuration")
    print(f"  ├─ Endpoint:  {c_cfg.get('api_url') or '(not configured)'}")
    print(f"  ├─ Model:     {c_cfg.get('model') or c_cfg.get('default_model') or '(default)'}")
    print(f"  ├─ Depth:     {a_cfg.get('max_tool_depth', 5)} (retries {a_cfg.get('retry_count', 1)})")
    print(f"  ├─ Storage:   {s_cfg.get('backend', 'sqlite')} {s_cfg.get('sqlite_path', '')}")
    print(f"  └─ Wiretap:   {'on' if cfg.get('wiretap', {}).get('enabled') else 'off'}")

    store = make_store(cfg)
    if isinstance(store, SQLiteConversationStore):
        stats = store.get_stats()
        print()
        print("  Storage")
        print(f"  ├─ Users:     {stats['users']}")
        print(f"  ├─ Messages:  {stats['messages']}")
        roles = stats["by_role"]
        print(f"  └─ By role:   {', '.join(f'{k}={v}' for k, v in sorted(roles.items())) or '-'}")


def cmd_tap(args):
    """Print recent wire entries."""
    from lumai.config import get_config
    from lumai.wiretap import format_entry, read_wire

    log_path = args.log or get_config().get("wiretap", {}).get("path", "./data/wire.jsonl")
    entries = read_wire(log_path, last_n=args.last, role_filter=args.role)
    if not entries:
        print(f"  No wire entries at {log_path}")
        return
    for entry in entries:
        print(json.dumps(entry, ensure_ascii=False) if args.raw else format_entry(entry))


# ---------------------------------------------------------------------------
# Parser with aliases
# ---------------------------------------------------------------------------

def _add_command(subparsers, names, help_text, func, setup_fn=None):
    """Register a command under its name and aliases."""
    p = subparsers.add_parser(names[0], help=help_text, aliases=names[1:])
    p.set_defaults(func=func)
    if setup_fn:
        setup_fn(p)
    return p


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="lumai",
        description="Lumai wellness assistant",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--version", "-V", action="version",
        version=f"lumai {__version__}",
    )

    sub = parser.add_subparsers(dest="command", metavar="<command>")

    def setup_serve(p):
        p.add_argument("--host", default=None, help="Override listen host")
        p.add_argument("--port", "-p", type=int, default=None, help="Override listen port")
        p.add_argument("--reload", action="store_true", help="Auto-reload on code changes (dev)")
    _add_command(sub, ["serve", "start", "up"], "Start the HTTP API", cmd_serve, setup_serve)

    def setup_chat(p):
        p.add_argument("message", nargs="+", help="Message to send")
        p.add_argument("--user", "-u", required=True, help="User id")
        p.add_argument("--name", default=None, help="Display name")
        p.add_argument("--json", action="store_true", help="Print the full response as JSON")
        p.add_argument("--verbose", "-v", action="store_true", help="Log at the configured level")
    _add_command(sub, ["chat", "ask"], "Run one chat turn", cmd_chat, setup_chat)

    def setup_history(p):
        p.add_argument("--user", "-u", required=True, help="User id")
    _add_command(sub, ["history", "log"], "Print stored conversation", cmd_history, setup_history)

    _add_command(sub, ["flash", "info", "config"], "Show config and stats", cmd_flash)

    def setup_tap(p):
        p.add_argument("--log", default=None, help="Path to wire.jsonl (default: from config)")
        p.add_argument("--last", "-n", type=int, default=20, help="Show last N entries")
        p.add_argument("--role", "-r", choices=["user", "assistant", "tool"], default=None, help="Filter by role")
        p.add_argument("--raw", action="store_true", help="Raw JSONL output")
    _add_command(sub, ["tap", "tail"], "Print recent wire entries", cmd_tap, setup_tap)

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return
    args.func(args)


if __name__ == "__main__":
    main()
