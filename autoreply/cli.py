#!/usr/bin/env python3
"""CLI for running and inspecting the autoreply daemon."""
from __future__ import annotations

import argparse
import json
import sys

import requests
from pydantic import ValidationError

from autoreply import config
from autoreply.client import write_event_file
from autoreply.events import EVENT_TYPES
from autoreply.reply_store import ReplyStore


def cmd_run(args):
    """Run the daemon in the foreground."""
    from autoreply.manager import main as run_daemon
    run_daemon()
    return 0


def cmd_status(args):
    """Show daemon status from the status server."""
    s = config.settings()
    host = "127.0.0.1" if s.host in ("0.0.0.0", "::") else s.host
    url = f"http://{host}:{s.port}/status"
    try:
        resp = requests.get(url, timeout=args.timeout)
        resp.raise_for_status()
    except requests.RequestException as e:
        print(f"Daemon not reachable at {url}: {e}", file=sys.stderr)
        return 1

    data = resp.json()
    if args.json:
        print(json.dumps(data, indent=2))
        return 0
    print(f"Status:             {data['status']}")
    print(f"QR pending:         {'yes' if data['hasQR'] else 'no'}")
    print(f"Replied:            {data['repliedCount']}")
    gave_up = " (gave up)" if data.get("gaveUp") else ""
    print(f"Reconnect attempts: {data['reconnectAttempts']}{gave_up}")
    return 0


def cmd_replied(args):
    """List correspondents that already got the greeting."""
    store = ReplyStore(config.settings().replied_path)
    ids = store.all()
    if args.json:
        print(json.dumps(ids, indent=2))
        return 0
    for chat_id in ids:
        print(chat_id)
    print(f"\n{len(ids)} replied", file=sys.stderr)
    return 0


def cmd_inject(args):
    """Drop a lifecycle event into the file-drop inbox."""
    event: dict = {"type": args.type}
    if args.type == "message":
        event.update(sender_id=args.sender or "", body=args.body or "")
    elif args.type == "qr":
        event["payload"] = args.payload or ""
    elif args.type == "disconnected":
        event["reason"] = args.reason or ""
    elif args.type == "auth_failure":
        event["info"] = args.reason or ""
    elif args.type == "error":
        event["error"] = args.reason or ""

    try:
        path = write_event_file(config.settings().inbox_dir, event)
    except ValidationError as e:
        print(f"Invalid event: {e}", file=sys.stderr)
        return 1
    print(f"Queued {args.type} event: {path}")
    return 0


def main(argv=None):
    parser = argparse.ArgumentParser(
        prog="autoreply",
        description="Greet new private WhatsApp correspondents once and report session status",
    )
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # run
    subparsers.add_parser("run", help="Run the daemon in the foreground")

    # status
    status_parser = subparsers.add_parser("status", help="Show daemon status")
    status_parser.add_argument("--json", action="store_true", help="Print raw JSON")
    status_parser.add_argument("--timeout", type=float, default=3.0, help="HTTP timeout in seconds")

    # replied
    replied_parser = subparsers.add_parser("replied", help="List replied correspondents")
    replied_parser.add_argument("--json", action="store_true", help="Print as a JSON array")

    # inject
    inject_parser = subparsers.add_parser("inject", help="Drop an event into the file-drop inbox")
    inject_parser.add_argument("--type", choices=EVENT_TYPES, default="message", help="Event type")
    inject_parser.add_argument("--sender", help="Sender id (message events)")
    inject_parser.add_argument("--body", help="Message text (message events)")
    inject_parser.add_argument("--payload", help="QR payload (qr events)")
    inject_parser.add_argument("--reason", help="Reason / info / error text")

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    commands = {
        "run": cmd_run,
        "status": cmd_status,
        "replied": cmd_replied,
        "inject": cmd_inject,
    }

    return commands[args.command](args)


if __name__ == "__main__":
    sys.exit(main())
