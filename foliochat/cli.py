#!/usr/bin/env python3
"""
FolioChat CLI.

    COMMAND         ALIASES         WHAT IT DOES
    -------         -------         ----------------------------------
    serve           start           Start the chat proxy server
    chat            talk            Chat with a running proxy from the terminal
    probe           models          Check which models in the chain answer
    tap             log             Show recent wire-log entries
"""

import argparse
import asyncio

from foliochat import __version__

PROBE_PROMPT = 'Say "Hello" and nothing else.'


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def cmd_serve(args):
    """Start the FolioChat proxy server."""
    import uvicorn
    from foliochat.config import get_config

    cfg = get_config()
    host = args.host or cfg["server"]["host"]
    port = args.port or cfg["server"]["port"]

    print(f"  FolioChat v{__version__} on {host}:{port}")
    print(f"  Models: {' → '.join(cfg['backend'].get('models') or [])}")
    print()

    uvicorn.run(
        "foliochat.main:app",
        host=host,
        port=port,
        reload=args.reload,
        log_level="info",
    )


def _render(store) -> None:
    if store.error:
        print(f"  ✗  {store.error}")
        if store.failed_message and not store.is_rate_limited:
            print("     (type /retry to send it again)")
        return
    if store.messages and store.messages[-1].role == "assistant":
        print(f"\n  ◀ {store.messages[-1].content}\n")
    for i, suggestion in enumerate(store.suggestions, 1):
        print(f"     {i}. {suggestion}")


async def _chat_loop(endpoint: str, timeout: float, storage_path: str | None):
    from foliochat.conversation import ConversationStore
    from foliochat.storage.blob_store import SQLiteBlobStore, StorageError

    storage = None
    if storage_path:
        try:
            storage = SQLiteBlobStore(storage_path)
        except StorageError as e:
            print(f"  [history disabled: {e}]")
    async with ConversationStore(endpoint=endpoint, timeout=timeout, storage=storage) as store:
        for message in store.messages:
            prefix = "▶" if message.role == "user" else "◀"
            print(f"  {prefix} {message.content}")

        while True:
            try:
                line = (await asyncio.to_thread(input, "  you> ")).strip()
            except EOFError:
                break
            if not line:
                continue
            if line in ("/quit", "/exit"):
                break
            if line == "/clear":
                store.clear_history()
                print("  [history cleared]")
                continue
            if line == "/retry":
                await store.retry_last_message()
            elif line.isdigit() and 0 < int(line) <= len(store.suggestions):
                await store.send_message(store.suggestions[int(line) - 1])
            elif store.is_rate_limited:
                print(f"  ✗  {store.error}")
                continue
            else:
                await store.send_message(line)
            _render(store)


def cmd_chat(args):
    """Interactive chat through the conversation store."""
    from foliochat.config import get_config

    client_cfg = get_config().get("client", {})
    endpoint = args.url or client_cfg.get("endpoint", "http://localhost:8788/api/chat")
    storage_path = None if args.no_history else client_cfg.get("storage_path", "./data/history.db")

    print(f"  Connected to {endpoint}  (/retry, /clear, /quit)")
    print()
    try:
        asyncio.run(_chat_loop(endpoint, float(client_cfg.get("timeout", 30)), storage_path))
    except KeyboardInterrupt:
        print()
    print("  [bye]")


async def _probe(models: list[str] | None):
    from foliochat.config import get_config
    from foliochat.proxy import ChatProxy

    proxy = ChatProxy.from_config(get_config())
    if not proxy.configured:
        print("  ✗  GEMINI_API_KEY is not set")
        return

    body = {
        "contents": [{"role": "user", "parts": [{"text": PROBE_PROMPT}]}],
        "generationConfig": {"maxOutputTokens": 10},
    }
    backends = [b for b in proxy.chain.backends if not models or b.name in models]
    for backend in backends:
        resp = await backend.forward(body)
        if resp.ok and resp.content.strip():
            print(f"  ✓  {backend.name:<24} HTTP {resp.status_code}  {resp.latency_ms:6.0f}ms  {resp.content.strip()!r}")
        else:
            status = f"HTTP {resp.status_code}" if resp.status_code else "no response"
            print(f"  ✗  {backend.name:<24} {status}  {resp.latency_ms:6.0f}ms  {resp.error[:80]}")


def cmd_probe(args):
    """Send a tiny request to each model in the chain."""
    asyncio.run(_probe(args.model))


def cmd_tap(args):
    """Print the last wire-log entries."""
    from foliochat.config import get_config
    from foliochat.wiretap import format_entry, read_tail

    log_path = args.log or get_config().get("wiretap", {}).get("path", "./data/wire.jsonl")
    entries = read_tail(log_path, last_n=args.last)
    if not entries:
        print(f"  (no wire entries in {log_path})")
        return
    for entry in entries:
        print(format_entry(entry, raw=args.raw))


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
        prog="foliochat",
        description="FolioChat — portfolio chat proxy.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--version", "-V", action="version",
        version=f"foliochat {__version__}",
    )

    sub = parser.add_subparsers(dest="command", metavar="<command>")

    def setup_serve(p):
        p.add_argument("--host", default=None, help="Override listen host")
        p.add_argument("--port", "-p", type=int, default=None, help="Override listen port")
        p.add_argument("--reload", action="store_true", help="Auto-reload on code changes (dev)")

    _add_command(sub, ["serve", "start"], "Start the chat proxy server", cmd_serve, setup_serve)

    def setup_chat(p):
        p.add_argument("--url", "-u", default=None, help="Chat endpoint (default: from config)")
        p.add_argument("--no-history", action="store_true", help="Don't load or persist history")

    _add_command(sub, ["chat", "talk"], "Chat with a running proxy", cmd_chat, setup_chat)

    def setup_probe(p):
        p.add_argument("--model", "-m", action="append", default=None,
                       help="Only probe this model (can specify multiple times)")

    _add_command(sub, ["probe", "models"], "Check which models in the chain answer", cmd_probe, setup_probe)

    def setup_tap(p):
        p.add_argument("--log", default=None, help="Path to wire.jsonl (default: from config)")
        p.add_argument("--last", "-n", type=int, default=20, help="Show last N entries")
        p.add_argument("--raw", action="store_true", help="Raw JSONL output, no formatting")

    _add_command(sub, ["tap", "log"], "Show recent wire-log entries", cmd_tap, setup_tap)

    return parser


def main():
    parser = build_parser()
    args = parser.parse_args()
    if not args.command:
        parser.print_help()
        return

    args.func(args)


if __name__ == "__main__":
    main()
