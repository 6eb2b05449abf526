#!/usr/bin/env python3
"""
parley CLI.

    COMMAND         ALIASES         WHAT IT DOES
    -------         -------         ----------------------------------
    serve           start, up       Start the chat server
    token           session         Create a session token for a user
    agent           new-agent       Create an agent (model + prompt bundle)
    stats           info            Show stored data and token totals
    models          catalog         List chat and image models
"""

import argparse
import sys

__version__ = "0.1.0"


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def _load(args) -> dict:
    from parley.config import get_config, load_config

    if args.config:
        return load_config(args.config)
    return get_config()


def _store(cfg: dict):
    from parley.storage.sqlite_store import SQLiteStore
    return SQLiteStore(cfg["storage"]["sqlite_path"])


def cmd_serve(args):
    """Start the chat server."""
    import uvicorn

    cfg = _load(args)
    host = args.host or cfg["server"]["host"]
    port = args.port or cfg["server"]["port"]

    providers = cfg.get("backend", {}).get("providers", [])
    print(f"  parley {__version__} on {host}:{port}")
    print(f"  Backends: {', '.join(p.get('name', '?') for p in providers) or '(none)'}")
    print()

    uvicorn.run(
        "parley.main:create_app",
        factory=True,
        host=host,
        port=port,
        reload=args.reload,
        log_level="info",
    )


def cmd_token(args):
    """Create a session token usable as a bearer token or parley_session cookie."""
    cfg = _load(args)
    token = _store(cfg).create_session(args.user, args.workspace)
    print(token)


def cmd_agent(args):
    """Create an agent for a user/workspace."""
    from parley.storage.models import Agent

    cfg = _load(args)
    prefix = cfg.get("chat", {}).get("agent_prefix", "agent/")
    agent = Agent(
        user_id=args.user,
        workspace_id=args.workspace,
        name=args.name,
        description=args.description,
        model=args.model,
        prompt=args.prompt,
        temperature=args.temperature,
    )
    _store(cfg).save_agent(agent)
    print(f"  Created agent '{agent.name}' → select it as {prefix}{agent.id}")


def cmd_stats(args):
    """Show stats at a glance."""
    cfg = _load(args)
    stats = _store(cfg).get_stats()
    tokens = stats["tokens"]

    print("  Storage")
    print(f"  ├─ SQLite:        {cfg['storage']['sqlite_path']}")
    print(f"  ├─ Chats:         {stats['chats']}")
    print(f"  ├─ Messages:      {stats['messages']}")
    print(f"  ├─ User msgs:     {stats['user_messages']}")
    print(f"  ├─ Asst msgs:     {stats['assistant_messages']}")
    print(f"  └─ Agents:        {stats['agents']}")

    if tokens["total"] > 0:
        print()
        print("  Tokens")
        print(f"  ├─ Input:     {tokens['input']:,}")
        print(f"  ├─ Output:    {tokens['output']:,}")
        print(f"  └─ Total:     {tokens['total']:,}")

    if stats["models"]:
        print()
        print("  Models")
        items = list(stats["models"].items())
        for i, (model, data) in enumerate(items):
            branch = "└─" if i == len(items) - 1 else "├─"
            print(f"  {branch} {model}: {data['messages']} msgs, {data['tokens']:,} tokens")


def cmd_models(args):
    """List the model catalog."""
    from parley.catalog import list_catalog

    catalog = list_catalog(_load(args))
    print("  Chat models")
    for m in catalog["chat_models"]:
        print(f"  ├─ {m['id']:<22} → {m['provider_model']}")
    print()
    print("  Image models")
    for m in catalog["image_models"]:
        print(f"  ├─ {m['id']:<34} tool {m['tool_name']}")


# ---------------------------------------------------------------------------
# Parser
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
        prog="parley",
        description="parley: multi-tenant AI chat service.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--version", "-V", action="version",
        version=f"parley {__version__}",
    )
    parser.add_argument("--config", "-c", default=None, help="Path to config.yaml")

    sub = parser.add_subparsers(dest="command", metavar="<command>")

    def setup_serve(p):
        p.add_argument("--host", default=None, help="Bind address (default: from config)")
        p.add_argument("--port", "-p", type=int, default=None, help="Port (default: from config)")
        p.add_argument("--reload", action="store_true", help="Auto-reload on code changes")

    _add_command(sub, ["serve", "start", "up"], "Start the chat server", cmd_serve, setup_serve)

    def setup_token(p):
        p.add_argument("--user", "-u", required=True, help="User id")
        p.add_argument("--workspace", "-w", required=True, help="Workspace id")

    _add_command(sub, ["token", "session"], "Create a session token", cmd_token, setup_token)

    def setup_agent(p):
        p.add_argument("--user", "-u", required=True, help="Owner user id")
        p.add_argument("--workspace", "-w", required=True, help="Workspace id")
        p.add_argument("--name", "-n", required=True, help="Agent name")
        p.add_argument("--model", "-m", required=True, help="Model id the agent runs on")
        p.add_argument("--prompt", default="", help="System prompt")
        p.add_argument("--description", default="", help="Short description")
        p.add_argument("--temperature", type=float, default=0.5)

    _add_command(sub, ["agent", "new-agent"], "Create an agent", cmd_agent, setup_agent)

    _add_command(sub, ["stats", "info"], "Show stored data and token totals", cmd_stats)
    _add_command(sub, ["models", "catalog"], "List chat and image models", cmd_models)

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 1

    args.func(args)
    return 0


if __name__ == "__main__":
    sys.exit(main())
