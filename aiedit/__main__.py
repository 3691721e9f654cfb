"""AIEdit CLI entry point."""

from __future__ import annotations

import argparse
import logging
import sys

logger = logging.getLogger("aiedit.cli")


def main() -> None:

    import importlib.metadata

    try:
        version = importlib.metadata.version("aiedit")
    except importlib.metadata.PackageNotFoundError:
        version = "0.1.0"

    parser = argparse.ArgumentParser(
        prog="aiedit",
        description="AIEdit — LLM-driven source editing with human approval",
    )
    # Global arguments
    parser.add_argument("--version", "-v", action="version", version=f"%(prog)s {version}")
    parser.add_argument("--config", default=None, help="Path to custom configuration file (default: ~/.aiedit/config.json)")
    parser.add_argument("--log-file", default="log/log.txt", help="Log file path (default: log/log.txt)")
    parser.add_argument("--debug", action="store_true", help="Log at DEBUG level")

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # proxy subcommand
    proxy_parser = subparsers.add_parser("proxy", help="Start the HTTP proxy server")
    proxy_parser.add_argument("--host", default=None, help="Host to bind to")
    proxy_parser.add_argument("--port", type=int, default=None, help="Port to bind to")

    # run subcommand
    run_parser = subparsers.add_parser("run", help="Run one agent task in the terminal")
    run_parser.add_argument("message", help="What the agent should do")
    run_parser.add_argument("--no-approval", action="store_true", help="Apply writes without asking")

    # status subcommand
    subparsers.add_parser("status", help="Check status of services")

    # models subcommand
    subparsers.add_parser("models", help="List models offered by the configured LLM provider")

    args = parser.parse_args()

    from aiedit.logger import setup_logging
    setup_logging(
        args.log_file,
        level=logging.DEBUG if args.debug else logging.INFO,
        stream=args.command == "proxy",
    )

    # Initialize config globally with the provided path (if any)
    from aiedit.proxy.config import get_config
    get_config(args.config)

    if args.command == "proxy":
        _run_proxy(args)
    elif args.command == "run":
        sys.exit(_run_task(args))
    elif args.command == "status":
        _run_status(args)
    elif args.command == "models":
        sys.exit(_run_models(args))
    else:
        parser.print_help()
        sys.exit(1)


def _run_proxy(args) -> None:
    """Start the proxy server."""
    import os
    import aiedit.proxy.config as _cfg_module

    # Set env vars BEFORE resetting the singleton so they are picked up
    if args.host:
        os.environ["AIEDIT_PROXY_HOST"] = args.host
    if args.port:
        os.environ["AIEDIT_PROXY_PORT"] = str(args.port)

    if args.host or args.port:
        _cfg_module.reset_config()
        _cfg_module.get_config(args.config)

    from aiedit.proxy.server import run_server
    run_server()


# Colors
G = "\033[32m"   # green
R = "\033[31m"   # red
Y = "\033[33m"   # yellow
C = "\033[36m"   # cyan
B = "\033[1m"    # bold
D = "\033[2m"    # dim
X = "\033[0m"    # reset


def _print_diff(request) -> None:
    import difflib

    diff = difflib.unified_diff(
        request.before_text.splitlines(keepends=True),
        request.after_text.splitlines(keepends=True),
        fromfile=f"{request.object_name} (current)",
        tofile=f"{request.object_name} (proposed)",
    )
    print(f"\n{B}{request.tool_name}{X} on {C}{request.object_name}{X}  {D}{request.resource_locator}{X}")
    lines = list(diff)
    if not lines:
        print(f"{D}(no changes){X}")
    for line in lines:
        if line.startswith("+") and not line.startswith("+++"):
            print(f"{G}{line.rstrip()}{X}")
        elif line.startswith("-") and not line.startswith("---"):
            print(f"{R}{line.rstrip()}{X}")
        else:
            print(line.rstrip())


def _ask_decision(request) -> None:
    """Prompt until the human accepts, rejects or supplies an edited version."""
    from pathlib import Path
    from aiedit.proxy.agent import Decision

    _print_diff(request)
    while True:
        answer = input(f"\n{Y}[a]ccept / [r]eject / [e]dit from file > {X}").strip().lower()
        if answer in ("a", "accept"):
            request.resolve(Decision.ACCEPTED)
            return
        if answer in ("r", "reject"):
            request.resolve(Decision.REJECTED)
            return
        if answer in ("e", "edit"):
            path = input("Path to the edited source: ").strip()
            try:
                edited = Path(path).expanduser().read_text(encoding="utf-8")
            except OSError as e:
                print(f"{R}Cannot read {path}: {e}{X}")
                continue
            request.resolve(Decision.EDITED, edited)
            return
        print("Please answer a, r or e.")


def _print_event(event) -> None:
    data = event.data
    if event.type == "text":
        print(f"\n{data['text']}")
    elif event.type == "tool_start":
        print(f"{D}→ {data['name']}{X}")
    elif event.type == "tool_end":
        mark = f"{R}✗{X}" if data["is_error"] else f"{G}✓{X}"
        first_line = (data["content"] or "").strip().splitlines()[:1]
        print(f"  {mark} {D}{first_line[0][:100] if first_line else ''}{X}")
    elif event.type == "round_complete":
        usage = data["usage"]
        print(f"{D}  round {data['round']}: {usage['input_tokens']} in / {usage['output_tokens']} out, "
              f"{data['duration']:.1f}s{X}")
    elif event.type == "error":
        print(f"\n{R}[!] Run failed ({data['reason']}): {data['message']}{X}")


def _run_task(args) -> int:
    """Run the agent on a worker thread; this thread renders events and asks for approvals."""
    import queue
    import threading

    from aiedit.proxy.agent import CancellationToken
    from aiedit.proxy.config import get_config
    from aiedit.proxy.services import ProxyServices

    cfg = get_config()
    services = ProxyServices.from_config(cfg, approval_required=False if args.no_approval else None)

    inbox: queue.Queue = queue.Queue()
    token = CancellationToken()
    conversation = services.conversation("cli")
    conversation.add_user_message(args.message)
    agent = services.new_loop(lambda request: inbox.put(("approval", request)))

    def work() -> None:
        result = agent.run(conversation, lambda event: inbox.put(("event", event)), token)
        inbox.put(("finished", result))

    worker = threading.Thread(target=work, name="aiedit-agent", daemon=True)
    worker.start()

    result = None
    try:
        while result is None:
            try:
                kind, item = inbox.get()
                if kind == "event":
                    services.usage.record(item, "cli")
                    _print_event(item)
                elif kind == "approval":
                    _ask_decision(item)
                else:
                    result = item
            except KeyboardInterrupt:
                print(f"\n{Y}Cancelling...{X}")
                token.cancel()
    finally:
        worker.join(timeout=5)
        services.close()

    print(f"\n{D}{services.usage.report().rstrip()}{X}")
    return 0 if result.ok else 1


def _run_status(args) -> None:
    """Check status of all services."""
    import httpx

    from aiedit.proxy.config import get_config
    cfg = get_config()

    ON = f"{G}● online{X}"
    OFF = f"{R}● offline{X}"

    print()
    print(f"  {B}LLM{X}           {cfg.llm_provider}")
    print(f"  {D}Model:{X}        {Y}{cfg.llm_model or '(provider default)'}{X}")
    print(f"  {D}Endpoint:{X}     {cfg.llm_base_url or '(provider default)'}")
    print(f"  {D}API key:{X}      {'set' if cfg.llm_api_key else f'{R}missing{X}'}")

    backend_status = OFF
    try:
        httpx.get(cfg.backend_url, timeout=5.0, headers={"Authorization": f"Bearer {cfg.backend_token}"} if cfg.backend_token else None)
        backend_status = ON
    except httpx.HTTPError:
        logger.debug(f"Backend unreachable at {cfg.backend_url}", exc_info=True)
    print()
    print(f"  {B}Backend{X}       {backend_status}")
    print(f"  {D}Endpoint:{X}     {cfg.backend_url}")

    proxy_url = f"http://{cfg.proxy_host}:{cfg.proxy_port}"
    proxy_status = OFF
    try:
        resp = httpx.get(f"{proxy_url}/api/status", timeout=5.0)
        if resp.status_code == 200:
            proxy_status = ON
    except httpx.HTTPError:
        logger.debug(f"Proxy unreachable at {proxy_url}", exc_info=True)
    print()
    print(f"  {B}Proxy{X}         {proxy_status}")
    print(f"  {D}Endpoint:{X}     {proxy_url}")
    print()


def _run_models(args) -> int:
    """Print the provider's model list, marking the active one."""
    from aiedit.proxy.config import get_config
    from aiedit.proxy.llm import LlmError, create_gateway

    cfg = get_config()
    gateway = create_gateway(cfg.to_provider_settings())
    try:
        models = gateway.list_models()
    except LlmError as e:
        print(f"{R}[!] Could not list models: {e}{X}")
        return 1
    finally:
        gateway.close()

    for name in models:
        marker = f"{G}*{X}" if name == gateway.model else " "
        print(f" {marker} {name}")
    return 0


if __name__ == "__main__":
    main()
