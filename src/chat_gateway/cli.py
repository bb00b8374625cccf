"""
Command-line interface for chat-gateway.

Provides commands to run the gateway, list its routes, check global channel
names against the topology grammar and sign upstream requests by hand.
"""
from __future__ import annotations

import argparse
import logging
import sys


def cmd_serve(args: argparse.Namespace) -> int:
    """Run the gateway with uvicorn."""
    import uvicorn

    from .app import create_app
    from .config import get_settings

    settings = get_settings()
    logging.basicConfig(
        level=args.log_level or settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(create_app(settings), host=args.host, port=args.port)
    return 0


def cmd_routes(args: argparse.Namespace) -> int:
    """Print the route table."""
    from .router import DECLARED_ROUTES, ROUTES

    methods = {
        route: sorted(key.method for key in ROUTES if key.route == route)
        for route in DECLARED_ROUTES
    }

    if args.format == "markdown":
        print("| Route | Methods | Gated |")
        print("|-------|---------|-------|")
        for route, allowed in methods.items():
            print(f"| {route} | {', '.join(allowed) or '-'} | {_gating(route, allowed)} |")
    else:
        for route, allowed in methods.items():
            print(f"{route:12} {', '.join(allowed) or '-':12} {_gating(route, allowed)}")

    return 0


def _gating(route: str, methods: list[str]) -> str:
    if not methods:
        return "404"
    if route == "user_state":
        return "POST open, GET gated"
    return "gated"


def cmd_check_channel(args: argparse.Namespace) -> int:
    """Check global channel names against the reserved patterns."""
    from .topology import find_reserved_pattern, validate_global_channel

    rejected = 0
    for name in args.channels:
        if validate_global_channel(name):
            print(f"✓ {name}")
            continue
        rejected += 1
        pattern = find_reserved_pattern(name) if name else None
        reason = f"collides with {pattern.name}" if pattern else "empty"
        print(f"❌ {name!r}: {reason}")

    return 1 if rejected else 0


def cmd_sign(args: argparse.Namespace) -> int:
    """Print a signed upstream URL."""
    from .config import get_settings
    from .signing import RequestSigner
    from .upstream import SettingsVault

    settings = get_settings()
    options = {}
    for pair in args.param or []:
        key, sep, value = pair.partition("=")
        if not sep:
            print(f"Error: Invalid parameter '{pair}'. Use format 'key=value'")
            return 1
        options[key] = value

    secret = args.secret or settings.secret_key.get_secret_value()
    if not secret:
        print("Error: No secret key. Pass --secret or set CHAT_GATEWAY_SECRET_KEY")
        return 1

    signer = RequestSigner(
        subscribe_key=args.subscribe_key or settings.subscribe_key,
        publish_key=args.publish_key or settings.publish_key,
        vault=SettingsVault({settings.secret_name: secret}),
        secret_name=settings.secret_name,
        origin=settings.origin,
    )
    if args.timestamp is not None:
        signer.clock = lambda: args.timestamp

    signed = signer.prepare(args.path, options, secret)
    print(signed.url)
    return 0


def main() -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="chat-gateway",
        description="ChatEngine access gateway utilities",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # serve
    serve = subparsers.add_parser("serve", help="Run the gateway")
    serve.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    serve.add_argument("--port", type=int, default=8000, help="Bind port (default: 8000)")
    serve.add_argument("--log-level", help="Log level (default: from settings)")
    serve.set_defaults(func=cmd_serve)

    # routes
    routes = subparsers.add_parser("routes", help="List routes and methods")
    routes.add_argument("--format", choices=["text", "markdown"], default="text")
    routes.set_defaults(func=cmd_routes)

    # check-channel
    check = subparsers.add_parser(
        "check-channel", help="Check global channel names against reserved patterns"
    )
    check.add_argument("channels", nargs="+", help="Global channel names")
    check.set_defaults(func=cmd_check_channel)

    # sign
    sign = subparsers.add_parser("sign", help="Sign an upstream request")
    sign.add_argument("--path", required=True, help="Request path")
    sign.add_argument("--param", "-p", action="append", help="Query parameter (key=value)")
    sign.add_argument("--timestamp", type=int, help="Fixed unix timestamp")
    sign.add_argument("--secret", help="Secret key (default: from settings)")
    sign.add_argument("--subscribe-key", help="Subscribe key (default: from settings)")
    sign.add_argument("--publish-key", help="Publish key (default: from settings)")
    sign.set_defaults(func=cmd_sign)

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return 1

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
