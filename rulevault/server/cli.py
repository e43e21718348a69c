"""
Command-line interface for the RuleVault server.
"""

import argparse
import json
import sys
from typing import Any, Optional, Sequence


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rulevault-server",
        description="RuleVault Server - review, approve and version extracted compliance rules",
    )

    server = parser.add_argument_group("server")
    server.add_argument("--host", default="0.0.0.0", help="Host to bind to (default: 0.0.0.0)")
    server.add_argument("--port", type=int, default=8000, help="Port to bind to (default: 8000)")
    server.add_argument(
        "--database-url",
        default=None,
        help="Version history database (default: $DATABASE_URL or sqlite:///./rulevault.db)",
    )
    server.add_argument(
        "--api-keys",
        default=None,
        help="Comma-separated keys accepted in X-API-Key (default: dev-user-key)",
    )
    server.add_argument("--debug", action="store_true", help="Enable FastAPI debug mode")
    server.add_argument(
        "--log-level",
        default="info",
        choices=["debug", "info", "warning", "error"],
        help="Log level (default: info)",
    )

    agent = parser.add_argument_group("compliance agent")
    agent.add_argument(
        "--oracle-url",
        default=None,
        help="Base URL of the compliance agent (default: $RULEVAULT_ORACLE_URL)",
    )
    agent.add_argument(
        "--oracle-api-key",
        default=None,
        help="Key sent to the agent (default: $RULEVAULT_ORACLE_API_KEY)",
    )
    agent.add_argument(
        "--oracle-agent-id",
        default="compliance-manager",
        help="Agent id sent with every agent request (default: compliance-manager)",
    )
    agent.add_argument(
        "--oracle-timeout",
        type=float,
        default=120.0,
        help="Seconds to wait for an extraction or validation (default: 120)",
    )
    agent.add_argument(
        "--portfolio-context",
        default=None,
        metavar="FILE",
        help="JSON file with portfolio holdings passed along with every validation",
    )

    parser.add_argument("--version", action="version", version="%(prog)s 0.1.0")
    return parser


def load_portfolio_context(path: Optional[str]) -> Optional[dict[str, Any]]:
    if path is None:
        return None
    with open(path, encoding="utf-8") as f:
        context = json.load(f)
    if not isinstance(context, dict):
        raise ValueError(f"{path} must contain a JSON object")
    return context


def main(argv: Optional[Sequence[str]] = None):
    """Main entry point for the CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    api_keys = set(args.api_keys.split(",")) if args.api_keys else None
    try:
        portfolio_context = load_portfolio_context(args.portfolio_context)
    except (OSError, ValueError) as e:
        parser.error(f"--portfolio-context: {e}")

    from .app import RuleVaultServer

    server = RuleVaultServer(
        host=args.host,
        port=args.port,
        database_url=args.database_url,
        api_keys=api_keys,
        oracle_url=args.oracle_url,
        oracle_api_key=args.oracle_api_key,
        oracle_agent_id=args.oracle_agent_id,
        oracle_timeout=args.oracle_timeout,
        portfolio_context=portfolio_context,
        debug=args.debug,
        log_level=args.log_level,
    )
    config = server.config

    print(f"""
RuleVault Server v0.1.0
  Listening: http://{config.host}:{config.port}
  Database:  {config.database_url}
  Agent:     {config.oracle_url} ({config.oracle_agent_id})

API Documentation: http://{config.host}:{config.port}/docs

Press Ctrl+C to stop the server.
""")

    try:
        server.run()
    except KeyboardInterrupt:
        print("\nServer stopped.")
        sys.exit(0)


if __name__ == "__main__":
    main()
