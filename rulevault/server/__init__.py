"""
RuleVault Server - HTTP surface for the rule review workflow.

Run with:
    rulevault-server            # CLI entry point
    python -m rulevault.server  # Module entry point

Or programmatically:
    from rulevault.server import RuleVaultServer
    server = RuleVaultServer(port=8000)
    server.run()
"""

from .app import RuleVaultServer, create_app
from .config import ServerConfig

__all__ = [
    "create_app",
    "RuleVaultServer",
    "ServerConfig",
]
