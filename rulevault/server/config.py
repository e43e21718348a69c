"""
Server configuration for RuleVault.
"""

import json
import os
from dataclasses import dataclass, field
from typing import Any, Optional, Set


@dataclass
class ServerConfig:
    """Configuration for the RuleVault server."""

    host: str = "0.0.0.0"
    port: int = 8000

    database_url: Optional[str] = None

    api_keys: Set[str] = field(default_factory=lambda: {"dev-user-key"})

    cors_origins: list = field(default_factory=lambda: ["*"])

    debug: bool = False

    log_level: str = "info"

    oracle_url: Optional[str] = None
    oracle_api_key: Optional[str] = None
    oracle_agent_id: str = "compliance-manager"
    oracle_timeout: float = 120.0

    # Passed to the agent with every validation request
    portfolio_context: Optional[dict[str, Any]] = None

    def __post_init__(self):
        if self.database_url is None:
            self.database_url = os.environ.get("DATABASE_URL", "sqlite:///./rulevault.db")

        if self.oracle_url is None:
            self.oracle_url = os.environ.get("RULEVAULT_ORACLE_URL", "http://localhost:8001")

        if self.oracle_api_key is None:
            self.oracle_api_key = os.environ.get("RULEVAULT_ORACLE_API_KEY", "")

        env_keys = os.environ.get("RULEVAULT_API_KEYS")
        if env_keys:
            self.api_keys = set(env_keys.split(","))

    @classmethod
    def from_env(cls) -> "ServerConfig":
        """Create configuration from environment variables."""
        context = os.environ.get("RULEVAULT_PORTFOLIO_CONTEXT")
        return cls(
            host=os.environ.get("RULEVAULT_HOST", "0.0.0.0"),
            port=int(os.environ.get("RULEVAULT_PORT", "8000")),
            database_url=os.environ.get("DATABASE_URL"),
            debug=os.environ.get("RULEVAULT_DEBUG", "").lower() == "true",
            log_level=os.environ.get("RULEVAULT_LOG_LEVEL", "info"),
            oracle_url=os.environ.get("RULEVAULT_ORACLE_URL"),
            oracle_agent_id=os.environ.get("RULEVAULT_ORACLE_AGENT_ID", "compliance-manager"),
            oracle_timeout=float(os.environ.get("RULEVAULT_ORACLE_TIMEOUT", "120")),
            portfolio_context=json.loads(context) if context else None,
        )
