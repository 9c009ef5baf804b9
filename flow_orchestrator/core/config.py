"""
Centralized Configuration Module

Provides a unified interface for accessing configuration values through
Dapr's Configuration building block, with environment variable fallback.

Configuration resolution order:
1. Dapr Configuration store (if a sidecar is advertised)
2. Environment variables (a local .env file is loaded first)
3. Default values

Usage:
    from flow_orchestrator.core.config import config

    max_steps = config.MAX_ITERATIONS
    token = config.WHATSAPP_ACCESS_TOKEN
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Any

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

load_dotenv()

# Dapr Configuration store component name
CONFIG_STORE_NAME = os.environ.get("DAPR_CONFIG_STORE", "flowconfig")

# Fields never echoed back by the /config endpoint
SECRET_FIELDS = frozenset({
    "WHATSAPP_ACCESS_TOKEN",
    "WHATSAPP_VERIFY_TOKEN",
    "GOOGLE_SHEETS_API_KEY",
    "OPENAI_API_KEY",
    "ANTHROPIC_API_KEY",
    "RESEND_API_KEY",
    "DATABASE_URL",
})


@dataclass
class OrchestratorConfig:
    """Centralized configuration for the flow orchestrator."""

    # Server settings
    PORT: int = 8080
    HOST: str = "0.0.0.0"
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "text"

    # Engine
    MAX_ITERATIONS: int = 50
    SYSTEM_TIMEZONE: str = "UTC"
    SERVER_BASE_URL: str = "http://localhost:8080"
    FLOW_DEFINITIONS_DIR: str = ""
    HTTP_TIMEOUT_SECONDS: float = 30.0

    # WhatsApp Cloud API
    WHATSAPP_API_VERSION: str = "v17.0"
    WHATSAPP_PHONE_NUMBER_ID: str = ""
    WHATSAPP_ACCESS_TOKEN: str = ""
    WHATSAPP_VERIFY_TOKEN: str = ""

    # Integrations
    GOOGLE_SHEETS_API_KEY: str = ""
    OPENAI_API_KEY: str = ""
    ANTHROPIC_API_KEY: str = ""
    RESEND_API_KEY: str = ""
    FROM_EMAIL: str = "noreply@example.com"
    DATABASE_URL: str = ""

    # Dapr sidecar connection
    DAPR_HOST: str = "localhost"
    DAPR_HTTP_PORT: str = "3500"
    STATE_STORE_NAME: str = "flowstatestore"
    PERSIST_EXECUTIONS: bool = False

    # Tracks whether Dapr Configuration was used
    _loaded_from_dapr: bool = field(default=False, repr=False)

    def load(self) -> None:
        """
        Load configuration from Dapr Configuration store, then env vars.

        The Dapr Configuration API is only consulted when a sidecar port is
        present in the environment; otherwise env vars and defaults apply.
        """
        dapr_values = self._load_from_dapr()
        self._apply_values(dapr_values)
        logger.info(
            f"[Config] Loaded (dapr={self._loaded_from_dapr}): "
            f"MAX_ITERATIONS={self.MAX_ITERATIONS}, "
            f"SYSTEM_TIMEZONE={self.SYSTEM_TIMEZONE}, "
            f"WHATSAPP_API_VERSION={self.WHATSAPP_API_VERSION}"
        )

    def _load_from_dapr(self) -> dict[str, str]:
        """Try to load configuration from Dapr Configuration store."""
        if not (os.environ.get("DAPR_HTTP_PORT") or os.environ.get("DAPR_GRPC_PORT")):
            return {}

        try:
            from dapr.clients import DaprClient

            keys = [
                "MAX_ITERATIONS",
                "SYSTEM_TIMEZONE",
                "SERVER_BASE_URL",
                "WHATSAPP_API_VERSION",
                "WHATSAPP_PHONE_NUMBER_ID",
                "FROM_EMAIL",
                "STATE_STORE_NAME",
            ]

            with DaprClient() as client:
                resp = client.get_configuration(
                    store_name=CONFIG_STORE_NAME,
                    keys=keys,
                )

            values: dict[str, str] = {}
            if resp and resp.items:
                for key, item in resp.items.items():
                    if item.value:
                        values[key] = item.value

            if values:
                self._loaded_from_dapr = True
                logger.info(
                    f"[Config] Loaded {len(values)} values from Dapr Configuration store"
                )
            return values

        except Exception as e:
            logger.debug(f"[Config] Dapr Configuration store unavailable: {e}")
            return {}

    def _apply_values(self, dapr_values: dict[str, str]) -> None:
        """Apply values from Dapr config, then fill gaps from env vars."""
        for attr, default in self.defaults().items():
            # Priority: Dapr config > env var > default
            raw = dapr_values.get(attr) or os.environ.get(attr)
            if raw is None or raw == "":
                setattr(self, attr, default)
                continue
            setattr(self, attr, _coerce(raw, default))

    @staticmethod
    def defaults() -> dict[str, Any]:
        return {
            name: f.default
            for name, f in OrchestratorConfig.__dataclass_fields__.items()
            if not name.startswith("_")
        }

    def public_view(self) -> dict[str, Any]:
        """Config values safe to expose over HTTP."""
        out: dict[str, Any] = {}
        for name in self.defaults():
            value = getattr(self, name)
            if name in SECRET_FIELDS:
                out[name] = bool(value)
            else:
                out[name] = value
        out["loadedFromDapr"] = self._loaded_from_dapr
        return out


def _coerce(raw: str, default: Any) -> Any:
    if isinstance(default, bool):
        return raw.strip().lower() in ("1", "true", "yes", "on")
    if isinstance(default, int):
        try:
            return int(raw)
        except ValueError:
            logger.warning(f"[Config] Invalid integer value '{raw}', using {default}")
            return default
    if isinstance(default, float):
        try:
            return float(raw)
        except ValueError:
            logger.warning(f"[Config] Invalid number value '{raw}', using {default}")
            return default
    return raw


# Singleton instance - loaded once at import time
config = OrchestratorConfig()
config.load()
