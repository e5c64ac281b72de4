"""Monitor configuration loader."""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from hookwatch.config import get_settings

logger = logging.getLogger(__name__)

CONFIG_PATH = Path(get_settings().MONITOR_CONFIG_PATH)
DOCKER_SECRETS_PATH = Path("/run/secrets")

# Hard limits imposed by the upstream hooks API
UPSTREAM_MAX_PAGE_SIZE = 50
UPSTREAM_MAX_OFFSET = 1000

DEFAULT_TOKEN_REF = "${SANITY_API_TOKEN}"


@dataclass
class UpstreamSettings:
    """Upstream hooks API endpoints and credential reference."""

    token_ref: str = DEFAULT_TOKEN_REF
    api_version: str = "v2021-10-04"
    attempts_url: str = (
        "https://api.sanity.io/{api_version}/hooks/projects/{project_id}/{webhook_id}/attempts"
    )
    messages_url: str = (
        "https://{project_id}.api.sanity.io/{api_version}/hooks/{webhook_id}/messages"
    )

    def build_attempts_url(self, project_id: str, webhook_id: str) -> str:
        return self.attempts_url.format(
            api_version=self.api_version, project_id=project_id, webhook_id=webhook_id
        )

    def build_messages_url(self, project_id: str, webhook_id: str) -> str:
        return self.messages_url.format(
            api_version=self.api_version, project_id=project_id, webhook_id=webhook_id
        )


@dataclass
class FetchSettings:
    """Bounds applied to every upstream fetch."""

    page_size: int = UPSTREAM_MAX_PAGE_SIZE
    max_pages: int = 3
    max_offset: int = UPSTREAM_MAX_OFFSET
    concurrency: int = 5
    request_timeout_seconds: int = 30
    attempts_window_hours: int = 24
    messages_window_hours: int = 6
    older_window_hours: int = 12


@dataclass
class MonitorTarget:
    """Project/webhook pair monitored when a request names none."""

    project_id: str = ""
    webhook_id: str = ""


@dataclass
class MonitorConfig:
    """Complete monitor configuration."""

    upstream: UpstreamSettings = field(default_factory=UpstreamSettings)
    fetch: FetchSettings = field(default_factory=FetchSettings)
    default_target: MonitorTarget = field(default_factory=MonitorTarget)


class MonitorConfigLoader:
    """Loads and manages the monitor configuration."""

    _config: MonitorConfig | None = None

    @classmethod
    def load(cls) -> MonitorConfig:
        """Load configuration from config/monitor.yaml."""
        if not CONFIG_PATH.exists():
            logger.info(
                "Monitor configuration not found at %s. Using defaults.",
                CONFIG_PATH,
            )
            cls._config = MonitorConfig()
            return cls._config

        try:
            with open(CONFIG_PATH) as f:
                raw_config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            logger.error("Failed to parse monitor configuration: %s", e)
            cls._config = MonitorConfig()
            return cls._config

        upstream_data = raw_config.get("upstream", {}) or {}
        defaults = UpstreamSettings()
        upstream = UpstreamSettings(
            token_ref=upstream_data.get("token", defaults.token_ref),
            api_version=upstream_data.get("api_version", defaults.api_version),
            attempts_url=upstream_data.get("attempts_url", defaults.attempts_url),
            messages_url=upstream_data.get("messages_url", defaults.messages_url),
        )

        target_data = raw_config.get("defaults", {}) or {}
        target = MonitorTarget(
            project_id=str(target_data.get("project_id", "") or ""),
            webhook_id=str(target_data.get("webhook_id", "") or ""),
        )

        cls._config = MonitorConfig(
            upstream=upstream,
            fetch=cls._parse_fetch(raw_config.get("fetch", {}) or {}),
            default_target=target,
        )

        logger.info("Loaded monitor configuration from %s", CONFIG_PATH)
        return cls._config

    @classmethod
    def get_config(cls) -> MonitorConfig:
        """Get current configuration, loading if necessary."""
        if cls._config is None:
            cls.load()
        return cls._config  # type: ignore

    @classmethod
    def resolve_token(cls, config: MonitorConfig | None = None) -> str | None:
        """Resolve the upstream API token for a configuration (default: current)."""
        config = config or cls.get_config()
        return cls._resolve_secret(config.upstream.token_ref)

    @classmethod
    def _parse_fetch(cls, data: dict[str, Any]) -> FetchSettings:
        """Parse fetch bounds, clamping values the upstream would reject."""
        defaults = FetchSettings()
        values: dict[str, int] = {}
        for name in (
            "page_size",
            "max_pages",
            "max_offset",
            "concurrency",
            "request_timeout_seconds",
            "attempts_window_hours",
            "messages_window_hours",
            "older_window_hours",
        ):
            raw = data.get(name, getattr(defaults, name))
            try:
                value = int(raw)
            except (TypeError, ValueError):
                logger.warning("Invalid fetch setting %s=%r, using default", name, raw)
                value = getattr(defaults, name)
            if value < 1:
                logger.warning("Fetch setting %s must be positive, got %d", name, value)
                value = getattr(defaults, name)
            values[name] = value

        if values["page_size"] > UPSTREAM_MAX_PAGE_SIZE:
            logger.warning(
                "page_size %d exceeds upstream limit, clamping to %d",
                values["page_size"],
                UPSTREAM_MAX_PAGE_SIZE,
            )
            values["page_size"] = UPSTREAM_MAX_PAGE_SIZE
        if values["max_offset"] > UPSTREAM_MAX_OFFSET:
            logger.warning(
                "max_offset %d exceeds upstream limit, clamping to %d",
                values["max_offset"],
                UPSTREAM_MAX_OFFSET,
            )
            values["max_offset"] = UPSTREAM_MAX_OFFSET

        return FetchSettings(**values)

    @classmethod
    def _resolve_secret(cls, secret_ref: str) -> str | None:
        """Resolve a secret from Docker Secrets or an environment variable."""
        match = re.match(r"^\$\{(\w+)\}$", secret_ref or "")
        if not match:
            if not secret_ref:
                return None
            # Literal value (not recommended but allowed)
            logger.warning(
                "Upstream token is a literal value. Use ${VAR_NAME} or Docker Secrets instead."
            )
            return secret_ref.strip() or None

        var_name = match.group(1)

        # Try Docker Secrets first (preferred)
        secret_file = DOCKER_SECRETS_PATH / var_name.lower()
        if secret_file.exists():
            try:
                return secret_file.read_text().strip() or None
            except OSError as e:
                logger.warning("Failed to read Docker Secret %s: %s", secret_file, e)

        env_value = os.environ.get(var_name, "").strip()
        return env_value or None
