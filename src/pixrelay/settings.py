"""Service configuration loaded from environment variables.

Every knob has a default matching the production deployment, so an empty
environment yields a working (if unauthenticated) relay.
"""

from __future__ import annotations

import json
import os
from collections.abc import Mapping
from dataclasses import dataclass, field

DEFAULT_N8N_WEBHOOK_URL = "https://n8n.flowzap.fun/webhook/atendimento-n8n"
DEFAULT_EVOLUTION_BASE_URL = "https://evo.flowzap.fun"

# Kirvano offer ids (plans) -> product label
DEFAULT_PRODUCT_MAPPING: dict[str, str] = {
    "5c1f6390-8999-4740-b16f-51380e1097e4": "CS",
    "0f393085-4960-4c71-9efe-faee8ba51d3f": "CS",
    "e2282b4c-878c-4bcd-becb-1977dfd6d2b8": "CS",
    "5288799c-d8e3-48ce-a91d-587814acdee5": "FAB",
}

# Instance names only; tokens come from EVOLUTION_INSTANCES or EVOLUTION_API_KEY
DEFAULT_INSTANCES = ",".join(f"GABY{n:02d}" for n in range(1, 10))


@dataclass(frozen=True)
class Instance:
    """An Evolution API instance (a WhatsApp sending identity).

    Attributes:
        name: Instance name, used in Evolution URLs and sent to N8N.
        token: Instance API token. Empty when only the global key is known.
    """

    name: str
    token: str = ""


@dataclass(frozen=True)
class Settings:
    """Relay configuration. Durations are in seconds."""

    n8n_webhook_url: str = DEFAULT_N8N_WEBHOOK_URL
    n8n_timeout: float = 15.0
    evolution_base_url: str = DEFAULT_EVOLUTION_BASE_URL
    evolution_api_key: str = ""
    instances: tuple[Instance, ...] = ()
    liveness_check: bool = False
    liveness_timeout: float = 5.0
    liveness_cache_ttl: float = 30.0
    pix_timeout: float = 7 * 60
    cleanup_interval: float = 10 * 60
    data_retention: float = 24 * 60 * 60
    idempotency_ttl: float = 5 * 60
    history_max_entries: int = 1000
    product_mapping: Mapping[str, str] = field(
        default_factory=lambda: dict(DEFAULT_PRODUCT_MAPPING)
    )
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if not self.instances:
            object.__setattr__(self, "instances", parse_instances(DEFAULT_INSTANCES))


def parse_instances(raw: str) -> tuple[Instance, ...]:
    """Parse ``NAME:TOKEN,NAME:TOKEN`` (token optional) into instances.

    Raises:
        ValueError: If an entry has an empty name.
    """
    instances = []
    for chunk in raw.split(","):
        chunk = chunk.strip()
        if not chunk:
            continue
        name, _, token = chunk.partition(":")
        name = name.strip()
        if not name:
            raise ValueError(f"Invalid instance entry: {chunk!r}")
        instances.append(Instance(name=name, token=token.strip()))
    return tuple(instances)


def _env_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None
    if value < 0:
        raise ValueError(f"{name} must not be negative")
    return value


def _env_bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() not in {"0", "false", "no", "off"}


def _env_mapping(env: Mapping[str, str], name: str) -> dict[str, str]:
    raw = env.get(name, "").strip()
    if not raw:
        return dict(DEFAULT_PRODUCT_MAPPING)
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValueError(f"{name} must be a JSON object: {e}") from None
    if not isinstance(parsed, dict):
        raise ValueError(f"{name} must be a JSON object")
    return {str(k): str(v) for k, v in parsed.items()}


def load_settings(env: Mapping[str, str] | None = None) -> Settings:
    """Build Settings from the environment.

    Args:
        env: Mapping to read from. Defaults to ``os.environ``.

    Returns:
        Frozen Settings instance.

    Raises:
        ValueError: If a numeric, JSON or instance variable is malformed.
    """
    if env is None:
        env = os.environ

    instances_raw = env.get("EVOLUTION_INSTANCES", "").strip()
    instances = parse_instances(instances_raw or DEFAULT_INSTANCES)
    if not instances:
        raise ValueError("EVOLUTION_INSTANCES must list at least one instance")

    return Settings(
        n8n_webhook_url=env.get("N8N_WEBHOOK_URL", "").strip() or DEFAULT_N8N_WEBHOOK_URL,
        n8n_timeout=_env_float(env, "N8N_TIMEOUT_SECONDS", 15.0),
        evolution_base_url=(
            env.get("EVOLUTION_BASE_URL", "").strip() or DEFAULT_EVOLUTION_BASE_URL
        ).rstrip("/"),
        evolution_api_key=env.get("EVOLUTION_API_KEY", "").strip(),
        instances=instances,
        liveness_check=_env_bool(env, "INSTANCE_LIVENESS_CHECK", False),
        liveness_timeout=_env_float(env, "LIVENESS_TIMEOUT_SECONDS", 5.0),
        liveness_cache_ttl=_env_float(env, "LIVENESS_CACHE_SECONDS", 30.0),
        pix_timeout=_env_float(env, "PIX_TIMEOUT_SECONDS", 7 * 60),
        cleanup_interval=_env_float(env, "CLEANUP_INTERVAL_SECONDS", 10 * 60),
        data_retention=_env_float(env, "DATA_RETENTION_SECONDS", 24 * 60 * 60),
        idempotency_ttl=_env_float(env, "IDEMPOTENCY_TTL_SECONDS", 5 * 60),
        history_max_entries=int(_env_float(env, "HISTORY_MAX_ENTRIES", 1000)),
        product_mapping=_env_mapping(env, "PRODUCT_MAPPING"),
        log_level=env.get("LOG_LEVEL", "INFO").strip() or "INFO",
    )
