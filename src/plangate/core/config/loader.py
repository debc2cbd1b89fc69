from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from plangate.core.config.schema import GatewayConfig, ProvidersConfig

# PLANGATE_<PROVIDER>_<SUFFIX> -> field of that provider's entry.
_PROVIDER_ENV_FIELDS = {"MODEL": "model", "BASE_URL": "base_url"}


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    content = yaml.safe_load(path.read_text(encoding="utf-8"))
    if content is None:
        return {}
    if not isinstance(content, dict):
        raise ValueError(f"Config file must contain a mapping: {path}")
    return content


def _provider_env_prefix(provider_id: str) -> str:
    return "PLANGATE_" + provider_id.strip().upper().replace("-", "_").replace(".", "_") + "_"


def _apply_env_overrides(merged: dict[str, Any]) -> dict[str, Any]:
    providers = merged.setdefault("providers", {})

    env_provider = os.getenv("PLANGATE_PROVIDER")
    if env_provider:
        providers["selected"] = env_provider

    env_fallback = os.getenv("PLANGATE_FALLBACK_ORDER")
    if env_fallback is not None:
        providers["fallback_order"] = [name.strip() for name in env_fallback.split(",") if name.strip()]

    entries = providers.get("entries")
    if entries is None:
        entries = {k: v.model_dump(exclude_none=True) for k, v in ProvidersConfig().entries.items()}
    for provider_id in list(entries):
        prefix = _provider_env_prefix(provider_id)
        for suffix, field_name in _PROVIDER_ENV_FIELDS.items():
            value = os.getenv(prefix + suffix)
            if value:
                entry = dict(entries.get(provider_id) or {})
                entry[field_name] = value
                entries[provider_id] = entry
                providers["entries"] = entries

    env_environment = os.getenv("PLANGATE_ENVIRONMENT")
    if env_environment:
        merged["environment"] = env_environment

    env_log_level = os.getenv("PLANGATE_LOG_LEVEL")
    if env_log_level:
        merged.setdefault("telemetry", {})["log_level"] = env_log_level.strip().upper()
    return merged


def load_gateway_config(
    defaults_path: str | Path = "config/defaults.yaml",
    instance_path: str | Path | None = None,
) -> GatewayConfig:
    """Defaults YAML, then the instance YAML, then ``PLANGATE_*`` variables.

    Besides ``PLANGATE_CONFIG_FILE`` the recognised variables are
    ``PLANGATE_PROVIDER``, ``PLANGATE_FALLBACK_ORDER`` (comma separated),
    ``PLANGATE_ENVIRONMENT``, ``PLANGATE_LOG_LEVEL`` and, per configured
    provider, ``PLANGATE_<ID>_MODEL`` and ``PLANGATE_<ID>_BASE_URL``.
    """
    defaults = _load_yaml(Path(defaults_path))

    explicit_instance = instance_path or os.getenv("PLANGATE_CONFIG_FILE")
    instance = _load_yaml(Path(explicit_instance)) if explicit_instance else {}

    merged = _apply_env_overrides(_deep_merge(defaults, instance))

    try:
        return GatewayConfig.model_validate(merged)
    except ValidationError as exc:
        raise ValueError(f"Invalid plangate configuration: {exc}") from exc
