from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from rydora_gateway.errors import ConfigurationError


def load_yaml_mapping(path: str | Path, *, label: str) -> dict[str, Any]:
    """Read a YAML document that must be a mapping; empty files yield ``{}``."""
    resolved = Path(path)
    try:
        text = resolved.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigurationError(f"Cannot read {label} '{resolved}': {exc.strerror}") from exc
    try:
        payload = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Invalid YAML in {label} '{resolved}': {exc}") from exc
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ConfigurationError(f"Expected a YAML mapping in {label} '{resolved}'.")
    return payload
