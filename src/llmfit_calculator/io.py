from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import yaml


def load_mapping(path: str | Path) -> dict[str, Any]:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(str(path))

    suffix = p.suffix.lower()
    raw: Any
    if suffix in {".yaml", ".yml"}:
        try:
            raw = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
        except yaml.YAMLError as exc:
            raise ValueError(f"Failed to parse YAML: {p}") from exc
    elif suffix == ".json":
        try:
            raw = json.loads(p.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise ValueError(f"Failed to parse JSON: {p}") from exc
    else:
        raise ValueError(f"Unsupported config format: {p.suffix} (expected .json/.yaml/.yml)")

    if not isinstance(raw, dict):
        raise ValueError(f"Expected a mapping at the top level of {p}")
    return raw
