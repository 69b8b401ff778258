"""Helpers for loading catalog and resolver configuration mappings."""
from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Sequence

import json
import tomllib

import yaml


MappingLoader = Callable[[Any], Any]


FILE_LOADERS: Dict[str, MappingLoader] = {
    ".toml": tomllib.load,
    ".json": json.load,
    ".yaml": yaml.safe_load,
    ".yml": yaml.safe_load,
}
"""Mapping of file suffixes to loader callables."""


def supported_suffixes() -> List[str]:
    return sorted(FILE_LOADERS)


def load_config_file(path: Path) -> Mapping[str, Any]:
    """Load and decode a configuration mapping from ``path``.

    TOML files are opened in binary mode as required by :mod:`tomllib`; the
    other formats are read as UTF-8 text.  An empty YAML document decodes to
    an empty mapping.
    """

    suffix = path.suffix.lower()
    loader = FILE_LOADERS.get(suffix)
    if loader is None:
        supported = ", ".join(supported_suffixes())
        raise ValueError(
            f"Unsupported configuration file extension: {suffix or '<none>'}. Supported: {supported}"
        )

    if suffix == ".toml":
        with path.open("rb") as handle:
            data = loader(handle)
    else:
        with path.open("r", encoding="utf-8") as handle:
            data = loader(handle)

    if data is None:
        return {}
    if not isinstance(data, Mapping):
        raise TypeError(f"Configuration file '{path}' must contain a mapping at the root")
    return data


def merge_mappings(base: Mapping[str, Any], overlay: Mapping[str, Any]) -> Dict[str, Any]:
    """Deep merge ``overlay`` on top of ``base``; scalars and lists are replaced."""

    result: Dict[str, Any] = dict(base)
    for key, value in overlay.items():
        existing = result.get(key)
        if isinstance(existing, Mapping) and isinstance(value, Mapping):
            result[key] = merge_mappings(existing, value)
        else:
            result[key] = value
    return result


def normalize_string_list(value: Any, *, field_name: str | None = None) -> List[str]:
    """Coerce ``value`` into a list of trimmed, non-empty strings."""

    label = f"{field_name} " if field_name else ""
    if value is None:
        return []

    if isinstance(value, str):
        text = value.strip()
        return [text] if text else []

    if isinstance(value, Sequence) and not isinstance(value, bytes):
        items: List[str] = []
        for item in value:
            if not isinstance(item, str):
                raise TypeError(f"{label}entries must be strings")
            text = item.strip()
            if text:
                items.append(text)
        return items

    raise TypeError(f"{label}must be a string or sequence of strings")


def reject_unknown_keys(data: Mapping[str, Any], allowed: set[str], *, label: str) -> None:
    unknown = {str(key) for key in data.keys() if str(key) not in allowed}
    if unknown:
        joined = ", ".join(sorted(unknown))
        raise ValueError(f"{label} contains unknown keys: {joined}")


__all__ = [
    "FILE_LOADERS",
    "MappingLoader",
    "load_config_file",
    "merge_mappings",
    "normalize_string_list",
    "reject_unknown_keys",
    "supported_suffixes",
]
