"""Jurisdiction YAML loader.

Loads report policies from ``*.yaml`` files and returns ``Jurisdiction``
dataclass instances.
"""
from __future__ import annotations

from pathlib import Path

import yaml

from spraylog.reports.jurisdiction import Jurisdiction

BUILTIN_DIR = Path(__file__).resolve().parent / "jurisdictions"

_REQUIRED_FIELDS: frozenset[str] = frozenset({
    "code",
    "name",
    "agency",
    "group_by",
    "required_fields",
})


def load_jurisdiction(path: str | Path) -> Jurisdiction:
    """Load a single jurisdiction from a YAML file.

    Raises
    ------
    ValueError
        If a required key is missing or the policy references an unknown
        grouping key or field.
    """
    path = Path(path)
    with open(path, "r", encoding="utf-8") as fh:
        data = yaml.safe_load(fh)

    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a YAML mapping, got {type(data).__name__}")

    missing = _REQUIRED_FIELDS - data.keys()
    if missing:
        raise ValueError(f"{path}: missing required fields: {sorted(missing)}")

    required_fields = data["required_fields"]
    if not isinstance(required_fields, list) or not required_fields:
        raise ValueError(f"{path}: required_fields must be a non-empty list")

    extra_keys = data.keys() - _REQUIRED_FIELDS - {"embed_photos"}
    try:
        return Jurisdiction(
            code=str(data["code"]),
            name=data["name"],
            agency=data["agency"],
            group_by=data["group_by"],
            required_fields=[str(f) for f in required_fields],
            embed_photos=bool(data.get("embed_photos", False)),
            extra={k: data[k] for k in extra_keys},
        )
    except ValueError as exc:
        raise ValueError(f"{path}: {exc}") from exc


def load_all_jurisdictions(directory: str | Path = BUILTIN_DIR) -> list[Jurisdiction]:
    """Load all ``*.yaml`` jurisdiction files from *directory*."""
    directory = Path(directory)
    jurisdictions: list[Jurisdiction] = []
    for path in sorted(directory.iterdir()):
        if path.suffix not in (".yaml", ".yml"):
            continue
        jurisdictions.append(load_jurisdiction(path))
    return jurisdictions
