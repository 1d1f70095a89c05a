"""Bundled medicine catalog partitions.

Each therapeutic area ships as its own JSON file next to this module.  The
files are read verbatim; validation and the cross-partition id check happen
in :func:`medkb.services.catalog_store.build_catalog_store`.
"""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any

DATA_DIR = Path(__file__).resolve().parent

# Enumeration order of the master catalog
CATEGORY_PARTITIONS: tuple[str, ...] = (
    "analgesics",
    "antibiotics",
    "gastrointestinal",
    "cardiovascular",
    "antidiabetics",
    "respiratory_allergy",
    "vitamins",
)


def read_partition(name: str, data_dir: Path = DATA_DIR) -> list[dict[str, Any]]:
    path = data_dir / f"{name}.json"
    if not path.exists():
        raise FileNotFoundError(f"Catalog partition not found: {path}")
    rows = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(rows, list):
        raise ValueError(f"Catalog partition {name} must be a JSON array, got {type(rows).__name__}")
    return rows


def load_bundled_partitions(data_dir: Path = DATA_DIR) -> dict[str, list[dict[str, Any]]]:
    return {name: read_partition(name, data_dir) for name in CATEGORY_PARTITIONS}
