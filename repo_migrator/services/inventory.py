"""Loading of work items from an inventory file.

Supported formats, chosen by file extension:

* ``.csv`` with ``source`` and ``target`` columns and an optional ``id``
  column (the id defaults to the source reference).
* ``.json``, ``.yaml`` / ``.yml`` holding either a list of mappings or a
  mapping with an ``items`` list, using the same keys.
"""

from __future__ import annotations

import csv
import json
import logging
from pathlib import Path
from typing import Any

import yaml

from repo_migrator.exceptions import InventoryError
from repo_migrator.types import WorkItem
from repo_migrator.utils.logging import log_with_context

_SOURCE_KEYS = ("source", "source_ref")
_TARGET_KEYS = ("target", "target_ref")


def _first(row: dict[str, Any], keys: tuple[str, ...]) -> str:
    for key in keys:
        value = row.get(key)
        if value:
            return str(value).strip()
    return ""


def _read_rows(path: Path) -> list[dict[str, Any]]:
    suffix = path.suffix.lower()
    try:
        if suffix == ".csv":
            with open(path, newline="", encoding="utf-8") as f:
                return [
                    {(k or "").strip().lower(): v for k, v in row.items()}
                    for row in csv.DictReader(f)
                ]
        with open(path, encoding="utf-8") as f:
            if suffix == ".json":
                raw = json.load(f)
            elif suffix in (".yaml", ".yml"):
                raw = yaml.safe_load(f)
            else:
                raise InventoryError(
                    f"Unsupported inventory format '{suffix}' for {path}"
                )
    except (OSError, csv.Error, json.JSONDecodeError, yaml.YAMLError) as e:
        raise InventoryError(f"Failed to read inventory {path}: {e}") from e

    if isinstance(raw, dict):
        raw = raw.get("items")
    if not isinstance(raw, list) or not all(isinstance(r, dict) for r in raw):
        raise InventoryError(
            f"Inventory {path} must be a list of mappings or hold an 'items' list"
        )
    return raw


def load_work_items(path: Path) -> list[WorkItem]:
    """Load the inventory at ``path`` into pending work items.

    Rows with a repeated id are skipped with a warning; the first one wins.

    Raises:
        InventoryError: If the file is missing, unreadable, or a row lacks a
            source or target reference.
    """
    if not path.exists():
        raise InventoryError(f"Inventory file {path} not found")

    items: list[WorkItem] = []
    seen: set[str] = set()
    for line_number, row in enumerate(_read_rows(path), start=1):
        source_ref = _first(row, _SOURCE_KEYS)
        target_ref = _first(row, _TARGET_KEYS)
        if not source_ref or not target_ref:
            raise InventoryError(
                f"Inventory {path} entry {line_number} needs both a source and a target"
            )
        item_id = str(row.get("id") or source_ref).strip()
        if item_id in seen:
            log_with_context(
                logging.WARNING,
                f"Duplicate inventory entry '{item_id}' skipped",
                item=item_id,
            )
            continue
        seen.add(item_id)
        items.append(WorkItem(id=item_id, source_ref=source_ref, target_ref=target_ref))

    log_with_context(logging.INFO, f"Loaded {len(items)} work item(s) from {path}")
    return items
