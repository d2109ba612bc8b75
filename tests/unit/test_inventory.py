"""Unit tests for inventory loading."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
import yaml

from repo_migrator.exceptions import InventoryError
from repo_migrator.services.inventory import load_work_items
from repo_migrator.types import WorkItemStatus


class TestCsv:
    def test_loads_rows(self, tmp_path: Path) -> None:
        path = tmp_path / "repos.csv"
        path.write_text(
            "id,source,target\n"
            "api,contoso/Platform/api,contoso-gh/api\n"
            "web,contoso/Platform/web,contoso-gh/web\n"
        )

        items = load_work_items(path)

        assert [i.id for i in items] == ["api", "web"]
        assert items[0].source_ref == "contoso/Platform/api"
        assert items[0].target_ref == "contoso-gh/api"
        assert all(i.status == WorkItemStatus.PENDING for i in items)

    def test_headers_are_case_insensitive_and_id_optional(self, tmp_path: Path) -> None:
        path = tmp_path / "repos.csv"
        path.write_text("Source_Ref , Target_Ref\ncontoso/P/api,gh/api\n")

        items = load_work_items(path)

        assert items[0].id == "contoso/P/api"
        assert items[0].target_ref == "gh/api"

    def test_duplicate_ids_are_skipped(self, tmp_path: Path) -> None:
        path = tmp_path / "repos.csv"
        path.write_text("id,source,target\napi,a/b/api,gh/api\napi,a/b/api2,gh/api2\n")

        items = load_work_items(path)

        assert len(items) == 1
        assert items[0].target_ref == "gh/api"

    def test_missing_target(self, tmp_path: Path) -> None:
        path = tmp_path / "repos.csv"
        path.write_text("source,target\na/b/api,\n")

        with pytest.raises(InventoryError, match="entry 1"):
            load_work_items(path)


class TestStructured:
    def test_json_list(self, tmp_path: Path) -> None:
        path = tmp_path / "repos.json"
        path.write_text(json.dumps([{"source": "a/b/api", "target": "gh/api"}]))

        assert load_work_items(path)[0].id == "a/b/api"

    def test_yaml_items_key(self, tmp_path: Path) -> None:
        path = tmp_path / "repos.yaml"
        path.write_text(
            yaml.safe_dump(
                {"items": [{"id": "api", "source_ref": "a/b/api", "target_ref": "gh/api"}]}
            )
        )

        items = load_work_items(path)

        assert items[0].id == "api"

    def test_wrong_shape(self, tmp_path: Path) -> None:
        path = tmp_path / "repos.yml"
        path.write_text("just a string\n")

        with pytest.raises(InventoryError, match="list of mappings"):
            load_work_items(path)

    def test_invalid_json(self, tmp_path: Path) -> None:
        path = tmp_path / "repos.json"
        path.write_text("[{")

        with pytest.raises(InventoryError, match="Failed to read"):
            load_work_items(path)


class TestErrors:
    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(InventoryError, match="not found"):
            load_work_items(tmp_path / "missing.csv")

    def test_unsupported_format(self, tmp_path: Path) -> None:
        path = tmp_path / "repos.txt"
        path.write_text("a/b/api gh/api\n")

        with pytest.raises(InventoryError, match="Unsupported"):
            load_work_items(path)
