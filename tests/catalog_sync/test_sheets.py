"""Tests for sheet and link-list input loading."""

import pytest

from catalog_sync.naming import UNCATEGORIZED
from catalog_sync.sheets import (
    groups_from_links,
    groups_from_rows,
    load_source_groups,
    read_sheet_rows,
)
from core.errors.exceptions import ValidationError


class TestGroupsFromRows:
    def test_header_skipped(self):
        rows = [
            ["SKU", "Link 1", "Link 2"],
            ["SKU1", "http://x/a.jpg", "http://x/b.jpg"],
            ["SKU2", "https://x/c.jpg", None],
        ]
        groups = groups_from_rows(rows)
        assert [g.name for g in groups] == ["SKU1", "SKU2"]
        assert groups[0].references == ["http://x/a.jpg", "http://x/b.jpg"]

    def test_first_row_with_link_is_data(self):
        groups = groups_from_rows([["SKU1", "http://x/a.jpg"]])
        assert len(groups) == 1

    def test_non_link_cells_and_empty_rows_dropped(self):
        rows = [
            ["SKU1", "note", " http://x/a.jpg "],
            ["SKU2", "", None],
            [],
        ]
        groups = groups_from_rows([["name", "links"]] + rows)
        assert [(g.name, g.references) for g in groups] == [("SKU1", ["http://x/a.jpg"])]

    def test_blank_name_and_bom(self):
        groups = groups_from_rows(
            [["﻿SKU9", "http://x/a.jpg"], [None, "http://x/b.jpg"]]
        )
        assert [g.name for g in groups] == ["SKU9", UNCATEGORIZED]

    def test_empty(self):
        assert groups_from_rows([]) == []


class TestReadSheet:
    def test_csv(self, tmp_path):
        path = tmp_path / "skus.csv"
        path.write_text(
            "SKU,Link1,Link2\n"
            "SKU1,http://x/a.jpg,http://x/b.jpg\n"
            "SKU2,http://x/c.jpg,\n",
            encoding="utf-8",
        )

        groups = load_source_groups(path)

        assert [g.name for g in groups] == ["SKU1", "SKU2"]
        assert groups[1].references == ["http://x/c.jpg"]

    def test_tsv(self, tmp_path):
        path = tmp_path / "skus.tsv"
        path.write_text("SKU1\thttp://x/a.jpg\n", encoding="utf-8")

        assert read_sheet_rows(path) == [["SKU1", "http://x/a.jpg"]]

    def test_text_list(self, tmp_path):
        path = tmp_path / "links.txt"
        path.write_text("SKU1,http://x/a.jpg\tpage\n\nSKU2, http://x/b.jpg\n", encoding="utf-8")

        groups = load_source_groups(path)

        assert [(g.name, g.references) for g in groups] == [
            ("SKU1", ["http://x/a.jpg"]),
            ("SKU2", ["http://x/b.jpg"]),
        ]

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.csv"
        path.write_text("")
        assert load_source_groups(path) == []

    def test_missing_file(self, tmp_path):
        with pytest.raises(ValidationError, match="not found"):
            load_source_groups(tmp_path / "absent.csv")


class TestGroupsFromLinks:
    def test_mixed_separators(self):
        groups = groups_from_links("http://x/a.jpg, http://x/b.jpg\nhttps://x/c.jpg junk", "SKU5")
        assert len(groups) == 1
        assert groups[0].name == "SKU5"
        assert groups[0].references == ["http://x/a.jpg", "http://x/b.jpg", "https://x/c.jpg"]

    def test_no_links(self):
        assert groups_from_links("nothing here") == []

    def test_default_name(self):
        assert groups_from_links("http://x/a.jpg")[0].name == "Manual_Sync"
