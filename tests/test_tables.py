"""Tests for logical to physical table name resolution."""

from __future__ import annotations

import logging

import pytest

from dbkit.tables import TableConfiguration, sanitize_table_name


def test_mapping_wins_over_prefix() -> None:
    tables = TableConfiguration("app_", {"users": "members"})

    assert tables.get_table_name("users") == "members"
    assert tables.get_table_name("orders") == "app_orders"


def test_identity_configuration_returns_logical_name() -> None:
    tables = TableConfiguration()

    assert tables.is_valid()
    assert tables.get_table_name("orders") == "orders"


@pytest.mark.parametrize("logical", ["users", "orders", "members", "app_orders"])
def test_resolution_is_idempotent(logical: str) -> None:
    tables = TableConfiguration("app_", {"users": "members"})

    once = tables.get_table_name(logical)

    assert tables.get_table_name(once) == once


def test_mapped_physical_name_is_a_no_op() -> None:
    tables = TableConfiguration("", {"users": "members"})

    assert tables.get_table_name("members") == "members"


def test_invalid_mapping_falls_back_to_identity(caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.ERROR):
        tables = TableConfiguration("app_", {"users": 42})

    assert not tables.is_valid()
    assert tables.prefix == ""
    assert tables.get_table_name("users") == "users"
    assert "identity configuration" in caplog.text


def test_non_string_prefix_is_invalid() -> None:
    tables = TableConfiguration(["app_"], {})

    assert not tables.is_valid()


def test_invalid_names_are_sanitized() -> None:
    tables = TableConfiguration("app_")

    assert tables.get_table_name("") == "app_unknown_table"
    assert tables.get_table_name("bad\x00name") == "app_bad_name"


def test_sanitize_table_name_prefixes_leading_digit() -> None:
    assert sanitize_table_name("1st-table") == "table_1st_table"
    assert sanitize_table_name(None) == "unknown_table"


def test_tables_property_returns_copy() -> None:
    tables = TableConfiguration("", {"users": "members"})

    tables.tables["users"] = "changed"

    assert tables.has_table("users")
    assert tables.get_table_name("users") == "members"
