"""Tests for :mod:`reposync.resources`."""

from __future__ import annotations

import pytest

from reposync.resources import get_resource


def test_get_resource_returns_packaged_defaults() -> None:
    resource = get_resource("reposync.defaults.toml")

    assert resource.name == "reposync.defaults.toml"
    assert "[vector_store]" in resource.read_text(encoding="utf-8")


def test_get_resource_missing_file_raises() -> None:
    with pytest.raises(FileNotFoundError):
        get_resource("does-not-exist.toml")
