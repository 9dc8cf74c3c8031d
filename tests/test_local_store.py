#!/usr/bin/env python3
"""
Unit tests for the file-backed key/document store
"""
import pytest
from pathlib import Path
import sys

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from goldwatch.core.local_store import LocalStore, StorageError


def test_missing_key_loads_none(tmp_path):
    assert LocalStore(tmp_path).load("gm_chart_history_v1") is None


def test_save_then_load(tmp_path):
    store = LocalStore(tmp_path / "nested")
    store.save("gm_chart_history_v1", {"v": 1, "points": [{"t": "a", "p": 1.5}]})
    assert store.load("gm_chart_history_v1") == {"v": 1, "points": [{"t": "a", "p": 1.5}]}
    assert not list((tmp_path / "nested").glob("*.tmp"))


def test_save_overwrites(tmp_path):
    store = LocalStore(tmp_path)
    store.save("k", {"n": 1})
    store.save("k", {"n": 2})
    assert store.load("k") == {"n": 2}


def test_corrupt_document_raises(tmp_path):
    (tmp_path / "k.json").write_text("{not json")
    with pytest.raises(StorageError):
        LocalStore(tmp_path).load("k")


def test_unsafe_key_rejected(tmp_path):
    with pytest.raises(StorageError, match="Invalid storage key"):
        LocalStore(tmp_path).save("../escape", {})


def test_write_failure_raises(tmp_path):
    blocker = tmp_path / "file"
    blocker.write_text("x")
    with pytest.raises(StorageError):
        LocalStore(blocker / "sub").save("k", {"n": 1})


def test_unserializable_document_leaves_no_temp_file(tmp_path):
    store = LocalStore(tmp_path)
    store.save("k", {"n": 1})
    with pytest.raises(StorageError):
        store.save("k", {"bad": object()})
    assert not list(tmp_path.glob("*.tmp"))
    assert store.load("k") == {"n": 1}


def test_delete(tmp_path):
    store = LocalStore(tmp_path)
    store.save("k", {"n": 1})
    store.delete("k")
    store.delete("k")
    assert store.load("k") is None
