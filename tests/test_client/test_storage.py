"""Persistent selection slot backends."""
from __future__ import annotations

import json
import logging

from crewscope.client.storage import JsonFileStore, MemoryStore


def test_memory_store_basic_operations():
    store = MemoryStore({"a": "1"})
    store.set("b", "2")
    store.remove("a")
    store.remove("missing")

    assert store.get("a") is None
    assert store.snapshot() == {"b": "2"}


def test_json_store_persists_across_instances(tmp_path):
    path = tmp_path / "nested" / "scope.json"
    JsonFileStore(path).set("crewscope:last_site:1:2", "7")

    assert JsonFileStore(path).get("crewscope:last_site:1:2") == "7"
    assert json.loads(path.read_text(encoding="utf-8")) == {"crewscope:last_site:1:2": "7"}
    assert not path.with_suffix(".json.tmp").exists()


def test_json_store_remove(tmp_path):
    store = JsonFileStore(tmp_path / "scope.json")
    store.set("k", "v")
    store.set("other", "x")
    store.remove("k")

    assert store.get("k") is None
    assert store.get("other") == "x"


def test_json_store_missing_file_reads_empty(tmp_path):
    store = JsonFileStore(tmp_path / "absent.json")
    assert store.get("k") is None
    store.remove("k")
    assert not (tmp_path / "absent.json").exists()


def test_json_store_ignores_corrupt_file(tmp_path, caplog):
    caplog.set_level(logging.WARNING, logger="crewscope")
    path = tmp_path / "scope.json"
    path.write_text("{not json", encoding="utf-8")
    store = JsonFileStore(path)

    assert store.get("k") is None
    assert "unreadable" in caplog.text

    store.set("k", "v")
    assert store.get("k") == "v"
