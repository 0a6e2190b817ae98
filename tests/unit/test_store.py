"""
Tests for the profile store.
"""

import errno
import json
from pathlib import Path
from unittest.mock import patch

import pytest

from packsync_py.errors import CorruptStore, ProfileNotFound
from packsync_py.managers import Manager
from packsync_py.store import Profile, ProfileStore, parse_timestamp


def make_profile(packages: dict, saved_at: str = "2024-01-01T00:00:00.000Z") -> Profile:
    return Profile(
        node_version="v18.17.0",
        manager_version="9.6.7",
        manager=Manager.NPM,
        packages=packages,
        saved_at=saved_at,
        platform="linux",
        arch="x64",
    )


def test_load_without_document_is_empty(tmp_path: Path) -> None:
    assert ProfileStore(tmp_path / "missing").load() == {}


def test_load_empty_document_is_empty(tmp_path: Path) -> None:
    store = ProfileStore(tmp_path)
    store.path.write_text("  \n")
    assert store.load() == {}


def test_round_trip_preserves_packages(tmp_path: Path) -> None:
    store = ProfileStore(tmp_path)
    packages = {"typescript": "5.4.0", "@angular/cli": "17.1.0", "eslint": "9.0.0"}
    store.upsert("work", make_profile(packages))

    loaded = ProfileStore(tmp_path).load()["work"]
    assert loaded.packages == packages
    assert list(loaded.packages) == list(packages)
    assert loaded.package_count == 3
    assert loaded.manager is Manager.NPM

    data = json.loads(store.path.read_text())
    assert data["work"]["packageCount"] == 3
    assert data["work"]["savedAt"] == "2024-01-01T00:00:00.000Z"


def test_first_save_creates_no_backup(tmp_path: Path) -> None:
    store = ProfileStore(tmp_path)
    store.upsert("one", make_profile({"a": "1.0.0"}))
    assert not store.backup_path.exists()


def test_save_backs_up_previous_document(tmp_path: Path) -> None:
    store = ProfileStore(tmp_path)
    store.upsert("one", make_profile({"a": "1.0.0"}))
    first = store.path.read_bytes()
    store.upsert("two", make_profile({"b": "2.0.0"}))
    second = store.path.read_bytes()
    assert store.backup_path.read_bytes() == first

    store.upsert("three", make_profile({"c": "3.0.0"}))
    assert store.backup_path.read_bytes() == second
    backups = [p for p in tmp_path.iterdir() if p.name.endswith(".backup")]
    assert backups == [store.backup_path]
    assert not (tmp_path / "packages.json.tmp").exists()


def test_failed_write_keeps_document_and_removes_temp_file(tmp_path: Path) -> None:
    store = ProfileStore(tmp_path)
    store.save({"a": make_profile({"x": "1.0.0"})})
    before = store.path.read_bytes()
    real_write_bytes = Path.write_bytes

    def disk_full(self: Path, data: bytes) -> int:
        real_write_bytes(self, data[:10])
        raise OSError(errno.ENOSPC, "No space left on device")

    with patch.object(Path, "write_bytes", disk_full):
        with pytest.raises(OSError):
            store.save({"b": make_profile({"y": "2.0.0"})})

    assert store.path.read_bytes() == before
    assert not (tmp_path / "packages.json.tmp").exists()


def test_corrupt_document_raises(tmp_path: Path) -> None:
    store = ProfileStore(tmp_path)
    store.path.write_text("{ this is not json")
    with pytest.raises(CorruptStore):
        store.load()
    # not auto-repaired
    assert store.path.read_text() == "{ this is not json"


def test_non_object_document_raises(tmp_path: Path) -> None:
    store = ProfileStore(tmp_path)
    store.path.write_text("[1, 2, 3]")
    with pytest.raises(CorruptStore):
        store.load()


def test_malformed_profile_raises(tmp_path: Path) -> None:
    store = ProfileStore(tmp_path)
    store.path.write_text(json.dumps({"bad": {"packages": {"eslint": 9}}}))
    with pytest.raises(CorruptStore, match="profile 'bad'"):
        store.load()


def test_legacy_keys_are_accepted(tmp_path: Path) -> None:
    store = ProfileStore(tmp_path)
    store.path.write_text(
        json.dumps(
            {
                "legacy": {
                    "nodeVersion": "v16.20.0",
                    "npmVersion": "8.19.4",
                    "packageManager": "yarn",
                    "packages": {"nodemon": "3.0.1"},
                    "savedAt": "2023-05-01T10:00:00.000Z",
                    "packagesCount": 1,
                    "platform": "darwin",
                    "arch": "arm64",
                }
            }
        )
    )
    profile = store.load()["legacy"]
    assert profile.manager is Manager.YARN
    assert profile.manager_version == "8.19.4"
    assert profile.packages == {"nodemon": "3.0.1"}


def test_get_missing_raises(tmp_path: Path) -> None:
    with pytest.raises(ProfileNotFound):
        ProfileStore(tmp_path).get("nope")


def test_delete(tmp_path: Path) -> None:
    store = ProfileStore(tmp_path)
    store.upsert("one", make_profile({"a": "1.0.0"}))
    store.upsert("two", make_profile({"b": "2.0.0"}))
    removed = store.delete("one")
    assert removed.packages == {"a": "1.0.0"}
    assert list(store.load()) == ["two"]


def test_delete_missing_does_not_write(tmp_path: Path) -> None:
    store = ProfileStore(tmp_path)
    store.upsert("one", make_profile({"a": "1.0.0"}))
    before = store.path.read_bytes()
    with pytest.raises(ProfileNotFound):
        store.delete("nope")
    assert store.path.read_bytes() == before
    assert not store.backup_path.exists()


def test_parse_timestamp_ordering() -> None:
    assert parse_timestamp("2024-02-01T00:00:00.000Z") > parse_timestamp(
        "2024-01-01T00:00:00Z"
    )
    assert parse_timestamp("garbage") < parse_timestamp("1970-01-01T00:00:00Z")
