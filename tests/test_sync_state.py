"""
Tests for sync ledger persistence.
"""
import json
import os
import stat
import threading

import pytest

from drive_sync.sync_state import SyncEntry, SyncLedger


def sample_entry(remote_id="file-1", content_hash="5eb63bbbe01eeed093cb22bb8f5acdc3"):
    return SyncEntry(
        remote_id=remote_id,
        content_hash=content_hash,
        size=11,
        local_modified_at="2025-01-15T10:00:00Z",
        uploaded_at="2025-01-15T10:01:00Z",
    )


class TestLoad:

    def test_missing_file_gives_empty_ledger(self, tmp_path):
        ledger = SyncLedger.load(str(tmp_path / "sync-state.json"))

        assert len(ledger) == 0
        assert ledger.folder_id == ''
        assert ledger.version == 1

    def test_reads_original_on_disk_keys(self, tmp_path):
        path = tmp_path / "sync-state.json"
        path.write_text(json.dumps({
            "version": 1,
            "last_sync": "2025-01-15T10:01:00Z",
            "folder_id": "root-folder",
            "files": {
                "2025-01-15/meeting.json": {
                    "drive_file_id": "file-1",
                    "md5_checksum": "5eb63bbbe01eeed093cb22bb8f5acdc3",
                    "size": 11,
                    "local_mod_time": "2025-01-15T10:00:00Z",
                    "uploaded_at": "2025-01-15T10:01:00Z",
                },
            },
        }))

        ledger = SyncLedger.load(str(path))

        assert ledger.folder_id == "root-folder"
        assert ledger.get("2025-01-15/meeting.json") == sample_entry()

    @pytest.mark.parametrize("content", [
        "{not json",
        "[]",
        '{"files": ["a", "b"]}',
        '{"files": {"a.txt": "oops"}}',
        '{"files": {"a.txt": {"size": "big"}}}',
    ])
    def test_corrupt_file_gives_empty_ledger_and_warns(self, tmp_path, capsys, content):
        path = tmp_path / "sync-state.json"
        path.write_text(content)

        ledger = SyncLedger.load(str(path))

        assert len(ledger) == 0
        assert "corrupt" in capsys.readouterr().out


class TestSave:

    def test_round_trip_leaves_no_temp_file(self, tmp_path):
        path = tmp_path / "session" / "sync-state.json"
        ledger = SyncLedger(folder_id="root-folder")
        ledger.set("2025-01-15/meeting.json", sample_entry())
        ledger.set("2025-01-15/video.mp4", sample_entry("file-2", "e" * 32))

        ledger.save(str(path))

        assert not os.path.exists(f"{path}.tmp")
        reloaded = SyncLedger.load(str(path))
        assert reloaded.snapshot() == ledger.snapshot()
        assert reloaded.folder_id == "root-folder"

        on_disk = json.loads(path.read_text())
        assert on_disk == ledger.to_dict()
        assert set(on_disk) == {"version", "last_sync", "folder_id", "files"}
        assert on_disk["last_sync"].endswith("Z")

    def test_file_and_directory_are_owner_only(self, tmp_path):
        path = tmp_path / "session" / "sync-state.json"

        SyncLedger(folder_id="root-folder").save(str(path))

        assert stat.S_IMODE(os.stat(path).st_mode) == 0o600
        assert stat.S_IMODE(os.stat(path.parent).st_mode) == 0o700

    def test_existing_open_session_directory_is_tightened(self, tmp_path):
        session_dir = tmp_path / "session"
        session_dir.mkdir()
        os.chmod(session_dir, 0o755)

        SyncLedger(folder_id="root-folder").save(str(session_dir / "sync-state.json"))

        assert stat.S_IMODE(os.stat(session_dir).st_mode) == 0o700

    def test_save_replaces_previous_document(self, tmp_path):
        path = tmp_path / "sync-state.json"
        first = SyncLedger(folder_id="root-folder")
        first.set("a.txt", sample_entry())
        first.save(str(path))

        second = SyncLedger(folder_id="root-folder")
        second.save(str(path))

        assert json.loads(path.read_text())["files"] == {}

    def test_failed_rename_keeps_previous_document(self, tmp_path, monkeypatch):
        path = tmp_path / "sync-state.json"
        ledger = SyncLedger(folder_id="root-folder")
        ledger.set("a.txt", sample_entry())
        ledger.save(str(path))
        before = path.read_bytes()

        def failing_replace(src, dst):
            raise OSError("disk full")

        monkeypatch.setattr(os, "replace", failing_replace)
        ledger.set("b.txt", sample_entry("file-2"))
        with pytest.raises(OSError):
            ledger.save(str(path))

        assert path.read_bytes() == before
        assert not os.path.exists(f"{path}.tmp")


class TestBindFolder:

    def test_different_folder_drops_entries(self, tmp_path, capsys):
        path = tmp_path / "sync-state.json"
        old = SyncLedger(folder_id="old-root")
        old.set("a.txt", sample_entry())
        old.save(str(path))

        ledger = SyncLedger.load(str(path))
        assert ledger.bind_folder("new-root") is True
        ledger.save(str(path))

        on_disk = json.loads(path.read_text())
        assert on_disk["folder_id"] == "new-root"
        assert on_disk["files"] == {}
        assert "folder ID changed" in capsys.readouterr().out

    def test_same_folder_keeps_entries(self):
        ledger = SyncLedger(folder_id="root-folder")
        ledger.set("a.txt", sample_entry())

        assert ledger.bind_folder("root-folder") is False
        assert len(ledger) == 1

    def test_unbound_ledger_adopts_folder(self):
        ledger = SyncLedger()
        ledger.set("a.txt", sample_entry())

        assert ledger.bind_folder("root-folder") is False
        assert ledger.folder_id == "root-folder"
        assert len(ledger) == 1


def test_concurrent_writers_keep_every_entry():
    ledger = SyncLedger(folder_id="root-folder")

    def writer(worker):
        for index in range(200):
            ledger.set(f"{worker}/file-{index}.txt", sample_entry(remote_id=f"{worker}-{index}"))
            ledger.snapshot()

    threads = [threading.Thread(target=writer, args=(f"day-{n}",)) for n in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)

    assert len(ledger) == 1600
    assert ledger.get("day-7/file-199.txt").remote_id == "day-7-199"
