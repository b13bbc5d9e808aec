"""
Test Persistence - local storage, debounced writer, export archive

Run with: pytest tests/test_persistence.py -v
"""

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import json
import threading

import pytest

from vtt.persistence import DebouncedWriter, ExportArchive, LocalStorage


# ========================
# LocalStorage
# ========================

def test_storage_round_trip(tmp_path):
    storage = LocalStorage(str(tmp_path / "store"))
    storage.save_json("userData", {'tester': 'Ada', 'answers': [True, None, False]})

    assert storage.load_json("userData") == {'tester': 'Ada', 'answers': [True, None, False]}
    assert (tmp_path / "store" / "userData.json").exists()


def test_storage_missing_key(tmp_path):
    storage = LocalStorage(str(tmp_path))
    assert storage.get_item("nothing") is None
    assert storage.load_json("nothing") is None


def test_storage_corrupt_json_reads_as_absent(tmp_path):
    storage = LocalStorage(str(tmp_path))
    storage.set_item("userData", "{oops")

    assert storage.get_item("userData") == "{oops"
    assert storage.load_json("userData") is None


def test_storage_overwrite_leaves_no_temp_files(tmp_path):
    storage = LocalStorage(str(tmp_path))
    storage.set_item("userData", "1")
    storage.set_item("userData", "2")

    assert storage.get_item("userData") == "2"
    assert sorted(p.name for p in tmp_path.iterdir()) == ["userData.json"]


def test_storage_remove_item(tmp_path):
    storage = LocalStorage(str(tmp_path))
    storage.set_item("userData", "x")
    storage.remove_item("userData")
    storage.remove_item("userData")  # absent key is fine

    assert storage.get_item("userData") is None


@pytest.mark.parametrize("key", ["", "../escape", "a/b", ".hidden"])
def test_storage_rejects_bad_keys(tmp_path, key):
    storage = LocalStorage(str(tmp_path))
    with pytest.raises(ValueError):
        storage.set_item(key, "x")


# ========================
# DebouncedWriter
# ========================

def test_zero_delay_writes_synchronously():
    written = []
    writer = DebouncedWriter(written.append, delay_seconds=0)

    writer.schedule({'n': 1})
    writer.schedule({'n': 2})

    assert written == [{'n': 1}, {'n': 2}]
    assert writer.write_count == 2
    assert writer.has_pending is False


def test_burst_is_coalesced_into_latest_payload():
    written = []
    writer = DebouncedWriter(written.append, delay_seconds=60)

    for n in range(10):
        writer.schedule({'n': n})

    assert written == []
    assert writer.has_pending is True

    writer.flush()

    assert written == [{'n': 9}]
    assert writer.write_count == 1
    assert writer.has_pending is False


def test_timer_fires_after_quiet_period():
    done = threading.Event()
    written = []

    def write(payload):
        written.append(payload)
        done.set()

    writer = DebouncedWriter(write, delay_seconds=0.01)
    writer.schedule('a')
    writer.schedule('b')

    assert done.wait(timeout=5)
    assert written == ['b']


def test_flush_without_pending_is_noop():
    written = []
    writer = DebouncedWriter(written.append, delay_seconds=60)
    writer.flush()
    assert written == []


def test_close_flushes_and_rejects_new_payloads():
    written = []
    writer = DebouncedWriter(written.append, delay_seconds=60)
    writer.schedule('last')

    writer.close()

    assert written == ['last']
    with pytest.raises(RuntimeError):
        writer.schedule('late')


def test_failed_write_is_logged_not_raised(caplog):
    def explode(payload):
        raise OSError("disk full")

    writer = DebouncedWriter(explode, delay_seconds=0)
    writer.schedule('x')

    assert writer.write_count == 0
    assert "disk full" in caplog.text


# ========================
# ExportArchive
# ========================

def _export(tester, accuracy=50.0):
    return {
        'schemaVersion': 1,
        'testerInfo': {'tester': tester, 'supervisor': 'Dr Lim'},
        'results': {'L1': {'accuracy': accuracy}},
        'overall': {'accuracy': accuracy},
        'rawData': {},
    }


def test_save_export_filename(tmp_path):
    archive = ExportArchive(str(tmp_path / "collection"))
    path = archive.save_export(_export("Ada  King Lovelace"))

    assert os.path.isabs(path)
    assert os.path.basename(path) == "vtt_results_Ada_King_Lovelace.json"
    with open(path, encoding='utf-8') as f:
        assert json.load(f)['testerInfo']['tester'] == "Ada  King Lovelace"


def test_save_export_strips_path_separators(tmp_path):
    archive = ExportArchive(str(tmp_path))
    path = archive.save_export(_export("../evil"))

    assert os.path.dirname(path) == str(tmp_path.absolute())
    assert os.path.basename(path) == "vtt_results_.._evil.json"


def test_save_export_replaces_same_tester(tmp_path):
    archive = ExportArchive(str(tmp_path))
    archive.save_export(_export("Ada", accuracy=10.0))
    archive.save_export(_export("Ada", accuracy=90.0))

    exports = archive.list_exports()
    assert len(exports) == 1
    assert exports[0]['overall']['accuracy'] == 90.0


def test_list_exports_skips_unparseable_files(tmp_path):
    archive = ExportArchive(str(tmp_path))
    archive.save_export(_export("Ada"))
    archive.save_export(_export("Grace"))
    (tmp_path / "broken.json").write_text("{not json", encoding='utf-8')
    (tmp_path / "list.json").write_text("[1, 2]", encoding='utf-8')
    (tmp_path / "notes.txt").write_text("ignored", encoding='utf-8')

    exports = archive.list_exports()

    assert [e['testerInfo']['tester'] for e in exports] == ["Ada", "Grace"]


def test_list_exports_missing_directory(tmp_path):
    archive = ExportArchive(str(tmp_path / "missing"))
    with pytest.raises(FileNotFoundError):
        archive.list_exports()


def test_storage_non_utf8_reads_as_absent(tmp_path):
    storage = LocalStorage(str(tmp_path))
    (tmp_path / "userData.json").write_bytes(b'{"tester": "\xff\xfe"}')

    assert storage.load_json("userData") is None


def test_cancel_drops_pending_payload():
    written = []
    writer = DebouncedWriter(written.append, delay_seconds=60)
    writer.schedule('stale')

    writer.cancel()
    writer.flush()

    assert written == []
    assert writer.has_pending is False
    writer.schedule('fresh')
    writer.flush()
    assert written == ['fresh']
