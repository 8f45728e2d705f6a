#!/usr/bin/env python3
"""
Tests for the bucket writer
"""

import json
import threading
from unittest.mock import patch

import pytest

from hope_remote_log.bucket_writer import LOCK_STRIPES, BucketWriter, LogEntry


def make_entry(timestamp, message="Sep 04 12:53:01 unit-a boot", device_id="unit-a"):
    return LogEntry(device_id, timestamp, message)


def test_log_entry_json_is_compact_and_ordered():
    """Test record encoding matches the bucket line format"""
    entry = make_entry("2025-09-04T05:53:01.000Z")

    assert entry.to_json() == (
        '{"device_id":"unit-a","log_timestamp":"2025-09-04T05:53:01.000Z",'
        '"message":"Sep 04 12:53:01 unit-a boot"}'
    )


def test_log_entry_keeps_non_ascii():
    """Test messages are written as UTF-8, not escaped"""
    entry = make_entry("2025-09-04T05:53:01.000Z", message="Sep 04 12:53:01 ไทย ok")

    assert "ไทย" in entry.to_json()
    assert LogEntry.from_json(entry.to_json()) == entry


def test_log_entry_bucket_key():
    """Test bucket key is the UTC hour of the timestamp"""
    assert make_entry("2025-09-04T05:59:59.999Z").bucket_key == "2025-09-04-05"
    assert make_entry("2025-09-04T06:00:00.000Z").bucket_key == "2025-09-04-06"


def test_group_by_bucket_preserves_order():
    """Test grouping keeps input order inside each bucket"""
    entries = [
        make_entry("2025-09-04T05:10:00.000Z", "a"),
        make_entry("2025-09-04T06:10:00.000Z", "b"),
        make_entry("2025-09-04T05:20:00.000Z", "c"),
    ]

    groups = BucketWriter.group_by_bucket(entries)

    assert list(groups) == ["2025-09-04-05.log", "2025-09-04-06.log"]
    assert [e.message for e in groups["2025-09-04-05.log"]] == ["a", "c"]
    assert [e.message for e in groups["2025-09-04-06.log"]] == ["b"]


def test_write_entries_creates_and_appends(temp_dir):
    """Test bucket files are created and appended to"""
    writer = BucketWriter(str(temp_dir))

    result = writer.write_entries([
        make_entry("2025-09-04T05:53:01.000Z", "first"),
        make_entry("2025-09-04T06:00:00.000Z", "other hour"),
    ])
    assert result == (2, 2)

    writer.write_entries([make_entry("2025-09-04T05:53:01.001Z", "second")])

    lines = (temp_dir / "2025-09-04-05.log").read_text(encoding="utf-8").splitlines()
    assert [json.loads(line)["message"] for line in lines] == ["first", "second"]
    assert (temp_dir / "2025-09-04-06.log").exists()


def test_write_entries_empty(temp_dir):
    """Test empty submissions write nothing"""
    writer = BucketWriter(str(temp_dir))

    assert writer.write_entries([]) == (0, 0)
    assert list(temp_dir.iterdir()) == []


def test_append_fsyncs(temp_dir):
    """Test appends are flushed to disk before returning"""
    writer = BucketWriter(str(temp_dir))

    with patch("hope_remote_log.bucket_writer.os.fsync") as mock_fsync:
        writer.append_records("2025-09-04-05.log", [make_entry("2025-09-04T05:00:00.000Z")])

    mock_fsync.assert_called_once()


def test_short_write_raises(temp_dir):
    """Test partial writes are reported as errors"""
    writer = BucketWriter(str(temp_dir))

    with patch("hope_remote_log.bucket_writer.os.write", return_value=1):
        with pytest.raises(OSError, match="Short write"):
            writer.append_records("2025-09-04-05.log", [make_entry("2025-09-04T05:00:00.000Z")])


def test_missing_directory_raises(temp_dir):
    """Test appends fail when the incoming directory is gone"""
    writer = BucketWriter(str(temp_dir / "missing"))

    with pytest.raises(OSError):
        writer.write_entries([make_entry("2025-09-04T05:00:00.000Z")])


def test_concurrent_writers_do_not_interleave(temp_dir):
    """Test concurrent submissions produce only whole records"""
    writer = BucketWriter(str(temp_dir))

    def worker(n):
        entries = [make_entry("2025-09-04T05:00:00.000Z", f"worker {n} line {i} " + "x" * 200)
                   for i in range(20)]
        for _ in range(5):
            writer.write_entries(entries)

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    lines = (temp_dir / "2025-09-04-05.log").read_text(encoding="utf-8").splitlines()
    assert len(lines) == 4 * 5 * 20
    for line in lines:
        assert json.loads(line)["device_id"] == "unit-a"


def test_lock_pool_does_not_grow(temp_dir):
    """Test many distinct hours share a fixed set of locks"""
    writer = BucketWriter(str(temp_dir))

    locks = {id(writer._bucket_lock(f"2025-09-{d:02d}-{h:02d}.log"))
             for d in range(1, 31) for h in range(24)}

    assert len(writer._locks) == LOCK_STRIPES
    assert len(locks) <= LOCK_STRIPES
    assert writer._bucket_lock("2025-09-04-05.log") is writer._bucket_lock("2025-09-04-05.log")
