"""Tests for the shared file work queue"""

import threading
from pathlib import Path

import pytest

from drive_stats.work_queue import FileWorkQueue, iter_candidate_paths


def test_queue_filters_by_extension():
    entries = [Path("a.csv"), Path("notes.txt"), Path("b.CSV"), Path("c.csv.gz"), Path("d.csv")]
    queue = FileWorkQueue(entries)
    assert list(queue) == [Path("a.csv"), Path("b.CSV"), Path("d.csv")]
    assert queue.handed_out == 3
    assert queue.skipped == 2


def test_queue_stays_exhausted():
    queue = FileWorkQueue(iter([Path("a.csv")]))
    assert queue.next_file() == Path("a.csv")
    assert queue.next_file() is None
    assert queue.next_file() is None


def test_queue_consumes_source_once():
    """The underlying sequence is single-pass; the queue never rewinds it"""
    pulled = []

    def source():
        for i in range(5):
            pulled.append(i)
            yield Path(f"{i}.csv")

    queue = FileWorkQueue(source())
    assert len(list(queue)) == 5
    assert queue.next_file() is None
    assert pulled == [0, 1, 2, 3, 4]


def test_queue_exactly_once_across_threads():
    """Every file is handed to exactly one thread"""
    expected = [Path(f"{i:05d}.csv") for i in range(2000)]

    def entries():
        for i, path in enumerate(expected):
            if i % 7 == 0:
                yield Path(f"{i}.json")
            yield path

    queue = FileWorkQueue(entries())

    received: list[list[Path]] = [[] for _ in range(8)]

    def drain(idx: int) -> None:
        while (path := queue.next_file()) is not None:
            received[idx].append(path)

    threads = [threading.Thread(target=drain, args=(i,)) for i in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    flat = [p for chunk in received for p in chunk]
    assert len(flat) == len(expected)
    assert sorted(flat) == expected
    assert queue.handed_out == len(expected)


def test_iter_candidate_paths_directory(tmp_path):
    (tmp_path / "2013" / "q1").mkdir(parents=True)
    (tmp_path / "2013" / "q1" / "2013-01-02.csv").write_text("x\n")
    (tmp_path / "2013" / "2013-01-01.csv").write_text("x\n")
    (tmp_path / "README.md").write_text("docs\n")

    found = list(iter_candidate_paths(tmp_path))
    assert sorted(p.name for p in found) == ["2013-01-01.csv", "2013-01-02.csv", "README.md"]

    queue = FileWorkQueue(iter_candidate_paths(tmp_path))
    assert sorted(p.name for p in queue) == ["2013-01-01.csv", "2013-01-02.csv"]


def test_iter_candidate_paths_single_file(tmp_path):
    f = tmp_path / "2013-01-01.csv"
    f.write_text("x\n")
    assert list(iter_candidate_paths(f)) == [f]


def test_iter_candidate_paths_missing(tmp_path):
    with pytest.raises(FileNotFoundError):
        iter_candidate_paths(tmp_path / "missing")
