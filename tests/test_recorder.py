from pathlib import Path

from ble_csv_recorder.faults import FaultKind
from ble_csv_recorder.recorder import LineRecorder, MemoryRecorder, join_row


def test_two_rows_no_header(tmp_path: Path):
    rec = LineRecorder(str(tmp_path))
    r1 = rec.append("fresh", ["2025-01-15 10:00:00.000", "A"])
    r2 = rec.append("fresh", ["2025-01-15 10:00:00.050", "B"])
    assert r1.ok and r2.ok
    path = tmp_path / "fresh.csv"
    assert r1.path == path
    assert path.read_text(encoding="utf-8") == "2025-01-15 10:00:00.000,A\n2025-01-15 10:00:00.050,B\n"
    # no temp files left behind by the atomic create
    assert [p.name for p in tmp_path.iterdir()] == ["fresh.csv"]


def test_appends_to_existing_file(tmp_path: Path):
    (tmp_path / "old.csv").write_text("x,y\n", encoding="utf-8")
    rec = LineRecorder(str(tmp_path))
    rec.append("old", ["t", "z"])
    assert (tmp_path / "old.csv").read_text(encoding="utf-8") == "x,y\nt,z\n"


def test_creates_missing_directory(tmp_path: Path, logger):
    d = tmp_path / "a" / "b"
    rec = LineRecorder(str(d), ".txt", logger)
    assert rec.append("log", ["1", "2"]).ok
    assert (d / "log.txt").read_text(encoding="utf-8") == "1,2\n"


def test_failure_is_reported_not_raised(tmp_path: Path, logger):
    blocker = tmp_path / "not_a_dir"
    blocker.write_text("", encoding="utf-8")
    faults = []
    rec = LineRecorder(str(blocker), logger=logger, on_fault=faults.append)
    res = rec.append("log", ["t", "v"])
    assert res.ok is False
    assert res.error
    assert [f.kind for f in faults] == [FaultKind.STORAGE]


def test_unwritable_target_is_reported(tmp_path: Path):
    # a directory where the log file should be
    (tmp_path / "log.csv").mkdir()
    faults = []
    rec = LineRecorder(str(tmp_path), on_fault=faults.append)
    res = rec.append("log", ["t", "v"])
    assert not res.ok
    assert faults and faults[0].message == "log_append_failed"


def test_join_row_is_bare_comma():
    assert join_row(["a", "b,c", ""]) == "a,b,c,\n"


def test_memory_recorder():
    m = MemoryRecorder()
    m.append("x", ["1", "A"])
    m.append("x", ["2", "B"])
    assert m.calls == 2
    assert m.text("x") == "1,A\n2,B\n"
    assert m.text("missing") == ""


def test_names_cannot_leave_the_directory(tmp_path: Path, logger):
    data = tmp_path / "data"
    faults = []
    rec = LineRecorder(str(data), logger=logger, on_fault=faults.append)
    for name in (str(tmp_path / "outside" / "evil"), "../escaped", "sub/../../up"):
        res = rec.append(name, ["t", "v"])
        assert res.ok is False
    assert [f.message for f in faults] == ["log_name_outside_dir"] * 3
    assert not (tmp_path / "outside").exists()
    assert not (tmp_path / "escaped.csv").exists()
    assert not (tmp_path / "up.csv").exists()
    assert list(data.iterdir()) == []


def test_memory_recorder_path_for():
    assert MemoryRecorder().path_for("run1") == Path("run1.csv")
