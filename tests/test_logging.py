from tomosparse.utils.logging import format_duration, progress_iter


def test_format_duration():
    assert format_duration(0.25) == "250ms"
    assert format_duration(-1.0) == "0ms"
    assert format_duration(12.34) == "12.3s"
    assert format_duration(245.0) == "4m05.0s"


def test_progress_iter_passthrough(monkeypatch):
    monkeypatch.delenv("TOMOSPARSE_PROGRESS", raising=False)
    assert list(progress_iter(range(3), total=3)) == [0, 1, 2]
    monkeypatch.setenv("TOMOSPARSE_PROGRESS", "1")
    assert list(progress_iter(range(3), total=3, desc="t")) == [0, 1, 2]
