import logging

from pytest_mock import mocker  # noqa: F401 -- flake8 doesn't see it's used as fixture

from labrecipe.staging import SideLoad, _log_stats, children_max_rss


def test_side_load_roles():
    """A side-load reads its source and writes its destination."""
    step = SideLoad("sideload", source="substrate0", destination="substrate")
    assert step.reads == ("substrate0",)
    assert step.writes == ("substrate",)
    assert step.key == "sideload"
    assert "substrate0" in step.description


def test_children_max_rss_is_positive_or_zero():
    """The child memory usage should be a byte count."""
    assert children_max_rss() >= 0


def test_log_stats_logs_time(caplog, tmp_path):
    """Stage stats should log how long the stage took."""
    with caplog.at_level(logging.DEBUG):
        _log_stats("coagulate", str(tmp_path), 0.0, 2.0)
    assert "coagulate took 2.00s" in caplog.text
    assert "Data root disk" in caplog.text


def test_log_stats_missing_data_root(mocker, caplog, tmp_path):  # noqa: F811
    """Disk usage is only queried for an existing data root."""
    mock = mocker.patch("psutil.disk_usage")
    with caplog.at_level(logging.DEBUG):
        _log_stats("coagulate", str(tmp_path / "nope"), 0.0, 1.0)
    mock.assert_not_called()
