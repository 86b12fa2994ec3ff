import json
import logging
import os

import pytest

from labrecipe import utils


def test_configuration_defaults(project_folder):
    """Without a configuration file, the defaults should be returned."""
    config = utils.get_configuration()
    assert config == utils.CONFIGURATION_DEFAULTS
    assert config is not utils.CONFIGURATION_DEFAULTS


def test_configuration_in_parent_dir_is_rebased(project_folder):
    """A configuration file in a parent directory should be found, and its relative
    paths should be relative to the file."""
    with open(os.path.join("..", utils.CONFIGURATION_FILE), "w") as outfile:
        json.dump({"data_root": "data", "logs_path": "/abs/logs"}, outfile)

    config = utils.get_configuration()
    assert config["data_root"] == "../data"
    assert config["logs_path"] == "/abs/logs"
    assert config["manager_cache_path"] == "../data/"


def test_configuration_partial_version(project_folder):
    """A partial version block should only override the named levels."""
    with open(utils.CONFIGURATION_FILE, "w") as outfile:
        json.dump({"version": {"T": "3"}}, outfile)

    config = utils.get_configuration()
    assert config["version"] == {"E": "7", "S": "0", "C": "0", "T": "3"}
    # the defaults themselves must not be modified
    assert utils.CONFIGURATION_DEFAULTS["version"]["T"] == "0"


def test_configuration_command_string(project_folder):
    """A command given as a single string should be split shell-style."""
    with open(utils.CONFIGURATION_FILE, "w") as outfile:
        json.dump({"command": "cargo run --bin 'transpaer-lab' --"}, outfile)

    config = utils.get_configuration()
    assert config["command"] == ["cargo", "run", "--bin", "transpaer-lab", "--"]


@pytest.mark.parametrize(
    "byte_count,expected",
    [(500, "500.00B"), (2000, "2.00KB"), (3 * 10**6 + 1, "3.00MB"), (-2000, "-2.00KB")],
)
def test_human_readable_mem_usage(byte_count, expected):
    """Byte counts should be formatted with the right suffix."""
    assert utils.human_readable_mem_usage(byte_count) == expected


@pytest.mark.parametrize(
    "seconds,expected",
    [(2.0, "2.00s"), (90, "1.50m"), (7200, "2.00h"), (0.05, "50.00ms")],
)
def test_human_readable_time(seconds, expected):
    """Durations should be formatted with the right suffix."""
    assert utils.human_readable_time(seconds) == expected


def test_stream_command_logs_output(caplog):
    """Command output should be logged line by line, and the exit status returned."""
    with caplog.at_level(logging.INFO):
        status = utils.stream_command(["sh", "-c", "echo hello; echo world >&2; exit 2"])
    assert status == 2
    assert "  | hello" in caplog.text
    assert "  | world" in caplog.text


def test_logging_prefix_does_not_stack():
    """Setting a new prefix should replace the old one."""
    utils.set_logging_prefix("[a] ")
    utils.set_logging_prefix("[b] ")
    record = logging.getLogRecordFactory()("root", logging.INFO, "", 0, "msg", (), None)
    assert record.prefix == "[b] "
    utils.set_logging_prefix("")


def test_init_logging_writes_file(tmp_path):
    """Logging should go to the requested log file."""
    log_path = str(tmp_path / "logs" / "run.log")
    utils.init_logging(log_path, quiet=True)
    logging.info("into the file")
    for handler in logging.getLogger().handlers:
        handler.flush()
    with open(log_path) as infile:
        assert "into the file" in infile.read()
    logging.getLogger().handlers = []
