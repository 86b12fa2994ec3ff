""" Helper and utility functions for the library. """

import json
import logging
import os
import shlex
import subprocess
import sys

from rich import get_console, reconfigure
from rich.logging import RichHandler

TIMESTAMP_FORMAT = "%Y-%m-%d-T%H%M%S"
"""The datetime format string used for timestamps in run reference names and store metadata."""
CONFIGURATION_FILE = "labrecipe_config.json"
"""The expected configuration filename."""

CONFIGURATION_DEFAULTS = {
    "data_root": "../data",
    "command": ["transpaer-lab"],
    "manager_cache_path": "data/",
    "logs_path": "logs/",
    "version": {"E": "7", "S": "0", "C": "0", "T": "0"},
    "with_extract": False,
}
"""Values used for any key missing from the configuration file."""

REBASED_KEYS = ["data_root", "manager_cache_path", "logs_path"]
"""Configuration keys holding paths relative to the configuration file location."""


def get_configuration() -> dict:
    """Load the configuration file if available, with defaults for any
    keys not found. The config file should be "labrecipe_config.json"
    in the project root (the current directory or up to three parents.)

    The defaults are:

    .. code-block:: json

        {
            "data_root": "../data",
            "command": ["transpaer-lab"],
            "manager_cache_path": "data/",
            "logs_path": "logs/",
            "version": {"E": "7", "S": "0", "C": "0", "T": "0"},
            "with_extract": false
        }

    ``command`` may also be given as a single string, which is split shell-style.

    Returns:
        the dictionary of configuration keys/values.
    """
    # try to find configuration file in this dir or parent dirs
    search_depth = 3
    prefix = ""
    while not os.path.exists(f"{prefix}{CONFIGURATION_FILE}") and search_depth > 0:
        prefix += "../"
        search_depth -= 1

    config = json.loads(json.dumps(CONFIGURATION_DEFAULTS))
    if os.path.exists(f"{prefix}{CONFIGURATION_FILE}"):
        with open(f"{prefix}{CONFIGURATION_FILE}") as infile:
            loaded = json.load(infile)

        # a partial version block only overrides the levels it names
        if "version" in loaded:
            config["version"].update(loaded.pop("version"))
        config.update(loaded)

        # relative paths in the file are relative to where the file is
        for key in REBASED_KEYS:
            if not os.path.isabs(config[key]):
                config[key] = f"{prefix}{config[key]}"

    if isinstance(config["command"], str):
        config["command"] = shlex.split(config["command"])

    return config


def human_readable_mem_usage(byte_count: int) -> str:
    """Takes the given byte count and returns a nicely formatted string that includes the suffix (K/M/GB).

    Args:
        byte_count (int): The number of bytes to convert into KB/MB/GB.
    """

    negative = False
    if byte_count < 0:
        negative = True
        byte_count *= -1

    suffix = "B"
    if byte_count > 10**9:
        suffix = "GB"
        byte_count /= 10**9
    elif byte_count > 10**6:
        suffix = "MB"
        byte_count /= 10**6
    elif byte_count > 10**3:
        suffix = "KB"
        byte_count /= 10**3

    if negative:
        return f"-{byte_count:.2f}{suffix}"
    return f"{byte_count:.2f}{suffix}"


def human_readable_time(seconds: float) -> str:
    """Takes the given time in seconds and returns a nicely formatted string that includes the suffix.

    Args:
        seconds (float): The time in seconds to convert.
    """

    converted = seconds
    suffix = "s"

    if seconds > 60 * 60:
        suffix = "h"
        converted /= 60 * 60
    elif seconds > 60:
        suffix = "m"
        converted /= 60
    elif seconds < 0.0000001:
        suffix = "ns"
        converted *= 10**9
    elif seconds < 0.0001:
        suffix = "us"
        converted *= 10**6
    elif seconds < 0.1:
        suffix = "ms"
        converted *= 10**3

    return f"{converted:.2f}{suffix}"


def stream_command(cmd: list[str], cwd: str = None) -> int:
    """Runs the command and logs its output line by line as it occurs.

    The command is started in its own session, so an interrupt sent to the
    orchestrator's terminal does not stop a stage midway.

    Args:
        cmd (list[str]): The command and its arguments, as one would pass to
            :code:`subprocess.Popen()`.
        cwd (str): Optional working directory for the command.

    Returns:
        The exit code of the command.
    """
    logging.debug("Running command '%s'" % " ".join(cmd))

    with subprocess.Popen(
        cmd,
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        bufsize=1,
        text=True,
        cwd=cwd,
        start_new_session=True,
    ) as p:
        for line in p.stdout:
            logging.info("  | %s", line.rstrip())
    return p.returncode


def set_logging_prefix(prefix):
    """Set the prefix content of the logger, which is incorporated in the log formatter. This
    is used to show which stage a log line comes from."""
    # https://stackoverflow.com/questions/17558552/how-do-i-add-custom-field-to-python-log-format-string
    old_factory = logging.getLogRecordFactory()

    # unwrap any earlier prefix factory so prefixes don't stack up
    old_factory = getattr(old_factory, "_base_factory", old_factory)

    def new_factory(*args, **kwargs):
        record = old_factory(*args, **kwargs)
        record.prefix = prefix
        return record

    new_factory._base_factory = old_factory
    logging.setLogRecordFactory(new_factory)


def init_logging(
    log_path=None,
    level=logging.INFO,
    no_color=False,
    quiet=False,
    plain=False,
    all_loggers=False,
):
    """Sets up logging configuration, including the associated file output.

    Args:
        log_path (str): File to store the output log in. If :code:`None`, only log
            to console.
        level: The logging level to output.
        no_color (bool): Suppress colors in console output.
        quiet (bool): Suppress all console log output.
        plain (bool): Output plain text log rather than rich output.
        all_loggers (bool): Keep loggers from other libraries enabled.
    """
    plain_log_formatter = logging.Formatter(
        "%(asctime)s [%(levelname)s] - %(prefix)s%(message)s"
    )
    rich_log_formatter = logging.Formatter("%(prefix)s%(message)s")
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.propagate = False
    root_logger.handlers = []

    if plain:
        # 4 characters so that it lines up all nice
        logging.addLevelName(logging.DEBUG, "DBUG")

    set_logging_prefix("")

    if log_path is not None:
        os.makedirs(os.path.dirname(log_path) or ".", exist_ok=True)
        file_handler = logging.FileHandler(log_path)
        file_handler.setFormatter(plain_log_formatter)
        root_logger.addHandler(file_handler)

    if plain and not quiet:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(plain_log_formatter)
        root_logger.addHandler(console_handler)

    if not plain:
        if no_color:
            reconfigure(no_color=True)
        if not quiet:
            console_handler = RichHandler(
                console=get_console(),
                show_time=True,
                show_level=True,
                show_path=True,
                rich_tracebacks=True,
                log_time_format="%X",
                keywords=["-----", "(cached)"],
            )
            console_handler.setFormatter(rich_log_formatter)
            root_logger.addHandler(console_handler)

    # https://stackoverflow.com/questions/27538879/how-to-disable-loggers-from-other-modules
    if not all_loggers:
        for name, logger in logging.root.manager.loggerDict.items():
            if isinstance(logger, logging.Logger):
                logger.disabled = True
