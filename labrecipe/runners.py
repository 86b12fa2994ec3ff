"""Runners execute the external transformation of a stage.

The orchestrator only needs one thing from a runner: given an invocation (the
stage name, the resolved store paths and the stage parameters), run it to
completion and return an exit status, where ``0`` means success.
"""

import logging
import shutil
from typing import Callable

from labrecipe import utils
from labrecipe.errors import StageExecutionError

LAUNCH_FAILURE_STATUS = 127
"""Status reported when the stage command can't be started at all (same as a shell
reports for a command that isn't found.)"""


class StageInvocation:
    """Everything a stage is given when it runs.

    Args:
        stage (str): The stage name (the subcommand.)
        paths (dict[str, str]): The store paths keyed by role, in the order the
            stage declares them.
        params (dict[str, str]): Stage-local parameters.
        key (str): The stage key, used in log messages and errors.
    """

    def __init__(
        self, stage: str, paths: dict[str, str], params: dict[str, str] = None, key: str = None
    ):
        self.stage = stage
        self.paths = dict(paths)
        self.params = dict(params) if params is not None else {}
        self.key = key if key is not None else stage

    def argv(self) -> list[str]:
        """The command line arguments of the stage, e.g.
        ``["condense", "--origin", "../data/origin", ..., "--group", "immediate"]``."""
        args = [self.stage]
        for name, value in self.params.items():
            args.extend([f"--{name}", value])
        for role, path in self.paths.items():
            args.extend([f"--{role}", path])
        return args

    def __repr__(self):
        return f"StageInvocation({' '.join(self.argv())})"


class Runner:
    """Base runner class, any way of executing stages should extend this."""

    def run(self, invocation: StageInvocation) -> int:
        raise NotImplementedError()


class CommandRunner(Runner):
    """Run every stage as a subcommand of an external program, one process per stage.

    Args:
        command (list[str]): The program and any leading arguments, e.g.
            ``["cargo", "run", "--release", "--bin", "transpaer-lab", "--"]``.
        cwd (str): Optional working directory for the stage processes.

    Example:
        .. code-block:: python

            runner = CommandRunner(["transpaer-lab"])
            runner.run(StageInvocation("coagulate", {"substrate": "...", "coagulate": "..."}))
    """

    def __init__(self, command: list[str] = None, cwd: str = None):
        if command is None or len(command) == 0:
            command = ["transpaer-lab"]
        self.command = list(command)
        self.cwd = cwd

    def build_command(self, invocation: StageInvocation) -> list[str]:
        return self.command + invocation.argv()

    def run(self, invocation: StageInvocation) -> int:
        cmd = self.build_command(invocation)
        if shutil.which(cmd[0]) is None:
            logging.error("Stage command '%s' was not found", cmd[0])
            return LAUNCH_FAILURE_STATUS
        logging.info("Running %s" % " ".join(cmd))
        try:
            return utils.stream_command(cmd, cwd=self.cwd)
        except OSError as e:
            logging.error("Unable to start stage command '%s': %s", cmd[0], e)
            return LAUNCH_FAILURE_STATUS


class CallableRunner(Runner):
    """Run stages as python functions in this process.

    Each function is called with the resolved paths and the stage parameters. A
    function that returns ``False`` or raises an exception fails the stage, any
    other return value counts as success.

    Args:
        functions (dict[str, Callable]): Stage functions keyed by stage name (or by
            stage key, to give differently parameterized stages separate functions.)

    Example:
        .. code-block:: python

            def coagulate(paths, params):
                ...

            runner = CallableRunner({"coagulate": coagulate})
    """

    def __init__(self, functions: dict[str, Callable] = None):
        self.functions: dict[str, Callable] = dict(functions) if functions is not None else {}

    def register(self, name: str, function: Callable):
        self.functions[name] = function

    def run(self, invocation: StageInvocation) -> int:
        function = self.functions.get(invocation.key, self.functions.get(invocation.stage, None))
        if function is None:
            raise StageExecutionError(
                invocation.key, invocation.paths, reason="no function registered for this stage"
            )
        try:
            result = function(invocation.paths, invocation.params)
        except Exception as e:
            logging.error("Stage '%s' raised %s: %s", invocation.key, e.__class__.__name__, e)
            raise StageExecutionError(
                invocation.key, invocation.paths, reason=f"{e.__class__.__name__} - {e}"
            ) from e
        if result is False:
            return 1
        return 0
