import pytest
from pytest_mock import mocker  # noqa: F401 -- flake8 doesn't see it's used as fixture

from labrecipe.errors import StageExecutionError
from labrecipe.runners import (
    LAUNCH_FAILURE_STATUS,
    CallableRunner,
    CommandRunner,
    StageInvocation,
)


@pytest.fixture()
def invocation():
    return StageInvocation(
        "condense",
        {"origin": "/data/origin", "substrate": "/data/substrate-7-0"},
        {"group": "immediate"},
        key="condense[group=immediate]",
    )


def test_invocation_argv(invocation):
    """Stage arguments should be the subcommand followed by params and store paths."""
    assert invocation.argv() == [
        "condense",
        "--group",
        "immediate",
        "--origin",
        "/data/origin",
        "--substrate",
        "/data/substrate-7-0",
    ]


def test_invocation_key_defaults_to_stage():
    """Without an explicit key the stage name is used."""
    assert StageInvocation("coagulate", {}).key == "coagulate"


def test_command_runner_default_command(invocation):
    """The default command is the transpaer-lab binary."""
    runner = CommandRunner()
    assert runner.build_command(invocation)[:2] == ["transpaer-lab", "condense"]


def test_command_runner_streams_command(mocker, invocation):  # noqa: F811
    """The command runner should run the full command and pass on its exit status."""
    mocker.patch("shutil.which", return_value="/usr/bin/cargo")
    mock = mocker.patch("labrecipe.utils.stream_command", return_value=4)

    runner = CommandRunner(["cargo", "run", "--bin", "transpaer-lab", "--"], cwd="/src")
    status = runner.run(invocation)

    assert status == 4
    mock.assert_called_once_with(
        ["cargo", "run", "--bin", "transpaer-lab", "--"] + invocation.argv(), cwd="/src"
    )


def test_command_runner_missing_program(mocker, invocation):  # noqa: F811
    """A program that can't be found should report the launch failure status."""
    mocker.patch("shutil.which", return_value=None)
    mock = mocker.patch("labrecipe.utils.stream_command")

    assert CommandRunner(["nope"]).run(invocation) == LAUNCH_FAILURE_STATUS
    mock.assert_not_called()


def test_command_runner_launch_error(mocker, invocation):  # noqa: F811
    """An OS error while starting the program should report the launch failure status."""
    mocker.patch("shutil.which", return_value="/usr/bin/transpaer-lab")
    mocker.patch("labrecipe.utils.stream_command", side_effect=PermissionError("denied"))

    assert CommandRunner().run(invocation) == LAUNCH_FAILURE_STATUS


def test_command_runner_real_process(invocation):
    """Running a real command should return its exit status."""
    runner = CommandRunner(["sh", "-c", "exit 3", "sh"])
    assert runner.run(invocation) == 3
    runner = CommandRunner(["true"])
    assert runner.run(invocation) == 0


def test_callable_runner_by_key_then_name(invocation):
    """Functions registered for a stage key take precedence over the stage name."""
    called = []
    runner = CallableRunner({"condense": lambda paths, params: called.append("name")})
    assert runner.run(invocation) == 0
    runner.register("condense[group=immediate]", lambda paths, params: called.append("key"))
    assert runner.run(invocation) == 0
    assert called == ["name", "key"]


def test_callable_runner_passes_paths_and_params(invocation):
    """Stage functions get the resolved paths and the parameters."""
    received = {}

    def condense(paths, params):
        received.update(paths=paths, params=params)

    CallableRunner({"condense": condense}).run(invocation)
    assert received["paths"]["substrate"] == "/data/substrate-7-0"
    assert received["params"] == {"group": "immediate"}


def test_callable_runner_false_fails(invocation):
    """Returning False counts as a failed stage."""
    runner = CallableRunner({"condense": lambda paths, params: False})
    assert runner.run(invocation) == 1


def test_callable_runner_exception(invocation):
    """An exception in a stage function becomes a StageExecutionError with the paths."""

    def condense(paths, params):
        raise ValueError("bad input")

    with pytest.raises(StageExecutionError) as exc_info:
        CallableRunner({"condense": condense}).run(invocation)
    assert exc_info.value.stage == "condense[group=immediate]"
    assert "ValueError - bad input" in str(exc_info.value)
    assert exc_info.value.paths["origin"] == "/data/origin"


def test_callable_runner_unknown_stage(invocation):
    """Running a stage without a registered function should fail."""
    with pytest.raises(StageExecutionError):
        CallableRunner().run(invocation)
