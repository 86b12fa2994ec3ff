import os

import pytest
from graphviz import Digraph
from graphviz.backend import ExecutableNotFound
from pytest_mock import mocker  # noqa: F401 -- flake8 doesn't see it's used as fixture
from rich.console import Console

from labrecipe import reporting
from labrecipe.errors import MissingInputError, StageExecutionError
from labrecipe.orchestrator import Orchestrator


def render_text(renderable) -> str:
    console = Console(width=250, record=True, color_system=None)
    console.print(renderable)
    return console.export_text()


def test_plan_table(data_root, pipeline, runner, key):
    """The plan table should list stage keys, their action and store names."""
    plan = Orchestrator(pipeline, data_root, runner).plan(key)
    text = render_text(reporting.render_plan(plan))
    assert "condense[group=immediate]" in text
    assert "coagulate-7-0-0" in text
    assert "disabled" in text
    assert "run" in text


def test_result_table(data_root, pipeline, runner, key):
    """The result table should show the final state of each stage."""
    result = Orchestrator(pipeline, data_root, runner).run(key)
    text = render_text(reporting.render_result(result))
    assert "complete" in text
    assert "condense[group=filtered]" in text
    assert "succeeded" in text


def test_failure_table_lists_paths():
    """The failure report should name the failing stage and every resolved path."""
    error = StageExecutionError(
        "filter", {"origin": "/data/origin", "substrate": "/data/substrate-7-0"}, status=2
    )
    text = render_text(reporting.render_failure(error))
    assert "StageExecutionError" in text
    assert "filter" in text
    assert "/data/substrate-7-0" in text
    assert "2" in text



def test_failure_table_lists_work_paths():
    """Temporary directories of new stores should be listed next to the store paths."""
    error = StageExecutionError(
        "coagulate",
        {"coagulate": "/data/coagulate-7-0-0"},
        status=1,
        work_paths={"coagulate": "/data/.coagulate-7-0-0.tmp"},
    )
    text = render_text(reporting.render_failure(error))
    assert "/data/coagulate-7-0-0" in text
    assert "coagulate (partial)" in text
    assert "/data/.coagulate-7-0-0.tmp" in text


def test_failure_table_missing_input():
    """A missing input should be reported with its role and path."""
    error = MissingInputError("condense[group=immediate]", "cache", "/data/cache-7")
    text = render_text(reporting.render_failure(error))
    assert "cache" in text
    assert "/data/cache-7" in text
    assert "condense[group=immediate]" in text


def test_paths_table(data_root, pipeline, key):
    """The paths table should list every role with its resolved path."""
    text = render_text(reporting.render_paths(pipeline, key, data_root))
    assert os.path.join(data_root, "target-7-0-0-0") in text
    assert "substrate0" in text


def test_runs_table():
    """The runs table should show references and errors."""
    runs = [
        {
            "reference": "kickstart_7-0-0-0_1_t",
            "status": "error",
            "hostname": "host",
            "error": "StageExecutionError - Stage 'filter' failed",
            "failed_stage": "filter",
        },
        {"reference": "kickstart_7-0-0-0_2_t", "status": "complete", "hostname": "host"},
    ]
    text = render_text(reporting.render_runs(runs))
    assert "kickstart_7-0-0-0_1_t" in text
    assert "filter: StageExecutionError" in text
    assert "complete" in text


def test_render_graph_without_graphviz(mocker, tmp_path):  # noqa: F811
    """A missing graphviz executable should be logged rather than crash."""
    mocker.patch.object(Digraph, "render", side_effect=ExecutableNotFound(["dot"]))
    assert reporting.render_graph(Digraph(), str(tmp_path / "out" / "graph")) is None
    assert os.path.isdir(tmp_path / "out")


@pytest.mark.parametrize("format", ["svg", "png"])
def test_render_graph_sets_format(mocker, tmp_path, format):  # noqa: F811
    """Rendering should use the requested format."""
    graph = Digraph()
    mock = mocker.patch.object(Digraph, "render", return_value="graph." + format)
    assert reporting.render_graph(graph, str(tmp_path / "graph"), format) == "graph." + format
    assert graph.format == format
    mock.assert_called_once()
