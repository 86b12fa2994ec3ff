"""Console rendering of plans, run results, failures and the run history."""

import logging
import os

from graphviz import Digraph
from graphviz.backend import ExecutableNotFound
from rich import get_console
from rich.markup import escape
from rich.table import Table

from labrecipe import utils
from labrecipe.orchestrator import ExecutionPlan, RunResult, StageState
from labrecipe.pipeline import Pipeline
from labrecipe.version import VersionKey

ACTION_STYLES = {
    "run": "bold cyan",
    "cached": "green",
    "blocked": "red",
    "disabled": "dim",
}

STATE_STYLES = {
    StageState.PENDING: "dim",
    StageState.CACHED: "green",
    StageState.RUNNING: "cyan",
    StageState.SUCCEEDED: "bold green",
    StageState.FAILED: "bold red",
    StageState.DISABLED: "dim",
}

STATUS_STYLES = {
    "complete": "green",
    "incomplete": "dark_orange",
    "error": "red",
    "interrupted": "yellow",
    "dry": "cyan",
}


def _styled(text: str, style: str) -> str:
    if style is None or style == "":
        return escape(text)
    return f"[{style}]{escape(text)}[/{style}]"


def render_plan(plan: ExecutionPlan) -> Table:
    """Create a table with one row per step of the plan, showing what would happen to
    it and the stores it reads and writes."""
    table = Table(title=f"{plan.pipeline.name} plan for {plan.key}", title_justify="left")
    table.add_column("#", justify="right")
    table.add_column("stage")
    table.add_column("action")
    table.add_column("reads")
    table.add_column("writes")
    table.add_column("reason", style="dim")
    for index, planned in enumerate(plan):
        table.add_row(
            str(index),
            escape(planned.step.key),
            _styled(planned.action, ACTION_STYLES.get(planned.action)),
            "\n".join(store.name for role, store in planned.stores.items() if role in planned.step.reads),
            "\n".join(store.name for role, store in planned.stores.items() if role in planned.step.writes),
            escape(planned.reason),
        )
    return table


def render_result(result: RunResult) -> Table:
    """Create a summary table of the final state of every stage of a run."""
    title = f"Run {escape(str(result.reference or result.key))} - {_styled(result.status, STATUS_STYLES.get(result.status))}"
    table = Table(title=title, title_justify="left")
    table.add_column("stage")
    table.add_column("state")
    table.add_column("time", justify="right")
    for outcome in result.outcomes:
        elapsed = ""
        if outcome.elapsed is not None:
            elapsed = utils.human_readable_time(outcome.elapsed)
        table.add_row(
            escape(outcome.key),
            _styled(outcome.state.value, STATE_STYLES.get(outcome.state)),
            elapsed,
        )
    return table


def render_failure(error: Exception) -> Table:
    """Create a table describing why a run stopped: the failing stage, the error, and
    every resolved store path involved, so the operator knows where to look."""
    table = Table(title=_styled("Pipeline failed", "bold red"), title_justify="left", show_header=False)
    table.add_column("field", style="bold")
    table.add_column("value")
    table.add_row("error", error.__class__.__name__)
    stage = getattr(error, "stage", None)
    if stage is not None:
        table.add_row("stage", escape(stage))
    if getattr(error, "status", None) is not None:
        table.add_row("exit status", str(error.status))
    if getattr(error, "paths", None) is not None:
        for role, path in error.paths.items():
            table.add_row(role, escape(path))
        for role, path in getattr(error, "work_paths", {}).items():
            table.add_row(f"{role} (partial)", escape(path))
    elif getattr(error, "path", None) is not None:
        table.add_row(getattr(error, "role", None) or "store", escape(error.path))
    if getattr(error, "pending", None):
        table.add_row("pending", escape(", ".join(error.pending)))
    table.add_row("message", escape(str(error)))
    return table


def render_paths(pipeline: Pipeline, key: VersionKey, data_root: str) -> Table:
    """Create a table of every store role of the pipeline and where it resolves to for
    the given key."""
    table = Table(title=f"Stores for {key}", title_justify="left")
    table.add_column("role")
    table.add_column("depth", justify="right")
    table.add_column("path")
    table.add_column("exists")
    for role, store in pipeline.stores(key, data_root).items():
        exists = _styled("yes", "green") if store.exists() else _styled("no", "dim")
        if store.exists() and store.is_dirty():
            exists = _styled("dirty", "red")
        table.add_row(role, str(store.depth), escape(store.path), exists)
    return table


def render_runs(runs: list[dict]) -> Table:
    """Create a table of previous runs from the run store, most recent last."""
    table = Table(title="Runs", title_justify="left")
    table.add_column("reference")
    table.add_column("status")
    table.add_column("host")
    table.add_column("details")
    for run in runs:
        details = ""
        if run["status"] == "error":
            details = _styled(run.get("error", ""), "red")
            if "failed_stage" in run:
                details = escape(run["failed_stage"]) + ": " + details
        table.add_row(
            escape(run["reference"]),
            _styled(run["status"], STATUS_STYLES.get(run["status"])),
            run.get("hostname", ""),
            details,
        )
    return table


def show(renderable):
    """Print a table (or any rich renderable) to the console."""
    get_console().print(renderable)


def render_graph(graph: Digraph, output_path: str, format: str = "svg") -> str:
    """Render a graphviz graph into ``output_path`` (without extension).

    Returns:
        The path of the rendered file, or ``None`` if it couldn't be rendered.
    """
    graph.format = format
    directory = os.path.dirname(output_path)
    if directory != "":
        os.makedirs(directory, exist_ok=True)
    try:
        return graph.render(output_path, cleanup=True)
    except ExecutableNotFound:
        logging.error(
            "Graphviz not installed, if using conda try 'conda install python-graphviz'."
        )
        return None
