"""Execution of a pipeline for one version key.

The orchestrator walks the steps of a pipeline in declared order. For every
step it resolves the concrete stores from the version key, checks that every
store it reads exists, skips it if every store it writes already records it
as complete for the same inputs, and otherwise runs it through the runner.
The first error aborts the run. Stores completed before the error stay as they
are, so the next invocation resumes at the failing step.

Per step, the states go ``PENDING -> CACHED`` or
``PENDING -> RUNNING -> SUCCEEDED | FAILED``. ``FAILED`` ends the whole run.
"""

import logging
import time
from contextlib import ExitStack
from datetime import datetime
from enum import Enum

from labrecipe import hashing, utils
from labrecipe.caching import ArtifactStore, merge_tree
from labrecipe.errors import (
    ConfigurationError,
    LabRecipeError,
    PartialWriteError,
    StageExecutionError,
)
from labrecipe.pipeline import Pipeline
from labrecipe.runners import Runner, StageInvocation
from labrecipe.staging import SideLoad, StageSpec, _log_stats
from labrecipe.store import RunStore
from labrecipe.version import VersionKey


def _work_paths(paths: dict[str, str], store_paths: dict[str, str]) -> dict[str, str]:
    """Get the paths a stage was handed that differ from the store paths, i.e. the
    temporary directories of new stores."""
    return {role: path for role, path in paths.items() if path != store_paths[role]}


class StageState(Enum):
    PENDING = "pending"
    CACHED = "cached"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    DISABLED = "disabled"


class PlannedStep:
    """One entry of an execution plan.

    Args:
        step (StageSpec): The step.
        stores (dict[str, ArtifactStore]): The resolved stores the step touches, keyed by role.
        action (str): ``"run"``, ``"cached"``, ``"blocked"`` (an input will be missing)
            or ``"disabled"``.
        reason (str): Why the step got this action, for display.
    """

    def __init__(self, step: StageSpec, stores: dict, action: str, reason: str = ""):
        self.step = step
        self.stores = stores
        self.action = action
        self.reason = reason

    @property
    def inputs(self) -> dict[str, str]:
        return {role: self.stores[role].path for role in self.step.reads}

    @property
    def outputs(self) -> dict[str, str]:
        return {role: self.stores[role].path for role in self.step.writes}

    def __repr__(self):
        return f"PlannedStep({self.step.key!r}, {self.action!r})"


class ExecutionPlan:
    """The concrete, ordered list of steps with their input and output paths for one
    version key, and what the orchestrator would do with each of them right now."""

    def __init__(self, pipeline: Pipeline, key: VersionKey, steps: list[PlannedStep]):
        self.pipeline = pipeline
        self.key = key
        self.steps = steps

    def __iter__(self):
        return iter(self.steps)

    def __len__(self):
        return len(self.steps)

    def actions(self) -> dict[str, str]:
        return {planned.step.key: planned.action for planned in self.steps}

    def to_run(self) -> list[str]:
        return [planned.step.key for planned in self.steps if planned.action == "run"]


class StageOutcome:
    """What happened to a single step during a run."""

    def __init__(self, step: StageSpec, paths: dict[str, str]):
        self.step = step
        self.state: StageState = StageState.PENDING if step.enabled else StageState.DISABLED
        self.paths: dict[str, str] = paths
        """The resolved store paths of the step, keyed by role."""
        self.elapsed: float = None
        self.error: Exception = None

    @property
    def key(self) -> str:
        return self.step.key


class RunResult:
    """The outcome of an orchestrator run.

    Attributes:
        status (str): ``"complete"``, ``"error"``, ``"interrupted"``, or ``"dry"``
            for dry runs.
    """

    def __init__(self, key: VersionKey, reference: str = None):
        self.key = key
        self.reference = reference
        self.status = "incomplete"
        self.outcomes: list[StageOutcome] = []
        self.error: Exception = None

    @property
    def states(self) -> dict[str, str]:
        return {outcome.key: outcome.state.value for outcome in self.outcomes}

    def keys_in(self, state: StageState) -> list[str]:
        return [outcome.key for outcome in self.outcomes if outcome.state == state]

    @property
    def failed(self) -> StageOutcome:
        for outcome in self.outcomes:
            if outcome.state == StageState.FAILED:
                return outcome
        return None


class Orchestrator:
    """Runs a pipeline for a version key, reusing every store that already holds the
    output of a step for the same inputs.

    Args:
        pipeline (Pipeline): The pipeline to run.
        data_root (str): The directory all stores live in.
        runner (Runner): Executes the stage transformations. Side-loads are executed by
            the orchestrator itself.
        force (list[str]): Stage keys or names to re-run even if cached, or ``["all"]``.
        force_downstream (bool): Also re-run everything that depends on a forced stage.
        run_store (RunStore): If given, every run is recorded in it.
        dry (bool): Don't execute or write anything, only work out the plan.
        cli (str): The command line that started the run, recorded in the run store.
    """

    def __init__(
        self,
        pipeline: Pipeline,
        data_root: str,
        runner: Runner = None,
        force: list[str] = None,
        force_downstream: bool = False,
        run_store: RunStore = None,
        dry: bool = False,
        cli: str = "",
    ):
        if data_root is None or data_root == "":
            raise ConfigurationError("No data root configured")
        self.pipeline = pipeline
        self.data_root = data_root
        self.runner = runner
        self.run_store = run_store
        self.dry = dry
        self.cli = cli

        self.forced: set[str] = self._resolve_force(force, force_downstream)
        """Keys of the stages that run regardless of the cache."""
        self.stop_requested = False
        """Set by ``request_stop``, checked between stages."""
        self.last_result: RunResult = None
        """The result of the most recent ``run``, also set when ``run`` raised."""

    def _resolve_force(self, force, force_downstream) -> set[str]:
        if force is None or len(force) == 0:
            return set()
        if "all" in force:
            return {step.key for step in self.pipeline.steps}
        keys = self.pipeline.resolve_keys(force)
        if force_downstream:
            keys |= self.pipeline.dag.downstream(keys)
        return keys

    def request_stop(self):
        """Ask the run to stop before the next stage starts. A stage that is already
        running finishes first."""
        self.stop_requested = True

    def resolve(self, key: VersionKey) -> dict[str, ArtifactStore]:
        """Resolve every store of the pipeline for the given key. Any problem with the
        key or the roles raises a ``ConfigurationError`` here, before anything runs."""
        if not isinstance(key, VersionKey):
            raise ConfigurationError(f"Expected a VersionKey, got {type(key).__name__}")
        stores = self.pipeline.stores(key, self.data_root)

        # distinct roles must never alias to the same directory
        paths = {}
        for role, store in stores.items():
            if store.path in paths:
                raise ConfigurationError(
                    f"Roles '{paths[store.path]}' and '{role}' resolve to the same store '{store.path}'"
                )
            paths[store.path] = role
        return stores

    def fingerprint(self, step: StageSpec, stores: dict[str, ArtifactStore]) -> str:
        return hashing.fingerprint(
            step.name, {role: stores[role].name for role in step.roles}, step.params
        )

    def is_cached(self, step: StageSpec, stores: dict[str, ArtifactStore]) -> bool:
        """A step is cached when it isn't forced and every store it writes records it as
        complete with the same fingerprint."""
        if step.key in self.forced:
            return False
        fingerprint = self.fingerprint(step, stores)
        return all(stores[role].is_complete(step.key, fingerprint) for role in step.writes)

    def plan(self, key: VersionKey) -> ExecutionPlan:
        """Work out what a run with the given key would do, without executing or writing
        anything."""
        stores = self.resolve(key)
        produced = set()
        planned = []
        for step in self.pipeline.steps:
            step_stores = {role: stores[role] for role in step.roles}
            if not step.enabled:
                planned.append(PlannedStep(step, step_stores, "disabled", "stage is disabled"))
                continue
            missing = [
                role
                for role in step.reads
                if role not in produced and not stores[role].exists()
            ]
            if len(missing) > 0:
                action = "blocked"
                reason = "missing " + ", ".join(stores[role].name for role in missing)
            elif self.is_cached(step, stores):
                action = "cached"
                reason = "outputs complete"
            else:
                action = "run"
                reason = "forced" if step.key in self.forced else "outputs missing or stale"
            if action != "blocked":
                produced.update(step.writes)
            planned.append(PlannedStep(step, step_stores, action, reason))
        return ExecutionPlan(self.pipeline, key, planned)

    def run(self, key: VersionKey) -> RunResult:
        """Run the pipeline for the given version key.

        Raises:
            ConfigurationError: if the key or the pipeline can't be resolved (nothing ran.)
            MissingInputError: if a stage's input store is absent when it would start.
            PartialWriteError: if a stage would use a store left half-written.
            StageExecutionError: if a stage transformation failed.
        """
        stores = self.resolve(key)

        if self.dry:
            return self._dry_run(key)

        timestamp = datetime.now().strftime(utils.TIMESTAMP_FORMAT)
        reference = f"{self.pipeline.name}_{key}_{timestamp}"
        if self.run_store is not None:
            run_info = self.run_store.add_run(self.pipeline.name, str(key), timestamp, self.cli)
            reference = run_info["reference"]

        result = RunResult(key, reference)
        for step in self.pipeline.steps:
            paths = {role: stores[role].path for role in step.roles}
            result.outcomes.append(StageOutcome(step, paths))
        self.last_result = result

        logging.info("Running pipeline %s for version %s" % (self.pipeline.name, key))
        logging.info("Data root is '%s'" % self.data_root)
        if len(self.forced) > 0:
            logging.info("Forcing %s" % ", ".join(sorted(self.forced)))

        try:
            for outcome in result.outcomes:
                if self.stop_requested:
                    logging.warning("Stop requested, not starting %s" % outcome.key)
                    result.status = "interrupted"
                    break
                if not outcome.step.enabled:
                    logging.debug("Stage %s is disabled", outcome.key)
                    continue
                self._run_step(outcome, stores, reference)
            else:
                result.status = "complete"
        except LabRecipeError as e:
            result.status = "error"
            result.error = e
            raise
        except KeyboardInterrupt:
            result.status = "interrupted"
            raise
        finally:
            utils.set_logging_prefix("")
            if self.run_store is not None:
                self.run_store.update_run(reference, result.status, result.states, result.error)

        logging.info("Pipeline %s %s" % (self.pipeline.name, result.status))
        return result

    def _dry_run(self, key: VersionKey) -> RunResult:
        plan = self.plan(key)
        result = RunResult(key)
        for planned in plan:
            outcome = StageOutcome(planned.step, {**planned.inputs, **planned.outputs})
            if planned.action == "cached":
                outcome.state = StageState.CACHED
            result.outcomes.append(outcome)
        result.status = "dry"
        self.last_result = result
        return result

    def _run_step(self, outcome: StageOutcome, stores: dict[str, ArtifactStore], reference: str):
        step = outcome.step
        utils.set_logging_prefix(f"[{step.key}] ")
        logging.info("-----")
        logging.info("Stage %s", step.key)

        try:
            for role in step.reads:
                stores[role].read_handle(step.key)

            if self.is_cached(step, stores):
                outcome.state = StageState.CACHED
                logging.info("Stage %s outputs found (cached), skipping", step.key)
                return

            for role in step.roles:
                pending = [key for key in stores[role].pending_stages() if key != step.key]
                if len(pending) > 0:
                    raise PartialWriteError(stores[role].path, pending, step.key)
        except LabRecipeError as e:
            if getattr(e, "stage", "") is None:
                e.stage = step.key
            outcome.state = StageState.FAILED
            outcome.error = e
            logging.error(str(e))
            raise

        fingerprint = self.fingerprint(step, stores)
        outcome.state = StageState.RUNNING
        logging.info("Stage %s executing...", step.key)
        exec_time_start = time.perf_counter()
        paths = {}
        try:
            with ExitStack() as stack:
                for role in step.roles:
                    if role in step.writes:
                        paths[role] = stack.enter_context(
                            stores[role].write_handle(step.key, fingerprint, reference)
                        )
                    else:
                        paths[role] = stores[role].path
                self._execute(step, paths)
        except LabRecipeError as e:
            if isinstance(e, StageExecutionError):
                # report the store paths, new stores' temporary directories separately
                e.work_paths = _work_paths(paths, outcome.paths)
                e.paths = dict(outcome.paths)
            elif getattr(e, "stage", "") is None:
                e.stage = step.key
            outcome.state = StageState.FAILED
            outcome.error = e
            outcome.elapsed = time.perf_counter() - exec_time_start
            logging.error(str(e))
            raise
        except Exception as e:
            outcome.state = StageState.FAILED
            error = StageExecutionError(
                step.key,
                outcome.paths,
                reason=f"{e.__class__.__name__} - {e}",
                work_paths=_work_paths(paths, outcome.paths),
            )
            outcome.error = error
            logging.error(str(error))
            raise error from e
        exec_time_end = time.perf_counter()

        outcome.elapsed = exec_time_end - exec_time_start
        outcome.state = StageState.SUCCEEDED
        _log_stats(step.key, self.data_root, exec_time_start, exec_time_end)
        logging.info("Stage %s complete", step.key)

    def _execute(self, step: StageSpec, paths: dict[str, str]):
        if isinstance(step, SideLoad):
            copied = merge_tree(paths[step.source], paths[step.destination])
            logging.info(
                "Merged %d file(s) from %s into %s"
                % (len(copied), step.source, step.destination)
            )
            return

        if self.runner is None:
            raise ConfigurationError(f"No runner configured to execute stage '{step.key}'")
        invocation = StageInvocation(step.name, paths, step.params, key=step.key)
        status = self.runner.run(invocation)
        if status != 0:
            raise StageExecutionError(step.key, paths, status)
