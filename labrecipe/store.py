"""Local 'database' of orchestrator runs."""

import json
import os
from socket import gethostname


class RunStore:
    """Manages the mini database of metadata on previous pipeline runs. This is how we
    keep track of run numbers and of which stage failed with which paths. A metadata
    block for each run is stored in the manager cache path under :code:`store.json`.

    Note that the metadata blocks we keep track of for each run follows the following example:

    .. code-block:: json

        {
            "reference": "kickstart_7-0-0-0_1_2026-10-18-T100003",
            "pipeline": "kickstart",
            "version": "7-0-0-0",
            "run_number": 1,
            "timestamp": "2026-10-18-T100003",
            "status": "error",
            "stages": {"condense[group=immediate]": "cached", "sideload": "succeeded", "filter": "failed"},
            "cli": "labrecipe run -E 7 -S 0 -C 0 -T 0",
            "hostname": "mycomputer",
            "error": "StageExecutionError - Stage 'filter' failed with exit status 1",
            "failed_stage": "filter",
            "failed_paths": {"origin": "../data/origin", "substrate": "../data/substrate-7-0"}
        }

    Args:
        manager_cache_path (str): The path to the directory to keep the :code:`store.json`.
    """

    def __init__(self, manager_cache_path: str):
        self.runs = []
        """The list of metadata blocks for each run."""
        self.path = os.path.join(manager_cache_path, "store.json")
        """The location of the :code:`store.json`."""

        self.load()

    def load(self):
        """Load the current run database from :code:`store.json` into :code:`self.runs`."""
        if os.path.exists(self.path):
            with open(self.path, "r") as infile:
                self.runs = json.load(infile)

    def save(self):
        """Save the current database in :code:`self.runs` into the :code:`store.json` file."""
        os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)
        with open(self.path, "w") as outfile:
            json.dump(self.runs, outfile, indent=4)

    def get_runs(self, pipeline: str, version: str = None) -> list[dict]:
        """Get all the runs of the given pipeline, optionally only for one version key.

        Args:
            pipeline (str): The pipeline name.
            version (str): The dash-joined version key, e.g. ``"7-0-0-0"``.

        Returns:
            A list of all dictionaries (metadata blocks) matching.
        """
        return [
            run
            for run in self.runs
            if run["pipeline"] == pipeline and (version is None or run["version"] == version)
        ]

    def get_run(self, ref_name: str):
        """Get the metadata block for the run with the specified reference name.

        Returns:
            A dictionary (metadata block) for the run with the requested reference name, and the
            index of the run within the total list of runs.
        """
        for index, run in enumerate(self.runs):
            if run["reference"] == ref_name:
                return run, index
        return None, -1

    def add_run(self, pipeline: str, version: str, timestamp: str, cli: str = "") -> dict:
        """Add a new metadata block to the store for a run that is starting, numbered after
        the previous runs of the same pipeline and version.

        Note that this automatically calls the :code:`save()` function.

        Returns:
            The newly created dictionary (metadata block).
        """
        prev_runs = self.get_runs(pipeline, version)
        if len(prev_runs) == 0:
            run_number = 1
        else:
            run_number = prev_runs[-1]["run_number"] + 1

        run = {
            "reference": f"{pipeline}_{version}_{run_number}_{timestamp}",
            "pipeline": pipeline,
            "version": version,
            "run_number": run_number,
            "timestamp": timestamp,
            "status": "incomplete",
            "stages": {},
            "cli": cli,
            "hostname": gethostname(),
        }
        self.runs.append(run)

        self.save()
        return run

    def update_run(self, reference: str, status: str, stages: dict[str, str], error=None) -> dict:
        """Update the metadata for a finished run: its status, the state every stage
        ended in, and the error details if it failed.

        Note that this automatically calls the :code:`save()` function.

        Args:
            reference (str): The run reference name.
            status (str): ``complete``, ``error`` or ``interrupted``.
            stages (dict[str, str]): The final state of each stage keyed by stage key.
            error (Exception): The error that ended the run, if any.

        Returns:
            The updated dictionary (metadata block) for the run. It returns None if the run isn't
            found in the database.
        """
        run_info, index = self.get_run(reference)
        if index == -1:
            return None

        run_info["status"] = status
        run_info["stages"] = dict(stages)
        if error is not None:
            run_info["error"] = f"{str(error.__class__.__name__)} - {str(error)}"
            if getattr(error, "stage", None) is not None:
                run_info["failed_stage"] = error.stage
            if getattr(error, "paths", None) is not None:
                run_info["failed_paths"] = error.paths
            elif getattr(error, "path", None) is not None:
                run_info["failed_paths"] = {getattr(error, "role", "store"): error.path}
            if getattr(error, "work_paths", None):
                run_info["failed_work_paths"] = error.work_paths

        self.runs[index] = run_info

        self.save()
        return run_info
