"""Declarative descriptions of pipeline steps.

A step is either a :code:`StageSpec`, an opaque external transformation that a
runner executes, or a :code:`SideLoad`, which merges a fixed external
directory into a store and is executed by the orchestrator itself.
"""

import logging
import os

import psutil

from labrecipe import utils
from labrecipe.errors import ConfigurationError

# NOTE: resource only exists on unix systems
if os.name != "nt":
    import resource


class StageSpec:
    """One named pipeline stage and the stores it touches.

    Args:
        name (str): The stage name, also the subcommand passed to the runner.
        reads (list[str]): The roles of the stores this stage reads from.
        writes (list[str]): The roles of the stores this stage writes. A role may
            be in both ``reads`` and ``writes`` for in-place stages.
        params (dict[str, str]): Stage-local parameters, passed to the stage as
            ``--<name> <value>``.
        enabled (bool): Disabled stages are part of the declaration but never run,
            their outputs have to be supplied from outside.
        description (str): A short human description, shown in plans and diagrams.

    Example:
        .. code-block:: python

            StageSpec(
                "condense",
                reads=["origin", "meta", "support", "cache"],
                writes=["substrate"],
                params={"group": "immediate"},
            )
    """

    def __init__(
        self,
        name: str,
        reads: list[str] = None,
        writes: list[str] = None,
        params: dict[str, str] = None,
        enabled: bool = True,
        description: str = "",
    ):
        if name is None or name == "":
            raise ConfigurationError("Stage name is empty")
        self.name = name
        self.reads: tuple = tuple(reads) if reads is not None else ()
        self.writes: tuple = tuple(writes) if writes is not None else ()
        self.params: dict[str, str] = {
            key: str(value) for key, value in (params or {}).items()
        }
        self.enabled = enabled
        self.description = description

        if len(self.writes) == 0:
            raise ConfigurationError(f"Stage '{name}' does not write any store")
        for roles in (self.reads, self.writes):
            if len(set(roles)) != len(roles):
                raise ConfigurationError(f"Stage '{name}' lists a store twice")

    @property
    def key(self) -> str:
        """Unique identifier of this stage within a pipeline, including its parameters,
        e.g. ``condense[group=filtered]``."""
        if len(self.params) == 0:
            return self.name
        params = ",".join(f"{key}={self.params[key]}" for key in sorted(self.params))
        return f"{self.name}[{params}]"

    @property
    def roles(self) -> tuple:
        """Every role this stage touches, reads first, without duplicates."""
        return self.reads + tuple(role for role in self.writes if role not in self.reads)

    @property
    def in_place(self) -> tuple:
        """Roles this stage both reads and writes."""
        return tuple(role for role in self.writes if role in self.reads)

    def __repr__(self):
        return f"{self.__class__.__name__}({self.key!r})"


class SideLoad(StageSpec):
    """A non-stage step that merges a fixed external directory into a store.

    Files already in the destination store are never overwritten, only missing
    files are added.

    Args:
        name (str): The step name.
        source (str): The role of the (external) directory to copy from.
        destination (str): The role of the store to merge into.
    """

    def __init__(
        self, name: str, source: str, destination: str, enabled: bool = True, description: str = ""
    ):
        super().__init__(
            name,
            reads=[source],
            writes=[destination],
            enabled=enabled,
            description=description or f"merge {source} into {destination}",
        )
        self.source = source
        self.destination = destination


def children_max_rss() -> int:
    """Peak resident memory in bytes of any terminated child process so far, 0 where
    this isn't available."""
    if os.name == "nt":
        return 0
    usage = resource.getrusage(resource.RUSAGE_CHILDREN).ru_maxrss
    # linux reports kilobytes, macOS reports bytes
    if os.uname().sysname != "Darwin":
        usage *= 1024
    return usage


def _log_stats(step_key: str, data_root: str, exec_time_start: float, exec_time_end: float):
    exec_time = exec_time_end - exec_time_start
    logging.info("%s took %s" % (step_key, utils.human_readable_time(exec_time)))
    logging.debug(
        "Children max memory - %s"
        % utils.human_readable_mem_usage(children_max_rss())
    )
    if os.path.isdir(data_root):
        disk = psutil.disk_usage(data_root)
        logging.debug(
            "Data root disk - %s free of %s"
            % (
                utils.human_readable_mem_usage(disk.free),
                utils.human_readable_mem_usage(disk.total),
            )
        )
