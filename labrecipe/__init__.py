# flake8: noqa

# make all submodules directly accessible from a single labrecipe import
from labrecipe import (
    caching,
    dag,
    errors,
    hashing,
    orchestrator,
    pipeline,
    reporting,
    runners,
    staging,
    store,
    utils,
    version,
)

# make super important things accessible directly off of the top level module
from labrecipe.caching import ArtifactStore, merge_tree
from labrecipe.errors import (
    ConfigurationError,
    LabRecipeError,
    MissingInputError,
    PartialWriteError,
    StageExecutionError,
)
from labrecipe.orchestrator import ExecutionPlan, Orchestrator, RunResult, StageState
from labrecipe.pipeline import Pipeline, kickstart_pipeline
from labrecipe.runners import CallableRunner, CommandRunner, StageInvocation
from labrecipe.staging import SideLoad, StageSpec
from labrecipe.version import VersionKey

__version__ = "0.1.0"
