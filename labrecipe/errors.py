"""Exceptions raised while configuring and running a pipeline.

Every error aborts the remaining pipeline. Stores completed before the error
are left untouched, so a later run resumes from the failing stage.
"""


class LabRecipeError(Exception):
    """Base class for all labrecipe errors."""

    pass


class ConfigurationError(LabRecipeError):
    """A version token, role name, or pipeline declaration is invalid. This is
    always raised before any stage runs."""

    pass


class MissingInputError(LabRecipeError):
    """A store a stage reads from does not exist when the stage is about to start.

    Args:
        stage (str): The key of the stage that could not start.
        role (str): The role of the missing store.
        path (str): The resolved path of the missing store.
    """

    def __init__(self, stage: str, role: str, path: str):
        self.stage = stage
        self.role = role
        self.path = path
        if stage is None:
            message = f"Input store '{role}' not found at '{path}'"
        else:
            message = f"Stage '{stage}' cannot run, input store '{role}' not found at '{path}'"
        super().__init__(message)


class StageExecutionError(LabRecipeError):
    """The external transformation of a stage reported failure.

    Args:
        stage (str): The key of the failed stage.
        paths (dict[str, str]): The resolved store paths of the stage, keyed by role.
        status (int): The exit status reported by the runner.
        reason (str): Optional extra description (e.g. an exception message from an
            in-process stage.)
        work_paths (dict[str, str]): The temporary directories the stage was writing new
            stores into, keyed by role. They are kept until the next attempt.
    """

    def __init__(
        self,
        stage: str,
        paths: dict[str, str],
        status: int = None,
        reason: str = None,
        work_paths: dict[str, str] = None,
    ):
        self.stage = stage
        self.paths = dict(paths)
        self.status = status
        self.reason = reason
        self.work_paths = dict(work_paths) if work_paths is not None else {}
        message = f"Stage '{stage}' failed"
        if status is not None:
            message += f" with exit status {status}"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class PartialWriteError(LabRecipeError):
    """A store carries a pending write from a stage that never finished, so its
    content may be half-written.

    Args:
        path (str): The path of the dirty store.
        pending (list[str]): The keys of the stages that left the store pending.
        stage (str): The key of the stage that tried to use the store.
        reason (str): Why the store is considered half-written when no pending stage
            can be named, e.g. an unreadable metadata sidecar.
    """

    def __init__(self, path: str, pending: list[str], stage: str = None, reason: str = None):
        self.path = path
        self.pending = list(pending)
        self.stage = stage
        self.reason = reason
        if reason is None:
            reason = f"was left half-written by {', '.join(self.pending)}"
        message = f"Store '{path}' {reason}"
        if stage is not None:
            message += f" and cannot be used by stage '{stage}'"
        if len(self.pending) > 0:
            message += ". Re-run the pending stage(s) with --force once inspected."
        else:
            message += ". Inspect the store and remove it, or repair its metadata."
        super().__init__(message)
