"""Versioned, directory-shaped artifact stores.

An :code:`ArtifactStore` is a directory under the data root whose name is a
role plus a prefix of the version key, e.g. ``substrate-7-0``. The orchestrator
never looks inside a store, it only decides whether a store exists, whether a
given stage already completed into it, and publishes new stores atomically.

What each stage did to a store is tracked in a sidecar json file next to the
store directory (``substrate-7-0_metadata.json``), never inside it, so stage
tools that iterate over store contents are not affected:

.. code-block:: json

    {
        "role": "substrate",
        "version": ["7", "0"],
        "stages": {
            "condense[group=immediate]": {
                "status": "complete",
                "fingerprint": "1f0e3dad99908345f7439f8ffabdffc4",
                "updated": "2026-10-18-T101503",
                "run": "kickstart_7-0-0-0_1_2026-10-18-T101200"
            }
        }
    }
"""

import json
import logging
import os
import shutil
from contextlib import contextmanager
from datetime import datetime

from labrecipe import utils
from labrecipe.errors import ConfigurationError, MissingInputError, PartialWriteError
from labrecipe.version import LEVELS, SEPARATOR, VersionKey

PENDING = "pending"
COMPLETE = "complete"


def check_role(role: str) -> str:
    """Role names become the first part of store directory names, so they must be
    non-empty and may not contain the version separator or path separators."""
    if role is None or role == "":
        raise ConfigurationError("Store role name is empty")
    if SEPARATOR in role or "/" in role or "\\" in role or role in (".", ".."):
        raise ConfigurationError(
            f"Store role '{role}' may not contain '{SEPARATOR}' or path separators"
        )
    return role


class ArtifactStore:
    """A single store: a role at a specific version prefix, resolved under a data root.

    Two stores are the same store iff their role and version prefix are equal.
    The data root only determines where the store lives.

    Args:
        role (str): The base role name, e.g. ``"substrate"``.
        version (tuple): The version prefix this store is keyed by. An empty tuple
            means the store is version independent (an external input like ``origin``.)
        data_root (str): The directory all stores are siblings in.
    """

    def __init__(self, role: str, version: tuple, data_root: str):
        self.role = check_role(role)
        """The base role name of the store."""
        self.version = tuple(version)
        """The version prefix identifying this store among the stores of the same role."""
        self.data_root = data_root
        """The directory the store lives in."""

        if len(self.version) > len(LEVELS):
            raise ConfigurationError(
                f"Store '{role}' has a version prefix longer than {len(LEVELS)} tokens"
            )

    @classmethod
    def resolve(
        cls, role: str, depth: int, key: VersionKey, data_root: str
    ) -> "ArtifactStore":
        """Get the store for ``role`` at the prefix of ``key`` relevant to its depth."""
        return cls(role, key.prefix(depth), data_root)

    def __eq__(self, other):
        if not isinstance(other, ArtifactStore):
            return NotImplemented
        return self.role == other.role and self.version == other.version

    def __hash__(self):
        return hash((self.role, self.version))

    def __repr__(self):
        return f"ArtifactStore({self.name!r})"

    @property
    def depth(self) -> int:
        return len(self.version)

    @property
    def external(self) -> bool:
        """Version independent stores are supplied from outside the pipeline."""
        return self.depth == 0

    @property
    def name(self) -> str:
        if self.external:
            return self.role
        return SEPARATOR.join((self.role,) + self.version)

    @property
    def path(self) -> str:
        return os.path.join(self.data_root, self.name)

    @property
    def metadata_path(self) -> str:
        return self.path + "_metadata.json"

    @property
    def temp_path(self) -> str:
        """Where a store that does not exist yet is written before being published."""
        return os.path.join(self.data_root, f".{self.name}.tmp")

    # ---- handles ----

    def exists(self) -> bool:
        """A store exists once its directory exists. An empty directory still counts,
        e.g. an operator-created empty ``cache-7``."""
        return os.path.isdir(self.path)

    def read_handle(self, stage: str = None) -> str:
        """Get the path to read this store from.

        Raises:
            MissingInputError: if the store does not exist.
        """
        if not self.exists():
            raise MissingInputError(stage, self.role, self.path)
        return self.path

    @contextmanager
    def write_handle(self, stage: str, fingerprint: str = None, run: str = None):
        """Context manager yielding the path a stage should write this store into.

        A store that does not exist yet is written into a temporary sibling directory
        which is renamed onto the store path only if the block finishes without an
        exception, so a crashed stage never leaves a half-written store behind under
        the real name.

        A store that already exists is written in place. The stage is journaled as
        pending in the store metadata before the block and marked complete after it,
        so a stage that crashes mid-write leaves the store marked as dirty.

        Args:
            stage (str): The key of the stage writing into the store.
            fingerprint (str): The input fingerprint of the stage invocation.
            run (str): The reference name of the orchestrator run.
        """
        if self.exists():
            self.mark(stage, PENDING, fingerprint, run)
            logging.debug("Writing into existing store '%s'", self.path)
            yield self.path
            self.mark(stage, COMPLETE, fingerprint, run)
            return

        if os.path.exists(self.temp_path):
            logging.warning(
                "Removing leftover temporary directory '%s' from an earlier failed run",
                self.temp_path,
            )
            shutil.rmtree(self.temp_path)
        os.makedirs(self.temp_path)
        logging.debug("Writing new store '%s' via '%s'", self.path, self.temp_path)
        yield self.temp_path
        os.rename(self.temp_path, self.path)
        # any metadata left over belongs to a store that was deleted externally
        self.save_metadata(self._blank_metadata())
        self.mark(stage, COMPLETE, fingerprint, run)
        logging.debug("Published store '%s'", self.path)

    # ---- metadata ----

    def _blank_metadata(self) -> dict:
        return dict(role=self.role, version=list(self.version), stages={})

    def load_metadata(self) -> dict:
        """Load the sidecar metadata of this store, or a blank block if there is none."""
        if not os.path.exists(self.metadata_path):
            return self._blank_metadata()
        with open(self.metadata_path) as infile:
            try:
                metadata = json.load(infile)
            except json.JSONDecodeError as e:
                raise PartialWriteError(
                    self.path,
                    [],
                    reason=f"has unreadable metadata in '{self.metadata_path}' ({e})",
                ) from e
        if "stages" not in metadata:
            metadata["stages"] = {}
        return metadata

    def save_metadata(self, metadata: dict):
        """Write the sidecar metadata atomically (temp file then replace)."""
        os.makedirs(self.data_root, exist_ok=True)
        temp_path = self.metadata_path + ".tmp"
        with open(temp_path, "w") as outfile:
            json.dump(metadata, outfile, indent=4, default=str)
        os.replace(temp_path, self.metadata_path)

    def mark(self, stage: str, status: str, fingerprint: str = None, run: str = None):
        """Record the status of ``stage`` in this store's metadata."""
        metadata = self.load_metadata()
        metadata["stages"][stage] = dict(
            status=status,
            fingerprint=fingerprint,
            updated=datetime.now().strftime(utils.TIMESTAMP_FORMAT),
            run=run,
        )
        self.save_metadata(metadata)

    def stage_record(self, stage: str) -> dict:
        """Get the metadata block for the given stage key, or ``None``."""
        return self.load_metadata()["stages"].get(stage, None)

    def is_complete(self, stage: str, fingerprint: str = None) -> bool:
        """Check whether ``stage`` already completed into this store.

        If a fingerprint is given, the recorded fingerprint has to match it. An empty
        store never counts as complete, whatever its metadata says.
        """
        if not self.exists():
            return False
        if len(os.listdir(self.path)) == 0:
            logging.debug("Store '%s' is empty", self.path)
            return False
        record = self.stage_record(stage)
        if record is None or record["status"] != COMPLETE:
            return False
        if fingerprint is not None and record.get("fingerprint") != fingerprint:
            logging.debug(
                "Store '%s' has %s with a different fingerprint", self.path, stage
            )
            return False
        return True

    def pending_stages(self) -> list[str]:
        """Get the keys of all stages that started writing into this store but never finished."""
        if not os.path.exists(self.metadata_path):
            return []
        stages = self.load_metadata()["stages"]
        return [key for key, record in stages.items() if record["status"] == PENDING]

    def is_dirty(self) -> bool:
        return len(self.pending_stages()) > 0


def merge_tree(source: str, destination: str) -> list[str]:
    """Copy every file of ``source`` into ``destination``, never overwriting.

    Files that already exist in the destination are kept as they are, only missing
    files (and the directories needed to hold them) are added. Symbolic links,
    including links to directories, are copied as links.

    Args:
        source (str): The directory to copy from.
        destination (str): The directory to merge into. It is created if needed.

    Returns:
        The list of copied paths, relative to ``destination``, in sorted order.
    """
    if not os.path.isdir(source):
        raise MissingInputError(None, os.path.basename(source), source)

    copied = []
    os.makedirs(destination, exist_ok=True)
    for directory, subdirs, files in os.walk(source):
        subdirs.sort()
        relative_dir = os.path.relpath(directory, source)
        target_dir = os.path.normpath(os.path.join(destination, relative_dir))
        if os.path.exists(target_dir) and not os.path.isdir(target_dir):
            logging.debug("Skipping '%s', a file of that name already exists", target_dir)
            subdirs[:] = []
            continue
        os.makedirs(target_dir, exist_ok=True)
        # os.walk doesn't descend into linked directories, copy the links themselves
        for subdir in list(subdirs):
            if not os.path.islink(os.path.join(directory, subdir)):
                continue
            subdirs.remove(subdir)
            files.append(subdir)
        for filename in sorted(files):
            target = os.path.join(target_dir, filename)
            relative = os.path.normpath(os.path.join(relative_dir, filename))
            if os.path.lexists(target):
                logging.debug("Keeping existing '%s'", relative)
                continue
            source_path = os.path.join(directory, filename)
            if os.path.islink(source_path):
                os.symlink(os.readlink(source_path), target)
            else:
                shutil.copy2(source_path, target)
            copied.append(relative)
    copied.sort()
    return copied
