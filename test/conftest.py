import json
import os

import pytest
from pytest_mock import mocker  # noqa: F401 -- flake8 doesn't see it's used as fixture

from labrecipe.pipeline import kickstart_pipeline
from labrecipe.runners import Runner
from labrecipe.version import VersionKey

EXTERNAL_ROLES = ["origin", "meta", "support", "library", "substrate0"]


class RecordingRunner(Runner):
    """Runner that pretends to be the stage program: it remembers every invocation
    and appends the stage key to a ``<stage>.out`` file in each store the stage writes.

    Args:
        pipeline (Pipeline): Used to look up which roles a stage writes.
        failing (dict[str, int]): Exit status to return for the given stage keys.
        callbacks (dict[str, Callable]): Functions to call after the given stages ran.
    """

    def __init__(self, pipeline, failing=None, callbacks=None):
        self.pipeline = pipeline
        self.failing = dict(failing) if failing is not None else {}
        self.callbacks = dict(callbacks) if callbacks is not None else {}
        self.calls = []
        self.invocations = []

    def run(self, invocation):
        self.calls.append(invocation.key)
        self.invocations.append(invocation)
        if invocation.key in self.failing:
            return self.failing[invocation.key]
        for role in self.pipeline.step(invocation.key).writes:
            with open(os.path.join(invocation.paths[role], f"{invocation.stage}.out"), "a") as outfile:
                outfile.write(invocation.key + "\n")
        if invocation.key in self.callbacks:
            self.callbacks[invocation.key]()
        return 0


def populate_external(data_root):
    for role in EXTERNAL_ROLES:
        os.makedirs(os.path.join(data_root, role), exist_ok=True)
        with open(os.path.join(data_root, role, f"{role}.txt"), "w") as outfile:
            outfile.write(role)
    with open(os.path.join(data_root, "substrate0", "shared.json"), "w") as outfile:
        json.dump({"from": "substrate0"}, outfile)
    os.makedirs(os.path.join(data_root, "substrate0", "nested"), exist_ok=True)
    with open(os.path.join(data_root, "substrate0", "nested", "extra.json"), "w") as outfile:
        json.dump({"from": "substrate0"}, outfile)


@pytest.fixture()
def data_root(tmp_path):
    """A data root with all external inputs supplied and an empty ``cache-7``."""
    root = str(tmp_path / "data")
    populate_external(root)
    os.makedirs(os.path.join(root, "cache-7"))
    return root


@pytest.fixture()
def bare_data_root(tmp_path):
    """A data root with the external inputs but without any cache."""
    root = str(tmp_path / "data")
    populate_external(root)
    return root


@pytest.fixture()
def pipeline():
    return kickstart_pipeline()


@pytest.fixture()
def make_runner(pipeline):
    """Create recording runners, for the default pipeline unless another one is given."""

    def factory(failing=None, callbacks=None, for_pipeline=None):
        return RecordingRunner(for_pipeline or pipeline, failing, callbacks)

    return factory


@pytest.fixture()
def runner(make_runner):
    return make_runner()


@pytest.fixture()
def key():
    return VersionKey.parse("7-0-0-0")


@pytest.fixture()
def configuration(tmp_path):
    config = {
        "data_root": str(tmp_path / "data"),
        "command": ["transpaer-lab"],
        "manager_cache_path": str(tmp_path / "manager"),
        "logs_path": str(tmp_path / "logs"),
        "version": {"E": "7", "S": "0", "C": "0", "T": "0"},
        "with_extract": False,
    }
    return config


@pytest.fixture()
def configured(mocker, configuration):  # noqa: F811 -- mocker has to be passed in as fixture
    mock = mocker.patch("labrecipe.utils.get_configuration")
    mock.return_value = configuration
    yield configuration


@pytest.fixture()
def project_folder(tmp_path):
    """Change into an empty project directory for the duration of the test."""
    project_dir = tmp_path / "project" / "sub"
    os.makedirs(project_dir)
    current_dir = os.getcwd()
    os.chdir(project_dir)
    yield str(project_dir)
    os.chdir(current_dir)
