"""Pipeline declarations, including the kickstart recipe."""

from labrecipe.caching import ArtifactStore, check_role
from labrecipe.dag import DAG
from labrecipe.errors import ConfigurationError
from labrecipe.staging import SideLoad, StageSpec
from labrecipe.version import LEVELS, VersionKey

KICKSTART_ROLES = {
    "origin": 0,
    "meta": 0,
    "support": 0,
    "library": 0,
    "substrate0": 0,
    "cache": 1,
    "substrate": 2,
    "coagulate": 3,
    "target": 4,
}
"""Version depth of every store role used by the kickstart recipe. Depth 0 stores
are version independent external inputs."""

KICKSTART_EXTERNAL = ["origin", "meta", "support", "library", "substrate0"]
"""Roles the operator supplies before the kickstart recipe can run."""


class Pipeline:
    """An ordered sequence of steps over a set of store roles.

    The declared order is the execution order. It is checked against the
    dependency graph on construction, so a pipeline that reads a store before
    any step has written it fails here rather than midway through a run.

    Args:
        name (str): The pipeline name, used in run reference names.
        steps (list[StageSpec]): The steps in execution order.
        roles (dict[str, int]): The version depth of every store role.
        external (list[str]): Roles supplied from outside the pipeline (external
            inputs and preconditions of disabled stages.)

    Raises:
        ConfigurationError: if any declaration invariant is violated.
    """

    def __init__(
        self,
        name: str,
        steps: list[StageSpec],
        roles: dict[str, int],
        external: list[str] = None,
    ):
        self.name = name
        self.steps: list[StageSpec] = list(steps)
        self.roles: dict[str, int] = dict(roles)
        self.external: list[str] = list(external) if external is not None else []

        self.validate()
        self.dag = DAG(self.steps, self.external)
        self.dag.validate()
        if not self.dag.is_valid_order([step.key for step in self.enabled_steps]):
            raise ConfigurationError(
                f"Declared order of pipeline '{name}' does not respect its dependencies"
            )

    def validate(self):
        """Check the static declaration: unique keys, known roles with sane depths, and
        version monotonicity of every step."""
        if self.name is None or self.name == "":
            raise ConfigurationError("Pipeline name is empty")
        if len(self.steps) == 0:
            raise ConfigurationError(f"Pipeline '{self.name}' has no steps")

        for role, depth in self.roles.items():
            check_role(role)
            if not isinstance(depth, int) or depth < 0 or depth > len(LEVELS):
                raise ConfigurationError(
                    f"Role '{role}' has version depth {depth}, expected 0-{len(LEVELS)}"
                )
        for role in self.external:
            if role not in self.roles:
                raise ConfigurationError(f"External role '{role}' is not declared")

        keys = set()
        for step in self.steps:
            if step.key in keys:
                raise ConfigurationError(f"Stage '{step.key}' is declared twice")
            keys.add(step.key)

            for role in step.roles:
                if role not in self.roles:
                    raise ConfigurationError(
                        f"Stage '{step.key}' uses undeclared store role '{role}'"
                    )

            # a stage can't produce an artifact at a version level its inputs don't determine
            deepest_read = max([self.roles[role] for role in step.reads], default=0)
            deepest_write = max(self.roles[role] for role in step.writes)
            if deepest_write < deepest_read:
                raise ConfigurationError(
                    f"Stage '{step.key}' reads version depth {deepest_read} but only writes up to depth {deepest_write}"
                )

            if isinstance(step, SideLoad) and self.roles[step.source] != 0:
                raise ConfigurationError(
                    f"Side-load '{step.key}' must copy from a version independent store"
                )

    @property
    def enabled_steps(self) -> list[StageSpec]:
        return [step for step in self.steps if step.enabled]

    def step(self, key: str) -> StageSpec:
        """Find a step by key, or by name if the name is unique in the pipeline."""
        for step in self.steps:
            if step.key == key:
                return step
        matches = [step for step in self.steps if step.name == key]
        if len(matches) == 1:
            return matches[0]
        if len(matches) > 1:
            raise ConfigurationError(
                f"Stage name '{key}' is ambiguous, use one of: {', '.join(step.key for step in matches)}"
            )
        raise ConfigurationError(f"No stage '{key}' in pipeline '{self.name}'")

    def resolve_keys(self, names) -> set[str]:
        """Turn a list of stage keys or unique names into stage keys. Plain names shared
        by several stages (e.g. ``condense``) select all of them."""
        keys = set()
        for name in names:
            matches = [step.key for step in self.steps if step.name == name]
            if len(matches) > 0 and name not in [step.key for step in self.steps]:
                keys.update(matches)
            else:
                keys.add(self.step(name).key)
        return keys

    def store(self, role: str, key: VersionKey, data_root: str) -> ArtifactStore:
        """Resolve a role to its concrete store for the given version key."""
        if role not in self.roles:
            raise ConfigurationError(f"Unknown store role '{role}'")
        return ArtifactStore.resolve(role, self.roles[role], key, data_root)

    def stores(self, key: VersionKey, data_root: str) -> dict[str, ArtifactStore]:
        """Resolve every role used by any step, keyed by role."""
        stores = {}
        for step in self.steps:
            for role in step.roles:
                if role not in stores:
                    stores[role] = self.store(role, key, data_root)
        return stores


def kickstart_pipeline(with_extract: bool = False) -> Pipeline:
    """The data kickstart recipe: extract, condense, side-load, filter, condense,
    coagulate, crystalize, oxidize, update.

    Args:
        with_extract (bool): If ``False`` (the default), ``extract`` is declared but
            disabled and the ``cache`` store is a precondition the operator has to
            have created (it may be empty). If ``True``, ``extract`` runs as a
            normal stage and creates ``cache``.
    """
    origin_meta = ["origin", "meta"]
    steps = [
        StageSpec(
            "extract",
            reads=["origin"],
            writes=["cache"],
            enabled=with_extract,
            description="parse raw origin data into the cache",
        ),
        StageSpec(
            "condense",
            reads=origin_meta + ["support", "cache"],
            writes=["substrate"],
            params={"group": "immediate"},
            description="aggregate immediate sources into substrate files",
        ),
        SideLoad("sideload", source="substrate0", destination="substrate"),
        StageSpec(
            "filter",
            reads=origin_meta + ["cache", "substrate"],
            writes=["substrate"],
            description="prune substrate entries",
        ),
        StageSpec(
            "condense",
            reads=origin_meta + ["support", "cache"],
            writes=["substrate"],
            params={"group": "filtered"},
            description="aggregate filtered sources into substrate files",
        ),
        StageSpec(
            "coagulate",
            reads=["substrate"],
            writes=["coagulate"],
            description="merge substrate entries referring to the same entity",
        ),
        StageSpec(
            "crystalize",
            reads=["substrate", "coagulate"],
            writes=["target"],
            description="emit the final target database",
        ),
        StageSpec(
            "oxidize",
            reads=["support", "library", "target"],
            writes=["target"],
            description="augment the target with library content",
        ),
        StageSpec(
            "update",
            reads=["origin", "cache", "substrate", "meta"],
            writes=["cache", "substrate"],
            description="feed derived results back into earlier stores",
        ),
    ]
    external = list(KICKSTART_EXTERNAL)
    if not with_extract:
        external.append("cache")
    return Pipeline("kickstart", steps, KICKSTART_ROLES, external)
