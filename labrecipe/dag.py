"""Dependency graph over the steps of a pipeline."""

# NOTE: the graph is derived purely from the declared read/write roles of each
# step. A read of role R by step i depends on the most recent enabled step
# before i that writes R. Steps that write the same role are additionally
# chained in declaration order (single writer per store at a time), so that
# in-place refinements of a store keep their relative order in any
# topological ordering of the graph.

from graphviz import Digraph

from labrecipe.errors import ConfigurationError
from labrecipe.staging import SideLoad, StageSpec


class DependencyNode:
    """A single step in the dependency graph.

    Args:
        step (StageSpec): The step this node represents.
        index (int): The declared position of the step in its pipeline.
    """

    def __init__(self, step: StageSpec, index: int):
        self.step = step
        self.index = index
        self.dependencies: list[DependencyNode] = []
        """Nodes this step needs to run after (producers of its inputs, and previous
        writers of the stores it writes.)"""
        self.dependents: list[DependencyNode] = []
        """Nodes that need to run after this one."""
        self.producers: dict[str, "DependencyNode"] = {}
        """For each read role, the node producing it, or ``None`` if the role is external."""

    def __repr__(self):
        return f"DependencyNode({self.index}, {self.step.key})"

    def string_rep(self, level=0) -> str:
        """Recursively collect and return this node's index and key and that of its
        dependencies."""
        string = "\n"
        string += "  " * level
        string += f"({self.index}, {self.step.key})"
        for child in self.dependencies:
            string += child.string_rep(level + 1)
        return string


class DAG:
    """The dependency graph of a list of steps. Disabled steps are part of the
    graph but never produce anything, so reads that only they would satisfy must
    be covered by ``external`` roles.

    Args:
        steps (list[StageSpec]): The steps in declared order.
        external (set[str]): Roles supplied from outside the pipeline.
    """

    def __init__(self, steps: list[StageSpec], external=None):
        self.steps = list(steps)
        self.external = set(external) if external is not None else set()
        self.nodes = [DependencyNode(step, index) for index, step in enumerate(self.steps)]
        self.problems: list[str] = []
        """Human readable descriptions of every unsatisfiable read found while building."""

        self.build()

    def _add_edge(self, source: DependencyNode, target: DependencyNode):
        if source is target or source in target.dependencies:
            return
        target.dependencies.append(source)
        source.dependents.append(target)

    def build(self):
        """Derive the edges of the graph from the steps' roles."""
        self.problems = []
        last_writer: dict[str, DependencyNode] = {}
        for node in self.nodes:
            step = node.step
            if not step.enabled:
                continue
            for role in step.reads:
                producer = last_writer.get(role, None)
                if producer is not None:
                    node.producers[role] = producer
                    self._add_edge(producer, node)
                elif role in self.external:
                    node.producers[role] = None
                else:
                    later = [
                        other.step.key
                        for other in self.nodes[node.index + 1 :]
                        if other.step.enabled and role in other.step.writes
                    ]
                    problem = f"Stage '{step.key}' reads '{role}' but no earlier stage writes it and it is not an external input"
                    if len(later) > 0:
                        problem += f" (it is only written later, by {', '.join(later)})"
                    self.problems.append(problem)
            for role in step.writes:
                previous = last_writer.get(role, None)
                if previous is not None:
                    self._add_edge(previous, node)
                last_writer[role] = node

    def validate(self):
        """Raise a ``ConfigurationError`` listing every problem found, if any."""
        if len(self.problems) > 0:
            raise ConfigurationError("Invalid pipeline:\n\t" + "\n\t".join(self.problems))

    def node(self, key: str) -> DependencyNode:
        for node in self.nodes:
            if node.step.key == key:
                return node
        raise KeyError(key)

    def topological_order(self) -> list[str]:
        """Order the enabled steps so every step comes after its dependencies. Ties are
        broken by declared position, so a valid declared order is returned unchanged."""
        enabled = [node for node in self.nodes if node.step.enabled]
        remaining = {node.index: len(node.dependencies) for node in enabled}
        ready = sorted(index for index, count in remaining.items() if count == 0)
        order = []
        while len(ready) > 0:
            index = ready.pop(0)
            node = self.nodes[index]
            order.append(node.step.key)
            for dependent in node.dependents:
                remaining[dependent.index] -= 1
                if remaining[dependent.index] == 0:
                    ready.append(dependent.index)
                    ready.sort()
        if len(order) != len(enabled):
            # can't happen for graphs built from declared order, but a manually
            # altered graph could contain a cycle
            raise ConfigurationError("Pipeline dependency graph contains a cycle")
        return order

    def is_valid_order(self, keys: list[str]) -> bool:
        """Check whether the given order of step keys respects every dependency."""
        position = {key: index for index, key in enumerate(keys)}
        for node in self.nodes:
            if not node.step.enabled:
                continue
            if node.step.key not in position:
                return False
            for dependency in node.dependencies:
                if position[dependency.step.key] > position[node.step.key]:
                    return False
        return True

    def downstream(self, keys) -> set[str]:
        """Get the keys of every step that transitively depends on any of the given steps
        (not including the given steps themselves.)"""
        found = set()
        queue = [self.node(key) for key in keys]
        while len(queue) > 0:
            node = queue.pop(0)
            for dependent in node.dependents:
                if dependent.step.key not in found:
                    found.add(dependent.step.key)
                    queue.append(dependent)
        return found - set(keys)

    def leaves(self) -> list[DependencyNode]:
        """Enabled nodes nothing else depends on."""
        return [
            node for node in self.nodes if node.step.enabled and len(node.dependents) == 0
        ]

    def __str__(self):
        return "".join(leaf.string_rep() for leaf in self.leaves())

    def to_graphviz(self, name: str = "pipeline") -> Digraph:
        """Render the graph as stages (boxes) connected through the stores (ellipses)
        they read and write."""
        dot = Digraph(
            name,
            graph_attr={"nodesep": ".05", "ranksep": ".09", "rankdir": "TB"},
            edge_attr={"arrowsize": "0.5"},
        )
        roles = []
        for step in self.steps:
            for role in step.roles:
                if role not in roles:
                    roles.append(role)
        for role in roles:
            dot.node(
                f"store_{role}",
                label=role,
                shape="ellipse",
                fontsize="8.0",
                style="filled" if role in self.external else "",
            )
        for node in self.nodes:
            step = node.step
            dot.node(
                f"step_{node.index}",
                label=step.key,
                shape="box" if not isinstance(step, SideLoad) else "cds",
                fontsize="8.0",
                height=".25",
                style="dashed" if not step.enabled else "",
            )
            for role in step.reads:
                dot.edge(f"store_{role}", f"step_{node.index}")
            for role in step.writes:
                dot.edge(f"step_{node.index}", f"store_{role}")
        return dot
