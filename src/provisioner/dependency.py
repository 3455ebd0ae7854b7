"""Dependency ordering and validation for provisioning plans.

Plans are executed in a fixed, declared total order. Each step also lists
the keys of the steps it depends on, so the order can be checked rather
than trusted:
1. The declared dependencies must form a DAG
2. Every dependency must be declared in the plan
3. Every dependency must come earlier than its dependent

EXAMPLE:
    kms-keyring/stig-artifacts
    kms-key/storage-key            depends on the keyring
    bucket/demo-stig-artifacts     depends on the key (default encryption)
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

from .models import Step

logger = logging.getLogger(__name__)


class DependencyError(Exception):
    """Raised when dependency validation fails."""

    pass


class CyclicDependencyError(DependencyError):
    """Raised when a dependency cycle is detected."""

    pass


class PlanOrderError(DependencyError):
    """Raised when a plan orders a step before one of its dependencies."""

    pass


@dataclass
class DependencyNode:
    """A node in the dependency graph."""

    key: str
    depends_on: list[str] = field(default_factory=list)


@dataclass
class DependencyGraph:
    """Directed acyclic graph of step dependencies."""

    nodes: dict[str, DependencyNode] = field(default_factory=dict)

    def add_node(self, key: str, depends_on: list[str] | None = None) -> None:
        """Add a node to the dependency graph.

        Args:
            key: Step key.
            depends_on: Keys this step depends on.
        """
        if key in self.nodes:
            if depends_on:
                self.nodes[key].depends_on = depends_on
        else:
            self.nodes[key] = DependencyNode(key=key, depends_on=depends_on or [])

        # Ensure all dependencies have nodes (even if not yet declared)
        for dep in depends_on or []:
            if dep not in self.nodes:
                self.nodes[dep] = DependencyNode(key=dep)

    def validate(self) -> None:
        """Validate the dependency graph for cycles.

        Raises:
            CyclicDependencyError: If a cycle is detected.
        """
        # Kahn's algorithm for cycle detection
        in_degree: dict[str, int] = {node: 0 for node in self.nodes}
        for node in self.nodes.values():
            for dep in node.depends_on:
                in_degree[dep] += 1

        queue = [node for node, degree in in_degree.items() if degree == 0]
        processed = 0

        while queue:
            current = queue.pop(0)
            processed += 1

            for dep in self.nodes[current].depends_on:
                in_degree[dep] -= 1
                if in_degree[dep] == 0:
                    queue.append(dep)

        if processed != len(self.nodes):
            cycle_nodes = sorted(node for node, degree in in_degree.items() if degree > 0)
            raise CyclicDependencyError(f"Circular dependency detected involving: {cycle_nodes}")


def build_graph(steps: Sequence[Step]) -> DependencyGraph:
    graph = DependencyGraph()
    for step in steps:
        graph.add_node(step.key, list(step.depends_on))
    return graph


def validate_plan_order(steps: Sequence[Step]) -> None:
    """Check that a plan's fixed order respects its declared dependencies.

    Args:
        steps: Plan steps in execution order.

    Raises:
        CyclicDependencyError: If the declared dependencies contain a cycle.
        PlanOrderError: If a key is duplicated, a dependency is undeclared,
            or a dependency comes after its dependent.
    """
    position: dict[str, int] = {}
    for index, step in enumerate(steps):
        if step.key in position:
            raise PlanOrderError(f"Duplicate step in plan: {step.key}")
        position[step.key] = index

    build_graph(steps).validate()

    for index, step in enumerate(steps):
        for dep in step.depends_on:
            if dep not in position:
                raise PlanOrderError(f"{step.key} depends on undeclared step {dep}")
            if position[dep] > index:
                raise PlanOrderError(f"{step.key} is ordered before its dependency {dep}")

    logger.debug("Plan order validated", extra={"steps": len(steps)})
