from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from enum import Enum, auto

from diweave.bindings import Binding, BindingRegistry, Capability
from diweave.exceptions import DIWeaveCircularDependencyError


class NodeState(Enum):
    """Traversal state of a capability within one planning pass."""

    UNVISITED = auto()
    IN_PROGRESS = auto()
    RESOLVED = auto()


@dataclass(frozen=True, slots=True)
class PlanNode:
    """One capability to construct, with the binding that produces it."""

    capability: Capability
    binding: Binding

    @property
    def dependencies(self) -> tuple[Capability, ...]:
        return self.binding.dependency_capabilities


@dataclass(frozen=True, slots=True)
class ResolutionPlan:
    """Topologically ordered nodes: every dependency precedes its dependents.

    The last node is always the root capability the plan was built for.
    """

    root: Capability
    nodes: tuple[PlanNode, ...]

    @property
    def capabilities(self) -> tuple[Capability, ...]:
        return tuple(node.capability for node in self.nodes)

    def index_of(self, capability: Capability) -> int:
        """Return the position of ``capability`` in the plan."""
        return self.capabilities.index(capability)

    def node_for(self, capability: Capability) -> PlanNode:
        """Return the node planned for ``capability``."""
        return self.nodes[self.index_of(capability)]

    def __iter__(self) -> Iterator[PlanNode]:
        return iter(self.nodes)

    def __len__(self) -> int:
        return len(self.nodes)


@dataclass(slots=True)
class _Traversal:
    registry: BindingRegistry
    states: dict[Capability, NodeState] = field(default_factory=dict)
    path: list[Capability] = field(default_factory=list)
    nodes: list[PlanNode] = field(default_factory=list)


class DependencyGraphBuilder:
    """Build resolution plans by depth-first traversal of registered bindings.

    Capabilities required by more than one producer are planned once, so a
    plan describes a DAG rather than a tree. Independent dependencies keep
    their declared order.
    """

    def build(self, root: Capability, registry: BindingRegistry) -> ResolutionPlan:
        """Build the plan for ``root``.

        Raises:
            DIWeaveCircularDependencyError: If traversal returns to a capability
                that is still in progress. The error path runs from ``root`` to
                the repeated capability.
            DIWeaveUnresolvedDependencyError: If any capability reached from
                ``root`` has no binding.

        """
        traversal = _Traversal(registry=registry)
        self._visit(root, traversal)
        return ResolutionPlan(root=root, nodes=tuple(traversal.nodes))

    def _visit(self, capability: Capability, traversal: _Traversal) -> None:
        state = traversal.states.get(capability, NodeState.UNVISITED)
        if state is NodeState.RESOLVED:
            return
        if state is NodeState.IN_PROGRESS:
            raise DIWeaveCircularDependencyError([*traversal.path, capability])

        required_by = traversal.path[-1] if traversal.path else None
        binding = traversal.registry.lookup(capability, required_by=required_by)

        traversal.states[capability] = NodeState.IN_PROGRESS
        traversal.path.append(capability)
        for dependency in binding.dependency_capabilities:
            self._visit(dependency, traversal)
        traversal.path.pop()

        traversal.states[capability] = NodeState.RESOLVED
        traversal.nodes.append(PlanNode(capability=capability, binding=binding))
