from diweave.bindings import Binding, BindingRegistry, Lifetime, ProducerDependency
from diweave.bridge import BridgeHandle, BridgeSettings, ContainerBridge
from diweave.container import CapabilityState, Container
from diweave.exceptions import (
    DIWeaveBridgeError,
    DIWeaveBridgeLoadError,
    DIWeaveBridgeSymbolNotFoundError,
    DIWeaveBridgeTypeMismatchError,
    DIWeaveCircularDependencyError,
    DIWeaveError,
    DIWeaveInvalidBindingError,
    DIWeaveProducerInvocationError,
    DIWeaveUnresolvedDependencyError,
)
from diweave.graph import DependencyGraphBuilder, NodeState, PlanNode, ResolutionPlan
from diweave.lock_mode import LockMode
from diweave.markers import Component, Injected, injectable

__all__ = [
    "Binding",
    "BindingRegistry",
    "BridgeHandle",
    "BridgeSettings",
    "CapabilityState",
    "Component",
    "Container",
    "ContainerBridge",
    "DIWeaveBridgeError",
    "DIWeaveBridgeLoadError",
    "DIWeaveBridgeSymbolNotFoundError",
    "DIWeaveBridgeTypeMismatchError",
    "DIWeaveCircularDependencyError",
    "DIWeaveError",
    "DIWeaveInvalidBindingError",
    "DIWeaveProducerInvocationError",
    "DIWeaveUnresolvedDependencyError",
    "DependencyGraphBuilder",
    "Injected",
    "LockMode",
    "NodeState",
    "PlanNode",
    "ProducerDependency",
    "ResolutionPlan",
    "injectable",
]
