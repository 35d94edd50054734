from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from enum import Enum, auto
from types import TracebackType
from typing import Any, Generic, Literal, TypeVar, cast, overload

from diweave.bindings import (
    Binding,
    BindingRegistry,
    Capability,
    Lifetime,
    ProducerDependenciesExtractor,
    ProducerDependency,
    ProducerReturnTypeExtractor,
    capability_name,
)
from diweave.exceptions import (
    DIWeaveCircularDependencyError,
    DIWeaveInvalidBindingError,
    DIWeaveProducerInvocationError,
)
from diweave.graph import DependencyGraphBuilder, PlanNode, ResolutionPlan
from diweave.lock_mode import LockMode
from diweave.markers import find_injection_point

T = TypeVar("T")
F = TypeVar("F", bound=Callable[..., Any])
C = TypeVar("C", bound=type[Any])

logger = logging.getLogger(__name__)
_MISSING: Any = object()


class CapabilityState(Enum):
    """Lifecycle of a capability inside one container."""

    UNBOUND = auto()
    """No binding is registered."""
    BOUND = auto()
    """A binding exists but no singleton instance has been built yet."""
    BUILDING = auto()
    """The producer is running."""
    RESOLVED = auto()
    """A singleton instance is cached."""
    FAILED = auto()
    """The producer raised; the error is replayed on every later ``get``."""


class Container:
    """Own bindings, build resolution plans, and cache produced instances.

    Capabilities are usually classes or protocols, or ``typing.Annotated``
    tokens such as ``Annotated[Database, Component("replica")]``.

    Registration happens first. The first ``init()`` or ``get()`` freezes the
    registry, after which registrations are rejected. Every capability is
    resolved through a plan in which dependencies precede their dependents.
    Singletons are built at most once per container, even when several
    threads race for the same uncached capability.
    """

    def __init__(
        self,
        *,
        default_lifetime: Lifetime = Lifetime.SINGLETON,
        lock_mode: LockMode = LockMode.THREAD,
    ) -> None:
        """Initialize an empty container.

        Args:
            default_lifetime: Lifetime used by registrations that omit
                ``lifetime``.
            lock_mode: Default lock strategy for singleton construction.

        Examples:
            .. code-block:: python

                container = Container()

                unlocked = Container(lock_mode=LockMode.NONE)

        """
        self._default_lifetime = default_lifetime
        self._lock_mode = lock_mode

        self._registry = BindingRegistry()
        self._graph_builder = DependencyGraphBuilder()
        self._dependencies_extractor = ProducerDependenciesExtractor()
        self._return_type_extractor = ProducerReturnTypeExtractor()

        self._plans: dict[Capability, ResolutionPlan] = {}
        self._instances: dict[Capability, Any] = {}
        self._failures: dict[
            Capability,
            tuple[DIWeaveProducerInvocationError, TracebackType | None],
        ] = {}
        self._building: set[Capability] = set()
        self._singleton_locks: dict[Capability, threading.Lock] = {}
        self._singleton_locks_lock = threading.Lock()
        self._lock_owners: dict[Capability, int] = {}
        self._waiting_for: dict[int, Capability] = {}
        self._lock_graph_lock = threading.Lock()
        self._thread_state = threading.local()
        self._init_lock = threading.Lock()
        self._initialized = False

    # region Registration Methods
    def register(
        self,
        capability: Capability,
        producer: Callable[..., Any],
        dependencies: Iterable[Any] = (),
        *,
        lifetime: Lifetime | Literal["from_container"] = "from_container",
        lock_mode: LockMode | Literal["from_container"] = "from_container",
        eager: bool = False,
    ) -> None:
        """Bind ``capability`` to ``producer`` with an explicit dependency list.

        The producer receives the resolved dependencies positionally, in the
        order given. Entries may also be ``ProducerDependency`` objects to pass
        a dependency as a keyword argument. Registering the same capability
        again replaces the earlier binding.

        Args:
            capability: Capability supplied by the producer.
            producer: Constructor or factory called with resolved dependencies.
            dependencies: Required capabilities in call order.
            lifetime: Binding lifetime, or ``"from_container"`` for the
                container default.
            lock_mode: Lock strategy, or ``"from_container"`` for the container
                default.
            eager: Construct this capability during ``init()``.

        Raises:
            DIWeaveInvalidBindingError: If the producer is missing or not
                callable, the capability depends on itself directly, or the
                container has started resolving.

        Examples:
            .. code-block:: python

                container.register(Database, SimpleDatabase)
                container.register(UserService, UserService, [Database])

        """
        self._registry.register(
            Binding(
                capability=capability,
                producer=producer,
                dependencies=self._normalize_dependencies(dependencies),
                lifetime=self._resolve_registration_lifetime(lifetime, method_name="register"),
                lock_mode=self._resolve_registration_lock_mode(lock_mode, method_name="register"),
                eager=eager,
            ),
        )

    def add_instance(
        self,
        instance: Any,
        *,
        provides: Capability | Literal["infer"] = "infer",
    ) -> None:
        """Register a pre-built instance.

        Args:
            instance: Value returned on resolution.
            provides: Capability to bind. ``"infer"`` binds ``type(instance)``.

        Examples:
            .. code-block:: python

                container.add_instance(Settings(debug=True))

        """
        resolved_provides = type(instance) if provides == "infer" else provides
        self._registry.register(
            Binding(
                capability=resolved_provides,
                producer=_InstanceProducer(instance),
                lifetime=Lifetime.SINGLETON,
                lock_mode=LockMode.NONE,
            ),
        )

    @overload
    def add_concrete(
        self,
        concrete_type: type[Any],
        *,
        provides: Capability | Literal["infer"] = "infer",
        lifetime: Lifetime | Literal["from_container"] = "from_container",
        lock_mode: LockMode | Literal["from_container"] = "from_container",
        eager: bool = False,
    ) -> None: ...

    @overload
    def add_concrete(
        self,
        concrete_type: Literal["from_decorator"] = "from_decorator",
        *,
        provides: Capability | Literal["infer"] = "infer",
        lifetime: Lifetime | Literal["from_container"] = "from_container",
        lock_mode: LockMode | Literal["from_container"] = "from_container",
        eager: bool = False,
    ) -> ConcreteTypeRegistrationDecorator[Any]: ...

    def add_concrete(
        self,
        concrete_type: type[Any] | Literal["from_decorator"] = "from_decorator",
        *,
        provides: Capability | Literal["infer"] = "infer",
        lifetime: Lifetime | Literal["from_container"] = "from_container",
        lock_mode: LockMode | Literal["from_container"] = "from_container",
        eager: bool = False,
    ) -> None | ConcreteTypeRegistrationDecorator[Any]:
        """Register a concrete type through its injection point.

        The injection point is the ``@injectable``-marked constructor or
        factory of the type, or its constructor when nothing is marked. Its
        parameter annotations become the dependency list.

        Args:
            concrete_type: Class to construct, or ``"from_decorator"`` to
                return a decorator.
            provides: Capability supplied. ``"infer"`` uses ``concrete_type``.
            lifetime: Binding lifetime, or ``"from_container"``.
            lock_mode: Lock strategy, or ``"from_container"``.
            eager: Construct this capability during ``init()``.

        Returns:
            ``None`` in direct mode or a decorator in decorator mode.

        Raises:
            DIWeaveInvalidBindingError: If the type declares several injection
                points or a required parameter has no usable annotation.

        Examples:
            .. code-block:: python

                container.add_concrete(SimpleDatabase, provides=Database)


                @container.add_concrete()
                class UserService:
                    def __init__(self, database: Database) -> None: ...

        """
        if concrete_type == "from_decorator":
            return ConcreteTypeRegistrationDecorator(
                container=self,
                provides=provides,
                lifetime=lifetime,
                lock_mode=lock_mode,
                eager=eager,
            )

        if not isinstance(concrete_type, type):
            msg = (
                "add_concrete() parameter 'concrete_type' must be a class, "
                f"got {type(concrete_type).__name__}."
            )
            raise DIWeaveInvalidBindingError(msg)

        injection_point = find_injection_point(concrete_type)
        dependencies = self._dependencies_extractor.extract(
            target=injection_point.signature_target,
            provider_name=injection_point.name,
            skip_first_parameter=injection_point.skip_first_parameter,
        )
        self._registry.register(
            Binding(
                capability=concrete_type if provides == "infer" else provides,
                producer=injection_point.producer,
                dependencies=dependencies,
                lifetime=self._resolve_registration_lifetime(lifetime, method_name="add_concrete"),
                lock_mode=self._resolve_registration_lock_mode(
                    lock_mode,
                    method_name="add_concrete",
                ),
                eager=eager,
            ),
        )
        return None

    @overload
    def add_factory(
        self,
        factory: Callable[..., Any],
        *,
        provides: Capability | Literal["infer"] = "infer",
        dependencies: Iterable[Any] | Literal["infer"] = "infer",
        lifetime: Lifetime | Literal["from_container"] = "from_container",
        lock_mode: LockMode | Literal["from_container"] = "from_container",
        eager: bool = False,
    ) -> None: ...

    @overload
    def add_factory(
        self,
        factory: Literal["from_decorator"] = "from_decorator",
        *,
        provides: Capability | Literal["infer"] = "infer",
        dependencies: Iterable[Any] | Literal["infer"] = "infer",
        lifetime: Lifetime | Literal["from_container"] = "from_container",
        lock_mode: LockMode | Literal["from_container"] = "from_container",
        eager: bool = False,
    ) -> FactoryRegistrationDecorator[Any]: ...

    def add_factory(
        self,
        factory: Callable[..., Any] | Literal["from_decorator"] = "from_decorator",
        *,
        provides: Capability | Literal["infer"] = "infer",
        dependencies: Iterable[Any] | Literal["infer"] = "infer",
        lifetime: Lifetime | Literal["from_container"] = "from_container",
        lock_mode: LockMode | Literal["from_container"] = "from_container",
        eager: bool = False,
    ) -> None | FactoryRegistrationDecorator[Any]:
        """Register a factory function.

        The capability is inferred from the return annotation unless
        ``provides`` is given. Dependencies are inferred from parameter
        annotations unless an explicit list is given.

        Args:
            factory: Factory callable, or ``"from_decorator"`` to return a
                decorator.
            provides: Capability supplied. ``"infer"`` reads the return
                annotation.
            dependencies: Explicit dependency list, or ``"infer"``.
            lifetime: Binding lifetime, or ``"from_container"``.
            lock_mode: Lock strategy, or ``"from_container"``.
            eager: Construct this capability during ``init()``.

        Returns:
            ``None`` in direct mode or a decorator in decorator mode.

        Raises:
            DIWeaveInvalidBindingError: If the capability or dependencies cannot
                be inferred.

        Examples:
            .. code-block:: python

                @container.add_factory()
                def make_calculator() -> Calculator:
                    return SimpleCalculator()

        """
        if factory == "from_decorator":
            return FactoryRegistrationDecorator(
                container=self,
                provides=provides,
                dependencies=dependencies,
                lifetime=lifetime,
                lock_mode=lock_mode,
                eager=eager,
            )

        factory_callable = cast("Callable[..., Any]", factory)
        if not callable(factory_callable):
            msg = (
                "add_factory() parameter 'factory' must be callable, "
                f"got {type(factory_callable).__name__}."
            )
            raise DIWeaveInvalidBindingError(msg)

        resolved_provides = (
            self._return_type_extractor.extract_from_factory(factory_callable)
            if provides == "infer"
            else provides
        )
        if dependencies == "infer":
            resolved_dependencies = self._dependencies_extractor.extract(
                target=factory_callable,
                provider_name=getattr(factory_callable, "__qualname__", repr(factory_callable)),
                skip_first_parameter=False,
            )
        else:
            resolved_dependencies = self._normalize_dependencies(
                cast("Iterable[Any]", dependencies),
            )

        self._registry.register(
            Binding(
                capability=resolved_provides,
                producer=factory_callable,
                dependencies=resolved_dependencies,
                lifetime=self._resolve_registration_lifetime(lifetime, method_name="add_factory"),
                lock_mode=self._resolve_registration_lock_mode(
                    lock_mode,
                    method_name="add_factory",
                ),
                eager=eager,
            ),
        )
        return None

    def _normalize_dependencies(self, dependencies: Iterable[Any]) -> tuple[ProducerDependency, ...]:
        return tuple(
            dependency
            if isinstance(dependency, ProducerDependency)
            else ProducerDependency(capability=dependency)
            for dependency in dependencies
        )

    def _resolve_registration_lifetime(
        self,
        lifetime: Lifetime | Literal["from_container"],
        *,
        method_name: str,
    ) -> Lifetime:
        if lifetime == "from_container":
            return self._default_lifetime
        if isinstance(lifetime, Lifetime):
            return lifetime
        msg = f"{method_name}() parameter 'lifetime' must be Lifetime or 'from_container'."
        raise DIWeaveInvalidBindingError(msg)

    def _resolve_registration_lock_mode(
        self,
        lock_mode: LockMode | Literal["from_container"],
        *,
        method_name: str,
    ) -> LockMode:
        if lock_mode == "from_container":
            return self._lock_mode
        if isinstance(lock_mode, LockMode):
            return lock_mode
        msg = f"{method_name}() parameter 'lock_mode' must be LockMode or 'from_container'."
        raise DIWeaveInvalidBindingError(msg)

    # endregion Registration Methods

    # region Resolution
    def init(self) -> None:
        """Freeze registrations and construct every eager binding.

        Eager bindings are built in registration order. Calling ``init()``
        again never re-runs producers for capabilities that are already
        resolved.

        Raises:
            DIWeaveUnresolvedDependencyError: If an eager capability needs a
                capability without a binding.
            DIWeaveCircularDependencyError: If an eager capability is part of
                a cycle.
            DIWeaveProducerInvocationError: If a producer raises.

        """
        with self._init_lock:
            self._registry.freeze()
            eager_bindings = [binding for binding in self._registry.values() if binding.eager]
            for binding in eager_bindings:
                self.get(binding.capability)

            if not self._initialized:
                self._initialized = True
                logger.info(
                    "Container initialized: binding_count=%d eager_count=%d",
                    len(self._registry),
                    len(eager_bindings),
                )

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @overload
    def get(self, capability: type[T]) -> T: ...

    @overload
    def get(self, capability: Any) -> Any: ...

    def get(self, capability: Any) -> Any:
        """Return the instance for ``capability``, building it on first use.

        Cached singletons are returned without locking. The first call for a
        capability may block while producers run.

        Raises:
            DIWeaveUnresolvedDependencyError: If the capability, or anything it
                depends on, has no binding.
            DIWeaveCircularDependencyError: If the dependency graph loops.
            DIWeaveProducerInvocationError: If a producer raises now or raised
                during an earlier attempt.

        Examples:
            .. code-block:: python

                service = container.get(UserService)
                assert service is container.get(UserService)

        """
        instance = self._instances.get(capability, _MISSING)
        if instance is not _MISSING:
            return instance

        self._raise_recorded_failure(capability)
        return self._execute(self.plan(capability))

    def plan(self, capability: Capability) -> ResolutionPlan:
        """Return the resolution plan for ``capability``.

        Plans are cached because the registry is frozen from this point on.
        """
        self._registry.freeze()
        plan = self._plans.get(capability)
        if plan is None:
            plan = self._graph_builder.build(capability, self._registry)
            self._plans[capability] = plan
            logger.debug(
                "Planned %s: %s",
                capability_name(capability),
                " -> ".join(capability_name(node.capability) for node in plan),
            )
        return plan

    def state_of(self, capability: Capability) -> CapabilityState:
        """Report where ``capability`` is in its lifecycle."""
        if capability in self._failures:
            return CapabilityState.FAILED
        if capability in self._instances:
            return CapabilityState.RESOLVED
        if capability in self._building:
            return CapabilityState.BUILDING
        if capability in self._registry:
            return CapabilityState.BOUND
        return CapabilityState.UNBOUND

    def _execute(self, plan: ResolutionPlan) -> Any:
        stack = self._resolution_stack()
        stack.append(_ResolutionFrame(capability=plan.root, building=False))
        try:
            produced: dict[Capability, Any] = {}
            for node in plan:
                produced[node.capability] = self._produce(node, produced)
            return produced[plan.root]
        finally:
            stack.pop()

    def _produce(self, node: PlanNode, produced: dict[Capability, Any]) -> Any:
        capability = node.capability
        binding = node.binding
        if binding.lifetime is Lifetime.SINGLETON:
            instance = self._instances.get(capability, _MISSING)
            if instance is not _MISSING:
                return instance

        self._raise_recorded_failure(capability)
        self._raise_if_requested_by_own_producer(capability)

        if binding.lifetime is Lifetime.TRANSIENT:
            return self._build(node, produced)
        if binding.lock_mode is LockMode.NONE:
            return self._construct_singleton(node, produced)

        lock = self._acquire_singleton_lock(capability)
        try:
            return self._construct_singleton(node, produced)
        finally:
            self._release_singleton_lock(capability, lock)

    def _construct_singleton(self, node: PlanNode, produced: dict[Capability, Any]) -> Any:
        capability = node.capability
        # Re-check under the lock: a racing caller may have finished first.
        instance = self._instances.get(capability, _MISSING)
        if instance is not _MISSING:
            return instance
        self._raise_recorded_failure(capability)

        instance = self._build(node, produced)
        self._instances[capability] = instance
        return instance

    def _build(self, node: PlanNode, produced: dict[Capability, Any]) -> Any:
        capability = node.capability
        stack = self._resolution_stack()
        stack.append(_ResolutionFrame(capability=capability, building=True))
        self._building.add(capability)
        try:
            return self._invoke(node, produced)
        except DIWeaveProducerInvocationError as error:
            self._failures.setdefault(capability, (error, error.__traceback__))
            raise
        finally:
            self._building.discard(capability)
            stack.pop()

    def _invoke(self, node: PlanNode, produced: dict[Capability, Any]) -> Any:
        resolved = [produced[dependency] for dependency in node.dependencies]
        try:
            return node.binding.invoke(resolved)
        except DIWeaveCircularDependencyError:
            raise
        except Exception as error:
            logger.info(
                "Producer for %s raised %s",
                capability_name(node.capability),
                type(error).__name__,
            )
            raise DIWeaveProducerInvocationError(node.capability, error) from error

    def _raise_recorded_failure(self, capability: Capability) -> None:
        failure = self._failures.get(capability)
        if failure is not None:
            error, traceback = failure
            raise error.with_traceback(traceback)

    def _raise_if_requested_by_own_producer(self, capability: Capability) -> None:
        """Reject a request for a capability whose producer is running on this thread.

        The reported path starts at that capability and lists the capabilities
        requested from inside its producer.
        """
        stack = self._resolution_stack()
        for index in range(len(stack) - 1, -1, -1):
            frame = stack[index]
            if frame.building and frame.capability == capability:
                path = [capability]
                for later in stack[index + 1 :]:
                    if later.capability != path[-1] and later.capability != capability:
                        path.append(later.capability)
                path.append(capability)
                raise DIWeaveCircularDependencyError(path)

    def _resolution_stack(self) -> list[_ResolutionFrame]:
        stack: list[_ResolutionFrame] | None = getattr(self._thread_state, "stack", None)
        if stack is None:
            stack = []
            self._thread_state.stack = stack
        return stack

    def _acquire_singleton_lock(self, capability: Capability) -> threading.Lock:
        """Acquire the construction lock, refusing to wait when waiting would deadlock.

        Each blocked thread records the capability it waits for. Before blocking,
        the wait-for chain is followed through lock owners; if it leads back to
        the current thread, the producers request each other across threads.
        """
        lock = self._get_singleton_lock(capability)
        thread_id = threading.get_ident()
        if not lock.acquire(blocking=False):
            with self._lock_graph_lock:
                cycle = self._find_wait_cycle(capability, thread_id)
                if cycle is not None:
                    raise DIWeaveCircularDependencyError(cycle)
                self._waiting_for[thread_id] = capability
            try:
                lock.acquire()
            finally:
                with self._lock_graph_lock:
                    del self._waiting_for[thread_id]

        with self._lock_graph_lock:
            self._lock_owners[capability] = thread_id
        return lock

    def _release_singleton_lock(self, capability: Capability, lock: threading.Lock) -> None:
        with self._lock_graph_lock:
            self._lock_owners.pop(capability, None)
        lock.release()

    def _find_wait_cycle(self, capability: Capability, thread_id: int) -> list[Capability] | None:
        chain = [capability]
        owner = self._lock_owners.get(capability)
        while owner is not None and owner != thread_id:
            waited = self._waiting_for.get(owner)
            if waited is None or waited in chain:
                return None
            chain.append(waited)
            owner = self._lock_owners.get(waited)
        if owner is None:
            return None
        # The current thread holds the last capability in the chain.
        return [chain[-1], *chain]

    def _get_singleton_lock(self, capability: Capability) -> threading.Lock:
        """Get or create the construction lock for a singleton capability.

        Uses double-checked locking to minimize lock contention.
        """
        if capability not in self._singleton_locks:
            with self._singleton_locks_lock:
                # Second check after acquiring lock - race timing dependent
                if capability not in self._singleton_locks:  # pragma: no cover - race timing dependent
                    self._singleton_locks[capability] = threading.Lock()
        return self._singleton_locks[capability]

    # endregion Resolution


@dataclass(frozen=True, slots=True)
class _ResolutionFrame:
    """One entry of a thread's resolution stack: a requested root or a running producer."""

    capability: Capability
    building: bool


class _InstanceProducer:
    """Producer returning a pre-built instance."""

    __slots__ = ("instance",)

    def __init__(self, instance: Any) -> None:
        self.instance = instance

    def __call__(self) -> Any:
        return self.instance

    def __repr__(self) -> str:
        return f"_InstanceProducer({self.instance!r})"


@dataclass(slots=True, kw_only=True)
class ConcreteTypeRegistrationDecorator(Generic[T]):
    """A decorator for registering concrete types in the container."""

    container: Container
    provides: Capability | Literal["infer"] = "infer"
    lifetime: Lifetime | Literal["from_container"] = "from_container"
    lock_mode: LockMode | Literal["from_container"] = "from_container"
    eager: bool = False

    def __call__(self, concrete_type: C) -> C:
        """Register the decorated class and return it unchanged."""
        self.container.add_concrete(
            concrete_type,
            provides=self.provides,
            lifetime=self.lifetime,
            lock_mode=self.lock_mode,
            eager=self.eager,
        )
        return concrete_type


@dataclass(slots=True, kw_only=True)
class FactoryRegistrationDecorator(Generic[T]):
    """A decorator for registering factory functions in the container."""

    container: Container
    provides: Capability | Literal["infer"] = "infer"
    dependencies: Iterable[Any] | Literal["infer"] = "infer"
    lifetime: Lifetime | Literal["from_container"] = "from_container"
    lock_mode: LockMode | Literal["from_container"] = "from_container"
    eager: bool = False

    def __call__(self, factory: F) -> F:
        """Register the decorated factory and return it unchanged."""
        self.container.add_factory(
            factory,
            provides=self.provides,
            dependencies=self.dependencies,
            lifetime=self.lifetime,
            lock_mode=self.lock_mode,
            eager=self.eager,
        )
        return factory
