from __future__ import annotations

import inspect
import itertools
import logging
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from enum import Enum, auto
from inspect import Parameter
from typing import Annotated, Any, TypeAlias, get_args, get_origin, get_type_hints

from diweave.exceptions import DIWeaveInvalidBindingError, DIWeaveUnresolvedDependencyError
from diweave.lock_mode import LockMode
from diweave.markers import component_of

logger = logging.getLogger(__name__)

Capability: TypeAlias = Any
"""A key identifying an abstract contract: a class, a protocol, or an ``Annotated`` token."""

Producer: TypeAlias = Callable[..., Any]
"""A constructor or factory that builds an instance from resolved dependencies."""

_MISSING_ANNOTATION: Any = object()
_IMPLICIT_FIRST_PARAMETER_NAMES = {"self", "cls"}


def capability_name(capability: Capability) -> str:
    """Render a capability for diagnostics and log messages."""
    if get_origin(capability) is Annotated:
        base = get_args(capability)[0]
        component = component_of(capability)
        if component is not None:
            return f"{capability_name(base)}[component={component.value!r}]"
        return repr(capability)
    if isinstance(capability, str):
        return capability
    if isinstance(capability, type):
        return capability.__qualname__
    return repr(capability)


class Lifetime(Enum):
    """Defines the lifetime of a capability in the container."""

    SINGLETON = auto()
    """A single instance is created and shared for the lifetime of the container."""

    TRANSIENT = auto()
    """A new instance is created for every ``get``, shared within one resolution pass."""


@dataclass(frozen=True, slots=True)
class ProducerDependency:
    """Represents a capability required by a producer.

    With ``keyword=None`` the resolved instance is passed positionally, in
    declared order. Otherwise it is passed as that keyword argument.
    """

    capability: Capability
    keyword: str | None = None


@dataclass(frozen=True, kw_only=True)
class Binding:
    """Association from a capability to its producer and dependencies."""

    capability: Capability
    """The capability this binding supplies."""
    producer: Producer
    """The constructor or factory that builds the instance."""
    dependencies: tuple[ProducerDependency, ...] = ()
    """Capabilities required by the producer, in declared order."""
    lifetime: Lifetime = Lifetime.SINGLETON
    """How long a produced instance is reused."""
    lock_mode: LockMode = LockMode.THREAD
    """Locking strategy used when constructing a singleton."""
    eager: bool = False
    """Construct this capability during ``Container.init()``."""
    slot: int = 0
    """Registration order number assigned by the registry."""

    @property
    def dependency_capabilities(self) -> tuple[Capability, ...]:
        return tuple(dependency.capability for dependency in self.dependencies)

    def invoke(self, resolved: list[Any]) -> Any:
        """Call the producer with instances matching ``dependencies`` one to one."""
        args: list[Any] = []
        kwargs: dict[str, Any] = {}
        for dependency, instance in zip(self.dependencies, resolved, strict=True):
            if dependency.keyword is None:
                args.append(instance)
            else:
                kwargs[dependency.keyword] = instance
        return self.producer(*args, **kwargs)


class BindingRegistry:
    """Holds all bindings registered in a container, keyed by capability."""

    def __init__(self) -> None:
        self._bindings: dict[Capability, Binding] = {}
        self._slots = itertools.count(1)
        self._frozen = False

    def register(self, binding: Binding) -> Binding:
        """Add or replace the binding for ``binding.capability``.

        Returns the stored binding, stamped with its registration slot.
        """
        if self._frozen:
            msg = (
                f"Cannot register {capability_name(binding.capability)}: the registry is frozen "
                "because the container has started resolving."
            )
            raise DIWeaveInvalidBindingError(msg)
        if binding.capability is None:
            msg = "Binding capability must not be None."
            raise DIWeaveInvalidBindingError(msg)
        if binding.producer is None:
            msg = f"Binding for {capability_name(binding.capability)} has no producer."
            raise DIWeaveInvalidBindingError(msg)
        if not callable(binding.producer):
            msg = (
                f"Producer for {capability_name(binding.capability)} must be callable, "
                f"got {type(binding.producer).__name__}."
            )
            raise DIWeaveInvalidBindingError(msg)
        if binding.capability in binding.dependency_capabilities:
            msg = f"Binding for {capability_name(binding.capability)} depends on itself."
            raise DIWeaveInvalidBindingError(msg)

        stored = Binding(
            capability=binding.capability,
            producer=binding.producer,
            dependencies=binding.dependencies,
            lifetime=binding.lifetime,
            lock_mode=binding.lock_mode,
            eager=binding.eager,
            slot=next(self._slots),
        )
        if binding.capability in self._bindings:
            logger.debug("Replacing binding for %s", capability_name(binding.capability))
        else:
            logger.debug(
                "Registered binding for %s with %d dependencies",
                capability_name(binding.capability),
                len(binding.dependencies),
            )
        self._bindings[binding.capability] = stored
        return stored

    def lookup(self, capability: Capability, *, required_by: Capability = None) -> Binding:
        """Get the binding for ``capability`` or raise when it is not registered."""
        binding = self._bindings.get(capability)
        if binding is None:
            raise DIWeaveUnresolvedDependencyError(capability, required_by=required_by)
        return binding

    def find(self, capability: Capability) -> Binding | None:
        """Get the binding for ``capability``, if it exists."""
        return self._bindings.get(capability)

    def values(self) -> list[Binding]:
        """Get all bindings in registration order."""
        return list(self._bindings.values())

    def freeze(self) -> None:
        """Reject further registrations."""
        self._frozen = True

    @property
    def is_frozen(self) -> bool:
        return self._frozen

    def __contains__(self, capability: object) -> bool:
        return capability in self._bindings

    def __iter__(self) -> Iterator[Capability]:
        return iter(self._bindings)

    def __len__(self) -> int:
        return len(self._bindings)


@dataclass(slots=True)
class ProducerDependenciesExtractor:
    """Extracts dependencies from annotated constructors and factories."""

    def extract(
        self,
        *,
        target: Callable[..., Any],
        provider_name: str,
        skip_first_parameter: bool,
    ) -> tuple[ProducerDependency, ...]:
        """Infer the dependency list from the parameter annotations of ``target``."""
        parameters = self._provider_parameters(
            provider=target,
            skip_first_parameter=skip_first_parameter,
        )
        annotations, annotation_error = self._resolved_type_hints(target)
        dependencies: list[ProducerDependency] = []

        for parameter in parameters:
            capability = self._resolve_parameter_annotation(
                parameter=parameter,
                annotations=annotations,
                annotation_error=annotation_error,
                provider_name=provider_name,
            )
            if capability is _MISSING_ANNOTATION:
                continue
            keyword = parameter.name if parameter.kind is Parameter.KEYWORD_ONLY else None
            dependencies.append(ProducerDependency(capability=capability, keyword=keyword))

        return tuple(dependencies)

    def _resolve_parameter_annotation(
        self,
        *,
        parameter: Parameter,
        annotations: dict[str, Any],
        annotation_error: Exception | None,
        provider_name: str,
    ) -> Any:
        if not self._is_required_parameter(parameter):
            return _MISSING_ANNOTATION

        annotation = annotations.get(parameter.name, _MISSING_ANNOTATION)
        if annotation is not _MISSING_ANNOTATION:
            return annotation

        raw_annotation = parameter.annotation
        if raw_annotation is not Parameter.empty and not isinstance(raw_annotation, str):
            return raw_annotation

        error_message = (
            f"Unable to infer dependency for required parameter '{parameter.name}' "
            f"in producer '{provider_name}'. Add a type annotation or pass explicit dependencies."
        )
        if annotation_error is None:
            raise DIWeaveInvalidBindingError(error_message)
        msg = f"{error_message} Original annotation error: {annotation_error}"
        raise DIWeaveInvalidBindingError(msg) from annotation_error

    def _provider_parameters(
        self,
        *,
        provider: Callable[..., Any],
        skip_first_parameter: bool,
    ) -> tuple[Parameter, ...]:
        try:
            parameters = tuple(inspect.signature(provider).parameters.values())
        except (TypeError, ValueError):
            return ()
        if (
            skip_first_parameter
            and parameters
            and parameters[0].name in _IMPLICIT_FIRST_PARAMETER_NAMES
        ):
            return parameters[1:]
        return parameters

    def _resolved_type_hints(
        self,
        provider: Callable[..., Any],
    ) -> tuple[dict[str, Any], Exception | None]:
        try:
            return get_type_hints(provider, include_extras=True), None
        except (AttributeError, NameError, TypeError) as error:
            return {}, error

    def _is_required_parameter(self, parameter: Parameter) -> bool:
        return (
            parameter.default is Parameter.empty
            and parameter.kind is not Parameter.VAR_POSITIONAL
            and parameter.kind is not Parameter.VAR_KEYWORD
        )


@dataclass(slots=True)
class ProducerReturnTypeExtractor:
    """Extracts the supplied capability from a factory's return annotation."""

    def extract_from_factory(self, factory: Producer) -> Capability:
        """Extract a return type from a factory-based producer."""
        provider_name = getattr(factory, "__qualname__", repr(factory))
        try:
            return_annotation = get_type_hints(factory, include_extras=True).get(
                "return",
                _MISSING_ANNOTATION,
            )
            annotation_error: Exception | None = None
        except (AttributeError, NameError, TypeError) as error:
            return_annotation = _MISSING_ANNOTATION
            annotation_error = error

        if return_annotation is _MISSING_ANNOTATION or return_annotation is type(None):
            msg = (
                f"Unable to infer capability for factory '{provider_name}'. "
                "Add a return type annotation or pass provides= explicitly."
            )
            if annotation_error is None:
                raise DIWeaveInvalidBindingError(msg)
            full_msg = f"{msg} Original annotation error: {annotation_error}"
            raise DIWeaveInvalidBindingError(full_msg) from annotation_error

        return return_annotation
