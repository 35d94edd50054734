from __future__ import annotations

from typing import Any


class DIWeaveError(Exception):
    """Represent a base class for all DIWeave-specific failures.

    Catch this type when you want to handle any DIWeave error path without
    matching each concrete exception class individually.
    """


class DIWeaveInvalidBindingError(DIWeaveError):
    """Signal invalid registration or injection-point configuration.

    Raised by ``Container.register``, ``Container.add_instance``,
    ``Container.add_concrete`` and ``Container.add_factory`` when the producer
    is missing or not callable, when a capability lists itself as a direct
    dependency, when a type declares more than one injection point, or when
    registration happens after the container started resolving.

    Typical fixes include passing a callable producer, removing the
    self-reference, keeping a single ``@injectable`` marker per type, and
    finishing all registrations before calling ``init()`` or ``get()``.
    """


class DIWeaveUnresolvedDependencyError(DIWeaveError):
    """Signal that a required capability has no binding.

    ``capability`` is the capability that could not be found and
    ``required_by`` is the capability whose producer asked for it, or ``None``
    when the missing capability was requested directly.
    """

    def __init__(self, capability: Any, required_by: Any = None) -> None:
        from diweave.bindings import capability_name

        self.capability = capability
        self.required_by = required_by
        if required_by is None:
            msg = f"No binding registered for {capability_name(capability)}."
        else:
            msg = (
                f"No binding registered for {capability_name(capability)}, "
                f"required by {capability_name(required_by)}."
            )
        super().__init__(msg)


class DIWeaveCircularDependencyError(DIWeaveError):
    """Signal a dependency cycle found while planning resolution.

    ``path`` lists capabilities from the requested root down to the repeated
    capability, so ``A -> B -> A`` is reported as ``[A, B, A]``.
    """

    def __init__(self, path: list[Any]) -> None:
        from diweave.bindings import capability_name

        self.path = path
        chain = " -> ".join(capability_name(capability) for capability in path)
        super().__init__(f"Circular dependency detected: {chain}.")


class DIWeaveProducerInvocationError(DIWeaveError):
    """Signal that a producer raised while constructing a capability.

    The original exception is available as ``cause`` and as ``__cause__``.
    The capability is marked failed and later ``get`` calls re-raise this
    same error without invoking the producer again.
    """

    def __init__(self, capability: Any, cause: BaseException) -> None:
        from diweave.bindings import capability_name

        self.capability = capability
        self.cause = cause
        super().__init__(
            f"Producer for {capability_name(capability)} failed: "
            f"{type(cause).__name__}: {cause}",
        )


class DIWeaveBridgeError(DIWeaveError):
    """Represent a base class for cross-runtime bridge failures."""


class DIWeaveBridgeLoadError(DIWeaveBridgeError):
    """Signal that the bridge namespace module could not be loaded.

    Raised when the module cannot be imported or does not expose the
    configured container and exports attributes. A failed load is not cached,
    so the next bridge call tries again.
    """


class DIWeaveBridgeSymbolNotFoundError(DIWeaveBridgeError):
    """Signal that a symbolic name is not exported by the bridge namespace."""

    def __init__(self, name: str, namespace: str) -> None:
        self.name = name
        self.namespace = namespace
        super().__init__(f"Symbol '{name}' is not exported by bridge namespace '{namespace}'.")


class DIWeaveBridgeTypeMismatchError(DIWeaveBridgeError):
    """Signal that a bridge handle does not hold the expected type.

    Raised by ``BridgeHandle.cast`` when the resolved instance is not an
    instance of the caller's expected type, or when the expected type cannot
    be checked at runtime (for example a non-runtime-checkable protocol).
    """

    def __init__(self, expected: Any, actual: type[Any], *, reason: str | None = None) -> None:
        from diweave.bindings import capability_name

        self.expected = expected
        self.actual = actual
        msg = (
            f"Expected instance of {capability_name(expected)}, "
            f"got {capability_name(actual)}."
        )
        if reason is not None:
            msg = f"{msg} {reason}"
        super().__init__(msg)
