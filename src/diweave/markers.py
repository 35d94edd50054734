from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Annotated, Any, NamedTuple, TypeVar, Union, get_args, get_origin

from diweave.exceptions import DIWeaveInvalidBindingError

T = TypeVar("T")
F = TypeVar("F", bound=Callable[..., Any])

_ANNOTATED_MARKER_MIN_ARGS = 2
_INJECTION_POINT_ATTR = "__diweave_injection_point__"


class Component(NamedTuple):
    """Differentiate multiple bindings for the same base capability.

    Attach ``Component`` metadata to ``typing.Annotated`` so DIWeave treats each
    annotated key as a distinct capability.

    Examples:
        .. code-block:: python

            from typing import Annotated, TypeAlias


            class Database: ...


            ReplicaDb: TypeAlias = Annotated[Database, Component("replica")]
            PrimaryDb: TypeAlias = Annotated[Database, Component("primary")]

    """

    value: Any


class InjectedMarker:
    """A marker used to indicate a parameter should be injected from the container.

    Used to identify parameters that need to be removed from callable signatures
    before the remaining parameters are handed to the caller.
    """


if TYPE_CHECKING:
    Injected = Union[T, T]  # noqa: UP007,PYI016
    """Mark a parameter for container-driven injection.

    At runtime ``Injected[T]`` becomes ``Annotated[T, InjectedMarker()]``.
    """

else:

    class Injected:
        """Mark a parameter for container-driven injection.

        At runtime ``Injected[T]`` resolves to ``Annotated[T, InjectedMarker()]``.

        Examples:
            .. code-block:: python

                def test_service(service: Injected[UserService]) -> None:
                    assert service.process_user(1)

        """

        def __class_getitem__(cls, item: T) -> Annotated[T, InjectedMarker]:
            if get_origin(item) is Annotated:
                args = get_args(item)
                return build_annotated_key((args[0], *args[1:], InjectedMarker()))
            return build_annotated_key((item, InjectedMarker()))


def build_annotated_key(params: tuple[object, ...]) -> Any:
    """Return Annotated[...] built from a pre-assembled params tuple."""
    return Annotated[params]  # type: ignore[valid-type]


def is_injected_annotation(annotation: Any) -> bool:
    """Return True when annotation is Annotated[..., InjectedMarker()]."""
    if get_origin(annotation) is not Annotated:
        return False
    annotation_args = get_args(annotation)
    if len(annotation_args) < _ANNOTATED_MARKER_MIN_ARGS:
        return False
    return any(isinstance(item, InjectedMarker) for item in annotation_args[1:])


def strip_injected_annotation(annotation: Any) -> Any:
    """Strip Injected marker while preserving other Annotated metadata (components)."""
    if not is_injected_annotation(annotation):
        return annotation

    annotation_args = get_args(annotation)
    parameter_type = annotation_args[0]
    filtered_metadata = tuple(
        item for item in annotation_args[1:] if not isinstance(item, InjectedMarker)
    )
    if not filtered_metadata:
        return parameter_type
    return build_annotated_key((parameter_type, *filtered_metadata))


def component_of(annotation: Any) -> Component | None:
    """Return the ``Component`` attached to an ``Annotated`` capability, if any."""
    if get_origin(annotation) is not Annotated:
        return None
    for item in get_args(annotation)[1:]:
        if isinstance(item, Component):
            return item
    return None


def injectable(func: F) -> F:
    """Mark the injection point of a type.

    Apply it to ``__init__`` or to a ``classmethod``/``staticmethod`` factory.
    ``Container.add_concrete`` uses the marked callable's parameter annotations
    as the dependency list. A type may carry at most one marker.

    Examples:
        .. code-block:: python

            class UserService:
                @injectable
                def __init__(self, database: Database) -> None:
                    self.database = database

    """
    target = func.__func__ if isinstance(func, (classmethod, staticmethod)) else func
    setattr(target, _INJECTION_POINT_ATTR, True)
    return func


@dataclass(frozen=True, slots=True)
class InjectionPoint:
    """The callable used to construct a type and the callable to inspect for dependencies."""

    producer: Callable[..., Any]
    signature_target: Callable[..., Any]
    skip_first_parameter: bool
    name: str


def find_injection_point(concrete_type: type[Any]) -> InjectionPoint:
    """Locate the single injection point declared on ``concrete_type``.

    Without a marker the constructor is used. More than one marker is a
    configuration error detected here, at registration time.
    """
    marked: list[tuple[str, Any]] = []
    for attribute_name, attribute in vars(concrete_type).items():
        target = (
            attribute.__func__ if isinstance(attribute, (classmethod, staticmethod)) else attribute
        )
        if getattr(target, _INJECTION_POINT_ATTR, False):
            marked.append((attribute_name, attribute))

    if len(marked) > 1:
        names = ", ".join(f"'{name}'" for name, _ in marked)
        msg = (
            f"Type '{concrete_type.__qualname__}' declares multiple injection points: {names}. "
            "Mark exactly one constructor or factory with @injectable."
        )
        raise DIWeaveInvalidBindingError(msg)

    if not marked or marked[0][0] == "__init__":
        return InjectionPoint(
            producer=concrete_type,
            signature_target=concrete_type.__init__,
            skip_first_parameter=True,
            name=f"{concrete_type.__qualname__}.__init__",
        )

    attribute_name, attribute = marked[0]
    if isinstance(attribute, classmethod):
        return InjectionPoint(
            producer=getattr(concrete_type, attribute_name),
            signature_target=attribute.__func__,
            skip_first_parameter=True,
            name=f"{concrete_type.__qualname__}.{attribute_name}",
        )
    if isinstance(attribute, staticmethod):
        return InjectionPoint(
            producer=getattr(concrete_type, attribute_name),
            signature_target=attribute.__func__,
            skip_first_parameter=False,
            name=f"{concrete_type.__qualname__}.{attribute_name}",
        )

    msg = (
        f"Injection point '{concrete_type.__qualname__}.{attribute_name}' must be "
        "'__init__', a classmethod, or a staticmethod."
    )
    raise DIWeaveInvalidBindingError(msg)
