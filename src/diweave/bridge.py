"""Expose container entry points to callers that only know symbolic names.

A bridge namespace is an importable module that owns a configured
``Container`` and a mapping of exported names to capabilities::

    # app/wiring.py
    container = Container()
    container.add_concrete(SimpleDatabase, provides=Database)
    container.add_concrete(UserService)

    EXPORTS = {"user-service": UserService}

The caller drives it through two entry points and a checked cast::

    bridge = ContainerBridge("app.wiring")
    bridge.init_entry()
    service = bridge.resolve_entry("user-service").cast(UserService)

The module is imported once, on first use, and reused afterwards.
"""

from __future__ import annotations

import importlib
import logging
import threading
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import UnionType
from typing import TYPE_CHECKING, Annotated, Any, TypeVar, Union, get_args, get_origin

from pydantic import ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from diweave.bindings import Capability, capability_name
from diweave.container import Container
from diweave.exceptions import (
    DIWeaveBridgeLoadError,
    DIWeaveBridgeSymbolNotFoundError,
    DIWeaveBridgeTypeMismatchError,
)

if TYPE_CHECKING:
    from typing_extensions import Self

T = TypeVar("T")

logger = logging.getLogger(__name__)


class BridgeSettings(BaseSettings):
    """Bridge configuration read from ``DIWEAVE_BRIDGE_*`` environment variables."""

    model_config = SettingsConfigDict(env_prefix="DIWEAVE_BRIDGE_")

    module: str
    """Dotted name of the namespace module to import."""
    container_attr: str = "container"
    """Module attribute holding the ``Container``."""
    exports_attr: str = "EXPORTS"
    """Module attribute holding the name-to-capability mapping."""


@dataclass(frozen=True, slots=True)
class BridgeHandle:
    """Opaque result of ``resolve_entry``.

    The instance is reachable only through ``cast``, which checks it against
    the caller's expected type.
    """

    name: str
    capability: Capability
    instance: Any = field(repr=False)

    @property
    def type_name(self) -> str:
        return capability_name(type(self.instance))

    def cast(self, expected_type: type[T]) -> T:
        """Return the instance if it is an instance of ``expected_type``.

        Generic aliases are checked against their origin, ``Annotated``
        types against their base type, and unions against each member.

        Raises:
            DIWeaveBridgeTypeMismatchError: If the runtime type does not match
                or ``expected_type`` cannot be used with ``isinstance``.

        """
        try:
            matches = isinstance(self.instance, _isinstance_targets(expected_type))
        except TypeError as error:
            raise DIWeaveBridgeTypeMismatchError(
                expected_type,
                type(self.instance),
                reason=f"The expected type cannot be checked at runtime: {error}",
            ) from error

        if not matches:
            raise DIWeaveBridgeTypeMismatchError(expected_type, type(self.instance))
        return self.instance  # type: ignore[no-any-return]


def _isinstance_targets(expected_type: Any) -> tuple[Any, ...]:
    if get_origin(expected_type) is Annotated:
        expected_type = get_args(expected_type)[0]
    origin = get_origin(expected_type)
    if origin is Union or origin is UnionType:
        return tuple(
            target for member in get_args(expected_type) for target in _isinstance_targets(member)
        )
    return (origin or expected_type,)


@dataclass(frozen=True, slots=True)
class _BridgeNamespace:
    name: str
    container: Container
    exports: dict[str, Capability]


class ContainerBridge:
    """Look up and invoke container entry points by symbolic name."""

    def __init__(
        self,
        module: str,
        *,
        container_attr: str = "container",
        exports_attr: str = "EXPORTS",
    ) -> None:
        self._module_name = module
        self._container_attr = container_attr
        self._exports_attr = exports_attr
        self._namespace: _BridgeNamespace | None = None
        self._load_lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: BridgeSettings | None = None) -> Self:
        """Build a bridge from ``BridgeSettings``, reading the environment when omitted.

        Raises:
            DIWeaveBridgeLoadError: If the environment does not name a module.

        """
        if settings is None:
            try:
                settings = BridgeSettings()  # type: ignore[call-arg]
            except ValidationError as error:
                msg = (
                    "Bridge settings are incomplete. "
                    "Set DIWEAVE_BRIDGE_MODULE to the namespace module name."
                )
                raise DIWeaveBridgeLoadError(msg) from error
        return cls(
            settings.module,
            container_attr=settings.container_attr,
            exports_attr=settings.exports_attr,
        )

    @classmethod
    def from_container(
        cls,
        container: Container,
        exports: Mapping[str, Capability],
        *,
        namespace: str = "<in-process>",
    ) -> Self:
        """Build a bridge over an in-process container without importing anything."""
        bridge = cls(namespace)
        bridge._namespace = _BridgeNamespace(
            name=namespace,
            container=container,
            exports=dict(exports),
        )
        return bridge

    @property
    def is_loaded(self) -> bool:
        return self._namespace is not None

    def init_entry(self) -> None:
        """Load the namespace if needed and initialize its container.

        Safe to call repeatedly: the module is loaded once and ``init()`` is
        idempotent.
        """
        self._load().container.init()

    def resolve_entry(self, name: str) -> BridgeHandle:
        """Resolve the capability exported under ``name``.

        Raises:
            DIWeaveBridgeLoadError: If the namespace cannot be loaded.
            DIWeaveBridgeSymbolNotFoundError: If ``name`` is not exported.
            DIWeaveError: Any resolution error raised by ``Container.get``.

        """
        namespace = self._load()
        if name not in namespace.exports:
            raise DIWeaveBridgeSymbolNotFoundError(name, namespace.name)
        capability = namespace.exports[name]
        instance = namespace.container.get(capability)
        return BridgeHandle(name=name, capability=capability, instance=instance)

    def resolve_entry_as(self, name: str, expected_type: type[T]) -> T:
        """Resolve ``name`` and cast the result to ``expected_type``."""
        return self.resolve_entry(name).cast(expected_type)

    def symbols(self) -> tuple[str, ...]:
        """Return the exported names in declaration order."""
        return tuple(self._load().exports)

    def _load(self) -> _BridgeNamespace:
        namespace = self._namespace
        if namespace is not None:
            return namespace

        with self._load_lock:
            if self._namespace is None:
                self._namespace = self._import_namespace()
            return self._namespace

    def _import_namespace(self) -> _BridgeNamespace:
        try:
            module = importlib.import_module(self._module_name)
        except ImportError as error:
            msg = f"Cannot import bridge namespace module '{self._module_name}': {error}"
            raise DIWeaveBridgeLoadError(msg) from error

        container = getattr(module, self._container_attr, None)
        if not isinstance(container, Container):
            msg = (
                f"Bridge namespace '{self._module_name}' must define '{self._container_attr}' "
                f"as a Container, got {type(container).__name__}."
            )
            raise DIWeaveBridgeLoadError(msg)

        exports = getattr(module, self._exports_attr, None)
        if not isinstance(exports, Mapping):
            msg = (
                f"Bridge namespace '{self._module_name}' must define '{self._exports_attr}' "
                f"as a mapping of names to capabilities, got {type(exports).__name__}."
            )
            raise DIWeaveBridgeLoadError(msg)
        non_string_names = [name for name in exports if not isinstance(name, str)]
        if non_string_names:
            msg = (
                f"Bridge namespace '{self._module_name}' exports non-string names: "
                f"{non_string_names!r}."
            )
            raise DIWeaveBridgeLoadError(msg)

        logger.info(
            "Loaded bridge namespace %s: symbol_count=%d",
            self._module_name,
            len(exports),
        )
        return _BridgeNamespace(
            name=self._module_name,
            container=container,
            exports=dict(exports),
        )
