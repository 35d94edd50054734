from __future__ import annotations

import functools
import inspect
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from typing import Any, cast, get_type_hints

import pytest

from diweave.container import Container
from diweave.markers import is_injected_annotation, strip_injected_annotation

_DIWEAVE_CONTAINER_ATTR = "_diweave_container"
_DIWEAVE_INJECTED_PARAMETERS_ATTR = "__diweave_pytest_injected_parameters__"


@dataclass(frozen=True, slots=True)
class InjectedParameter:
    """A test function parameter resolved from the container."""

    name: str
    capability: Any


def inspect_injected_parameters(
    func: Callable[..., Any],
) -> tuple[inspect.Signature, tuple[InjectedParameter, ...]]:
    """Return the public signature of ``func`` and its ``Injected[...]`` parameters."""
    signature = inspect.signature(func)
    try:
        hints = get_type_hints(func, include_extras=True)
    except (AttributeError, NameError, TypeError):
        hints = {}

    injected: list[InjectedParameter] = []
    public_parameters: list[inspect.Parameter] = []
    for parameter in signature.parameters.values():
        annotation = hints.get(parameter.name, parameter.annotation)
        if is_injected_annotation(annotation):
            injected.append(
                InjectedParameter(
                    name=parameter.name,
                    capability=strip_injected_annotation(annotation),
                ),
            )
        else:
            public_parameters.append(parameter)

    return signature.replace(parameters=public_parameters), tuple(injected)


@pytest.fixture()
def diweave_container() -> Container:
    """Create a per-test container used by the plugin.

    Tests that use ``Injected[...]`` parameters resolve them from this
    container. Override the fixture to register bindings. It is
    function-scoped, so every test gets its own container.

    Returns:
        A new ``Container`` instance.

    """
    return Container()


@pytest.fixture(autouse=True)
def _diweave_state(
    request: pytest.FixtureRequest,
    diweave_container: Container,
) -> None:
    """Store plugin state on the test node for hook access."""
    node = cast("Any", request.node)
    setattr(node, _DIWEAVE_CONTAINER_ATTR, diweave_container)


def pytest_pycollect_makeitem(
    collector: Any,
    name: str,
    obj: object,
) -> Any | None:
    """Hide ``Injected[...]`` parameters from pytest fixture name matching.

    Returns:
        ``None`` to continue default collection flow.

    """
    if not callable(obj):
        return None
    if not collector.istestfunction(obj, name):
        return None

    public_signature, injected_parameters = inspect_injected_parameters(
        cast("Callable[..., Any]", obj),
    )
    if not injected_parameters:
        return None

    obj_as_any = cast("Any", obj)
    obj_as_any.__dict__[_DIWEAVE_INJECTED_PARAMETERS_ATTR] = injected_parameters
    obj_as_any.__signature__ = public_signature
    return None


@pytest.hookimpl(hookwrapper=True, tryfirst=True)
def pytest_pyfunc_call(pyfuncitem: pytest.Function) -> Iterator[None]:
    """Resolve ``Injected[...]`` parameters through ``Container.get`` around the test call.

    If no container state is attached to the node, this hook is a no-op.
    """
    original_callable = cast("Callable[..., Any]", pyfuncitem.obj)
    injected_parameters = cast(
        "tuple[InjectedParameter, ...] | None",
        getattr(original_callable, _DIWEAVE_INJECTED_PARAMETERS_ATTR, None),
    )
    container = cast(
        "Container | None",
        getattr(pyfuncitem, _DIWEAVE_CONTAINER_ATTR, None),
    )
    if not injected_parameters or container is None:
        yield
        return

    @functools.wraps(original_callable)
    def _invoke_with_injected(*args: Any, **kwargs: Any) -> Any:
        for parameter in injected_parameters:
            if parameter.name not in kwargs:
                kwargs[parameter.name] = container.get(parameter.capability)
        return original_callable(*args, **kwargs)

    pyfuncitem.obj = _invoke_with_injected
    try:
        yield
    finally:
        pyfuncitem.obj = original_callable
