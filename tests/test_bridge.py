"""Tests for ContainerBridge, BridgeHandle and BridgeSettings."""

from __future__ import annotations

import importlib
import sys
import textwrap
import threading
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any, Optional, Protocol, Union

import pytest

import diweave.bridge
from diweave import (
    BridgeSettings,
    Container,
    ContainerBridge,
    DIWeaveBridgeLoadError,
    DIWeaveBridgeSymbolNotFoundError,
    DIWeaveBridgeTypeMismatchError,
    DIWeaveProducerInvocationError,
)
from diweave.bridge import BridgeHandle

WIRING_SOURCE = textwrap.dedent(
    """
    from diweave import Container


    class SimpleDatabase:
        created = 0

        def __init__(self) -> None:
            SimpleDatabase.created += 1

        def fetch_user_data(self, user_id: int) -> str:
            return f"Database processed: {user_id}"


    class UserService:
        def __init__(self, database: SimpleDatabase) -> None:
            self.database = database

        def process_user(self, user_id: int) -> str:
            return f"Service processed: {self.database.fetch_user_data(user_id)}"


    container = Container()
    container.add_concrete(SimpleDatabase, eager=True)
    container.add_concrete(UserService)

    EXPORTS = {"user-service": UserService, "database": SimpleDatabase}
    """,
)


class Greeter:
    def greet(self) -> str:
        return "hello"


class Other:
    pass


class Named(Protocol):
    name: str


@pytest.fixture()
def write_module(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> Iterator[Callable[[str, str], str]]:
    """Write an importable module under ``tmp_path`` and forget it after the test."""
    monkeypatch.syspath_prepend(str(tmp_path))
    written: list[str] = []

    def _write(name: str, source: str) -> str:
        (tmp_path / f"{name}.py").write_text(source, encoding="utf-8")
        importlib.invalidate_caches()
        written.append(name)
        return name

    yield _write

    for name in written:
        sys.modules.pop(name, None)


@pytest.fixture()
def in_process_bridge() -> ContainerBridge:
    container = Container()
    container.register(Greeter, Greeter)
    container.register(list[int], lambda: [1, 2, 3])
    return ContainerBridge.from_container(
        container,
        {"greeter": Greeter, "numbers": list[int]},
        namespace="tests",
    )


class TestModuleLoading:
    def test_init_then_resolve_by_name(self, write_module: Callable[[str, str], str]) -> None:
        module_name = write_module("bridge_wiring_basic", WIRING_SOURCE)
        bridge = ContainerBridge(module_name)

        bridge.init_entry()
        module = sys.modules[module_name]
        service = bridge.resolve_entry_as("user-service", module.UserService)

        assert service.process_user(1) == "Service processed: Database processed: 1"
        assert module.SimpleDatabase.created == 1
        assert bridge.symbols() == ("user-service", "database")

    def test_init_entry_is_idempotent(self, write_module: Callable[[str, str], str]) -> None:
        bridge = ContainerBridge(write_module("bridge_wiring_idempotent", WIRING_SOURCE))

        bridge.init_entry()
        bridge.init_entry()

        assert sys.modules["bridge_wiring_idempotent"].SimpleDatabase.created == 1

    def test_module_is_not_imported_until_first_use(
        self,
        write_module: Callable[[str, str], str],
    ) -> None:
        bridge = ContainerBridge(write_module("bridge_wiring_lazy", WIRING_SOURCE))

        assert not bridge.is_loaded
        assert "bridge_wiring_lazy" not in sys.modules

        bridge.symbols()

        assert bridge.is_loaded

    def test_module_is_imported_once_across_threads(
        self,
        monkeypatch: pytest.MonkeyPatch,
        write_module: Callable[[str, str], str],
    ) -> None:
        module_name = write_module("bridge_wiring_threads", WIRING_SOURCE)
        real_import_module = diweave.bridge.importlib.import_module
        imports: list[str] = []

        def counting_import_module(name: str) -> Any:
            imports.append(name)
            return real_import_module(name)

        monkeypatch.setattr(diweave.bridge.importlib, "import_module", counting_import_module)
        bridge = ContainerBridge(module_name)
        barrier = threading.Barrier(8)
        handles: list[BridgeHandle] = []

        def resolve() -> None:
            barrier.wait()
            handles.append(bridge.resolve_entry("user-service"))

        threads = [threading.Thread(target=resolve) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert imports == [module_name]
        assert len(handles) == 8
        assert all(handle.instance is handles[0].instance for handle in handles)

    def test_missing_module_raises_load_error(self) -> None:
        bridge = ContainerBridge("diweave_missing_bridge_module")

        with pytest.raises(DIWeaveBridgeLoadError, match="Cannot import") as exc_info:
            bridge.init_entry()

        assert isinstance(exc_info.value.__cause__, ImportError)
        assert not bridge.is_loaded

    def test_failed_load_is_retried(self, write_module: Callable[[str, str], str]) -> None:
        bridge = ContainerBridge("bridge_wiring_late")

        with pytest.raises(DIWeaveBridgeLoadError):
            bridge.symbols()

        write_module("bridge_wiring_late", WIRING_SOURCE)

        assert bridge.symbols() == ("user-service", "database")

    def test_module_without_container_raises_load_error(
        self,
        write_module: Callable[[str, str], str],
    ) -> None:
        bridge = ContainerBridge(write_module("bridge_wiring_no_container", "EXPORTS = {}\n"))

        with pytest.raises(DIWeaveBridgeLoadError, match="'container' as a Container"):
            bridge.init_entry()

    def test_module_without_exports_raises_load_error(
        self,
        write_module: Callable[[str, str], str],
    ) -> None:
        source = "from diweave import Container\n\ncontainer = Container()\n"
        bridge = ContainerBridge(write_module("bridge_wiring_no_exports", source))

        with pytest.raises(DIWeaveBridgeLoadError, match="'EXPORTS'"):
            bridge.init_entry()

    def test_non_string_export_names_raise_load_error(
        self,
        write_module: Callable[[str, str], str],
    ) -> None:
        source = "from diweave import Container\n\ncontainer = Container()\nEXPORTS = {1: int}\n"
        bridge = ContainerBridge(write_module("bridge_wiring_bad_names", source))

        with pytest.raises(DIWeaveBridgeLoadError, match="non-string names"):
            bridge.symbols()

    def test_custom_attribute_names(self, write_module: Callable[[str, str], str]) -> None:
        source = textwrap.dedent(
            """
            from diweave import Container

            app_container = Container()
            app_container.add_instance("configured", provides="greeting")
            NAMES = {"greeting": "greeting"}
            """,
        )
        bridge = ContainerBridge(
            write_module("bridge_wiring_custom", source),
            container_attr="app_container",
            exports_attr="NAMES",
        )

        assert bridge.resolve_entry_as("greeting", str) == "configured"


class TestResolveEntry:
    def test_unknown_symbol(self, in_process_bridge: ContainerBridge) -> None:
        with pytest.raises(DIWeaveBridgeSymbolNotFoundError) as exc_info:
            in_process_bridge.resolve_entry("missing")

        assert exc_info.value.name == "missing"
        assert exc_info.value.namespace == "tests"

    def test_handle_describes_instance(self, in_process_bridge: ContainerBridge) -> None:
        handle = in_process_bridge.resolve_entry("greeter")

        assert handle.name == "greeter"
        assert handle.capability is Greeter
        assert handle.type_name == "Greeter"
        assert "instance" not in repr(handle)

    def test_resolution_errors_propagate(self) -> None:
        def broken() -> Greeter:
            msg = "no greeting today"
            raise RuntimeError(msg)

        container = Container()
        container.add_factory(broken)
        bridge = ContainerBridge.from_container(container, {"greeter": Greeter})

        with pytest.raises(DIWeaveProducerInvocationError):
            bridge.resolve_entry("greeter")

    def test_from_container_does_not_import(
        self,
        monkeypatch: pytest.MonkeyPatch,
        in_process_bridge: ContainerBridge,
    ) -> None:
        def fail_import(name: str) -> Any:
            msg = f"unexpected import of {name}"
            raise AssertionError(msg)

        monkeypatch.setattr(diweave.bridge.importlib, "import_module", fail_import)

        in_process_bridge.init_entry()

        assert in_process_bridge.symbols() == ("greeter", "numbers")


class TestCast:
    def test_cast_to_matching_type(self, in_process_bridge: ContainerBridge) -> None:
        greeter = in_process_bridge.resolve_entry_as("greeter", Greeter)

        assert greeter.greet() == "hello"

    def test_cast_to_wrong_type(self, in_process_bridge: ContainerBridge) -> None:
        handle = in_process_bridge.resolve_entry("greeter")

        with pytest.raises(DIWeaveBridgeTypeMismatchError) as exc_info:
            handle.cast(Other)

        assert exc_info.value.expected is Other
        assert exc_info.value.actual is Greeter

    def test_cast_generic_alias_checks_origin(self, in_process_bridge: ContainerBridge) -> None:
        assert in_process_bridge.resolve_entry_as("numbers", list[int]) == [1, 2, 3]

    def test_cast_to_union_accepts_any_member(self, in_process_bridge: ContainerBridge) -> None:
        handle = in_process_bridge.resolve_entry("greeter")

        assert handle.cast(Greeter | None).greet() == "hello"  # type: ignore[arg-type]
        assert handle.cast(Optional[Greeter]).greet() == "hello"  # type: ignore[arg-type]  # noqa: UP007
        assert handle.cast(Union[Other, Greeter]).greet() == "hello"  # type: ignore[arg-type]  # noqa: UP007

    def test_cast_to_union_without_matching_member(
        self,
        in_process_bridge: ContainerBridge,
    ) -> None:
        handle = in_process_bridge.resolve_entry("greeter")

        with pytest.raises(DIWeaveBridgeTypeMismatchError):
            handle.cast(Optional[Other])  # type: ignore[arg-type]  # noqa: UP007

    def test_cast_to_unchecked_protocol_is_a_mismatch(
        self,
        in_process_bridge: ContainerBridge,
    ) -> None:
        handle = in_process_bridge.resolve_entry("greeter")

        with pytest.raises(DIWeaveBridgeTypeMismatchError, match="cannot be checked at runtime"):
            handle.cast(Named)  # type: ignore[type-abstract]


class TestBridgeSettings:
    def test_from_environment(
        self,
        monkeypatch: pytest.MonkeyPatch,
        write_module: Callable[[str, str], str],
    ) -> None:
        module_name = write_module("bridge_wiring_env", WIRING_SOURCE)
        monkeypatch.setenv("DIWEAVE_BRIDGE_MODULE", module_name)

        bridge = ContainerBridge.from_settings()

        assert bridge.symbols() == ("user-service", "database")

    def test_environment_overrides_attribute_names(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("DIWEAVE_BRIDGE_MODULE", "app.wiring")
        monkeypatch.setenv("DIWEAVE_BRIDGE_CONTAINER_ATTR", "app_container")

        settings = BridgeSettings()  # type: ignore[call-arg]

        assert settings.module == "app.wiring"
        assert settings.container_attr == "app_container"
        assert settings.exports_attr == "EXPORTS"

    def test_missing_module_setting_raises_load_error(
        self,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        monkeypatch.delenv("DIWEAVE_BRIDGE_MODULE", raising=False)

        with pytest.raises(DIWeaveBridgeLoadError, match="DIWEAVE_BRIDGE_MODULE"):
            ContainerBridge.from_settings()

    def test_explicit_settings(self, write_module: Callable[[str, str], str]) -> None:
        settings = BridgeSettings(module=write_module("bridge_wiring_explicit", WIRING_SOURCE))

        bridge = ContainerBridge.from_settings(settings)
        bridge.init_entry()

        assert bridge.resolve_entry("database").type_name == "SimpleDatabase"
