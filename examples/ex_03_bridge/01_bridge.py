"""Drive a container by symbolic names through ``ContainerBridge``.

The caller only knows the module name and the exported strings. The bridge
imports ``app_wiring`` once, runs ``init()`` and hands back opaque handles that
must be cast to the expected type.
"""

from __future__ import annotations

from diweave import ContainerBridge, DIWeaveBridgeTypeMismatchError


def main() -> None:
    bridge = ContainerBridge("app_wiring")

    print("---------- Starting Application ----------")  # => ---------- Starting Application ----------
    bridge.init_entry()
    bridge.init_entry()

    import app_wiring

    print(f"symbols={list(bridge.symbols())}")  # => symbols=['user-service', 'database']
    print(f"databases_created={app_wiring.SimpleDatabase.created}")  # => databases_created=1

    service = bridge.resolve_entry_as("user-service", app_wiring.UserService)
    print(service.process_user(1))  # => Service processed: Database processed: 1

    handle = bridge.resolve_entry("user-service")
    try:
        handle.cast(app_wiring.SimpleDatabase)
    except DIWeaveBridgeTypeMismatchError as error:
        print(f"mismatch={error.actual.__name__}")  # => mismatch=UserService


if __name__ == "__main__":
    main()
