"""Resolution failures and how to read them.

Cycles report the full path, missing bindings name their dependent, and a
failed producer stays failed: the same error is raised again without calling
the producer a second time.
"""

from __future__ import annotations

from diweave import (
    Container,
    DIWeaveCircularDependencyError,
    DIWeaveProducerInvocationError,
    DIWeaveUnresolvedDependencyError,
)


class A:
    pass


class B:
    pass


class Missing:
    pass


class NeedsMissing:
    pass


class Flaky:
    attempts = 0

    def __init__(self) -> None:
        Flaky.attempts += 1
        msg = "connection refused"
        raise ConnectionError(msg)


def main() -> None:
    cyclic = Container()
    cyclic.register(A, A, [B])
    cyclic.register(B, B, [A])
    try:
        cyclic.get(A)
    except DIWeaveCircularDependencyError as error:
        path = " -> ".join(capability.__name__ for capability in error.path)
    print(f"cycle={path}")  # => cycle=A -> B -> A

    incomplete = Container()
    incomplete.register(NeedsMissing, NeedsMissing, [Missing])
    try:
        incomplete.get(NeedsMissing)
    except DIWeaveUnresolvedDependencyError as error:
        missing = f"{error.capability.__name__} (required by {error.required_by.__name__})"
    print(f"missing={missing}")  # => missing=Missing (required by NeedsMissing)

    failing = Container()
    failing.register(Flaky, Flaky)
    try:
        failing.get(Flaky)
    except DIWeaveProducerInvocationError as error:
        first = error
    try:
        failing.get(Flaky)
    except DIWeaveProducerInvocationError as error:
        second = error
    print(f"cause={type(first.cause).__name__}")  # => cause=ConnectionError
    print(f"same_error={first is second}")  # => same_error=True
    print(f"attempts={Flaky.attempts}")  # => attempts=1
    print(f"state={failing.state_of(Flaky).name}")  # => state=FAILED


if __name__ == "__main__":
    main()
