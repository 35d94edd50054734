"""Explicit bindings: register producers with their dependency lists by hand.

No annotations are inspected here. ``register`` receives the capability, the
producer, and the capabilities to pass to it, in call order.
"""

from __future__ import annotations

from typing import Protocol

from diweave import Container


class Calculator(Protocol):
    def add(self, a: float, b: float) -> float: ...

    def multiply(self, a: float, b: float) -> float: ...


class SimpleCalculator:
    def add(self, a: float, b: float) -> float:
        return a + b

    def multiply(self, a: float, b: float) -> float:
        return a * b


class DataProcessor:
    def __init__(self, calculator: Calculator) -> None:
        self.calculator = calculator

    def process(self, x: float, y: float) -> float:
        return self.calculator.multiply(x, y) + self.calculator.add(x, y)


def main() -> None:
    container = Container()
    container.register(Calculator, SimpleCalculator)
    container.register(DataProcessor, DataProcessor, [Calculator])

    processor = container.get(DataProcessor)
    print(f"process(2, 3)={processor.process(2, 3)}")  # => process(2, 3)=11

    plan = container.plan(DataProcessor)
    order = " -> ".join(node.capability.__name__ for node in plan)
    print(f"plan={order}")  # => plan=Calculator -> DataProcessor

    shared = processor.calculator is container.get(Calculator)
    print(f"shared_calculator={shared}")  # => shared_calculator=True


if __name__ == "__main__":
    main()
