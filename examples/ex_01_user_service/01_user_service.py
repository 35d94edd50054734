"""User service over a database: resolve the root, let the container wire the rest.

``SimpleDatabase`` announces its construction. The line shows up exactly once
even though ``UserService`` is requested twice, because both capabilities are
container singletons.
"""

from __future__ import annotations

import time
from typing import Protocol

from diweave import Container, injectable


class Database(Protocol):
    def fetch_user_data(self, user_id: int) -> str: ...


class SimpleDatabase:
    @injectable
    def __init__(self) -> None:
        print("SimpleDatabase created!")  # => SimpleDatabase created!

    def fetch_user_data(self, user_id: int) -> str:
        time.sleep(0.1)
        return f"Database processed: {user_id}"


class UserService:
    @injectable
    def __init__(self, database: Database) -> None:
        self.database = database

    def process_user(self, user_id: int) -> str:
        data = self.database.fetch_user_data(user_id)
        return f"Service processed: {data}"


def main() -> None:
    container = Container()
    container.add_concrete(SimpleDatabase, provides=Database)
    container.add_concrete(UserService)
    container.init()

    service = container.get(UserService)
    print(service.process_user(1))  # => Service processed: Database processed: 1

    print(f"singleton={container.get(UserService) is service}")  # => singleton=True


if __name__ == "__main__":
    main()
