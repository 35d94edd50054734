"""Bridge namespace for ``01_bridge.py``: a configured container plus its exported names."""

from __future__ import annotations

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

EXPORTS = {
    "user-service": UserService,
    "database": SimpleDatabase,
}
