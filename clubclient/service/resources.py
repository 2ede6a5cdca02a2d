from __future__ import annotations

from typing import Any, Optional

from clubclient.service.client import ApiClient


class ResourceAPI:
    """CRUD calls for one collection under the API prefix, e.g. ``/api/orders``."""

    def __init__(self, client: ApiClient, name: str) -> None:
        self.client = client
        self.name = name.strip("/")

    def path(self, *parts: Any) -> str:
        suffix = "/".join(str(part).strip("/") for part in parts)
        return self.client.url_for(f"{self.name}/{suffix}" if suffix else self.name)

    async def list(self, **filters: Any) -> Any:
        params = {key: value for key, value in filters.items() if value is not None}
        return await self.client.get_json(self.path(), params=params or None)

    async def get(self, item_id: Any) -> Any:
        return await self.client.get_json(self.path(item_id))

    async def create(self, payload: dict) -> Any:
        return await self.client.post_json(self.path(), payload)

    async def update(self, item_id: Any, payload: dict) -> Any:
        return await self.client.put_json(self.path(item_id), payload)

    async def delete(self, item_id: Any) -> Any:
        return await self.client.delete_json(self.path(item_id))

    async def update_status(self, item_id: Any, status: str) -> Any:
        return await self.client.patch_json(self.path(item_id, "status"), {"status": status})


class ClubAPI:
    """Endpoint groups of the club backend, all sharing one :class:`ApiClient`."""

    def __init__(self, client: ApiClient) -> None:
        self.client = client
        self.orders = ResourceAPI(client, "orders")
        self.tables = ResourceAPI(client, "tables")
        self.menu = ResourceAPI(client, "menu")
        self.bills = ResourceAPI(client, "bills")
        self.games = ResourceAPI(client, "games")
        self.reservations = ResourceAPI(client, "reservations")
        self.customers = ResourceAPI(client, "customer")
        self.inventory = ResourceAPI(client, "inventory")
        self.queue = ResourceAPI(client, "queue")

    async def orders_by_session(self, session_id: Any) -> Any:
        return await self.client.get_json(self.orders.path("by-session", session_id))

    async def add_order_items(self, order_id: Any, items: list) -> Any:
        return await self.client.post_json(self.orders.path(order_id, "items"), {"items": items})

    async def health(self, timeout: Optional[float] = None) -> Any:
        return await self.client.get_json(self.client.url_for("health"), timeout=timeout)
