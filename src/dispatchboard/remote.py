from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol

Payload = dict[str, Any]


class RemoteError(RuntimeError):
    pass


class DispatchStore(Protocol):
    async def get_all(self, filters: Payload) -> Payload: ...

    async def get_by_id(self, dispatch_id: int) -> Payload: ...

    async def create_from_job(self, job_id: int, request: Payload) -> Payload: ...

    async def create_from_installation(self, request: Payload) -> Payload: ...

    async def update(self, dispatch_id: int, changes: Payload) -> None: ...

    async def update_status(self, dispatch_id: int, status: str, substatus: str | None = None) -> None: ...

    async def delete(self, dispatch_id: int) -> None: ...

    async def add_note(self, dispatch_id: int, text: str, kind: str) -> None: ...


class ServiceOrderStore(Protocol):
    async def get_all(self, filters: Payload) -> Payload: ...

    async def get_by_id(self, service_order_id: int, include_jobs: bool = True) -> Payload: ...

    async def add_note(self, service_order_id: int, note: Payload) -> None: ...


class UserDirectory(Protocol):
    async def get_all(self) -> list[Payload]: ...

    async def get_by_id(self, user_id: int) -> Payload: ...


class InstallationDirectory(Protocol):
    async def get_by_id(self, installation_id: int) -> Payload: ...


class NotificationSink(Protocol):
    async def create(self, notification: Payload) -> None: ...


class IdentityResolver(Protocol):
    def current_user(self) -> Payload | None: ...


@dataclass(slots=True)
class RemoteServices:
    dispatches: DispatchStore
    service_orders: ServiceOrderStore
    users: UserDirectory
    installations: InstallationDirectory
    notifications: NotificationSink
    identity: IdentityResolver


def page_items(page: Any, *keys: str) -> list[Payload]:
    """Pull the record list out of a page response.

    Accepts a bare list, ``{"data": [...]}``, or a nested form such as
    ``{"data": {"serviceOrders": [...]}}`` when ``keys`` name the inner list.
    """
    if isinstance(page, list):
        return page
    if not isinstance(page, dict):
        raise RemoteError(f"unexpected page shape: {type(page).__name__}")
    data = page.get("data", page)
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        for key in keys:
            items = data.get(key)
            if isinstance(items, list):
                return items
    raise RemoteError("page response carries no record list")
