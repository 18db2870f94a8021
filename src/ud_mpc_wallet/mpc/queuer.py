"""Per-device action serialization and token refresh bookkeeping."""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator

from ..logger import get_logger

logger = get_logger(__name__)


class ActionsQueuer:
    """
    Tracks which devices have an operation in flight.

    A device is taken by `set_active_if_ready` and released by
    `remove_active`; `device_action` polls every `poll_interval_secs` until
    the device is free before taking it. Also keeps the shared access token
    task per device and the devices waiting to be reconnected.
    """

    def __init__(self, poll_interval_secs: float = 1.0) -> None:
        self.poll_interval_secs = poll_interval_secs
        self._active_device_ids: set[str] = set()
        self._token_tasks: dict[str, tuple[asyncio.Task[str], bool]] = {}
        self._device_ids_to_restore: list[str] = []
        self._restoring_device_id: str | None = None

    def is_active(self, device_id: str) -> bool:
        return device_id in self._active_device_ids

    def set_active_if_ready(self, device_id: str) -> bool:
        """Take the device if it is free."""
        if self.is_active(device_id):
            return False
        self._active_device_ids.add(device_id)
        return True

    def remove_active(self, device_id: str) -> None:
        self._active_device_ids.discard(device_id)

    async def wait_for_action_ready_to_start(self, device_id: str) -> None:
        while not self.set_active_if_ready(device_id):
            logger.debug(f"Device {device_id} is busy, waiting")
            await asyncio.sleep(self.poll_interval_secs)

    @asynccontextmanager
    async def device_action(self, device_id: str) -> AsyncIterator[None]:
        """Run the enclosed block as the only action on the device."""
        await self.wait_for_action_ready_to_start(device_id)
        try:
            yield
        finally:
            self.remove_active(device_id)

    # Token tasks

    def get_token_task(self, device_id: str, force_refresh: bool = False) -> "asyncio.Task[str] | None":
        """In-flight token task to join. A forced refresh never joins an unforced one."""
        entry = self._token_tasks.get(device_id)
        if entry is None:
            return None
        task, forced = entry
        if force_refresh and not forced:
            return None
        return task

    def set_token_task(self, device_id: str, task: "asyncio.Task[str]", force_refresh: bool = False) -> None:
        self._token_tasks[device_id] = (task, force_refresh)

    def remove_token_task(self, device_id: str, task: "asyncio.Task[str]") -> None:
        entry = self._token_tasks.get(device_id)
        if entry is not None and entry[0] is task:
            del self._token_tasks[device_id]

    # Reconnect queue

    def add_restore_device_id(self, device_id: str) -> None:
        if device_id not in self._device_ids_to_restore:
            self._device_ids_to_restore.append(device_id)
            logger.info(f"Queued device {device_id} for reconnection")

    def get_device_id_to_restore_and_start(self) -> str | None:
        """Next device to reconnect, None while another one is in progress."""
        if self._restoring_device_id is not None or not self._device_ids_to_restore:
            return None
        self._restoring_device_id = self._device_ids_to_restore[0]
        return self._restoring_device_id

    def stop_and_remove_restore_device_id(self, device_id: str) -> None:
        if device_id in self._device_ids_to_restore:
            self._device_ids_to_restore.remove(device_id)
        self._restoring_device_id = None

    @property
    def device_ids_to_restore(self) -> list[str]:
        return list(self._device_ids_to_restore)
