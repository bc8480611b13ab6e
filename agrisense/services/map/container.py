"""Map container handles.

A container stands for the page region a map is drawn into. The hosting UI
calls ``mark_attached()`` once the region exists; maps are only created on
attached containers, so there is no race to paper over with a delay.
"""

import asyncio
import uuid


class MapContainer:
    """Identity of one map region, holding at most one live map instance.

    Args:
        container_id: Unique identifier; generated when omitted.
    """

    def __init__(self, container_id: str | None = None) -> None:
        self.container_id = container_id or f"map-{uuid.uuid4().hex[:9]}"
        self._attached = asyncio.Event()
        self.instance = None  # MapInstance currently bound to this container

    def __repr__(self) -> str:
        return f"MapContainer({self.container_id!r}, attached={self.is_attached})"

    @property
    def is_attached(self) -> bool:
        return self._attached.is_set()

    def mark_attached(self) -> None:
        """Signal that the region is in place and a map may be created."""
        self._attached.set()

    def mark_detached(self) -> None:
        self._attached.clear()

    async def wait_attached(self) -> None:
        await self._attached.wait()
