"""Live mirrors of remote collections with an explicit polling fallback.

States and transitions::

    Disconnected --start--> Subscribed
    Disconnected --start, recoverable failure--> PollingFallback | Disconnected
    Subscribed --recoverable error--> PollingFallback | Disconnected
    Subscribed --other error--> Disconnected
    PollingFallback --resubscribe succeeds--> Subscribed
    any --stop--> Disconnected

PollingFallback is only entered when a polling interval is configured;
otherwise the mirror just stops updating and keeps its last snapshot.
"""

import asyncio
from collections.abc import Sequence
from enum import StrEnum

from loguru import logger

from tilapios.core.exceptions import RemoteStoreError
from tilapios.dao.remote_store import (
    DataCallback,
    Filter,
    RemoteStore,
    Unsubscribe,
)


class MirrorState(StrEnum):
    SUBSCRIBED = "subscribed"
    POLLING_FALLBACK = "polling_fallback"
    DISCONNECTED = "disconnected"


class MirrorSubscription:
    """Keeps one collection mirror fresh via subscription or polling."""

    def __init__(
        self,
        remote: RemoteStore,
        name: str,
        collection: str,
        on_data: DataCallback,
        *,
        filters: Sequence[Filter] = (),
        polling_interval: float | None = None,
    ) -> None:
        self.remote = remote
        self.name = name
        self.collection = collection
        self.filters = tuple(filters)
        self.on_data = on_data
        self.polling_interval = polling_interval

        self.state = MirrorState.DISCONNECTED
        self._unsubscribe: Unsubscribe | None = None
        self._poll_task: asyncio.Task[None] | None = None

    def _subscribe(self) -> bool:
        """Try to open the subscription. Returns True when subscribed."""
        try:
            self._unsubscribe = self.remote.subscribe_to_collection(
                self.collection, self.filters, self.on_data, self._handle_error
            )
        except RemoteStoreError as e:
            self._unsubscribe = None
            if not e.recoverable:
                raise
            logger.warning(f"Mirror '{self.name}' could not subscribe ({e.kind.value})")
            return False
        return True

    async def start(self) -> MirrorState:
        """Open the subscription, or fall back to polling."""
        if self.state is not MirrorState.DISCONNECTED:
            return self.state

        try:
            subscribed = self._subscribe()
        except RemoteStoreError as e:
            logger.error(f"Mirror '{self.name}' failed to subscribe: {e.message}")
            return self.state

        if subscribed:
            # The initial snapshot may already have failed and moved us elsewhere
            if self.state is MirrorState.DISCONNECTED and self._unsubscribe is not None:
                self.state = MirrorState.SUBSCRIBED
                logger.info(f"Mirror '{self.name}' subscribed to '{self.collection}'")
        else:
            self._enter_fallback()
        return self.state

    def _handle_error(self, error: RemoteStoreError) -> None:
        """Error callback for the standing subscription."""
        self._close_subscription()
        if error.recoverable:
            logger.warning(
                f"Mirror '{self.name}' stopped updating ({error.kind.value}), keeping cache"
            )
            self._enter_fallback()
        else:
            logger.error(f"Mirror '{self.name}' failed: {error.message}")
            self.state = MirrorState.DISCONNECTED

    def _enter_fallback(self) -> None:
        if self.polling_interval is None:
            self.state = MirrorState.DISCONNECTED
            return
        self.state = MirrorState.POLLING_FALLBACK
        if self._poll_task is None or self._poll_task.done():
            self._poll_task = asyncio.get_running_loop().create_task(self._poll_loop())
        logger.info(f"Mirror '{self.name}' polling every {self.polling_interval}s")

    async def _poll_loop(self) -> None:
        interval = self.polling_interval or 0.0
        while self.state is MirrorState.POLLING_FALLBACK:
            await asyncio.sleep(interval)
            if self.state is not MirrorState.POLLING_FALLBACK:
                return

            try:
                subscribed = self._subscribe()
            except RemoteStoreError as e:
                logger.error(f"Mirror '{self.name}' resubscribe failed: {e.message}")
                subscribed = False
            if subscribed and self._unsubscribe is not None:
                self.state = MirrorState.SUBSCRIBED
                logger.success(f"Mirror '{self.name}' resubscribed")
                return

            try:
                documents = await self.remote.query_documents(self.collection, self.filters)
            except RemoteStoreError as e:
                if not e.recoverable:
                    logger.error(f"Mirror '{self.name}' poll failed: {e.message}")
                    self.state = MirrorState.DISCONNECTED
                    return
                logger.debug(f"Mirror '{self.name}' poll failed ({e.kind.value}), keeping cache")
                continue
            self.on_data(documents)

    def _close_subscription(self) -> None:
        if self._unsubscribe is not None:
            unsubscribe, self._unsubscribe = self._unsubscribe, None
            unsubscribe()

    async def stop(self) -> None:
        """Tear down the subscription and any polling loop."""
        self._close_subscription()
        self.state = MirrorState.DISCONNECTED

        task, self._poll_task = self._poll_task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        logger.debug(f"Mirror '{self.name}' disconnected")
