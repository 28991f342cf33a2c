"""
Optimistic update protocol shared by the app controllers.

An item is shown as soon as it passes validation, marked pending while the
save is in flight, then either committed or rolled back. Deletes mirror
this: the item disappears first and is put back where it was if the delete
fails.
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional

from shared.errors import DeskError, RETRYABLE_ERRORS, StorageError
from shared.constants import MAX_SAVE_ATTEMPTS, RETRY_BACKOFF_SECONDS

logger = logging.getLogger(__name__)


class ItemState(Enum):
    PENDING = "pending"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


ChangeListener = Callable[['AppController'], None]
Notifier = Callable[[str, str], None]


class AppController:
    """
    Base for app controllers: callbacks and retrying saves.

    Listeners registered with on_change are called after every visible state
    change; notifiers registered with notify receive (level, message) with
    level one of info, success, warning, error.
    """

    app_name = "app"

    def __init__(self, gateway, max_save_attempts: int = MAX_SAVE_ATTEMPTS,
                 retry_backoff: float = RETRY_BACKOFF_SECONDS):
        self.gateway = gateway
        self.max_save_attempts = max(1, max_save_attempts)
        self.retry_backoff = retry_backoff
        self.initialized = False
        self._change_listeners: List[ChangeListener] = []
        self._notifiers: List[Notifier] = []

    def on_change(self, listener: ChangeListener) -> None:
        self._change_listeners.append(listener)

    def notify(self, notifier: Notifier) -> None:
        self._notifiers.append(notifier)

    def _changed(self) -> None:
        for listener in self._change_listeners:
            listener(self)

    def _notify(self, level: str, message: str) -> None:
        log_level = {'error': logging.ERROR, 'warning': logging.WARNING}.get(level, logging.INFO)
        logger.log(log_level, f"[{self.app_name}] {message}")
        for notifier in self._notifiers:
            notifier(level, message)

    async def _save_with_retry(self, key: str, data: Any) -> bool:
        """
        Save, retrying only timeouts and backend errors.

        data may be a zero-argument callable; it is called on every attempt
        so a retry sends the current value.

        Raises:
            StorageError: The last failure once attempts are exhausted
        """
        attempt = 1
        while True:
            try:
                return await self.gateway.save(key, data() if callable(data) else data)
            except RETRYABLE_ERRORS as e:
                if attempt >= self.max_save_attempts:
                    raise
                delay = self.retry_backoff * attempt
                logger.warning(f"Save of {key} failed (attempt {attempt}/{self.max_save_attempts}), "
                               f"retrying in {delay:.1f}s: {e}")
                await asyncio.sleep(delay)
                attempt += 1

    async def init(self) -> None:
        raise NotImplementedError

    def render(self) -> Dict[str, Any]:
        raise NotImplementedError


class MediaController(AppController):
    """
    Controller for a list of media models stored one record per item.

    Subclasses set key_prefix and model_class and implement prepare().
    """

    key_prefix = ""
    model_class: Any = None
    noun = "item"

    def __init__(self, gateway, **kwargs):
        super().__init__(gateway, **kwargs)
        self.items: List[Any] = []
        self.states: Dict[str, ItemState] = {}

    def key_for(self, item_id: str) -> str:
        return f"{self.key_prefix}{item_id}"

    def get(self, item_id: str) -> Optional[Any]:
        return next((item for item in self.items if item.id == item_id), None)

    def is_pending(self, item_id: str) -> bool:
        return self.states.get(item_id) == ItemState.PENDING

    async def init(self) -> None:
        """Load every stored item, newest first. Unreadable records are skipped."""
        keys = await self.gateway.list_keys(self.key_prefix)
        results = await asyncio.gather(*(self.gateway.load(key) for key in keys),
                                       return_exceptions=True)

        loaded = []
        for key, result in zip(keys, results):
            if isinstance(result, Exception):
                logger.warning(f"Could not load {key}: {result}")
                continue
            if result is None:
                continue
            try:
                loaded.append(self.model_class.from_dict(result))
            except (DeskError, TypeError, ValueError) as e:
                logger.warning(f"Skipping invalid record {key}: {e}")

        loaded.sort(key=lambda item: item.upload_date, reverse=True)
        self.items = loaded
        self.states = {item.id: ItemState.COMMITTED for item in loaded}
        self.initialized = True
        self._changed()

    async def prepare(self, file) -> Any:
        """Validate a file and build its model. Must not touch controller state."""
        raise NotImplementedError

    async def upload(self, file) -> Any:
        """
        Validate, show, persist.

        Raises:
            ValidationError: Rejected before anything was shown
            StorageError: Save failed; the item has been rolled back
        """
        try:
            item = await self.prepare(file)
        except DeskError as e:
            self._notify('error', f"{getattr(file, 'name', 'File')}: {e}")
            raise
        return await self._optimistic_insert(item)

    async def upload_many(self, files: Iterable[Any]) -> Dict[str, Any]:
        """
        Upload concurrently; completion order does not matter.

        Returns:
            Tally with succeeded, failed and per-file errors
        """
        files = list(files)
        results = await asyncio.gather(*(self.upload(f) for f in files), return_exceptions=True)

        errors = []
        for file, result in zip(files, results):
            if isinstance(result, DeskError):
                errors.append((file.name, str(result)))
            elif isinstance(result, Exception):
                raise result

        tally = {
            'succeeded': len(files) - len(errors),
            'failed': len(errors),
            'errors': errors,
        }
        if tally['succeeded']:
            self._notify('success', f"{tally['succeeded']} {self.noun}(s) uploaded")
        if tally['failed']:
            self._notify('warning', f"{tally['failed']} {self.noun}(s) failed to upload")
        return tally

    async def _optimistic_insert(self, item: Any, index: int = 0) -> Any:
        self.items.insert(index, item)
        self.states[item.id] = ItemState.PENDING
        self._changed()

        try:
            await self._save_with_retry(self.key_for(item.id), item.to_dict())
        except StorageError as e:
            if item in self.items:
                self.items.remove(item)
            self.states[item.id] = ItemState.ROLLED_BACK
            self._changed()
            self._notify('error', f"Failed to save {item.filename}: {e}")
            del self.states[item.id]
            raise

        self.states[item.id] = ItemState.COMMITTED
        self._changed()
        return item

    async def delete(self, item_id: str) -> bool:
        """
        Remove immediately, restore at the same position if the delete fails.

        Raises:
            KeyError: Unknown item
            StorageError: Delete failed; the item is back in place
        """
        index = next((i for i, item in enumerate(self.items) if item.id == item_id), None)
        if index is None:
            raise KeyError(f"{self.noun} not found: {item_id}")

        item = self.items.pop(index)
        previous_state = self.states.pop(item_id, ItemState.COMMITTED)
        self._changed()

        try:
            await self.gateway.delete(self.key_for(item_id))
        except StorageError as e:
            self.items.insert(min(index, len(self.items)), item)
            self.states[item_id] = previous_state
            self._changed()
            self._notify('error', f"Failed to delete {item.filename}: {e}")
            raise

        self._notify('success', f"Deleted {item.filename}")
        return True

    def describe(self, item: Any) -> Dict[str, Any]:
        return {'id': item.id, 'name': item.filename, 'size': item.format_size()}

    def stats(self) -> Dict[str, Any]:
        return {
            'count': len(self.items),
            'pending': sum(1 for item in self.items if self.is_pending(item.id)),
            'total_size': sum(item.size for item in self.items),
        }

    def render(self) -> Dict[str, Any]:
        return {
            'app': self.app_name,
            'items': [dict(self.describe(item), pending=self.is_pending(item.id))
                      for item in self.items],
            'stats': self.stats(),
        }
