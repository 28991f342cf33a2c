"""
Date ideas controller.

The whole list is one document. Mutations show immediately; saves are
serialized and each one writes the list as it stands. A failed save undoes
only the mutation that issued it, so changes committed in the meantime stay.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, Iterable, Optional, Set, Tuple

from shared.constants import NOTES_COLLECTION_KEY
from shared.errors import BackendUnavailable, DeskError, StorageError
from shared.models import NoteCollection, NoteEntry
from .optimistic import AppController

logger = logging.getLogger(__name__)


class NotesController(AppController):
    app_name = "notes"

    def __init__(self, gateway, **kwargs):
        super().__init__(gateway, **kwargs)
        self.collection = NoteCollection()
        self.pending_ids: Set[str] = set()
        self.load_error: Optional[DeskError] = None
        self._save_lock = asyncio.Lock()

    async def init(self) -> None:
        """
        Load the stored list. If it cannot be parsed the controller stays
        uninitialized and refuses writes, so the stored copy is not replaced.
        """
        data = await self.gateway.load(NOTES_COLLECTION_KEY)
        try:
            self.collection = NoteCollection.from_list(data)
        except DeskError as e:
            logger.error(f"Stored notes are unreadable, not overwriting them: {e}")
            self.load_error = e
            self.collection = NoteCollection()
            self.initialized = False
            self._changed()
            self._notify('error', "Stored ideas could not be read")
            return
        self.load_error = None
        self.initialized = True
        self._changed()

    def is_pending(self, entry_id: str) -> bool:
        return entry_id in self.pending_ids

    async def _mutate(self, mutation: Callable[[NoteCollection], Any],
                      touched: Iterable[str] = (), success: Optional[str] = None) -> Any:
        """
        Apply a mutation optimistically and persist the list.

        Validation errors raised by the mutation propagate before anything
        is shown or saved.
        """
        if self.load_error is not None:
            raise BackendUnavailable(f"Stored ideas are unreadable, refusing to overwrite: "
                                     f"{self.load_error}", NOTES_COLLECTION_KEY)

        order = [entry.id for entry in self.collection]
        previous: Dict[str, Tuple[int, Dict[str, Any]]] = {
            entry_id: (order.index(entry_id), self.collection.get(entry_id).to_dict())
            for entry_id in touched if entry_id in self.collection
        }

        result = mutation(self.collection)

        added = {entry.id for entry in self.collection} - set(order)
        produced = {entry_id: self.collection.get(entry_id).version
                    for entry_id in previous if entry_id in self.collection}
        affected = added | set(previous)
        self.pending_ids |= affected
        self._changed()

        try:
            async with self._save_lock:
                await self._save_with_retry(NOTES_COLLECTION_KEY, self.collection.to_list)
        except StorageError as e:
            self._undo(added, previous, produced)
            self.pending_ids -= affected
            self._changed()
            self._notify('error', f"Failed to save ideas: {e}")
            raise

        self.pending_ids -= affected
        self._changed()
        if success:
            self._notify('success', success)
        return result

    def _undo(self, added: Set[str], previous: Dict[str, Tuple[int, Dict[str, Any]]],
              produced: Dict[str, int]) -> None:
        for entry_id in added:
            if entry_id in self.collection:
                self.collection.remove(entry_id)

        for entry_id, (index, data) in sorted(previous.items(), key=lambda item: item[1][0]):
            current = self.collection.get(entry_id)
            # A later change to the same entry wins over this rollback
            if current is not None and current.version != produced.get(entry_id):
                continue
            self.collection.restore(NoteEntry.from_dict(data), index)

    async def add(self, content: str) -> NoteEntry:
        return await self._mutate(lambda c: c.add(content), success="Idea added")

    async def edit(self, entry_id: str, content: str) -> NoteEntry:
        return await self._mutate(lambda c: c.edit(entry_id, content), touched={entry_id},
                                  success="Idea updated")

    async def toggle(self, entry_id: str) -> NoteEntry:
        return await self._mutate(lambda c: c.toggle(entry_id), touched={entry_id})

    async def delete(self, entry_id: str) -> NoteEntry:
        return await self._mutate(lambda c: c.remove(entry_id), touched={entry_id},
                                  success="Idea deleted")

    async def clear_completed(self) -> int:
        completed = {e.id for e in self.collection if e.completed}
        if not completed:
            self._notify('info', "No completed ideas to clear")
            return 0
        removed = await self._mutate(lambda c: c.clear_completed(), touched=completed)
        self._notify('success', f"Cleared {len(removed)} completed idea(s)")
        return len(removed)

    async def clear_all(self) -> int:
        if not len(self.collection):
            return 0
        ids = {e.id for e in self.collection}
        return await self._mutate(lambda c: c.clear_all(), touched=ids, success="All ideas cleared")

    async def refresh(self) -> int:
        """
        Reload the stored list and adopt changes made elsewhere.

        Remote entries with a higher version replace local ones, new remote
        entries are added and committed entries missing remotely are dropped.
        Entries with a save in flight are left alone.

        Returns:
            Number of entries that changed
        """
        async with self._save_lock:
            data = await self.gateway.load(NOTES_COLLECTION_KEY)
            remote = NoteCollection.from_list(data)

            changed = 0
            for entry in remote:
                if entry.id in self.pending_ids:
                    continue
                local = self.collection.get(entry.id)
                if local is None or entry.version > local.version:
                    self.collection.restore(entry)
                    changed += 1

            for entry in self.collection:
                if entry.id not in remote and entry.id not in self.pending_ids:
                    self.collection.remove(entry.id)
                    changed += 1

        if changed:
            self._changed()
            self._notify('info', "Ideas updated from cloud")
        return changed

    def export_text(self) -> str:
        return self.collection.export_text()

    def render(self) -> Dict[str, Any]:
        return {
            'app': self.app_name,
            'items': [
                {
                    'id': entry.id,
                    'content': entry.content,
                    'completed': entry.completed,
                    'created': entry.created_date,
                    'words': entry.word_count,
                    'pending': self.is_pending(entry.id),
                }
                for entry in self.collection.sorted_entries()
            ],
            'stats': self.collection.stats(),
        }
