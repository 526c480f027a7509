"""
Id selection used for route planning and bulk mode.
"""

from __future__ import annotations

from typing import Iterable


class Selection:
    """Insertion-ordered set of selected task ids."""

    def __init__(self, ids: Iterable[str] = ()):
        self._ids: dict[str, None] = dict.fromkeys(ids)

    def __contains__(self, task_id: str) -> bool:
        return task_id in self._ids

    def __len__(self) -> int:
        return len(self._ids)

    def ids(self) -> list[str]:
        return list(self._ids)

    def toggle(self, task_id: str) -> bool:
        """Flip one id. Returns whether it is selected afterwards."""
        if task_id in self._ids:
            del self._ids[task_id]
            return False
        self._ids[task_id] = None
        return True

    def all_selected(self, ids: Iterable[str]) -> bool:
        ids = list(ids)
        return bool(ids) and all(i in self._ids for i in ids)

    def toggle_all(self, ids: Iterable[str]) -> None:
        """Select every id, or deselect them all if they were all selected already."""
        ids = list(ids)
        if self.all_selected(ids):
            for task_id in ids:
                self._ids.pop(task_id, None)
        else:
            for task_id in ids:
                self._ids[task_id] = None

    def retain(self, ids: Iterable[str]) -> None:
        """Drop selected ids that are no longer present."""
        keep = set(ids)
        self._ids = {i: None for i in self._ids if i in keep}

    def clear(self) -> None:
        self._ids.clear()
