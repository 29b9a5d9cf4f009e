"""
In-memory annotation model for one document.

Boxes and images are kept in insertion order per page.  Mutations never
raise on a missing identifier: concurrent delete/update races between
editors are normal, so a miss is reported through the return value.
"""

import logging
from dataclasses import replace
from typing import Any, Dict, List, NamedTuple, Union

from .models import Box, ImageAnnotation, Patch, parse_patch

logger = logging.getLogger(__name__)

Annotation = Union[Box, ImageAnnotation]


class MutationResult(NamedTuple):
    """Outcome of a page-scoped mutation: the page's list after the call and
    whether the target identifier was present."""

    items: List[Any]
    found: bool


def _page_key(page: Any) -> int:
    return int(page)


class AnnotationStore:
    """Page-indexed boxes and images for a single document."""

    def __init__(self) -> None:
        self.boxes: Dict[int, List[Box]] = {}
        self.images: Dict[int, List[ImageAnnotation]] = {}

    # -- generic helpers ----------------------------------------------------

    @staticmethod
    def _add(table: Dict[int, List[Any]], page: int, item: Annotation) -> MutationResult:
        items = table.setdefault(_page_key(page), [])
        items.append(item)
        return MutationResult(list(items), True)

    @staticmethod
    def _update(table: Dict[int, List[Any]], page: int, item_id: str, patch: Any) -> MutationResult:
        patch = parse_patch(patch)
        items = table.get(_page_key(page), [])
        for i, item in enumerate(items):
            if item.id == item_id:
                items[i] = item.apply(patch)
                return MutationResult(list(items), True)
        logger.debug('update on page %s: %s not found', page, item_id)
        return MutationResult(list(items), False)

    @staticmethod
    def _delete(table: Dict[int, List[Any]], page: int, item_id: str) -> MutationResult:
        key = _page_key(page)
        items = table.get(key, [])
        remaining = [item for item in items if item.id != item_id]
        found = len(remaining) != len(items)
        if found:
            table[key] = remaining
        return MutationResult(list(remaining), found)

    # -- boxes --------------------------------------------------------------

    def add_box(self, page: int, box: Box) -> MutationResult:
        return self._add(self.boxes, page, box)

    def update_box(self, page: int, box_id: str, patch: Union[Patch, Dict[str, Any]]) -> MutationResult:
        return self._update(self.boxes, page, box_id, patch)

    def delete_box(self, page: int, box_id: str) -> MutationResult:
        return self._delete(self.boxes, page, box_id)

    def get_box(self, page: int, box_id: str) -> Union[Box, None]:
        return next((b for b in self.boxes.get(_page_key(page), []) if b.id == box_id), None)

    def set_locked(self, box_id: str, locked: bool) -> bool:
        """Flag a box as locked by another editor, on whichever page it is."""
        found = False
        for items in self.boxes.values():
            for i, box in enumerate(items):
                if box.id == box_id:
                    items[i] = replace(box, locked=locked)
                    found = True
        return found

    # -- images -------------------------------------------------------------

    def add_image(self, page: int, image: ImageAnnotation) -> MutationResult:
        return self._add(self.images, page, image)

    def update_image(self, page: int, image_id: str, patch: Union[Patch, Dict[str, Any]]) -> MutationResult:
        return self._update(self.images, page, image_id, patch)

    def delete_image(self, page: int, image_id: str) -> MutationResult:
        return self._delete(self.images, page, image_id)

    def get_image(self, page: int, image_id: str) -> Union[ImageAnnotation, None]:
        return next((img for img in self.images.get(_page_key(page), []) if img.id == image_id), None)

    # -- remote mirrors -----------------------------------------------------
    #
    # Messages from the sync channel carry wire dicts.  These convert at the
    # boundary and then reuse the local mutations.

    def apply_remote_add_box(self, page: int, raw: Dict[str, Any]) -> MutationResult:
        return self.add_box(page, Box.from_dict(raw))

    def apply_remote_update_box(self, page: int, box_id: str, raw_patch: Any) -> MutationResult:
        return self.update_box(page, box_id, raw_patch)

    def apply_remote_delete_box(self, page: int, box_id: str) -> MutationResult:
        return self.delete_box(page, box_id)

    def apply_remote_add_image(self, page: int, raw: Dict[str, Any]) -> MutationResult:
        return self.add_image(page, ImageAnnotation.from_dict(raw))

    def apply_remote_update_image(self, page: int, image_id: str, raw_patch: Any) -> MutationResult:
        return self.update_image(page, image_id, raw_patch)

    def apply_remote_delete_image(self, page: int, image_id: str) -> MutationResult:
        return self.delete_image(page, image_id)

    # -- whole-state conversion ---------------------------------------------

    def clear(self) -> None:
        self.boxes.clear()
        self.images.clear()

    def boxes_dict(self) -> Dict[str, List[Dict[str, Any]]]:
        return {str(page): [b.to_dict() for b in items] for page, items in self.boxes.items()}

    def images_dict(self) -> Dict[str, List[Dict[str, Any]]]:
        return {str(page): [img.to_dict() for img in items] for page, items in self.images.items()}

    def load(self, boxes: Any = None, images: Any = None) -> None:
        """Replace the whole state from page-keyed wire dicts."""
        self.clear()
        for page, items in (boxes or {}).items():
            self.boxes[_page_key(page)] = [Box.from_dict(b) for b in items or []]
        for page, items in (images or {}).items():
            self.images[_page_key(page)] = [ImageAnnotation.from_dict(i) for i in items or []]

    @classmethod
    def from_state(cls, boxes: Any = None, images: Any = None) -> 'AnnotationStore':
        store = cls()
        store.load(boxes, images)
        return store
