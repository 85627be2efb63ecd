"""Presentation-facing state driven by the engine.

The engine never draws anything itself. It updates these surfaces and the
presentation layer (web frontend, CLI) renders them.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable

from annopack.models.annotations import Annotation, AnnotationImage, AnnotationPackage
from annopack.models.events import BusyChanged, DirtyUpdated
from annopack.services.events import EventBus

ImageCallback = Callable[[AnnotationImage | None], None]


class ImageList:
    """List of the images of the active package.

    Every change of the highlighted image, including the one caused by
    ``reset()``, is reported through ``on_select``.
    """

    def __init__(self) -> None:
        self.images: list[AnnotationImage] = []
        self.selected: AnnotationImage | None = None
        self.visible = False
        self.on_select: ImageCallback | None = None

    def reset(self) -> None:
        """Clear the list and hide it."""
        self.images = []
        self.visible = False
        self._set_selected(None)

    def set_package(self, package: AnnotationPackage) -> None:
        """Populate the list and highlight the first image."""
        self.images = list(package.images)
        self._set_selected(self.images[0] if self.images else None)

    def select(self, image: AnnotationImage) -> None:
        """Highlight ``image``.

        Raises:
            ValueError: If ``image`` is not part of the list.
        """
        if not any(listed is image for listed in self.images):
            raise ValueError(f"Image not in list: {image.filename}")
        self._set_selected(image)

    def _set_selected(self, image: AnnotationImage | None) -> None:
        self.selected = image
        if self.on_select is not None:
            self.on_select(image)


class DrawSurface:
    """Canvas state for the image being edited."""

    def __init__(self) -> None:
        self.image: AnnotationImage | None = None
        self.visible = False
        self.autoplace = False
        self._cached_annotations: list[Annotation] = []

    def reset(self) -> None:
        """Clear the canvas and discard the cached edit state."""
        self.image = None
        self.visible = False
        self._cached_annotations = []

    def set_image(self, image: AnnotationImage | None) -> None:
        """Show ``image``, remembering the boxes of the previous one."""
        if self.image is not None and self.image.annotations:
            self._cached_annotations = list(self.image.annotations)
        self.image = image

    def apply_cached_annotations(self) -> bool:
        """Place the cached boxes on an empty image when autoplace is on.

        Returns:
            True if the current image was edited.
        """
        if not self.autoplace or self.image is None or self.image.annotations:
            return False
        if not self._cached_annotations:
            return False
        self.image.annotations = [
            Annotation(
                id=str(uuid.uuid4()),
                label=ann.label,
                class_id=ann.class_id,
                bbox=ann.bbox,
            )
            for ann in self._cached_annotations
        ]
        return True


class Workspace:
    """All surfaces of one session plus the editing and sync switches."""

    def __init__(self) -> None:
        self.image_list = ImageList()
        self.draw_surface = DrawSurface()
        self.editing_enabled = True
        self.busy = False
        self.sync_enabled = False
        self.user_name: str | None = None
        self.tags: list[str] = []
        self.download_visible = False
        self.downloading: set[str] = set()

    def bind(self, bus: EventBus) -> list[Callable[[], None]]:
        """Follow busy and dirty notifications.

        Returns:
            Unsubscribe callables.
        """
        return [
            bus.subscribe(BusyChanged, self._on_busy_changed),
            bus.subscribe(DirtyUpdated, self._on_dirty_updated),
        ]

    def set_package_editing_enabled(self, enabled: bool) -> None:
        """Show or hide every per-package editing surface."""
        self.editing_enabled = enabled
        self.image_list.visible = enabled
        self.draw_surface.visible = enabled
        self.download_visible = enabled

    def _on_busy_changed(self, event: BusyChanged) -> None:
        self.busy = event.busy

    def _on_dirty_updated(self, event: DirtyUpdated) -> None:
        self.sync_enabled = event.dirty
