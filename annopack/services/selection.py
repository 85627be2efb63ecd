"""State machine for the active package and image.

States: no selection, a single package (remote or local), or several
packages multi-selected by the presentation layer. A transition runs as a
transaction: while it is switching, image notifications caused by
resetting the image list are not propagated, and the lifecycle events it
raises are delivered only once it has committed.
"""

import logging
from enum import Enum

from annopack.models.annotations import (
    AnnotationImage,
    AnnotationPackage,
    SelectionBehavior,
)
from annopack.models.events import DownloadRequested, ImageSelected, PackageSelected
from annopack.services.editing import EditService
from annopack.services.registry import PackageRegistry
from annopack.services.workspace import Workspace

logger = logging.getLogger(__name__)


class SelectionPhase(str, Enum):
    """Transaction marker of the controller."""

    IDLE = "idle"
    SWITCHING = "switching"


class SelectionState(str, Enum):
    """Observable state of the selection."""

    NO_SELECTION = "no_selection"
    SINGLE_REMOTE = "single_remote"
    SINGLE_LOCAL = "single_local"
    MULTI_SELECTED = "multi_selected"


class SelectionOutcome(str, Enum):
    """Result of a ``select`` call."""

    APPLIED = "applied"
    IGNORED = "ignored"
    MULTI_SELECTED = "multi_selected"
    REJECTED = "rejected"


class SelectionController:
    """Govern which single package and image are active."""

    def __init__(
        self, registry: PackageRegistry, workspace: Workspace, edits: EditService
    ) -> None:
        self.registry = registry
        self.workspace = workspace
        self.edits = edits
        self.selected_package: AnnotationPackage | None = None
        self.selected_image: AnnotationImage | None = None
        self.multi_selected_count = 0
        self.phase = SelectionPhase.IDLE
        self._unsaved: AnnotationPackage | None = None
        self.workspace.image_list.on_select = self._on_image_list_selection

    @property
    def state(self) -> SelectionState:
        if self.multi_selected_count > 1:
            return SelectionState.MULTI_SELECTED
        if self.selected_package is None:
            return SelectionState.NO_SELECTION
        if self.selected_package.available_locally:
            return SelectionState.SINGLE_LOCAL
        return SelectionState.SINGLE_REMOTE

    def set_multi_selection(self, count: int) -> None:
        """Record how many packages the presentation currently has selected."""
        with self.registry.lock:
            self.multi_selected_count = count
            if count > 1:
                self.workspace.set_package_editing_enabled(False)

    def select(
        self,
        package: AnnotationPackage | None,
        behavior: SelectionBehavior = SelectionBehavior.ANY,
    ) -> SelectionOutcome:
        """Make ``package`` the active package.

        Calls from other threads wait for a running transition to finish.
        A nested call made while this thread is switching is rejected.
        """
        with self.registry.lock:
            if self.phase is SelectionPhase.SWITCHING:
                logger.info("Ignoring nested package selection during a switch")
                return SelectionOutcome.REJECTED

            if behavior is SelectionBehavior.REFRESH_ONLY:
                if package is not self.selected_package:
                    return SelectionOutcome.IGNORED
            elif behavior is SelectionBehavior.SWITCH_ONLY:
                if package is self.selected_package:
                    return SelectionOutcome.IGNORED

            if self.multi_selected_count > 1:
                self.workspace.set_package_editing_enabled(False)
                return SelectionOutcome.MULTI_SELECTED

            with self.registry.bus.transaction():
                self.phase = SelectionPhase.SWITCHING
                try:
                    self._switch_to(package)
                finally:
                    self.phase = SelectionPhase.IDLE
                self.registry.bus.publish(
                    PackageSelected(package=package, behavior=behavior)
                )
                if package is not None and not package.available_locally:
                    self.registry.bus.publish(DownloadRequested(package=package))
        return SelectionOutcome.APPLIED

    def _switch_to(self, package: AnnotationPackage | None) -> None:
        workspace = self.workspace
        workspace.set_package_editing_enabled(True)
        self.selected_package = package
        self.selected_image = None

        workspace.image_list.reset()
        workspace.draw_surface.reset()
        workspace.download_visible = False

        workspace.user_name = package.user if package is not None else None
        workspace.tags = list(package.tags) if package is not None else []
        if package is None:
            return

        if package.available_locally:
            workspace.image_list.set_package(package)
            workspace.image_list.visible = True
            workspace.draw_surface.visible = True
            self.registry.refresh()
        else:
            workspace.draw_surface.visible = False
            workspace.download_visible = True

    def select_image(self, image: AnnotationImage) -> None:
        """Handle a genuine user selection of an image of the active package."""
        with self.registry.lock:
            self.workspace.image_list.select(image)
            package, self._unsaved = self._unsaved, None
        if package is not None:
            self.edits.save_local_changes(package)

    def _on_image_list_selection(self, image: AnnotationImage | None) -> None:
        self.workspace.draw_surface.set_image(image)

        if self.phase is SelectionPhase.SWITCHING:
            logger.debug("Suppressed image selection caused by a package switch")
            return
        if image is None:
            return

        self.selected_image = image
        self.registry.bus.publish(ImageSelected(image=image))
        if self.workspace.draw_surface.apply_cached_annotations():
            # Saved by select_image once the lock is released
            self._unsaved = self.edits.apply_edit(image)
