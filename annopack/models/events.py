"""Lifecycle events exposed to presentation collaborators."""

from pydantic import BaseModel, ConfigDict

from annopack.models.annotations import (
    AnnotationCategory,
    AnnotationImage,
    AnnotationPackage,
    SelectionBehavior,
)


class LifecycleEvent(BaseModel):
    """Base class for one-shot notifications fired on the foreground context."""

    model_config = ConfigDict(frozen=True)


class PackageSelected(LifecycleEvent):
    """A package selection transition was applied."""

    package: AnnotationPackage | None
    behavior: SelectionBehavior


class CategorySelected(LifecycleEvent):
    """The active category changed."""

    category: AnnotationCategory


class DirtyUpdated(LifecycleEvent):
    """Whether any loaded package holds unsynced edits."""

    dirty: bool


class ImageSelected(LifecycleEvent):
    """The user selected an image of the active package."""

    image: AnnotationImage | None


class ImageEdited(LifecycleEvent):
    """An image's annotations changed."""

    image: AnnotationImage | None


class DownloadRequested(LifecycleEvent):
    """A remote-only package was selected and needs its assets."""

    package: AnnotationPackage


class BusyChanged(LifecycleEvent):
    """Editing controls must be disabled while ``busy`` is true."""

    busy: bool
