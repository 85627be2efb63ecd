"""Pydantic models for annotation packages and their images."""

from __future__ import annotations

from enum import Enum
from pathlib import Path

from pydantic import BaseModel, Field, PrivateAttr, model_validator

from annopack.errors import PackageStateError


class AnnotationCategory(str, Enum):
    """Partition of packages by annotation-completion status."""

    UNANNOTATED = "unannotated"
    ANNOTATED = "annotated"


class AnnotationStatus(str, Enum):
    """Annotation status of a single image."""

    UNANNOTATED = "unannotated"
    ANNOTATED = "annotated"


class SelectionBehavior(str, Enum):
    """How a package selection request treats the current selection."""

    ANY = "any"
    REFRESH_ONLY = "refresh_only"
    SWITCH_ONLY = "switch_only"


class BoundingBox(BaseModel):
    """Represents a bounding box with normalized coordinates (0-1)."""

    x: float = Field(..., ge=0, le=1, description="Center X coordinate (normalized)")
    y: float = Field(..., ge=0, le=1, description="Center Y coordinate (normalized)")
    width: float = Field(..., ge=0, le=1, description="Box width (normalized)")
    height: float = Field(..., ge=0, le=1, description="Box height (normalized)")


class Annotation(BaseModel):
    """A single annotation with bounding box and label."""

    id: str = Field(..., description="Unique identifier for the annotation")
    label: str = Field(..., description="Class label for the annotation")
    class_id: int = Field(..., ge=0, description="Index into the object classes")
    bbox: BoundingBox = Field(..., description="Bounding box coordinates")


class AnnotationCreate(BaseModel):
    """Request model for creating an annotation."""

    label: str = Field(..., min_length=1, description="Class label")
    class_id: int = Field(..., ge=0, description="Numeric class ID")
    bbox: BoundingBox


class AnnotationUpdate(BaseModel):
    """Request model for updating an annotation."""

    label: str | None = Field(None, min_length=1)
    class_id: int | None = Field(None, ge=0)
    bbox: BoundingBox | None = None


class ObjectClass(BaseModel):
    """A recognized object class of the taxonomy."""

    id: int = Field(..., ge=0)
    name: str = Field(..., min_length=1)


class AnnotationConfig(BaseModel):
    """Process-wide annotation settings shared by every package."""

    object_classes: list[ObjectClass] = Field(default_factory=list)
    tags: list[str] = Field(
        default_factory=list, description="Allowed package tags (empty allows any)"
    )

    def get_object_class(self, class_id: int) -> ObjectClass | None:
        """Look up an object class by its ID."""
        for object_class in self.object_classes:
            if object_class.id == class_id:
                return object_class
        return None


class AnnotationImage(BaseModel):
    """An image owned by exactly one package."""

    filename: str
    path: Path | None = Field(default=None, description="Local asset path")
    status: AnnotationStatus = AnnotationStatus.UNANNOTATED
    annotations: list[Annotation] = Field(default_factory=list)

    _package: AnnotationPackage | None = PrivateAttr(default=None)

    @property
    def package(self) -> AnnotationPackage | None:
        """The owning package (non-owning reference)."""
        return self._package

    def update_status(self) -> AnnotationStatus:
        """Recompute the status from the current annotation set."""
        if self.annotations:
            self.status = AnnotationStatus.ANNOTATED
        else:
            self.status = AnnotationStatus.UNANNOTATED
        return self.status


class AnnotationPackage(BaseModel):
    """A named collection of images plus tags, owned by a user."""

    id: str = Field(..., min_length=1)
    user: str = ""
    available_locally: bool = False
    is_dirty: bool = False
    tags: list[str] = Field(default_factory=list)
    images: list[AnnotationImage] = Field(default_factory=list)
    annotation_percentage: float = Field(default=0.0, ge=0, le=100)

    _revision: int = PrivateAttr(default=0)

    @model_validator(mode="after")
    def _check_local_state(self) -> AnnotationPackage:
        if not self.available_locally and (self.images or self.is_dirty):
            raise ValueError(
                "A package that is not available locally cannot carry images "
                "or unsynced edits"
            )
        for image in self.images:
            image._package = self
            image.update_status()
        self._recompute_percentage()
        return self

    @property
    def revision(self) -> int:
        """Edit revision, incremented on every local edit."""
        return self._revision

    @property
    def is_annotated(self) -> bool:
        """Whether every image of the package carries annotations."""
        return bool(self.images) and all(
            image.status is AnnotationStatus.ANNOTATED for image in self.images
        )

    def get_image(self, filename: str) -> AnnotationImage | None:
        """Look up an owned image by filename."""
        for image in self.images:
            if image.filename == filename:
                return image
        return None

    def attach_images(self, images: list[AnnotationImage]) -> None:
        """Take ownership of downloaded images and mark the package local."""
        for image in images:
            image._package = self
            image.update_status()
        self.images = sorted(images, key=lambda image: image.filename)
        self.available_locally = True
        self._recompute_percentage()

    def mark_dirty(self) -> None:
        """Flag unsynced local edits.

        Raises:
            PackageStateError: If the package has not been downloaded.
        """
        if not self.available_locally:
            raise PackageStateError(
                f"Package {self.id} is not available locally and cannot be edited"
            )
        self.is_dirty = True
        self._revision += 1

    def mark_synced(self, revision: int) -> bool:
        """Clear the dirty flag after a successful sync of ``revision``.

        Returns:
            False if the package was edited again after the pushed revision,
            in which case it stays dirty.
        """
        if revision != self._revision:
            return False
        self.is_dirty = False
        return True

    def update_annotation_status(self, image: AnnotationImage) -> None:
        """Recompute the status of ``image`` and the package progress."""
        image.update_status()
        self._recompute_percentage()

    def _recompute_percentage(self) -> None:
        if not self.images:
            self.annotation_percentage = 0.0
            return
        annotated = sum(
            1 for image in self.images if image.status is AnnotationStatus.ANNOTATED
        )
        self.annotation_percentage = round(100.0 * annotated / len(self.images), 2)
