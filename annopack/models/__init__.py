"""Data models for annopack."""

from annopack.models.annotations import (
    Annotation,
    AnnotationCategory,
    AnnotationConfig,
    AnnotationCreate,
    AnnotationImage,
    AnnotationPackage,
    AnnotationStatus,
    AnnotationUpdate,
    BoundingBox,
    ObjectClass,
    SelectionBehavior,
)
from annopack.models.events import (
    BusyChanged,
    CategorySelected,
    DirtyUpdated,
    DownloadRequested,
    ImageEdited,
    ImageSelected,
    LifecycleEvent,
    PackageSelected,
)

__all__ = [
    "Annotation",
    "AnnotationCategory",
    "AnnotationConfig",
    "AnnotationCreate",
    "AnnotationImage",
    "AnnotationPackage",
    "AnnotationStatus",
    "AnnotationUpdate",
    "BoundingBox",
    "BusyChanged",
    "CategorySelected",
    "DirtyUpdated",
    "DownloadRequested",
    "ImageEdited",
    "ImageSelected",
    "LifecycleEvent",
    "ObjectClass",
    "PackageSelected",
    "SelectionBehavior",
]
