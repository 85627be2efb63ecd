"""Annotation edits on images of downloaded packages."""

import logging
import uuid

from annopack.errors import PackageStateError, ProviderError
from annopack.models.annotations import (
    Annotation,
    AnnotationConfig,
    AnnotationCreate,
    AnnotationImage,
    AnnotationPackage,
    AnnotationUpdate,
)
from annopack.models.events import ImageEdited
from annopack.services.registry import PackageRegistry

logger = logging.getLogger(__name__)


class EditService:
    """Apply annotation edits and propagate them to the owning package."""

    def __init__(self, registry: PackageRegistry, config: AnnotationConfig) -> None:
        """Initialize the edit service.

        Args:
            registry: Registry holding the edited packages.
            config: Config whose object classes constrain ``class_id``.
        """
        self.registry = registry
        self.config = config

    def on_image_edited(self, image: AnnotationImage | None) -> None:
        """Mark the owner of ``image`` dirty and refresh the registry view.

        This is the only path that sets a package dirty.
        """
        if image is None:
            return
        package = self.apply_edit(image)
        self.save_local_changes(package)

    def apply_edit(self, image: AnnotationImage) -> AnnotationPackage:
        """Propagate an edit of ``image`` to its package under the registry lock.

        Callers that hold the lock must call ``save_local_changes`` once
        they have released it.
        """
        package = image.package
        if package is None:
            raise PackageStateError(f"Image {image.filename} has no owning package")

        with self.registry.lock:
            package.mark_dirty()
            package.update_annotation_status(image)
            self.registry.refresh()
            self.registry.bus.publish(ImageEdited(image=image))
        logger.debug("Image %s of package %s edited", image.filename, package.id)
        return package

    def save_local_changes(self, package: AnnotationPackage) -> None:
        """Write the unsynced edits of ``package`` to the local cache.

        The edit stays applied and dirty if this fails; the next sync
        pushes it.
        """
        try:
            self.registry.provider.save_local_changes(package)
        except ProviderError as err:
            logger.warning("Local changes of package %s not saved: %s", package.id, err)

    def _check_class_id(self, class_id: int) -> None:
        if self.config.object_classes and self.config.get_object_class(class_id) is None:
            raise ValueError(f"Unknown object class: {class_id}")

    def add_annotation(
        self, image: AnnotationImage, annotation: AnnotationCreate
    ) -> Annotation:
        """Add a new annotation to an image.

        Returns:
            The created annotation with generated ID.

        Raises:
            ValueError: If the class ID is not part of the config.
        """
        self._check_class_id(annotation.class_id)
        new_annotation = Annotation(
            id=str(uuid.uuid4()),
            label=annotation.label,
            class_id=annotation.class_id,
            bbox=annotation.bbox,
        )
        with self.registry.lock:
            image.annotations.append(new_annotation)
            package = self.apply_edit(image)
        self.save_local_changes(package)
        return new_annotation

    def update_annotation(
        self, image: AnnotationImage, annotation_id: str, update: AnnotationUpdate
    ) -> Annotation | None:
        """Update an existing annotation."""
        if update.class_id is not None:
            self._check_class_id(update.class_id)

        with self.registry.lock:
            for i, ann in enumerate(image.annotations):
                if ann.id == annotation_id:
                    updated_data = ann.model_dump()
                    updated_data.update(update.model_dump(exclude_none=True))
                    updated = Annotation.model_validate(updated_data)
                    image.annotations[i] = updated
                    package = self.apply_edit(image)
                    break
            else:
                return None
        self.save_local_changes(package)
        return updated

    def delete_annotation(self, image: AnnotationImage, annotation_id: str) -> bool:
        """Delete an annotation from an image."""
        with self.registry.lock:
            original_count = len(image.annotations)
            image.annotations = [
                ann for ann in image.annotations if ann.id != annotation_id
            ]
            if len(image.annotations) == original_count:
                return False
            package = self.apply_edit(image)
        self.save_local_changes(package)
        return True

    def clear_annotations(self, image: AnnotationImage) -> int:
        """Clear all annotations for an image."""
        with self.registry.lock:
            count = len(image.annotations)
            if not count:
                return 0
            image.annotations = []
            package = self.apply_edit(image)
        self.save_local_changes(package)
        return count

    def copy_annotations(
        self, source: AnnotationImage, target: AnnotationImage
    ) -> int:
        """Copy annotations from one image to another.

        Useful for consecutive frames that show the same objects.
        """
        copied = [
            Annotation(
                id=str(uuid.uuid4()),
                label=ann.label,
                class_id=ann.class_id,
                bbox=ann.bbox,
            )
            for ann in source.annotations
        ]
        if not copied:
            return 0
        with self.registry.lock:
            target.annotations.extend(copied)
            package = self.apply_edit(target)
        self.save_local_changes(package)
        return len(copied)
