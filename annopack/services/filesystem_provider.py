"""Package provider backed by a remote directory tree and a local cache.

Remote layout (stands in for the object store and metadata database)::

    remote_dir/
    ├── config.json
    └── packages/
        └── <package_id>/
            ├── package.json
            └── images/

Local cache layout::

    cache_dir/
    └── <package_id>/
        ├── state.json      - unsynced edits and dirty flag
        └── images/
"""

import json
import logging
import shutil
from pathlib import Path

from pydantic import BaseModel, Field

from annopack.errors import ConfigurationError, ProviderError
from annopack.models.annotations import (
    Annotation,
    AnnotationCategory,
    AnnotationConfig,
    AnnotationImage,
    AnnotationPackage,
)
from annopack.services.provider import AnnotationPackageProvider
from annopack.utils import is_image_file, package_dir

logger = logging.getLogger(__name__)


class ImageRecord(BaseModel):
    """Stored annotations of one image."""

    filename: str
    annotations: list[Annotation] = Field(default_factory=list)


class PackageRecord(BaseModel):
    """Remote metadata of a package."""

    id: str
    user: str = ""
    tags: list[str] = Field(default_factory=list)
    annotated: bool = False
    images: list[ImageRecord] = Field(default_factory=list)


class LocalState(BaseModel):
    """Locally cached state of a downloaded package."""

    is_dirty: bool = False
    images: list[ImageRecord] = Field(default_factory=list)


class FileSystemPackageProvider(AnnotationPackageProvider):
    """Serve packages from ``remote_dir`` and cache downloads in ``cache_dir``."""

    def __init__(self, remote_dir: Path, cache_dir: Path) -> None:
        """Initialize the provider.

        Args:
            remote_dir: Root of the remote storage. Must already exist.
            cache_dir: Directory for downloaded assets; created if missing.

        Raises:
            ConfigurationError: If the remote storage is unreachable.
        """
        if not remote_dir.is_dir():
            raise ConfigurationError(f"Remote storage not found: {remote_dir}")
        self.remote_dir = remote_dir
        self.packages_dir = remote_dir / "packages"
        self.cache_dir = cache_dir
        try:
            self.packages_dir.mkdir(exist_ok=True)
            self.cache_dir.mkdir(parents=True, exist_ok=True)
        except OSError as err:
            raise ConfigurationError(f"Cannot prepare storage: {err}") from err

    def _get_remote_dir(self, package_id: str) -> Path:
        """Get the remote directory of a package."""
        try:
            return package_dir(self.packages_dir, package_id)
        except ValueError as err:
            raise ProviderError(str(err), package_id) from err

    def _get_cache_dir(self, package_id: str) -> Path:
        """Get the local cache directory of a package."""
        try:
            return package_dir(self.cache_dir, package_id)
        except ValueError as err:
            raise ProviderError(str(err), package_id) from err

    def _load_record(self, package_id: str) -> PackageRecord:
        """Load remote package metadata from JSON file."""
        meta_path = self._get_remote_dir(package_id) / "package.json"
        try:
            with meta_path.open("r") as f:
                data = json.load(f)
            return PackageRecord.model_validate(data)
        except (OSError, ValueError) as err:
            raise ProviderError(
                f"Cannot read package {package_id}: {err}", package_id
            ) from err

    def _load_local_state(self, package_id: str) -> LocalState | None:
        """Load the cached state of a downloaded package."""
        state_path = self._get_cache_dir(package_id) / "state.json"
        if not state_path.exists():
            return None
        try:
            with state_path.open("r") as f:
                data = json.load(f)
            return LocalState.model_validate(data)
        except (OSError, ValueError) as err:
            raise ProviderError(
                f"Cannot read local state of {package_id}: {err}", package_id
            ) from err

    def _write_json(self, path: Path, model: BaseModel) -> None:
        """Replace ``path`` atomically with the JSON dump of ``model``."""
        tmp_path = path.with_suffix(".tmp")
        with tmp_path.open("w") as f:
            json.dump(model.model_dump(mode="json"), f, indent=2)
        tmp_path.replace(path)

    def _build_images(
        self, records: list[ImageRecord], images_dir: Path
    ) -> list[AnnotationImage]:
        """Create images for the asset files found in ``images_dir``."""
        by_name = {record.filename: record for record in records}
        images = []
        for img_path in sorted(images_dir.iterdir()):
            if not is_image_file(img_path):
                continue
            record = by_name.get(img_path.name)
            annotations = list(record.annotations) if record else []
            images.append(
                AnnotationImage(
                    filename=img_path.name, path=img_path, annotations=annotations
                )
            )
        return images

    def get_annotation_config(self) -> AnnotationConfig | None:
        """Fetch the stored config, or None if none has been saved yet."""
        config_path = self.remote_dir / "config.json"
        if not config_path.exists():
            return None
        try:
            with config_path.open("r") as f:
                data = json.load(f)
            return AnnotationConfig.model_validate(data)
        except (OSError, ValueError) as err:
            raise ProviderError(f"Cannot read annotation config: {err}") from err

    def set_annotation_config(self, config: AnnotationConfig) -> None:
        """Persist the config."""
        try:
            self._write_json(self.remote_dir / "config.json", config)
        except OSError as err:
            raise ProviderError(f"Cannot save annotation config: {err}") from err
        logger.info("Saved annotation config with %d classes", len(config.object_classes))

    def list_packages(self, category: AnnotationCategory) -> list[AnnotationPackage]:
        """List every package of ``category``, sorted by ID."""
        annotated = category is AnnotationCategory.ANNOTATED
        packages = []
        try:
            package_dirs = sorted(p for p in self.packages_dir.iterdir() if p.is_dir())
        except OSError as err:
            raise ProviderError(f"Cannot list packages: {err}") from err

        for remote_package in package_dirs:
            record = self._load_record(remote_package.name)
            if record.annotated != annotated:
                continue
            package = AnnotationPackage(id=record.id, user=record.user, tags=record.tags)

            state = self._load_local_state(record.id)
            images_dir = self._get_cache_dir(record.id) / "images"
            if state is not None and images_dir.is_dir():
                package.attach_images(self._build_images(state.images, images_dir))
                package.is_dirty = state.is_dirty
            packages.append(package)

        logger.debug("Listed %d %s packages", len(packages), category.value)
        return packages

    def download_package(self, package: AnnotationPackage) -> list[AnnotationImage]:
        """Copy the package assets into the cache and return its images."""
        record = self._load_record(package.id)
        source_dir = self._get_remote_dir(package.id) / "images"
        target_dir = self._get_cache_dir(package.id)
        partial_dir = target_dir.with_name(f"{target_dir.name}.partial")

        try:
            if partial_dir.exists():
                shutil.rmtree(partial_dir)
            partial_dir.mkdir(parents=True)
            if source_dir.is_dir():
                shutil.copytree(source_dir, partial_dir / "images")
            else:
                (partial_dir / "images").mkdir()
            state = LocalState(is_dirty=False, images=record.images)
            self._write_json(partial_dir / "state.json", state)
            if target_dir.exists():
                shutil.rmtree(target_dir)
            partial_dir.rename(target_dir)
        except OSError as err:
            shutil.rmtree(partial_dir, ignore_errors=True)
            raise ProviderError(
                f"Download of package {package.id} failed: {err}", package.id
            ) from err

        logger.info("Downloaded package %s to %s", package.id, target_dir)
        return self._build_images(record.images, target_dir / "images")

    def sync_package(self, package: AnnotationPackage) -> None:
        """Write the package annotations back to remote storage."""
        record = self._load_record(package.id)
        record.images = [
            ImageRecord(filename=image.filename, annotations=image.annotations)
            for image in package.images
        ]
        record.annotated = package.is_annotated
        record.tags = list(package.tags)
        try:
            self._write_json(self._get_remote_dir(package.id) / "package.json", record)
        except OSError as err:
            raise ProviderError(
                f"Sync of package {package.id} failed: {err}", package.id
            ) from err
        logger.info("Synced package %s", package.id)

    def update_package_tags(self, package: AnnotationPackage) -> None:
        """Persist the current tags of ``package``."""
        record = self._load_record(package.id)
        record.tags = list(package.tags)
        try:
            self._write_json(self._get_remote_dir(package.id) / "package.json", record)
        except OSError as err:
            raise ProviderError(
                f"Cannot save tags of package {package.id}: {err}", package.id
            ) from err

    def save_local_changes(self, package: AnnotationPackage) -> None:
        """Write the dirty flag and annotations of a downloaded package."""
        if not package.available_locally:
            return
        state = LocalState(
            is_dirty=package.is_dirty,
            images=[
                ImageRecord(filename=image.filename, annotations=image.annotations)
                for image in package.images
            ],
        )
        try:
            self._write_json(self._get_cache_dir(package.id) / "state.json", state)
        except OSError as err:
            raise ProviderError(
                f"Cannot save local changes of package {package.id}: {err}",
                package.id,
            ) from err
