"""Contract of the gateway to remote package storage."""

from abc import ABC, abstractmethod

from annopack.models.annotations import (
    AnnotationCategory,
    AnnotationConfig,
    AnnotationImage,
    AnnotationPackage,
)


class AnnotationPackageProvider(ABC):
    """Sole gateway to remote storage for packages and the annotation config.

    Implementations raise ``ProviderError`` for any failure of the
    underlying transport, including timeouts.
    """

    @abstractmethod
    def get_annotation_config(self) -> AnnotationConfig | None:
        """Fetch the stored config, or None if none has been saved yet."""

    @abstractmethod
    def set_annotation_config(self, config: AnnotationConfig) -> None:
        """Persist the config."""

    @abstractmethod
    def list_packages(self, category: AnnotationCategory) -> list[AnnotationPackage]:
        """List every package of ``category``."""

    @abstractmethod
    def download_package(self, package: AnnotationPackage) -> list[AnnotationImage]:
        """Download the assets of ``package`` and return its images.

        The package itself is not modified; the caller attaches the images.
        """

    @abstractmethod
    def sync_package(self, package: AnnotationPackage) -> None:
        """Push the local edits of ``package``.

        Re-syncing a package whose edits are already stored succeeds without
        changing anything.
        """

    @abstractmethod
    def update_package_tags(self, package: AnnotationPackage) -> None:
        """Persist the current tags of ``package``."""

    def save_local_changes(self, package: AnnotationPackage) -> None:
        """Persist unsynced edits of ``package`` on the local side.

        Providers without a local store keep edits in memory only.
        """
