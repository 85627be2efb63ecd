"""Tests for the filesystem package provider."""

import json
from pathlib import Path

import pytest

from annopack.errors import ConfigurationError, ProviderError
from annopack.models.annotations import (
    AnnotationCategory,
    AnnotationConfig,
    AnnotationPackage,
    ObjectClass,
)
from annopack.services.filesystem_provider import FileSystemPackageProvider
from tests.conftest import make_annotation


@pytest.fixture
def fs_provider(remote_dir: Path, cache_dir: Path) -> FileSystemPackageProvider:
    """Create a provider over the sample remote tree."""
    return FileSystemPackageProvider(remote_dir, cache_dir)


def read_record(remote_dir: Path, package_id: str) -> dict:
    return json.loads((remote_dir / "packages" / package_id / "package.json").read_text())


class TestSetup:
    """Tests for provider construction."""

    def test_missing_remote_dir(self, tmp_path: Path) -> None:
        """Test that an unreachable store is a configuration error."""
        with pytest.raises(ConfigurationError):
            FileSystemPackageProvider(tmp_path / "nope", tmp_path / "cache")

    def test_creates_cache_dir(
        self, fs_provider: FileSystemPackageProvider, cache_dir: Path
    ) -> None:
        """Test that the cache directory is created."""
        assert cache_dir.is_dir()


class TestConfig:
    """Tests for the annotation config store."""

    def test_get_config(self, fs_provider: FileSystemPackageProvider) -> None:
        """Test reading the stored config."""
        config = fs_provider.get_annotation_config()
        assert [c.name for c in config.object_classes] == ["car", "person"]

    def test_missing_config(self, tmp_path: Path) -> None:
        """Test that a store without config returns None."""
        (tmp_path / "remote").mkdir()
        provider = FileSystemPackageProvider(tmp_path / "remote", tmp_path / "cache")
        assert provider.get_annotation_config() is None

    def test_set_config(self, fs_provider: FileSystemPackageProvider) -> None:
        """Test that a saved config is read back."""
        config = AnnotationConfig(
            object_classes=[ObjectClass(id=0, name="bus")], tags=["night"]
        )
        fs_provider.set_annotation_config(config)
        assert fs_provider.get_annotation_config() == config

    def test_corrupt_config(
        self, fs_provider: FileSystemPackageProvider, remote_dir: Path
    ) -> None:
        """Test that an unreadable config is a provider error."""
        (remote_dir / "config.json").write_text("{not json")
        with pytest.raises(ProviderError):
            fs_provider.get_annotation_config()


class TestListPackages:
    """Tests for listing packages."""

    def test_list_unannotated(self, fs_provider: FileSystemPackageProvider) -> None:
        """Test that packages are filtered by category and sorted by ID."""
        packages = fs_provider.list_packages(AnnotationCategory.UNANNOTATED)
        assert [p.id for p in packages] == ["pkg-a", "pkg-b"]
        assert all(not p.available_locally for p in packages)
        assert all(p.user == "alice" for p in packages)

    def test_list_annotated(self, fs_provider: FileSystemPackageProvider) -> None:
        """Test listing the annotated category."""
        packages = fs_provider.list_packages(AnnotationCategory.ANNOTATED)
        assert [p.id for p in packages] == ["pkg-done"]

    def test_downloaded_package_listed_as_local(
        self, fs_provider: FileSystemPackageProvider
    ) -> None:
        """Test that cached packages come back local with their images."""
        package = AnnotationPackage(id="pkg-a")
        package.attach_images(fs_provider.download_package(package))

        listed = fs_provider.list_packages(AnnotationCategory.UNANNOTATED)[0]
        assert listed.available_locally is True
        assert [image.filename for image in listed.images] == ["0001.png", "0002.png"]
        assert listed.is_dirty is False

    def test_unsynced_edits_survive_reload(
        self, fs_provider: FileSystemPackageProvider
    ) -> None:
        """Test that the dirty flag and edits are restored from the cache."""
        package = AnnotationPackage(id="pkg-a")
        package.attach_images(fs_provider.download_package(package))
        package.images[0].annotations.append(make_annotation())
        package.mark_dirty()
        fs_provider.save_local_changes(package)

        listed = fs_provider.list_packages(AnnotationCategory.UNANNOTATED)[0]
        assert listed.is_dirty is True
        assert len(listed.images[0].annotations) == 1
        assert listed.annotation_percentage == 50.0

    def test_corrupt_record(
        self, fs_provider: FileSystemPackageProvider, remote_dir: Path
    ) -> None:
        """Test that a broken package record fails the listing."""
        (remote_dir / "packages" / "pkg-b" / "package.json").write_text("[]")
        with pytest.raises(ProviderError):
            fs_provider.list_packages(AnnotationCategory.UNANNOTATED)


class TestDownload:
    """Tests for downloading package assets."""

    def test_download_copies_assets(
        self, fs_provider: FileSystemPackageProvider, cache_dir: Path
    ) -> None:
        """Test that images land in the cache with their paths set."""
        images = fs_provider.download_package(AnnotationPackage(id="pkg-a"))
        assert [image.filename for image in images] == ["0001.png", "0002.png"]
        assert all(image.path.exists() for image in images)
        assert all(image.path.is_relative_to(cache_dir / "pkg-a") for image in images)
        assert not (cache_dir / "pkg-a.partial").exists()

    def test_download_keeps_remote_annotations(
        self, fs_provider: FileSystemPackageProvider
    ) -> None:
        """Test that stored annotations are part of the download."""
        images = fs_provider.download_package(AnnotationPackage(id="pkg-done"))
        assert all(len(image.annotations) == 1 for image in images)

    def test_download_unknown_package(
        self, fs_provider: FileSystemPackageProvider
    ) -> None:
        """Test that a missing package is a provider error."""
        with pytest.raises(ProviderError) as exc_info:
            fs_provider.download_package(AnnotationPackage(id="missing"))
        assert exc_info.value.package_id == "missing"

    def test_path_traversal_rejected(
        self, fs_provider: FileSystemPackageProvider
    ) -> None:
        """Test that package IDs cannot escape the storage directories."""
        with pytest.raises(ProviderError, match="Invalid package ID"):
            fs_provider.download_package(AnnotationPackage(id="../../etc"))


class TestSync:
    """Tests for writing packages back to remote storage."""

    def test_sync_writes_annotations(
        self, fs_provider: FileSystemPackageProvider, remote_dir: Path
    ) -> None:
        """Test that annotations and completion are pushed."""
        package = AnnotationPackage(id="pkg-a", tags=["day"])
        package.attach_images(fs_provider.download_package(package))
        for image in package.images:
            image.annotations.append(make_annotation())
            package.update_annotation_status(image)

        fs_provider.sync_package(package)
        record = read_record(remote_dir, "pkg-a")
        assert record["annotated"] is True
        assert record["tags"] == ["day"]
        assert len(record["images"][0]["annotations"]) == 1

    def test_synced_package_moves_category(
        self, fs_provider: FileSystemPackageProvider
    ) -> None:
        """Test that a fully annotated package is listed as annotated."""
        package = AnnotationPackage(id="pkg-b")
        package.attach_images(fs_provider.download_package(package))
        for image in package.images:
            image.annotations.append(make_annotation())
            package.update_annotation_status(image)
        fs_provider.sync_package(package)

        annotated = fs_provider.list_packages(AnnotationCategory.ANNOTATED)
        assert [p.id for p in annotated] == ["pkg-b", "pkg-done"]

    def test_update_tags(
        self, fs_provider: FileSystemPackageProvider, remote_dir: Path
    ) -> None:
        """Test that tags are saved without touching annotations."""
        fs_provider.update_package_tags(AnnotationPackage(id="pkg-done", tags=["x"]))
        record = read_record(remote_dir, "pkg-done")
        assert record["tags"] == ["x"]
        assert record["annotated"] is True

    def test_save_local_changes_ignores_remote_package(
        self, fs_provider: FileSystemPackageProvider, cache_dir: Path
    ) -> None:
        """Test that nothing is cached for a package that was never downloaded."""
        fs_provider.save_local_changes(AnnotationPackage(id="pkg-a"))
        assert not (cache_dir / "pkg-a").exists()
