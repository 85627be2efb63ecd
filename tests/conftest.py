"""Shared test configuration and fixtures."""

import os
from collections.abc import Callable
from pathlib import Path

import pytest
from PIL import Image

from annopack.errors import ProviderError
from annopack.models.annotations import (
    Annotation,
    AnnotationCategory,
    AnnotationConfig,
    AnnotationImage,
    AnnotationPackage,
    BoundingBox,
    ObjectClass,
)
from annopack.services.provider import AnnotationPackageProvider
from annopack.services.session import AnnotationSession

# Set high rate limit before importing app to avoid rate limiting in tests
os.environ.setdefault("ANNOPACK_RATE_LIMIT", "10000/minute")


class FakeProvider(AnnotationPackageProvider):
    """In-memory provider recording every call."""

    def __init__(self) -> None:
        self.config: AnnotationConfig | None = AnnotationConfig(
            object_classes=[ObjectClass(id=0, name="car"), ObjectClass(id=1, name="person")]
        )
        self.listings: dict[AnnotationCategory, list[AnnotationPackage]] = {
            AnnotationCategory.UNANNOTATED: [],
            AnnotationCategory.ANNOTATED: [],
        }
        self.assets: dict[str, list[str]] = {}
        self.calls: list[tuple[str, str | None]] = []
        self.fail_list = False
        self.fail_download: set[str] = set()
        self.fail_sync: set[str] = set()
        self.fail_save: set[str] = set()
        self.on_download: Callable[[AnnotationPackage], None] | None = None
        self.on_sync: Callable[[AnnotationPackage], None] | None = None
        self.on_save: Callable[[AnnotationPackage], None] | None = None
        self.synced: dict[str, int] = {}
        self.saved_local: list[str] = []

    def get_annotation_config(self) -> AnnotationConfig | None:
        self.calls.append(("get_annotation_config", None))
        return self.config

    def set_annotation_config(self, config: AnnotationConfig) -> None:
        self.calls.append(("set_annotation_config", None))
        self.config = config

    def list_packages(self, category: AnnotationCategory) -> list[AnnotationPackage]:
        self.calls.append(("list_packages", category.value))
        if self.fail_list:
            raise ProviderError("listing unavailable")
        return list(self.listings[category])

    def download_package(self, package: AnnotationPackage) -> list[AnnotationImage]:
        self.calls.append(("download_package", package.id))
        if self.on_download is not None:
            self.on_download(package)
        if package.id in self.fail_download:
            raise ProviderError("download failed", package.id)
        return [
            AnnotationImage(filename=name)
            for name in self.assets.get(package.id, ["0001.png", "0002.png"])
        ]

    def sync_package(self, package: AnnotationPackage) -> None:
        self.calls.append(("sync_package", package.id))
        if self.on_sync is not None:
            self.on_sync(package)
        if package.id in self.fail_sync:
            raise ProviderError("sync failed", package.id)
        self.synced[package.id] = self.synced.get(package.id, 0) + 1

    def update_package_tags(self, package: AnnotationPackage) -> None:
        self.calls.append(("update_package_tags", package.id))

    def save_local_changes(self, package: AnnotationPackage) -> None:
        if self.on_save is not None:
            self.on_save(package)
        if package.id in self.fail_save:
            raise ProviderError("cache not writable", package.id)
        self.saved_local.append(package.id)

    def calls_for(self, method: str) -> list[str | None]:
        return [arg for name, arg in self.calls if name == method]


def make_local_package(package_id: str, *filenames: str, user: str = "alice") -> AnnotationPackage:
    """Create a downloaded package with the given images."""
    names = filenames or ("0001.png", "0002.png")
    return AnnotationPackage(
        id=package_id,
        user=user,
        available_locally=True,
        images=[AnnotationImage(filename=name) for name in names],
    )


def make_annotation(class_id: int = 0, label: str = "car") -> Annotation:
    """Create an annotation in the middle of the image."""
    return Annotation(
        id=f"ann-{class_id}",
        label=label,
        class_id=class_id,
        bbox=BoundingBox(x=0.5, y=0.5, width=0.2, height=0.2),
    )


@pytest.fixture
def provider() -> FakeProvider:
    """Create an in-memory provider."""
    return FakeProvider()


@pytest.fixture
def session(provider: FakeProvider) -> AnnotationSession:
    """Create a session over the fake provider."""
    session = AnnotationSession(provider, provider.config)
    yield session
    session.close()


@pytest.fixture
def remote_dir(tmp_path: Path) -> Path:
    """Create a remote storage tree with one unannotated and one annotated package."""
    import json

    remote = tmp_path / "remote"
    remote.mkdir()
    (remote / "config.json").write_text(
        json.dumps(
            {
                "object_classes": [{"id": 0, "name": "car"}, {"id": 1, "name": "person"}],
                "tags": [],
            }
        )
    )
    for package_id, annotated in (("pkg-a", False), ("pkg-b", False), ("pkg-done", True)):
        package_dir = remote / "packages" / package_id
        images_dir = package_dir / "images"
        images_dir.mkdir(parents=True)
        for name, color in (("0001.png", "red"), ("0002.png", "blue")):
            Image.new("RGB", (200, 100), color=color).save(images_dir / name)
        annotations = (
            [{"id": "a1", "label": "car", "class_id": 0,
              "bbox": {"x": 0.5, "y": 0.5, "width": 0.2, "height": 0.2}}]
            if annotated
            else []
        )  # fmt: skip
        record = {
            "id": package_id,
            "user": "alice",
            "tags": [],
            "annotated": annotated,
            "images": [
                {"filename": "0001.png", "annotations": annotations},
                {"filename": "0002.png", "annotations": annotations},
            ],
        }
        (package_dir / "package.json").write_text(json.dumps(record))
    return remote


@pytest.fixture
def cache_dir(tmp_path: Path) -> Path:
    """Local cache directory (not created yet)."""
    return tmp_path / "cache"
