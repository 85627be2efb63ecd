"""One running annotation session.

Wires the registry, the selection controller and the orchestrators to a
provider, loads the annotation config at startup and schedules background
work.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor

from annopack.errors import ConfigurationError, ProviderError
from annopack.models.annotations import (
    AnnotationCategory,
    AnnotationConfig,
    AnnotationImage,
    AnnotationPackage,
    SelectionBehavior,
)
from annopack.models.events import CategorySelected, DownloadRequested
from annopack.services.download import DownloadOrchestrator, DownloadOutcome
from annopack.services.editing import EditService
from annopack.services.events import EventBus
from annopack.services.guards import OperationGuard
from annopack.services.provider import AnnotationPackageProvider
from annopack.services.registry import PackageRegistry
from annopack.services.selection import SelectionController, SelectionOutcome
from annopack.services.sync import ConfirmCallback, SyncOrchestrator, SyncReport
from annopack.services.workspace import Workspace

logger = logging.getLogger(__name__)

ConfigFactory = Callable[[], AnnotationConfig | None]


def load_annotation_config(
    provider: AnnotationPackageProvider, create_config: ConfigFactory
) -> AnnotationConfig:
    """Load the config, creating and persisting it when none is stored.

    Raises:
        ConfigurationError: If the store is unreachable or creation is declined.
    """
    try:
        config = provider.get_annotation_config()
    except ProviderError as err:
        raise ConfigurationError(f"Cannot load annotation config: {err}") from err
    if config is not None:
        return config

    config = create_config()
    if config is None:
        raise ConfigurationError("No annotation config available")
    try:
        provider.set_annotation_config(config)
    except ProviderError as err:
        raise ConfigurationError(f"Cannot save annotation config: {err}") from err
    logger.info("Created annotation config")
    return config


class AnnotationSession:
    """Coordinate all package operations of one user session."""

    def __init__(
        self,
        provider: AnnotationPackageProvider,
        config: AnnotationConfig,
        sync_workers: int = 4,
        auto_download: bool = False,
    ) -> None:
        """Initialize the session.

        Args:
            provider: Gateway to remote storage.
            config: The annotation config of this session.
            sync_workers: Upper bound of concurrent sync calls.
            auto_download: Start downloading a remote package as soon as it
                is selected.
        """
        self.provider = provider
        self.config = config
        self.bus = EventBus()
        self.guard = OperationGuard()
        self.workspace = Workspace()
        self.registry = PackageRegistry(provider, self.bus, self.guard)
        self.edits = EditService(self.registry, config)
        self.selection = SelectionController(self.registry, self.workspace, self.edits)
        self.downloads = DownloadOrchestrator(self.registry, self.selection)
        self.syncer = SyncOrchestrator(self.registry, max_workers=sync_workers)
        self.category = AnnotationCategory.UNANNOTATED
        self.auto_download = auto_download

        self._executor = ThreadPoolExecutor(
            max_workers=2, thread_name_prefix="annopack-bg"
        )
        self._unsubscribe = self.workspace.bind(self.bus)
        self._unsubscribe.append(
            self.bus.subscribe(DownloadRequested, self._on_download_requested)
        )

    @classmethod
    def open(
        cls,
        provider: AnnotationPackageProvider,
        create_config: ConfigFactory,
        **kwargs,
    ) -> AnnotationSession:
        """Start a session, bootstrapping the annotation config."""
        config = load_annotation_config(provider, create_config)
        return cls(provider, config, **kwargs)

    def select_category(self, category: AnnotationCategory) -> list[AnnotationPackage]:
        """Show the packages of ``category``.

        Raises:
            ProviderError: If the listing fails; the previous packages stay.
        """
        self.bus.publish(CategorySelected(category=category))
        packages = self.registry.load_category(category)
        self.category = category
        self.selection.select(None)
        return packages

    def reload(self) -> list[AnnotationPackage]:
        """Fetch the packages of the current category again."""
        return self.select_category(self.category)

    def get_package(self, package_id: str) -> AnnotationPackage | None:
        return self.registry.get(package_id)

    def select_package(
        self,
        package: AnnotationPackage | None,
        behavior: SelectionBehavior = SelectionBehavior.ANY,
    ) -> SelectionOutcome:
        return self.selection.select(package, behavior)

    def select_image(self, image: AnnotationImage) -> None:
        self.selection.select_image(image)

    def download(self, package: AnnotationPackage) -> DownloadOutcome:
        """Download ``package`` on the calling thread."""
        return self.downloads.download(package)

    def request_download(self, package: AnnotationPackage) -> Future[DownloadOutcome]:
        """Download ``package`` in the background."""
        return self._executor.submit(self.downloads.download, package)

    def sync(self, confirm: ConfirmCallback) -> SyncReport:
        """Sync every dirty package on the calling thread."""
        return self.syncer.sync(confirm)

    def submit_sync(self, confirm: ConfirmCallback) -> Future[SyncReport]:
        """Sync every dirty package in the background."""
        return self._executor.submit(self.syncer.sync, confirm)

    def update_tags(self, package: AnnotationPackage, tags: list[str]) -> None:
        """Replace the tags of ``package`` and persist them.

        Raises:
            ValueError: If a tag is not allowed by the config.
            ProviderError: If the tags cannot be saved; the old tags stay.
        """
        if self.config.tags:
            unknown = [tag for tag in tags if tag not in self.config.tags]
            if unknown:
                raise ValueError(f"Unknown tags: {', '.join(unknown)}")

        with self.registry.lock:
            previous = package.tags
            package.tags = list(tags)
            try:
                self.provider.update_package_tags(package)
            except ProviderError:
                package.tags = previous
                raise
            if package is self.selection.selected_package:
                self.workspace.tags = list(tags)

    def save_config(self, config: AnnotationConfig) -> None:
        """Persist ``config`` and make it the active config."""
        self.provider.set_annotation_config(config)
        with self.registry.lock:
            self.config = config
            self.edits.config = config

    def dirty_packages(self) -> list[AnnotationPackage]:
        return self.registry.dirty_packages()

    def request_close(self, confirm: ConfirmCallback) -> bool:
        """Ask whether the session may close.

        ``confirm`` is only consulted when unsynced packages exist; its
        answer can veto the close.
        """
        dirty = self.registry.dirty_packages()
        if dirty and not confirm(dirty):
            logger.info("Close vetoed with %d unsynced package(s)", len(dirty))
            return False
        return True

    def close(self) -> None:
        """Wait for background work and release every package."""
        self._executor.shutdown(wait=True)
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self._unsubscribe = []
        self.selection.select(None)
        self.registry.clear()

    def _on_download_requested(self, event: DownloadRequested) -> None:
        if self.auto_download:
            self.request_download(event.package)
