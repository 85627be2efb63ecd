"""In-memory collection of the packages of the loaded category."""

import logging
import threading

from annopack.errors import ProviderError
from annopack.models.annotations import AnnotationCategory, AnnotationPackage
from annopack.models.events import BusyChanged, DirtyUpdated
from annopack.services.events import EventBus
from annopack.services.guards import REGISTRY_KEY, OperationGuard
from annopack.services.provider import AnnotationPackageProvider

logger = logging.getLogger(__name__)


class PackageRegistry:
    """Own the packages of the active category.

    Every mutation of the registry, of the packages it holds and of the
    selection state happens while holding ``lock``. Orchestrators call the
    provider without holding it and take it only to apply results.
    """

    def __init__(
        self,
        provider: AnnotationPackageProvider,
        bus: EventBus,
        guard: OperationGuard,
    ) -> None:
        """Initialize an empty registry.

        Args:
            provider: Source of package listings.
            bus: Event bus for busy and dirty notifications.
            guard: Exclusion token shared with the orchestrators.
        """
        self.provider = provider
        self.bus = bus
        self.guard = guard
        self.lock = threading.RLock()
        self.category: AnnotationCategory | None = None
        self.view_revision = 0
        self._packages: list[AnnotationPackage] = []

    def load_category(self, category: AnnotationCategory) -> list[AnnotationPackage]:
        """Replace all packages with the provider's listing for ``category``.

        The registry is left untouched if the provider fails.

        Raises:
            ProviderError: If the listing cannot be fetched.
            OperationInProgressError: If a load or sync is running, or a
                loaded package is being downloaded.
        """
        loaded_ids = [package.id for package in self.all_packages()]
        with self.guard.claim("load category", REGISTRY_KEY, *loaded_ids):
            self.bus.publish(BusyChanged(busy=True))
            try:
                packages = self.provider.list_packages(category)
            except ProviderError as err:
                logger.warning("Loading %s packages failed: %s", category.value, err)
                raise
            finally:
                self.bus.publish(BusyChanged(busy=False))

            with self.lock:
                self._packages = list(packages)
                self.category = category
                self.refresh()
        logger.info("Loaded %d %s packages", len(packages), category.value)
        return self.all_packages()

    def all_packages(self) -> list[AnnotationPackage]:
        """All packages in provider order."""
        with self.lock:
            return list(self._packages)

    def dirty_packages(self) -> list[AnnotationPackage]:
        """Packages holding unsynced edits, in provider order."""
        with self.lock:
            return [package for package in self._packages if package.is_dirty]

    def get(self, package_id: str) -> AnnotationPackage | None:
        """Look up a loaded package by ID."""
        with self.lock:
            for package in self._packages:
                if package.id == package_id:
                    return package
        return None

    def refresh(self) -> None:
        """Re-render the current state without fetching from the provider."""
        with self.lock:
            self.view_revision += 1
            dirty = any(package.is_dirty for package in self._packages)
            self.bus.publish(DirtyUpdated(dirty=dirty))

    def clear(self) -> None:
        """Evict every package."""
        with self.lock:
            self._packages = []
            self.category = None
            self.refresh()
