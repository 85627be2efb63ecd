"""Bulk sync of dirty packages through the provider."""

import logging
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from enum import Enum

from pydantic import BaseModel, Field

from annopack.errors import OperationInProgressError, ProviderError
from annopack.models.annotations import AnnotationPackage
from annopack.services.guards import REGISTRY_KEY
from annopack.services.registry import PackageRegistry

logger = logging.getLogger(__name__)

ConfirmCallback = Callable[[list[AnnotationPackage]], bool]


class SyncStatus(str, Enum):
    """Overall result of a sync request."""

    NOTHING_TO_SYNC = "nothing_to_sync"
    DECLINED = "declined"
    BUSY = "busy"
    COMPLETED = "completed"
    PARTIAL = "partial"


class PackageSyncResult(BaseModel):
    """Outcome of pushing one package."""

    package_id: str
    success: bool
    still_dirty: bool = Field(
        default=False, description="Edited again while the sync was running"
    )
    error: str | None = None


class SyncReport(BaseModel):
    """Per-package outcome of a sync request."""

    status: SyncStatus
    results: list[PackageSyncResult] = Field(default_factory=list)

    @property
    def failed(self) -> list[str]:
        return [result.package_id for result in self.results if not result.success]

    @property
    def succeeded(self) -> list[str]:
        return [result.package_id for result in self.results if result.success]


class SyncOrchestrator:
    """Push every dirty package of the registry after an explicit confirmation."""

    def __init__(self, registry: PackageRegistry, max_workers: int = 4) -> None:
        """Initialize the orchestrator.

        Args:
            registry: Registry whose dirty packages are pushed.
            max_workers: Upper bound of concurrent provider sync calls.
        """
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.registry = registry
        self.max_workers = max_workers

    def sync(self, confirm: ConfirmCallback) -> SyncReport:
        """Sync all dirty packages.

        Args:
            confirm: Receives the dirty packages before any provider call;
                returning False aborts without changing anything.

        Returns:
            The report. Packages that failed stay dirty.
        """
        packages = self.registry.dirty_packages()
        if not packages:
            logger.info("There are no changed packages to sync")
            return SyncReport(status=SyncStatus.NOTHING_TO_SYNC)

        if not confirm(packages):
            logger.info("Sync of %d package(s) declined", len(packages))
            return SyncReport(status=SyncStatus.DECLINED)

        keys = [package.id for package in packages]
        try:
            with self.registry.guard.claim("sync", REGISTRY_KEY, *keys):
                results = self._push_all(packages)
        except OperationInProgressError as err:
            logger.info("%s", err)
            return SyncReport(status=SyncStatus.BUSY)

        self.registry.refresh()
        status = (
            SyncStatus.COMPLETED
            if all(result.success for result in results)
            else SyncStatus.PARTIAL
        )
        logger.info(
            "Sync %s: %d succeeded, %d failed",
            status.value,
            sum(1 for result in results if result.success),
            sum(1 for result in results if not result.success),
        )
        return SyncReport(status=status, results=results)

    def _push_all(self, packages: list[AnnotationPackage]) -> list[PackageSyncResult]:
        with self.registry.lock:
            revisions = [package.revision for package in packages]

        with ThreadPoolExecutor(
            max_workers=min(self.max_workers, len(packages)),
            thread_name_prefix="annopack-sync",
        ) as pool:
            futures = [
                pool.submit(self.registry.provider.sync_package, package)
                for package in packages
            ]
            results = []
            for package, revision, future in zip(packages, revisions, futures):
                try:
                    future.result()
                except ProviderError as err:
                    logger.warning("Sync of package %s failed: %s", package.id, err)
                    results.append(
                        PackageSyncResult(
                            package_id=package.id,
                            success=False,
                            still_dirty=True,
                            error=str(err),
                        )
                    )
                    continue
                results.append(self._reconcile(package, revision))
        return results

    def _reconcile(self, package: AnnotationPackage, revision: int) -> PackageSyncResult:
        with self.registry.lock:
            clean = package.mark_synced(revision)
        error = None
        try:
            self.registry.provider.save_local_changes(package)
        except ProviderError as err:
            # The remote copy is up to date; only the local cache is stale.
            logger.warning("Package %s synced but local state not saved: %s", package.id, err)
            error = str(err)
        return PackageSyncResult(
            package_id=package.id, success=True, still_dirty=not clean, error=error
        )
