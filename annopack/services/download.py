"""Download-then-activate workflow for a single package."""

import logging
from enum import Enum

from annopack.errors import OperationInProgressError, ProviderError
from annopack.models.annotations import AnnotationPackage, SelectionBehavior
from annopack.services.registry import PackageRegistry
from annopack.services.selection import SelectionController

logger = logging.getLogger(__name__)


class DownloadOutcome(str, Enum):
    """Result of a download request."""

    DOWNLOADED = "downloaded"
    ALREADY_LOCAL = "already_local"
    IN_PROGRESS = "in_progress"


class DownloadOrchestrator:
    """Fetch the assets of a remote package and render it if still selected."""

    def __init__(self, registry: PackageRegistry, selection: SelectionController) -> None:
        self.registry = registry
        self.selection = selection

    def download(self, package: AnnotationPackage) -> DownloadOutcome:
        """Download ``package`` and refresh the selection.

        The selection only changes if ``package`` is still the selected
        package once the download has finished.

        Raises:
            ProviderError: If the download fails. The package stays remote.
        """
        if package.available_locally:
            logger.info("Package %s is already available locally", package.id)
            return DownloadOutcome.ALREADY_LOCAL

        workspace = self.selection.workspace
        try:
            with self.registry.guard.claim("download", package.id):
                with self.registry.lock:
                    # Another download may have finished before our claim
                    if package.available_locally:
                        logger.info("Package %s is already available locally", package.id)
                        return DownloadOutcome.ALREADY_LOCAL
                    workspace.downloading.add(package.id)
                try:
                    images = self.registry.provider.download_package(package)
                except ProviderError as err:
                    logger.warning("Download of package %s failed: %s", package.id, err)
                    raise
                finally:
                    with self.registry.lock:
                        workspace.downloading.discard(package.id)

                with self.registry.lock:
                    package.attach_images(images)
        except OperationInProgressError as err:
            logger.info("%s", err)
            return DownloadOutcome.IN_PROGRESS

        logger.info("Package %s is now available locally", package.id)
        self.selection.select(package, SelectionBehavior.REFRESH_ONLY)
        return DownloadOutcome.DOWNLOADED
