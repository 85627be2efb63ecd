"""Services for annopack."""

from annopack.services.download import DownloadOrchestrator, DownloadOutcome
from annopack.services.editing import EditService
from annopack.services.events import EventBus
from annopack.services.export_service import ExportService
from annopack.services.filesystem_provider import FileSystemPackageProvider
from annopack.services.guards import OperationGuard
from annopack.services.provider import AnnotationPackageProvider
from annopack.services.registry import PackageRegistry
from annopack.services.selection import (
    SelectionController,
    SelectionOutcome,
    SelectionState,
)
from annopack.services.session import AnnotationSession, load_annotation_config
from annopack.services.sync import SyncOrchestrator, SyncReport, SyncStatus
from annopack.services.workspace import Workspace

__all__ = [
    "AnnotationPackageProvider",
    "AnnotationSession",
    "DownloadOrchestrator",
    "DownloadOutcome",
    "EditService",
    "EventBus",
    "ExportService",
    "FileSystemPackageProvider",
    "OperationGuard",
    "PackageRegistry",
    "SelectionController",
    "SelectionOutcome",
    "SelectionState",
    "SyncOrchestrator",
    "SyncReport",
    "SyncStatus",
    "Workspace",
    "load_annotation_config",
]
