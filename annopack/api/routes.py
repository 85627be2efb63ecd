"""FastAPI routes for the package API."""

import io
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import FileResponse, Response
from pydantic import BaseModel, Field
from slowapi import Limiter
from slowapi.util import get_remote_address

from annopack.errors import OperationInProgressError, PackageStateError, ProviderError
from annopack.models.annotations import (
    Annotation,
    AnnotationCategory,
    AnnotationConfig,
    AnnotationCreate,
    AnnotationImage,
    AnnotationPackage,
    AnnotationUpdate,
    SelectionBehavior,
)
from annopack.services.download import DownloadOutcome
from annopack.services.draw_helper import draw_boxes
from annopack.services.export_service import ExportService
from annopack.services.selection import SelectionOutcome, SelectionState
from annopack.services.session import AnnotationSession
from annopack.services.sync import SyncReport
from annopack.settings import get_cache_dir, get_rate_limit

router = APIRouter()

_rate_limit = get_rate_limit()
limiter = Limiter(key_func=get_remote_address)


class CategoryRequest(BaseModel):
    category: AnnotationCategory


class TagsRequest(BaseModel):
    tags: list[str] = Field(default_factory=list)


class SyncRequest(BaseModel):
    """Confirmation of the dirty packages shown to the user."""

    confirmed_ids: list[str] = Field(default_factory=list)


class CloseRequest(BaseModel):
    confirm: bool = False


class SelectionView(BaseModel):
    """Current selection and the state of the editing surfaces."""

    state: SelectionState
    package_id: str | None
    image: str | None
    editing_enabled: bool
    busy: bool
    sync_enabled: bool
    user_name: str | None
    tags: list[str]
    images: list[str]
    image_list_visible: bool
    download_visible: bool
    downloading: list[str]


def get_session(request: Request) -> AnnotationSession:
    """Dependency for the session created at startup."""
    return request.app.state.session


SessionDep = Annotated[AnnotationSession, Depends(get_session)]


def _get_package_or_404(session: AnnotationSession, package_id: str) -> AnnotationPackage:
    package = session.get_package(package_id)
    if package is None:
        raise HTTPException(status_code=404, detail="Package not found")
    return package


def _get_image_or_404(
    session: AnnotationSession, package_id: str, filename: str
) -> AnnotationImage:
    package = _get_package_or_404(session, package_id)
    image = package.get_image(filename)
    if image is None:
        raise HTTPException(status_code=404, detail="Image not found")
    return image


def _selection_view(session: AnnotationSession) -> SelectionView:
    selection = session.selection
    workspace = session.workspace
    with session.registry.lock:
        package = selection.selected_package
        image = selection.selected_image
        return SelectionView(
            state=selection.state,
            package_id=package.id if package else None,
            image=image.filename if image else None,
            editing_enabled=workspace.editing_enabled,
            busy=workspace.busy,
            sync_enabled=workspace.sync_enabled,
            user_name=workspace.user_name,
            tags=workspace.tags,
            images=[listed.filename for listed in workspace.image_list.images],
            image_list_visible=workspace.image_list.visible,
            download_visible=workspace.download_visible,
            downloading=sorted(workspace.downloading),
        )


# Health check endpoint
@router.get("/health")
def health_check() -> dict[str, str]:
    """Health check endpoint for API availability."""
    return {"status": "healthy", "api": "ready"}


# Config endpoints
@router.get("/config", response_model=AnnotationConfig)
def get_config(session: SessionDep) -> AnnotationConfig:
    """Get the annotation config of the session."""
    return session.config


@router.put("/config", response_model=AnnotationConfig)
def save_config(config: AnnotationConfig, session: SessionDep) -> AnnotationConfig:
    """Save the annotation config."""
    try:
        session.save_config(config)
    except ProviderError as e:
        raise HTTPException(status_code=502, detail=str(e)) from e
    return config


# Package endpoints
@router.post("/category", response_model=list[AnnotationPackage])
def select_category(request: CategoryRequest, session: SessionDep) -> list[AnnotationPackage]:
    """Load the packages of a category, replacing the current list."""
    try:
        return session.select_category(request.category)
    except OperationInProgressError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    except ProviderError as e:
        raise HTTPException(status_code=502, detail=str(e)) from e


@router.get("/packages", response_model=list[AnnotationPackage])
def list_packages(
    session: SessionDep,
    dirty: Annotated[bool, Query(description="Only packages with unsynced edits")] = False,
) -> list[AnnotationPackage]:
    """List the packages of the current category."""
    if dirty:
        return session.dirty_packages()
    return session.registry.all_packages()


@router.get("/packages/{package_id}", response_model=AnnotationPackage)
def get_package(package_id: str, session: SessionDep) -> AnnotationPackage:
    """Get a single package."""
    return _get_package_or_404(session, package_id)


@router.post("/packages/{package_id}/select", response_model=SelectionView)
def select_package(
    package_id: str,
    session: SessionDep,
    behavior: Annotated[SelectionBehavior, Query()] = SelectionBehavior.ANY,
) -> SelectionView:
    """Make a package the active package."""
    package = _get_package_or_404(session, package_id)
    outcome = session.select_package(package, behavior)
    if outcome is SelectionOutcome.REJECTED:
        raise HTTPException(status_code=409, detail="A package switch is in progress")
    return _selection_view(session)


@router.get("/selection", response_model=SelectionView)
def get_selection(session: SessionDep) -> SelectionView:
    """Get the current selection."""
    return _selection_view(session)


@router.post("/selection/images/{filename}", response_model=SelectionView)
def select_image(filename: str, session: SessionDep) -> SelectionView:
    """Select an image of the active package."""
    package = session.selection.selected_package
    if package is None:
        raise HTTPException(status_code=409, detail="No package selected")
    image = package.get_image(filename)
    if image is None:
        raise HTTPException(status_code=404, detail="Image not found")
    session.select_image(image)
    return _selection_view(session)


@router.delete("/selection", response_model=SelectionView)
def clear_selection(session: SessionDep) -> SelectionView:
    """Clear the selection."""
    session.select_package(None)
    return _selection_view(session)


@router.post("/packages/{package_id}/download")
@limiter.limit(_rate_limit)
def download_package(
    request: Request, package_id: str, session: SessionDep
) -> dict[str, str]:
    """Download a remote package and show it if it is still selected."""
    package = _get_package_or_404(session, package_id)
    try:
        outcome = session.download(package)
    except ProviderError as e:
        raise HTTPException(status_code=502, detail=str(e)) from e
    if outcome is DownloadOutcome.IN_PROGRESS:
        raise HTTPException(status_code=409, detail="Download already in progress")
    return {"outcome": outcome.value}


@router.put("/packages/{package_id}/tags", response_model=AnnotationPackage)
def update_tags(
    package_id: str, request: TagsRequest, session: SessionDep
) -> AnnotationPackage:
    """Replace the tags of a package."""
    package = _get_package_or_404(session, package_id)
    try:
        session.update_tags(package, request.tags)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except ProviderError as e:
        raise HTTPException(status_code=502, detail=str(e)) from e
    return package


# Image endpoints
@router.get("/packages/{package_id}/images/{filename}/render")
def render_image(package_id: str, filename: str, session: SessionDep) -> Response:
    """Render an image with its bounding boxes as PNG."""
    image = _get_image_or_404(session, package_id, filename)
    bitmap = draw_boxes(image)
    buffer = io.BytesIO()
    bitmap.save(buffer, format="PNG")
    return Response(content=buffer.getvalue(), media_type="image/png")


@router.get(
    "/packages/{package_id}/images/{filename}/annotations",
    response_model=list[Annotation],
)
def get_annotations(package_id: str, filename: str, session: SessionDep) -> list[Annotation]:
    """Get all annotations for an image."""
    return _get_image_or_404(session, package_id, filename).annotations


@router.post(
    "/packages/{package_id}/images/{filename}/annotations", response_model=Annotation
)
def add_annotation(
    package_id: str,
    filename: str,
    annotation: AnnotationCreate,
    session: SessionDep,
) -> Annotation:
    """Add a new annotation to an image."""
    image = _get_image_or_404(session, package_id, filename)
    try:
        return session.edits.add_annotation(image, annotation)
    except PackageStateError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e


@router.put(
    "/packages/{package_id}/images/{filename}/annotations/{annotation_id}",
    response_model=Annotation,
)
def update_annotation(
    package_id: str,
    filename: str,
    annotation_id: str,
    update: AnnotationUpdate,
    session: SessionDep,
) -> Annotation:
    """Update an existing annotation."""
    image = _get_image_or_404(session, package_id, filename)
    try:
        result = session.edits.update_annotation(image, annotation_id, update)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    if result is None:
        raise HTTPException(status_code=404, detail="Annotation not found")
    return result


@router.delete("/packages/{package_id}/images/{filename}/annotations/{annotation_id}")
def delete_annotation(
    package_id: str, filename: str, annotation_id: str, session: SessionDep
) -> dict[str, bool]:
    """Delete an annotation."""
    image = _get_image_or_404(session, package_id, filename)
    if not session.edits.delete_annotation(image, annotation_id):
        raise HTTPException(status_code=404, detail="Annotation not found")
    return {"success": True}


@router.delete("/packages/{package_id}/images/{filename}/annotations")
def clear_annotations(
    package_id: str, filename: str, session: SessionDep
) -> dict[str, int]:
    """Clear all annotations for an image."""
    image = _get_image_or_404(session, package_id, filename)
    return {"deleted": session.edits.clear_annotations(image)}


@router.post(
    "/packages/{package_id}/images/{filename}/annotations/copy-from/{source_filename}"
)
def copy_annotations(
    package_id: str, filename: str, source_filename: str, session: SessionDep
) -> dict[str, int]:
    """Copy annotations from another image of the same package."""
    target = _get_image_or_404(session, package_id, filename)
    source = _get_image_or_404(session, package_id, source_filename)
    return {"copied": session.edits.copy_annotations(source, target)}


# Sync endpoints
@router.get("/sync/pending", response_model=list[str])
def get_pending_sync(session: SessionDep) -> list[str]:
    """List the IDs of packages that a sync would push."""
    return [package.id for package in session.dirty_packages()]


@router.post("/sync", response_model=SyncReport)
@limiter.limit(_rate_limit)
def sync_packages(
    request: Request, confirmation: SyncRequest, session: SessionDep
) -> SyncReport:
    """Sync dirty packages.

    The sync only runs if ``confirmed_ids`` names exactly the packages that
    are dirty when the request arrives.
    """
    confirmed = set(confirmation.confirmed_ids)
    return session.sync(lambda packages: {p.id for p in packages} == confirmed)


# Export endpoints
@router.post("/export/yolo")
def export_yolo(
    session: SessionDep,
    train_split: Annotated[float, Query(gt=0, le=1)] = 0.8,
) -> FileResponse:
    """Export the downloaded packages in YOLO format as a ZIP file."""
    export_service = ExportService(session.registry, session.config)
    zip_path = get_cache_dir() / "yolo_export.zip"
    export_service.export_yolo_zip(zip_path, train_split)
    return FileResponse(
        zip_path,
        media_type="application/zip",
        filename="yolo_dataset.zip",
    )


# Session endpoints
@router.post("/session/close")
def close_session(request: CloseRequest, session: SessionDep) -> dict[str, object]:
    """Check whether the session may close.

    Unsynced packages veto the close unless ``confirm`` is set.
    """
    dirty = [package.id for package in session.dirty_packages()]
    closed = session.request_close(lambda packages: request.confirm)
    return {"closed": closed, "dirty": dirty}
