"""Helpers for turning package IDs and image names into file paths."""

from pathlib import Path

IMAGE_EXTENSIONS = frozenset({".jpg", ".jpeg", ".png", ".webp", ".bmp"})


def is_image_file(path: Path) -> bool:
    """Whether ``path`` names an image asset of a package."""
    return path.suffix.lower() in IMAGE_EXTENSIONS


def package_dir(root: Path, package_id: str) -> Path:
    """Get the directory of ``package_id`` directly below ``root``.

    Package IDs come from remote metadata and API requests, so they are
    never trusted as path components.

    Raises:
        ValueError: If the ID is empty, names a nested path or leaves ``root``.

    Example:
        >>> package_dir(Path("/data/packages"), "pkg-1")
        PosixPath('/data/packages/pkg-1')
    """
    if not package_id or package_id in (".", "..") or Path(package_id).name != package_id:
        raise ValueError(f"Invalid package ID: {package_id!r}")
    path = root / package_id
    if not path.resolve().is_relative_to(root.resolve()):
        raise ValueError(f"Invalid package ID: {package_id!r}")
    return path


def export_name(package_id: str, filename: str) -> str:
    """Name of an exported image, unique across packages.

    Images of different packages often share names like ``0001.png``, so
    the package ID becomes a prefix. Characters other than letters, digits,
    ``-`` and ``_`` in the ID are replaced and any directory part of the
    filename is dropped.

    Example:
        >>> export_name("cam #7", "frames/0001.png")
        'cam__7_0001.png'
    """
    prefix = "".join(c if c.isalnum() or c in "-_" else "_" for c in package_id)
    return f"{prefix}_{Path(filename).name}"
