"""Service for exporting downloaded packages to training formats."""

import shutil
import tempfile
import zipfile
from pathlib import Path

from annopack.models.annotations import AnnotationConfig, AnnotationImage
from annopack.services.registry import PackageRegistry
from annopack.utils import export_name


class ExportService:
    """Handles exporting locally available packages to YOLO format."""

    def __init__(self, registry: PackageRegistry, config: AnnotationConfig) -> None:
        """Initialize the export service.

        Args:
            registry: Registry whose local packages are exported.
            config: Config providing the class names.
        """
        self.registry = registry
        self.config = config

    def _collect_images(self) -> list[tuple[str, AnnotationImage]]:
        """Get (export name, image) pairs of every downloaded image."""
        collected = []
        for package in self.registry.all_packages():
            if not package.available_locally:
                continue
            for image in package.images:
                if image.path is None or not image.path.exists():
                    continue
                collected.append((export_name(package.id, image.filename), image))
        return collected

    def export_yolo(self, output_dir: Path, train_split: float = 0.8) -> Path:
        """Export annotations in YOLO format.

        Creates the standard YOLO directory structure:
        output_dir/
        ├── data.yaml
        ├── train/
        │   ├── images/
        │   └── labels/
        └── val/
            ├── images/
            └── labels/

        Args:
            output_dir: Directory to export to.
            train_split: Fraction of data for training (0-1).

        Returns:
            Path to the created data.yaml file.
        """
        if not 0 < train_split <= 1:
            raise ValueError(f"train_split must be in (0, 1], got {train_split}")
        output_dir.mkdir(parents=True, exist_ok=True)

        train_images = output_dir / "train" / "images"
        train_labels = output_dir / "train" / "labels"
        val_images = output_dir / "val" / "images"
        val_labels = output_dir / "val" / "labels"

        for d in [train_images, train_labels, val_images, val_labels]:
            d.mkdir(parents=True, exist_ok=True)

        with self.registry.lock:
            images = self._collect_images()
            split_idx = int(len(images) * train_split)
            for name, image in images[:split_idx]:
                self._export_yolo_image(name, image, train_images, train_labels)
            for name, image in images[split_idx:]:
                self._export_yolo_image(name, image, val_images, val_labels)

        data_yaml = output_dir / "data.yaml"
        data_yaml.write_text(self._create_yolo_yaml(output_dir))
        return data_yaml

    def _export_yolo_image(
        self,
        name: str,
        image: AnnotationImage,
        images_dir: Path,
        labels_dir: Path,
    ) -> None:
        """Export a single image and its annotations in YOLO format."""
        shutil.copy(image.path, images_dir / name)

        lines = []
        for ann in image.annotations:
            # YOLO format: class_id center_x center_y width height (all normalized)
            line = f"{ann.class_id} {ann.bbox.x:.6f} {ann.bbox.y:.6f} {ann.bbox.width:.6f} {ann.bbox.height:.6f}"
            lines.append(line)

        label_path = labels_dir / f"{Path(name).stem}.txt"
        label_path.write_text("\n".join(lines))

    def _create_yolo_yaml(self, output_dir: Path) -> str:
        """Create YOLO data.yaml content."""
        classes = sorted(self.config.object_classes, key=lambda c: c.id)
        lines = [
            f"path: {output_dir.absolute()}",
            "train: train/images",
            "val: val/images",
            "",
            f"nc: {len(classes)}",
            "names:",
        ]
        for object_class in classes:
            lines.append(f"  {object_class.id}: {object_class.name}")

        return "\n".join(lines) + "\n"

    def export_yolo_zip(self, zip_path: Path, train_split: float = 0.8) -> Path:
        """Export annotations as a ZIP file for easy download.

        Args:
            zip_path: Destination of the archive.
            train_split: Fraction of data for training (0-1).

        Returns:
            Path to the created ZIP file.
        """
        with tempfile.TemporaryDirectory() as temp_dir:
            export_dir = Path(temp_dir) / "yolo_dataset"
            self.export_yolo(export_dir, train_split)

            zip_path.parent.mkdir(parents=True, exist_ok=True)
            with zipfile.ZipFile(zip_path, "w", zipfile.ZIP_DEFLATED) as zipf:
                for file_path in export_dir.rglob("*"):
                    if file_path.is_file():
                        arcname = file_path.relative_to(export_dir)
                        zipf.write(file_path, arcname)

        return zip_path
