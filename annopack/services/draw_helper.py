"""Render package images with their bounding boxes."""

import logging

from PIL import Image, ImageColor, ImageDraw

from annopack.models.annotations import AnnotationImage

logger = logging.getLogger(__name__)

IMAGE_SIZE = (1024, 576)

COLORS = (
    "#E3330E", "#48E10F", "#D40FE1", "#24ECE3", "#EC2470", "#ebd2fc",
    "#9cf103", "#caf957", "#cf6c00", "#81cb00", "#8699e0", "#229df2",
    "#4b5342", "#89c04d", "#560c8a", "#6a2b24", "#49c51e", "#c7e14b",
    "#d6bad9", "#670bd4", "#c2265e", "#6911a7", "#ca7592", "#509591",
    "#5cfa4e", "#18dfa5", "#a4985e", "#038491", "#c17bbb", "#aa512c",
)  # fmt: skip


def get_color_code(index: int) -> tuple[int, int, int]:
    """Get the RGB color of an object class index.

    Raises:
        ValueError: If ``index`` is outside the palette.
    """
    if not 0 <= index < len(COLORS):
        raise ValueError(f"No color for class index {index}")
    return ImageColor.getrgb(COLORS[index])


def blank_canvas() -> Image.Image:
    """White canvas shown in place of an image that cannot be loaded."""
    return Image.new("RGB", IMAGE_SIZE, color="white")


def fit_size(width: int, height: int) -> tuple[int, int]:
    """Shrink ``(width, height)`` to fit IMAGE_SIZE, keeping the aspect ratio."""
    max_width, max_height = IMAGE_SIZE
    scale = min(max_width / width, max_height / height, 1.0)
    return max(1, int(width * scale)), max(1, int(height * scale))


def draw_boxes(image: AnnotationImage) -> Image.Image:
    """Load the asset of ``image``, scale it and draw its bounding boxes.

    Never raises for a broken or missing asset: a blank canvas is returned
    instead so that one bad image does not fail its package.
    """
    if image.path is None:
        return blank_canvas()
    try:
        with Image.open(image.path) as original:
            bitmap = original.convert("RGB")
    except (OSError, ValueError) as err:
        logger.warning("Cannot load image %s: %s", image.path, err)
        return blank_canvas()

    bitmap = bitmap.resize(fit_size(*bitmap.size))
    draw = ImageDraw.Draw(bitmap)
    width, height = bitmap.size
    for ann in image.annotations:
        color = get_color_code(ann.class_id % len(COLORS))
        # Normalized center format to absolute corners
        x_min = (ann.bbox.x - ann.bbox.width / 2) * width
        y_min = (ann.bbox.y - ann.bbox.height / 2) * height
        x_max = (ann.bbox.x + ann.bbox.width / 2) * width
        y_max = (ann.bbox.y + ann.bbox.height / 2) * height
        draw.rectangle((x_min, y_min, x_max, y_max), outline=color, width=2)
    return bitmap
