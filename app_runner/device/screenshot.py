"""
Screenshot Utilities
====================

Image helpers shared by providers:
- Verifying that a captured screenshot is a readable image
- Rendering placeholder screenshots for the mock provider
"""

from pathlib import Path
from typing import Tuple, Union

from PIL import Image, ImageDraw, UnidentifiedImageError

from app_runner.errors import DeviceError
from app_runner.utils.logger import get_logger

logger = get_logger(__name__)


def verify_image(path: Union[str, Path]) -> Tuple[int, int]:
    """
    Check that ``path`` holds a readable image.

    Returns:
        (width, height) of the image.

    Raises:
        DeviceError: If the file is missing, empty or not an image.
    """
    path = Path(path)
    if not path.is_file() or path.stat().st_size == 0:
        raise DeviceError(f"Screenshot was not written: {path}")

    try:
        with Image.open(path) as image:
            image.verify()
        # verify() leaves the image unusable; reopen for the size
        with Image.open(path) as image:
            size = image.size
    except (UnidentifiedImageError, OSError) as e:
        raise DeviceError(f"Screenshot appears corrupted: {path}: {e}") from e

    logger.debug(
        "Screenshot verified",
        path=str(path),
        size=f"{size[0]}x{size[1]}",
        size_kb=path.stat().st_size // 1024,
    )
    return size


def render_placeholder(
    path: Union[str, Path],
    text: str,
    size: Tuple[int, int] = (1280, 720),
) -> Path:
    """
    Write a PNG with ``text`` drawn on a dark background.

    Args:
        path: Destination file.
        text: Caption to draw.
        size: Image dimensions (width, height).

    Returns:
        The written path.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    image = Image.new("RGB", size, color=(32, 32, 40))
    draw = ImageDraw.Draw(image)
    draw.rectangle([(8, 8), (size[0] - 9, size[1] - 9)], outline=(90, 200, 120), width=3)
    draw.text((24, 24), text, fill=(230, 230, 230))

    image.save(path, format="PNG")
    return path
