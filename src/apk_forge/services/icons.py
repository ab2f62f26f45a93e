"""Launcher icon rendering."""

import logging
from pathlib import Path
from typing import Dict, List

from PIL import Image, UnidentifiedImageError

from apk_forge.core.errors import InvalidImage

logger = logging.getLogger(__name__)

# Android launcher icon sizes in px per density bucket
LAUNCHER_DENSITIES: Dict[str, int] = {
    "mipmap-mdpi": 48,
    "mipmap-hdpi": 72,
    "mipmap-xhdpi": 96,
    "mipmap-xxhdpi": 144,
    "mipmap-xxxhdpi": 192,
}
ICON_FILENAME = "ic_launcher.png"


def render_launcher_icons(source: Path, res_dir: Path) -> List[Path]:
    """Write a square PNG launcher icon into every density bucket under ``res_dir``.

    ``source`` may be any format Pillow can decode; the output is always PNG
    since aapt rejects mislabelled files. Non-square images are centered on
    a transparent canvas.
    """
    try:
        with Image.open(source) as img:
            img.load()
            icon = img.convert("RGBA")
    except (UnidentifiedImageError, OSError) as e:
        raise InvalidImage(f"Icon is not a decodable image: {e}") from e

    side = max(icon.width, icon.height)
    if icon.width != icon.height:
        canvas = Image.new("RGBA", (side, side), (0, 0, 0, 0))
        canvas.paste(icon, ((side - icon.width) // 2, (side - icon.height) // 2))
        icon = canvas

    written = []
    for bucket, size in LAUNCHER_DENSITIES.items():
        out_dir = res_dir / bucket
        out_dir.mkdir(parents=True, exist_ok=True)
        out_path = out_dir / ICON_FILENAME
        icon.resize((size, size), Image.LANCZOS).save(out_path, format="PNG")
        written.append(out_path)

    logger.info(f"Rendered launcher icon at {len(written)} densities from {side}x{side} source")
    return written
