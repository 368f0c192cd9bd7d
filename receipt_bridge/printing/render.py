"""
Image rendering utilities for Receipt Bridge.

Loads the optional store logo and prepares it for ESC/POS raster printing:
grayscale, scaled down to the printable width, flattened onto white.
"""

from __future__ import annotations

import logging
import os
from typing import Optional

from PIL import Image

logger = logging.getLogger(__name__)

# 58mm printers render 384 dots per line; 80mm printers 512/576.
DEFAULT_LOGO_MAX_WIDTH = int(os.environ.get("RECEIPTBRIDGE_LOGO_MAX_WIDTH", "384"))


def prepare_logo(img: Image.Image, max_width: int = DEFAULT_LOGO_MAX_WIDTH) -> Image.Image:
    """
    Flatten transparency onto white, convert to grayscale and scale to max_width.
    """
    if img.mode in ("RGBA", "LA") or (img.mode == "P" and "transparency" in img.info):
        rgba = img.convert("RGBA")
        bg = Image.new("RGBA", rgba.size, (255, 255, 255, 255))
        bg.alpha_composite(rgba)
        img = bg
    img = img.convert("L")
    if max_width > 0 and img.width > max_width:
        ratio = max_width / float(img.width)
        img = img.resize((max_width, max(1, int(img.height * ratio))), Image.Resampling.LANCZOS)
    return img


def load_logo(path: Optional[str], max_width: int = DEFAULT_LOGO_MAX_WIDTH) -> Optional[Image.Image]:
    """
    Load the logo at path, or return None when no logo is configured.

    Raises OSError when the file exists but cannot be decoded; that aborts the
    print attempt like any other device-side failure.
    """
    if not path:
        return None
    with Image.open(path) as src:
        src.load()
        logo = prepare_logo(src, max_width)
    logger.debug("Loaded logo %s (%dx%d)", path, logo.width, logo.height)
    return logo


__all__ = ["DEFAULT_LOGO_MAX_WIDTH", "load_logo", "prepare_logo"]
