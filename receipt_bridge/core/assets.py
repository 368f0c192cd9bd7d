"""
Asset helpers for Receipt Bridge.

Resolves the optional store logo printed above each receipt. The logo is
looked up in the media directory as logo.<ext>, unless a config snapshot
names an explicit path.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import List, Optional

from receipt_bridge.core.config import get_media_path

IMAGE_EXTS: List[str] = [".png", ".jpg", ".jpeg", ".gif", ".bmp"]
LOGO_BASENAME = "logo"


def resolve_logo_path(explicit: Optional[str] = None, media_dir: Optional[str] = None) -> Optional[str]:
    """
    Return the logo file to print, or None when there is none.

    An explicit path wins when it exists; otherwise logo.<ext> in the media
    directory is tried for each supported extension in order.
    """
    if explicit:
        return explicit if os.path.isfile(explicit) else None
    base = Path(media_dir or get_media_path())
    for ext in IMAGE_EXTS:
        candidate = base / f"{LOGO_BASENAME}{ext}"
        if candidate.is_file():
            return str(candidate)
    return None


__all__ = ["IMAGE_EXTS", "LOGO_BASENAME", "resolve_logo_path"]
