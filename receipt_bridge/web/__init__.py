"""
Web module for Receipt Bridge.

Exposes blueprints for:
- JSON API used by the POS: api_bp
- Health endpoint: health_bp
"""

from .api import api_bp
from .health import health_bp

__all__ = ["api_bp", "health_bp"]
