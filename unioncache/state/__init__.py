"""State (the sync watermark)"""
from .watermark import get_watermark, set_watermark

__all__ = ["get_watermark", "set_watermark"]
