"""ConceptCraft wizard backend package."""

from .config import get_settings

__all__ = ["get_settings"]
