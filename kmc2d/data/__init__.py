"""Physical constants and unit conventions."""

from .physical_constants import PhysicalConstants, get_physical_constants

__all__ = ["PhysicalConstants", "get_physical_constants"]
