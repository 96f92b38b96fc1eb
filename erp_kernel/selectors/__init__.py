"""Read-only selectors (query side)."""

from erp_kernel.selectors.base import BaseSelector

__all__ = ["BaseSelector"]
