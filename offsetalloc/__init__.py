"""Constant-time offset allocator with floating-point size-class bins."""

__version__ = "0.1.0"
__all__ = ["allocator", "smallfloat"]