"""
Inference engines for sight_kit.

Kept in a separate package so pre/post-processing can be used without an
inference runtime installed.
"""

from __future__ import annotations

__all__ = []
