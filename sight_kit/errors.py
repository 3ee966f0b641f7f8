"""
Error taxonomy for the detection pipeline.

Only configuration problems and engine setup are meant to surface to callers;
per-frame problems are logged by the pipeline and turned into an empty result.
"""

from __future__ import annotations


class SightKitError(Exception):
    """Base class for all sight_kit errors."""


class EngineNotReady(SightKitError):
    """The inference engine has no loaded model or allocated interpreter."""


class EngineLoadError(SightKitError, RuntimeError):
    """Model loading or tensor allocation failed."""


class MalformedTensor(SightKitError, ValueError):
    """The raw output tensor has an unexpected shape or dtype."""


class InvalidConfiguration(SightKitError, ValueError):
    """A threshold or limit is out of range."""
