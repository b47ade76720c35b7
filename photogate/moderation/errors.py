"""Exception hierarchy for the moderation pipeline.

None of these cross the gate's public boundary except ``MissingImageError``:
``ImageModerationGate.evaluate()`` turns every other one into an unsafe verdict.
"""

from __future__ import annotations


class ModerationError(Exception):
    """Base class for moderation pipeline failures."""


class DecodeError(ModerationError):
    """Input bytes are not a decodable raster image (or decode to an unusable layout)."""


class ClassificationError(ModerationError):
    """Inference failed: bad buffer shape, runtime error or malformed model output."""


class ModelLoadError(ModerationError):
    """The classifier asset could not be fetched, opened or validated at startup."""


class MissingImageError(ModerationError, ValueError):
    """The gate was called with no image at all.

    Rejecting empty uploads is the upload layer's job; reaching the gate with
    ``None`` is a caller bug, not a content verdict.
    """
