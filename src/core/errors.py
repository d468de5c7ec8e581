"""
Errors raised across the compositor and export pipeline.
"""


class CompositorError(Exception):
    """Base class for pipeline errors."""


class ResourceLoadFailure(CompositorError):
    """A media handle could not be loaded (timeout or decode error). Non-fatal."""

    def __init__(self, item_id: str, reason: str):
        super().__init__(f"Resource for item {item_id} unavailable: {reason}")
        self.item_id = item_id
        self.reason = reason


class SetupFailure(CompositorError):
    """Export cannot start: no render surface or no encode capability."""


class FrameRenderFailure(CompositorError):
    """A single layer failed to draw within one frame."""

    def __init__(self, item_id: str, time: float, cause: Exception):
        super().__init__(f"Layer {item_id} failed at {time:.3f}s: {cause}")
        self.item_id = item_id
        self.time = time
        self.cause = cause


class ExportCancelled(CompositorError):
    """Raised internally to unwind an export after the cancel flag was set."""


class InvalidItem(CompositorError, ValueError):
    """A timeline item violates a creation-time invariant."""


class TrackTypeMismatch(InvalidItem):
    """A media item was placed on a track of the wrong type."""
