"""
Manipulation Pipeline

The fixed, ordered tuple of stages every request runs through. A stage only
runs when `applies()` says the request asked for it, so an empty query leaves
the pixels untouched.
"""

import logging
from threading import Event
from typing import Mapping, Optional, Sequence, Tuple

from image_proxy.config import DEFAULT_MAX_IMAGE_PIXELS
from image_proxy.errors import ProxyError, TransformError
from image_proxy.raster import RasterBuffer

from .adjustments import Brightness, Contrast, Gamma
from .background import Background
from .base import Manipulator
from .blur import Blur
from .crop import Crop
from .filter import Filter
from .letterbox import Letterbox
from .orientation import Orientation
from .shape import Shape
from .sharpen import Sharpen
from .thumbnail import Thumbnail
from .trim import Trim

logger = logging.getLogger(__name__)


def build_pipeline(max_image_pixels: int = DEFAULT_MAX_IMAGE_PIXELS) -> Tuple[Manipulator, ...]:
    """Stages in execution order."""
    return (
        Trim(),
        Thumbnail(max_image_pixels),
        Orientation(),
        Crop(),
        Letterbox(),
        Shape(),
        Brightness(),
        Contrast(),
        Gamma(),
        Sharpen(),
        Filter(),
        Blur(),
        Background(),
    )


class ManipulationPipeline:
    """Runs the stage tuple against one RasterBuffer."""

    def __init__(self, stages: Sequence[Manipulator] = None, max_image_pixels: int = DEFAULT_MAX_IMAGE_PIXELS):
        self.stages: Tuple[Manipulator, ...] = tuple(stages) if stages is not None else build_pipeline(max_image_pixels)

    def apply(
        self,
        raster: RasterBuffer,
        params: Mapping[str, str],
        cancelled: Optional[Event] = None,
    ) -> RasterBuffer:
        """
        Apply every requested stage in order.

        Args:
            raster: Decoded image, modified in place
            params: Request query parameters
            cancelled: Checked before each stage; once set, no further stage runs

        Returns:
            The same RasterBuffer

        Raises:
            ProxyError: Classified failure from a stage
            TransformError: Unclassified Pillow/numpy failure, or cancelled
        """
        for stage in self.stages:
            if not stage.applies(raster, params):
                continue
            if cancelled is not None and cancelled.is_set():
                raise TransformError(f"Processing cancelled before {stage.name}", stage=stage.name)

            logger.debug(f"[Pipeline] {stage.name}: {raster.width}x{raster.height} {raster.image.mode}")
            try:
                stage.run(raster, params)
            except ProxyError:
                raise
            except (OSError, ValueError, MemoryError) as e:
                logger.warning(f"[Pipeline] Stage {stage.name} failed: {e}")
                raise TransformError(f"Unable to apply {stage.name}: {e}", stage=stage.name)

        return raster

    def __len__(self) -> int:
        return len(self.stages)
