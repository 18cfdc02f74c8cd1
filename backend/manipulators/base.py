"""
Manipulator base class

A manipulator is one stage of the pipeline. Instances hold no per-request
state, so a single pipeline is built at startup and shared by all requests.
"""

from abc import ABC, abstractmethod
from typing import Mapping

from image_proxy.raster import RasterBuffer


class Manipulator(ABC):
    """One stage of the manipulation pipeline."""

    name: str = "manipulator"

    def applies(self, raster: RasterBuffer, params: Mapping[str, str]) -> bool:
        """Whether the request asks for this stage. Defaults to 'own key present'."""
        return self.name in params

    @abstractmethod
    def run(self, raster: RasterBuffer, params: Mapping[str, str]) -> None:
        """Transform `raster` in place."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"
