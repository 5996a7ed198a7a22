from abc import ABC, abstractmethod
from typing import Any, Awaitable, Union

from dalil_tables.Logger.table_logger import get_standard_logger
from dalil_tables.Models.TableModels import CellReading, RasterImage


class BaseCellReader(ABC):
    """Base class for the text readers the pipeline asks to read one cell crop.

    Any object exposing ``read_cell_text(region)`` is accepted by the pipeline;
    subclassing this gives the logger and result normalisation for free.
    """

    def __init__(self):
        self.logger = get_standard_logger(self.__class__.__name__)

    @abstractmethod
    def read_cell_text(self, region: RasterImage) -> Union[CellReading, Awaitable[CellReading]]:
        """Read the text of a cropped cell.

        Args:
            region: Cropped cell raster (borders already trimmed)

        Returns:
            CellReading, or an awaitable resolving to one
        """
        pass


def coerce_reading(result: Any) -> CellReading:
    """Normalise what a reader returned into a CellReading"""
    if isinstance(result, CellReading):
        return result
    if result is None:
        return CellReading("", 0.0)
    if isinstance(result, str):
        return CellReading(result, None)
    if isinstance(result, dict):
        return CellReading(str(result.get("text", "") or ""), result.get("confidence"))
    if isinstance(result, (tuple, list)) and len(result) == 2:
        return CellReading(str(result[0] or ""), result[1])
    raise TypeError(f"Unsupported cell reader result: {type(result).__name__}")
