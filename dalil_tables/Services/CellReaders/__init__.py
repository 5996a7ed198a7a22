from dalil_tables.Services.CellReaders.BaseCellReader import BaseCellReader, coerce_reading
from dalil_tables.Services.CellReaders.TesseractCellReader import TesseractCellReader

__all__ = [
    'BaseCellReader',
    'coerce_reading',
    'TesseractCellReader'
]
