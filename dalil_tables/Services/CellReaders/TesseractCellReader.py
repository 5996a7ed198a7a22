import asyncio
import re

import arabic_reshaper
import cv2
import numpy as np
import pytesseract
from bidi.algorithm import get_display
from PIL import Image

from dalil_tables.Common.Constants import TESSERACT_LANG, TESSERACT_CONFIG, ARABIC_DISPLAY_SHAPING
from dalil_tables.Exceptions.custom_exceptions import (
    TesseractException, handle_cell_reading, ExceptionSeverity
)
from dalil_tables.Models.TableModels import CellReading, RasterImage
from dalil_tables.Services.CellReaders.BaseCellReader import BaseCellReader

ARABIC_CHARS = re.compile(r"[\u0600-\u06FF\u0750-\u077F\uFB50-\uFDFF\uFE70-\uFEFF]")


class TesseractCellReader(BaseCellReader):
    """Cell reader backed by Tesseract on an Otsu-binarised crop"""

    def __init__(self, lang: str = TESSERACT_LANG, config: str = TESSERACT_CONFIG,
                 shape_arabic: bool = ARABIC_DISPLAY_SHAPING):
        super().__init__()
        self.lang = lang
        self.config = config
        self.shape_arabic = shape_arabic

    async def read_cell_text(self, region: RasterImage) -> CellReading:
        if region is None or region.is_empty:
            return CellReading("", 0.0)
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.recognize, region)

    def _preprocess(self, region: RasterImage) -> Image.Image:
        pixels = region.pixels
        if pixels.shape[2] == 1:
            gray = pixels[:, :, 0]
        else:
            gray = cv2.cvtColor(np.ascontiguousarray(pixels[:, :, :3]), cv2.COLOR_RGB2GRAY)
        _, thresh = cv2.threshold(gray, 0, 255, cv2.THRESH_BINARY + cv2.THRESH_OTSU)
        return Image.fromarray(thresh)

    @handle_cell_reading(severity=ExceptionSeverity.MEDIUM, retryable=False)
    def recognize(self, region: RasterImage) -> CellReading:
        """Run Tesseract synchronously and average the word confidences"""
        image = self._preprocess(region)
        try:
            ocr_data = pytesseract.image_to_data(
                image, lang=self.lang, config=self.config, output_type=pytesseract.Output.DICT
            )
        except (pytesseract.TesseractError, pytesseract.TesseractNotFoundError) as e:
            raise TesseractException(details={"error": str(e)})

        words, confidences = [], []
        for text, conf in zip(ocr_data.get("text", []), ocr_data.get("conf", [])):
            text = str(text).strip()
            if not text:
                continue
            words.append(text)
            conf = float(conf)
            if conf >= 0:
                confidences.append(conf / 100.0)

        text = self.clean_text(" ".join(words))
        if not text:
            return CellReading("", 0.0)
        confidence = sum(confidences) / len(confidences) if confidences else None
        return CellReading(text, confidence)

    def clean_text(self, text: str) -> str:
        """Collapse whitespace; optionally reshape Arabic for display"""
        text = " ".join(str(text).split())
        if not text or not self.shape_arabic or not ARABIC_CHARS.search(text):
            return text
        try:
            return get_display(arabic_reshaper.reshape(text))
        except Exception as e:
            self.logger.warning(f"Arabic text processing failed: {e}")
            return text
