import io
import os
from typing import List

import fitz  # PyMuPDF
import numpy as np
from PIL import Image, ImageSequence, UnidentifiedImageError

from dalil_tables.Common.Constants import PDF_RENDER_DPI
from dalil_tables.Logger.table_logger import get_standard_logger
from dalil_tables.Models.TableModels import RasterImage
from dalil_tables.Exceptions.custom_exceptions import (
    ImageDecodingException, handle_image_processing, log_method_entry_exit, ExceptionSeverity
)


class ImageLoaderService:
    """Decodes uploaded images and PDF documents into page rasters"""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super(ImageLoaderService, cls).__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        if not self._initialized:
            self.logger = get_standard_logger("ImageLoaderService")
            self._initialized = True

    @log_method_entry_exit
    @handle_image_processing(severity=ExceptionSeverity.HIGH)
    def load_pages(self, file_name: str, content: bytes, dpi: int = PDF_RENDER_DPI) -> List[RasterImage]:
        """Return one RasterImage per page, in page order"""
        extension = os.path.splitext(file_name or "")[1].lower()
        if extension == ".pdf" or content[:4] == b"%PDF":
            return self.render_pdf(file_name, content, dpi)
        return self.decode_image(file_name, content)

    def render_pdf(self, file_name: str, content: bytes, dpi: int = PDF_RENDER_DPI) -> List[RasterImage]:
        pages = []
        try:
            with fitz.open(stream=content, filetype="pdf") as doc:
                for page in doc:
                    pix = page.get_pixmap(dpi=dpi, alpha=False)
                    pixels = np.frombuffer(pix.samples, dtype=np.uint8).reshape(pix.height, pix.width, pix.n)
                    pages.append(RasterImage.from_array(pixels))
        except (RuntimeError, ValueError) as e:
            raise ImageDecodingException(file_name, details={"error": str(e)})
        self.logger.info(f"Rendered {len(pages)} PDF pages from {file_name} at {dpi} dpi")
        return pages

    def decode_image(self, file_name: str, content: bytes) -> List[RasterImage]:
        """Decode every frame of an image file (multi-page TIFF yields several pages)"""
        try:
            with Image.open(io.BytesIO(content)) as img:
                pages = [RasterImage.from_pil(frame.copy()) for frame in ImageSequence.Iterator(img)]
        except (UnidentifiedImageError, OSError, ValueError) as e:
            raise ImageDecodingException(file_name, details={"error": str(e)})
        self.logger.info(f"Decoded {len(pages)} image frames from {file_name}")
        return pages
