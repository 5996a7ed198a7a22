import io

import fitz
import pytest
from PIL import Image

from dalil_tables.Common.Constants import MAX_UPLOAD_SIZE_BYTES
from dalil_tables.Exceptions.custom_exceptions import (
    EmptyFileException, FileTooLargeException, InvalidFileTypeException, ImageDecodingException
)
from dalil_tables.Services.FileValidationService import FileValidationService
from dalil_tables.Services.ImageLoaderService import ImageLoaderService


def png_bytes(width=40, height=30, color=(255, 255, 255)):
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buffer, format="PNG")
    return buffer.getvalue()


def pdf_bytes(pages=2):
    doc = fitz.open()
    for _ in range(pages):
        doc.new_page(width=100, height=80)
    data = doc.tobytes()
    doc.close()
    return data


@pytest.fixture
def validator():
    return FileValidationService()


@pytest.fixture
def loader():
    return ImageLoaderService()


@pytest.mark.unit
class TestFileValidation:

    def test_accepts_supported_extension(self, validator):
        assert validator.validate_upload("page.PNG", png_bytes(), "image/png") == ".png"

    def test_detects_type_from_content(self, validator):
        assert validator.validate_upload("scan", png_bytes()) == ".png"
        assert validator.validate_upload("document", b"%PDF-1.7 ...") == ".pdf"
        assert validator.validate_upload("photo", b"RIFF\x00\x00\x00\x00WEBPVP8 ") == ".webp"

    def test_rejects_empty_file(self, validator):
        with pytest.raises(EmptyFileException) as exc:
            validator.validate_upload("empty.png", b"")

        assert exc.value.status_code == 400

    def test_rejects_oversized_file(self, validator):
        with pytest.raises(FileTooLargeException):
            validator.validate_upload("big.png", b"\x00" * (MAX_UPLOAD_SIZE_BYTES + 1))

    def test_rejects_unknown_type(self, validator):
        with pytest.raises(InvalidFileTypeException) as exc:
            validator.validate_upload("notes.txt", b"just some text", "text/plain")

        assert exc.value.status_code == 400
        assert "txt" in exc.value.message


@pytest.mark.unit
class TestImageLoading:

    def test_png_decodes_to_one_rgba_page(self, loader):
        pages = loader.load_pages("page.png", png_bytes(40, 30, (0, 0, 0)))

        assert len(pages) == 1
        assert (pages[0].width, pages[0].height) == (40, 30)
        assert pages[0].pixels.shape[2] == 4
        assert pages[0].dark_mask().all()

    def test_multi_frame_tiff_gives_one_page_per_frame(self, loader):
        buffer = io.BytesIO()
        first = Image.new("RGB", (20, 20), "white")
        first.save(buffer, format="TIFF", save_all=True, append_images=[Image.new("RGB", (20, 20), "black")])

        pages = loader.load_pages("scan.tiff", buffer.getvalue())

        assert len(pages) == 2
        assert not pages[0].dark_mask().any()
        assert pages[1].dark_mask().all()

    def test_pdf_renders_every_page(self, loader):
        pages = loader.load_pages("doc.pdf", pdf_bytes(2), dpi=72)

        assert len(pages) == 2
        assert (pages[0].width, pages[0].height) == (100, 80)

    def test_pdf_detected_without_extension(self, loader):
        assert len(loader.load_pages("upload", pdf_bytes(1), dpi=72)) == 1

    def test_corrupt_image_raises_decoding_error(self, loader):
        with pytest.raises(ImageDecodingException) as exc:
            loader.load_pages("broken.png", b"\x89PNG\r\n\x1a\nnot really")

        assert exc.value.status_code == 422
