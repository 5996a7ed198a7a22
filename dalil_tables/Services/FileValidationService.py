import os

from dalil_tables.Common.Constants import (
    MAX_UPLOAD_SIZE_BYTES, SUPPORTED_IMAGE_EXTENSIONS, SUPPORTED_DOCUMENT_EXTENSIONS
)
from dalil_tables.Logger.table_logger import get_standard_logger
from dalil_tables.Exceptions.custom_exceptions import (
    InvalidFileTypeException, EmptyFileException, FileTooLargeException,
    handle_validation_exceptions, log_method_entry_exit, ExceptionSeverity
)

# Leading bytes of the supported formats
MAGIC_NUMBERS = [
    (b'%PDF', '.pdf'),
    (b'\xff\xd8', '.jpg'),
    (b'\x89PNG\r\n\x1a\n', '.png'),
    (b'BM', '.bmp'),
    (b'II*\x00', '.tiff'),
    (b'MM\x00*', '.tiff'),
]


class FileValidationService:
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super(FileValidationService, cls).__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        if not self._initialized:
            self.logger = get_standard_logger("FileValidationService")
            self._initialized = True

    @property
    def supported_extensions(self):
        return SUPPORTED_IMAGE_EXTENSIONS + SUPPORTED_DOCUMENT_EXTENSIONS

    def detect_extension(self, content: bytes):
        """Guess the file extension from its magic number"""
        head = content[:12]
        for magic, extension in MAGIC_NUMBERS:
            if head.startswith(magic):
                return extension
        if head[:4] == b'RIFF' and head[8:12] == b'WEBP':
            return '.webp'
        return None

    @log_method_entry_exit
    @handle_validation_exceptions(severity=ExceptionSeverity.LOW)
    def validate_upload(self, filename: str, content: bytes, content_type: str = "") -> str:
        """Validate an uploaded page image or PDF and return its effective extension

        The file must be non-empty, within the size limit, and recognised either
        by its extension or by its leading bytes.
        """
        filename = filename or ""
        if not content:
            self.logger.warning(f"Empty file uploaded: '{filename}'")
            raise EmptyFileException(filename or "upload")

        if len(content) > MAX_UPLOAD_SIZE_BYTES:
            self.logger.warning(f"File too large: '{filename}' ({len(content)} bytes)")
            raise FileTooLargeException(filename or "upload", len(content), MAX_UPLOAD_SIZE_BYTES)

        extension = os.path.splitext(filename.lower())[1]
        if extension in self.supported_extensions:
            return extension

        detected = self.detect_extension(content)
        if detected:
            self.logger.debug(f"Recognised '{filename}' as {detected} from its content")
            return detected

        self.logger.warning(f"Invalid file type uploaded: filename='{filename}', content-type='{content_type}'")
        raise InvalidFileTypeException(
            file_type=extension.lstrip('.') or "unknown",
            supported_types=[ext.lstrip('.') for ext in self.supported_extensions]
        )
