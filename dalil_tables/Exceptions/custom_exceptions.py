import functools
import inspect
import logging
import time
from enum import Enum
from typing import Optional, Dict, Any, Callable, NamedTuple, Type

from dalil_tables.Logger.table_logger import get_standard_logger


class BaseTableException(Exception):
    """Base exception class for all table extraction related exceptions"""

    def __init__(self, message: str, status_code: int = 500, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary format for API responses"""
        return {
            "error": True,
            "message": self.message,
            "status_code": self.status_code,
            "details": self.details,
            "exception_type": self.__class__.__name__
        }


class ImageProcessingException(BaseTableException):
    """Exception raised when a raster image cannot be processed"""

    def __init__(self, message: str = "Image processing failed", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, status_code=422, details=details)


class InvalidImageException(ImageProcessingException):
    """Exception raised when a raster buffer does not match its declared shape"""

    def __init__(self, reason: str, details: Optional[Dict[str, Any]] = None):
        details = details or {}
        details["reason"] = reason
        super().__init__(f"Invalid raster image: {reason}", details=details)


class ImageDecodingException(ImageProcessingException):
    """Exception raised when an uploaded file cannot be decoded into pages"""

    def __init__(self, file_name: str, details: Optional[Dict[str, Any]] = None):
        details = details or {}
        details["file_name"] = file_name
        super().__init__(f"Failed to decode image file: {file_name}", details=details)


class TableExtractionException(BaseTableException):
    """Exception raised when table extraction fails"""

    def __init__(self, message: str = "Table extraction failed", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, status_code=422, details=details)


class TableReconstructionException(TableExtractionException):
    """Exception raised when a single detected table cannot be rebuilt"""

    def __init__(self, table_index: int, details: Optional[Dict[str, Any]] = None):
        details = details or {}
        details["table_index"] = table_index
        super().__init__(f"Failed to reconstruct table {table_index}", details=details)


class CellReadException(TableExtractionException):
    """Exception raised when the cell-text reader fails on a cell"""

    def __init__(self, row: int, col: int, details: Optional[Dict[str, Any]] = None):
        details = details or {}
        details.update({"row": row, "col": col})
        super().__init__(f"Cell text reading failed at ({row}, {col})", details=details)


class CellReadTimeoutException(CellReadException):
    """Exception raised when the cell-text reader does not answer in time"""

    def __init__(self, row: int, col: int, timeout_seconds: float, details: Optional[Dict[str, Any]] = None):
        details = details or {}
        details["timeout_seconds"] = timeout_seconds
        super().__init__(row, col, details=details)
        self.message = f"Cell text reading timed out after {timeout_seconds}s at ({row}, {col})"
        self.status_code = 408


class TableMergeException(BaseTableException):
    """Exception raised when two tables cannot be merged"""

    def __init__(self, message: str = "Table merge failed", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, status_code=422, details=details)


class ValidationException(BaseTableException):
    """Exception raised when validation fails"""

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, status_code=400, details=details)


class InvalidFileTypeException(ValidationException):
    """Exception raised when file type is not supported"""

    def __init__(self, file_type: str, supported_types: list, details: Optional[Dict[str, Any]] = None):
        message = f"Invalid file type: {file_type}. Supported types: {', '.join(supported_types)}"
        details = details or {}
        details.update({"file_type": file_type, "supported_types": supported_types})
        super().__init__(message, details=details)


class EmptyFileException(ValidationException):
    """Exception raised when an uploaded file has no content"""

    def __init__(self, file_name: str, details: Optional[Dict[str, Any]] = None):
        details = details or {}
        details["file_name"] = file_name
        super().__init__(f"Invalid file: {file_name} is empty", details=details)


class FileTooLargeException(ValidationException):
    """Exception raised when an uploaded file exceeds the size limit"""

    def __init__(self, file_name: str, size: int, limit: int, details: Optional[Dict[str, Any]] = None):
        details = details or {}
        details.update({"file_name": file_name, "size": size, "limit": limit})
        super().__init__(f"File size exceeds limit of {limit // (1024 * 1024)}MB: {file_name}", details=details)


class ConfigurationException(BaseTableException):
    """Exception raised when configuration is invalid"""

    def __init__(self, message: str = "Configuration error", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, status_code=500, details=details)


class InvalidConfigurationException(ConfigurationException):
    """Exception raised when a configuration value is out of range"""

    def __init__(self, config_key: str, value: Any, details: Optional[Dict[str, Any]] = None):
        details = details or {}
        details.update({"config_key": config_key, "value": value})
        super().__init__(f"Invalid configuration value for {config_key}: {value!r}", details=details)
        self.status_code = 400


class ExternalServiceException(BaseTableException):
    """Exception raised when external service calls fail"""

    def __init__(self, service_name: str, message: str = "External service error", details: Optional[Dict[str, Any]] = None):
        details = details or {}
        details["service_name"] = service_name
        super().__init__(f"{service_name}: {message}", status_code=503, details=details)


class TesseractException(ExternalServiceException):
    """Exception raised when Tesseract OCR fails"""

    def __init__(self, details: Optional[Dict[str, Any]] = None):
        super().__init__("Tesseract OCR", "OCR engine failed", details=details)


class ExportException(BaseTableException):
    """Exception raised when a table cannot be exported"""

    def __init__(self, export_format: str, details: Optional[Dict[str, Any]] = None):
        details = details or {}
        details["format"] = export_format
        super().__init__(f"Failed to export table as {export_format}", status_code=500, details=details)


# ----------------------------------------------------------------------------
# Aspects: decorators that log, retry and translate failures per pipeline stage
# ----------------------------------------------------------------------------

class ExceptionSeverity(Enum):
    """How loudly a failure is logged"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ExceptionContext(Enum):
    """Pipeline stage a decorated function belongs to"""
    VALIDATION = "validation"
    IMAGE_PROCESSING = "image_processing"
    TABLE_EXTRACTION = "table_extraction"
    CELL_READING = "cell_reading"
    TABLE_MERGE = "table_merge"
    EXPORT = "export"
    CONFIGURATION = "configuration"
    GENERAL = "general"


class ExceptionPolicy(NamedTuple):
    severity: ExceptionSeverity
    retryable: bool


# Looked up along the raised exception's MRO, most specific class first.
EXCEPTION_POLICIES: Dict[Type[Exception], ExceptionPolicy] = {
    CellReadException: ExceptionPolicy(ExceptionSeverity.MEDIUM, True),
    ExternalServiceException: ExceptionPolicy(ExceptionSeverity.HIGH, True),
    ImageProcessingException: ExceptionPolicy(ExceptionSeverity.HIGH, False),
    TableExtractionException: ExceptionPolicy(ExceptionSeverity.HIGH, False),
    TableMergeException: ExceptionPolicy(ExceptionSeverity.MEDIUM, False),
    ValidationException: ExceptionPolicy(ExceptionSeverity.LOW, False),
    ConfigurationException: ExceptionPolicy(ExceptionSeverity.CRITICAL, False),
    ExportException: ExceptionPolicy(ExceptionSeverity.MEDIUM, False),
}

_LOG_LEVELS = {
    ExceptionSeverity.CRITICAL: logging.CRITICAL,
    ExceptionSeverity.HIGH: logging.ERROR,
    ExceptionSeverity.MEDIUM: logging.WARNING,
    ExceptionSeverity.LOW: logging.INFO,
}


def _stage_error(exc_class: Type[BaseTableException], stage: str):
    def build(error: Exception, where: str) -> BaseTableException:
        return exc_class(f"{stage} failed in {where}: {error}", details={"function": where})
    return build


# Domain exception each stage raises for foreign errors
_STAGE_ERRORS: Dict[ExceptionContext, Callable[[Exception, str], BaseTableException]] = {
    ExceptionContext.VALIDATION: _stage_error(ValidationException, "Validation"),
    ExceptionContext.IMAGE_PROCESSING: _stage_error(ImageProcessingException, "Image processing"),
    ExceptionContext.TABLE_EXTRACTION: _stage_error(TableExtractionException, "Table extraction"),
    ExceptionContext.TABLE_MERGE: _stage_error(TableMergeException, "Table merge"),
    ExceptionContext.CONFIGURATION: lambda error, where: InvalidConfigurationException(
        "options", str(error), details={"function": where}
    ),
    ExceptionContext.CELL_READING: lambda error, where: ExternalServiceException(
        "Cell text reader", f"Cell reading failed in {where}: {error}", details={"function": where}
    ),
    ExceptionContext.EXPORT: lambda error, where: ExportException(
        where.rsplit(".", 1)[-1], details={"error": str(error), "function": where}
    ),
    ExceptionContext.GENERAL: _stage_error(BaseTableException, "Operation"),
}


def _wrap_callable(func: Callable, call: Callable) -> Callable:
    """
    Wrap func so every invocation goes through call(invoke, is_async, args, kwargs),
    where invoke runs func once; works for plain and coroutine functions
    """
    if inspect.iscoroutinefunction(func):
        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs):
            async def invoke():
                return await func(*args, **kwargs)
            return await call(invoke, True, args, kwargs)
        return async_wrapper

    @functools.wraps(func)
    def sync_wrapper(*args, **kwargs):
        return call(lambda: func(*args, **kwargs), False, args, kwargs)
    return sync_wrapper


class AOPExceptionHandler:
    """
    Central place where pipeline stages get their failure handling:
    severity-based logging, optional retries and translation of foreign
    errors into the stage's table exception
    """

    def __init__(self, logger_name: str = "AOPExceptionHandler"):
        self.logger = get_standard_logger(logger_name)

    @staticmethod
    def policy_for(exception: Exception) -> Optional[ExceptionPolicy]:
        for exc_type in type(exception).__mro__:
            if exc_type in EXCEPTION_POLICIES:
                return EXCEPTION_POLICIES[exc_type]
        return None

    def translate(self, exception: Exception, context: ExceptionContext, where: str) -> BaseTableException:
        """Table exceptions keep their identity; anything else becomes the stage's exception"""
        if isinstance(exception, BaseTableException):
            return exception
        return _STAGE_ERRORS[context](exception, where)

    def handle_exceptions(
        self,
        context: ExceptionContext = ExceptionContext.GENERAL,
        severity: ExceptionSeverity = ExceptionSeverity.MEDIUM,
        retryable: bool = False,
        max_retries: int = 0,
        log_args: bool = False,
    ):
        """
        Decorator applying the stage's failure handling to a sync or async function

        Args:
            context: Stage the function belongs to; selects the translated exception
            severity: Log severity for errors without a registered policy
            retryable: Re-run the call when the error's policy allows it
            max_retries: Extra attempts after the first one
            log_args: Include call arguments in the debug entry line
        """
        def decorator(func: Callable) -> Callable:
            where = f"{func.__module__}.{func.__qualname__}"

            def on_failure(error: Exception, attempt: int) -> bool:
                policy = self.policy_for(error)
                level = _LOG_LEVELS[policy.severity if policy else severity]
                self.logger.log(
                    level,
                    f"{context.value} error in {where} (attempt {attempt}/{max_retries + 1}): {error}",
                    exc_info=error if level >= logging.ERROR else None,
                )
                can_retry = retryable and attempt <= max_retries and policy is not None and policy.retryable
                if can_retry:
                    self.logger.warning(f"Retrying {where} (retry {attempt}/{max_retries})")
                return can_retry

            def raise_translated(error: Exception):
                translated = self.translate(error, context, where)
                if translated is error:
                    raise error
                raise translated from error

            def log_entry(args, kwargs):
                if log_args:
                    self.logger.debug(f"Entering {where} with args={args} kwargs={kwargs}")
                else:
                    self.logger.debug(f"Entering {where}")

            async def run_async(invoke):
                attempt = 0
                while True:
                    attempt += 1
                    try:
                        return await invoke()
                    except Exception as e:
                        if not on_failure(e, attempt):
                            raise_translated(e)

            def call(invoke, is_async, args, kwargs):
                log_entry(args, kwargs)
                if is_async:
                    return run_async(invoke)
                attempt = 0
                while True:
                    attempt += 1
                    try:
                        return invoke()
                    except Exception as e:
                        if not on_failure(e, attempt):
                            raise_translated(e)

            return _wrap_callable(func, call)
        return decorator


aop_handler = AOPExceptionHandler()


def _stage_decorator(context: ExceptionContext, doc: str, default_severity: ExceptionSeverity,
                     default_log_args: bool = False):
    def decorator_factory(severity: ExceptionSeverity = default_severity, log_args: bool = default_log_args):
        return aop_handler.handle_exceptions(context=context, severity=severity, log_args=log_args)
    decorator_factory.__doc__ = doc
    return decorator_factory


handle_validation_exceptions = _stage_decorator(
    ExceptionContext.VALIDATION, "Upload and payload validation", ExceptionSeverity.LOW)
handle_image_processing = _stage_decorator(
    ExceptionContext.IMAGE_PROCESSING, "Image decoding and raster analysis", ExceptionSeverity.HIGH)
handle_table_extraction = _stage_decorator(
    ExceptionContext.TABLE_EXTRACTION, "Region, grid and reconstruction stages", ExceptionSeverity.HIGH)
handle_table_merge = _stage_decorator(
    ExceptionContext.TABLE_MERGE, "Table merge engine", ExceptionSeverity.MEDIUM)
handle_export = _stage_decorator(
    ExceptionContext.EXPORT, "CSV/JSON/Excel exports", ExceptionSeverity.MEDIUM)
handle_configuration = _stage_decorator(
    ExceptionContext.CONFIGURATION, "Configuration parsing", ExceptionSeverity.CRITICAL, default_log_args=True)
handle_general_operations = _stage_decorator(
    ExceptionContext.GENERAL, "Anything outside a specific stage", ExceptionSeverity.MEDIUM)


def handle_cell_reading(
    severity: ExceptionSeverity = ExceptionSeverity.MEDIUM,
    retryable: bool = True,
    max_retries: int = 1,
    log_args: bool = False
):
    """Calls into a cell-text reader; reader and engine errors are retried"""
    return aop_handler.handle_exceptions(
        context=ExceptionContext.CELL_READING,
        severity=severity,
        retryable=retryable,
        max_retries=max_retries,
        log_args=log_args
    )


def log_method_entry_exit(func: Callable) -> Callable:
    """Debug trace of entering and leaving a service method"""
    logger = get_standard_logger("MethodAspect")
    where = f"{func.__module__}.{func.__qualname__}"

    def call(invoke, is_async, args, kwargs):
        async def run_async():
            logger.debug(f"-> {where}")
            try:
                result = await invoke()
            except Exception as e:
                logger.error(f"<- {where} raised {type(e).__name__}: {e}")
                raise
            logger.debug(f"<- {where}")
            return result

        if is_async:
            return run_async()
        logger.debug(f"-> {where}")
        try:
            result = invoke()
        except Exception as e:
            logger.error(f"<- {where} raised {type(e).__name__}: {e}")
            raise
        logger.debug(f"<- {where}")
        return result

    return _wrap_callable(func, call)


def monitor_performance(func: Callable) -> Callable:
    """Logs the wall-clock duration of each call"""
    logger = get_standard_logger("PerformanceAspect")
    where = f"{func.__module__}.{func.__qualname__}"

    def report(started: float, error: Optional[Exception] = None):
        elapsed = time.perf_counter() - started
        if error is None:
            logger.info(f"{where} took {elapsed:.4f}s")
        else:
            logger.error(f"{where} failed after {elapsed:.4f}s: {error}")

    def call(invoke, is_async, args, kwargs):
        async def run_async():
            started = time.perf_counter()
            try:
                result = await invoke()
            except Exception as e:
                report(started, e)
                raise
            report(started)
            return result

        if is_async:
            return run_async()
        started = time.perf_counter()
        try:
            result = invoke()
        except Exception as e:
            report(started, e)
            raise
        report(started)
        return result

    return _wrap_callable(func, call)
