import os

LOG_DIR = os.environ.get("DALIL_TABLES_LOG_DIR", "")
LOG_LEVEL = os.environ.get("DALIL_TABLES_LOG_LEVEL", "INFO")
LOG_MAX_BYTES = 10 * 1024 * 1024  # 10MB
LOG_BACKUP_COUNT = 5

API_HOST = os.environ.get("DALIL_TABLES_API_HOST", "0.0.0.0")
API_PORT = int(os.environ.get("DALIL_TABLES_API_PORT", "8000"))

# Upload limits
MAX_UPLOAD_SIZE_BYTES = 10 * 1024 * 1024
SUPPORTED_IMAGE_EXTENSIONS = ['.png', '.jpg', '.jpeg', '.webp', '.bmp', '.tif', '.tiff']
SUPPORTED_DOCUMENT_EXTENSIONS = ['.pdf']
PDF_RENDER_DPI = 150

# Pixel classification
DARK_LUMINANCE_THRESHOLD = 128       # mean(R,G,B) below this is a dark pixel

# Line detection
LINE_SCAN_STRIDE = 2                 # scan every other row/column
MIN_LINE_LENGTH_RATIO = 0.3          # run must exceed 30% of the image extent
LINE_MERGE_TOLERANCE_PX = 3          # parallel lines this close are the same rule
LINE_COVERAGE_TOLERANCE_PX = 2       # slack when checking a line reaches another

# Text region detection
TEXT_TILE_SIZE = 20
TEXT_DENSITY_MIN = 0.10
TEXT_DENSITY_MAX = 0.70

# Implicit structure
TEXT_ALIGNMENT_TOLERANCE_PX = 10
IMPLICIT_LINE_MIN_REGIONS = 2
IMPLICIT_LINE_FULL_CONFIDENCE_REGIONS = 5

# Cells
EMPTY_CELL_DARK_RATIO = 0.05
CELL_BORDER_INSET_PX = 2
DEFAULT_STRUCTURAL_CONFIDENCE = 0.8

# Cell text confidence heuristic
TEXT_CONFIDENCE_BASE = 0.5
TEXT_CONFIDENCE_LENGTH_SHORT = 3
TEXT_CONFIDENCE_LENGTH_LONG = 10
TEXT_CONFIDENCE_ALLOWED_PATTERN = r"^[\w\s\-.,;:()/]*$"
NUMERIC_TEXT_PATTERN = r"^\d+([.,]\d+)?$"

# Row reconstruction
WIDE_CELL_RATIO = 1.8
LONG_CONTENT_CELL_RATIO = 1.5
LONG_CONTENT_CHARS = 50
SMALL_GAP_MAX_COLUMNS = 3
NUMERIC_ROW_RATIO = 0.6
IMPLICIT_CELL_CONFIDENCE = 0.5
IMPLICIT_CELL_CONFIDENCE_MERGING = 0.7
DEFAULT_IMPLICIT_CELL_WIDTH = 100
DEFAULT_IMPLICIT_CELL_HEIGHT = 30

# Table merging
EDGE_ALIGNMENT_TOLERANCE_PX = 10
MERGE_TYPE_OVERLAP_RATIO = 0.7
MIN_MERGE_SCORE = 0.5
HEADER_MATCH_SIMILARITY = 0.7
MERGE_WEIGHT_DISTANCE = 0.3
MERGE_WEIGHT_STRUCTURE = 0.5
MERGE_WEIGHT_ALIGNMENT = 0.2

# Tesseract cell reader
TESSERACT_LANG = os.environ.get("DALIL_TABLES_TESSERACT_LANG", "fra+ara+eng")
TESSERACT_CONFIG = "--psm 6"
ARABIC_DISPLAY_SHAPING = False
