# =============================================================================
# Candidate Filter
# =============================================================================

MIN_CANDIDATE_LENGTH = 3  # Minimum normalized length of a plausible value
NOISE_TOKENS = frozenset({"NO"})  # Exact normalized values that are label noise
LABEL_MARKER_NORMALIZED = "SERIAL"  # Rejected when contained in the normalized value
LABEL_MARKER_RAW = "number"  # Rejected when contained in the lower-cased raw text
NOISE_TRAILING_PUNCTUATION = ".:#"  # Stripped before the noise-token comparison

# =============================================================================
# Corroboration
# =============================================================================

MIN_CORROBORATION_LENGTH = 3  # Nearby OCR line must be at least this long

# =============================================================================
# Live barcode feed
# =============================================================================

SUPPORTED_SYMBOLOGIES = (
    "qr",
    "ean13",
    "ean8",
    "code128",
    "upc_a",
    "upc_e",
    "pdf417",
    "datamatrix",
    "code39",
    "code93",
)

# =============================================================================
# Storage layout
# =============================================================================

SCANS_DIR_NAME = "scans"
IMAGE_EXTENSION = ".jpg"
FILE_URI_PREFIX = "file://"

# =============================================================================
# Export retry
# =============================================================================

EXPORT_MAX_ATTEMPTS = 3
EXPORT_INITIAL_BACKOFF = 0.5  # seconds
EXPORT_BACKOFF_MULTIPLIER = 2
