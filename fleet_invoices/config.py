import os
from dotenv import load_dotenv

load_dotenv()

UPLOAD_DIR = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "output")
MAX_FILE_SIZE_MB = 20
ALLOWED_EXTENSIONS = {".pdf", ".png", ".jpg", ".jpeg", ".tif", ".tiff"}
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

# Chat completion (Anthropic)
ANTHROPIC_API_KEY = os.getenv("ANTHROPIC_API_KEY", "")
LLM_MODEL_TEXT = os.getenv("LLM_MODEL_TEXT", "claude-haiku-4-5-20251001")
LLM_MAX_TOKENS = int(os.getenv("LLM_MAX_TOKENS", "2000"))
LLM_TEMPERATURE = float(os.getenv("LLM_TEMPERATURE", "0.1"))
LLM_TOKEN_WARNING_THRESHOLD = 7500
AI_TIMEOUT_SECONDS = float(os.getenv("AI_TIMEOUT_SECONDS", "90"))

# Document analysis (Azure Document Intelligence REST API)
DOCUMENT_ANALYSIS_ENDPOINT = os.getenv("DOCUMENT_ANALYSIS_ENDPOINT", "")
DOCUMENT_ANALYSIS_KEY = os.getenv("DOCUMENT_ANALYSIS_KEY", "")
DOCUMENT_ANALYSIS_API_VERSION = os.getenv("DOCUMENT_ANALYSIS_API_VERSION", "2023-07-31")
DOCUMENT_ANALYSIS_TIMEOUT_SECONDS = int(os.getenv("DOCUMENT_ANALYSIS_TIMEOUT_SECONDS", "30"))
DOCUMENT_ANALYSIS_POLL_INTERVAL_SECONDS = float(os.getenv("DOCUMENT_ANALYSIS_POLL_INTERVAL_SECONDS", "1.0"))
DOCUMENT_ANALYSIS_MAX_POLLS = int(os.getenv("DOCUMENT_ANALYSIS_MAX_POLLS", "60"))
OCR_STRATEGY_TIMEOUT_SECONDS = float(os.getenv("OCR_STRATEGY_TIMEOUT_SECONDS", "120"))

# S3-compatible object storage for archived uploads
S3_ENDPOINT = os.getenv("S3_ENDPOINT", "")
S3_ACCESS_KEY = os.getenv("S3_ACCESS_KEY", "")
S3_SECRET_KEY = os.getenv("S3_SECRET_KEY", "")
S3_BUCKET = os.getenv("S3_BUCKET", "fleet-invoice-uploads")
S3_REGION = os.getenv("S3_REGION", "us-east-1")


# ── Confidence scale ────────────────────────────────────────────────────
# Pipeline confidences live on a 0-100 scale. External sources are not
# consistent about this, so anything at or below 1.0 is read as a fraction.


def clamp_confidence(value: float | int | None) -> float:
    """Clamp a confidence value into [0, 100]."""
    if value is None:
        return 0.0
    return max(0.0, min(100.0, float(value)))


def to_percent_confidence(value: float | int | None) -> float:
    """Convert a 0-1 fraction or 0-100 percentage to a clamped percentage.

    Values <= 1.0 are treated as fractions: 0.92 → 92.0, 1.0 → 100.0,
    while 85 → 85.0 and 150 → 100.0.
    """
    if value is None:
        return 0.0
    value = float(value)
    if value <= 1.0:
        value *= 100
    return clamp_confidence(value)
