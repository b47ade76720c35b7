"""Shared constants for Photogate.

All size limits, model geometry defaults and wire-level codes used across modules
are defined here. No magic numbers in other modules — import from here.
"""

# ─── Model geometry ──────────────────────────────────────────────────────────

# Side length of the square input the default classifier asset was trained on.
# Tied to the asset: when the asset changes, change model.input_size in config.
MODEL_INPUT_SIZE: int = 224

# Output vocabulary of the default NSFW classifier, in output-tensor order.
DEFAULT_MODEL_LABELS: tuple[str, ...] = ("Drawing", "Hentai", "Neutral", "Porn", "Sexy")

# Pixel scaling applied before inference (uint8 0..255 → float 0..1).
DEFAULT_INPUT_SCALE: float = 1.0 / 255.0

# Default on-disk location of the ONNX classifier asset.
DEFAULT_MODEL_PATH: str = "~/.photogate/models/nsfw_mobilenet_v2_224.onnx"

# ─── Decision policy ─────────────────────────────────────────────────────────

# Inclusive probability cutoff: a reject-label score >= this value rejects.
DEFAULT_THRESHOLD: float = 0.5

# Classifier labels treated as disallowed content.
DEFAULT_REJECT_LABELS: tuple[str, ...] = ("Porn", "Hentai")

# ─── Worker pool ─────────────────────────────────────────────────────────────

# Threads used for decode + inference. ONNX Runtime releases the GIL while
# running, so a small pool keeps concurrent uploads from queueing on one core.
DEFAULT_INFERENCE_WORKERS: int = 2

# ─── Model asset download ────────────────────────────────────────────────────

MODEL_DOWNLOAD_TIMEOUT_S: float = 60.0
MODEL_DOWNLOAD_CHUNK_BYTES: int = 1 << 16

# ─── Upload limits ───────────────────────────────────────────────────────────

# Maximum number of photos a single missing-person post may carry.
MAX_PHOTOS_PER_POST: int = 5

# Request body hard cap. HTTP 413 is returned before the gate is consulted.
MAX_REQUEST_BODY_BYTES: int = 10 * 1024 * 1024  # 10 MB

# ─── Rejection contract ──────────────────────────────────────────────────────

# Error code clients use to tell a content-policy rejection apart from a
# malformed request.
IMAGE_MODERATION_ERROR_CODE: str = "IMAGE_MODERATION_REJECTED"

SINGLE_IMAGE_REJECTED_MESSAGE: str = "La imagen contiene contenido no permitido."
MULTIPLE_IMAGES_REJECTED_MESSAGE: str = (
    "Una o más imágenes contienen contenido no permitido."
)

# Rate limit for the public check endpoint (slowapi syntax).
CHECK_RATE_LIMIT: str = "30/minute"
