"""Config loading for Photogate.

Reads `.photogate/config.yaml` (or `~/.photogate/config.yaml`).
Raises SystemExit on parse errors, a missing `version` field or invalid values.
Without any config file the gate runs on built-in defaults.

Config search order:
  1. the `config_path` argument (tests and explicit overrides)
  2. PHOTOGATE_CONFIG environment variable (if set)
  3. `.photogate/config.yaml` (working directory — for development)
  4. `~/.photogate/config.yaml` (home directory — for production deployments)

Environment variable overrides (applied after the file):
  IMAGE_MODERATION_ENABLED — "false" switches the gate into bypass mode
  PHOTOGATE_MODEL_PATH     — overrides model.path
  PHOTOGATE_PORT           — overrides server.port

Configuration is process-wide and read once at startup; nothing re-reads it
per request.
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from typing import NoReturn, Optional

import yaml

from photogate.constants import (
    DEFAULT_INFERENCE_WORKERS,
    DEFAULT_INPUT_SCALE,
    DEFAULT_MODEL_LABELS,
    DEFAULT_MODEL_PATH,
    DEFAULT_REJECT_LABELS,
    DEFAULT_THRESHOLD,
    MAX_PHOTOS_PER_POST,
    MAX_REQUEST_BODY_BYTES,
    MODEL_INPUT_SIZE,
)
from photogate.utils.logger import get_logger

logger = get_logger(__name__)

# ─── Versions ────────────────────────────────────────────────────────────────

SUPPORTED_CONFIG_VERSION = 1

SUPPORTED_VERSIONS: frozenset[int] = frozenset({1})

# ─── Allowed values ──────────────────────────────────────────────────────────

# Tensor layouts the classifier adapter knows how to feed
VALID_LAYOUTS: frozenset[str] = frozenset({"NHWC", "NCHW"})

DEFAULT_CONFIG_PATHS = [
    ".photogate/config.yaml",
    os.path.expanduser("~/.photogate/config.yaml"),
]


# ─── Sections ────────────────────────────────────────────────────────────────


@dataclass
class ModerationConfig:
    """Decision policy and gate switch.

    enabled:       False puts the gate in bypass mode (every image is safe, no model load).
    threshold:     Inclusive probability cutoff for reject labels.
    reject_labels: Classifier labels that count as disallowed content.
    workers:       Threads in the decode + inference pool.
    """

    enabled: bool = True
    threshold: float = DEFAULT_THRESHOLD
    reject_labels: list[str] = field(default_factory=lambda: list(DEFAULT_REJECT_LABELS))
    workers: int = DEFAULT_INFERENCE_WORKERS


@dataclass
class ModelConfig:
    """Classifier asset location and the geometry that belongs to it."""

    path: str = DEFAULT_MODEL_PATH
    url: Optional[str] = None
    labels: list[str] = field(default_factory=lambda: list(DEFAULT_MODEL_LABELS))
    input_size: int = MODEL_INPUT_SIZE
    layout: str = "NHWC"
    input_scale: float = DEFAULT_INPUT_SCALE


@dataclass
class ServerConfig:
    """HTTP binding configuration."""

    host: str = "127.0.0.1"
    port: int = 8080


@dataclass
class UploadConfig:
    """Limits enforced by the upload layer before the gate is consulted."""

    max_photos_per_post: int = MAX_PHOTOS_PER_POST
    max_body_bytes: int = MAX_REQUEST_BODY_BYTES


@dataclass
class Config:
    """Root configuration object populated from .photogate/config.yaml.

    All fields have safe defaults — Photogate can start without any config file.
    """

    version: int = SUPPORTED_CONFIG_VERSION
    moderation: ModerationConfig = field(default_factory=ModerationConfig)
    model: ModelConfig = field(default_factory=ModelConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    uploads: UploadConfig = field(default_factory=UploadConfig)
    path: Optional[str] = None  # Path to the loaded config file

    @classmethod
    def defaults(cls) -> "Config":
        """Return a fully-default Config (no file required)."""
        return cls()

    @classmethod
    def from_dict(cls, raw: dict, path: Optional[str] = None) -> "Config":
        """Overlay a parsed YAML mapping onto the defaults and validate it.

        Keys Photogate does not know are ignored.

        Args:
            raw:  Mapping from the config file, version already checked.
            path: Where the mapping was read from.

        Returns:
            Config with every section filled in.

        Raises:
            SystemExit(1): On any out-of-range or malformed value.
        """
        # ── Moderation ────────────────────────────────────────────────────────
        moderation_raw = raw.get("moderation") or {}
        moderation = ModerationConfig(
            enabled=bool(moderation_raw.get("enabled", True)),
            threshold=moderation_raw.get("threshold", DEFAULT_THRESHOLD),
            reject_labels=moderation_raw.get("reject_labels", list(DEFAULT_REJECT_LABELS)),
            workers=moderation_raw.get("workers", DEFAULT_INFERENCE_WORKERS),
        )

        # ── Model ─────────────────────────────────────────────────────────────
        model_raw = raw.get("model") or {}
        model = ModelConfig(
            path=model_raw.get("path", DEFAULT_MODEL_PATH),
            url=model_raw.get("url"),
            labels=model_raw.get("labels", list(DEFAULT_MODEL_LABELS)),
            input_size=model_raw.get("input_size", MODEL_INPUT_SIZE),
            layout=str(model_raw.get("layout", "NHWC")).upper(),
            input_scale=model_raw.get("input_scale", DEFAULT_INPUT_SCALE),
        )

        # ── Server ────────────────────────────────────────────────────────────
        server_raw = raw.get("server") or {}
        server = ServerConfig(
            host=server_raw.get("host", "127.0.0.1"),
            port=server_raw.get("port", 8080),
        )

        # ── Uploads ───────────────────────────────────────────────────────────
        uploads_raw = raw.get("uploads") or {}
        uploads = UploadConfig(
            max_photos_per_post=uploads_raw.get("max_photos_per_post", MAX_PHOTOS_PER_POST),
            max_body_bytes=uploads_raw.get("max_body_bytes", MAX_REQUEST_BODY_BYTES),
        )

        config = cls(
            version=raw.get("version", SUPPORTED_CONFIG_VERSION),
            moderation=moderation,
            model=model,
            server=server,
            uploads=uploads,
            path=path,
        )
        _validate(config)
        return config


# ─── Validation ───────────────────────────────────────────────────────────────


def _fail(message: str) -> NoReturn:
    print(f"CONFIG ERROR: {message}", file=sys.stderr)
    raise SystemExit(1)


def _is_number(value: object) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_positive_int(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def _validate(config: Config) -> None:
    """Reject values the gate cannot run with.

    Raises:
        SystemExit(1): With a human-readable message on stderr.
    """
    moderation = config.moderation
    if not _is_number(moderation.threshold) or not 0.0 <= moderation.threshold <= 1.0:
        _fail(
            f"moderation.threshold must be a number between 0.0 and 1.0, "
            f"got {moderation.threshold!r}."
        )
    if (
        not isinstance(moderation.reject_labels, list)
        or not moderation.reject_labels
        or not all(isinstance(label, str) and label for label in moderation.reject_labels)
    ):
        _fail("moderation.reject_labels must be a non-empty list of label names.")
    if not _is_positive_int(moderation.workers):
        _fail(f"moderation.workers must be a positive integer, got {moderation.workers!r}.")

    model = config.model
    if not isinstance(model.path, str) or not model.path:
        _fail("model.path must be a non-empty string.")
    if model.url is not None and not isinstance(model.url, str):
        _fail("model.url must be a string when set.")
    if (
        not isinstance(model.labels, list)
        or not model.labels
        or not all(isinstance(label, str) and label for label in model.labels)
    ):
        _fail("model.labels must be a non-empty list of label names.")
    if len(set(model.labels)) != len(model.labels):
        _fail("model.labels must not contain duplicates.")
    if not _is_positive_int(model.input_size):
        _fail(f"model.input_size must be a positive integer, got {model.input_size!r}.")
    if model.layout not in VALID_LAYOUTS:
        _fail(
            f"Invalid model.layout: '{model.layout}'. "
            f"Supported values: {sorted(VALID_LAYOUTS)}."
        )
    if not _is_number(model.input_scale) or model.input_scale <= 0:
        _fail(f"model.input_scale must be a positive number, got {model.input_scale!r}.")

    unknown = sorted(set(moderation.reject_labels) - set(model.labels))
    if unknown:
        # Not fatal: a label the model never emits simply never matches.
        logger.warning(
            "Reject labels not produced by the configured model",
            unknown_labels=unknown,
            model_labels=model.labels,
        )

    if not _is_positive_int(config.uploads.max_photos_per_post):
        _fail("uploads.max_photos_per_post must be a positive integer.")
    if not _is_positive_int(config.uploads.max_body_bytes):
        _fail("uploads.max_body_bytes must be a positive integer.")


# ─── Config loading ───────────────────────────────────────────────────────────


def _candidate_paths(config_path: Optional[str]) -> list[str]:
    paths = [p for p in (config_path, os.environ.get("PHOTOGATE_CONFIG")) if p]
    return paths + list(DEFAULT_CONFIG_PATHS)


def _read_yaml(path: str) -> dict:
    try:
        with open(path) as fh:
            raw = yaml.safe_load(fh)
    except yaml.YAMLError as exc:
        _fail(f"Failed to parse {path}: {exc}\nFix the YAML before starting Photogate.")
    except OSError as exc:
        _fail(f"Could not read {path}: {exc}")

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        _fail(f"{path} must hold a YAML mapping at the top level.")
    return raw


def load_config(config_path: Optional[str] = None) -> Config:
    """Resolve, parse and validate the Photogate config.

    The first existing file among ``config_path``, $PHOTOGATE_CONFIG and
    DEFAULT_CONFIG_PATHS wins. No file at all is fine and yields defaults.
    Environment overrides apply in both cases.

    Raises:
        SystemExit(1): Bad YAML, missing or unknown ``version``, an invalid
                       value, or a malformed PHOTOGATE_PORT.
    """
    searched = _candidate_paths(config_path)
    found_path = next(
        (
            os.path.expanduser(p)
            for p in searched
            if os.path.isfile(os.path.expanduser(p))
        ),
        None,
    )

    if found_path is None:
        logger.info("No config file found, running on defaults", searched=searched)
        config = Config.defaults()
        _apply_env_overrides(config)
        return config

    logger.info("Reading config file", path=found_path)
    raw = _read_yaml(found_path)

    version = raw.get("version")
    if version is None:
        _fail(f"{found_path} has no 'version' key. Start the file with 'version: 1'.")
    if version not in SUPPORTED_VERSIONS:
        _fail(
            f"Unsupported config version: {version} in {found_path} "
            f"(this build reads {sorted(SUPPORTED_VERSIONS)})."
        )

    config = Config.from_dict(raw, path=found_path)
    _apply_env_overrides(config)

    if config.server.host == "0.0.0.0":
        logger.warning(
            "Photogate is bound to every interface (0.0.0.0); "
            "it is meant to sit behind the upload service on 127.0.0.1"
        )

    logger.info(
        "Config ready",
        path=found_path,
        version=config.version,
        moderation_enabled=config.moderation.enabled,
        threshold=config.moderation.threshold,
    )
    return config


def _apply_env_overrides(config: Config) -> None:
    """Layer IMAGE_MODERATION_ENABLED, PHOTOGATE_MODEL_PATH and PHOTOGATE_PORT onto ``config``.

    Only the literal "false" (any case) turns moderation off; any other value
    of IMAGE_MODERATION_ENABLED turns it on.
    """
    enabled = os.environ.get("IMAGE_MODERATION_ENABLED")
    if enabled is not None:
        config.moderation.enabled = enabled.strip().lower() != "false"

    model_path = os.environ.get("PHOTOGATE_MODEL_PATH")
    if model_path:
        config.model.path = model_path

    port = os.environ.get("PHOTOGATE_PORT")
    if port is not None:
        try:
            config.server.port = int(port)
        except ValueError:
            _fail(f"PHOTOGATE_PORT must be an integer, got {port!r}.")
