"""Root test configuration for Photogate.

Clears every environment variable that load_config() reads so that a developer's
shell (IMAGE_MODERATION_ENABLED=false, PHOTOGATE_CONFIG=...) never leaks into
the suite, and resets the shared rate limiter between tests.

Shared helpers are exposed as fixtures:
  image_bytes      — encode a solid-colour Pillow image in any mode / format
  fake_classifier  — factory for a Classifier returning fixed scores (or raising)
  fake_session     — factory for an onnxruntime-like session (get_inputs / run)
"""

from __future__ import annotations

import io
from types import SimpleNamespace
from typing import Any, Callable, Optional

import numpy as np
import pytest
from PIL import Image

from photogate.models.moderation import Prediction

_ENV_VARS = (
    "IMAGE_MODERATION_ENABLED",
    "PHOTOGATE_CONFIG",
    "PHOTOGATE_MODEL_PATH",
    "PHOTOGATE_PORT",
)


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove config-related environment variables for every test."""
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture(autouse=True)
def reset_rate_limiter() -> None:
    """Reset the in-memory rate limiter storage between tests.

    Prevents test-to-test rate limit bleed where several tests hitting
    /image-moderation/check within the same minute would trigger a 429.
    """
    from photogate.api.limiter import limiter
    try:
        limiter._storage.reset()
    except Exception:
        pass  # Not every storage backend supports reset


# ─── Image helpers ────────────────────────────────────────────────────────────


def _encode_image(
    mode: str = "RGB",
    size: tuple[int, int] = (32, 32),
    color: Any = None,
    fmt: str = "PNG",
) -> bytes:
    if color is None:
        color = {"1": 1, "L": 128, "LA": (128, 255), "RGBA": (10, 20, 30, 255),
                 "CMYK": (0, 128, 128, 0)}.get(mode, (10, 20, 30))
    image = Image.new(mode, size, color)
    buf = io.BytesIO()
    image.save(buf, format=fmt)
    return buf.getvalue()


@pytest.fixture
def image_bytes() -> Callable[..., bytes]:
    """Return a function encoding a solid-colour image: image_bytes(mode, size, color, fmt)."""
    return _encode_image


# ─── Classifier fakes ─────────────────────────────────────────────────────────


class FakeClassifier:
    """Classifier returning fixed scores; records the buffers it saw."""

    def __init__(
        self,
        scores: Optional[dict[str, float]] = None,
        exc: Optional[BaseException] = None,
    ) -> None:
        self.scores = scores if scores is not None else {"Neutral": 0.99}
        self.exc = exc
        self.calls = 0
        self.seen_shapes: list[tuple[int, ...]] = []

    def classify(self, buffer: Any) -> list[Prediction]:
        self.calls += 1
        self.seen_shapes.append(buffer.shape)
        if self.exc is not None:
            raise self.exc
        return [Prediction(label, prob) for label, prob in self.scores.items()]


@pytest.fixture
def fake_classifier() -> Callable[..., FakeClassifier]:
    """Return the FakeClassifier class: fake_classifier(scores=..., exc=...)."""
    return FakeClassifier


class FakeSession:
    """Minimal stand-in for onnxruntime.InferenceSession."""

    def __init__(
        self,
        input_shape: Any = (None, 224, 224, 3),
        scores: Any = None,
        exc: Optional[BaseException] = None,
        input_name: str = "input",
    ) -> None:
        self._inputs = [SimpleNamespace(name=input_name, shape=input_shape)]
        if scores is None:
            scores = [[0.05, 0.01, 0.9, 0.02, 0.02]]
        self.scores = scores
        self.exc = exc
        self.feeds: list[dict[str, np.ndarray]] = []

    def get_inputs(self) -> list[SimpleNamespace]:
        return self._inputs

    def run(self, output_names: Any, feeds: dict[str, np.ndarray]) -> list[Any]:
        self.feeds.append(feeds)
        if self.exc is not None:
            raise self.exc
        return [np.asarray(self.scores, dtype=np.float32)]


@pytest.fixture
def fake_session() -> Callable[..., FakeSession]:
    """Return the FakeSession class: fake_session(input_shape=..., scores=..., exc=...)."""
    return FakeSession
