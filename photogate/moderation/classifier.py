"""Classifier adapter — runs the pre-trained NSFW model on a PixelBuffer.

Worker-side code: called from the inference pool, never awaited directly.
The model is a frozen ONNX asset consumed as a black box; this module only
prepares the input tensor and maps the output vector onto the label vocabulary
declared in the ModelSpec.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol, runtime_checkable

import numpy as np

from photogate.models.moderation import ModelSpec, Prediction
from photogate.moderation.errors import ClassificationError, ModelLoadError
from photogate.moderation.normalizer import PixelBuffer

logger = logging.getLogger(__name__)


@runtime_checkable
class Classifier(Protocol):
    """Anything that turns a normalized buffer into labeled probabilities."""

    def classify(self, buffer: PixelBuffer) -> list[Prediction]:
        ...


class OnnxClassifier:
    """Adapter over an ``onnxruntime.InferenceSession``.

    Input tensor: float32, pixels multiplied by ``spec.input_scale``, batch of 1,
    ``NHWC`` ([1, H, W, 3]) or ``NCHW`` ([1, 3, H, W]) depending on ``spec.layout``.

    Output: the first session output must hold exactly ``len(spec.labels)``
    scores (shape [N] or [1, N]). Scores are treated as independent per-class
    probabilities; they are not renormalized.

    Args:
        session: An InferenceSession (or anything with ``get_inputs()`` and ``run()``).
        spec:    Geometry and labels the asset was trained with.
    """

    def __init__(self, session: Any, spec: ModelSpec) -> None:
        self._session = session
        self.spec = spec
        inputs = session.get_inputs()
        if not inputs:
            raise ModelLoadError("Model declares no inputs")
        self._input_name: str = inputs[0].name
        self._check_input_geometry(inputs[0].shape)

    def _check_input_geometry(self, declared: Any) -> None:
        """Fail the load when the asset's static input shape disagrees with the ModelSpec.

        Symbolic dimensions (strings / None) are accepted as wildcards.
        """
        if declared is None:
            return
        declared = list(declared)
        size = self.spec.input_size
        expected = [1, size, size, 3] if self.spec.layout == "NHWC" else [1, 3, size, size]
        if len(declared) != len(expected):
            raise ModelLoadError(
                f"Model input rank {len(declared)} does not match layout {self.spec.layout}"
            )
        # Skip the batch axis; only the image axes are tied to the ModelSpec.
        for axis, (got, want) in enumerate(zip(declared[1:], expected[1:]), start=1):
            if isinstance(got, int) and got > 0 and got != want:
                raise ModelLoadError(
                    f"Model input axis {axis} is {got}, expected {want} "
                    f"(layout={self.spec.layout}, input_size={size})"
                )

    def _prepare(self, buffer: PixelBuffer) -> np.ndarray:
        pixels = buffer.array
        if pixels.shape != self.spec.buffer_shape:
            raise ClassificationError(
                f"Buffer shape {pixels.shape} does not match model input "
                f"{self.spec.buffer_shape}"
            )
        tensor = pixels.astype(np.float32) * np.float32(self.spec.input_scale)
        if self.spec.layout == "NCHW":
            tensor = tensor.transpose(2, 0, 1)
        return np.ascontiguousarray(tensor[np.newaxis, ...])

    def classify(self, buffer: PixelBuffer) -> list[Prediction]:
        """Run inference and return predictions sorted by descending probability.

        Raises:
            ClassificationError: On shape mismatch, runtime failure or malformed output.
                                 No partial predictions are ever returned.
        """
        tensor = self._prepare(buffer)
        try:
            outputs = self._session.run(None, {self._input_name: tensor})
        except Exception as exc:  # noqa: BLE001
            raise ClassificationError(f"Inference failed: {type(exc).__name__}: {exc}") from exc
        finally:
            del tensor

        if not outputs:
            raise ClassificationError("Model returned no outputs")

        scores = np.asarray(outputs[0], dtype=np.float32)
        if scores.ndim == 2 and scores.shape[0] == 1:
            scores = scores[0]
        labels = self.spec.labels
        if scores.ndim != 1 or scores.shape[0] != len(labels):
            raise ClassificationError(
                f"Output shape {tuple(np.asarray(outputs[0]).shape)} does not match "
                f"{len(labels)} labels"
            )
        if not np.all(np.isfinite(scores)):
            raise ClassificationError("Model returned non-finite scores")

        predictions = [
            Prediction(label=label, probability=float(score))
            for label, score in zip(labels, scores)
        ]
        predictions.sort(key=lambda p: p.probability, reverse=True)
        logger.debug("Classified image: top=%s", predictions[0] if predictions else None)
        return predictions


def create_onnx_session(model_path: str) -> Any:
    """Open an ONNX Runtime CPU session for ``model_path``.

    Imported lazily so that bypass-mode deployments never load onnxruntime.
    """
    import onnxruntime as ort

    options = ort.SessionOptions()
    options.graph_optimization_level = ort.GraphOptimizationLevel.ORT_ENABLE_ALL
    return ort.InferenceSession(
        model_path,
        sess_options=options,
        providers=["CPUExecutionProvider"],
    )
