"""Photogate moderation package.

Provides the image moderation pipeline: normalizer (decode/resize/RGB),
classifier adapter (ONNX Runtime), decision policy, model lifecycle, and the
fail-closed ImageModerationGate wrapper that ties them together.
"""
