"""Photogate models package.

Defines the shared data contracts used across the moderation pipeline and the API:

  - moderation.py — GateState, ModelSpec, ModelHandle, Prediction, ModerationDecision
  - rejection.py  — HTTP 400 content-policy rejection (exception + response builder)
"""
