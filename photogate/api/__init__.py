"""Photogate HTTP API: the standalone check route and upload-layer helpers."""
