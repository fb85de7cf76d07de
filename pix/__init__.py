"""Pix — Dockerfile pipelines for buildx."""

__version__ = "0.8.0"
