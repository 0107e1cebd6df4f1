"""Fakes standing in for camera hardware and the analysis service."""
