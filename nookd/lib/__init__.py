"""Shared building blocks for the nookd service."""
