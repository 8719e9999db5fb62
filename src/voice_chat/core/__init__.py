"""Shared primitives for the voice chat package."""
