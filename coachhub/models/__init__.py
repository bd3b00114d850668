"""Pydantic models and timeline types."""
