"""Pydantic models for control-channel frames."""
