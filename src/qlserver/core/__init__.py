"""Shared data model and logging helpers."""
