"""Shared utilities: errors, logging, vector codec, background tasks."""
