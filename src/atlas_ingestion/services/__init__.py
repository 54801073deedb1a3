"""Ingestion pipeline services."""
