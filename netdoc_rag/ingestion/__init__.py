"""Ingestion package for loading documentation.

Contains the markdown ingestor that chunks documentation files into the
in-memory chunk store. See ingest_markdown.py.
"""
