"""Ingestion layer.

Helpers that turn raw upstream bodies (JSON documents, CSV text, HTML
listing pages) into normalized Python values.
"""

__all__: list[str] = []
