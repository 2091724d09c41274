"""Declarative component and stage catalog."""

from ingest_harness.catalog.loader import (
    Catalog,
    default_catalog_text,
    load_catalog,
    parse_catalog,
    parse_catalog_text,
)

__all__ = [
    "Catalog",
    "default_catalog_text",
    "load_catalog",
    "parse_catalog",
    "parse_catalog_text",
]
