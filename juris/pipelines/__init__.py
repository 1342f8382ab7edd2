"""Ingestion pipeline stages: normalization, fingerprinting, dedup, enrichment, commit.

Each stage is callable on its own; ``ingest`` chains them per record.
"""
