"""Embedding providers used by the enrichment stage."""
