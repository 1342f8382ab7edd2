"""Backend package: configuration, store, fetcher, pipelines, API.

Ingests court decisions from the judicial search site into PostgreSQL,
deduplicating on the case identifier and optionally attaching embeddings.
"""
