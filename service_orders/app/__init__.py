"""
Orders Service package for the Order Cache Service.

Ingests order events from Kafka, persists them to PostgreSQL and serves
point lookups through an in-memory LRU cache. It provides:

- app.main: API surface for order lookup, listing, cache stats and health.
- app.cache: Fixed-capacity LRU cache of order aggregates.
- app.persistence: Durable order store interface and implementations.
- app.ingestion: Feed decoding, validation and the idempotent ingest loop.
- app.reader: Read-through lookup path.
- app.bootstrap: Start-up cache warm from the store.

Guidelines:
- The store is the source of truth; the cache is only an accelerator.
- Orders are append-only; nothing here updates or deletes a stored order.
"""
