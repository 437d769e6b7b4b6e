"""
Ingestion package for the Orders Service.

Turns raw feed messages into stored, cached order aggregates. The feed is
at-least-once, so every message passes an existence check before it is
written.
"""
