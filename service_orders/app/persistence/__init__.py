"""
Persistence package for the Orders Service.

Defines the durable store capability consumed by the core and ships a
PostgreSQL implementation (four related tables written in one transaction)
alongside an in-memory implementation for local runs and tests.
"""
