"""
Cache package for the Orders Service.

Provides the fixed-capacity, in-process LRU cache that fronts the durable
order store. Entries are only ever removed by capacity eviction; the store
stays the source of truth.
"""
