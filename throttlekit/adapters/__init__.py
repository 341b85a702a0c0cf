"""Pluggable backends for the limiter.

Counters live in an external store (in-memory for a single process, Redis
when counters must be shared across workers). Counting algorithms are
strategies that read and write through that store.
"""
