"""Relational projection of indexed rooms and the indexer's own bookkeeping.

Provides the SQLAlchemy models and CommitSink, the only writer to the store.
"""
