"""
Services package for the stats tracker.

Sync, scoring, history and ranking services built on the async database layer.
"""

from .base import BaseService
from .lease import InMemoryLeaseStore, RedisLeaseStore

__all__ = ['BaseService', 'InMemoryLeaseStore', 'RedisLeaseStore']
