"""
Woning Store - local-first hybrid persistence for agency property data.

This package implements the storage core of the Woning property-management
application:
- A tenant-isolated key-value store in front of a capacity-bounded local store
- A short-TTL read-through cache with explicit invalidation
- An entity repository enforcing occupancy and cascade invariants
- A best-effort replicator mirroring every mutation to a remote document store
- A monthly archival scheduler rolling payments into immutable snapshots

Architecture:
    ┌─────────────┐     ┌──────────────────┐     ┌─────────────────┐
    │   Caller    │────▶│ EntityRepository │────▶│   Replicator    │
    │    (UI)     │     │  (validate, etc) │     │ (outbox, async) │
    └─────────────┘     └────────┬─────────┘     └────────┬────────┘
                                 │                        │
                     ┌───────────┴──────────┐             ▼
                     ▼                      ▼      ┌─────────────┐
              ┌─────────────┐       ┌─────────────┐│   Remote    │
              │ ReadThrough │──────▶│KeyValueStore││  document   │
              │    Cache    │       │ (namespaced)││    store    │
              └─────────────┘       └──────┬──────┘└─────────────┘
                                           │
                                           ▼
                               ┌──────────────────────┐
                               │ PersistentStore      │
                               │ (+ memory fallback)  │
                               └──────────────────────┘

Invariants:
    - Local state is authoritative; the remote replica is eventually consistent
    - No read or write crosses agency namespaces
    - Validation and conflict failures never leave partial writes
    - Replication failures are logged, never raised to the caller

Version: see _version.py.
"""

from ._version import __version__

__all__ = ["__version__"]
