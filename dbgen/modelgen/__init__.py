"""
modelgen - stable identifier bookkeeping for database entity models.

A schema declares entities with their properties and relations by name.
The database engine addresses them by "id:uid" identifiers instead, so the
generator keeps a model file (entity-model.json) next to the schema that
records every identifier ever assigned:

    schema files ──▶ candidates ──▶ merge ──▶ finalize ──▶ entity-model.json
                                      ▲                          │
                                      └──────── load ◀───────────┘

Invariants:
    - Identifiers of existing elements never change across runs
    - ids are never reused and uids are never reused (retired forever)
    - The model file is only written after finalize() succeeded

How to change safely:
    - Keep the model file format stable; it is checked into version control
    - Bump MODEL_VERSION only together with a reader for the new format

Version: see _version.py.
"""

from ._version import __version__

__all__ = ["__version__"]
