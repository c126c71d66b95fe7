"""
modelgen Test Suite.

This package contains:
- unit/: Unit tests (in-memory models, no files unless tmp_path)
- integration/: Generator runs over schema files and model files
"""
