"""
CLI tools for modelgen.

This module provides command-line tools for:
- sync: Merge schema files into the model file
- validate: Check the model file invariants
- show: Print entities with their identifiers

Invariants:
    - Tools work offline on local files only
    - A failed command leaves the model file untouched
"""

from .model_cli import ModelCLI, main

__all__ = ["ModelCLI", "main"]
