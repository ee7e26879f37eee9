"""
================================================================================
SRC PACKAGE - Modular Source Code Organization
================================================================================

Top-level package containing all application modules organized by function.

Package Structure:
    src/core/        - Value types, decoding, row building, cache, export, pipeline
    src/processors/  - Classification stages and provider/enrichment clients
    src/utils/       - Shared utilities (logging, config, constants)

Design Principles:
    - Separation of concerns
    - Minimal circular dependencies (core never imports processors at
      package import time)
    - Test-friendly architecture
    - Clear public APIs

Author: robertbiv
Last Modified: October 2026
================================================================================
"""

__version__ = "2026.10"
__author__ = "robertbiv"
