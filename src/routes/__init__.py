"""
API Routes Package
==================
Request-level helpers shared by the FastAPI handlers in api.py.

Modules:
  helpers  - date-range parsing, JSON coercion, store/engine construction
"""
