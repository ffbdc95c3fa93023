"""Domain models and entities.

Why:
- Pure, strict data structures (Pydantic v2) and the error taxonomy.
- The domain knows nothing about HTTP, the CLI or host SDK versions.
"""
