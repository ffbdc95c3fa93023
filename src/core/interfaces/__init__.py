"""Core interfaces/abstractions.

Why:
- Defines contracts (Protocol) implemented by adapters and by the browser
  collaborators (host SDK globals, script runtime, window handles).
- The Core depends on abstractions, never on a concrete host SDK generation.
"""
