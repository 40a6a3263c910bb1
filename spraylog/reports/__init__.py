"""Compliance report package.

Declarative per-state report policies (built-in + custom YAML), the
deterministic report assembler, and HTML/PDF rendering.
"""
