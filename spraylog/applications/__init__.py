"""Application write path: create, update and void, each audited."""
