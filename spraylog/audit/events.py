"""History action constants and field policy for the application audit trail."""
from __future__ import annotations

ACTION_CREATED = "created"
ACTION_UPDATED = "updated"
ACTION_VOIDED = "voided"

VALID_ACTIONS: frozenset[str] = frozenset({
    ACTION_CREATED,
    ACTION_UPDATED,
    ACTION_VOIDED,
})

# Identity and bookkeeping columns; they never carry audit meaning.
IGNORED_FIELDS: frozenset[str] = frozenset({
    "id",
    "company_id",
    "created_at",
    "updated_at",
    "version",
})

# Snapshot columns refreshed only when the referenced id itself changes.
SNAPSHOT_FIELDS: frozenset[str] = frozenset({
    "chemical_name",
    "epa_number",
    "customer_name",
    "customer_address",
})

# Columns an update request may never set directly.
FROZEN_FIELDS: frozenset[str] = IGNORED_FIELDS | SNAPSHOT_FIELDS | frozenset({
    "applicator_id",
    "status",
})
