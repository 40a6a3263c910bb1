"""Application audit trail package.

Every Application mutation writes one immutable, sequence-numbered
``ApplicationHistory`` row in the same transaction as the change.
"""
