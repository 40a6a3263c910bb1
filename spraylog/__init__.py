"""Spraylog: pesticide-application compliance core.

Audited application records, customer notices with retry, delivery-status
reconciliation and state compliance reports.
"""
