"""Customer notification package.

Composes application notices, delivers them via SMTP or SendGrid with
persisted exponential-backoff retries, reconciles provider delivery
callbacks, and supports operator-triggered resend of failed notices.
"""
