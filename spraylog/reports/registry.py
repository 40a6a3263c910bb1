"""Jurisdiction registry.

Lookup table of report policies (built-in + custom YAML) keyed by state
code.  Built once and shared by report requests.
"""
from __future__ import annotations

import logging
from pathlib import Path

from spraylog.core.errors import UnsupportedJurisdictionError
from spraylog.core.settings import get_settings
from spraylog.reports.jurisdiction import Jurisdiction, is_valid_state_code
from spraylog.reports.loader import BUILTIN_DIR, load_all_jurisdictions

logger = logging.getLogger(__name__)


class JurisdictionRegistry:
    """In-memory registry of supported compliance-report jurisdictions."""

    def __init__(self, jurisdictions: list[Jurisdiction] | None = None) -> None:
        self._jurisdictions: dict[str, Jurisdiction] = {}
        for j in jurisdictions or []:
            self.register(j)

    def register(self, jurisdiction: Jurisdiction) -> None:
        """Register (or replace) a jurisdiction."""
        self._jurisdictions[jurisdiction.code] = jurisdiction

    def get(self, code: str) -> Jurisdiction:
        """Return the policy for *code*.

        Raises ``UnsupportedJurisdictionError`` for malformed or unknown codes.
        """
        if not is_valid_state_code(code):
            raise UnsupportedJurisdictionError(f"Malformed state code: {code!r}", state=str(code))
        normalized = code.strip().upper()
        try:
            return self._jurisdictions[normalized]
        except KeyError:
            supported = ", ".join(self.codes())
            raise UnsupportedJurisdictionError(
                f"Unsupported state {normalized!r}; supported: {supported}", state=normalized
            ) from None

    def codes(self) -> list[str]:
        return sorted(self._jurisdictions)

    def list_all(self) -> list[Jurisdiction]:
        """Return all registered jurisdictions sorted by code."""
        return [self._jurisdictions[c] for c in self.codes()]

    @classmethod
    def default(cls) -> JurisdictionRegistry:
        """Built-in jurisdictions plus any found in ``JURISDICTIONS_DIR``."""
        registry = cls(load_all_jurisdictions(BUILTIN_DIR))
        custom_dir = get_settings().jurisdictions_dir
        if custom_dir:
            if Path(custom_dir).is_dir():
                for j in load_all_jurisdictions(custom_dir):
                    registry.register(j)
            else:
                logger.warning("JURISDICTIONS_DIR %s does not exist; using built-ins only", custom_dir)
        return registry
