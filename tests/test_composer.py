"""Tests for spraylog/notification/composer.py."""
from __future__ import annotations

from datetime import datetime

import pytest

from conftest import make_application
from spraylog.notification.composer import (
    NOTICE_SUBJECT,
    compose_application_notice,
    format_notice_date,
)


class TestComposeNotice:
    def test_core_details_rendered(self, db_session, company, applicator, customer, chemical):
        app = make_application(db_session, company, applicator, customer, chemical)
        message = compose_application_notice(app, customer, company=company, applicator=applicator)

        assert message.subject == NOTICE_SUBJECT
        body = message.html_body
        assert "Dear Maple Court HOA," in body
        assert "12 Maple Ct, Fresno, CA 93650" in body
        assert "Roundup Pro Concentrate" in body
        assert "1.5 gal" in body
        assert "Sunday, March 1, 2026 at 9:30 AM" in body
        assert "Dana Ortiz (License: CA #12345)" in body
        assert "Greenway Lawn &amp; Pest" in body
        assert "License: CA #B-40112" in body

    def test_empty_optional_rows_omitted(self, db_session, company, applicator, customer, chemical):
        app = make_application(db_session, company, applicator, customer, chemical)
        body = compose_application_notice(app, customer).html_body
        assert "Target Pest" not in body
        assert "Weather Conditions" not in body
        assert "Applied By" not in body
        assert "${" not in body

    def test_weather_summary(self, db_session, company, applicator, customer, chemical):
        app = make_application(
            db_session, company, applicator, customer, chemical,
            temperature=72.0, humidity=40.0, wind_speed=5.0, wind_direction="NW",
        )
        body = compose_application_notice(app, customer).html_body
        assert "Temperature: 72°F | Humidity: 40% | Wind: 5 mph NW" in body

    def test_values_are_escaped(self, db_session, company, applicator, customer, chemical):
        app = make_application(
            db_session, company, applicator, customer, chemical, notes="<script>alert(1)</script>"
        )
        body = compose_application_notice(app, customer).html_body
        assert "<script>" not in body
        assert "&lt;script&gt;" in body

    def test_missing_template_raises(self, db_session, company, applicator, customer, chemical, tmp_path):
        app = make_application(db_session, company, applicator, customer, chemical)
        with pytest.raises(FileNotFoundError):
            compose_application_notice(app, customer, template_dir=tmp_path)

    @pytest.mark.parametrize("value,expected", [
        (datetime(2026, 3, 1, 0, 5), "Sunday, March 1, 2026 at 12:05 AM"),
        (datetime(2026, 3, 1, 14, 30), "Sunday, March 1, 2026 at 2:30 PM"),
    ])
    def test_notice_date_format(self, value, expected):
        assert format_notice_date(value) == expected
