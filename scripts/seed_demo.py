#!/usr/bin/env python3
"""Seed demo data: one company, two applicators, customers, chemicals, applications.

Usage:
    python scripts/seed_demo.py          # uses DATABASE_URL from env / .env
    DATABASE_URL=... python scripts/seed_demo.py
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

from sqlalchemy.orm import Session

from spraylog.applications.service import create_application, void_application
from spraylog.db.models import Chemical, Company, Customer, User
from spraylog.db.session import get_engine, init_db


def seed(session: Session) -> None:
    """Insert a demo company with reference data and audited applications."""
    now = datetime.now(timezone.utc).replace(minute=0, second=0, microsecond=0)

    company = Company(
        name="Greenway Lawn & Pest",
        email="office@greenway.example",
        phone="555-0100",
        license_number="B-40112",
        license_state="CA",
    )
    session.add(company)
    session.flush()

    applicators = [
        User(company_id=company.id, first_name="Dana", last_name="Ortiz", license_number="QAL-1187", license_state="CA"),
        User(company_id=company.id, first_name="Sam", last_name="Whitfield", license_number="QAC-2203"),
    ]
    customers = [
        Customer(company_id=company.id, name="Maple Court HOA", email="board@maplecourt.example",
                 address="12 Maple Ct", city="Fresno", state="CA", zip_code="93650"),
        Customer(company_id=company.id, name="R. Alvarez", email="ralvarez@example.com",
                 address="880 Olive Ave", city="Fresno", state="CA", zip_code="93728"),
        Customer(company_id=company.id, name="Sunrise Preschool", email=None, notify_by_email=False,
                 address="4 Dawn Rd", city="Clovis", state="CA", zip_code="93612"),
    ]
    chemicals = [
        Chemical(company_id=None, name="Termidor SC", epa_number="7969-210", signal_word="CAUTION"),
        Chemical(company_id=None, name="Talstar P", epa_number="279-3206", signal_word="CAUTION"),
        Chemical(company_id=company.id, name="Orange oil blend"),
    ]
    session.add_all(applicators + customers + chemicals)
    session.flush()

    demo_applications = [
        # (days ago, applicator, customer, chemical, amount, unit, pest)
        (6, 0, 0, 0, 1.5, "gal", "Subterranean termites"),
        (5, 1, 1, 1, 0.5, "gal", "Ants"),
        (3, 0, 1, 2, 2.0, "qt", "Aphids"),
        (1, 1, 2, 1, 0.75, "gal", "Spiders"),
    ]
    created = []
    for days_ago, a_idx, c_idx, ch_idx, amount, unit, pest in demo_applications:
        result = create_application(
            session,
            company_id=company.id,
            actor_id=applicators[a_idx].id,
            customer_id=customers[c_idx].id,
            chemical_id=chemicals[ch_idx].id,
            amount=amount,
            unit=unit,
            application_date=now - timedelta(days=days_ago),
            target_pest_name=pest,
            application_method="Spray",
            temperature=72,
            humidity=40,
            wind_speed=4,
            wind_direction="NW",
            customer_consent=True,
        )
        created.append(result.application)

    void_application(
        session,
        company_id=company.id,
        application_id=created[-1].id,
        actor_id=applicators[0].id,
        reason="Logged against the wrong property",
    )

    session.commit()
    print(f"Seeded company {company.id} with {len(created)} applications (1 voided).")


def main() -> None:
    engine = get_engine()
    init_db(engine)

    with Session(engine) as session:
        seed(session)


if __name__ == "__main__":
    main()
