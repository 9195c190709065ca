from __future__ import annotations

from datetime import date, timedelta

import click
from flask import Flask

from partner_portal.contexts.tendering.infrastructure.repositories import DirectoryRepository
from partner_portal.db import get_db


def seed_directory(db, today: date | None = None) -> dict:
    """Insert a small demo directory: catalogs, two partners with staff and certifications, training sessions."""
    today = today or date.today()
    directory = DirectoryRepository()
    with db.transaction():
        healthcare = directory.create_vertical(db, "HC", "Healthcare")
        directory.create_vertical(db, "EDU", "Education")
        access = directory.create_solution(db, "ACCESS", "Access control")
        directory.create_solution(db, "LOCKS", "Mechanical locking")

        certified = directory.create_partner(
            db,
            company_name="Northwind Security",
            contact_email="info@northwind.example",
            primary_contact_email="bids@northwind.example",
            verticals=["HC"],
            solutions=["ACCESS"],
            assa_abloy_products=["PD1", "HID2"],
        )
        uncertified = directory.create_partner(
            db,
            company_name="Contoso Installers",
            contact_email="hello@contoso.example",
            verticals=["HC", "EDU"],
            solutions=["ACCESS", "LOCKS"],
            assa_abloy_products=["PD1"],
        )

        engineer = directory.create_team_member(
            db,
            partner_id=certified,
            full_name="Ada Lovelace",
            email="ada@northwind.example",
        )
        directory.create_certification(
            db,
            team_member_id=engineer,
            product_code="PD1",
            certification_code="PD1",
            certification_name="PD1 Installer",
            issue_date=today - timedelta(days=200),
            expiry_date=today + timedelta(days=365),
        )
        technician = directory.create_team_member(
            db,
            partner_id=uncertified,
            full_name="Grace Hopper",
            email="grace@contoso.example",
        )
        directory.create_certification(
            db,
            team_member_id=technician,
            product_code="PD1",
            certification_code="PD1",
            certification_name="PD1 Installer",
            issue_date=today - timedelta(days=800),
            expiry_date=today - timedelta(days=5),
        )

        session_ids = [
            directory.create_training_session(
                db,
                title="PD1 Installer Certification",
                assa_abloy_product="PD1",
                session_date=today + timedelta(days=offset),
                location_type="online",
            )
            for offset in (7, 21)
        ]

    return {
        "verticals": [healthcare],
        "solutions": [access],
        "partners": [certified, uncertified],
        "training_sessions": session_ids,
    }


def register_seed_cli(app: Flask) -> None:
    @app.cli.command("seed-demo")
    def seed_demo() -> None:
        """Load demo partners, certifications and training sessions."""
        created = seed_directory(get_db())
        click.echo(
            f"Seeded {len(created['partners'])} partners and {len(created['training_sessions'])} training sessions."
        )
