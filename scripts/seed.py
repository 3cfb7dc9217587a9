# scripts/seed.py

import os
import sys
import argparse

from dotenv import load_dotenv
from sqlmodel import Session, select

# Ensure root path for relative imports
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.database import create_db_and_tables, engine
from core.security import create_token_for_user
from models.models import (
    BillingAnchor,
    Business,
    BusinessStatus,
    Membership,
    MembershipStatus,
    Plan,
    PricingType,
    User,
)

# ✅ Load environment variables
load_dotenv()


def _get_or_create_user(session: Session, email: str, full_name: str, is_platform_admin: bool = False) -> User:
    user = session.exec(select(User).where(User.email == email)).first()
    if not user:
        user = User(email=email, full_name=full_name, is_platform_admin=is_platform_admin, is_active=True)
        session.add(user)
        session.commit()
        session.refresh(user)
        print(f"✅ Added user {email}")
    return user


def seed_dev_data():
    """Seed development database with a demo winery, its memberships and plans."""
    print("🌱 Seeding development data...")
    create_db_and_tables()

    with Session(engine) as session:
        # -----------------------------
        # 👑 Platform Admin + Owner
        # -----------------------------
        admin = _get_or_create_user(session, "admin@demo.com", "Platform Admin", is_platform_admin=True)
        owner = _get_or_create_user(session, "owner@demo.com", "Demo Owner")

        # -----------------------------
        # 🍷 Demo Winery
        # -----------------------------
        business = session.exec(select(Business).where(Business.slug == "demo-winery")).first()
        if not business:
            business = Business(
                name="Demo Winery",
                slug="demo-winery",
                contact_email=owner.email,
                owner_id=owner.id,
                status=BusinessStatus.CREATED.value,
            )
            session.add(business)
            session.commit()
            session.refresh(business)
            print("✅ Created Demo Winery")

        # -----------------------------
        # 🧾 Memberships (one per billing model)
        # -----------------------------
        membership_specs = [
            ("rolling-club", "Rolling Club", BillingAnchor.IMMEDIATE, None, True),
            ("first-of-month", "First of the Month Club", BillingAnchor.NEXT_INTERVAL, 1, True),
            ("harvest-club", "Harvest Club", BillingAnchor.NEXT_INTERVAL, 15, False),
        ]
        for slug, name, anchor, day, charge_now in membership_specs:
            membership = session.exec(
                select(Membership).where(Membership.business_id == business.id, Membership.slug == slug)
            ).first()
            if membership:
                continue
            membership = Membership(
                business_id=business.id,
                name=name,
                slug=slug,
                status=MembershipStatus.ACTIVE.value,
                billing_anchor=anchor.value,
                cohort_billing_day=day,
                charge_immediately=charge_now,
            )
            session.add(membership)
            session.commit()
            session.refresh(membership)

            # Dynamic plans need no Stripe objects until a price is applied
            session.add(
                Plan(
                    membership_id=membership.id,
                    business_id=business.id,
                    name=f"{name} - 3 bottles",
                    pricing_type=PricingType.DYNAMIC.value,
                )
            )
            session.commit()
            print(f"✅ Added membership {slug} with a dynamic plan")

        print("🔑 Admin token:", create_token_for_user(admin))
        print("🔑 Owner token:", create_token_for_user(owner))
        print("🌱 Development data seeding complete.")


def seed_staging_data():
    """Seed staging database with only a platform admin."""
    print("🌱 Seeding staging data...")
    create_db_and_tables()

    with Session(engine) as session:
        admin = _get_or_create_user(session, "staging-admin@wineclub.com", "Staging Admin", is_platform_admin=True)
        print("🔑 Admin token:", create_token_for_user(admin))

    print("🌱 Staging data seeding complete.")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Seed the wine club database.")
    parser.add_argument(
        "--env",
        choices=["dev", "staging"],
        default="dev",
        help="Select environment to seed (dev or staging)",
    )
    args = parser.parse_args()

    if args.env == "dev":
        seed_dev_data()
    elif args.env == "staging":
        seed_staging_data()
