"""Seed a demo agent and a few sample buyer leads.

Usage:
    python scripts/seed_buyers.py
    python scripts/seed_buyers.py --email agent@example.com
"""

import argparse
import sys
from pathlib import Path

# Add parent to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlalchemy import select

from buyer_intake.buyers import create_buyer
from buyer_intake.database import SessionLocal, init_db
from buyer_intake.models import Buyer, User, utcnow


# =============================================================================
# Sample data
# =============================================================================

SAMPLE_BUYERS = [
    {
        "fullName": "John Doe",
        "email": "john@example.com",
        "phone": "9876543210",
        "city": "Chandigarh",
        "propertyType": "Apartment",
        "bhk": "3",
        "purpose": "Buy",
        "budgetMin": 5000000,
        "budgetMax": 7500000,
        "timeline": "3-6m",
        "source": "Website",
        "tags": ["first-time", "loan-approved"],
    },
    {
        "fullName": "Priya Sharma",
        "phone": "9812345678",
        "city": "Mohali",
        "propertyType": "Villa",
        "bhk": "4",
        "purpose": "Buy",
        "budgetMin": 15000000,
        "timeline": "0-3m",
        "source": "Referral",
        "status": "Qualified",
    },
    {
        "fullName": "Aman Gill",
        "email": "aman.gill@example.com",
        "phone": "9988776655",
        "city": "Zirakpur",
        "propertyType": "Office",
        "purpose": "Rent",
        "timeline": "Exploring",
        "source": "Walk-in",
        "notes": "Looking for 800-1000 sq ft near the highway",
    },
]


def get_or_create_user(db, email: str) -> User:
    user = db.scalar(select(User).where(User.email == email))
    if user is None:
        user = User(email=email, name="Demo Agent", email_verified=utcnow())
        db.add(user)
        db.commit()
        print(f"Created user {email}")
    return user


def main():
    parser = argparse.ArgumentParser(description="Seed demo buyer leads")
    parser.add_argument("--email", default="demo@example.com", help="Owner of the seeded buyers")
    args = parser.parse_args()

    init_db()
    db = SessionLocal()
    try:
        owner = get_or_create_user(db, args.email.lower())
        existing = set(db.scalars(select(Buyer.phone).where(Buyer.owner_id == owner.id)))

        created = 0
        for payload in SAMPLE_BUYERS:
            if payload["phone"] in existing:
                print(f"  Skipping {payload['fullName']} (already seeded)")
                continue
            buyer = create_buyer(db, owner, payload)
            print(f"  Created {buyer.full_name} ({buyer.id})")
            created += 1

        print(f"\nSeeded {created} buyers for {owner.email}")
    finally:
        db.close()


if __name__ == "__main__":
    main()
