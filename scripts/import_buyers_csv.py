"""Import buyer leads from a CSV file on disk.

Runs the same pipeline as the upload endpoint, owned by an existing user.

Usage:
    python scripts/import_buyers_csv.py --owner-email agent@example.com buyers.csv
"""

import argparse
import sys
from pathlib import Path

# Add parent to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlalchemy import select

from buyer_intake.csv_import import decode_upload, import_csv
from buyer_intake.database import SessionLocal, init_db
from buyer_intake.errors import LeadIntakeError
from buyer_intake.models import User


def main():
    parser = argparse.ArgumentParser(description="Import buyer leads from CSV")
    parser.add_argument("path", type=Path, help="CSV file to import")
    parser.add_argument("--owner-email", required=True, help="Email of the user who will own the buyers")
    args = parser.parse_args()

    init_db()
    db = SessionLocal()
    try:
        owner = db.scalar(select(User).where(User.email == args.owner_email.lower()))
        if owner is None:
            print(f"No user with email {args.owner_email}")
            sys.exit(1)

        try:
            text = decode_upload(args.path.name, "text/csv", args.path.read_bytes())
            result = import_csv(db, owner, text)
        except LeadIntakeError as e:
            print(f"Import failed: {e.message}")
            sys.exit(1)

        print(result.message)
        print(f"  Total rows: {result.total_count}")
        print(f"  Valid:      {result.valid_count}")
        print(f"  Imported:   {result.imported}")
        for error in result.errors:
            print(f"  Row {error.row}: {error.message}")
        if result.has_more_errors:
            print("  ... more errors not shown")
    finally:
        db.close()


if __name__ == "__main__":
    main()
