#!/usr/bin/env python3
"""
Rewrite attendance day keys to UTC midnight of the project-local work day.
Rows that land on the same employee/project/day are merged into the oldest one.

Usage:
    python scripts/normalize_attendance_dates.py          # Dry run
    python scripts/normalize_attendance_dates.py --yes    # Apply changes
"""
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sitecrew.db import SessionLocal
from sitecrew.services.maintenance import find_unnormalized_attendance, repair_attendance_dates


def main():
    auto_confirm = '--yes' in sys.argv or '-y' in sys.argv
    print("=" * 80)
    print("NORMALIZE ATTENDANCE DATES")
    print("=" * 80)

    db = SessionLocal()
    try:
        pending = find_unnormalized_attendance(db)
        print(f"Attendance rows not at UTC midnight: {len(pending)}")
        if not pending:
            print("\n[OK] All attendance dates are normalized.")
            return 0

        result = repair_attendance_dates(db, apply=auto_confirm)
        for entry in result['updated']:
            print(f"  [UPDATE] {entry['id']}: {entry['from']} -> {entry['to']}")
        for entry in result['merged']:
            print(f"  [MERGE]  {entry['removed']} into {entry['into']} ({entry['date']})")

        if not auto_confirm:
            db.rollback()
            print("\n" + "=" * 80)
            print("This is a DRY RUN. No rows were changed.")
            print("To apply, run: python scripts/normalize_attendance_dates.py --yes")
            print("=" * 80)
            return 0

        db.commit()
        print("\n" + "=" * 80)
        print(f"[SUCCESS] Updated {len(result['updated'])} row(s), merged {len(result['merged'])} duplicate(s)")
        print("=" * 80)
        return 0

    except Exception as e:
        db.rollback()
        print(f"\n[ERROR] Error: {e}")
        import traceback
        traceback.print_exc()
        return 1
    finally:
        db.close()


if __name__ == '__main__':
    exit(main())
