#!/usr/bin/env python3
"""
Find employees with more than one in_progress task and pause all but the most
recently started one.

Usage:
    python scripts/fix_multiple_in_progress.py          # Dry run (shows what would change)
    python scripts/fix_multiple_in_progress.py --yes    # Actually pause the extra tasks
"""
import sys
import os

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sitecrew.db import SessionLocal
from sitecrew.services.maintenance import repair_multiple_in_progress


def main():
    auto_confirm = '--yes' in sys.argv or '-y' in sys.argv
    print("=" * 80)
    print("FIX MULTIPLE IN-PROGRESS TASKS")
    print("=" * 80)

    db = SessionLocal()
    try:
        report = repair_multiple_in_progress(db, apply=auto_confirm)
        if not report:
            print("\n[OK] Every employee has at most one task in progress. Nothing to fix.")
            return 0

        print(f"\nFound {len(report)} employee(s) with multiple tasks in progress:")
        for entry in report:
            print(f"  Employee {entry['employee_id']}")
            print(f"    [KEEP]  {entry['kept']}")
            for assignment_id in entry['paused']:
                print(f"    [PAUSE] {assignment_id}")

        if not auto_confirm:
            db.rollback()
            print("\n" + "=" * 80)
            print("This is a DRY RUN. No tasks were changed.")
            print("To apply, run: python scripts/fix_multiple_in_progress.py --yes")
            print("=" * 80)
            return 0

        db.commit()
        paused = sum(len(entry['paused']) for entry in report)
        print("\n" + "=" * 80)
        print(f"[SUCCESS] Paused {paused} task(s) for {len(report)} employee(s)")
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
