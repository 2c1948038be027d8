"""
Create the partial unique index that allows one in_progress task per employee.
Run scripts/fix_multiple_in_progress.py --yes first if existing rows conflict.
"""
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

try:
    from sitecrew.db import engine
    from sitecrew.models.models import SINGLE_ACTIVE_TASK_INDEX
    from sitecrew.services.maintenance import MaintenanceError, ensure_single_active_index
except Exception as e:
    print(f"ERROR: Failed to import database components: {e}")
    sys.exit(1)


def main():
    print("=" * 60)
    print(f"Creating index {SINGLE_ACTIVE_TASK_INDEX} on worker_task_assignments")
    print("=" * 60)
    print()
    try:
        created = ensure_single_active_index(engine)
    except MaintenanceError as e:
        print(f"[ERROR] {e}")
        return 1
    except Exception as e:
        print(f"[ERROR] Migration failed: {e}")
        import traceback
        traceback.print_exc()
        return 1
    if created:
        print(f"[OK] Index {SINGLE_ACTIVE_TASK_INDEX} created")
    else:
        print(f"[OK] Index {SINGLE_ACTIVE_TASK_INDEX} already exists")
    print()
    print("=" * 60)
    print("Migration completed")
    print("=" * 60)
    return 0


if __name__ == '__main__':
    exit(main())
