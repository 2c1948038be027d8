#!/usr/bin/env python3
"""
Set the geofence of a project.

Usage:
    python scripts/update_project_geofence.py PRJ-001 --lat 12.9716 --lng 77.5946 --radius 150
    python scripts/update_project_geofence.py PRJ-001 --lat 12.9716 --lng 77.5946 --radius 150 --lenient --variance 25
"""
import sys
import os
import argparse

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sitecrew.db import SessionLocal
from sitecrew.models.models import Project
from sitecrew.services.geofence import InvalidCoordinates, project_geofence, validate_coordinates
from sitecrew.services.time_rules import utc_now


def main():
    parser = argparse.ArgumentParser(description="Update a project's geofence")
    parser.add_argument("project", help="Project code or id")
    parser.add_argument("--lat", type=float, required=True)
    parser.add_argument("--lng", type=float, required=True)
    parser.add_argument("--radius", type=float, required=True, help="Radius in meters")
    parser.add_argument("--variance", type=float, default=None, help="Allowed variance in meters (0-1000)")
    parser.add_argument("--lenient", action="store_true", help="Disable strict mode")
    args = parser.parse_args()

    if args.radius <= 0:
        print("[ERROR] Radius must be greater than 0")
        return 1
    if args.variance is not None and not 0 <= args.variance <= 1000:
        print("[ERROR] Variance must be between 0 and 1000 meters")
        return 1

    db = SessionLocal()
    try:
        lat, lng = validate_coordinates(args.lat, args.lng)
        project = next((p for p in db.query(Project).all() if args.project in (p.code, str(p.id))), None)
        if not project:
            print(f"[ERROR] Project not found: {args.project}")
            return 1

        before = project_geofence(project).to_dict()
        project.geofence_lat = lat
        project.geofence_lng = lng
        project.geofence_radius_m = args.radius
        project.geofence_strict_mode = not args.lenient
        if args.variance is not None:
            project.geofence_allowed_variance_m = args.variance
        project.updated_at = utc_now()
        db.commit()

        after = project_geofence(project).to_dict()
        print(f"Project: {project.code or project.id} - {project.name}")
        print(f"  before: {before}")
        print(f"  after:  {after}")
        print("[OK] Geofence updated")
        return 0

    except InvalidCoordinates as e:
        print(f"[ERROR] {e}")
        return 1
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
