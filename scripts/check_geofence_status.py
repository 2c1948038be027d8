#!/usr/bin/env python3
"""
Show the geofence configured on each project and optionally test a position.

Usage:
    python scripts/check_geofence_status.py
    python scripts/check_geofence_status.py --project PRJ-001 --lat 12.9716 --lng 77.5946 [--accuracy 20]
"""
import sys
import os
import argparse

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sitecrew.db import SessionLocal
from sitecrew.models.models import Project
from sitecrew.services.geofence import InvalidCoordinates, project_geofence, validate_coordinates
from sitecrew.services.maintenance import geofence_report


def print_project(project):
    geofence = project_geofence(project).to_dict()
    configured = project.geofence_lat is not None and project.geofence_lng is not None
    status = "configured" if configured else "NOT CONFIGURED (legacy location / defaults)"
    print(f"  {project.code or '-'}  {project.name}")
    print(f"    status:   {status}")
    print(f"    center:   {geofence['center']['latitude']}, {geofence['center']['longitude']}")
    print(f"    radius:   {geofence['radius']} m (+{geofence['allowed_variance']} m variance)")
    print(f"    strict:   {geofence['strict_mode']}")


def main():
    parser = argparse.ArgumentParser(description="Inspect project geofences")
    parser.add_argument("--project", help="Project code or id to inspect")
    parser.add_argument("--lat", type=float, help="Latitude to test")
    parser.add_argument("--lng", type=float, help="Longitude to test")
    parser.add_argument("--accuracy", type=float, default=None, help="GPS accuracy in meters")
    args = parser.parse_args()

    print("=" * 80)
    print("GEOFENCE STATUS")
    print("=" * 80)

    db = SessionLocal()
    try:
        query = db.query(Project)
        if args.project:
            projects = [p for p in query.all() if args.project in (p.code, str(p.id))]
            if not projects:
                print(f"\n[ERROR] Project not found: {args.project}")
                return 1
        else:
            projects = query.order_by(Project.name).all()

        print(f"Projects: {len(projects)}\n")
        for project in projects:
            print_project(project)

        if args.lat is None or args.lng is None:
            return 0

        lat, lng = validate_coordinates(args.lat, args.lng)
        print("\n" + "-" * 80)
        print(f"Testing position {lat}, {lng} (accuracy: {args.accuracy if args.accuracy is not None else 'n/a'})")
        for project in projects:
            result = geofence_report(project, lat, lng, args.accuracy)['result']
            marker = "[OK]" if result['is_valid'] else "[DENIED]"
            print(f"  {marker} {project.code or project.id}: {result['distance_m']} m, "
                  f"allowed {result['allowed_radius_m']} m - {result['message']}")
            if result['accuracy_warning']:
                print(f"       warning: {result['accuracy_warning']}")
        return 0

    except InvalidCoordinates as e:
        print(f"\n[ERROR] {e}")
        return 1
    except Exception as e:
        print(f"\n[ERROR] Error: {e}")
        import traceback
        traceback.print_exc()
        return 1
    finally:
        db.close()


if __name__ == '__main__':
    exit(main())
