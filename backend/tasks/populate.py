"""
Seed Data Script

Writes the default settings documents and a starter subject catalog into
Firestore. Safe to run repeatedly: existing settings documents and
subjects with the same code are left untouched.

Usage:
    python -m tasks.populate              # Write missing defaults
    python -m tasks.populate --dry-run    # Show what would be written
"""

import argparse
from datetime import datetime
from typing import Dict, Any

from core.calendar import utc_timestamp
from services.settings import (
    DEFAULT_GENERAL_SETTINGS,
    DEFAULT_LINE_SETTINGS,
    DEFAULT_MAKEUP_SETTINGS,
    get_settings_service,
)
from services.subjects import get_subject_service

STARTER_SUBJECTS = [
    {
        "name": "Scratch Programming",
        "code": "SCR101",
        "category": "Coding",
        "level": "Beginner",
        "ageRange": {"min": 7, "max": 10},
        "color": "#F59E0B",
        "description": "Block-based programming with games and animations",
    },
    {
        "name": "Python for Kids",
        "code": "PY101",
        "category": "Coding",
        "level": "Intermediate",
        "ageRange": {"min": 10, "max": 15},
        "color": "#3B82F6",
        "description": "Text-based programming fundamentals with Python",
    },
    {
        "name": "Robotics Fundamentals",
        "code": "ROB101",
        "category": "Robotics",
        "level": "Beginner",
        "ageRange": {"min": 8, "max": 12},
        "color": "#10B981",
        "description": "Build and program simple robots",
    },
    {
        "name": "AI Explorers",
        "code": "AI101",
        "category": "AI",
        "level": "Beginner",
        "ageRange": {"min": 10, "max": 15},
        "color": "#8B5CF6",
        "description": "Hands-on introduction to machine learning ideas",
    },
]


def seed_defaults(dry_run: bool = False) -> Dict[str, Any]:
    """
    Write missing settings documents and starter subjects.

    Returns:
        Dict with the settings documents and subject codes created
    """
    print("=" * 60)
    print("[Seed] Tutoring School Seed Data")
    print("=" * 60)
    print(f"Dry run: {dry_run}")
    print(f"Started: {datetime.now()}")
    print("=" * 60)

    stats = {"settings": [], "subjects": [], "skipped": []}

    settings = get_settings_service()
    defaults = {
        settings.GENERAL_DOC: DEFAULT_GENERAL_SETTINGS,
        settings.MAKEUP_DOC: DEFAULT_MAKEUP_SETTINGS,
        settings.LINE_DOC: DEFAULT_LINE_SETTINGS,
    }

    print("\n[1/2] Settings documents...")
    for name, data in defaults.items():
        doc_ref = settings.db.collection(settings.SETTINGS_COLLECTION).document(name)
        if doc_ref.get().exists:
            stats["skipped"].append(f"settings/{name}")
            print(f"  - settings/{name}: exists, skipped")
            continue
        if not dry_run:
            doc_ref.set({**data, "updatedAt": utc_timestamp(), "updatedBy": "seed"})
        stats["settings"].append(name)
        print(f"  - settings/{name}: {'would write' if dry_run else 'written'}")

    print("\n[2/2] Starter subjects...")
    subjects = get_subject_service()
    for subject in STARTER_SUBJECTS:
        if subjects.check_subject_code_exists(subject["code"]):
            stats["skipped"].append(f"subjects/{subject['code']}")
            print(f"  - {subject['code']}: exists, skipped")
            continue
        if not dry_run:
            subjects.create_subject(dict(subject))
        stats["subjects"].append(subject["code"])
        print(f"  - {subject['code']}: {'would create' if dry_run else 'created'}")

    print("\n" + "=" * 60)
    print("SEED COMPLETE")
    print("=" * 60)
    print(f"Settings written: {len(stats['settings'])}")
    print(f"Subjects created: {len(stats['subjects'])}")
    print(f"Skipped: {len(stats['skipped'])}")
    print("=" * 60)
    return stats


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Seed Firestore with default settings and starter subjects"
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print what would be written without touching Firestore"
    )

    args = parser.parse_args()

    try:
        seed_defaults(dry_run=args.dry_run)
    except Exception as e:
        print(f"ERROR: Seeding failed: {e}")
        print("\nMake sure you have:")
        print("1. Downloaded your service account key from Firebase Console")
        print("2. Saved it as 'serviceAccountKey.json' in the backend folder")
        import traceback
        traceback.print_exc()


if __name__ == "__main__":
    main()
