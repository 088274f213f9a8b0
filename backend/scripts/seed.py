"""CLI script to seed the backend DB with the admin account and sample programs.
Usage: python scripts/seed.py [--admin-password PASSWORD]

Running it again is safe: existing admin and programs are left untouched.
"""
import sys
import argparse
import json
import os
import pathlib
import secrets
from typing import Optional
# Ensure `backend/` is on sys.path so `fitclub` package imports work when running this script directly
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
from sqlmodel import Session
from fitclub import models, repositories
from fitclub.config import settings
from fitclub.database import atomic, create_db_and_tables, engine
from fitclub.services import PWD_CTX

ADMIN_EMAIL = 'admin@blackburnfitness.com'

SAMPLE_PROGRAMS = [
    {
        'name': 'Strength Builder Pro',
        'description': 'Build muscle and increase strength with our comprehensive program',
        'price': 99000,
        'duration': 84,
        'category': 'Strength Training',
        'features': ['Personal trainer guidance', 'Custom workout plans', 'Progress tracking', 'Nutrition guidance', '24/7 support'],
    },
    {
        'name': 'Fat Burn Accelerator',
        'description': 'High-intensity workouts designed for maximum fat loss',
        'price': 79000,
        'duration': 56,
        'category': 'Weight Loss',
        'features': ['HIIT workouts', 'Cardio programs', 'Diet plans', 'Weekly check-ins'],
    },
    {
        'name': 'Athletic Performance',
        'description': 'Elite training for serious athletes and competitors',
        'price': 149000,
        'duration': 112,
        'category': 'Athletic Performance',
        'features': ['Sport-specific training', 'Performance analytics', 'Recovery protocols', 'Mental coaching'],
    },
    {
        'name': 'Wellness & Mobility',
        'description': 'Focus on flexibility, recovery, and overall wellness',
        'price': 49000,
        'duration': 42,
        'category': 'Wellness',
        'features': ['Yoga sessions', 'Stretching routines', 'Meditation guidance', 'Stress management'],
    },
]


def seed(session: Session, admin_password: str) -> dict:
    """Create the admin (with profile and wallet) and any missing sample programs.

    Returns a summary with the admin id, whether it was created, and the
    names of programs created in this run.
    """
    user_repo = repositories.UserRepository(session)
    program_repo = repositories.ProgramRepository(session)
    admin = user_repo.get_by_email(ADMIN_EMAIL)
    admin_created = admin is None
    created_programs = []
    with atomic(session):
        if admin is None:
            admin = user_repo.add(models.User(
                email=ADMIN_EMAIL,
                username='admin',
                first_name='Admin',
                last_name='User',
                password_hash=PWD_CTX.hash(admin_password),
                role=models.Role.ADMIN,
            ), commit=False)
            session.add(models.Profile(user_id=admin.id, is_onboarded=True))
            repositories.WalletRepository(session).get_or_create(admin.id, settings.DEFAULT_CURRENCY)
        for sample in SAMPLE_PROGRAMS:
            if program_repo.get_by_name(sample['name']):
                continue
            program_repo.add(models.Program(**{**sample, 'features': json.dumps(sample['features'])}), commit=False)
            created_programs.append(sample['name'])
    return {'admin_id': admin.id, 'admin_created': admin_created, 'created_programs': created_programs}


def main(admin_password: Optional[str] = None):
    """Seed the configured database and print what was created."""
    create_db_and_tables()
    password = admin_password or os.getenv('ADMIN_PASSWORD') or secrets.token_urlsafe(12)
    with Session(engine) as session:
        result = seed(session, password)
    if result['admin_created']:
        print(f'Admin user created: {ADMIN_EMAIL} (id {result["admin_id"]})')
        print(f'Admin password: {password}')
    else:
        print(f'Admin user already exists: {ADMIN_EMAIL} (id {result["admin_id"]})')
    for name in result['created_programs']:
        print(f'Created program: {name}')
    print(f'Seeding completed, {len(result["created_programs"])} programs created')


if __name__ == '__main__':
    parser = argparse.ArgumentParser()
    parser.add_argument('--admin-password', help='Password for a newly created admin account')
    args = parser.parse_args()
    main(admin_password=args.admin_password)
