"""Shared helpers for the API tests: users, admins, programs and images."""

import io
import uuid

from PIL import Image
from sqlmodel import Session

from fitclub import models
from fitclub.database import engine


def unique(prefix: str = "user") -> str:
    return f"{prefix}_{uuid.uuid4().hex[:10]}"


def auth(token: str) -> dict:
    return {'Authorization': f'Bearer {token}'}


def register(client, referral_code=None, password='secret123') -> dict:
    username = unique()
    body = {'email': f'{username}@example.com', 'username': username, 'password': password}
    if referral_code:
        body['referral_code'] = referral_code
    r = client.post('/api/auth/signup', json=body)
    assert r.status_code == 201, r.text
    return {**r.json()['user'], 'password': password}


def login(client, user: dict) -> str:
    r = client.post('/api/auth/login', json={'email': user['email'], 'password': user['password']})
    assert r.status_code == 200, r.text
    return r.json()['access_token']


def new_member(client, referral_code=None):
    """Register a user and return `(user, auth headers)`."""
    user = register(client, referral_code=referral_code)
    return user, auth(login(client, user))


def set_role(user_id: int, role: models.Role) -> None:
    with Session(engine) as session:
        user = session.get(models.User, user_id)
        user.role = role
        session.add(user)
        session.commit()


def new_admin(client):
    user = register(client)
    set_role(user['id'], models.Role.ADMIN)
    return user, auth(login(client, user))


def create_program(client, admin_headers, **overrides) -> dict:
    body = {
        'name': unique('Program'),
        'description': 'Twelve weeks of progressive training',
        'price': 100000,
        'duration': 84,
        'category': 'Strength Training',
        'level': 'beginner',
        'features': ['Custom workout plans', 'Progress tracking'],
    }
    body.update(overrides)
    r = client.post('/api/admin/programs', json=body, headers=admin_headers)
    assert r.status_code == 201, r.text
    return r.json()


def referral_code_for(client, headers) -> str:
    r = client.post('/api/referral', headers=headers)
    assert r.status_code == 200, r.text
    return r.json()['referral_code']


def wallet(client, headers, **params) -> dict:
    r = client.get('/api/user/wallet', headers=headers, params=params)
    assert r.status_code == 200, r.text
    return r.json()


def image_bytes(fmt: str = "PNG") -> bytes:
    img = Image.new("RGB", (64, 32), "white")
    bio = io.BytesIO()
    img.save(bio, format=fmt)
    return bio.getvalue()
