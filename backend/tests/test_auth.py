import time
import uuid

from fastapi.testclient import TestClient
from sqlmodel import Session, select

from fitclub import models
from fitclub.config import settings
from fitclub.database import engine
from fitclub.main import app
from fitclub.utils import telegram

from helpers import auth, login, new_member, referral_code_for, register, set_role, unique, wallet

client = TestClient(app)


def test_signup_login_and_fetch_profile():
    user = register(client)
    assert user['username'].startswith('user_')
    assert 'created_at' in user
    r = client.post('/api/auth/login', json={'email': user['email'], 'password': user['password']})
    assert r.status_code == 200
    body = r.json()
    assert body['token_type'] == 'bearer'
    assert 'password_hash' not in body['user']
    me = client.get('/api/user/profile', headers=auth(body['access_token']))
    assert me.status_code == 200
    assert me.json()['user']['id'] == user['id']
    # every new account gets a profile and an empty wallet
    assert me.json()['profile']['is_onboarded'] is False
    assert wallet(client, auth(body['access_token']))['wallet']['balance'] == 0


def test_signup_rejects_duplicates_and_bad_input():
    user = register(client)
    dup_email = client.post('/api/auth/signup', json={'email': user['email'], 'username': unique(), 'password': 'secret123'})
    assert dup_email.status_code == 400
    assert dup_email.json()['detail'] == 'User with this email already exists'
    dup_name = client.post('/api/auth/signup', json={'email': f'{unique()}@example.com', 'username': user['username'], 'password': 'secret123'})
    assert dup_name.status_code == 400
    short_pw = client.post('/api/auth/signup', json={'email': f'{unique()}@example.com', 'username': unique(), 'password': '123'})
    assert short_pw.status_code == 422
    bad_ref = client.post('/api/auth/signup', json={
        'email': f'{unique()}@example.com', 'username': unique(), 'password': 'secret123', 'referral_code': 'NOPE0000',
    })
    assert bad_ref.status_code == 400
    assert bad_ref.json()['detail'] == 'Invalid referral code'


def test_signup_with_referral_credits_referrer():
    referrer, ref_headers = new_member(client)
    code = referral_code_for(client, ref_headers)
    # codes are matched case-insensitively
    invited = register(client, referral_code=code.lower())
    data = wallet(client, ref_headers)
    assert data['wallet']['balance'] == settings.REFERRAL_SIGNUP_BONUS
    credit = data['transactions'][0]
    assert credit['type'] == 'CREDIT'
    assert credit['reference_type'] == 'referral'
    assert credit['reference_id'] == str(invited['id'])
    assert invited['username'] in credit['description']
    with Session(engine) as session:
        referral = session.exec(select(models.Referral).where(models.Referral.referred_user_id == invited['id'])).one()
        assert referral.referrer_id == referrer['id']
        assert referral.status == 'active'
        assert referral.cashback_amount == settings.REFERRAL_SIGNUP_BONUS


def test_login_failures():
    user = register(client)
    wrong = client.post('/api/auth/login', json={'email': user['email'], 'password': 'wrong-password'})
    assert wrong.status_code == 401
    missing_id = client.post('/api/auth/login', json={'password': 'secret123'})
    assert missing_id.status_code == 422
    with Session(engine) as session:
        row = session.get(models.User, user['id'])
        row.is_active = False
        session.add(row)
        session.commit()
    inactive = client.post('/api/auth/login', json={'email': user['email'], 'password': user['password']})
    assert inactive.status_code == 401


def test_protected_routes_require_valid_token():
    r = client.get('/api/user/profile')
    assert r.status_code in (401, 403)
    bad = client.get('/api/user/profile', headers=auth('not-a-token'))
    assert bad.status_code == 401


def test_admin_routes_require_admin_role():
    user, headers = new_member(client)
    assert client.get('/api/admin/users', headers=headers).status_code == 403
    set_role(user['id'], models.Role.SUPER_ADMIN)
    assert client.get('/api/admin/users', headers=headers).status_code == 200


def _telegram_payload(**overrides):
    data = {'id': uuid.uuid4().int % 10**9, 'first_name': 'Tele', 'username': unique('tg'), 'auth_date': int(time.time())}
    data.update(overrides)
    data['hash'] = telegram.sign(data, settings.TELEGRAM_BOT_TOKEN)
    return data


def test_telegram_login_creates_then_reuses_account():
    payload = _telegram_payload()
    first = client.post('/api/auth/telegram', json=payload)
    assert first.status_code == 200, first.text
    user = first.json()['user']
    assert user['telegram_id'] == str(payload['id'])
    assert user['username'] == payload['username']
    again = client.post('/api/auth/telegram', json=payload)
    assert again.status_code == 200
    assert again.json()['user']['id'] == user['id']
    profile = client.get('/api/user/profile', headers=auth(again.json()['access_token']))
    assert profile.status_code == 200


def test_telegram_login_rejects_bad_or_stale_signatures():
    tampered = _telegram_payload()
    tampered['first_name'] = 'Mallory'
    assert client.post('/api/auth/telegram', json=tampered).status_code == 401
    stale = _telegram_payload(auth_date=int(time.time()) - 7200)
    r = client.post('/api/auth/telegram', json=stale)
    assert r.status_code == 401
    assert 'too old' in r.json()['detail']


def test_login_by_telegram_id_with_password():
    user, headers = new_member(client)
    with Session(engine) as session:
        row = session.get(models.User, user['id'])
        row.telegram_id = unique('tgid')
        telegram_id = row.telegram_id
        session.add(row)
        session.commit()
    r = client.post('/api/auth/login', json={'telegram_id': telegram_id, 'password': user['password']})
    assert r.status_code == 200
    assert login(client, user)
