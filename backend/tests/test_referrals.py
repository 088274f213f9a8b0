from fastapi.testclient import TestClient

from fitclub.config import settings
from fitclub.main import app

from helpers import new_member, referral_code_for

client = TestClient(app)


def test_referral_code_is_generated_once():
    _, headers = new_member(client)
    code = referral_code_for(client, headers)
    assert len(code) == 8
    assert code == code.upper()
    assert referral_code_for(client, headers) == code
    assert client.get('/api/referral', headers=headers).json()['referral_code'] == code


def test_validate_referral_code():
    _, headers = new_member(client)
    client.put('/api/user/profile', headers=headers, json={'first_name': 'Nima', 'last_name': 'Rahimi'})
    code = referral_code_for(client, headers)
    r = client.post('/api/referral/validate', json={'referral_code': code})
    assert r.status_code == 200
    assert r.json()['valid'] is True
    assert r.json()['message'] == 'Valid referral code from Nima Rahimi'

    bad = client.post('/api/referral/validate', json={'referral_code': 'ZZZZZZZZ'})
    assert bad.status_code == 404
    assert bad.json() == {'valid': False, 'detail': 'Invalid referral code'}


def test_referral_overview_and_user_referrals():
    referrer, headers = new_member(client)
    code = referral_code_for(client, headers)
    invited, invited_headers = new_member(client, referral_code=code)

    overview = client.get('/api/referral', headers=headers).json()
    assert overview['stats']['total_referrals'] == 1
    assert overview['stats']['paid_cashback'] == settings.REFERRAL_SIGNUP_BONUS
    assert overview['referrals'][0]['referred_user']['email'] == invited['email']

    mine = client.get('/api/user/referrals', headers=headers).json()
    assert mine['wallet']['balance'] == settings.REFERRAL_SIGNUP_BONUS
    assert mine['referred_by'] is None
    theirs = client.get('/api/user/referrals', headers=invited_headers).json()
    assert theirs['referred_by']['id'] == referrer['id']
    assert theirs['stats']['total_referrals'] == 0


def test_manual_referral_rules():
    user, headers = new_member(client)
    other, _ = new_member(client)
    assert client.post('/api/user/referrals', headers=headers, json={'referred_email': user['email']}).status_code == 400
    missing = client.post('/api/user/referrals', headers=headers, json={'referred_email': 'nobody@example.com'})
    assert missing.status_code == 404
    assert missing.json()['detail'] == 'User with this email not found'

    r = client.post('/api/user/referrals', headers=headers, json={'referred_email': other['email'], 'referred_name': 'Pal'})
    assert r.status_code == 201
    assert r.json()['referral']['referred_user']['id'] == other['id']
    assert r.json()['referral']['cashback_amount'] == 0

    dup = client.post('/api/user/referrals', headers=headers, json={'referred_email': other['email']})
    assert dup.status_code == 400
    assert dup.json()['detail'] == 'You have already referred this user'
