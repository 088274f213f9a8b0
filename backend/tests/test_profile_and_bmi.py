from datetime import date

from fastapi.testclient import TestClient

from fitclub.main import app
from fitclub.utils import bmi

from helpers import new_member

client = TestClient(app)


def _onboarding_body(**overrides):
    body = {
        'first_name': 'Sara',
        'last_name': 'Karimi',
        'date_of_birth': '1990-05-01',
        'gender': 'FEMALE',
        'height': 175,
        'weight': 70,
        'activity_level': 'MODERATELY_ACTIVE',
        'fitness_goals': ['Lose fat', 'Run 10k'],
        'medical_conditions': [],
        'phone': '+989121234567',
        'emergency_contact': {'name': 'Ali', 'phone': '+989120000000', 'relationship': 'Brother'},
        'agreed_to_terms': True,
    }
    body.update(overrides)
    return body


def test_profile_update_is_partial():
    _, headers = new_member(client)
    r = client.put('/api/user/profile', headers=headers, json={
        'first_name': 'Reza',
        'height': 180,
        'fitness_goals': ['Build muscle', 'Improve posture'],
        'emergency_contact': {'name': 'Mina', 'phone': '0912', 'relationship': 'Sister'},
    })
    assert r.status_code == 200
    data = r.json()
    assert data['user']['first_name'] == 'Reza'
    assert data['profile']['height'] == 180
    assert data['profile']['fitness_goals'] == ['Build muscle', 'Improve posture']
    assert data['profile']['emergency_contact']['relationship'] == 'Sister'
    # omitted fields stay as they were
    r = client.put('/api/user/profile', headers=headers, json={'last_name': 'Ahmadi'})
    assert r.json()['user']['first_name'] == 'Reza'
    assert r.json()['profile']['height'] == 180


def test_onboarding_flow_creates_first_weight():
    _, headers = new_member(client)
    status = client.get('/api/user/onboarding', headers=headers).json()
    assert status['is_complete'] is False
    assert status['has_weight_entry'] is False

    r = client.post('/api/user/onboarding', headers=headers, json=_onboarding_body())
    assert r.status_code == 200, r.text
    body = r.json()
    assert body['profile']['is_onboarded'] is True
    assert body['profile']['age'] == date.today().year - 1990
    assert body['weight']['weight'] == 70
    assert body['weight']['notes'] == 'Initial weight'
    assert body['weight']['bmi'] == 22.9

    status = client.get('/api/user/onboarding', headers=headers).json()
    assert status['is_complete'] is True
    assert status['has_weight_entry'] is True


def test_onboarding_requires_terms_and_goals():
    _, headers = new_member(client)
    r = client.post('/api/user/onboarding', headers=headers, json=_onboarding_body(agreed_to_terms=False))
    assert r.status_code == 422
    r = client.post('/api/user/onboarding', headers=headers, json=_onboarding_body(fitness_goals=[]))
    assert r.status_code == 422
    assert client.get('/api/user/onboarding', headers=headers).json()['is_complete'] is False


def test_language_preference():
    _, headers = new_member(client)
    assert client.get('/api/user/language', headers=headers).json() == {'language': 'en'}
    r = client.put('/api/user/language', headers=headers, json={'language': 'fa'})
    assert r.status_code == 200
    assert client.get('/api/user/language', headers=headers).json() == {'language': 'fa'}
    assert client.put('/api/user/language', headers=headers, json={'language': 'x'}).status_code == 422


def test_bmi_calculation_endpoint():
    _, headers = new_member(client)
    r = client.post('/api/user/bmi', headers=headers, json={'weight': 70, 'height': 175})
    assert r.status_code == 200
    data = r.json()
    assert data['bmi'] == 22.9
    assert data['category'] == 'Normal weight'
    assert data['ideal_weight_range'] == {'min': 56.7, 'max': 76.3}
    assert data['weight_goal'] == 'You are in the healthy weight range'
    assert data['weight_difference'] is None

    r = client.post('/api/user/bmi', headers=headers, json={'weight': 50, 'height': 180})
    data = r.json()
    assert data['category'] == 'Underweight'
    assert data['weight_difference'] == -9.9
    assert data['weight_goal'] == 'Gain 9.9 kg to reach healthy weight'

    assert client.post('/api/user/bmi', headers=headers, json={'weight': 10, 'height': 175}).status_code == 422


def test_bmi_history_needs_height_and_reports_trend():
    _, headers = new_member(client)
    r = client.get('/api/user/bmi', headers=headers)
    assert r.status_code == 400
    assert 'Height not set' in r.json()['detail']

    client.post('/api/user/onboarding', headers=headers, json=_onboarding_body())
    client.post('/api/user/weight', headers=headers, json={'weight': 75})
    r = client.get('/api/user/bmi', headers=headers)
    assert r.status_code == 200
    data = r.json()
    assert [h['bmi'] for h in data['bmi_history']] == [24.5, 22.9]
    assert data['current_bmi'] == 24.5
    assert data['bmi_trend'] == 'increasing'
    assert data['bmi_change'] == 1.6
    assert data['user_height'] == 175
    assert data['pagination']['total'] == 2


def test_bmi_helpers():
    assert bmi.calculate_bmi(90, 180) == 27.8
    assert bmi.bmi_category(18.4) == 'Underweight'
    assert bmi.bmi_category(25.0) == 'Overweight'
    assert bmi.bmi_category(30.0) == 'Obese'
    goal, diff = bmi.weight_goal(100, 180)
    assert goal.startswith('Lose')
    assert diff > 0
    assert bmi.bmi_trend([22.0]) == (None, None)
    assert bmi.bmi_trend([22.0, 22.3]) == ('stable', -0.3)
    assert bmi.bmi_trend([21.0, 22.0]) == ('decreasing', -1.0)
