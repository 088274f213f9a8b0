from fastapi.testclient import TestClient

from fitclub.main import app

from helpers import new_member

client = TestClient(app)


def test_weight_crud_and_listing():
    _, headers = new_member(client)
    client.put('/api/user/profile', headers=headers, json={'height': 180})
    first = client.post('/api/user/weight', headers=headers, json={'weight': 81, 'notes': 'morning'})
    assert first.status_code == 201
    assert first.json()['bmi'] == 25.0
    assert first.json()['bmi_category'] == 'Overweight'
    second = client.post('/api/user/weight', headers=headers, json={'weight': 79.5})
    wid = second.json()['id']

    listing = client.get('/api/user/weight', headers=headers, params={'limit': 1})
    assert listing.status_code == 200
    body = listing.json()
    assert len(body['weights']) == 1
    assert body['weights'][0]['id'] == wid
    assert body['pagination'] == {'total': 2, 'limit': 1, 'offset': 0, 'has_more': True}

    upd = client.put(f'/api/user/weight/{wid}', headers=headers, json={'notes': 'after run'})
    assert upd.status_code == 200
    assert upd.json()['weight'] == 79.5
    assert upd.json()['notes'] == 'after run'

    assert client.delete(f'/api/user/weight/{wid}', headers=headers).status_code == 200
    r = client.get(f'/api/user/weight/{wid}', headers=headers)
    assert r.status_code == 404
    assert r.json()['detail'] == 'Weight entry not found'


def test_weight_without_height_has_no_bmi():
    _, headers = new_member(client)
    r = client.post('/api/user/weight', headers=headers, json={'weight': 60})
    assert r.json()['bmi'] is None
    assert client.post('/api/user/weight', headers=headers, json={'weight': 0}).status_code == 422


def test_weight_entries_are_owner_scoped():
    _, owner = new_member(client)
    _, other = new_member(client)
    wid = client.post('/api/user/weight', headers=owner, json={'weight': 70}).json()['id']
    assert client.get(f'/api/user/weight/{wid}', headers=other).status_code == 404
    assert client.put(f'/api/user/weight/{wid}', headers=other, json={'weight': 1}).status_code == 404
    assert client.delete(f'/api/user/weight/{wid}', headers=other).status_code == 404
    assert client.get(f'/api/user/weight/{wid}', headers=owner).json()['weight'] == 70


def test_null_weight_in_update_is_ignored():
    _, headers = new_member(client)
    wid = client.post('/api/user/weight', headers=headers, json={'weight': 70, 'notes': 'gym scale'}).json()['id']
    r = client.put(f'/api/user/weight/{wid}', headers=headers, json={'weight': None, 'notes': None})
    assert r.status_code == 200, r.text
    assert r.json()['weight'] == 70
    assert r.json()['notes'] is None
