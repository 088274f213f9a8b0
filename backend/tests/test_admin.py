import csv
import io

from fastapi.testclient import TestClient

from fitclub.main import app
from fitclub.utils import export

from helpers import create_program, new_admin, new_member, unique

client = TestClient(app)


def _payment(headers, program_id, amount, **extra):
    r = client.post('/api/payments', headers=headers, json={'program_id': program_id, 'amount': amount, **extra})
    assert r.status_code == 201, r.text
    return r.json()


def test_list_users_with_filters_and_stats():
    _, admin = new_admin(client)
    member, member_headers = new_member(client)
    client.post('/api/user/workouts', headers=member_headers, json={'name': 'Walk', 'type': 'cardio', 'duration': 20})

    r = client.get('/api/admin/users', headers=admin, params={'search': member['username']})
    assert r.status_code == 200
    body = r.json()
    assert body['pagination']['total'] == 1
    row = body['users'][0]
    assert row['email'] == member['email']
    assert 'password_hash' not in row
    assert row['counts'] == {'payments': 0, 'workouts': 1}
    assert row['wallet'] == {'balance': 0}
    assert body['stats']['admins'] >= 1

    admins = client.get('/api/admin/users', headers=admin, params={'role': 'ADMIN', 'limit': 100}).json()['users']
    assert all(u['role'] == 'ADMIN' for u in admins)
    assert client.get('/api/admin/users', headers=admin, params={'status': 'unknown'}).status_code == 422


def test_program_crud_and_discounts():
    _, admin = new_admin(client)
    program = create_program(client, admin, price=100000)
    assert program['original_price'] is None
    assert program['subscription_count'] == 0

    dup = client.post('/api/admin/programs', headers=admin, json={
        'name': program['name'], 'description': 'again', 'price': 1, 'duration': 1,
    })
    assert dup.status_code == 400
    assert dup.json()['detail'] == 'Program with this name already exists'

    r = client.put(f"/api/admin/programs/{program['id']}", headers=admin, json={'discounted_price': 80000, 'discount_percentage': 20})
    assert r.status_code == 200
    assert (r.json()['price'], r.json()['original_price'], r.json()['discount_percentage']) == (80000, 100000, 20)

    # a second discount is still measured against the original price
    r = client.put(f"/api/admin/programs/{program['id']}", headers=admin, json={'discounted_price': 70000, 'discount_percentage': 30})
    assert r.json()['original_price'] == 100000

    r = client.put(f"/api/admin/programs/{program['id']}", headers=admin, json={'price': 90000, 'features': ['Coaching']})
    assert (r.json()['price'], r.json()['original_price'], r.json()['discount_percentage']) == (90000, None, None)
    assert r.json()['features'] == ['Coaching']

    listing = client.get('/api/admin/programs', headers=admin).json()
    assert program['id'] in [p['id'] for p in listing['programs']]
    assert listing['stats']['total'] == listing['stats']['active'] + listing['stats']['inactive']

    assert client.delete(f"/api/admin/programs/{program['id']}", headers=admin).status_code == 200
    assert client.get(f"/api/admin/programs/{program['id']}", headers=admin).status_code == 404


def test_program_with_payments_cannot_be_deleted():
    _, admin = new_admin(client)
    program = create_program(client, admin, duration=30)
    member, headers = new_member(client)
    payment = _payment(headers, program['id'], 100000)

    r = client.delete(f"/api/admin/programs/{program['id']}", headers=admin)
    assert r.status_code == 400
    assert r.json()['detail'] == 'Cannot delete program with existing payments/subscriptions'

    client.put(f"/api/admin/payments/{payment['id']}", headers=admin, json={'status': 'APPROVED'})
    detail = client.get(f"/api/admin/programs/{program['id']}", headers=admin).json()
    assert detail['stats'] == {'pending': 0, 'approved': 1, 'revenue': 100000}

    subs = client.get(f"/api/admin/programs/{program['id']}/subscriptions", headers=admin).json()['subscriptions']
    assert subs[0]['user']['email'] == member['email']
    assert subs[0]['end_date'] > subs[0]['start_date']


def test_payment_listing_sorting_and_summary():
    _, admin = new_admin(client)
    program = create_program(client, admin)
    _, headers = new_member(client)
    _payment(headers, program['id'], 300)
    _payment(headers, program['id'], 100)

    r = client.get('/api/admin/payments', headers=admin, params={'program_id': program['id'], 'sort_by': 'amount', 'sort_order': 'asc'})
    assert r.status_code == 200
    body = r.json()
    assert [p['amount'] for p in body['payments']] == [100, 300]
    assert body['payments'][0]['program']['id'] == program['id']
    assert body['summary']['total'] == 2
    assert body['summary']['pending'] == 2
    assert body['summary']['total_amount'] == 400
    assert client.get('/api/admin/payments', headers=admin, params={'sort_by': 'password'}).status_code == 422


def test_bulk_status_update():
    _, admin = new_admin(client)
    program = create_program(client, admin)
    _, headers = new_member(client)
    ids = [_payment(headers, program['id'], 10)['id'], _payment(headers, program['id'], 20)['id']]

    missing = client.put('/api/admin/payments', headers=admin, json={'payment_ids': ids + [10**9], 'status': 'APPROVED'})
    assert missing.status_code == 404
    assert str(10**9) in missing.json()['detail']
    assert client.get(f'/api/admin/payments/{ids[0]}', headers=admin).json()['status'] == 'PENDING'

    r = client.put('/api/admin/payments', headers=admin, json={'payment_ids': ids, 'status': 'REJECTED', 'admin_notes': 'duplicate'})
    assert r.status_code == 200
    assert r.json()['updated_count'] == 2
    for pid in ids:
        assert client.get(f'/api/admin/payments/{pid}', headers=admin).json()['admin_notes'] == 'duplicate'


def test_admin_delete_payment_depends_on_status():
    _, admin = new_admin(client)
    program = create_program(client, admin)
    _, headers = new_member(client)
    pending = _payment(headers, program['id'], 10)
    approved = _payment(headers, program['id'], 20)
    client.put(f"/api/admin/payments/{approved['id']}", headers=admin, json={'status': 'APPROVED'})

    r = client.delete(f"/api/admin/payments/{pending['id']}", headers=admin)
    assert r.json() == {'message': 'Payment deleted successfully'}
    assert client.get(f"/api/admin/payments/{pending['id']}", headers=admin).status_code == 404

    r = client.delete(f"/api/admin/payments/{approved['id']}", headers=admin)
    assert r.status_code == 200
    assert r.json()['payment']['status'] == 'REJECTED'
    assert r.json()['payment']['admin_notes'] == 'Payment cancelled by admin'


def test_csv_and_json_exports():
    _, admin = new_admin(client)
    category = unique('Cat')
    program = create_program(client, admin, category=category)
    member, headers = new_member(client)
    payment = _payment(headers, program['id'], 123)

    r = client.get('/api/admin/payments/export', headers=admin, params={'status': 'PENDING'})
    assert r.status_code == 200
    assert r.headers['content-type'].startswith('text/csv')
    assert 'payments_export_' in r.headers['content-disposition']
    rows = list(csv.reader(io.StringIO(r.text)))
    assert rows[0] == export.STANDARD_HEADERS
    row = dict(zip(rows[0], next(rw for rw in rows[1:] if rw[0] == str(payment['id']))))
    assert row['User Email'] == member['email']
    assert row['Program Category'] == category
    assert row['Status'] == 'PENDING'
    assert row['Receipt URL'] == 'N/A'
    assert row['User Name'] == 'N/A'

    data = client.get('/api/admin/payments/export', headers=admin, params={'format': 'json'}).json()
    assert data['total_records'] == len(data['payments'])
    assert payment['id'] in [p['id'] for p in data['payments']]
    assert client.get('/api/admin/payments/export', headers=admin, params={'format': 'xml'}).status_code == 422


def test_custom_export_selects_columns():
    _, admin = new_admin(client)
    program = create_program(client, admin, duration=30)
    _, headers = new_member(client)
    keep = _payment(headers, program['id'], 10)
    _payment(headers, program['id'], 20)

    r = client.post('/api/admin/payments/export', headers=admin, json={
        'payment_ids': [keep['id']], 'include_user_details': False,
    })
    assert r.status_code == 200
    assert 'payments_custom_export_' in r.headers['content-disposition']
    rows = list(csv.reader(io.StringIO(r.text)))
    assert rows[0] == export.custom_headers(False, True)
    assert 'User Email' not in rows[0]
    assert len(rows) == 2
    row = dict(zip(rows[0], rows[1]))
    assert row['Payment ID'] == str(keep['id'])
    assert row['Program Duration'] == '30 days'

    data = client.post('/api/admin/payments/export', headers=admin, json={'payment_ids': [keep['id']], 'format': 'json'}).json()
    assert [p['id'] for p in data['payments']] == [keep['id']]


def test_usage_stats_shape():
    _, admin = new_admin(client)
    r = client.get('/api/admin/usage-stats', headers=admin)
    assert r.status_code == 200
    stats = r.json()['stats']
    assert set(stats) == {'users', 'payments', 'programs', 'transactions', 'revenue', 'overview'}
    assert stats['users']['total'] >= 1
    assert stats['overview']['total_users'] == stats['users']['total']
    assert stats['programs']['total'] == stats['programs']['active'] + stats['programs']['inactive']
    _, member = new_member(client)
    assert client.get('/api/admin/usage-stats', headers=member).status_code == 403


def test_custom_export_with_empty_selection_is_empty():
    _, admin = new_admin(client)
    program = create_program(client, admin)
    _, headers = new_member(client)
    _payment(headers, program['id'], 10)

    rows = list(csv.reader(io.StringIO(client.post('/api/admin/payments/export', headers=admin, json={'payment_ids': []}).text)))
    assert rows == [export.custom_headers(True, True)]
    data = client.post('/api/admin/payments/export', headers=admin, json={'payment_ids': [], 'format': 'json'}).json()
    assert data['payments'] == []


def test_admin_user_search_escapes_wildcards():
    _, admin = new_admin(client)
    new_member(client)
    r = client.get('/api/admin/users', headers=admin, params={'search': '%'})
    assert r.status_code == 200
    assert r.json()['pagination']['total'] == 0
