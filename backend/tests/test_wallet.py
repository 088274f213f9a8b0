from fastapi.testclient import TestClient
from sqlmodel import Session, select

from fitclub import models
from fitclub.database import engine
from fitclub.main import app

from helpers import new_admin, new_member, wallet

client = TestClient(app)


def _funded_member(amount=1000):
    """A member whose deposit request for `amount` has been approved."""
    user, headers = new_member(client)
    _, admin = new_admin(client)
    tx = client.post('/api/wallet/transactions', headers=headers, json={
        'type': 'DEPOSIT', 'amount': amount, 'receipt_url': '/uploads/receipts/deposit.png',
    }).json()
    r = client.put(f"/api/admin/wallet-transactions/{tx['id']}", headers=admin, json={'action': 'APPROVE'})
    assert r.status_code == 200, r.text
    return user, headers


def test_new_wallet_is_empty():
    _, headers = new_member(client)
    data = wallet(client, headers)
    assert data['wallet']['balance'] == 0
    assert data['wallet']['currency'] == 'IRT'
    assert data['transactions'] == []
    assert data['summary'] == {'total_earnings': 0, 'total_withdrawals': 0, 'available_balance': 0}


def test_withdrawal_checks_balance_then_minimum():
    _, headers = new_member(client)
    r = client.post('/api/user/wallet', headers=headers, json={'amount': 5, 'method': 'PAYPAL', 'account_details': 'me@example.com'})
    assert r.status_code == 400
    assert r.json()['detail'] == 'Insufficient balance'

    _, headers = _funded_member(100)
    r = client.post('/api/user/wallet', headers=headers, json={'amount': 5, 'method': 'PAYPAL', 'account_details': 'me@example.com'})
    assert r.status_code == 400
    assert r.json()['detail'] == 'Minimum withdrawal amount is 10'
    bad_method = client.post('/api/user/wallet', headers=headers, json={'amount': 50, 'method': 'CASH', 'account_details': 'x'})
    assert bad_method.status_code == 422


def test_withdrawal_debits_wallet_and_writes_ledger():
    _, headers = _funded_member(100)
    r = client.post('/api/user/wallet', headers=headers, json={
        'amount': 40, 'method': 'BANK_TRANSFER', 'account_details': 'IR00 0000', 'notes': 'rent',
    })
    assert r.status_code == 200
    body = r.json()
    assert body['new_balance'] == 60
    assert body['transaction']['amount'] == -40
    assert body['transaction']['type'] == 'DEBIT'
    assert body['transaction']['description'] == 'Withdrawal request via BANK_TRANSFER'

    data = wallet(client, headers)
    assert data['summary'] == {'total_earnings': 100, 'total_withdrawals': 40, 'available_balance': 60}
    debits = wallet(client, headers, type='DEBIT')
    assert [t['amount'] for t in debits['transactions']] == [-40]
    # the ledger always adds up to the balance
    assert sum(t['amount'] for t in data['transactions']) == data['wallet']['balance']


def test_wallet_request_validation():
    _, headers = new_member(client)
    r = client.post('/api/wallet/transactions', headers=headers, json={'type': 'DEPOSIT', 'amount': 10})
    assert r.status_code == 400
    assert r.json()['detail'] == 'Receipt URL is required for deposits'
    r = client.post('/api/wallet/transactions', headers=headers, json={'type': 'WITHDRAWAL', 'amount': 10})
    assert r.status_code == 400
    assert r.json()['detail'] == 'Card number and card holder name are required for withdrawals'
    r = client.post('/api/wallet/transactions', headers=headers, json={
        'type': 'WITHDRAWAL', 'amount': 10, 'card_number': '6037991234567890', 'card_holder_name': 'Test User',
    })
    assert r.status_code == 400
    assert r.json()['detail'] == 'Insufficient balance'


def test_deposit_approval_credits_wallet_and_is_audited():
    user, headers = new_member(client)
    admin_user, admin = new_admin(client)
    tx = client.post('/api/wallet/transactions', headers=headers, json={
        'type': 'DEPOSIT', 'amount': 300, 'receipt_url': '/uploads/receipts/d.png',
    })
    assert tx.status_code == 201
    tx = tx.json()
    assert tx['status'] == 'PENDING'
    assert [t['id'] for t in client.get('/api/wallet/transactions', headers=headers).json()['transactions']] == [tx['id']]

    pending = client.get('/api/admin/wallet-transactions', headers=admin, params={'status': 'PENDING'}).json()['transactions']
    mine = [t for t in pending if t['id'] == tx['id']]
    assert mine[0]['user']['email'] == user['email']

    r = client.put(f"/api/admin/wallet-transactions/{tx['id']}", headers=admin, json={'action': 'APPROVE', 'admin_notes': 'verified'})
    assert r.status_code == 200
    assert r.json()['transaction']['status'] == 'APPROVED'
    assert r.json()['transaction']['processed_by'] == admin_user['id']

    data = wallet(client, headers)
    assert data['wallet']['balance'] == 300
    assert data['transactions'][0]['description'] == 'DEPOSIT - Deposit approved'
    assert data['transactions'][0]['reference_type'] == 'wallet_transaction'

    again = client.put(f"/api/admin/wallet-transactions/{tx['id']}", headers=admin, json={'action': 'REJECT'})
    assert again.status_code == 400
    assert again.json()['detail'] == 'Transaction already processed'

    with Session(engine) as session:
        rows = session.exec(select(models.AdminAudit).where(
            models.AdminAudit.target == 'WalletTransaction', models.AdminAudit.target_id == str(tx['id'])
        )).all()
        assert [a.action for a in rows] == ['WALLET_TRANSACTION_APPROVE']
        assert rows[0].admin_id == admin_user['id']


def test_withdrawal_request_approval_and_rejection():
    _, headers = _funded_member(500)
    _, admin = new_admin(client)
    card = {'card_number': '6037991234567890', 'card_holder_name': 'Test User'}
    first = client.post('/api/wallet/transactions', headers=headers, json={'type': 'WITHDRAWAL', 'amount': 200, **card}).json()
    second = client.post('/api/wallet/transactions', headers=headers, json={'type': 'WITHDRAWAL', 'amount': 400, **card}).json()

    r = client.put(f"/api/admin/wallet-transactions/{first['id']}", headers=admin, json={'action': 'APPROVE'})
    assert r.status_code == 200
    assert wallet(client, headers)['wallet']['balance'] == 300

    # the balance is checked again at approval time
    r = client.put(f"/api/admin/wallet-transactions/{second['id']}", headers=admin, json={'action': 'APPROVE'})
    assert r.status_code == 400
    assert r.json()['detail'] == 'Insufficient balance'
    r = client.put(f"/api/admin/wallet-transactions/{second['id']}", headers=admin, json={'action': 'REJECT'})
    assert r.json()['transaction']['status'] == 'REJECTED'
    assert wallet(client, headers)['wallet']['balance'] == 300


def test_members_cannot_process_requests():
    _, headers = new_member(client)
    tx = client.post('/api/wallet/transactions', headers=headers, json={
        'type': 'DEPOSIT', 'amount': 10, 'receipt_url': '/uploads/receipts/x.png',
    }).json()
    r = client.put(f"/api/admin/wallet-transactions/{tx['id']}", headers=headers, json={'action': 'APPROVE'})
    assert r.status_code == 403
    assert wallet(client, headers)['wallet']['balance'] == 0
