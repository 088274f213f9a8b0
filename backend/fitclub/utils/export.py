"""CSV rendering of payment exports."""

import csv
import io
from typing import Iterable, List

MISSING = "N/A"

STANDARD_HEADERS = [
    'Payment ID', 'User Name', 'User Email', 'Username', 'Telegram Username',
    'Program Name', 'Program Category', 'Amount', 'Currency', 'Status',
    'Payment Method', 'Receipt URL', 'Admin Notes', 'Created At', 'Updated At',
    'Processed At',
]
USER_HEADERS = ['User Name', 'User Email', 'Username', 'Telegram Username']
PROGRAM_HEADERS = ['Program Name', 'Program Category', 'Program Duration']


def _cell(value) -> str:
    if value is None or value == "":
        return MISSING
    if hasattr(value, "isoformat"):
        return value.isoformat()
    if hasattr(value, "value"):
        return str(value.value)
    return str(value)


def _user_cells(user) -> list:
    if user is None:
        return [MISSING] * len(USER_HEADERS)
    name = f"{user.first_name or ''} {user.last_name or ''}".strip()
    return [name, user.email, user.username, user.telegram_id]


def standard_rows(payments: Iterable, users: dict, programs: dict) -> List[list]:
    rows = []
    for p in payments:
        program = programs.get(p.program_id)
        rows.append(
            [p.id] + _user_cells(users.get(p.user_id)) + [
                program.name if program else None,
                program.category if program else None,
                p.amount, p.currency, p.status,
                None,  # no payment method is recorded
                p.receipt_url, p.admin_notes, p.created_at, p.updated_at, p.processed_at,
            ]
        )
    return rows


def custom_headers(include_user: bool, include_program: bool) -> List[str]:
    headers = ['Payment ID', 'Amount', 'Currency', 'Status', 'Payment Method', 'Created At']
    if include_user:
        headers += USER_HEADERS
    if include_program:
        headers += PROGRAM_HEADERS
    return headers + ['Receipt URL', 'Admin Notes', 'Updated At', 'Processed At']


def custom_rows(payments: Iterable, users: dict, programs: dict, include_user: bool, include_program: bool) -> List[list]:
    rows = []
    for p in payments:
        row = [p.id, p.amount, p.currency, p.status, None, p.created_at]
        if include_user:
            row += _user_cells(users.get(p.user_id))
        if include_program:
            program = programs.get(p.program_id)
            row += [
                program.name if program else None,
                program.category if program else None,
                f"{program.duration} days" if program and program.duration else None,
            ]
        row += [p.receipt_url, p.admin_notes, p.updated_at, p.processed_at]
        rows.append(row)
    return rows


def render_csv(headers: List[str], rows: Iterable[list]) -> str:
    """Render rows as CSV text, replacing empty values with N/A."""
    buf = io.StringIO()
    writer = csv.writer(buf, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(headers)
    for row in rows:
        writer.writerow([_cell(v) for v in row])
    return buf.getvalue()
