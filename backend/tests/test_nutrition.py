from datetime import date, datetime, timedelta, timezone

from fastapi.testclient import TestClient

from fitclub import models
from fitclub.services import daily_totals, macro_breakdown
from fitclub.main import app

from helpers import new_member

client = TestClient(app)


def _entry(headers, **overrides):
    body = {
        'date': '2024-03-01', 'meal_type': 'breakfast', 'food_name': 'Oats',
        'quantity': 80, 'unit': 'g', 'calories': 300, 'protein': 10, 'carbs': 54, 'fat': 6,
    }
    body.update(overrides)
    r = client.post('/api/user/nutrition', headers=headers, json=body)
    assert r.status_code == 201, r.text
    return r.json()


def test_create_returns_entry_and_day_totals():
    _, headers = new_member(client)
    first = _entry(headers)
    assert first['message'] == 'Nutrition entry created successfully'
    assert first['nutrition_entry']['date'] == '2024-03-01'
    assert first['nutrition_entry']['meal_type'] == 'breakfast'
    assert first['daily_totals'] == {'total_calories': 300, 'total_protein': 10, 'total_carbs': 54, 'total_fat': 6}

    second = _entry(headers, meal_type='lunch', food_name='Rice', calories=200, protein=4, carbs=45, fat=None)
    assert second['daily_totals']['total_calories'] == 500
    assert second['daily_totals']['total_fat'] == 6


def test_create_validation():
    _, headers = new_member(client)
    bad = [
        {'meal_type': 'brunch'},
        {'quantity': 0},
        {'calories': -1},
        {'food_name': ''},
        {'unit': 'x' * 21},
        {'notes': 'n' * 201},
        {'date': '01/03/2024'},
    ]
    for overrides in bad:
        body = {'date': '2024-03-01', 'meal_type': 'snack', 'food_name': 'Apple', 'quantity': 1, 'unit': 'pc', 'calories': 95}
        body.update(overrides)
        assert client.post('/api/user/nutrition', headers=headers, json=body).status_code == 422, overrides


def test_list_filters_and_daily_breakdown():
    _, headers = new_member(client)
    _entry(headers, date='2024-03-01', meal_type='breakfast', calories=300)
    _entry(headers, date='2024-03-01', meal_type='dinner', calories=700, sodium=500)
    _entry(headers, date='2024-03-02', meal_type='snack', calories=150)

    day = client.get('/api/user/nutrition', headers=headers, params={'date': '2024-03-01'}).json()
    assert [e['date'] for e in day['nutrition_entries']] == ['2024-03-01', '2024-03-01']
    totals = day['daily_totals']
    assert totals['total_calories'] == 1000
    assert totals['total_sodium'] == 500
    assert totals['meal_breakdown'] == {'breakfast': 300, 'lunch': 0, 'dinner': 700, 'snack': 0}

    everything = client.get('/api/user/nutrition', headers=headers).json()
    assert everything['daily_totals'] is None
    assert everything['nutrition_entries'][0]['date'] == '2024-03-02'
    assert everything['pagination'] == {'total': 3, 'limit': 50, 'offset': 0, 'has_more': False}

    snacks = client.get('/api/user/nutrition', headers=headers, params={'meal_type': 'snack'}).json()
    assert [e['calories'] for e in snacks['nutrition_entries']] == [150]
    ranged = client.get('/api/user/nutrition', headers=headers, params={'start_date': '2024-03-02', 'end_date': '2024-03-31'}).json()
    assert ranged['pagination']['total'] == 1


def test_weekly_stats_average_over_seven_days():
    _, headers = new_member(client)
    today = datetime.now(timezone.utc).date()
    _entry(headers, date=today.isoformat(), calories=700, protein=70, carbs=0, fat=0)
    _entry(headers, date=(today - timedelta(days=2)).isoformat(), calories=700, protein=0, carbs=0, fat=0)
    _entry(headers, date=(today - timedelta(days=30)).isoformat(), calories=5000)
    stats = client.get('/api/user/nutrition', headers=headers).json()['weekly_stats']
    assert stats == {'average_calories': 200, 'average_protein': 10, 'average_carbs': 0, 'average_fat': 0, 'total_entries': 2}


def test_get_includes_macro_ratios_and_calculated_calories():
    _, headers = new_member(client)
    eid = _entry(headers, protein=25, carbs=50, fat=25)['nutrition_entry']['id']
    r = client.get(f'/api/user/nutrition/{eid}', headers=headers)
    assert r.status_code == 200
    entry = r.json()['nutrition_entry']
    assert entry['macro_ratios'] == {'protein_ratio': 25, 'carbs_ratio': 50, 'fat_ratio': 25}
    assert entry['calculated_calories'] == {'from_protein': 100, 'from_carbs': 200, 'from_fat': 225, 'total': 525}

    plain = _entry(headers, protein=None, carbs=None, fat=None)['nutrition_entry']['id']
    body = client.get(f'/api/user/nutrition/{plain}', headers=headers).json()['nutrition_entry']
    assert body['macro_ratios'] is None
    assert body['calculated_calories']['total'] == 0


def test_update_moving_day_reports_both_days():
    _, headers = new_member(client)
    eid = _entry(headers, date='2024-04-01', calories=400)['nutrition_entry']['id']
    _entry(headers, date='2024-04-01', calories=100)

    r = client.put(f'/api/user/nutrition/{eid}', headers=headers, json={'date': '2024-04-02', 'notes': 'moved'})
    assert r.status_code == 200
    body = r.json()
    assert body['nutrition_entry']['date'] == '2024-04-02'
    assert body['nutrition_entry']['calories'] == 400
    assert [(t['date'], t['total_calories']) for t in body['daily_totals']] == [('2024-04-01', 100), ('2024-04-02', 400)]

    same_day = client.put(f'/api/user/nutrition/{eid}', headers=headers, json={'calories': 450}).json()
    assert [(t['date'], t['total_calories']) for t in same_day['daily_totals']] == [('2024-04-02', 450)]
    assert client.put(f'/api/user/nutrition/{eid}', headers=headers, json={'quantity': 0}).status_code == 422


def test_delete_and_owner_scoping():
    _, headers = new_member(client)
    _, other = new_member(client)
    eid = _entry(headers, date='2024-05-01', calories=250)['nutrition_entry']['id']

    for method in (client.get, client.delete):
        r = method(f'/api/user/nutrition/{eid}', headers=other)
        assert r.status_code == 404
        assert r.json()['detail'] == 'Nutrition entry not found'

    r = client.delete(f'/api/user/nutrition/{eid}', headers=headers)
    assert r.status_code == 200
    assert r.json()['message'] == 'Nutrition entry deleted successfully'
    assert r.json()['daily_totals']['total_calories'] == 0
    assert client.get(f'/api/user/nutrition/{eid}', headers=headers).status_code == 404


def test_daily_totals_helper_rounds_sums():
    entries = [
        models.NutritionEntry(user_id=1, entry_date=date(2024, 1, 1), meal_type=models.MealType.SNACK,
                              food_name='a', quantity=1, unit='pc', calories=0.1, protein=0.1),
        models.NutritionEntry(user_id=1, entry_date=date(2024, 1, 1), meal_type=models.MealType.SNACK,
                              food_name='b', quantity=1, unit='pc', calories=0.2, protein=0.2),
    ]
    totals = daily_totals(entries, breakdown=True)
    assert totals['total_calories'] == 0.3
    assert totals['total_protein'] == 0.3
    assert totals['meal_breakdown']['snack'] == 0.3
    assert macro_breakdown(entries[0])['macro_ratios'] == {'protein_ratio': 100, 'carbs_ratio': 0, 'fat_ratio': 0}
