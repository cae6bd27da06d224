import importlib
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from main import app

client = TestClient(app)

DINNER = {
    "payer_id": "A",
    "total_amount": "90.00",
    "currency": "PLN",
    "splits": [
        {"participant_id": "A", "owed_amount": 30},
        {"participant_id": "B", "owed_amount": 30},
        {"participant_id": "C", "owed_amount": 30},
    ],
}


def test_balances():
    r = client.post("/balances", json={"expenses": [DINNER]})
    assert r.status_code == 200
    data = r.json()
    assert data["net"] == {"A": "60.00", "B": "-30.00", "C": "-30.00"}
    assert data["currencies"] == ["PLN"]
    assert Decimal(data["conservation_error"]) == 0


def test_settlement():
    r = client.post("/settlement", json={"expenses": [DINNER], "currency": "PLN"})
    assert r.status_code == 200
    assert r.json()["settlements"] == [
        {"from": "B", "to": "A", "amount": "30.00", "currency": "PLN"},
        {"from": "C", "to": "A", "amount": "30.00", "currency": "PLN"},
    ]


def test_settlement_uses_default_currency():
    r = client.post("/settlement", json={"expenses": [DINNER]})
    assert r.status_code == 200
    assert {s["currency"] for s in r.json()["settlements"]} == {"PLN"}


def test_settlement_rejects_mixed_currencies():
    eur = dict(DINNER, currency="EUR")
    r = client.post("/settlement", json={"expenses": [DINNER, eur], "currency": "PLN"})
    assert r.status_code == 400
    assert "EUR" in r.json()["detail"]


def test_settlement_rejects_inconsistent_expenses():
    broken = dict(DINNER, splits=[{"participant_id": "B", "owed_amount": 30}])
    r = client.post("/settlement", json={"expenses": [broken]})
    assert r.status_code == 422
    assert "residue" in r.json()["detail"]


def test_simplify():
    r = client.post("/simplify", json={"balances": {"A": -30, "B": -20, "C": 50}, "currency": "PLN"})
    assert r.status_code == 200
    assert r.json()["settlements"] == [
        {"from": "A", "to": "C", "amount": "30.00", "currency": "PLN"},
        {"from": "B", "to": "C", "amount": "20.00", "currency": "PLN"},
    ]


def test_simplify_rejects_unbalanced_input():
    r = client.post("/simplify", json={"balances": {"A": -30, "B": 10}})
    assert r.status_code == 422


def test_consolidate():
    ts = [
        {"from_id": "A", "to_id": "B", "amount": 10, "currency": "PLN"},
        {"from_id": "A", "to_id": "B", "amount": 5, "currency": "PLN"},
        {"from_id": "B", "to_id": "A", "amount": 3, "currency": "PLN"},
    ]
    r = client.post("/consolidate", json={"transactions": ts})
    assert r.status_code == 200
    assert [(s["from"], s["to"], s["amount"]) for s in r.json()["settlements"]] == [
        ("A", "B", "15.00"),
        ("B", "A", "3.00"),
    ]


@pytest.mark.parametrize("ts,status", [
    ([{"from_id": "A", "to_id": "B", "amount": 10, "currency": "PLN"},
      {"from_id": "A", "to_id": "B", "amount": 5, "currency": "EUR"}], 400),
    ([{"from_id": "A", "to_id": "B", "amount": 0, "currency": "PLN"}], 422),
    ([{"from_id": "A", "to_id": "A", "amount": 5, "currency": "PLN"}], 422),
])
def test_consolidate_rejects_bad_transactions(ts, status):
    r = client.post("/consolidate", json={"transactions": ts})
    assert r.status_code == status


def test_summary():
    ts = [
        {"from_id": "A", "to_id": "C", "amount": "30", "currency": "PLN"},
        {"from_id": "C", "to_id": "D", "amount": "5", "currency": "PLN"},
    ]
    r = client.post("/summary", json={"transactions": ts, "participant_id": "C"})
    assert r.status_code == 200
    assert {k: Decimal(v) for k, v in r.json().items()} == {"to_pay": 5, "to_receive": 30, "balance": 25}


def test_shares():
    r = client.post("/shares", json={
        "total_amount": 100,
        "split_type": "equal",
        "rows": [{"participant_id": p} for p in "ABC"],
    })
    assert r.status_code == 200
    assert [s["owed_amount"] for s in r.json()["splits"]] == ["33.33", "33.33", "33.34"]


def test_shares_rejects_bad_percentages():
    r = client.post("/shares", json={
        "total_amount": 100,
        "split_type": "percentage",
        "rows": [{"participant_id": "A", "percentage": 40}, {"participant_id": "B", "percentage": 40}],
    })
    assert r.status_code == 400


def test_settlement_with_mixed_id_types():
    expense = {
        "payer_id": "C",
        "total_amount": 10,
        "splits": [{"participant_id": 1, "owed_amount": 5}, {"participant_id": "B", "owed_amount": 5}],
    }
    r = client.post("/settlement", json={"expenses": [expense]})
    assert r.status_code == 200
    assert [(s["from"], s["to"], s["amount"]) for s in r.json()["settlements"]] == [
        (1, "C", "5.00"),
        ("B", "C", "5.00"),
    ]


@pytest.fixture
def eur_service(monkeypatch):
    import main

    monkeypatch.setenv("SETTLE_DEFAULT_CURRENCY", "EUR")
    yield TestClient(importlib.reload(main).app)
    monkeypatch.delenv("SETTLE_DEFAULT_CURRENCY")
    importlib.reload(main)


def test_expenses_without_currency_follow_configured_default(eur_service):
    expense = {key: value for key, value in DINNER.items() if key != "currency"}
    r = eur_service.post("/settlement", json={"expenses": [expense]})
    assert r.status_code == 200
    assert {s["currency"] for s in r.json()["settlements"]} == {"EUR"}

    r = eur_service.post("/balances", json={"expenses": [expense]})
    assert r.json()["currencies"] == ["EUR"]
