from datetime import date
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

import main
from database import Base, build_engine, get_db, make_sessionmaker
from models import Expense, Income, User


@pytest.fixture()
def client():
    engine = build_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    SessionLocal = make_sessionmaker(engine)

    with SessionLocal() as session:
        session.add_all([User(id="u1", username="one"), User(id="u2", username="two")])
        session.commit()
        session.add_all(
            [
                Expense(
                    id=1,
                    user_id="u1",
                    name="Flight",
                    amount=Decimal("100.00"),
                    expense_date=date(2024, 1, 10),
                ),
                Income(user_id="u1", amount=Decimal("500.00"), received_date=date(2024, 1, 2)),
            ]
        )
        session.commit()

    def override_get_db():
        db = SessionLocal()
        try:
            yield db
        finally:
            db.close()

    main.app.dependency_overrides[get_db] = override_get_db
    main.adjustment_cache.clear()
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()
    engine.dispose()


def adjustment_body(**overrides):
    body = {
        "expense_id": 1,
        "user_id": "u1",
        "adjustment_type": "refund",
        "adjustment_amount": "60.00",
        "adjustment_reason": "Seat downgrade",
        "adjustment_date": "2024-01-15",
    }
    body.update(overrides)
    return body


def test_create_and_read_adjustment(client) -> None:
    res = client.post("/api/expense-adjustment", json=adjustment_body())
    assert res.status_code == 201
    created = res.json()
    assert created["adjustment_type"] == "REFUND"
    assert created["status"] == "PENDING"
    assert created["expense_name"] == "Flight"
    assert Decimal(created["original_expense_amount"]) == Decimal("100.00")

    res = client.get(f"/api/expense-adjustment/u1/{created['id']}")
    assert res.status_code == 200
    assert Decimal(res.json()["adjustment_amount"]) == Decimal("60.00")

    res = client.get("/api/expense-adjustment/expense/u1/1")
    assert [item["id"] for item in res.json()] == [created["id"]]


def test_over_cap_create_reports_amounts(client) -> None:
    client.post("/api/expense-adjustment", json=adjustment_body())

    res = client.post(
        "/api/expense-adjustment", json=adjustment_body(adjustment_amount="50.00")
    )

    assert res.status_code == 400
    body = res.json()
    assert body["error"] == "invariant_violation"
    assert Decimal(body["total"]) == Decimal("110.00")
    assert Decimal(body["existing_total"]) == Decimal("60.00")
    assert Decimal(body["expense_amount"]) == Decimal("100.00")


def test_error_status_codes(client) -> None:
    assert client.post(
        "/api/expense-adjustment", json=adjustment_body(user_id="ghost")
    ).status_code == 404
    assert client.post(
        "/api/expense-adjustment", json=adjustment_body(expense_id=42)
    ).status_code == 404
    assert client.post(
        "/api/expense-adjustment", json=adjustment_body(user_id="u2")
    ).status_code == 403
    assert client.post(
        "/api/expense-adjustment", json=adjustment_body(adjustment_amount="-1")
    ).status_code == 400

    missing = adjustment_body()
    del missing["expense_id"]
    res = client.post("/api/expense-adjustment", json=missing)
    assert res.status_code == 400
    assert res.json()["error"] == "validation_error"


def test_update_and_delete(client) -> None:
    created = client.post("/api/expense-adjustment", json=adjustment_body()).json()

    res = client.put(
        "/api/expense-adjustment",
        json={
            "adjustment_id": created["id"],
            "user_id": "u1",
            "adjustment_amount": "100.00",
            "status": "completed",
        },
    )
    assert res.status_code == 200
    assert res.json()["status"] == "COMPLETED"

    res = client.get("/api/expense-adjustment/total/month/u1/2024/1")
    assert Decimal(res.json()["total"]) == Decimal("100.00")
    res = client.get("/api/expense-adjustment/total/expense/1")
    assert Decimal(res.json()["total"]) == Decimal("100.00")

    assert client.delete(f"/api/expense-adjustment/u2/{created['id']}").status_code == 403
    assert client.delete(f"/api/expense-adjustment/u1/{created['id']}").status_code == 200
    assert client.get(f"/api/expense-adjustment/u1/{created['id']}").status_code == 404

    res = client.get("/api/expense-adjustment/total/month/u1/2024/1")
    assert Decimal(res.json()["total"]) == Decimal("0.00")


def test_paging_rules(client) -> None:
    client.post("/api/expense-adjustment", json=adjustment_body(adjustment_amount="1.00"))

    assert client.get("/api/expense-adjustment/page-sizes").json() == {
        "allowed": [10, 20, 50, 100]
    }
    res = client.get("/api/expense-adjustment/user/u1")
    assert res.status_code == 200
    assert res.json()["size"] == 10
    assert res.json()["total_elements"] == 1

    res = client.get("/api/expense-adjustment/user/u1", params={"size": 15})
    assert res.status_code == 400

    res = client.post(
        "/api/expense-adjustment/range",
        params={"size": 20},
        json={"user_id": "u1", "start_date": "2024-01-01", "end_date": "2024-01-31"},
    )
    assert res.status_code == 200
    assert res.json()["total_elements"] == 1

    res = client.post(
        "/api/expense-adjustment/range",
        json={"user_id": "u1", "start_date": "2024-02-01", "end_date": "2024-01-01"},
    )
    assert res.status_code == 400


def test_monthly_balance_routes(client) -> None:
    res = client.post("/api/monthly-balance/generate", params={"year": 2024, "month": 1})
    assert res.status_code == 200
    summary = res.json()
    assert summary["generated"] == 2
    assert summary["failed_user_ids"] == []

    res = client.post(
        "/api/monthly-balance/generate/u1", params={"year": 2024, "month": 2}
    )
    assert res.status_code == 200
    feb = res.json()
    assert Decimal(feb["opening_balance"]) == Decimal("400.00")
    assert Decimal(feb["closing_balance"]) == Decimal("400.00")

    res = client.get("/api/monthly-balance/latest", params={"user_id": "u1"})
    assert res.json()["month"] == 2

    res = client.get("/api/monthly-balance/all", params={"user_id": "u1"})
    assert [row["month"] for row in res.json()["content"]] == [2, 1]

    assert client.get(
        "/api/monthly-balance/latest", params={"user_id": "nobody"}
    ).status_code == 404
    assert client.post(
        "/api/monthly-balance/generate", params={"year": 2024, "month": 13}
    ).status_code == 400
