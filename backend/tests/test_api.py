"""HTTP API tests — request/response shapes, error envelope, actor header."""

from decimal import Decimal

import pytest
from httpx import AsyncClient
from sqlalchemy.exc import IntegrityError

from factoryledger.middleware.exceptions import classify_integrity_error


async def _create(client, headers, **body) -> dict:
    resp = await client.post("/api/stock/accounts", json=body, headers=headers)
    assert resp.status_code == 201, resp.text
    return resp.json()


@pytest.mark.api
@pytest.mark.asyncio
class TestHealth:

    async def test_liveness(self, client: AsyncClient):
        resp = await client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"
        assert resp.headers["X-Content-Type-Options"] == "nosniff"


@pytest.mark.api
@pytest.mark.asyncio
class TestStockApi:

    async def test_actor_header_required(self, client: AsyncClient):
        resp = await client.get("/api/stock/accounts")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "HTTP_401"

    async def test_account_purchase_and_ledger(self, client: AsyncClient, actor_headers):
        material = await _create(
            client, actor_headers, name="Mango pulp", kind="raw_material", unit="kg"
        )

        resp = await client.post(
            "/api/stock/purchases",
            json={"account_id": material["id"], "quantity": "40", "unit_cost": "12.5"},
            headers=actor_headers,
        )
        assert resp.status_code == 201, resp.text
        entry = resp.json()
        assert entry["kind"] == "in"
        assert entry["recorded_by"] == actor_headers["X-Actor-Id"]
        assert Decimal(entry["total_cost"]) == Decimal("500")

        account = (await client.get(f"/api/stock/accounts/{material['id']}", headers=actor_headers)).json()
        assert Decimal(account["current_quantity"]) == Decimal("40")

        lots = (await client.get(f"/api/stock/accounts/{material['id']}/lots", headers=actor_headers)).json()
        assert len(lots) == 1
        assert Decimal(lots[0]["quantity_remaining"]) == Decimal("40")

        page = (
            await client.get(
                f"/api/stock/accounts/{material['id']}/transactions?limit=10",
                headers=actor_headers,
            )
        ).json()
        assert page["total"] == 1
        assert page["items"][0]["id"] == entry["id"]

    async def test_insufficient_stock_envelope(self, client: AsyncClient, actor_headers):
        bottle = await _create(
            client, actor_headers, name="500 ml PET", kind="bottle", unit="bottle",
            capacity_ml="500", unit_price="5", opening_quantity="3",
        )

        resp = await client.post(
            "/api/stock/damage",
            json={"account_id": bottle["id"], "quantity": "4", "notes": "cracked"},
            headers=actor_headers,
        )

        assert resp.status_code == 400
        error = resp.json()["error"]
        assert error["code"] == "INSUFFICIENT_STOCK"
        assert error["details"]["account_id"] == bottle["id"]

        account = (await client.get(f"/api/stock/accounts/{bottle['id']}", headers=actor_headers)).json()
        assert Decimal(account["current_quantity"]) == Decimal("3")

    async def test_insufficient_lots_envelope(self, client: AsyncClient, actor_headers):
        material = await _create(
            client, actor_headers, name="Lime juice", kind="raw_material", unit="l",
            opening_quantity="5", opening_unit_cost="2",
        )

        resp = await client.post(
            "/api/stock/consumption",
            json={"account_id": material["id"], "quantity": "6"},
            headers=actor_headers,
        )

        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "INSUFFICIENT_LOTS"

    async def test_non_positive_quantity_rejected(self, client: AsyncClient, actor_headers):
        bottle = await _create(client, actor_headers, name="Cap", kind="bottle", unit="bottle")

        resp = await client.post(
            "/api/stock/purchases",
            json={"account_id": bottle["id"], "quantity": "0"},
            headers=actor_headers,
        )

        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "VALIDATION_ERROR"

    async def test_sub_gram_quantity_rejected_not_rounded(self, client: AsyncClient, actor_headers):
        material = await _create(
            client, actor_headers, name="Salt", kind="raw_material", unit="kg",
            opening_quantity="2", opening_unit_cost="1",
        )

        resp = await client.post(
            "/api/stock/consumption",
            json={"account_id": material["id"], "quantity": "0.0004"},
            headers=actor_headers,
        )

        assert resp.status_code == 400
        error = resp.json()["error"]
        assert error["code"] == "VALIDATION_ERROR"
        assert error["details"]["max_decimal_places"] == 3

    async def test_unknown_account_is_404(self, client: AsyncClient, actor_headers):
        resp = await client.get("/api/stock/accounts/does-not-exist", headers=actor_headers)
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "RESOURCE_NOT_FOUND"

    async def test_low_stock_and_threshold(self, client: AsyncClient, actor_headers):
        bottle = await _create(
            client, actor_headers, name="1 l glass", kind="bottle", unit="bottle",
            opening_quantity="10",
        )
        await _create(client, actor_headers, name="No threshold", kind="bottle", unit="bottle")

        assert (await client.get("/api/stock/low-stock", headers=actor_headers)).json() == []

        resp = await client.patch(
            f"/api/stock/accounts/{bottle['id']}/threshold",
            json={"minimum_threshold": "10"},
            headers=actor_headers,
        )
        assert resp.status_code == 200
        assert resp.json()["is_low"] is True

        low = (await client.get("/api/stock/low-stock", headers=actor_headers)).json()
        assert [a["id"] for a in low] == [bottle["id"]]


@pytest.mark.api
@pytest.mark.asyncio
class TestProductionApi:

    async def test_full_lifecycle(self, client: AsyncClient, actor_headers):
        bottle = await _create(
            client, actor_headers, name="250 ml PET", kind="bottle", unit="bottle",
            capacity_ml="250", unit_price="4", opening_quantity="200",
        )
        pulp = await _create(
            client, actor_headers, name="Guava pulp", kind="raw_material", unit="kg",
            opening_quantity="30", opening_unit_cost="10",
        )

        preview = (await client.get("/api/production/next-batch-code", headers=actor_headers)).json()

        resp = await client.post(
            "/api/production/",
            json={
                "product_id": "guava-juice",
                "planned_items": [{"bottle_type_id": bottle["id"], "quantity": "100"}],
            },
            headers=actor_headers,
        )
        assert resp.status_code == 201, resp.text
        batch = resp.json()
        assert batch["status"] == "planned"
        assert batch["human_id"] == preview["human_id"]

        resp = await client.post(f"/api/production/{batch['id']}/start", headers=actor_headers)
        assert resp.json()["status"] == "in_progress"

        resp = await client.post(
            f"/api/production/{batch['id']}/complete",
            json={
                "actual_items": [{"bottle_type_id": bottle["id"], "quantity": "100", "defects": "2"}],
                "actual_materials": [{"material_id": pulp["id"], "quantity_used": "12"}],
                "brix_before": "12.0",
            },
            headers=actor_headers,
        )
        assert resp.status_code == 200, resp.text
        done = resp.json()
        assert done["status"] == "completed"
        assert Decimal(done["total_material_cost"]) == Decimal("120")
        assert Decimal(done["finished_goods"][0]["quantity"]) == Decimal("98")

        resp = await client.post(f"/api/production/{batch['id']}/cancel", headers=actor_headers)
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "INVALID_TRANSITION"

        listing = (
            await client.get("/api/production/?status=completed", headers=actor_headers)
        ).json()
        assert listing["total"] == 1
        assert listing["items"][0]["human_id"] == batch["human_id"]

    async def test_failed_completion_rolls_back(self, client: AsyncClient, actor_headers):
        bottle = await _create(
            client, actor_headers, name="Glass", kind="bottle", unit="bottle",
            opening_quantity="5",
        )
        batch = (
            await client.post(
                "/api/production/",
                json={
                    "product_id": "p",
                    "planned_items": [{"bottle_type_id": bottle["id"], "quantity": "10"}],
                },
                headers=actor_headers,
            )
        ).json()
        await client.post(f"/api/production/{batch['id']}/start", headers=actor_headers)

        resp = await client.post(
            f"/api/production/{batch['id']}/complete",
            json={"actual_items": [{"bottle_type_id": bottle["id"], "quantity": "10"}]},
            headers=actor_headers,
        )

        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "INSUFFICIENT_STOCK"
        again = (await client.get(f"/api/production/{batch['id']}", headers=actor_headers)).json()
        assert again["status"] == "in_progress"
        assert again["actual_items"] is None

    async def test_recipe_endpoint(self, client: AsyncClient, actor_headers):
        pulp = await _create(client, actor_headers, name="Pulp", kind="raw_material", unit="kg")

        resp = await client.put(
            "/api/production/recipes/guava-juice",
            json={"lines": [{"material_id": pulp["id"], "quantity_per_liter": "0.3"}]},
            headers=actor_headers,
        )

        assert resp.status_code == 200
        assert Decimal(resp.json()[0]["quantity_per_liter"]) == Decimal("0.3")


@pytest.mark.unit
class TestIntegrityClassification:

    @pytest.mark.parametrize(
        "driver_message, status_code, error_code",
        [
            ("CHECK constraint failed: ck_stock_accounts_non_negative", 409, "STOCK_CONSTRAINT"),
            ("UNIQUE constraint failed: production_batches.human_id", 409, "DUPLICATE_BATCH_CODE"),
            (
                'duplicate key value violates unique constraint "ix_production_batches_human_id"',
                409,
                "DUPLICATE_BATCH_CODE",
            ),
            ("UNIQUE constraint failed: activity_logs.id", 422, "DUPLICATE_RECORD"),
            ("FOREIGN KEY constraint failed", 422, "FOREIGN_KEY_VIOLATION"),
            ("NOT NULL constraint failed: stock_accounts.name", 422, "INTEGRITY_ERROR"),
        ],
    )
    def test_named_constraints_map_to_codes(self, driver_message, status_code, error_code):
        exc = IntegrityError("INSERT", {}, Exception(driver_message))

        assert classify_integrity_error(exc)[:2] == (status_code, error_code)
