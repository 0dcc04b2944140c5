"""
Tests for company isolation and role checks.

These tests verify:
  - Resources of another company are refused with 403, never leaked
  - Listings only contain the caller's own company
  - Administrative endpoints are refused for USER (403)
  - ADMIN and SUPERUSER can call them
"""

import pytest

from ledger.context import Role

COMPANY = 1
OTHER_COMPANY = 2


@pytest.fixture
def user(make_headers):
    return make_headers(COMPANY, 10, Role.USER)


@pytest.fixture
def admin(make_headers):
    return make_headers(COMPANY, 11, Role.ADMIN)


@pytest.fixture
def outsider(make_headers):
    return make_headers(OTHER_COMPANY, 20, Role.ADMIN)


async def _create_account(client, headers, name, account_type="CHECKING", initial="1000.00"):
    response = await client.post(
        "/financial/accounts",
        json={"name": name, "type": account_type, "initial_balance": initial},
        headers=headers,
    )
    assert response.status_code == 201
    return response.json()["id"]


async def _card_with_invoice(client, user, admin):
    """A configured card with one purchase on its March 2026 invoice."""
    card_id = await _create_account(client, user, "Company card", "CREDIT_CARD", "0.00")
    configured = await client.post(
        f"/financial/credit-cards/{card_id}/config",
        json={"credit_limit": "5000.00", "closing_day": 10, "due_day": 20},
        headers=admin,
    )
    assert configured.status_code == 201

    purchase = await client.post(
        "/financial/transactions",
        json={
            "description": "Monitor",
            "amount": "400.00",
            "date": "2026-03-02",
            "type": "EXPENSE",
            "status": "COMPLETED",
            "from_account_id": card_id,
        },
        headers=user,
    )
    assert purchase.status_code == 201

    invoice = await client.get(f"/financial/credit-cards/{card_id}/invoices/2026/3", headers=user)
    assert invoice.status_code == 200
    return card_id, invoice.json()["id"]


class TestCompanyIsolation:
    """Another company's data is out of reach."""

    async def test_account_and_balance(self, client, user, outsider):
        account_id = await _create_account(client, user, "Operating")

        for path in (f"/financial/accounts/{account_id}", f"/financial/accounts/{account_id}/balance"):
            response = await client.get(path, headers=outsider)
            assert response.status_code == 403
            assert response.json()["error_type"] == "access_denied"

        update = await client.put(
            f"/financial/accounts/{account_id}", json={"name": "Mine now"}, headers=outsider
        )
        assert update.status_code == 403

    async def test_listing_is_scoped(self, client, user, outsider):
        await _create_account(client, user, "Operating")
        await _create_account(client, outsider, "Elsewhere")

        mine = await client.get("/financial/accounts", headers=user)
        theirs = await client.get("/financial/accounts", headers=outsider)
        assert [a["name"] for a in mine.json()] == ["Operating"]
        assert [a["name"] for a in theirs.json()] == ["Elsewhere"]

    async def test_transaction(self, client, user, outsider):
        account_id = await _create_account(client, user, "Operating")
        created = await client.post(
            "/financial/transactions",
            json={
                "description": "Sale",
                "amount": "10.00",
                "date": "2026-03-02",
                "type": "INCOME",
                "status": "COMPLETED",
                "to_account_id": account_id,
            },
            headers=user,
        )
        txn_id = created.json()["id"]

        response = await client.get(f"/financial/transactions/{txn_id}", headers=outsider)
        assert response.status_code == 403

        deleted = await client.delete(f"/financial/transactions/{txn_id}", headers=outsider)
        assert deleted.status_code == 403

        listed = await client.get("/financial/transactions", headers=outsider)
        assert listed.json()["total"] == 0

    async def test_posting_into_foreign_account(self, client, user, outsider):
        account_id = await _create_account(client, user, "Operating")
        response = await client.post(
            "/financial/transactions",
            json={
                "description": "Sneaky",
                "amount": "10.00",
                "date": "2026-03-02",
                "type": "INCOME",
                "status": "COMPLETED",
                "to_account_id": account_id,
            },
            headers=outsider,
        )
        assert response.status_code == 403

    async def test_invoice(self, client, user, admin, outsider):
        card_id, invoice_id = await _card_with_invoice(client, user, admin)

        assert (await client.get(f"/financial/credit-cards/invoices/{invoice_id}", headers=outsider)).status_code == 403
        assert (await client.get(f"/financial/credit-cards/{card_id}/config", headers=outsider)).status_code == 403

        closed = await client.post(f"/financial/credit-cards/invoices/{invoice_id}/close", headers=outsider)
        assert closed.status_code == 403

    async def test_statement_with_foreign_account(self, client, user, outsider):
        account_id = await _create_account(client, user, "Operating")
        response = await client.get(
            "/financial/statements/movement",
            params={"start_date": "2026-03-01", "end_date": "2026-03-31", "account_ids": [account_id]},
            headers=outsider,
        )
        assert response.status_code == 403


class TestAdminOnly:
    """Administrative operations need ADMIN or SUPERUSER."""

    async def test_balance_administration(self, client, user, admin):
        account_id = await _create_account(client, user, "Operating")

        refused = await client.post(
            f"/financial/accounts/{account_id}/adjust-balance",
            json={"new_balance": "1200.00", "reason": "Bank reconciliation"},
            headers=user,
        )
        assert refused.status_code == 403

        adjusted = await client.post(
            f"/financial/accounts/{account_id}/adjust-balance",
            json={"new_balance": "1200.00", "reason": "Bank reconciliation"},
            headers=admin,
        )
        assert adjusted.status_code == 200
        assert adjusted.json()["balance"] == "1200.00"

        refused = await client.post(
            f"/financial/accounts/{account_id}/negative-balance", json={"allow": True}, headers=user
        )
        assert refused.status_code == 403

        toggled = await client.post(
            f"/financial/accounts/{account_id}/negative-balance", json={"allow": True}, headers=admin
        )
        assert toggled.status_code == 200
        assert toggled.json()["allow_negative_balance"] is True

    async def test_card_configuration(self, client, user, admin):
        card_id = await _create_account(client, user, "Company card", "CREDIT_CARD", "0.00")
        body = {"credit_limit": "5000.00", "closing_day": 10}

        assert (await client.post(f"/financial/credit-cards/{card_id}/config", json=body, headers=user)).status_code == 403
        created = await client.post(f"/financial/credit-cards/{card_id}/config", json=body, headers=admin)
        assert created.status_code == 201
        assert created.json()["due_day"] == 20

        raise_limit = {"credit_limit": "7500.00"}
        assert (
            await client.put(f"/financial/credit-cards/{card_id}/config", json=raise_limit, headers=user)
        ).status_code == 403
        updated = await client.put(f"/financial/credit-cards/{card_id}/config", json=raise_limit, headers=admin)
        assert updated.json()["credit_limit"] == "7500.00"

        assert (await client.delete(f"/financial/credit-cards/{card_id}/config", headers=user)).status_code == 403
        assert (await client.delete(f"/financial/credit-cards/{card_id}/config", headers=admin)).status_code == 204

    @pytest.mark.parametrize("action", ["close", "cancel", "interest", "fees"])
    async def test_invoice_administration(self, client, user, admin, action):
        _, invoice_id = await _card_with_invoice(client, user, admin)
        path = f"/financial/credit-cards/invoices/{invoice_id}/{action}"

        refused = await client.post(path, headers=user)
        assert refused.status_code == 403

        allowed = await client.post(path, headers=admin)
        assert allowed.status_code == 200

    async def test_overdue_sweep(self, client, user, admin):
        await _card_with_invoice(client, user, admin)
        params = {"today": "2026-03-25"}

        refused = await client.post("/financial/credit-cards/invoices/mark-overdue", params=params, headers=user)
        assert refused.status_code == 403

        swept = await client.post("/financial/credit-cards/invoices/mark-overdue", params=params, headers=admin)
        assert swept.status_code == 200
        data = swept.json()
        assert data["marked"] == 1
        assert data["invoices"][0]["status"] == "OVERDUE"

    async def test_superuser_is_admin(self, client, user, make_headers):
        account_id = await _create_account(client, user, "Operating")
        response = await client.post(
            f"/financial/accounts/{account_id}/negative-balance",
            json={"allow": True},
            headers=make_headers(COMPANY, 1, Role.SUPERUSER),
        )
        assert response.status_code == 200
