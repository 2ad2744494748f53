"""
Tests for the HTTP API.

Runs the FastAPI app against the in-memory database with stubbed outbound
HTTP, authenticating with a real service key.
"""

import re
from decimal import Decimal

import httpx
import pytest

from economy.api.dependencies import get_delivery_client
from economy.main import app
from economy.services.webhooks import BotDeliveryClient

ACCOUNTS = "/v1/economy/accounts"


def _auth(key: str) -> dict[str, str]:
    return {"X-API-Key": key}


async def _provision(client, key, telegram_id=1001, **extra):
    body = {"telegram_id": telegram_id, "display_name": "Alice", "username": "alice", **extra}
    response = await client.post(ACCOUNTS, json=body, headers=_auth(key))
    assert response.status_code == 200, response.text
    return response.json()


async def _seed_catalog(client, key):
    responses = [
        await client.post(
            "/admin/products",
            json={"product_id": "guide-1", "title": "Trading Guide", "coin_price": 50},
            headers=_auth(key),
        ),
        await client.post(
            "/admin/plans",
            json={"plan_id": "starter", "name": "Starter", "price": "100", "requests": 3},
            headers=_auth(key),
        ),
        await client.post(
            "/admin/bots",
            json={
                "bot_id": "signal-bot",
                "name": "Signal Bot",
                "price": "200",
                "webhook_url": "https://bots.example.com/deliver",
            },
            headers=_auth(key),
        ),
    ]
    assert [r.status_code for r in responses] == [201, 201, 201]


class TestServiceAuth:
    """Service key authentication and permissions."""

    @pytest.mark.asyncio
    async def test_health_is_public(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    @pytest.mark.asyncio
    async def test_root(self, client):
        response = await client.get("/")
        assert response.json()["status"] == "running"

    @pytest.mark.asyncio
    async def test_metrics_endpoint(self, client):
        response = await client.get("/metrics")
        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_metrics_use_route_templates(self, client, service_key):
        await client.get(f"{ACCOUNTS}/424242", headers=_auth(service_key))
        await client.get("/no/such/path/424242")

        text = (await client.get("/metrics")).text

        assert 'endpoint="/v1/economy/accounts/{account_id}"' in text
        assert 'endpoint="unmatched"' in text
        assert "424242" not in text

    @pytest.mark.asyncio
    async def test_missing_key(self, client):
        response = await client.get(f"{ACCOUNTS}/1001")
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_invalid_key(self, client):
        response = await client.get(f"{ACCOUNTS}/1001", headers=_auth("emk_live_bogus"))
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_read_only_key_cannot_write(self, client, read_only_key):
        response = await client.post(
            ACCOUNTS,
            json={"telegram_id": 1, "display_name": "Alice"},
            headers=_auth(read_only_key),
        )
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_read_only_key_cannot_admin(self, client, read_only_key):
        response = await client.get("/admin/users", headers=_auth(read_only_key))
        assert response.status_code == 403


class TestAccountRoutes:
    """Provisioning, lookup, deposit and conversion."""

    @pytest.mark.asyncio
    async def test_provision_once(self, client, service_key):
        first = await _provision(client, service_key)
        second = await _provision(client, service_key)

        assert first["created"] is True
        assert re.match(r"^pr-live-[A-Z0-9]{24}$", first["new_api_key"])
        assert Decimal(first["account"]["balance"]) == Decimal("500")
        assert first["account"]["coins"] == 100
        assert first["account"]["api_key"]["key_prefix"] == first["new_api_key"][:12]
        assert second["created"] is False
        assert second["new_api_key"] is None

    @pytest.mark.asyncio
    async def test_get_unknown_account(self, client, service_key):
        response = await client.get(f"{ACCOUNTS}/404", headers=_auth(service_key))
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_deposit(self, client, service_key):
        await _provision(client, service_key)

        response = await client.post(
            f"{ACCOUNTS}/1001/deposit", json={"amount": "50"}, headers=_auth(service_key)
        )

        assert response.status_code == 201
        assert Decimal(response.json()["balance_after"]) == Decimal("550")

    @pytest.mark.asyncio
    async def test_deposit_below_minimum(self, client, service_key):
        await _provision(client, service_key)
        response = await client.post(
            f"{ACCOUNTS}/1001/deposit", json={"amount": "5"}, headers=_auth(service_key)
        )
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_deposit_negative_is_validation_error(self, client, service_key):
        await _provision(client, service_key)
        response = await client.post(
            f"{ACCOUNTS}/1001/deposit", json={"amount": "-5"}, headers=_auth(service_key)
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_convert_errors(self, client, service_key):
        await _provision(client, service_key)

        partial = await client.post(
            f"{ACCOUNTS}/1001/convert", json={"amount": 15}, headers=_auth(service_key)
        )
        too_many = await client.post(
            f"{ACCOUNTS}/1001/convert", json={"amount": 1000}, headers=_auth(service_key)
        )

        assert partial.status_code == 400
        assert too_many.status_code == 402

    @pytest.mark.asyncio
    async def test_watch_then_convert(self, client, service_key):
        """Watch one ad, then convert 100 coins."""
        await _provision(client, service_key)

        watched = await client.post(
            f"{ACCOUNTS}/1001/ads/watch", json={"network_id": "monetag"}, headers=_auth(service_key)
        )
        assert watched.status_code == 200
        assert watched.json()["coins_after"] == 105
        assert watched.json()["ads_watched_today"] == 1

        converted = await client.post(
            f"{ACCOUNTS}/1001/convert", json={"amount": 100}, headers=_auth(service_key)
        )
        assert converted.status_code == 200
        assert converted.json()["coins_after"] == 5
        assert Decimal(converted.json()["balance_after"]) == Decimal("510")

        history = await client.get(f"{ACCOUNTS}/1001/transactions", headers=_auth(service_key))
        body = history.json()
        assert body["total_count"] == 2
        assert {t["type"] for t in body["transactions"]} == {"ad_reward", "conversion"}


class TestAdRoutes:
    """Ad throttling over HTTP."""

    @pytest.mark.asyncio
    async def test_cooldown_returns_retry_after(self, client, service_key):
        await _provision(client, service_key)
        url = f"{ACCOUNTS}/1001/ads/watch"
        await client.post(url, json={"network_id": "monetag"}, headers=_auth(service_key))

        response = await client.post(url, json={"network_id": "adsterra"}, headers=_auth(service_key))

        assert response.status_code == 429
        assert int(response.headers["Retry-After"]) > 0

    @pytest.mark.asyncio
    async def test_daily_cap(self, client, service_key, no_cooldown):
        await _provision(client, service_key)
        url = f"{ACCOUNTS}/1001/ads/watch"
        for _ in range(10):
            ok = await client.post(url, json={"network_id": "adcash"}, headers=_auth(service_key))
            assert ok.status_code == 200

        capped = await client.post(url, json={"network_id": "monetag"}, headers=_auth(service_key))
        bonus = await client.post(f"{ACCOUNTS}/1001/ads/bonus", headers=_auth(service_key))
        status = await client.get(f"{ACCOUNTS}/1001/ads", headers=_auth(service_key))

        assert capped.status_code == 429
        assert bonus.status_code == 200
        assert bonus.json()["coins_after"] == 160
        assert status.json()["bonus_claimed"] is True

    @pytest.mark.asyncio
    async def test_bonus_not_ready(self, client, service_key):
        await _provision(client, service_key)
        response = await client.post(f"{ACCOUNTS}/1001/ads/bonus", headers=_auth(service_key))
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_unknown_network(self, client, service_key):
        await _provision(client, service_key)
        response = await client.post(
            f"{ACCOUNTS}/1001/ads/watch", json={"network_id": "nope"}, headers=_auth(service_key)
        )
        assert response.status_code == 400


class TestRedeemRoutes:
    """Admin code creation and user redemption."""

    @pytest.mark.asyncio
    async def test_redeem_once(self, client, service_key):
        await _provision(client, service_key)
        created = await client.post(
            "/admin/redeem-codes",
            json={"code": "welcome", "reward_type": "coins", "reward_amount": "50", "max_uses": 1},
            headers=_auth(service_key),
        )
        assert created.status_code == 201
        assert created.json()["code"] == "WELCOME"

        url = f"{ACCOUNTS}/1001/redeem"
        first = await client.post(url, json={"code": "Welcome"}, headers=_auth(service_key))
        second = await client.post(url, json={"code": "WELCOME"}, headers=_auth(service_key))

        assert first.status_code == 200
        assert first.json()["coins_after"] == 150
        assert second.status_code == 400
        assert second.json()["detail"] == "Already used this code"

        codes = await client.get("/admin/redeem-codes", headers=_auth(service_key))
        assert codes.json()[0]["current_uses"] == 1

    @pytest.mark.asyncio
    async def test_invalid_code(self, client, service_key):
        await _provision(client, service_key)
        response = await client.post(
            f"{ACCOUNTS}/1001/redeem", json={"code": "NOPE"}, headers=_auth(service_key)
        )
        assert response.status_code == 400
        assert response.json()["detail"] == "Invalid code"

    @pytest.mark.asyncio
    async def test_duplicate_code(self, client, service_key):
        body = {"code": "PROMO", "reward_type": "balance", "reward_amount": "5", "max_uses": 3}
        first = await client.post("/admin/redeem-codes", json=body, headers=_auth(service_key))
        second = await client.post("/admin/redeem-codes", json=body, headers=_auth(service_key))
        assert first.status_code == 201
        assert second.status_code == 409

    @pytest.mark.asyncio
    async def test_update_and_delete(self, client, service_key):
        created = await client.post(
            "/admin/redeem-codes",
            json={"code": "PROMO", "reward_type": "coins", "reward_amount": "5", "max_uses": 3},
            headers=_auth(service_key),
        )
        code_id = created.json()["code_id"]

        patched = await client.patch(
            f"/admin/redeem-codes/{code_id}", json={"is_active": False}, headers=_auth(service_key)
        )
        deleted = await client.delete(f"/admin/redeem-codes/{code_id}", headers=_auth(service_key))

        assert patched.json()["is_active"] is False
        assert deleted.status_code == 204
        assert (await client.get("/admin/redeem-codes", headers=_auth(service_key))).json() == []


class TestPurchaseRoutes:
    """Catalog, product, plan and bot purchases."""

    @pytest.mark.asyncio
    async def test_catalog_listing(self, client, service_key):
        await _seed_catalog(client, service_key)

        products = await client.get("/v1/economy/catalog/products", headers=_auth(service_key))
        plans = await client.get("/v1/economy/catalog/plans", headers=_auth(service_key))
        bots = await client.get("/v1/economy/catalog/bots", headers=_auth(service_key))

        assert [p["product_id"] for p in products.json()] == ["guide-1"]
        assert plans.json()[0]["validity_days"] == 30
        assert bots.json()[0]["total_sales"] == 0

    @pytest.mark.asyncio
    async def test_duplicate_catalog_entry(self, client, service_key):
        await _seed_catalog(client, service_key)
        response = await client.post(
            "/admin/products",
            json={"product_id": "guide-1", "title": "Again"},
            headers=_auth(service_key),
        )
        assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_inactive_product_hidden(self, client, service_key):
        await _seed_catalog(client, service_key)
        await client.patch(
            "/admin/products/guide-1", json={"is_active": False}, headers=_auth(service_key)
        )

        public = await client.get("/v1/economy/catalog/products", headers=_auth(service_key))
        admin = await client.get("/admin/products", headers=_auth(service_key))

        assert public.json() == []
        assert admin.json()[0]["is_active"] is False

    @pytest.mark.asyncio
    async def test_product_purchase(self, client, service_key):
        await _provision(client, service_key)
        await _seed_catalog(client, service_key)
        url = f"{ACCOUNTS}/1001/products/guide-1/purchase"

        first = await client.post(url, headers=_auth(service_key))
        second = await client.post(url, headers=_auth(service_key))
        owned = await client.get(f"{ACCOUNTS}/1001/products", headers=_auth(service_key))

        assert first.status_code == 200
        assert first.json()["coins_after"] == 50
        assert second.status_code == 409
        assert owned.json()["product_ids"] == ["guide-1"]

    @pytest.mark.asyncio
    async def test_missing_product(self, client, service_key):
        await _provision(client, service_key)
        response = await client.post(
            f"{ACCOUNTS}/1001/products/nope/purchase", headers=_auth(service_key)
        )
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_plan_purchase_and_metering(self, client, service_key):
        provisioned = await _provision(client, service_key)
        await _seed_catalog(client, service_key)

        bought = await client.post(
            f"{ACCOUNTS}/1001/plans/starter/purchase", headers=_auth(service_key)
        )
        assert bought.status_code == 201
        assert Decimal(bought.json()["balance_after"]) == Decimal("400")

        used = await client.post(
            "/v1/metered/use", headers={"X-User-Key": provisioned["new_api_key"]}
        )
        assert used.status_code == 200
        assert used.json()["source"] == "plan"
        assert used.json()["remaining"] == 2

        quota = await client.get(f"{ACCOUNTS}/1001/quota", headers=_auth(service_key))
        assert quota.json()["remaining_requests"] == 2
        assert quota.json()["api_credits"] == 100

    @pytest.mark.asyncio
    async def test_metering_with_bad_user_key(self, client):
        response = await client.post("/v1/metered/use", headers={"X-User-Key": "pr-live-NOPE"})
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_bot_purchase_delivered(self, client, service_key, webhook_ok):
        await _provision(client, service_key)
        await _seed_catalog(client, service_key)

        response = await client.post(
            f"{ACCOUNTS}/1001/bots/signal-bot/purchase", headers=_auth(service_key)
        )

        assert response.status_code == 201
        assert response.json()["delivered"] is True
        assert response.json()["status"] == "processing"
        assert len(webhook_ok.requests) == 1

    @pytest.mark.asyncio
    async def test_bot_purchase_manual_delivery(self, client, service_key, webhook_down):
        app.dependency_overrides[get_delivery_client] = lambda: BotDeliveryClient(
            http_client=httpx.AsyncClient(transport=webhook_down)
        )
        await _provision(client, service_key)
        await _seed_catalog(client, service_key)

        response = await client.post(
            f"{ACCOUNTS}/1001/bots/signal-bot/purchase", headers=_auth(service_key)
        )
        assert response.status_code == 201
        assert response.json()["status"] == "pending"
        purchase_id = response.json()["purchase_id"]

        notifications = await client.get(
            "/admin/notifications", params={"unread_only": True}, headers=_auth(service_key)
        )
        assert [n["purchase_id"] for n in notifications.json()] == [purchase_id]

        pending = await client.get(
            "/admin/bot-purchases", params={"status": "pending"}, headers=_auth(service_key)
        )
        assert len(pending.json()) == 1

        delivered = await client.post(
            f"/admin/bot-purchases/{purchase_id}/status",
            json={"status": "delivered"},
            headers=_auth(service_key),
        )
        assert delivered.json()["status"] == "delivered"

        notification_id = notifications.json()[0]["notification_id"]
        read = await client.post(
            f"/admin/notifications/{notification_id}/read", headers=_auth(service_key)
        )
        assert read.json()["read"] is True

    @pytest.mark.asyncio
    async def test_bot_purchase_insufficient_balance(self, client, service_key):
        await _provision(client, service_key)
        await client.post(
            "/admin/bots",
            json={"bot_id": "pricey", "name": "Pricey", "price": "9999"},
            headers=_auth(service_key),
        )
        response = await client.post(
            f"{ACCOUNTS}/1001/bots/pricey/purchase", headers=_auth(service_key)
        )
        assert response.status_code == 402


class TestReferralRoutes:
    """Referral summary and channel verification."""

    @pytest.mark.asyncio
    async def test_channel_join_credits_referrer(self, client, service_key, news_channel):
        referrer = await _provision(client, service_key, telegram_id=1001)
        code = referrer["account"]["referral"]["referral_code"]
        await _provision(client, service_key, telegram_id=2002, start_param=code)

        response = await client.post(
            f"{ACCOUNTS}/2002/referral/verify-channel",
            json={"channel_id": "@news"},
            headers=_auth(service_key),
        )
        summary = await client.get(f"{ACCOUNTS}/1001/referral", headers=_auth(service_key))
        account = await client.get(f"{ACCOUNTS}/1001", headers=_auth(service_key))

        assert response.status_code == 200
        assert response.json()["referrer_credited"] is True
        assert summary.json()["referral_count"] == 1
        assert Decimal(summary.json()["referral_earnings_balance"]) == Decimal("5")
        assert Decimal(account.json()["balance"]) == Decimal("505")

    @pytest.mark.asyncio
    async def test_other_channel_refused(self, client, service_key, news_channel):
        await _provision(client, service_key, telegram_id=1001)
        await _provision(client, service_key, telegram_id=2002, start_param="REFRT")

        response = await client.post(
            f"{ACCOUNTS}/2002/referral/verify-channel",
            json={"channel_id": "@elsewhere"},
            headers=_auth(service_key),
        )
        account = await client.get(f"{ACCOUNTS}/1001", headers=_auth(service_key))

        assert response.status_code == 400
        assert Decimal(account.json()["balance"]) == Decimal("500")


class TestUserKeyRoutes:
    """User API key lifecycle."""

    @pytest.mark.asyncio
    async def test_regenerate_and_revoke(self, client, service_key):
        provisioned = await _provision(client, service_key)
        old_key = provisioned["new_api_key"]

        info = await client.get(f"{ACCOUNTS}/1001/api-key", headers=_auth(service_key))
        assert info.json()["key_prefix"] == old_key[:12]
        assert "api_key" not in info.json()

        regenerated = await client.post(
            f"{ACCOUNTS}/1001/api-key/regenerate", headers=_auth(service_key)
        )
        new_key = regenerated.json()["api_key"]
        assert new_key != old_key
        assert regenerated.json()["key_prefix"] == new_key[:12]

        old_use = await client.post("/v1/metered/use", headers={"X-User-Key": old_key})
        new_use = await client.post("/v1/metered/use", headers={"X-User-Key": new_key})
        assert old_use.status_code == 401
        assert new_use.status_code == 200
        assert new_use.json()["source"] == "api_credits"

        revoked = await client.post(f"{ACCOUNTS}/1001/api-key/revoke", headers=_auth(service_key))
        after = await client.post("/v1/metered/use", headers={"X-User-Key": new_key})
        assert revoked.status_code == 204
        assert after.status_code == 401


class TestAdminRoutes:
    """Back office account and key management."""

    @pytest.mark.asyncio
    async def test_list_users(self, client, service_key):
        await _provision(client, service_key, telegram_id=1001)
        await _provision(client, service_key, telegram_id=2002, display_name="Bob", username="bob")

        everyone = await client.get("/admin/users", headers=_auth(service_key))
        bob = await client.get(
            "/admin/users", params={"search": "bob"}, headers=_auth(service_key)
        )

        assert everyone.json()["total_count"] == 2
        assert [a["account_id"] for a in bob.json()["accounts"]] == ["2002"]

    @pytest.mark.asyncio
    async def test_ban_blocks_mutations(self, client, service_key):
        await _provision(client, service_key)

        banned = await client.post(
            "/admin/users/1001/ban", json={"banned": True}, headers=_auth(service_key)
        )
        deposit = await client.post(
            f"{ACCOUNTS}/1001/deposit", json={"amount": "50"}, headers=_auth(service_key)
        )

        assert banned.json()["banned"] is True
        assert deposit.status_code == 403

    @pytest.mark.asyncio
    async def test_adjust(self, client, service_key):
        await _provision(client, service_key)
        response = await client.post(
            "/admin/users/1001/adjust",
            json={"balance_delta": "-10", "coins_delta": 5, "reason": "support"},
            headers=_auth(service_key),
        )
        assert Decimal(response.json()["balance"]) == Decimal("490")
        assert response.json()["coins"] == 105

    @pytest.mark.asyncio
    async def test_service_key_management(self, client, service_key):
        created = await client.post(
            "/admin/api-keys",
            json={"name": "ci", "environment": "test", "permissions": ["economy:read"]},
            headers=_auth(service_key),
        )
        assert created.status_code == 201
        new_key = created.json()["plaintext_key"]
        assert new_key.startswith("emk_test_")

        usable = await client.get("/v1/economy/catalog/plans", headers=_auth(new_key))
        assert usable.status_code == 200

        key_id = created.json()["key_id"]
        rotated = await client.post(f"/admin/api-keys/{key_id}/rotate", headers=_auth(service_key))
        assert rotated.status_code == 200
        assert rotated.json()["plaintext_key"] != new_key

        listed = await client.get("/admin/api-keys", headers=_auth(service_key))
        statuses = {k["key_id"]: k["status"] for k in listed.json()}
        assert statuses[key_id] == "rotating"

        revoked = await client.delete(f"/admin/api-keys/{key_id}", headers=_auth(service_key))
        assert revoked.status_code == 204
        refused = await client.get("/v1/economy/catalog/plans", headers=_auth(new_key))
        assert refused.status_code == 401
