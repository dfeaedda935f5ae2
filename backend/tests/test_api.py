"""HTTP API tests: response envelope, actor handling and error status mapping."""

import asyncio

import httpx

from conftest import make_context, seed_account, seed_email
from mailtriage.main import create_app
from mailtriage.models.suggestion import PendingLabelSuggestion


def as_actor(actor_id, role="user"):
    return {"X-Actor-Id": str(actor_id), "X-Actor-Role": role}


USER = as_actor(7)
OTHER = as_actor(8)
ADMIN = as_actor(99, "admin")


def api_test(body, **context_kwargs):
    """Run body(client, ctx) against an app wired to a fresh in-memory context."""

    async def scenario():
        ctx = await make_context(**context_kwargs)
        app = create_app(context=ctx)
        transport = httpx.ASGITransport(app=app)
        try:
            async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
                return await body(client, ctx)
        finally:
            await ctx.close()

    return asyncio.run(scenario())


def assert_error(response, status, code):
    assert response.status_code == status, response.text
    payload = response.json()
    assert payload["success"] is False
    assert payload["error"] == code
    assert payload["message"]
    assert payload["timestamp"]


def test_root_and_health():
    async def body(client, ctx):
        return await client.get("/"), await client.get("/health")

    root, health = api_test(body)
    assert root.json()["status"] == "running"
    assert health.json()["status"] == "healthy"
    assert health.json()["sweep_running"] is False


def test_actor_header_is_required_and_validated():
    async def body(client, ctx):
        return (
            await client.get("/api/labels/"),
            await client.get("/api/labels/", headers=as_actor(7, "superuser")),
            await client.get("/api/labels/", headers={"X-Actor-Id": "seven"}),
        )

    missing, bad_role, bad_id = api_test(body)
    assert_error(missing, 401, "unauthorized")
    assert_error(bad_role, 400, "validation_error")
    assert_error(bad_id, 400, "validation_error")


def test_ingest_classify_and_read_back():
    async def body(client, ctx):
        account = await client.post("/api/emails/accounts", json={"email_address": "Me@Example.com"}, headers=USER)
        account_id = account.json()["data"]["id"]
        email = await client.post(
            "/api/emails/",
            json={
                "account_id": account_id,
                "message_id": "<abc@example.com>",
                "sender": "Boss <ceo@acme-corp-domain.com>",
                "subject": "Urgent: Q3 escalation",
                "body": "Need numbers today.",
            },
            headers=USER,
        )
        email_id = email.json()["data"]["id"]
        duplicate = await client.post(
            "/api/emails/",
            json={"account_id": account_id, "message_id": "<abc@example.com>", "sender": "x@y.org"},
            headers=USER,
        )
        classified = await client.post(f"/api/emails/{email_id}/classify", headers=USER)
        detail = await client.get(f"/api/emails/{email_id}", headers=USER)
        forbidden = await client.get(f"/api/emails/{email_id}", headers=OTHER)
        admin_view = await client.get(f"/api/emails/{email_id}", headers=ADMIN)
        missing = await client.get("/api/emails/424242", headers=USER)
        stats = await client.get("/api/emails/stats", headers=USER)
        return account, email, duplicate, classified, detail, forbidden, admin_view, missing, stats

    account, email, duplicate, classified, detail, forbidden, admin_view, missing, stats = api_test(body)

    assert account.status_code == 200
    assert account.json()["success"] is True
    assert account.json()["data"]["email_address"] == "me@example.com"
    assert account.json()["data"]["user_id"] == 7
    assert email.json()["message"] == "Email stored"
    assert_error(duplicate, 400, "validation_error")

    data = classified.json()["data"]
    assert data["method_used"] == "domain"
    assert data["flags"]["is_hierarchy"] is True
    assert data["reminder_created"] is True

    payload = detail.json()
    assert set(payload) == {"success", "data", "message", "timestamp"}
    assert payload["data"]["classification"]["is_urgent"] is True
    assert {label["name"] for label in payload["data"]["labels"]} == {"Escalation", "Urgent"}
    assert_error(forbidden, 403, "forbidden")
    assert admin_view.status_code == 200
    assert_error(missing, 404, "not_found")
    assert stats.json()["data"]["classified"] == 1


def test_account_for_another_user_needs_admin():
    async def body(client, ctx):
        return (
            await client.post("/api/emails/accounts", json={"email_address": "a@b.com", "user_id": 8}, headers=USER),
            await client.post("/api/emails/accounts", json={"email_address": "a@b.com", "user_id": 8}, headers=ADMIN),
            await client.post("/api/emails/", json={"account_id": 999, "sender": "x@y.org"}, headers=USER),
        )

    user_try, admin_try, no_account = api_test(body)
    assert_error(user_try, 403, "forbidden")
    assert admin_try.json()["data"]["user_id"] == 8
    assert_error(no_account, 404, "not_found")


def test_suggestion_processing_status_codes():
    async def body(client, ctx):
        account = await seed_account(ctx, user_id=7)
        email_id = await seed_email(ctx, account)
        async with ctx.session_factory() as db:
            first = PendingLabelSuggestion(email_id=email_id, user_id=7, suggested_label_name="Finance")
            second = PendingLabelSuggestion(email_id=email_id, user_id=7, suggested_label_name="Travel")
            db.add_all([first, second])
            await db.commit()

        pending = await client.get("/api/labels/suggestions/pending", headers=USER)
        count_other = await client.get("/api/labels/suggestions/count", headers=OTHER)
        bad_action = await client.post(f"/api/labels/suggestions/{first.id}/process", json={"action": "maybe"}, headers=USER)
        forbidden = await client.post(f"/api/labels/suggestions/{first.id}/process", json={"action": "approve"}, headers=OTHER)
        approved = await client.post(f"/api/labels/suggestions/{first.id}/process", json={"action": "approve"}, headers=USER)
        again = await client.post(f"/api/labels/suggestions/{first.id}/process", json={"action": "approve"}, headers=USER)
        rejected = await client.post(f"/api/labels/suggestions/{second.id}/process", json={"action": "reject"}, headers=ADMIN)
        missing = await client.post("/api/labels/suggestions/9999/process", json={"action": "reject"}, headers=ADMIN)
        count_after = await client.get("/api/labels/suggestions/count", headers=USER)
        return pending, count_other, bad_action, forbidden, approved, again, rejected, missing, count_after

    pending, count_other, bad_action, forbidden, approved, again, rejected, missing, count_after = api_test(body)
    assert len(pending.json()["data"]) == 2
    assert count_other.json()["data"] == {"count": 0}
    assert_error(bad_action, 400, "validation_error")
    assert_error(forbidden, 403, "forbidden")
    assert approved.json()["data"]["status"] == "approved"
    assert approved.json()["data"]["label_id"] is not None
    assert_error(again, 409, "already_processed")
    assert rejected.json()["data"]["status"] == "rejected"
    assert_error(missing, 404, "not_found")
    assert count_after.json()["data"] == {"count": 0}


def test_label_management():
    async def body(client, ctx):
        listing = await client.get("/api/labels/", headers=USER)
        system_id = next(label["id"] for label in listing.json()["data"] if label["name"] == "Urgent")
        created = await client.post("/api/labels/", json={"name": "Invoices", "color": "#112233"}, headers=USER)
        label_id = created.json()["data"]["id"]
        duplicate = await client.post("/api/labels/", json={"name": "invoices"}, headers=USER)
        bad_color = await client.post("/api/labels/", json={"name": "Other", "color": "red"}, headers=USER)
        system_edit = await client.patch(f"/api/labels/{system_id}", json={"name": "Later"}, headers=ADMIN)
        foreign_edit = await client.patch(f"/api/labels/{label_id}", json={"name": "Bills"}, headers=OTHER)
        renamed = await client.patch(f"/api/labels/{label_id}", json={"name": "Bills"}, headers=USER)
        deleted = await client.delete(f"/api/labels/{label_id}", headers=ADMIN)
        gone = await client.delete(f"/api/labels/{label_id}", headers=ADMIN)
        return listing, created, duplicate, bad_color, system_edit, foreign_edit, renamed, deleted, gone

    listing, created, duplicate, bad_color, system_edit, foreign_edit, renamed, deleted, gone = api_test(body)
    assert {label["name"] for label in listing.json()["data"]} == {"Escalation", "Urgent", "MOM"}
    assert created.json()["data"]["created_by_user_id"] == 7
    assert_error(duplicate, 400, "validation_error")
    assert_error(bad_color, 400, "validation_error")
    assert_error(system_edit, 403, "forbidden")
    assert_error(foreign_edit, 403, "forbidden")
    assert renamed.json()["data"]["name"] == "Bills"
    assert deleted.json()["success"] is True
    assert_error(gone, 404, "not_found")


def test_analytics_endpoints():
    async def body(client, ctx):
        empty = await client.get("/api/analytics/token-usage", headers=USER)
        account = await seed_account(ctx, user_id=7)
        await ctx.processor.process_email_by_id(await seed_email(ctx, account, subject="Urgent please"))
        await ctx.processor.process_email_by_id(await seed_email(ctx, account, sender="news@substack.com"))
        usage = await client.get("/api/analytics/token-usage", params={"days": 30}, headers=USER)
        savings = await client.get("/api/analytics/cost-savings", headers=USER)
        metrics = await client.get("/api/analytics/optimization-metrics", headers=USER)
        bad_days = await client.get("/api/analytics/token-usage", params={"days": 0}, headers=USER)
        return empty, usage, savings, metrics, bad_days

    empty, usage, savings, metrics, bad_days = api_test(body)
    assert empty.status_code == 200
    assert empty.json()["data"] is None
    assert empty.json()["message"] == "No classification data in this period"

    stats = usage.json()["data"]
    assert stats["period_days"] == 30
    assert stats["total_classifications"] == 2
    assert stats["by_method"]["regex"]["count"] == 1
    assert stats["by_method"]["domain"]["count"] == 1
    assert savings.json()["data"]["calls_avoided"] == 2
    assert metrics.json()["data"]["optimization_rate"] == 100.0
    assert_error(bad_days, 400, "validation_error")


def test_sweep_endpoints():
    async def body(client, ctx):
        account = await seed_account(ctx, user_id=7)
        await seed_email(ctx, account, subject="Meeting at noon")
        denied = await client.post("/api/sweep/run", headers=USER)
        ran = await client.post("/api/sweep/run", headers=ADMIN)
        status = await client.get("/api/sweep/status", headers=USER)
        return denied, ran, status

    denied, ran, status = api_test(body)
    assert_error(denied, 403, "forbidden")
    assert ran.json()["data"]["processed"] == 1
    data = status.json()["data"]
    assert data["running"] is False
    assert data["last_result"]["processed"] == 1
    assert data["stats"]["unclassified"] == 0


def test_reminder_endpoints():
    async def body(client, ctx):
        account = await seed_account(ctx, user_id=7)
        await ctx.processor.process_email_by_id(await seed_email(ctx, account, subject="Urgent: outage escalation"))
        listing = await client.get("/api/reminders/", headers=USER)
        reminder_id = listing.json()["data"][0]["id"]
        high = await client.get("/api/reminders/high-priority", headers=USER)
        forbidden = await client.patch(f"/api/reminders/{reminder_id}/resolve", headers=OTHER)
        resolved = await client.patch(f"/api/reminders/{reminder_id}/resolve", headers=USER)
        open_after = await client.get("/api/reminders/", headers=USER)
        reopened = await client.patch(f"/api/reminders/{reminder_id}/unresolve", headers=ADMIN)
        single = await client.get(f"/api/reminders/{reminder_id}", headers=USER)
        missing = await client.get("/api/reminders/777", headers=USER)
        return listing, high, forbidden, resolved, open_after, reopened, single, missing

    listing, high, forbidden, resolved, open_after, reopened, single, missing = api_test(body)
    assert listing.json()["data"][0]["priority"] == 3
    assert len(high.json()["data"]) == 1
    assert_error(forbidden, 403, "forbidden")
    assert resolved.json()["data"]["resolved"] is True
    assert open_after.json()["data"] == []
    assert reopened.json()["data"]["resolved"] is False
    assert single.json()["data"]["resolved"] is False
    assert_error(missing, 404, "not_found")


def test_chat_endpoint_without_embeddings_has_no_context():
    async def body(client, ctx):
        return (
            await client.post("/api/chat", json={"question": "What is due this week?"}, headers=USER),
            await client.post("/api/chat", json={"question": ""}, headers=USER),
            await client.post("/api/attachments/search", json={"query": "contract"}, headers=USER),
        )

    answer, empty, search = api_test(body)
    assert answer.status_code == 200
    assert answer.json()["data"]["sources"] == []
    assert "couldn't find" in answer.json()["data"]["answer"]
    assert_error(empty, 400, "validation_error")
    assert search.json()["data"] == []
