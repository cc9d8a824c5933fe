import pytest

from coursemarket.auth import ROLE_ADMIN, ROLE_CREATOR
from coursemarket.config import settings
from coursemarket.services.video_host import VideoHostError

pytestmark = pytest.mark.anyio("asyncio")

MEDIA_ID = "0123456789abcdef0123456789abcdef"


def _seed(store, price=10000):
    creator = store.add_account(ROLE_CREATOR)
    course_id = store.add_course(creator, price=price)
    chapter_id = store.add_chapter(course_id)
    lesson_id = store.add_lesson(course_id, chapter_id, media_id=MEDIA_ID)
    return creator, course_id, lesson_id


async def test_healthz(async_client):
    resp = await async_client.get("/healthz")
    assert resp.status_code == 200
    assert resp.json()["ok"] is True
    assert resp.headers.get("X-Request-ID")


async def test_metrics_endpoint(async_client):
    resp = await async_client.get("/metrics")
    assert resp.status_code == 200
    assert "playback_tokens_issued_total" in resp.text


async def test_video_token_requires_login_for_paid_lesson(async_client, store, fake_video_host):
    _, _, lesson_id = _seed(store)

    resp = await async_client.post("/api/video/token", json={"lesson_id": lesson_id})

    assert resp.status_code == 401
    body = resp.json()
    assert body["code"] == "auth_required"
    assert body["action"] == "login"


async def test_video_token_forbidden_without_purchase(
    async_client, store, fake_video_host, auth_headers
):
    _, course_id, lesson_id = _seed(store)
    learner = store.add_account()

    resp = await async_client.post(
        "/api/video/token", json={"lesson_id": lesson_id}, headers=auth_headers(learner)
    )

    assert resp.status_code == 403
    assert resp.json()["action"] == "purchase"
    assert resp.json()["course_id"] == course_id


async def test_video_token_issued_after_purchase(
    async_client, store, fake_video_host, auth_headers
):
    _, course_id, lesson_id = _seed(store)
    learner = store.add_account()
    store.add_purchase(learner, course_id)

    resp = await async_client.post(
        "/api/video/token",
        json={"lesson_id": lesson_id, "media_id": MEDIA_ID},
        headers=auth_headers(learner),
    )

    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["credential"] == f"signed-{MEDIA_ID}"
    assert body["expires_in_seconds"] == settings.playback_token_ttl_seconds


async def test_video_token_upstream_failure_is_retryable(
    async_client, store, fake_video_host, auth_headers
):
    _, course_id, lesson_id = _seed(store, price=0)
    fake_video_host.sign_error = VideoHostError("signing key rejected")

    resp = await async_client.post("/api/video/token", json={"lesson_id": lesson_id})

    assert resp.status_code == 502
    body = resp.json()
    assert body["retryable"] is True
    assert body["cause"] == "signing key rejected"


async def test_cart_toggle_endpoint(async_client, store, auth_headers):
    _, course_id, _ = _seed(store)
    learner = store.add_account()

    first = await async_client.post(
        "/api/cart/toggle", json={"course_id": course_id}, headers=auth_headers(learner)
    )
    listing = await async_client.get("/api/cart", headers=auth_headers(learner))
    second = await async_client.post(
        "/api/cart/toggle", json={"course_id": course_id}, headers=auth_headers(learner)
    )

    assert first.json()["in_cart"] is True
    assert listing.json()["total"] == 10000
    assert second.json()["in_cart"] is False


async def test_free_enroll_twice_reports_already_enrolled(async_client, store, auth_headers):
    _, course_id, _ = _seed(store, price=0)
    learner = store.add_account()

    first = await async_client.post(
        "/api/payment/free-enroll", json={"course_id": course_id}, headers=auth_headers(learner)
    )
    second = await async_client.post(
        "/api/payment/free-enroll", json={"course_id": course_id}, headers=auth_headers(learner)
    )

    assert first.status_code == 200
    assert first.json()["purchase"]["amount"] == 0
    assert second.status_code == 200
    assert second.json() == {"already_enrolled": True, "purchase": None}
    assert len(store.active_purchases(learner, course_id)) == 1


async def test_verify_endpoint_maps_cancellation(async_client, store, auth_headers, monkeypatch):
    _, course_id, _ = _seed(store)
    learner = store.add_account()
    monkeypatch.setattr(settings, "stripe_secret_key", "sk_test_value", raising=False)

    def fake_retrieve(session_id):
        return {
            "id": session_id,
            "status": "expired",
            "payment_status": "unpaid",
            "metadata": {"course_id": course_id, "user_id": learner},
        }

    monkeypatch.setattr("stripe.checkout.Session.retrieve", fake_retrieve)

    resp = await async_client.post(
        "/api/payment/verify",
        json={"order_reference": "cs_test_1", "course_id": course_id},
        headers=auth_headers(learner),
    )

    assert resp.status_code == 402
    assert resp.json()["code"] == "payment_cancelled"
    assert store.purchases == {}


async def test_webhook_rejects_missing_signature(async_client, monkeypatch):
    monkeypatch.setattr(settings, "stripe_webhook_secret", "whsec_test", raising=False)

    resp = await async_client.post("/api/payment/webhook", content=b"{}")

    assert resp.status_code == 400


async def test_progress_endpoint(async_client, store, auth_headers):
    _, course_id, lesson_id = _seed(store)
    learner = store.add_account()
    store.add_purchase(learner, course_id)

    resp = await async_client.post(
        f"/api/progress/lessons/{lesson_id}/complete", headers=auth_headers(learner)
    )
    summary = await async_client.get(
        f"/api/progress/courses/{course_id}", headers=auth_headers(learner)
    )

    assert resp.status_code == 200, resp.text
    assert resp.json()["completed"] is True
    assert summary.json()["percent"] == 100


async def test_revenue_routes_enforce_roles(async_client, store, auth_headers):
    creator, course_id, _ = _seed(store)
    learner = store.add_account()
    admin = store.add_account(ROLE_ADMIN)
    store.add_purchase(learner, course_id)

    as_learner = await async_client.get("/api/revenue/creator", headers=auth_headers(learner))
    as_creator = await async_client.get("/api/revenue/creator", headers=auth_headers(creator))
    platform_denied = await async_client.get(
        "/api/revenue/platform", headers=auth_headers(creator)
    )
    platform = await async_client.get("/api/revenue/platform", headers=auth_headers(admin))

    assert as_learner.status_code == 403
    assert as_creator.json()["totals"]["creator_share"] == 7000
    assert platform_denied.status_code == 403
    assert platform.json()["totals"]["platform_share"] == 3000


async def test_studio_publish_reports_missing(async_client, store, auth_headers):
    creator = store.add_account(ROLE_CREATOR)
    course_id = store.add_course(creator, description=None, is_published=False)

    resp = await async_client.post(
        f"/studio/courses/{course_id}/publish", json={}, headers=auth_headers(creator)
    )

    assert resp.status_code == 422
    body = resp.json()
    assert body["code"] == "validation_failed"
    assert "description is required" in body["missing"]
    assert "no chapters" in body["missing"]


async def test_studio_delete_course_aborts_on_release_failure(
    async_client, store, fake_video_host, auth_headers
):
    creator, course_id, _ = _seed(store)
    fake_video_host.failing.add(MEDIA_ID)

    resp = await async_client.delete(f"/studio/courses/{course_id}", headers=auth_headers(creator))

    assert resp.status_code == 502
    assert resp.json()["failed_media_ids"] == [MEDIA_ID]
    assert course_id in store.courses
