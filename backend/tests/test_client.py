import pytest
import stripe
from httpx import ASGITransport

from coursemarket.auth import ROLE_CREATOR, create_access_token
from coursemarket.client import CheckoutFlow, CommerceClient, PlaybackSession
from coursemarket.config import settings
from coursemarket.errors import (
    DownloadUnavailableError,
    EntitlementError,
    InvalidTransitionError,
    TokenFetchError,
    VerificationFailedError,
)
from coursemarket.main import app
from coursemarket.services.checkout_service import CheckoutState
from coursemarket.services.ebook_storage import EbookStorageError
from coursemarket.services.video_host import VideoHostError

pytestmark = pytest.mark.anyio("asyncio")


def _client(user_id=None) -> CommerceClient:
    token = create_access_token(user_id) if user_id else None
    return CommerceClient(
        "http://testserver",
        access_token=token,
        transport=ASGITransport(app=app),
    )


def _seed(store, price=10000, is_preview=False):
    creator = store.add_account(ROLE_CREATOR)
    course_id = store.add_course(creator, price=price)
    chapter_id = store.add_chapter(course_id)
    lesson_id = store.add_lesson(course_id, chapter_id, is_preview=is_preview)
    return course_id, lesson_id


async def test_playback_session_retry_is_explicit(store, fake_video_host):
    _, lesson_id = _seed(store, is_preview=True)
    fake_video_host.sign_error = VideoHostError("temporarily unavailable", status_code=503)

    async with _client() as client:
        session = PlaybackSession(client=client, lesson_id=lesson_id)
        assert await session.load() is None
        assert isinstance(session.error, TokenFetchError)
        assert session.retryable is True
        assert session.attempts == 1

        fake_video_host.sign_error = None
        token = await session.retry()

    assert token["credential"].startswith("signed-")
    assert session.error is None
    assert session.attempts == 2


async def test_playback_session_does_not_retry_entitlement_errors(store, fake_video_host):
    _, lesson_id = _seed(store)
    learner = store.add_account()

    async with _client(learner) as client:
        session = PlaybackSession(client=client, lesson_id=lesson_id)
        await session.load()
        await session.retry()

    assert isinstance(session.error, EntitlementError)
    assert session.retryable is False
    assert session.attempts == 1


async def test_checkout_flow_verifies_before_entitlement(store, monkeypatch):
    course_id, _ = _seed(store)
    learner = store.add_account()
    monkeypatch.setattr(settings, "stripe_secret_key", "sk_test_value", raising=False)

    def fake_create(**kwargs):
        return {"id": "cs_flow", "url": "https://checkout.stripe.test/cs_flow"}

    def fake_retrieve(session_id):
        return {
            "id": session_id,
            "status": "complete",
            "payment_status": "paid",
            "amount_total": 10000,
            "metadata": {"course_id": course_id, "user_id": learner},
        }

    monkeypatch.setattr("stripe.checkout.Session.create", fake_create)
    monkeypatch.setattr("stripe.checkout.Session.retrieve", fake_retrieve)

    async with _client(learner) as client:
        flow = CheckoutFlow(client=client, course_id=course_id)
        url = await flow.start()
        state = await flow.complete("succeeded")

    assert url == "https://checkout.stripe.test/cs_flow"
    assert state is CheckoutState.verified
    assert flow.attempt.entitled is True
    assert flow.purchase["payment_reference"] == "cs_flow"


async def test_checkout_flow_cancelled_never_verifies(store, monkeypatch):
    course_id, _ = _seed(store)
    learner = store.add_account()
    monkeypatch.setattr(settings, "stripe_secret_key", "sk_test_value", raising=False)
    monkeypatch.setattr(
        "stripe.checkout.Session.create",
        lambda **kwargs: {"id": "cs_cancel", "url": "https://checkout.stripe.test/cs_cancel"},
    )

    def fail_retrieve(session_id):
        raise AssertionError("verification must not run for a cancelled payment")

    monkeypatch.setattr("stripe.checkout.Session.retrieve", fail_retrieve)

    async with _client(learner) as client:
        flow = CheckoutFlow(client=client, course_id=course_id)
        await flow.start()
        state = await flow.complete("cancelled")

    assert state is CheckoutState.gateway_cancelled
    assert flow.attempt.user_message.startswith("Payment was cancelled")
    assert store.purchases == {}


async def test_checkout_flow_verification_can_be_retried(store, monkeypatch):
    course_id, _ = _seed(store)
    learner = store.add_account()
    monkeypatch.setattr(settings, "stripe_secret_key", "sk_test_value", raising=False)
    monkeypatch.setattr(
        "stripe.checkout.Session.create",
        lambda **kwargs: {"id": "cs_retry", "url": "https://checkout.stripe.test/cs_retry"},
    )
    calls = {"count": 0}

    def fake_retrieve(session_id):
        calls["count"] += 1
        if calls["count"] == 1:
            raise stripe.APIConnectionError("gateway timeout")
        return {
            "id": session_id,
            "status": "complete",
            "payment_status": "paid",
            "amount_total": 10000,
            "metadata": {"course_id": course_id, "user_id": learner},
        }

    monkeypatch.setattr("stripe.checkout.Session.retrieve", fake_retrieve)

    async with _client(learner) as client:
        flow = CheckoutFlow(client=client, course_id=course_id)
        await flow.start()
        first = await flow.complete("succeeded")
        second = await flow.verify()

    assert first is CheckoutState.verification_failed
    assert second is CheckoutState.verified
    assert flow.attempt.user_message.startswith("Purchase complete")
    assert len(store.purchases) == 1


@pytest.mark.parametrize(
    ("gateway_status", "payment_status", "expected_message"),
    [
        ("expired", "unpaid", "Payment was cancelled"),
        ("open", "unpaid", "Payment failed"),
    ],
)
async def test_checkout_flow_reports_gateway_outcome_found_during_verification(
    store, monkeypatch, gateway_status, payment_status, expected_message
):
    course_id, _ = _seed(store)
    learner = store.add_account()
    monkeypatch.setattr(settings, "stripe_secret_key", "sk_test_value", raising=False)
    monkeypatch.setattr(
        "stripe.checkout.Session.create",
        lambda **kwargs: {"id": "cs_declined", "url": "https://checkout.stripe.test/cs_declined"},
    )
    monkeypatch.setattr(
        "stripe.checkout.Session.retrieve",
        lambda session_id: {
            "id": session_id,
            "status": gateway_status,
            "payment_status": payment_status,
            "amount_total": 10000,
            "metadata": {"course_id": course_id, "user_id": learner},
        },
    )

    async with _client(learner) as client:
        flow = CheckoutFlow(client=client, course_id=course_id)
        await flow.start()
        state = await flow.complete("succeeded")

        assert state is CheckoutState.verification_failed
        assert flow.attempt.user_message.startswith(expected_message)
        assert "could not be confirmed" not in flow.attempt.user_message
        assert flow.attempt.can_retry_verification is False
        with pytest.raises(InvalidTransitionError):
            await flow.verify()

    assert flow.attempt.entitled is False
    assert store.purchases == {}


async def test_unconfirmed_payment_keeps_its_own_message(store, monkeypatch):
    course_id, _ = _seed(store)
    learner = store.add_account()
    monkeypatch.setattr(settings, "stripe_secret_key", "sk_test_value", raising=False)
    monkeypatch.setattr(
        "stripe.checkout.Session.create",
        lambda **kwargs: {"id": "cs_short", "url": "https://checkout.stripe.test/cs_short"},
    )
    monkeypatch.setattr(
        "stripe.checkout.Session.retrieve",
        lambda session_id: {
            "id": session_id,
            "status": "complete",
            "payment_status": "paid",
            "amount_total": 500,
            "metadata": {"course_id": course_id, "user_id": learner},
        },
    )

    async with _client(learner) as client:
        flow = CheckoutFlow(client=client, course_id=course_id)
        await flow.start()
        state = await flow.complete("succeeded")

    assert state is CheckoutState.verification_failed
    assert isinstance(flow.attempt.error, VerificationFailedError)
    assert "could not be confirmed" in flow.attempt.user_message
    assert flow.attempt.can_retry_verification is True


async def test_ebook_download_errors_carry_the_ebook(store, fake_ebook_storage):
    creator = store.add_account(ROLE_CREATOR)
    ebook_id = store.add_ebook(creator)
    learner = store.add_account()

    async with _client(learner) as client:
        with pytest.raises(EntitlementError) as denied:
            await client.ebook_download(ebook_id)

        store.add_ebook_purchase(learner, ebook_id)
        fake_ebook_storage.error = EbookStorageError("upstream", status_code=503)
        with pytest.raises(DownloadUnavailableError):
            await client.ebook_download(ebook_id)

        fake_ebook_storage.error = None
        download = await client.ebook_download(ebook_id)

    assert denied.value.ebook_id == ebook_id
    assert download["download_count"] == 1
