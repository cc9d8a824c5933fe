from __future__ import annotations

from prometheus_client import Counter

playback_tokens_issued_total = Counter(
    "playback_tokens_issued_total",
    "Playback credentials issued, by request kind.",
    ["kind"],
)
playback_token_failures_total = Counter(
    "playback_token_failures_total",
    "Playback credential requests that failed at the video host.",
)
entitlement_decisions_total = Counter(
    "entitlement_decisions_total",
    "Entitlement resolutions, by resulting state.",
    ["state"],
)
entitlement_store_failures_total = Counter(
    "entitlement_store_failures_total",
    "Entitlement resolutions that failed closed because the store was unavailable.",
)
purchases_verified_total = Counter(
    "purchases_verified_total",
    "Paid purchases persisted after server-side verification.",
)
purchase_verification_rejected_total = Counter(
    "purchase_verification_rejected_total",
    "Paid checkout verifications that did not produce a purchase, by outcome.",
    ["outcome"],
)
free_enrollments_total = Counter(
    "free_enrollments_total",
    "Free enrollments created.",
)
media_release_failures_total = Counter(
    "media_release_failures_total",
    "Video host media deletions that failed and aborted a delete.",
)
ebook_downloads_total = Counter(
    "ebook_downloads_total",
    "Signed e-book download links issued.",
)
