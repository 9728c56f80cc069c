"""Email bodies for claim notifications."""

from html import escape
from typing import Any

CLAIM_READY_TEMPLATE = "claim_ready"
DEFAULT_SUBJECT = "Your delay claim is ready"


def build_claim_ready_payload(claim, claim_url: str | None, live: bool) -> dict[str, Any]:
    """Snapshot stored on the outbox row; the email is rendered from this alone."""

    def iso(value):
        return value.isoformat() if value else None

    return {
        "claim_id": claim.id,
        "trip_id": claim.trip_id,
        "operator": claim.operator,
        "origin": claim.origin,
        "destination": claim.destination,
        "depart_planned": iso(claim.depart_planned),
        "arrive_planned": iso(claim.arrive_planned),
        "delay_minutes": claim.delay_minutes,
        "booking_ref": claim.booking_ref,
        "provider_ref": claim.provider_ref,
        "submitted": live,
        "claim_url": claim_url,
    }


def render_claim_ready(payload: dict[str, Any], app_url: str = "") -> tuple[str, str]:
    """Return (html, text) for the claim_ready template."""
    route = f"{payload.get('origin') or '?'} to {payload.get('destination') or '?'}"
    delay = payload.get("delay_minutes")
    delay_text = f"{delay} min" if delay is not None else "unknown"
    claim_url = payload.get("claim_url") or ""

    if payload.get("submitted"):
        intro = "We have submitted your Delay Repay claim."
        action = "Track it on the operator's site"
    else:
        intro = "Your journey looks eligible for Delay Repay."
        action = "Submit your claim"

    rows = [
        ("Operator", payload.get("operator") or "unknown"),
        ("Journey", route),
        ("Departure", payload.get("depart_planned") or "unknown"),
        ("Delay", delay_text),
        ("Booking reference", payload.get("booking_ref") or "unknown"),
    ]
    if payload.get("provider_ref"):
        rows.append(("Claim reference", payload["provider_ref"]))

    items = "".join(f"<li><b>{escape(label)}:</b> {escape(str(value))}</li>" for label, value in rows)
    html = (
        '<div style="font-family: system-ui, -apple-system, Segoe UI, Roboto, Arial; line-height: 1.4;">'
        "<h2>Claim ready</h2>"
        f"<p>{escape(intro)}</p>"
        f"<ul>{items}</ul>"
        f'<p><a href="{escape(claim_url, quote=True)}">{escape(action)}</a></p>'
        + (f'<p><a href="{escape(app_url, quote=True)}">Open your dashboard</a></p>' if app_url else "")
        + "</div>"
    )

    text_lines = [intro, ""]
    text_lines += [f"{label}: {value}" for label, value in rows]
    text_lines += ["", f"{action}: {claim_url}"]
    if app_url:
        text_lines.append(f"Dashboard: {app_url}")

    return html, "\n".join(text_lines)
