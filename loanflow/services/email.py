from __future__ import annotations

import html
import logging
import time

import httpx

from loanflow.core.settings import settings

logger = logging.getLogger(__name__)

GRAPH_SCOPE = "https://graph.microsoft.com/.default"
GRAPH_BASE_URL = "https://graph.microsoft.com/v1.0"
TOKEN_URL_TEMPLATE = "https://login.microsoftonline.com/{tenant}/oauth2/v2.0/token"

# Refresh a minute before the token actually expires.
_TOKEN_SKEW_SECONDS = 60

_token_cache: dict[str, object] = {"access_token": None, "expires_at": 0.0}


class EmailConfigurationError(RuntimeError):
    pass


class EmailDeliveryError(RuntimeError):
    pass


def _require_config() -> tuple[str, str, str, str]:
    values = (
        settings.ms_tenant_id,
        settings.ms_client_id,
        settings.ms_client_secret,
        settings.ms_sender_email,
    )
    if not all(values):
        raise EmailConfigurationError("Microsoft Graph email settings are not configured")
    return values  # type: ignore[return-value]


def clear_token_cache() -> None:
    _token_cache["access_token"] = None
    _token_cache["expires_at"] = 0.0


async def _get_access_token(client: httpx.AsyncClient, tenant: str, client_id: str, secret: str) -> str:
    cached = _token_cache.get("access_token")
    if cached and float(_token_cache.get("expires_at") or 0) > time.time():
        return str(cached)

    response = await client.post(
        TOKEN_URL_TEMPLATE.format(tenant=tenant),
        data={
            "grant_type": "client_credentials",
            "client_id": client_id,
            "client_secret": secret,
            "scope": GRAPH_SCOPE,
        },
    )
    if response.status_code >= 300:
        raise EmailDeliveryError(f"Graph token request failed with status {response.status_code}")
    body = response.json()
    token = body.get("access_token")
    if not token:
        raise EmailDeliveryError("Graph token response did not include an access token")
    expires_in = int(body.get("expires_in") or 3600)
    _token_cache["access_token"] = token
    _token_cache["expires_at"] = time.time() + max(0, expires_in - _TOKEN_SKEW_SECONDS)
    return token


async def send_email(to: str, subject: str, html_body: str) -> None:
    tenant, client_id, secret, sender = _require_config()
    message = {
        "message": {
            "subject": subject,
            "body": {"contentType": "HTML", "content": html_body},
            "toRecipients": [{"emailAddress": {"address": to}}],
        },
        "saveToSentItems": False,
    }
    async with httpx.AsyncClient(timeout=20) as client:
        token = await _get_access_token(client, tenant, client_id, secret)
        response = await client.post(
            f"{GRAPH_BASE_URL}/users/{sender}/sendMail",
            json=message,
            headers={"Authorization": f"Bearer {token}"},
        )
    if response.status_code < 200 or response.status_code >= 300:
        if response.status_code == 401:
            clear_token_cache()
        raise EmailDeliveryError(f"Graph sendMail failed with status {response.status_code}")
    logger.info("Email sent subject=%r", subject)


def _link_email(greeting: str, intro: str, link: str, action: str, footer: str) -> str:
    safe_link = html.escape(link, quote=True)
    return (
        f"<p>{html.escape(greeting)}</p>"
        f"<p>{html.escape(intro)}</p>"
        f'<p><a href="{safe_link}">{html.escape(action)}</a></p>'
        f"<p>{html.escape(footer)}</p>"
    )


async def send_invite_email(to: str, name: str, link: str) -> None:
    await send_email(
        to,
        "You're invited to the loan portal",
        _link_email(
            f"Hi {name},",
            "An account has been created for you. Set your password to get started.",
            link,
            "Accept invite",
            f"This link expires in {settings.invite_token_ttl_hours} hours.",
        ),
    )


async def send_password_reset_email(to: str, name: str, link: str) -> None:
    await send_email(
        to,
        "Reset your password",
        _link_email(
            f"Hi {name},",
            "We received a request to reset your password.",
            link,
            "Reset password",
            "If you did not request this, you can ignore this email.",
        ),
    )
