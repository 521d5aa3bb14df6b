from starlette.types import ASGIApp, Message, Receive, Scope, Send

from loanflow.core.settings import settings

HSTS_VALUE = b"max-age=63072000; includeSubDomains"


def _default_headers(enable_hsts: bool) -> list[tuple[bytes, bytes]]:
    headers = [
        (b"x-content-type-options", b"nosniff"),
        (b"x-frame-options", b"DENY"),
        (b"referrer-policy", b"no-referrer"),
        (b"cross-origin-opener-policy", b"same-origin"),
        (b"permissions-policy", b"camera=(), microphone=(), geolocation=()"),
    ]
    if enable_hsts:
        headers.append((b"strict-transport-security", HSTS_VALUE))
    if settings.content_security_policy:
        name = (
            b"content-security-policy-report-only"
            if settings.content_security_policy_report_only
            else b"content-security-policy"
        )
        headers.append((name, settings.content_security_policy.encode()))
    return headers


class SecurityHeadersMiddleware:
    """Add browser hardening headers unless the route already set them."""

    def __init__(self, app: ASGIApp, enable_hsts: bool = False) -> None:
        self.app = app
        self.headers = _default_headers(enable_hsts)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        async def send_with_headers(message: Message) -> None:
            if message["type"] == "http.response.start":
                current = list(message.get("headers", []))
                present = {key.lower() for key, _ in current}
                current.extend((key, value) for key, value in self.headers if key not in present)
                message["headers"] = current
            await send(message)

        await self.app(scope, receive, send_with_headers)
