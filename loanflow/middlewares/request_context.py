from uuid import uuid4

from starlette.types import ASGIApp, Message, Receive, Scope, Send

from loanflow.core import context

REQUEST_ID_HEADER = b"x-request-id"


class RequestContextMiddleware:
    """Bind a request id for log correlation and echo it on the response."""

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        incoming = dict(scope.get("headers", [])).get(REQUEST_ID_HEADER, b"").decode()
        request_id = incoming.strip()[:128] or uuid4().hex
        context.begin_request(request_id)

        async def send_with_request_id(message: Message) -> None:
            if message["type"] == "http.response.start":
                message["headers"] = [
                    *message.get("headers", []),
                    (REQUEST_ID_HEADER, request_id.encode()),
                ]
            await send(message)

        try:
            await self.app(scope, receive, send_with_request_id)
        finally:
            context.clear_context()
