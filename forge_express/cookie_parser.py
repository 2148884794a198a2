"""Cookie parsing middleware."""

from typing import Optional

from forge_express.complete import Complete
from forge_express.continuation import Next
from forge_express.cookies import parse_cookie_header, split_signed
from forge_express.middleware import Middleware, sync_middleware
from forge_express.request import Request
from forge_express.response import Response


def cookie_parser(secret: Optional[str] = None) -> Middleware:
    """Populate ``Request.cookies`` and ``Request.signed_cookies``.

    Args:
        secret: Secret used to verify signed cookies. Falls back to the
            application's ``secret_key``. The secret is also stored on the
            request so ``Response.cookie`` can sign with it.
    """

    def parse_cookies(next: Next, request: Request, response: Response) -> Complete:
        raw = request.raw
        if raw.cookies is not None:
            return next()

        key = secret
        if key is None and raw.app is not None:
            key = raw.app.config.secret_key or None
        raw.secret = key

        parsed = parse_cookie_header(raw.headers.get("cookie", ""))
        raw.cookies, raw.signed_cookies = split_signed(parsed, key)
        return next()

    return sync_middleware.from_(parse_cookies)
