"""
Guitar Harmony - Shared password auth

There is exactly one user.  Knowing AUTH_PASSWORD is what makes you that
user: a correct password earns an HMAC-signed session cookie, and the
HTTP middleware in ``guitar_harmony.main`` turns every request without a
valid cookie away (401 for ``/api/*``, a redirect to ``/login`` otherwise).

Cookie value format: ``<json payload>|<hex HMAC-SHA256 of the payload>``.
"""

import hashlib
import hmac
import html
import json
import time
from typing import Any

from fastapi import Request, Response
from fastapi.responses import HTMLResponse

from guitar_harmony import config

SESSION_USER = "owner"

# Paths reachable without a session
PUBLIC_PATHS = {
    "/login",
    "/api/auth/login",
    "/api/health",
    "/favicon.ico",
}


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def _sign(payload: str) -> str:
    """HMAC-SHA256 of *payload* keyed with SECRET_KEY, as hex."""
    return hmac.new(
        config.SECRET_KEY.encode("utf-8"),
        payload.encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()


def _create_session_cookie(issued_at: int | None = None) -> str:
    data = json.dumps(
        {
            "user": SESSION_USER,
            "ts": int(time.time()) if issued_at is None else issued_at,
        },
        separators=(",", ":"),
    )
    return f"{data}|{_sign(data)}"


def _parse_session_cookie(cookie_value: str) -> dict[str, Any] | None:
    """Verify signature and age of a cookie value. Returns the payload or None."""
    if not cookie_value or "|" not in cookie_value:
        return None

    data_part, sig_part = cookie_value.rsplit("|", 1)
    if not hmac.compare_digest(sig_part, _sign(data_part)):
        return None

    try:
        session = json.loads(data_part)
        issued = float(session.get("ts", 0))
    except (ValueError, TypeError, AttributeError):
        return None

    if time.time() - issued > config.SESSION_MAX_AGE:
        return None
    return session


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def get_current_user(request: Request) -> str | None:
    cookie = request.cookies.get(config.SESSION_COOKIE_NAME, "")
    session = _parse_session_cookie(cookie)
    if session:
        return session.get("user")
    return None


def is_authenticated(request: Request) -> bool:
    return get_current_user(request) is not None


def set_session_cookie(response: Response) -> None:
    """Attach a freshly signed session cookie (30 days, http-only, lax)."""
    response.set_cookie(
        key=config.SESSION_COOKIE_NAME,
        value=_create_session_cookie(),
        max_age=config.SESSION_MAX_AGE,
        httponly=True,
        samesite="lax",
        path="/",
    )


def clear_session_cookie(response: Response) -> None:
    response.delete_cookie(key=config.SESSION_COOKIE_NAME, path="/")


def is_public(path: str) -> bool:
    return path in PUBLIC_PATHS


def is_api_path(path: str) -> bool:
    return path == "/api" or path.startswith("/api/")


def auth_required(request: Request) -> bool:
    """
    Return True when the request must be turned away: it targets a
    protected path and carries no valid session cookie.
    """
    if is_public(request.url.path):
        return False
    return not is_authenticated(request)


def verify_password(password: str) -> bool:
    """Constant-time comparison against the configured shared password."""
    if not config.AUTH_PASSWORD or not isinstance(password, str):
        return False
    return hmac.compare_digest(
        password.encode("utf-8"), config.AUTH_PASSWORD.encode("utf-8")
    )


# ---------------------------------------------------------------------------
# Login page
# ---------------------------------------------------------------------------

LOGIN_PAGE_HTML = """\
<!doctype html>
<html lang="en">
<head>
    <meta charset="UTF-8" />
    <meta name="viewport" content="width=device-width, initial-scale=1.0" />
    <title>Login - Guitar Harmony</title>
    <style>
        body {
            min-height: 100vh;
            margin: 0;
            display: flex;
            align-items: center;
            justify-content: center;
            background: #1f1b16;
            font-family: system-ui, sans-serif;
            color: #f3ead8;
        }
        form {
            background: #2d271f;
            border-radius: 12px;
            padding: 32px;
            width: 100%%;
            max-width: 340px;
        }
        h1 { font-size: 1.4em; margin: 0 0 20px; text-align: center; }
        input, button {
            width: 100%%;
            box-sizing: border-box;
            padding: 12px;
            border-radius: 8px;
            font-size: 1em;
        }
        input { border: 1px solid #5a4d3b; background: #1f1b16; color: inherit; }
        button { margin-top: 12px; border: none; background: #c9822b; color: #fff; cursor: pointer; }
        .error-msg { color: #e8705a; margin-bottom: 12px; text-align: center; min-height: 1.2em; }
    </style>
</head>
<body>
    <form id="login-form">
        <h1>🎸 Guitar Harmony</h1>
        <div class="error-msg" id="error">%(error)s</div>
        <input type="password" id="password" placeholder="Password"
               autocomplete="current-password" required autofocus />
        <button type="submit">Sign In</button>
    </form>
    <script>
        document.getElementById("login-form").addEventListener("submit", async (e) => {
            e.preventDefault();
            const res = await fetch("/api/auth/login", {
                method: "POST",
                headers: { "Content-Type": "application/json" },
                body: JSON.stringify({ password: document.getElementById("password").value }),
            });
            if (res.ok) {
                window.location.href = "/";
            } else {
                document.getElementById("error").textContent = "Invalid password";
            }
        });
    </script>
</body>
</html>
"""


def render_login_page(error: str = "") -> HTMLResponse:
    """Render the login page, optionally with an error message."""
    return HTMLResponse(content=LOGIN_PAGE_HTML % {"error": html.escape(error)})
