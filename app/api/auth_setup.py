"""
app/api/auth_setup.py

Purpose: Magic-link web onboarding

- GET /auth/setup?token=...: credential form, or an error page for
  missing / expired / used tokens
- POST /auth/setup/submit: validates origin, fields and length bounds,
  redeems the single-use token, stores credentials, and sends the
  welcome texts in the background
- Pages carry CSP, frame and cache headers; the token is validated
  and escaped before it is embedded
"""

from typing import Optional, Tuple
from urllib.parse import urlsplit

from fastapi import APIRouter, BackgroundTasks, Request
from fastapi.responses import HTMLResponse, JSONResponse
from pydantic import BaseModel, Field

from app.core.config import settings
from app.core.exceptions import MessagingGatewayError
from app.core.logging import get_logger
from app.flow.handlers.welcome import complete_authentication, send_welcome
from app.schemas.response import SetupSubmitResult
from app.services import magic_link_service
from app.services.linq_service import get_linq_service
from utils.message_utils import redact_phone
from utils.validation_utils import escape_for_html, is_valid_magic_token, validate_credential_length

logger = get_logger(__name__)
router = APIRouter()

PAGE_SECURITY_HEADERS = {
    "Content-Security-Policy": "; ".join([
        "default-src 'none'",
        "script-src 'unsafe-inline'",
        "style-src 'unsafe-inline'",
        "img-src 'self' data:",
        "font-src 'self' data:",
        "connect-src 'self'",
        "frame-ancestors 'none'",
    ]),
    "X-Frame-Options": "DENY",
    "X-Content-Type-Options": "nosniff",
    "Cache-Control": "no-store, no-cache, must-revalidate",
}

JSON_SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
}

PAGE_STYLES = """
    body { margin: 0; background: #0a0a0a; color: #ffffff; font-family: system-ui, -apple-system, sans-serif; }
    .container { max-width: 420px; margin: 0 auto; padding: 48px 20px; }
    .card { background: #111111; border: 1px solid #222222; border-radius: 16px; padding: 28px; }
    h1 { font-size: 24px; font-weight: 500; margin: 0 0 8px; }
    .muted { color: #a1a1a1; font-size: 14px; }
    input { width: 100%; padding: 14px 16px; background: #0a0a0a; border: 1px solid #222222;
            border-radius: 10px; color: #ffffff; font-family: monospace; box-sizing: border-box; }
    button { width: 100%; margin-top: 16px; padding: 16px; background: #c8ff00; color: #0a0a0a;
             border: none; border-radius: 100px; font-size: 15px; font-weight: 600; cursor: pointer; }
    button:disabled { background: #222222; color: #6b6b6b; }
    .error-msg { color: #ff4444; font-size: 13px; display: none; }
    .success { display: none; text-align: center; }
"""


class AuthSubmitRequest(BaseModel):
    token: Optional[str] = None
    resy_auth_token: Optional[str] = Field(None, alias="resyAuthToken")

    model_config = {"populate_by_name": True}


def _json(status_code: int, body: SetupSubmitResult) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True), headers=JSON_SECURITY_HEADERS)


def _error_page(title: str, message: str) -> HTMLResponse:
    content = f"""<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="UTF-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>TableText: {escape_for_html(title)}</title>
  <style>{PAGE_STYLES}</style>
</head>
<body>
  <div class="container"><div class="card">
    <h1>{escape_for_html(title)}</h1>
    <p class="muted">{escape_for_html(message)}</p>
  </div></div>
</body>
</html>"""
    return HTMLResponse(content=content, status_code=400, headers=PAGE_SECURITY_HEADERS)


def _onboarding_page(token: str) -> HTMLResponse:
    safe_token = escape_for_html(token)
    content = f"""<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="UTF-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>TableText: Connect Resy</title>
  <style>{PAGE_STYLES}</style>
</head>
<body>
  <div class="container"><div class="card">
    <div id="form-section">
      <h1>Connect Resy</h1>
      <p class="muted">Paste your Resy auth token to enable reservations</p>
      <form id="setup-form" onsubmit="return handleSubmit(event)">
        <input type="text" id="resyAuthToken" name="resyAuthToken" placeholder="eyJ0eX..." required>
        <p class="muted">Open resy.com, sign in, then open DevTools (F12), Network tab, pick any request to
        api.resy.com and copy the x-resy-auth-token header value.</p>
        <p class="error-msg" id="error-msg"></p>
        <button type="submit" id="submit-btn">Connect</button>
      </form>
    </div>
    <div class="success" id="success-section">
      <h1>You're all set</h1>
      <p class="muted">Go back to your messages and start booking</p>
    </div>
  </div></div>
  <script>
    async function handleSubmit(e) {{
      e.preventDefault();
      const btn = document.getElementById('submit-btn');
      const errorEl = document.getElementById('error-msg');
      errorEl.style.display = 'none';
      const resyAuthToken = document.getElementById('resyAuthToken').value.trim();
      btn.disabled = true;
      btn.textContent = 'Connecting...';
      try {{
        const res = await fetch('/auth/setup/submit', {{
          method: 'POST',
          headers: {{ 'Content-Type': 'application/json' }},
          body: JSON.stringify({{ token: '{safe_token}', resyAuthToken }}),
        }});
        const data = await res.json();
        if (!res.ok) throw new Error(data.error || 'Something went wrong');
        document.getElementById('form-section').style.display = 'none';
        document.getElementById('success-section').style.display = 'block';
      }} catch (err) {{
        errorEl.textContent = err.message;
        errorEl.style.display = 'block';
        btn.disabled = false;
        btn.textContent = 'Connect';
      }}
      return false;
    }}
  </script>
</body>
</html>"""
    return HTMLResponse(content=content, headers=PAGE_SECURITY_HEADERS)


@router.get("/auth/setup", response_class=HTMLResponse)
async def auth_setup_page(token: Optional[str] = None):
    """Serves the credential form for a valid, unused magic link."""
    if not token:
        return _error_page("Missing token", "This link is invalid. Text the agent for a new one.")

    if not is_valid_magic_token(token) or await magic_link_service.verify_token(token) is None:
        return _error_page(
            "Link expired",
            "This link has expired or already been used. Text the agent to get a new one.",
        )

    return _onboarding_page(token)


def _origin_of(url: str) -> Tuple[str, str]:
    parsed = urlsplit(url)
    return parsed.scheme.lower(), parsed.netloc.lower()


def _same_origin(request: Request) -> bool:
    """Browsers send Origin on POST; a missing header is a same-origin form post."""
    origin = request.headers.get("origin") or request.headers.get("referer")
    if not origin:
        return True
    return _origin_of(origin) == _origin_of(settings.APP_URL)


async def _send_web_welcome(chat_id: str, phone_number: str) -> None:
    try:
        await send_welcome(chat_id, get_linq_service())
        logger.info(f"Welcome messages sent to {redact_phone(phone_number)}")
    except MessagingGatewayError as e:
        logger.error(f"❌ Failed to send welcome message: {e.message}")


@router.post("/auth/setup/submit")
async def auth_setup_submit(payload: AuthSubmitRequest, request: Request, background_tasks: BackgroundTasks):
    """Stores a pasted credential against the phone number bound to the magic link."""
    if not _same_origin(request):
        logger.warning("⚠️ Blocked cross-origin onboarding submit")
        return _json(403, SetupSubmitResult(error="Forbidden"))

    if not payload.token or not payload.resy_auth_token:
        return _json(400, SetupSubmitResult(error="Missing required fields"))

    if not validate_credential_length(payload.resy_auth_token):
        return _json(400, SetupSubmitResult(error="Invalid auth token format."))

    auth_token = await magic_link_service.redeem_token(payload.token)
    if auth_token is None:
        return _json(400, SetupSubmitResult(error="Invalid or expired token. Text the agent for a new link."))

    await complete_authentication(auth_token.phone_number, payload.resy_auth_token.strip())
    logger.info(f"🔐 Credentials saved via web onboarding for {redact_phone(auth_token.phone_number)}")

    if auth_token.chat_id:
        background_tasks.add_task(_send_web_welcome, auth_token.chat_id, auth_token.phone_number)

    return _json(200, SetupSubmitResult(success=True))
