"""
One-click unsubscribe (RFC 8058).

GET shows a confirmation page for a signed token, POST applies it. Both
answer with standalone HTML pages since they are opened from an email.
"""

import logging
from html import escape

from fastapi import APIRouter, Request, status
from fastapi.responses import HTMLResponse
from sqlalchemy.exc import SQLAlchemyError

from ..core import SessionDep, SettingsDep, get_email_preferences_url, verify_unsubscribe_token
from ..services.email_templates import BACKGROUND, BORDER, MUTED_GRAY, PRIMARY_NAVY, TEXT_GRAY
from ..services.preferences import UNSUBSCRIBE_LABELS, apply_unsubscribe


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/unsubscribe", tags=["unsubscribe"])

INVALID_LINK = "This unsubscribe link is invalid or expired."

_SUCCESS_ICON = """
    <div class="success-icon">
      <svg fill="none" stroke="currentColor" viewBox="0 0 24 24">
        <path stroke-linecap="round" stroke-linejoin="round" stroke-width="2" d="M5 13l4 4L19 7"></path>
      </svg>
    </div>"""


def render_page(
    title: str,
    message_html: str,
    site_url: str,
    token: str | None = None,
    success: bool = False,
) -> str:
    """
    Render the unsubscribe landing page.

    ``message_html`` is trusted markup; callers escape user-controlled parts.
    With a token the page carries the confirmation form.
    """
    site_url = site_url.rstrip("/")
    preferences_url = get_email_preferences_url(site_url)

    if token:
        actions = f"""
    <form method="POST" action="/api/unsubscribe">
      <input type="hidden" name="token" value="{escape(token, quote=True)}">
      <button type="submit" class="btn">Confirm Unsubscribe</button>
      <a href="{escape(site_url, quote=True)}" class="btn btn-secondary">Cancel</a>
    </form>"""
    else:
        actions = f"""
    <a href="{escape(site_url, quote=True)}" class="btn">Go to Dashboard</a>"""

    return f"""<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="UTF-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>{escape(title)} - Finacra</title>
  <style>
    * {{ box-sizing: border-box; margin: 0; padding: 0; }}
    body {{ font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; background: {BACKGROUND}; min-height: 100vh; display: flex; align-items: center; justify-content: center; padding: 20px; }}
    .card {{ background: white; border-radius: 16px; box-shadow: 0 4px 24px rgba(0,0,0,0.08); max-width: 420px; width: 100%; padding: 32px; text-align: center; }}
    .logo {{ font-size: 24px; font-weight: 700; color: {PRIMARY_NAVY}; margin-bottom: 8px; }}
    .subtitle {{ font-size: 13px; color: {MUTED_GRAY}; margin-bottom: 24px; }}
    h1 {{ font-size: 20px; color: {'#059669' if success else '#111827'}; margin-bottom: 12px; }}
    .message {{ font-size: 14px; color: {TEXT_GRAY}; line-height: 1.6; margin-bottom: 24px; }}
    .btn {{ display: inline-block; background: {PRIMARY_NAVY}; color: white; padding: 12px 24px; border-radius: 10px; text-decoration: none; font-weight: 600; font-size: 14px; border: none; cursor: pointer; }}
    .btn-secondary {{ background: transparent; color: {PRIMARY_NAVY}; border: 1px solid {BORDER}; margin-left: 8px; }}
    .links {{ margin-top: 20px; font-size: 13px; }}
    .links a {{ color: {PRIMARY_NAVY}; text-decoration: none; }}
    .success-icon {{ width: 48px; height: 48px; background: #D1FAE5; border-radius: 50%; display: flex; align-items: center; justify-content: center; margin: 0 auto 16px; color: #059669; }}
    .success-icon svg {{ width: 24px; height: 24px; }}
  </style>
</head>
<body>
  <div class="card">
    <div class="logo">Finacra</div>
    <div class="subtitle">Compliance Tracker</div>{_SUCCESS_ICON if success else ''}
    <h1>{escape(title)}</h1>
    <p class="message">{message_html}</p>{actions}
    <div class="links">
      <a href="{escape(preferences_url, quote=True)}">Manage all email preferences</a>
    </div>
  </div>
</body>
</html>"""


def _page(title: str, message_html: str, site_url: str, status_code: int = 200, **kwargs) -> HTMLResponse:
    return HTMLResponse(render_page(title, message_html, site_url, **kwargs), status_code=status_code)


@router.get("", response_class=HTMLResponse)
async def confirm_unsubscribe(settings: SettingsDep, token: str | None = None):
    """Confirmation page for an unsubscribe link."""
    claim = verify_unsubscribe_token(token or "", settings.unsubscribe_signing_key)
    if claim is None:
        return _page("Invalid Link", INVALID_LINK, settings.site_url, status.HTTP_400_BAD_REQUEST)

    label = escape(UNSUBSCRIBE_LABELS[claim.kind])
    return _page(
        "Confirm Unsubscribe",
        f"You are about to unsubscribe from <strong>{label}</strong> emails.",
        settings.site_url,
        token=token,
    )


@router.post("", response_class=HTMLResponse)
async def unsubscribe(
    request: Request,
    session: SessionDep,
    settings: SettingsDep,
    token: str | None = None,
):
    """Apply an unsubscribe. The token comes from the form body or the query string."""
    content_type = request.headers.get("content-type", "")
    if "application/x-www-form-urlencoded" in content_type or "multipart/form-data" in content_type:
        form = await request.form()
        form_token = form.get("token")
        if isinstance(form_token, str) and form_token:
            token = form_token

    if not token:
        return _page("Error", "Missing token.", settings.site_url, status.HTTP_400_BAD_REQUEST)

    claim = verify_unsubscribe_token(token, settings.unsubscribe_signing_key)
    if claim is None:
        return _page("Invalid Link", INVALID_LINK, settings.site_url, status.HTTP_400_BAD_REQUEST)

    try:
        await apply_unsubscribe(session, claim)
    except ValueError:
        logger.warning(f"Unsubscribe token carries a malformed user id: {claim.user_id!r}")
        return _page("Invalid Link", INVALID_LINK, settings.site_url, status.HTTP_400_BAD_REQUEST)
    except SQLAlchemyError as e:
        await session.rollback()
        logger.error(f"Error updating email preferences for {claim.user_id}: {e}")
        return _page(
            "Error",
            "Failed to update preferences. Please try again.",
            settings.site_url,
            status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    label = escape(UNSUBSCRIBE_LABELS[claim.kind])
    return _page(
        "Unsubscribed",
        f"You have been unsubscribed from <strong>{label}</strong> emails.",
        settings.site_url,
        success=True,
    )
