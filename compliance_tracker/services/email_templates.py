"""
Email templates: shared layout plus the two digest emails.

Email-safe HTML: table based, inline styles only. All user-supplied text is
escaped before it is placed into markup.
"""

from dataclasses import dataclass
from html import escape

from ..core.config import get_settings
from ..core.security import UnsubscribeKind, get_email_preferences_url, get_unsubscribe_url


# =============================================================================
# PALETTE
# =============================================================================


PRIMARY_NAVY = "#1E3A5F"
TEXT_GRAY = "#374151"
MUTED_GRAY = "#6B7280"
BORDER = "#E5E7EB"
BACKGROUND = "#F8FAFC"

# (background, text) per requirement status
STATUS_COLORS = {
    "completed": ("#D1FAE5", "#059669"),
    "pending": ("#FEF3C7", "#D97706"),
    "overdue": ("#FEE2E2", "#DC2626"),
    "not_started": ("#F3F4F6", "#6B7280"),
    "upcoming": ("#DBEAFE", "#2563EB"),
}

# Sections of the status digest, in display order
STATUS_SECTIONS = [
    ("Completed", "completed", "#059669"),
    ("Pending", "pending", "#D97706"),
    ("Overdue", "overdue", "#DC2626"),
]
OTHER_SECTION = ("Updated", "#6B7280")


# =============================================================================
# DATA
# =============================================================================


@dataclass
class RenderedEmail:
    subject: str
    html: str


@dataclass
class StatusChangeItem:
    """One status transition shown in a status digest."""

    requirement_id: str
    requirement_name: str
    company_name: str
    old_status: str
    new_status: str
    due_date: str | None = None


@dataclass
class ReminderItem:
    company_name: str
    requirement_name: str
    due_date: str
    status: str


@dataclass
class ReminderSection:
    title: str
    items: list[ReminderItem]


# =============================================================================
# BUILDING BLOCKS
# =============================================================================


def email_layout(
    title: str,
    body_html: str,
    preheader: str | None = None,
    footer_note: str | None = None,
    preferences_url: str | None = None,
    unsubscribe_url: str | None = None,
) -> str:
    """Wrap ``body_html`` in the branded card layout."""
    links = []
    if preferences_url:
        links.append(
            f'<a href="{escape(preferences_url)}" style="color:{PRIMARY_NAVY};'
            f'text-decoration:underline;">Manage preferences</a>'
        )
    if unsubscribe_url:
        links.append(
            f'<a href="{escape(unsubscribe_url)}" style="color:{PRIMARY_NAVY};'
            f'text-decoration:underline;">Unsubscribe</a>'
        )
    links_html = ""
    if links:
        links_html = (
            f'<div style="font-size:11px;line-height:16px;color:{MUTED_GRAY};margin-top:8px;">'
            f'{" &nbsp;&bull;&nbsp; ".join(links)}</div>'
        )

    preheader_html = ""
    if preheader:
        preheader_html = (
            '<div style="display:none;max-height:0;overflow:hidden;opacity:0;'
            'color:transparent;font-size:1px;line-height:1px;">'
            f'{escape(preheader)}{"&nbsp;" * 100}</div>'
        )

    footer = escape(footer_note) if footer_note else "Confidential. For internal use only."

    return f"""<!doctype html>
<html>
  <head>
    <meta charset="utf-8" />
    <meta name="viewport" content="width=device-width, initial-scale=1" />
    <title>{escape(title)}</title>
  </head>
  <body style="margin:0;padding:0;background:{BACKGROUND};font-family:Arial,Helvetica,sans-serif;color:{TEXT_GRAY};">
    {preheader_html}
    <table role="presentation" cellpadding="0" cellspacing="0" width="100%" style="background:{BACKGROUND};">
      <tr>
        <td style="padding:24px 12px;">
          <table role="presentation" cellpadding="0" cellspacing="0" align="center" width="600" style="max-width:600px;margin:0 auto;">
            <tr>
              <td>
                <table role="presentation" cellpadding="0" cellspacing="0" width="100%" style="background:#FFFFFF;border:1px solid {BORDER};border-radius:14px;overflow:hidden;">
                  <tr>
                    <td style="background:{PRIMARY_NAVY};padding:18px 20px;">
                      <div style="font-size:16px;line-height:22px;color:#FFFFFF;font-weight:700;">Finacra</div>
                      <div style="font-size:12px;line-height:18px;color:rgba(255,255,255,0.85);margin-top:2px;">Compliance Tracker</div>
                    </td>
                  </tr>
                  <tr>
                    <td style="padding:22px 20px;">
                      <div style="font-size:18px;line-height:26px;font-weight:700;color:#111827;margin:0 0 14px 0;">{escape(title)}</div>
                      {body_html}
                    </td>
                  </tr>
                  <tr>
                    <td style="padding:16px 20px;border-top:1px solid {BORDER};">
                      <div style="font-size:12px;line-height:18px;color:{MUTED_GRAY};">{footer}</div>
                    </td>
                  </tr>
                </table>
                <table role="presentation" cellpadding="0" cellspacing="0" width="100%" style="margin-top:12px;">
                  <tr>
                    <td align="center">
                      <div style="font-size:11px;line-height:16px;color:{MUTED_GRAY};">If you didn't expect this email, you can ignore it.</div>
                      {links_html}
                    </td>
                  </tr>
                </table>
              </td>
            </tr>
          </table>
        </td>
      </tr>
    </table>
  </body>
</html>"""


def primary_button(href: str, label: str) -> str:
    return f"""<table role="presentation" cellpadding="0" cellspacing="0" style="margin-top:16px;">
  <tr>
    <td>
      <a href="{escape(href)}" style="display:inline-block;background:{PRIMARY_NAVY};color:#FFFFFF;text-decoration:none;padding:10px 14px;border-radius:10px;font-weight:700;font-size:13px;">{escape(label)}</a>
    </td>
  </tr>
</table>"""


def status_label(status: str) -> str:
    """``not_started`` -> ``Not Started``."""
    return status.replace("_", " ").title()


def status_badge(status: str) -> str:
    bg, text = STATUS_COLORS.get(status, STATUS_COLORS["not_started"])
    return (
        f'<span style="display:inline-block;background:{bg};color:{text};font-size:10px;'
        f'font-weight:700;padding:2px 6px;border-radius:4px;text-transform:uppercase;">'
        f"{escape(status_label(status))}</span>"
    )


def _greeting(recipient_name: str | None) -> str:
    if not recipient_name:
        return ""
    return (
        f'<div style="font-size:13px;line-height:20px;color:{TEXT_GRAY};">'
        f"Hi {escape(recipient_name)},</div>"
    )


# =============================================================================
# STATUS CHANGE DIGEST
# =============================================================================


def status_digest_subject(items: list[StatusChangeItem]) -> str:
    if len(items) == 1:
        return f"Status updated: {items[0].requirement_name}"
    return f"{len(items)} compliance items updated"


def group_status_changes(
    items: list[StatusChangeItem],
) -> list[tuple[str, str, list[StatusChangeItem]]]:
    """
    Split items into the fixed digest sections.

    Returns (title, accent color, items) for every non-empty section, in the
    order Completed, Pending, Overdue, Updated.
    """
    sections = []
    known = set()
    for title, status, color in STATUS_SECTIONS:
        known.add(status)
        matching = [i for i in items if i.new_status == status]
        if matching:
            sections.append((title, color, matching))

    other = [i for i in items if i.new_status not in known]
    if other:
        sections.append((OTHER_SECTION[0], OTHER_SECTION[1], other))
    return sections


def _render_status_section(
    title: str,
    accent_color: str,
    items: list[StatusChangeItem],
    limit: int,
) -> str:
    rows = []
    for idx, item in enumerate(items[:limit]):
        border_top = f"border-top:1px solid {BORDER};" if idx > 0 else ""
        due_info = f" &bull; Due: {escape(item.due_date)}" if item.due_date else ""
        rows.append(f"""
    <tr>
      <td style="padding:12px 14px;{border_top}">
        <div style="font-size:12px;line-height:18px;color:#111827;font-weight:700;">{escape(item.requirement_name)}</div>
        <div style="font-size:12px;line-height:18px;color:{MUTED_GRAY};margin-top:2px;">{escape(item.company_name)}{due_info}</div>
        <div style="font-size:11px;line-height:16px;color:#9CA3AF;margin-top:4px;">{escape(item.old_status)} &rarr; {status_badge(item.new_status)}</div>
      </td>
    </tr>""")

    more = len(items) - limit
    more_html = ""
    if more > 0:
        more_html = (
            f'<div style="font-size:12px;line-height:18px;color:{MUTED_GRAY};'
            f'margin-top:8px;padding-left:14px;">+{more} more...</div>'
        )

    return f"""
<div style="margin-top:16px;">
  <div style="font-size:13px;line-height:20px;font-weight:700;margin-bottom:8px;">
    <span style="color:{accent_color};">&#9679;</span>
    <span style="color:#111827;margin-left:6px;">{title}</span>
    <span style="color:{MUTED_GRAY};font-weight:600;margin-left:4px;">({len(items)})</span>
  </div>
  <table role="presentation" cellpadding="0" cellspacing="0" width="100%" style="border:1px solid {BORDER};border-radius:10px;border-collapse:separate;overflow:hidden;">{"".join(rows)}
  </table>
  {more_html}
</div>"""


def render_status_digest(
    recipient_user_id: str,
    items: list[StatusChangeItem],
    recipient_name: str | None = None,
    section_limit: int = 15,
    site_url: str | None = None,
    unsubscribe_secret: str | None = None,
    unsubscribe_kind: UnsubscribeKind = UnsubscribeKind.STATUS_CHANGES,
) -> RenderedEmail:
    """Render one email summarising several status changes for a recipient."""
    site_url = (site_url or get_settings().site_url).rstrip("/")
    count = len(items)
    subject = status_digest_subject(items)

    margin = "8px" if recipient_name else "0"
    if count == 1:
        intro_text = "A compliance item was updated:"
    else:
        intro_text = f"{count} compliance items were updated in the last few minutes:"
    intro = (
        f'<div style="font-size:13px;line-height:20px;color:{TEXT_GRAY};margin-top:{margin};">'
        f"{intro_text}</div>"
    )

    sections_html = "".join(
        _render_status_section(title, color, section_items, section_limit)
        for title, color, section_items in group_status_changes(items)
    )

    body_html = "\n".join([
        _greeting(recipient_name),
        intro,
        sections_html,
        primary_button(f"{site_url}/data-room", "View All Compliances"),
    ])

    html = email_layout(
        title="Status Update" if count == 1 else "Status Updates",
        body_html=body_html,
        preheader=subject,
        preferences_url=get_email_preferences_url(site_url),
        unsubscribe_url=get_unsubscribe_url(
            recipient_user_id,
            unsubscribe_kind,
            site_url=site_url,
            secret=unsubscribe_secret,
        ),
    )
    return RenderedEmail(subject=subject, html=html)


# =============================================================================
# REMINDER DIGEST
# =============================================================================


def _render_reminder_list(items: list[ReminderItem]) -> str:
    rows = []
    for idx, item in enumerate(items):
        border_top = f"border-top:1px solid {BORDER};" if idx > 0 else ""
        rows.append(f"""
    <tr>
      <td style="padding:12px 14px;{border_top}">
        <div style="font-size:12px;line-height:18px;color:#111827;font-weight:700;">{escape(item.requirement_name)}</div>
        <div style="font-size:12px;line-height:18px;color:{MUTED_GRAY};margin-top:2px;">{escape(item.company_name)} &bull; Due: {escape(item.due_date)} &bull; Status: {escape(status_label(item.status))}</div>
      </td>
    </tr>""")
    return (
        f'<table role="presentation" cellpadding="0" cellspacing="0" width="100%" '
        f'style="border:1px solid {BORDER};border-radius:12px;border-collapse:separate;'
        f'overflow:hidden;margin-top:10px;">{"".join(rows)}\n</table>'
    )


def render_reminder_digest(
    recipient_user_id: str,
    as_of_date: str,
    sections: list[ReminderSection],
    recipient_name: str | None = None,
    section_limit: int = 20,
    site_url: str | None = None,
    unsubscribe_secret: str | None = None,
) -> RenderedEmail:
    """Render the daily reminder digest for one recipient."""
    site_url = (site_url or get_settings().site_url).rstrip("/")
    subject = f"Compliance reminders — {as_of_date}"

    parts = []
    for section in sections:
        if not section.items:
            continue
        total = len(section.items)
        truncated = ""
        if total > section_limit:
            truncated = (
                f'<div style="font-size:12px;line-height:18px;color:{MUTED_GRAY};margin-top:8px;">'
                f"Showing {section_limit} of {total} items.</div>"
            )
        parts.append(f"""
<div style="margin-top:16px;">
  <div style="font-size:13px;line-height:20px;color:#111827;font-weight:700;">{escape(section.title)} <span style="color:{MUTED_GRAY};font-weight:600;">({total})</span></div>
  {_render_reminder_list(section.items[:section_limit])}
  {truncated}
</div>""")

    if parts:
        sections_html = "".join(parts)
    else:
        sections_html = (
            f'<div style="font-size:13px;line-height:20px;color:{TEXT_GRAY};">'
            "No reminders for today.</div>"
        )

    if recipient_name:
        intro_text = f"Hi {escape(recipient_name)}, here are your compliance reminders."
    else:
        intro_text = "Here are your compliance reminders."
    intro = f'<div style="font-size:13px;line-height:20px;color:{TEXT_GRAY};">{intro_text}</div>'

    body_html = "\n".join([
        intro,
        sections_html,
        primary_button(f"{site_url}/data-room", "Open Tracker"),
    ])

    html = email_layout(
        title="Compliance reminders",
        body_html=body_html,
        preheader=subject,
        preferences_url=get_email_preferences_url(site_url),
        unsubscribe_url=get_unsubscribe_url(
            recipient_user_id,
            UnsubscribeKind.REMINDERS,
            site_url=site_url,
            secret=unsubscribe_secret,
        ),
    )
    return RenderedEmail(subject=subject, html=html)
