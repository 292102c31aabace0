"""Transactional email content."""

from __future__ import annotations

import html
from dataclasses import dataclass
from typing import Any

PORTAL_URL = "https://portal.pyrusdigitalmedia.com"
SUPPORT_EMAIL = "support@pyrusdigitalmedia.com"

# alert type -> (icon, accent color, badge background)
_ALERT_STYLES = {
    "ranking": ("\U0001F50D", "#10B981", "#D1FAE5"),
    "traffic": ("\U0001F4C8", "#3B82F6", "#DBEAFE"),
    "leads": ("\U0001F464", "#8B5CF6", "#EDE9FE"),
    "milestone": ("\U0001F3C6", "#F59E0B", "#FEF3C7"),
    "ai": ("✨", "#06B6D4", "#CFFAFE"),
}
_DEFAULT_STYLE = ("⚡", "#DB2777", "#FDF2F8")


@dataclass(frozen=True)
class EmailContent:
    subject: str
    html: str
    text: str


def _highlight_block(metadata: dict[str, Any], color: str, bg_color: str) -> str:
    if metadata.get("keyword"):
        previous = metadata.get("previousPosition")
        was = f' <span style="font-size: 14px; color: #5A6358;">(was #{html.escape(str(previous))})</span>' if previous else ""
        return (
            f'<div style="background-color: {bg_color}; border-radius: 8px; padding: 20px; text-align: center; margin-bottom: 24px;">'
            f'<p style="margin: 0 0 8px; font-size: 14px; color: #5A6358;">Keyword</p>'
            f'<p style="margin: 0 0 12px; font-size: 18px; font-weight: 600;">"{html.escape(str(metadata["keyword"]))}"</p>'
            f'<p style="margin: 0; font-size: 28px; font-weight: 700; color: {color};">'
            f'Position #{html.escape(str(metadata.get("newPosition", "")))}{was}</p></div>'
        )
    if metadata.get("milestone"):
        change = metadata.get("change")
        change_html = f'<p style="margin: 8px 0 0; font-size: 14px; color: #5A6358;">{html.escape(str(change))}</p>' if change else ""
        return (
            f'<div style="background-color: {bg_color}; border-radius: 8px; padding: 20px; text-align: center; margin-bottom: 24px;">'
            f'<p style="margin: 0; font-size: 24px; font-weight: 700; color: {color};">{html.escape(str(metadata["milestone"]))}</p>'
            f"{change_html}</div>"
        )
    return ""


def render_result_alert(
    *,
    first_name: str,
    client_name: str,
    subject: str,
    message: str,
    alert_type: str = "custom",
    alert_type_label: str = "Result Alert",
    metadata: dict[str, Any] | None = None,
    portal_url: str = PORTAL_URL,
) -> EmailContent:
    """Result alert email ("your keyword moved to #3") sent to a client contact."""
    metadata = metadata or {}
    icon, color, bg_color = _ALERT_STYLES.get(alert_type, _DEFAULT_STYLE)
    results_url = f"{portal_url.rstrip('/')}/results"

    body_html = f"""<!DOCTYPE html>
<html lang="en">
<head><meta charset="UTF-8"><title>{html.escape(alert_type_label)}</title></head>
<body style="margin: 0; padding: 40px 20px; font-family: Arial, sans-serif; background-color: #f5f5f5;">
  <div style="max-width: 600px; margin: 0 auto; background-color: #ffffff; border-radius: 12px; padding: 30px 40px;">
    <p style="text-align: center;">
      <span style="display: inline-block; padding: 8px 16px; background-color: {bg_color}; color: {color}; font-weight: 600; border-radius: 20px;">{icon} {html.escape(alert_type_label)}</span>
    </p>
    <h1 style="font-size: 24px; color: #1A1F16; text-align: center;">{html.escape(subject)}</h1>
    <p style="font-size: 16px; color: #5A6358;">Hi {html.escape(first_name)},</p>
    <p style="font-size: 16px; color: #5A6358;">{html.escape(message)}</p>
    {_highlight_block(metadata, color, bg_color)}
    <p style="text-align: center;">
      <a href="{html.escape(results_url)}" style="display: inline-block; padding: 16px 32px; background-color: #324438; color: #ffffff; text-decoration: none; border-radius: 8px;">View Full Results</a>
    </p>
    <p style="font-size: 14px; color: #5A6358;">Keep up the great work! Your marketing is making an impact.</p>
    <p style="font-size: 14px;"><a href="mailto:{SUPPORT_EMAIL}" style="color: #324438;">{SUPPORT_EMAIL}</a></p>
  </div>
  <p style="text-align: center; font-size: 12px; color: #8B9088;">You're receiving this result alert for {html.escape(client_name)} because you're subscribed to marketing updates.</p>
</body>
</html>"""

    text_lines = [
        f"{alert_type_label}",
        "",
        subject,
        "",
        f"Hi {first_name},",
        "",
        message,
        "",
    ]
    if metadata.get("keyword"):
        text_lines.append(f'Keyword "{metadata["keyword"]}" is now at position #{metadata.get("newPosition", "")}')
        text_lines.append("")
    elif metadata.get("milestone"):
        text_lines.append(str(metadata["milestone"]))
        text_lines.append("")
    text_lines.append(f"View full results: {results_url}")

    return EmailContent(
        subject=subject,
        html=body_html,
        text="\n".join(text_lines),
    )
