from __future__ import annotations

import html

from ..core.config import settings
from ..models.ticket import Ticket
from ..models.user import User


STATUS_LABELS = {
    "PENDING_APPROVAL": "Pending approval",
    "OPEN": "Open",
    "IN_PROGRESS": "In progress",
    "WAITING_ON_REQUESTER": "Waiting on requester",
    "RESOLVED": "Resolved",
    "CLOSED": "Closed",
}

PRIORITY_LABELS = {
    "LOW": "Low",
    "MEDIUM": "Medium",
    "HIGH": "High",
    "URGENT": "Urgent",
}


def _value(enum_or_str) -> str:
    return getattr(enum_or_str, "value", enum_or_str) or ""


def status_label(status) -> str:
    raw = _value(status)
    return STATUS_LABELS.get(raw, raw or "-")


def priority_label(priority) -> str:
    raw = _value(priority)
    return PRIORITY_LABELS.get(raw, PRIORITY_LABELS["MEDIUM"])


def user_label(user: User | None, fallback: str = "-") -> str:
    if not user:
        return fallback
    name = user.name or user.email.split("@")[0]
    return f"{name} ({user.email})"


def ticket_link(ticket_id: int, is_admin: bool = False) -> str:
    base = settings.app_base_url.rstrip("/")
    if is_admin:
        return f"{base}/admin/tickets/{ticket_id}"
    return f"{base}/tickets/{ticket_id}"


def build_subject(ticket: Ticket, summary: str) -> str:
    number = ticket.ticket_number or "ticket"
    return f"[Beacon] {number} {summary}"


def _esc(value: str | None) -> str:
    return html.escape(value or "-")


def _badge(label: str, bg: str, fg: str, border: str) -> str:
    return (
        f"<span style=\"display:inline-block;padding:4px 10px;border-radius:999px;"
        f"background:{bg};color:{fg};border:1px solid {border};font-size:12px;font-weight:600;\">"
        f"{_esc(label)}"
        "</span>"
    )


def _status_badge(label: str) -> str:
    styles = {
        "Pending approval": ("#fef3c7", "#92400e", "#fcd34d"),
        "Open": ("#e0f2fe", "#075985", "#bae6fd"),
        "In progress": ("#fef9c3", "#854d0e", "#fde68a"),
        "Waiting on requester": ("#ede9fe", "#5b21b6", "#ddd6fe"),
        "Resolved": ("#dcfce7", "#166534", "#bbf7d0"),
    }
    bg, fg, border = styles.get(label, ("#f3f4f6", "#374151", "#e5e7eb"))
    return _badge(label, bg, fg, border)


def _priority_badge(label: str) -> str:
    styles = {
        "Urgent": ("#fee2e2", "#b91c1c", "#fecaca"),
        "High": ("#ffedd5", "#c2410c", "#fed7aa"),
        "Medium": ("#dbeafe", "#1d4ed8", "#bfdbfe"),
        "Low": ("#e5e7eb", "#374151", "#d1d5db"),
    }
    bg, fg, border = styles.get(label, ("#f3f4f6", "#374151", "#e5e7eb"))
    return _badge(label, bg, fg, border)


def _render_plain(
    *,
    alert_type: str,
    summary: str,
    fields: list[tuple[str, str]],
    status: str,
    priority: str,
    link_url: str,
) -> str:
    lines: list[str] = []
    lines.append(f"BEACON DESK | {alert_type}")
    lines.append("")
    lines.append(summary)
    lines.append("")
    for label, value in fields:
        lines.append(f"- {label}: {value}")
    lines.append(f"- Status: {status}")
    lines.append(f"- Priority: {priority}")
    lines.append("")
    lines.append(f"View ticket: {link_url}")
    lines.append("")
    lines.append("This is an automated message. Replies are not monitored.")
    return "\n".join(lines)


def _render_html(
    *,
    alert_type: str,
    summary: str,
    fields: list[tuple[str, str]],
    status: str,
    priority: str,
    link_url: str,
) -> str:
    rows = "".join(
        f"""
        <tr>
          <td style=\"padding:8px 0;color:#6b7280;font-size:13px;width:140px;\">{_esc(label)}</td>
          <td style=\"padding:8px 0;color:#111827;font-size:14px;font-weight:600;\">{_esc(value)}</td>
        </tr>
        """
        for label, value in fields
    )

    return f"""
<!DOCTYPE html>
<html lang=\"en\">
  <body style=\"margin:0;padding:24px;background:#ffffff;\">
    <table role=\"presentation\" width=\"100%\" cellspacing=\"0\" cellpadding=\"0\" style=\"background:#ffffff;\">
      <tr>
        <td align=\"center\">
          <table role=\"presentation\" width=\"680\" cellspacing=\"0\" cellpadding=\"0\" style=\"width:680px;margin:0;background:#ffffff;border-radius:14px;overflow:hidden;border:1px solid #e5e7eb;\">
            <tr>
              <td style=\"padding:20px 24px;border-bottom:1px solid #e5e7eb;\">
                <div style=\"font-size:12px;color:#6b7280;font-weight:600;letter-spacing:0.04em;\">BEACON DESK | {_esc(alert_type)}</div>
                <div style=\"margin-top:6px;font-size:20px;font-weight:700;color:#111827;\">{_esc(summary)}</div>
              </td>
            </tr>
            <tr>
              <td style=\"padding:20px 24px;\">
                <div style=\"margin-top:12px;\">
                  {_status_badge(status)}
                  <span style=\"display:inline-block;width:8px;\"></span>
                  {_priority_badge(priority)}
                </div>
                <table role=\"presentation\" width=\"100%\" cellspacing=\"0\" cellpadding=\"0\" style=\"margin-top:16px;border-collapse:collapse;\">
                  {rows}
                </table>
                <div style=\"margin-top:18px;\">
                  <a href=\"{_esc(link_url)}\" style=\"display:inline-block;padding:12px 20px;background:#1d4ed8;color:#ffffff;text-decoration:none;border-radius:8px;font-weight:700;font-size:14px;\">View ticket</a>
                </div>
              </td>
            </tr>
            <tr>
              <td style=\"padding:16px 24px;border-top:1px solid #e5e7eb;font-size:12px;color:#6b7280;line-height:1.6;\">
                <div>This is an automated message. Replies are not monitored.</div>
              </td>
            </tr>
          </table>
        </td>
      </tr>
    </table>
  </body>
</html>
    """.strip()


def render_ticket_mail(
    *,
    ticket: Ticket,
    alert_type: str,
    summary: str,
    fields: list[tuple[str, str]],
    is_admin_link: bool = False,
) -> tuple[str, str]:
    """Returns (text, html) for a ticket notification."""
    kwargs = dict(
        alert_type=alert_type,
        summary=summary,
        fields=[("Ticket", f"{ticket.ticket_number} - {ticket.title}"), *fields],
        status=status_label(ticket.status),
        priority=priority_label(ticket.priority),
        link_url=ticket_link(ticket.id, is_admin_link),
    )
    return _render_plain(**kwargs), _render_html(**kwargs)
