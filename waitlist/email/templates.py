from __future__ import annotations

from html import escape
from typing import TYPE_CHECKING

from waitlist.channels.types import EmailMessage

if TYPE_CHECKING:
    from waitlist.handlers.digest import WeeklyDigest

BRAND = "Waitlist"


def _wrap_html(heading: str, body_html: str) -> str:
    return f"""\
<!DOCTYPE html>
<html lang="en">
<head><meta charset="utf-8"></head>
<body style="margin:0;padding:0;background-color:#f4f4f5;font-family:system-ui,-apple-system,sans-serif;">
  <table width="100%" cellpadding="0" cellspacing="0" style="padding:40px 20px;">
    <tr><td align="center">
      <table width="560" cellpadding="0" cellspacing="0"
        style="background:#ffffff;border-radius:12px;padding:40px;max-width:560px;">
        <tr><td>
          <h1 style="margin:0 0 16px;font-size:22px;color:#111827;">{heading}</h1>
          {body_html}
        </td></tr>
      </table>
    </td></tr>
  </table>
</body>
</html>"""


def build_referral_verified_email(
    *,
    to: str,
    username: str | None,
    referral_count: int,
    dashboard_url: str,
) -> EmailMessage:
    name = username or "there"
    subject = f"You have a new verified referral - {BRAND}"
    body_html = f"""\
<p style="margin:0 0 16px;font-size:15px;line-height:1.6;color:#4b5563;">
  Hi {escape(name)}, someone you invited just verified their account.
  You now have <strong>{referral_count}</strong> verified referrals.
</p>
<a href="{escape(dashboard_url)}"
   style="display:inline-block;padding:12px 32px;background-color:#6366f1;color:#ffffff;
          text-decoration:none;border-radius:8px;font-size:15px;font-weight:600;">
  View your position
</a>"""
    text = (
        f"Hi {name}, someone you invited just verified their account.\n"
        f"You now have {referral_count} verified referrals.\n\n"
        f"View your position: {dashboard_url}"
    )
    return EmailMessage(to=to, subject=subject, text=text, html=_wrap_html("New verified referral", body_html))


def build_weekly_digest_email(*, to: str, digest: WeeklyDigest) -> EmailMessage:
    growth = digest.growth
    flagged = digest.flagged
    subject = f"Weekly digest - {BRAND} ({digest.generated_at:%Y-%m-%d})"

    rows = "".join(
        f"<tr><td>{index}</td><td>{escape(item.username or item.email)}</td>"
        f"<td>{escape(item.referral_code)}</td><td>{item.count}</td></tr>"
        for index, item in enumerate(digest.top_referrers, start=1)
    )
    body_html = f"""\
<h2 style="font-size:16px;color:#111827;">Top referrers</h2>
<table width="100%" cellpadding="4" style="font-size:14px;color:#374151;">
  <tr><th align="left">#</th><th align="left">User</th><th align="left">Code</th><th align="left">Referrals</th></tr>
  {rows or '<tr><td colspan="4">No referrals yet.</td></tr>'}
</table>
<h2 style="font-size:16px;color:#111827;">Growth</h2>
<ul style="font-size:14px;color:#374151;">
  <li>Total users: {growth.total_users}</li>
  <li>New users this week: {growth.weekly_growth}</li>
  <li>Total referrals: {growth.total_referrals}</li>
  <li>Verified referrals: {growth.verified_referrals}</li>
  <li>Conversion rate: {growth.conversion_rate:.2f}%</li>
</ul>
<h2 style="font-size:16px;color:#111827;">Flagged activity</h2>
<ul style="font-size:14px;color:#374151;">
  <li>Total flagged attempts: {flagged.total_flagged}</li>
  <li>Flagged this week: {flagged.weekly_flagged}</li>
  <li>Unique flagged IPs: {flagged.unique_ips}</li>
</ul>"""

    lines = [f"{BRAND} weekly digest ({digest.generated_at:%Y-%m-%d})", "", "Top referrers:"]
    if digest.top_referrers:
        lines.extend(
            f"  {index}. {item.username or item.email} ({item.referral_code}): {item.count}"
            for index, item in enumerate(digest.top_referrers, start=1)
        )
    else:
        lines.append("  No referrals yet.")
    lines.extend(
        [
            "",
            f"Total users: {growth.total_users} (+{growth.weekly_growth} this week)",
            f"Referrals: {growth.total_referrals} total, {growth.verified_referrals} verified "
            f"({growth.conversion_rate:.2f}% conversion)",
            f"Flagged attempts: {flagged.total_flagged} total, {flagged.weekly_flagged} this week, "
            f"{flagged.unique_ips} unique IPs",
        ]
    )
    return EmailMessage(
        to=to,
        subject=subject,
        text="\n".join(lines),
        html=_wrap_html("Weekly digest", body_html),
    )
