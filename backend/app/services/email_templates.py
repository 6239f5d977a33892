"""
Email templates for VulnScope notifications

Every renderer is pure: same input, same subject/html/text. Values that come
from users or feeds are escaped before they go into the HTML body.
"""
from html import escape
from typing import Optional

from pydantic import BaseModel

from app.models.email import EmailTemplate
from app.models.vulnerability import Vulnerability

FOOTER_BRAND = "VulnScope - Vulnerability Intelligence Platform"

SEVERITY_COLORS = {
    "CRITICAL": "#dc3545",
    "HIGH": "#fd7e14",
    "MEDIUM": "#ffc107",
    "LOW": "#28a745",
}

SEVERITY_ICONS = {
    "CRITICAL": "🚨",
    "HIGH": "⚠️",
    "MEDIUM": "⚡",
    "LOW": "ℹ️",
}

BASE_STYLE = """
    body { font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; line-height: 1.6; color: #333; margin: 0; padding: 0; }
    .container { max-width: 600px; margin: 0 auto; padding: 20px; }
    .content { background: #f8f9fa; padding: 20px; border-radius: 0 0 8px 8px; }
    .footer { text-align: center; color: #666; font-size: 12px; margin-top: 30px; }
"""


class TemplateError(ValueError):
    """A required template field is missing"""


class SharePermissions(BaseModel):
    can_view: bool = True
    can_comment: bool = False
    can_edit: bool = False
    can_share: bool = False


def get_severity_color(severity: str) -> str:
    return SEVERITY_COLORS.get(severity.upper(), "#6c757d")


def get_severity_icon(severity: str) -> str:
    return SEVERITY_ICONS.get(severity.upper(), "📋")


def _require(**fields) -> None:
    missing = [name for name, value in fields.items() if not value]
    if missing:
        raise TemplateError(f"Missing required template field(s): {', '.join(missing)}")


def _vulnerability_url(app_url: str, cve_id: str) -> str:
    return f"{app_url.rstrip('/')}/vulnerabilities/{cve_id}"


def _page(title: str, style: str, body: str, footer_note: str) -> str:
    return f"""<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>{escape(title)}</title>
  <style>{BASE_STYLE}{style}</style>
</head>
<body>
  <div class="container">
{body}
    <div class="footer">
      <p>{FOOTER_BRAND}</p>
      <p>{footer_note}</p>
    </div>
  </div>
</body>
</html>"""


def _lines(*lines: Optional[str]) -> str:
    """Join text lines, dropping the ones that were left out"""
    return "\n".join(line for line in lines if line is not None)


def render_vulnerability_alert(
    vulnerability: Vulnerability,
    alert_rule_name: str,
    app_url: str,
    user_name: Optional[str] = None,
) -> EmailTemplate:
    """Alert email sent when a vulnerability matches a user's rule"""
    _require(cve_id=vulnerability.cve_id, alert_rule_name=alert_rule_name)

    severity = vulnerability.severity.value
    color = get_severity_color(severity)
    icon = get_severity_icon(severity)
    url = _vulnerability_url(app_url, vulnerability.cve_id)
    published = vulnerability.published_date.strftime("%Y-%m-%d")
    cvss = f"(CVSS: {vulnerability.cvss_score})" if vulnerability.cvss_score else ""
    greeting = f"Hello {user_name}," if user_name else "Hello,"

    subject = f"{icon} {severity} Alert: {vulnerability.cve_id} - {vulnerability.title}"

    software_row = ""
    if vulnerability.affected_software:
        software_row = f"""
        <div class="detail-row"><span class="detail-label">Affected Software:</span>
          <span class="detail-value">{escape(', '.join(vulnerability.affected_software))}</span></div>"""

    tags_row = ""
    if vulnerability.tags:
        tags = "".join(f'<span class="tag">{escape(tag)}</span>' for tag in vulnerability.tags)
        tags_row = f"""
        <div class="detail-row"><span class="detail-label">Tags:</span><div class="tags">{tags}</div></div>"""

    kev_row = ""
    kev_action = ""
    if vulnerability.kev:
        kev_row = """
        <div class="detail-row"><span class="detail-label">Known Exploited:</span>
          <span class="detail-value">🚨 Yes (CISA KEV)</span></div>"""
        kev_action = "<li><strong>Priority:</strong> This vulnerability is in CISA's Known Exploited Vulnerabilities catalog</li>"

    style = f"""
    .header {{ background: {color}; color: white; padding: 20px; border-radius: 8px 8px 0 0; }}
    .severity-badge {{ display: inline-block; background: {color}; color: white; padding: 4px 12px; border-radius: 20px; font-size: 12px; font-weight: bold; }}
    .vuln-details {{ background: white; padding: 20px; border-radius: 8px; margin: 20px 0; border-left: 4px solid {color}; }}
    .detail-row {{ margin: 10px 0; }}
    .detail-label {{ font-weight: bold; color: #666; }}
    .cta-button {{ display: inline-block; background: #007bff; color: white; padding: 12px 24px; text-decoration: none; border-radius: 6px; margin: 20px 0; }}
    .tag {{ display: inline-block; background: #e9ecef; color: #495057; padding: 2px 8px; border-radius: 12px; font-size: 11px; margin: 2px; }}
"""

    body = f"""    <div class="header">
      <h1 style="margin: 0; font-size: 24px;">{icon} Vulnerability Alert</h1>
      <p style="margin: 10px 0 0 0;">Alert Rule: {escape(alert_rule_name)}</p>
    </div>
    <div class="content">
      <p>{escape(greeting)}</p>
      <p>A new vulnerability matching your alert criteria has been detected:</p>
      <div class="vuln-details">
        <h2 style="margin-top: 0; color: {color};">{escape(vulnerability.cve_id)}</h2>
        <p style="font-size: 18px;">{escape(vulnerability.title)}</p>
        <div class="detail-row"><span class="detail-label">Severity:</span>
          <span class="detail-value"><span class="severity-badge">{severity}</span> {cvss}</span></div>
        <div class="detail-row"><span class="detail-label">Published:</span>
          <span class="detail-value">{published}</span></div>{software_row}{tags_row}
        <div class="detail-row"><span class="detail-label">Exploit Available:</span>
          <span class="detail-value">{'⚠️ Yes' if vulnerability.exploit_available else '✅ No'}</span></div>
        <div class="detail-row"><span class="detail-label">Patch Available:</span>
          <span class="detail-value">{'✅ Yes' if vulnerability.patch_available else '❌ No'}</span></div>{kev_row}
        <div class="detail-row"><span class="detail-label">Description:</span>
          <span class="detail-value">{escape(vulnerability.description)}</span></div>
      </div>
      <p><strong>Recommended Actions:</strong></p>
      <ul>
        <li>Review the vulnerability details and assess impact on your systems</li>
        <li>Check if any of your systems are affected by the listed software</li>
        <li>Apply patches immediately if available</li>
        <li>Monitor for exploit attempts if no patch is available</li>
        {kev_action}
      </ul>
      <a href="{escape(url)}" class="cta-button">View Full Details</a>
      <p style="margin-top: 30px; font-size: 14px; color: #666;">
        This alert was triggered by your alert rule "{escape(alert_rule_name)}".
        You can manage your alert preferences in your VulnScope dashboard.
      </p>
    </div>"""

    html = _page(subject, style, body, "This is an automated alert. Please do not reply to this email.")

    text = _lines(
        f"{icon} VULNERABILITY ALERT - {severity}",
        "",
        f"Alert Rule: {alert_rule_name}",
        greeting,
        "",
        "A new vulnerability matching your alert criteria has been detected:",
        "",
        f"CVE ID: {vulnerability.cve_id}",
        f"Title: {vulnerability.title}",
        f"Severity: {severity}" + (f" (CVSS: {vulnerability.cvss_score})" if vulnerability.cvss_score else ""),
        f"Published: {published}",
        f"Affected Software: {', '.join(vulnerability.affected_software)}" if vulnerability.affected_software else None,
        f"Tags: {', '.join(vulnerability.tags)}" if vulnerability.tags else None,
        f"Exploit Available: {'Yes' if vulnerability.exploit_available else 'No'}",
        f"Patch Available: {'Yes' if vulnerability.patch_available else 'No'}",
        "Known Exploited: Yes (CISA KEV)" if vulnerability.kev else None,
        "",
        "Description:",
        vulnerability.description,
        "",
        "Recommended Actions:",
        "- Review the vulnerability details and assess impact on your systems",
        "- Check if any of your systems are affected by the listed software",
        "- Apply patches immediately if available",
        "- Monitor for exploit attempts if no patch is available",
        "- Priority: This vulnerability is in CISA's Known Exploited Vulnerabilities catalog" if vulnerability.kev else None,
        "",
        f"View Full Details: {url}",
        "",
        f'This alert was triggered by your alert rule "{alert_rule_name}".',
        "You can manage your alert preferences in your VulnScope dashboard.",
        "",
        "---",
        FOOTER_BRAND,
        "This is an automated alert. Please do not reply to this email.",
    )

    return EmailTemplate(subject=subject, html=html, text=text)


def render_vulnerability_shared(
    vulnerability: Vulnerability,
    sharer_name: str,
    app_url: str,
    message: Optional[str] = None,
    permissions: Optional[SharePermissions] = None,
) -> EmailTemplate:
    """Notice sent when someone shares a vulnerability"""
    _require(cve_id=vulnerability.cve_id, sharer_name=sharer_name)

    severity = vulnerability.severity.value
    color = get_severity_color(severity)
    icon = get_severity_icon(severity)
    url = _vulnerability_url(app_url, vulnerability.cve_id)
    published = vulnerability.published_date.strftime("%Y-%m-%d")
    subject = f"🔗 {sharer_name} shared a vulnerability with you: {vulnerability.cve_id}"

    permission_lines = []
    if permissions:
        if permissions.can_view:
            permission_lines.append(("👁️", "View", "You can view this vulnerability"))
        if permissions.can_comment:
            permission_lines.append(("💬", "Comment", "You can add comments and participate in discussions"))
        if permissions.can_edit:
            permission_lines.append(("✏️", "Edit", "You can edit vulnerability details"))
        if permissions.can_share:
            permission_lines.append(("🔗", "Share", "You can share this vulnerability with others"))

    message_box = ""
    if message:
        message_box = f"""
      <div class="message-box"><strong>Message from {escape(sharer_name)}:</strong><br>"{escape(message)}"</div>"""

    permissions_html = ""
    if permission_lines:
        items = "".join(
            f'<div class="permission">{glyph} <strong>{label}</strong> - {hint}</div>'
            for glyph, label, hint in permission_lines
        )
        permissions_html = f"""
      <div class="permissions"><h3 style="color: #28a745;">Your Permissions:</h3>{items}</div>"""

    software_html = ""
    if vulnerability.affected_software:
        software_html = f"""
        <div><strong>Affected Software:</strong> {escape(', '.join(vulnerability.affected_software))}</div>"""

    style = f"""
    .header {{ background: linear-gradient(135deg, #28a745 0%, #20c997 100%); color: white; padding: 30px; border-radius: 8px 8px 0 0; text-align: center; }}
    .vuln-card {{ background: white; padding: 25px; border-radius: 8px; margin: 20px 0; border-left: 4px solid {color}; }}
    .severity-badge {{ display: inline-block; background: {color}; color: white; padding: 6px 16px; border-radius: 20px; font-size: 12px; font-weight: bold; }}
    .permission {{ margin: 8px 0; padding: 8px; background: #e9ecef; border-radius: 6px; }}
    .message-box {{ background: #e3f2fd; border-left: 4px solid #2196f3; padding: 15px; margin: 20px 0; }}
    .cta-button {{ display: inline-block; background: #28a745; color: white; padding: 15px 30px; text-decoration: none; border-radius: 6px; font-weight: bold; }}
"""

    body = f"""    <div class="header">
      <h1 style="margin: 0; font-size: 28px;">🔗 Vulnerability Shared</h1>
      <p style="margin: 10px 0 0 0;">{escape(sharer_name)} has shared a vulnerability with you</p>
    </div>
    <div class="content">
      <p>Hello,</p>
      <p><strong>{escape(sharer_name)}</strong> has shared a vulnerability with you on VulnScope for your review and collaboration.</p>{message_box}
      <div class="vuln-card">
        <h2 style="margin-top: 0; color: {color};">{escape(vulnerability.cve_id)}</h2>
        <p style="font-size: 18px;">{escape(vulnerability.title)}</p>
        <div><span class="severity-badge">{icon} {severity}</span> {f'CVSS: {vulnerability.cvss_score}' if vulnerability.cvss_score else ''}</div>
        <div><strong>Published:</strong> {published}</div>{software_html}
        <div><strong>Description:</strong><br><span style="color: #666;">{escape(vulnerability.description)}</span></div>
      </div>{permissions_html}
      <div style="text-align: center; margin: 30px 0;"><a href="{escape(url)}" class="cta-button">View Vulnerability Details</a></div>
    </div>"""

    html = _page(
        subject,
        style,
        body,
        f"This vulnerability was shared by {escape(sharer_name)}. If you didn't expect this, please contact them directly.",
    )

    text = _lines(
        "VULNERABILITY SHARED - VulnScope",
        "",
        "Hello,",
        "",
        f"{sharer_name} has shared a vulnerability with you on VulnScope for your review and collaboration.",
        f'Message from {sharer_name}: "{message}"' if message else None,
        "",
        "Vulnerability Details:",
        f"CVE ID: {vulnerability.cve_id}",
        f"Title: {vulnerability.title}",
        f"Severity: {severity}" + (f" (CVSS: {vulnerability.cvss_score})" if vulnerability.cvss_score else ""),
        f"Published: {published}",
        f"Affected Software: {', '.join(vulnerability.affected_software)}" if vulnerability.affected_software else None,
        "",
        "Description:",
        vulnerability.description,
        "",
        "Your Permissions:" if permission_lines else None,
        *[f"- {label}: {hint}" for _, label, hint in permission_lines],
        "",
        f"View Vulnerability: {url}",
        "",
        "---",
        FOOTER_BRAND,
        f"This vulnerability was shared by {sharer_name}. If you didn't expect this, please contact them directly.",
    )

    return EmailTemplate(subject=subject, html=html, text=text)


def render_team_invitation(
    team_name: str,
    inviter_name: str,
    role: str,
    app_url: str,
    team_description: Optional[str] = None,
    invitation_url: Optional[str] = None,
) -> EmailTemplate:
    """Invitation to join a team"""
    _require(team_name=team_name, inviter_name=inviter_name, role=role)

    join_url = invitation_url or f"{app_url.rstrip('/')}/dashboard/settings?tab=teams"
    subject = f'You\'ve been invited to join the team "{team_name}" on VulnScope'

    description_html = ""
    if team_description:
        description_html = f'<p style="color: #666;">{escape(team_description)}</p>'

    style = """
    .header { background: linear-gradient(135deg, #667eea 0%, #764ba2 100%); color: white; padding: 30px; border-radius: 8px 8px 0 0; text-align: center; }
    .team-card { background: white; padding: 25px; border-radius: 8px; margin: 20px 0; border-left: 4px solid #667eea; }
    .role-badge { display: inline-block; background: #667eea; color: white; padding: 6px 16px; border-radius: 20px; font-size: 12px; font-weight: bold; text-transform: uppercase; }
    .feature { margin: 10px 0; padding: 10px; background: #e9ecef; border-radius: 6px; }
    .cta-button { display: inline-block; background: #667eea; color: white; padding: 15px 30px; text-decoration: none; border-radius: 6px; font-weight: bold; }
"""

    body = f"""    <div class="header">
      <h1 style="margin: 0; font-size: 28px;">🎉 Team Invitation</h1>
      <p style="margin: 10px 0 0 0;">You've been invited to collaborate on VulnScope</p>
    </div>
    <div class="content">
      <p>Hello,</p>
      <p><strong>{escape(inviter_name)}</strong> has invited you to join the team <strong>"{escape(team_name)}"</strong> on VulnScope, the vulnerability intelligence platform.</p>
      <div class="team-card">
        <h2 style="margin-top: 0; color: #667eea;">{escape(team_name)}</h2>
        {description_html}
        <p><strong>Your Role:</strong> <span class="role-badge">{escape(role)}</span></p>
      </div>
      <h3 style="color: #667eea;">What you can do as a team member:</h3>
      <div class="feature"><strong>🔍 Collaborate on Vulnerability Research</strong><br>Share and discuss vulnerabilities with your team members</div>
      <div class="feature"><strong>💬 Team Discussions</strong><br>Participate in threaded discussions about security findings</div>
      <div class="feature"><strong>📊 Shared Analytics</strong><br>Access team-specific vulnerability insights and reports</div>
      <div class="feature"><strong>🔔 Real-time Notifications</strong><br>Stay updated on new vulnerabilities and team activities</div>
      <div style="text-align: center; margin: 30px 0;"><a href="{escape(join_url)}" class="cta-button">Join Team &amp; Access VulnScope</a></div>
      <p style="font-size: 14px; color: #666;">If you have any questions about this invitation, please contact {escape(inviter_name)} or our support team.</p>
    </div>"""

    html = _page(
        subject,
        style,
        body,
        f"This invitation was sent by {escape(inviter_name)}. If you didn't expect this invitation, you can safely ignore this email.",
    )

    text = _lines(
        "TEAM INVITATION - VulnScope",
        "",
        "Hello,",
        "",
        f'{inviter_name} has invited you to join the team "{team_name}" on VulnScope, the vulnerability intelligence platform.',
        "",
        f"Team: {team_name}",
        f"Description: {team_description}" if team_description else None,
        f"Your Role: {role}",
        "",
        "What you can do as a team member:",
        "- Collaborate on vulnerability research",
        "- Participate in threaded discussions about security findings",
        "- Access team-specific vulnerability insights and reports",
        "- Stay updated on new vulnerabilities and team activities",
        "",
        f"Join the team: {join_url}",
        "",
        f"If you have any questions about this invitation, please contact {inviter_name} or our support team.",
        "",
        "---",
        FOOTER_BRAND,
        f"This invitation was sent by {inviter_name}. If you didn't expect this invitation, you can safely ignore this email.",
    )

    return EmailTemplate(subject=subject, html=html, text=text)
