"""HTML pages shown to the seller at the end of the Square OAuth redirect"""

from html import escape
from typing import Optional

_STYLE = """
      body { margin: 0; padding: 40px 16px; background: #0f172a; color: #f8fafc;
             font-family: "Segoe UI", -apple-system, BlinkMacSystemFont, sans-serif;
             display: flex; justify-content: center; }
      .card { max-width: 700px; width: 100%; background: #1e293b; border-radius: 18px; padding: 36px; }
      h1 { font-size: 30px; margin-bottom: 12px; }
      h1.ok { color: #86efac; }
      h1.fail { color: #fda4af; }
      p, li { color: #e2e8f0; line-height: 1.6; }
      .row { padding: 12px 0; border-bottom: 1px solid rgba(148, 163, 184, 0.2); }
      .label { font-weight: 600; color: #cbd5f5; }
      .value { font-family: "JetBrains Mono", "Menlo", monospace; word-break: break-all; }
"""


def _page(title: str, body: str) -> str:
    return f"""<!doctype html>
<html lang="en">
  <head>
    <meta charset="utf-8" />
    <meta name="viewport" content="width=device-width,initial-scale=1" />
    <title>{escape(title)}</title>
    <style>{_STYLE}</style>
  </head>
  <body>
    <article class="card">
{body}
    </article>
  </body>
</html>"""


def render_success_page(summary: dict) -> str:
    """Connection summary. Tokens are never part of the summary."""
    plan_description = (
        "Full calendar control enabled. The agent can manage all bookings for this seller."
        if summary.get("supportsSellerLevelWrites")
        else "Limited to bookings created by your agent. Upgrade to Appointments Plus or Premium for full access."
    )
    stored = (
        "Credentials were saved to your account."
        if summary.get("credentialsStored")
        else "Credentials were not saved. Start the connection from your dashboard to link them to your account."
    )
    rows = [
        ("Business", summary.get("businessName")),
        ("Merchant ID", summary.get("merchantId")),
        ("Default location", summary.get("defaultLocationName") or summary.get("defaultLocationId")),
        ("Environment", summary.get("environment")),
        ("Seller plan", summary.get("sellerPlan")),
        ("Expires at", summary.get("expiresAt")),
        ("Scopes", ", ".join(summary.get("scopes") or [])),
        ("Agent", summary.get("agentId")),
    ]
    row_html = "\n".join(
        f'      <div class="row"><div class="label">{escape(label)}</div>'
        f'<div class="value">{escape(str(value))}</div></div>'
        for label, value in rows
        if value
    )
    body = f"""      <h1 class="ok">Square Connected</h1>
      <p>{escape(stored)}</p>
      <p>{escape(plan_description)}</p>
{row_html}"""
    return _page("Square Authorization Complete", body)


def render_error_page(title: str, message: str, next_steps: Optional[list[str]] = None) -> str:
    steps = "".join(f"<li>{escape(step)}</li>" for step in (next_steps or []))
    steps_html = f"      <h2>Next steps</h2>\n      <ul>{steps}</ul>" if steps else ""
    body = f"""      <h1 class="fail">{escape(title or "Authorization Failed")}</h1>
      <p>{escape(message or "Square returned an error during the OAuth callback.")}</p>
{steps_html}"""
    return _page("Square OAuth Authorization Failed", body)
