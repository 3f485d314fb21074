"""Offline replies synthesized from CRM data when no model backend is usable."""

from datetime import datetime, timedelta
from typing import Optional

from .crm import CRMSnapshot, as_utc, format_money, utcnow

DEGRADED_MARKER = "[Demo Mode - API Limit Reached]"

PIPELINE_KEYWORDS = ("deal", "pipeline", "oportunidade", "negócio", "negocio")
SCHEDULE_KEYWORDS = (
    "atividade",
    "activity",
    "activities",
    "hoje",
    "today",
    "schedule",
    "agenda",
)


def synthesize(
    utterance: str, snapshot: CRMSnapshot, now: Optional[datetime] = None
) -> str:
    """Builds a reduced-capability reply grounded in ``snapshot``.

    The reply always starts with ``DEGRADED_MARKER``. The topic is picked by
    keyword: pipeline questions get open-deal totals, schedule questions get
    today's pending activities, anything else gets overall counts.
    """
    query = utterance.lower()
    header = f"⚠️ **{DEGRADED_MARKER}**\n\n"

    if any(word in query for word in PIPELINE_KEYWORDS):
        return header + _pipeline_summary(snapshot)
    if any(word in query for word in SCHEDULE_KEYWORDS):
        return header + _schedule_summary(snapshot, now or utcnow())
    return header + _generic_summary(snapshot)


def _pipeline_summary(snapshot: CRMSnapshot) -> str:
    open_deals = snapshot.open_deals
    total = sum(d.value for d in open_deals)
    lines = [
        "Based on your CRM data:",
        "",
        "📊 **Pipeline Overview:**",
        f"- Active Deals: {len(open_deals)}",
        f"- Total Pipeline Value: {format_money(total)}",
    ]
    top = sorted(open_deals, key=lambda d: d.value, reverse=True)[:3]
    if top:
        lines += ["", "Largest open deals:"]
        lines += [
            f"{i}. {d.title} ({d.status}, {format_money(d.value)})"
            for i, d in enumerate(top, 1)
        ]
    lines += [
        "",
        "💡 **Strategic Insight:** Focus on closing high-value deals in the "
        "Negotiation stage. Consider following up with stagnant opportunities.",
    ]
    return "\n".join(lines)


def _schedule_summary(snapshot: CRMSnapshot, now: datetime) -> str:
    start = as_utc(now).replace(hour=0, minute=0, second=0, microsecond=0)
    end = start + timedelta(days=1)
    pending = [
        a
        for a in snapshot.activities
        if start <= as_utc(a.date) < end and not a.completed
    ]
    lines = [
        "Based on your schedule:",
        "",
        f"📅 **Today's Activities:** {len(pending)} pending",
    ]
    if pending:
        lines += ["", "Top priorities:"]
        lines += [f"{i}. {a.title} ({a.type})" for i, a in enumerate(pending[:3], 1)]
    lines += ["", "💡 **Tip:** Complete high-priority tasks first to maintain momentum."]
    return "\n".join(lines)


def _generic_summary(snapshot: CRMSnapshot) -> str:
    pending = sum(1 for a in snapshot.activities if not a.completed)
    return "\n".join(
        [
            "I'm currently in demo mode due to API limits, but I can still help "
            "you navigate the CRM.",
            "",
            "📊 **Quick Stats:**",
            f"- Total Deals: {len(snapshot.deals)}",
            f"- Total Contacts: {len(snapshot.contacts)}",
            f"- Pending Activities: {pending}",
            "",
            "💡 Try asking about specific deals, activities, or use the navigation "
            "menu to explore your CRM data.",
        ]
    )
