"""The CRM toolset: read, write and analysis tools bound to a ``CRM``."""

from datetime import datetime, timedelta
from typing import Callable, Optional

from pydantic import BaseModel, ConfigDict, Field

from .crm import (
    CLOSED_LOST,
    CLOSED_WON,
    CRM,
    NEGOTIATION,
    PROPOSAL,
    Activity,
    ActivityType,
    Deal,
    DealStage,
    as_utc,
    format_money,
    utcnow,
)
from .tools import ToolRegistry, ToolSpec

DAY = timedelta(days=1)


class Args(BaseModel):
    model_config = ConfigDict(extra="forbid")


class SearchDealsArgs(Args):
    query: Optional[str] = Field(None, description="Text matched against title and company")
    status: Optional[str] = Field(None, description="Exact pipeline stage")
    min_value: Optional[float] = None
    max_value: Optional[float] = None
    limit: int = Field(10, ge=1, le=100)


class GetContactArgs(Args):
    query: str = Field(..., description="Name or email fragment")


class ActivitiesTodayArgs(Args):
    include_completed: bool = False


class OverdueActivitiesArgs(Args):
    limit: int = Field(5, ge=1, le=100)


class PipelineStatsArgs(Args):
    pass


class DealIdArgs(Args):
    deal_id: str


class CreateActivityArgs(Args):
    title: str
    type: ActivityType
    date: datetime
    description: Optional[str] = None
    contact_name: Optional[str] = None
    deal_title: Optional[str] = None


class CompleteActivityArgs(Args):
    activity_id: str


class MoveDealArgs(Args):
    deal_id: str
    new_status: DealStage


class UpdateDealValueArgs(Args):
    deal_id: str
    new_value: float = Field(..., ge=0)


class CreateDealArgs(Args):
    title: str
    value: float = Field(..., ge=0)
    contact_name: Optional[str] = None
    company_name: Optional[str] = None
    description: Optional[str] = None


class StagnantDealsArgs(Args):
    days_stagnant: int = Field(7, ge=1)


def _days_between(earlier: datetime, later: datetime) -> int:
    return int((as_utc(later) - as_utc(earlier)) / DAY)


def _deal_not_found() -> dict:
    return {"success": False, "message": "Deal not found."}


def build_crm_tools(
    crm: CRM, clock: Callable[[], datetime] = utcnow, board_id: str = ""
) -> ToolRegistry:
    """Builds the tool registry whose executors close over ``crm``.

    Parameters
    ----------
    crm : CRM
        The live records the tools read and mutate.
    clock : callable, optional
        Returns the current time; "today", "overdue" and "stagnant" are
        measured against it.
    board_id : str, optional
        Board assigned to deals created through ``create_deal``.
    """

    def search_deals(args: SearchDealsArgs) -> dict:
        deals = crm.list_deals()
        if args.query:
            q = args.query.lower()
            deals = [
                d
                for d in deals
                if q in d.title.lower() or q in (d.company_name or "").lower()
            ]
        if args.status:
            deals = [d for d in deals if d.status == args.status]
        if args.min_value is not None:
            deals = [d for d in deals if d.value >= args.min_value]
        if args.max_value is not None:
            deals = [d for d in deals if d.value <= args.max_value]

        results = [
            {
                "id": d.id,
                "title": d.title,
                "value": d.value,
                "status": d.status,
                "company": d.company_name,
                "probability": d.probability,
            }
            for d in deals[: args.limit]
        ]
        return {
            "count": len(results),
            "total_value": sum(d["value"] for d in results),
            "deals": results,
        }

    def get_contact(args: GetContactArgs) -> dict:
        q = args.query.lower()
        found = next(
            (
                c
                for c in crm.list_contacts()
                if q in c.name.lower() or q in (c.email or "").lower()
            ),
            None,
        )
        if found is None:
            return {"found": False, "message": f'Contact "{args.query}" not found.'}
        return {
            "found": True,
            "contact": found.model_dump(
                include={"id", "name", "email", "phone", "company_id", "status", "stage"}
            ),
        }

    def get_activities_today(args: ActivitiesTodayArgs) -> dict:
        start = as_utc(clock()).replace(hour=0, minute=0, second=0, microsecond=0)
        end = start + DAY
        activities = [
            a for a in crm.list_activities() if start <= as_utc(a.date) < end
        ]
        if not args.include_completed:
            activities = [a for a in activities if not a.completed]
        return {
            "count": len(activities),
            "activities": [
                {
                    "id": a.id,
                    "title": a.title,
                    "type": a.type,
                    "time": a.date.strftime("%H:%M"),
                    "completed": a.completed,
                    "deal": a.deal_title,
                }
                for a in activities
            ],
        }

    def get_overdue_activities(args: OverdueActivitiesArgs) -> dict:
        now = clock()
        overdue = sorted(
            (
                a
                for a in crm.list_activities()
                if not a.completed and as_utc(a.date) < as_utc(now)
            ),
            key=lambda a: as_utc(a.date),
        )[: args.limit]
        return {
            "count": len(overdue),
            "activities": [
                {
                    "id": a.id,
                    "title": a.title,
                    "type": a.type,
                    "days_overdue": _days_between(a.date, now),
                    "deal": a.deal_title,
                }
                for a in overdue
            ],
        }

    def get_pipeline_stats(args: PipelineStatsArgs) -> dict:
        deals = crm.list_deals()
        active = [d for d in deals if d.is_open]
        won = [d for d in deals if d.status == CLOSED_WON]
        lost = [d for d in deals if d.status == CLOSED_LOST]
        decided = len(won) + len(lost)
        return {
            "total_deals": len(deals),
            "active_deals": len(active),
            "pipeline_value": sum(d.value for d in active),
            "won_deals": len(won),
            "won_value": sum(d.value for d in won),
            "lost_deals": len(lost),
            "win_rate": round(len(won) / decided * 100) if decided else 0,
        }

    def get_deal_details(args: DealIdArgs) -> dict:
        deal = crm.get_deal(args.deal_id)
        if deal is None:
            return {"found": False, "message": "Deal not found."}
        activity_count = sum(1 for a in crm.list_activities() if a.deal_id == deal.id)
        return {
            "found": True,
            "deal": {
                "id": deal.id,
                "title": deal.title,
                "value": deal.value,
                "status": deal.status,
                "probability": deal.probability,
                "company": deal.company_name,
                "contact": deal.contact_name,
                "created_at": deal.created_at.isoformat(),
                "updated_at": deal.updated_at.isoformat(),
                "activities": activity_count,
                "tags": deal.tags,
            },
        }

    def create_activity(args: CreateActivityArgs) -> dict:
        deal = None
        if args.deal_title:
            q = args.deal_title.lower()
            deal = next((d for d in crm.list_deals() if q in d.title.lower()), None)
        activity = crm.add_activity(
            Activity(
                title=args.title,
                type=args.type,
                date=args.date,
                description=args.description or "",
                deal_id=deal.id if deal else "",
                deal_title=deal.title if deal else (args.deal_title or ""),
            )
        )
        return {
            "success": True,
            "message": f'Activity "{args.title}" created for {args.date:%d/%m/%Y}.',
            "activity": {
                "id": activity.id,
                "title": activity.title,
                "type": activity.type,
                "date": activity.date.isoformat(),
            },
        }

    def complete_activity(args: CompleteActivityArgs) -> dict:
        activity = crm.update_activity(args.activity_id, completed=True)
        if activity is None:
            return {"success": False, "message": "Activity not found."}
        return {
            "success": True,
            "message": f'Activity "{activity.title}" marked as completed.',
        }

    def move_deal(args: MoveDealArgs) -> dict:
        deal = crm.get_deal(args.deal_id)
        if deal is None:
            return _deal_not_found()
        crm.update_deal(deal.id, status=args.new_status)
        return {
            "success": True,
            "message": f'Deal "{deal.title}" moved to {args.new_status}.',
            "previous_status": deal.status,
            "new_status": args.new_status,
        }

    def update_deal_value(args: UpdateDealValueArgs) -> dict:
        deal = crm.get_deal(args.deal_id)
        if deal is None:
            return _deal_not_found()
        crm.update_deal(deal.id, value=args.new_value)
        return {
            "success": True,
            "message": (
                f'Value of deal "{deal.title}" updated from '
                f"{format_money(deal.value)} to {format_money(args.new_value)}."
            ),
        }

    def create_deal(args: CreateDealArgs) -> dict:
        contact = None
        if args.contact_name:
            q = args.contact_name.lower()
            contact = next((c for c in crm.list_contacts() if q in c.name.lower()), None)
        deal = crm.add_deal(
            Deal(
                title=args.title,
                value=args.value,
                board_id=board_id,
                contact_id=contact.id if contact else "",
                contact_name=contact.name if contact else args.contact_name,
                company_id=contact.company_id if contact else "",
                company_name=args.company_name,
            )
        )
        return {
            "success": True,
            "message": f'Deal "{deal.title}" created with value {format_money(deal.value)}.',
            "deal": {
                "id": deal.id,
                "title": deal.title,
                "value": deal.value,
                "status": deal.status,
            },
        }

    def analyze_stagnant_deals(args: StagnantDealsArgs) -> dict:
        now = clock()
        threshold = as_utc(now) - timedelta(days=args.days_stagnant)
        stagnant = sorted(
            (d for d in crm.list_deals() if d.is_open and as_utc(d.updated_at) < threshold),
            key=lambda d: d.value,
            reverse=True,
        )
        return {
            "count": len(stagnant),
            "total_value_at_risk": sum(d.value for d in stagnant),
            "deals": [
                {
                    "id": d.id,
                    "title": d.title,
                    "value": d.value,
                    "status": d.status,
                    "days_since_update": _days_between(d.updated_at, now),
                }
                for d in stagnant[:5]
            ],
        }

    def suggest_next_action(args: DealIdArgs) -> dict:
        deal = crm.get_deal(args.deal_id)
        if deal is None:
            return _deal_not_found()

        history = [a for a in crm.list_activities() if a.deal_id == deal.id]
        last = max(history, key=lambda a: as_utc(a.date), default=None)

        priority = "medium"
        if last is None:
            suggestion = "Make first contact: schedule a discovery meeting."
            priority = "high"
        else:
            days_since = _days_between(last.date, clock())
            if days_since > 7:
                suggestion = f"Follow up: the last contact was {days_since} days ago."
                priority = "high"
            elif deal.status == PROPOSAL:
                suggestion = (
                    "Check whether the client reviewed the proposal and book a closing call."
                )
            elif deal.status == NEGOTIATION:
                suggestion = "Prepare a counter-proposal or meet to resolve objections."
            else:
                suggestion = "Keep nurturing with relevant content."

        return {
            "deal": deal.title,
            "suggestion": suggestion,
            "priority": priority,
            "context": {
                "current_status": deal.status,
                "value": deal.value,
                "last_activity": last.title if last else "None",
            },
        }

    return ToolRegistry(
        [
            ToolSpec(
                name="search_deals",
                description="Search deals in the CRM by text, stage and value range.",
                input_schema=SearchDealsArgs,
                execute=search_deals,
            ),
            ToolSpec(
                name="get_contact",
                description="Look up a contact by name or email.",
                input_schema=GetContactArgs,
                execute=get_contact,
            ),
            ToolSpec(
                name="get_activities_today",
                description="List the activities scheduled for today.",
                input_schema=ActivitiesTodayArgs,
                execute=get_activities_today,
            ),
            ToolSpec(
                name="get_overdue_activities",
                description="List open activities whose date has passed, oldest first.",
                input_schema=OverdueActivitiesArgs,
                execute=get_overdue_activities,
            ),
            ToolSpec(
                name="get_pipeline_stats",
                description="Pipeline totals: active deals, pipeline value, wins, losses, win rate.",
                input_schema=PipelineStatsArgs,
                execute=get_pipeline_stats,
            ),
            ToolSpec(
                name="get_deal_details",
                description="Full details of one deal.",
                input_schema=DealIdArgs,
                execute=get_deal_details,
            ),
            ToolSpec(
                name="create_activity",
                description="Create a meeting, call, task or email activity.",
                input_schema=CreateActivityArgs,
                execute=create_activity,
            ),
            ToolSpec(
                name="complete_activity",
                description="Mark an activity as completed.",
                input_schema=CompleteActivityArgs,
                execute=complete_activity,
            ),
            ToolSpec(
                name="move_deal",
                description="Move a deal to another pipeline stage.",
                input_schema=MoveDealArgs,
                execute=move_deal,
            ),
            ToolSpec(
                name="update_deal_value",
                description="Change the value of a deal.",
                input_schema=UpdateDealValueArgs,
                execute=update_deal_value,
            ),
            ToolSpec(
                name="create_deal",
                description="Create a new deal in the first pipeline stage.",
                input_schema=CreateDealArgs,
                execute=create_deal,
            ),
            ToolSpec(
                name="analyze_stagnant_deals",
                description="Find open deals without updates for a number of days.",
                input_schema=StagnantDealsArgs,
                execute=analyze_stagnant_deals,
            ),
            ToolSpec(
                name="suggest_next_action",
                description="Suggest the next action for a deal based on its history.",
                input_schema=DealIdArgs,
                execute=suggest_next_action,
            ),
        ]
    )
