"""Business records the agent's tools read and mutate.

The ``CRM`` interface is the contract the toolset needs from the surrounding
application: lookups that return ``None`` for missing records instead of
raising, filters, creation, and field updates.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from .models import new_id

# --- Deal stages ---
LEAD = "LEAD"
QUALIFIED = "QUALIFIED"
PROPOSAL = "PROPOSAL"
NEGOTIATION = "NEGOTIATION"
CLOSED_WON = "CLOSED_WON"
CLOSED_LOST = "CLOSED_LOST"
DEAL_STAGES = (LEAD, QUALIFIED, PROPOSAL, NEGOTIATION, CLOSED_WON, CLOSED_LOST)
CLOSED_STAGES = (CLOSED_WON, CLOSED_LOST)

DealStage = Literal[
    "LEAD", "QUALIFIED", "PROPOSAL", "NEGOTIATION", "CLOSED_WON", "CLOSED_LOST"
]
ActivityType = Literal["CALL", "EMAIL", "MEETING", "TASK", "NOTE", "STATUS_CHANGE"]
Priority = Literal["low", "medium", "high"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Naive datetimes are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def format_money(value: float) -> str:
    """Formats an amount in reais, e.g. ``R$ 15,000`` or ``R$ 1,234.50``."""
    if float(value).is_integer():
        return f"R$ {int(value):,}"
    return f"R$ {value:,.2f}"


class Deal(BaseModel):
    id: str = Field(default_factory=new_id)
    title: str
    value: float = 0.0
    status: str = LEAD
    probability: int = 20
    priority: Priority = "medium"
    board_id: str = ""
    company_id: str = ""
    company_name: Optional[str] = None
    contact_id: str = ""
    contact_name: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_open(self) -> bool:
        return self.status not in CLOSED_STAGES


class Contact(BaseModel):
    id: str = Field(default_factory=new_id)
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    company_id: str = ""
    status: Literal["ACTIVE", "INACTIVE"] = "ACTIVE"
    stage: str = "LEAD"


class Activity(BaseModel):
    id: str = Field(default_factory=new_id)
    title: str
    type: ActivityType = "TASK"
    date: datetime
    description: str = ""
    deal_id: str = ""
    deal_title: str = ""
    completed: bool = False


class CRMSnapshot(BaseModel):
    """A point-in-time copy of the records, used for offline summaries."""

    deals: List[Deal] = Field(default_factory=list)
    contacts: List[Contact] = Field(default_factory=list)
    activities: List[Activity] = Field(default_factory=list)

    @property
    def open_deals(self) -> List[Deal]:
        return [d for d in self.deals if d.is_open]


class CRM(ABC):
    """Interface for the application's deal, contact and activity records."""

    @abstractmethod
    def list_deals(self) -> List[Deal]:
        pass

    @abstractmethod
    def list_contacts(self) -> List[Contact]:
        pass

    @abstractmethod
    def list_activities(self) -> List[Activity]:
        pass

    @abstractmethod
    def add_deal(self, deal: Deal) -> Deal:
        pass

    @abstractmethod
    def add_activity(self, activity: Activity) -> Activity:
        pass

    @abstractmethod
    def update_deal(self, deal_id: str, **fields) -> Optional[Deal]:
        """Applies ``fields`` to a deal. Returns ``None`` if it does not exist."""
        pass

    @abstractmethod
    def update_activity(self, activity_id: str, **fields) -> Optional[Activity]:
        """Applies ``fields`` to an activity. Returns ``None`` if it does not exist."""
        pass

    def get_deal(self, deal_id: str) -> Optional[Deal]:
        return next((d for d in self.list_deals() if d.id == deal_id), None)

    def get_activity(self, activity_id: str) -> Optional[Activity]:
        return next((a for a in self.list_activities() if a.id == activity_id), None)

    def snapshot(self) -> CRMSnapshot:
        return CRMSnapshot(
            deals=self.list_deals(),
            contacts=self.list_contacts(),
            activities=self.list_activities(),
        )


class InMemoryCRM(CRM):
    """Keeps records in insertion-ordered dictionaries."""

    def __init__(
        self,
        deals: Optional[List[Deal]] = None,
        contacts: Optional[List[Contact]] = None,
        activities: Optional[List[Activity]] = None,
    ):
        self._deals: Dict[str, Deal] = {d.id: d for d in deals or []}
        self._contacts: Dict[str, Contact] = {c.id: c for c in contacts or []}
        self._activities: Dict[str, Activity] = {a.id: a for a in activities or []}

    def list_deals(self) -> List[Deal]:
        return list(self._deals.values())

    def list_contacts(self) -> List[Contact]:
        return list(self._contacts.values())

    def list_activities(self) -> List[Activity]:
        return list(self._activities.values())

    def add_deal(self, deal: Deal) -> Deal:
        self._deals[deal.id] = deal
        return deal

    def add_activity(self, activity: Activity) -> Activity:
        self._activities[activity.id] = activity
        return activity

    def update_deal(self, deal_id: str, **fields) -> Optional[Deal]:
        deal = self._deals.get(deal_id)
        if deal is None:
            return None
        fields.setdefault("updated_at", utcnow())
        updated = deal.model_copy(update=fields)
        self._deals[deal_id] = updated
        return updated

    def update_activity(self, activity_id: str, **fields) -> Optional[Activity]:
        activity = self._activities.get(activity_id)
        if activity is None:
            return None
        updated = activity.model_copy(update=fields)
        self._activities[activity_id] = updated
        return updated
