"""CRM records read and written by workflow actions.

The engine does not own these records; it reads leads and emails and writes
only the fields an action explicitly targets. All models serialize to the
camelCase shape used by condition properties and ``{{lead.field}}``
placeholders.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class LeadCategory(str, Enum):
    HOT = "HOT"
    WARM = "WARM"
    COLD = "COLD"
    NEW = "NEW"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse an ISO string or epoch seconds; datetimes pass through."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


# Lead fields an UPDATE_LEAD partial may carry, keyed by their wire name
LEAD_UPDATABLE_FIELDS = {
    "status": "status",
    "score": "score",
    "company": "company",
    "notes": "notes",
    "tags": "tags",
    "customFields": "custom_fields",
    "lastContactedAt": "last_contacted_at",
}


@dataclass
class Lead:
    id: str
    email: Optional[str] = None
    name: Optional[str] = None
    status: Optional[str] = None
    score: Optional[float] = None
    company: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    notes: Optional[str] = None
    custom_fields: Dict[str, Any] = field(default_factory=dict)
    last_contacted_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "status": self.status,
            "score": self.score,
            "company": self.company,
            "tags": list(self.tags),
            "notes": self.notes,
            "customFields": dict(self.custom_fields),
            "lastContactedAt": _iso(self.last_contacted_at),
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Lead":
        return cls(
            id=data["id"],
            email=data.get("email"),
            name=data.get("name"),
            status=data.get("status"),
            score=data.get("score"),
            company=data.get("company"),
            tags=list(data.get("tags") or []),
            notes=data.get("notes"),
            custom_fields=dict(data.get("customFields") or {}),
            last_contacted_at=parse_datetime(data.get("lastContactedAt")),
            created_at=parse_datetime(data.get("createdAt")) or utcnow(),
            updated_at=parse_datetime(data.get("updatedAt")) or utcnow(),
        )

    def get_field(self, name: str) -> Any:
        """Resolve a field by wire name; datetimes are returned as datetimes."""
        attr = {
            "lastContactedAt": "last_contacted_at",
            "createdAt": "created_at",
            "updatedAt": "updated_at",
            "customFields": "custom_fields",
        }.get(name, name)
        if attr in self.__dataclass_fields__:
            return getattr(self, attr)
        return None

    def apply(self, partial: Dict[str, Any]) -> None:
        """Apply a partial update in place; ``customFields`` are merged."""
        for wire_name, value in partial.items():
            attr = LEAD_UPDATABLE_FIELDS.get(wire_name)
            if attr is None:
                continue
            if attr == "custom_fields":
                self.custom_fields = {**self.custom_fields, **(value or {})}
            elif attr == "last_contacted_at":
                self.last_contacted_at = parse_datetime(value)
            elif attr == "tags":
                self.tags = list(value or [])
            else:
                setattr(self, attr, value)
        self.updated_at = utcnow()


@dataclass
class EmailMessage:
    id: str
    lead_id: Optional[str] = None
    subject: Optional[str] = None
    body: Optional[str] = None
    sent_at: Optional[datetime] = None
    opened: bool = False
    analyzed: bool = False
    analysis_results: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "leadId": self.lead_id,
            "subject": self.subject,
            "body": self.body,
            "sentAt": _iso(self.sent_at),
            "opened": self.opened,
            "analyzed": self.analyzed,
            "analysisResults": self.analysis_results,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EmailMessage":
        return cls(
            id=data["id"],
            lead_id=data.get("leadId"),
            subject=data.get("subject"),
            body=data.get("body"),
            sent_at=parse_datetime(data.get("sentAt")),
            opened=bool(data.get("opened", False)),
            analyzed=bool(data.get("analyzed", False)),
            analysis_results=data.get("analysisResults"),
        )

    def get_field(self, name: str) -> Any:
        return self.to_dict().get(name)


@dataclass
class Task:
    title: str
    lead_id: str
    description: Optional[str] = None
    due_date: Optional[datetime] = None
    assigned_to_id: Optional[str] = None
    priority: str = "MEDIUM"
    status: str = "PENDING"
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "dueDate": _iso(self.due_date),
            "assignedToId": self.assigned_to_id,
            "priority": self.priority,
            "status": self.status,
            "leadId": self.lead_id,
            "createdAt": _iso(self.created_at),
        }


@dataclass
class Appointment:
    title: str
    lead_id: str
    start_time: datetime
    end_time: datetime
    description: Optional[str] = None
    location: Optional[str] = None
    status: str = "SCHEDULED"
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "startTime": _iso(self.start_time),
            "endTime": _iso(self.end_time),
            "location": self.location,
            "status": self.status,
            "leadId": self.lead_id,
            "createdAt": _iso(self.created_at),
        }


@dataclass
class Notification:
    user_id: str
    title: str
    message: str = ""
    is_read: bool = False
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "title": self.title,
            "message": self.message,
            "isRead": self.is_read,
            "createdAt": _iso(self.created_at),
        }
