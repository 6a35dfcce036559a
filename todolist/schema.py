"""
To-do schema: tasks, users, shared lists and AI annotations.

Records are stored as JSON documents; every type round-trips through
to_dict() / from_dict(). Annotation fields are optional on a Todo until the
analysis pipeline has run.
"""
from enum import Enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any

from .errors import ValidationError


def utc_now() -> str:
    """ISO-8601 UTC timestamp."""
    return datetime.now(timezone.utc).isoformat()


def format_minutes(minutes: int) -> str:
    """Render a minute count as "Xh Ym" or "Ym"."""
    hours, mins = divmod(int(minutes), 60)
    return f"{hours}h {mins}m" if hours > 0 else f"{mins}m"


class Category(Enum):
    """Closed set of todo categories, in declaration order."""
    WORK = "Work"
    PERSONAL = "Personal"
    SHOPPING = "Shopping"
    HEALTH = "Health"
    EDUCATION = "Education"
    FINANCE = "Finance"
    HOME = "Home"

    @classmethod
    def from_str(cls, value: str) -> "Category":
        for member in cls:
            if member.value.lower() == (value or "").strip().lower():
                return member
        return cls.PERSONAL


class PriorityLevel(Enum):
    URGENT = "urgent"
    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"


class Permission(Enum):
    """Per-member permission on a shared list."""
    OWNER = "owner"
    EDITOR = "editor"
    VIEWER = "viewer"

    @classmethod
    def from_str(cls, value: str) -> "Permission":
        try:
            return cls(value.strip().lower())
        except (ValueError, AttributeError):
            return cls.VIEWER


@dataclass
class Priority:
    level: PriorityLevel
    score: int
    color: str

    def to_dict(self) -> Dict[str, Any]:
        return {"level": self.level.value, "score": self.score, "color": self.color}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Priority":
        try:
            level = PriorityLevel(data.get("level", "normal"))
        except ValueError:
            level = PriorityLevel.NORMAL
        return cls(level=level, score=int(data.get("score", 2)), color=data.get("color", ""))


# Fixed score/color per priority level
PRIORITIES = {
    PriorityLevel.URGENT: Priority(PriorityLevel.URGENT, 4, "#ff4444"),
    PriorityLevel.HIGH: Priority(PriorityLevel.HIGH, 3, "#ff9900"),
    PriorityLevel.NORMAL: Priority(PriorityLevel.NORMAL, 2, "#2196F3"),
    PriorityLevel.LOW: Priority(PriorityLevel.LOW, 1, "#4CAF50"),
}


def priority_for(level: PriorityLevel) -> Priority:
    p = PRIORITIES[level]
    return Priority(p.level, p.score, p.color)


@dataclass
class Sentiment:
    mood: str
    emoji: str
    color: str
    score: float
    words: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mood": self.mood,
            "emoji": self.emoji,
            "color": self.color,
            "score": self.score,
            "words": list(self.words),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Sentiment":
        score = data.get("score", 0)
        if isinstance(score, bool) or not isinstance(score, (int, float)):
            score = float(score)
        return cls(
            mood=data.get("mood", "neutral"),
            emoji=data.get("emoji", ""),
            color=data.get("color", ""),
            score=score,
            words=list(data.get("words") or []),
        )


@dataclass
class TimeEstimate:
    minutes: int
    display: str
    confidence: str  # "high" | "medium"

    @classmethod
    def of(cls, minutes: int, confidence: str) -> "TimeEstimate":
        return cls(minutes=int(minutes), display=format_minutes(minutes), confidence=confidence)

    def to_dict(self) -> Dict[str, Any]:
        return {"minutes": self.minutes, "display": self.display, "confidence": self.confidence}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TimeEstimate":
        minutes = int(data.get("minutes", 0))
        return cls(
            minutes=minutes,
            display=data.get("display") or format_minutes(minutes),
            confidence=data.get("confidence", "medium"),
        )


@dataclass
class Annotation:
    """The four AI-derived annotations attached to a todo."""
    category: Category
    priority: Priority
    sentiment: Sentiment
    time_estimate: TimeEstimate

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category.value,
            "priority": self.priority.to_dict(),
            "sentiment": self.sentiment.to_dict(),
            "time_estimate": self.time_estimate.to_dict(),
        }


@dataclass
class TodoDraft:
    """An annotated, not-yet-persisted todo (vision pipeline output)."""
    text: str
    annotation: Annotation
    is_analyzed: bool = True

    @property
    def category(self) -> Category:
        return self.annotation.category

    def to_dict(self) -> Dict[str, Any]:
        data = {"text": self.text, "is_analyzed": self.is_analyzed}
        data.update(self.annotation.to_dict())
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TodoDraft":
        """Parse a client-supplied draft; a malformed shape is a ValidationError."""
        if not isinstance(data, dict):
            raise ValidationError("Each draft must be an object")
        if not isinstance(data.get("text", ""), str) or not isinstance(data.get("category") or "", str):
            raise ValidationError("Draft text and category must be strings")
        for name in ("priority", "sentiment", "time_estimate"):
            if data.get(name) is not None and not isinstance(data[name], dict):
                raise ValidationError(f"Draft {name} must be an object")
        try:
            annotation = Annotation(
                category=Category.from_str(data.get("category") or ""),
                priority=Priority.from_dict(data.get("priority") or {}),
                sentiment=Sentiment.from_dict(data.get("sentiment") or {}),
                time_estimate=TimeEstimate.from_dict(data.get("time_estimate") or {}),
            )
        except (TypeError, ValueError) as e:
            raise ValidationError(f"Malformed draft annotation: {e}")
        return cls(
            text=data.get("text", ""),
            annotation=annotation,
            is_analyzed=data.get("is_analyzed") is True,
        )


@dataclass
class Todo:
    """A user's task, optionally a subtask and/or in a shared list."""

    # Keys
    user_id: str
    todo_id: str

    # Content
    text: str
    completed: bool = False

    # Annotations (None until analyzed)
    category: Optional[Category] = None
    priority: Optional[Priority] = None
    sentiment: Optional[Sentiment] = None
    time_estimate: Optional[TimeEstimate] = None

    # Links
    parent_todo_id: Optional[str] = None
    subtask_ids: List[str] = field(default_factory=list)
    shared_list_id: Optional[str] = None

    created_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)

    @property
    def is_subtask(self) -> bool:
        return self.parent_todo_id is not None

    def apply_annotation(self, annotation: Annotation) -> "Todo":
        self.category = annotation.category
        self.priority = annotation.priority
        self.sentiment = annotation.sentiment
        self.time_estimate = annotation.time_estimate
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "todo_id": self.todo_id,
            "text": self.text,
            "completed": self.completed,
            "category": self.category.value if self.category else None,
            "priority": self.priority.to_dict() if self.priority else None,
            "sentiment": self.sentiment.to_dict() if self.sentiment else None,
            "time_estimate": self.time_estimate.to_dict() if self.time_estimate else None,
            "parent_todo_id": self.parent_todo_id,
            "subtask_ids": list(self.subtask_ids),
            "shared_list_id": self.shared_list_id,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Todo":
        """Deserialize from a stored document. Missing annotations stay None."""
        return cls(
            user_id=data.get("user_id", ""),
            todo_id=data.get("todo_id", ""),
            text=data.get("text", ""),
            completed=bool(data.get("completed", False)),
            category=Category.from_str(data["category"]) if data.get("category") else None,
            priority=Priority.from_dict(data["priority"]) if data.get("priority") else None,
            sentiment=Sentiment.from_dict(data["sentiment"]) if data.get("sentiment") else None,
            time_estimate=TimeEstimate.from_dict(data["time_estimate"]) if data.get("time_estimate") else None,
            parent_todo_id=data.get("parent_todo_id"),
            subtask_ids=list(data.get("subtask_ids") or []),
            shared_list_id=data.get("shared_list_id"),
            created_at=data.get("created_at") or utc_now(),
            updated_at=data.get("updated_at") or utc_now(),
        )


@dataclass
class User:
    """Account record. The password hash never leaves the identity adapter."""
    email: str
    user_id: str
    name: str = ""
    password: str = ""
    is_admin: bool = False
    is_active: bool = True
    created_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)

    def __post_init__(self):
        self.email = self.email.strip().lower()

    def to_dict(self, include_password: bool = False) -> Dict[str, Any]:
        data = {
            "email": self.email,
            "user_id": self.user_id,
            "name": self.name,
            "is_admin": self.is_admin,
            "is_active": self.is_active,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }
        if include_password:
            data["password"] = self.password
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "User":
        return cls(
            email=data.get("email", ""),
            user_id=data.get("user_id", ""),
            name=data.get("name", ""),
            password=data.get("password", ""),
            is_admin=bool(data.get("is_admin", False)),
            is_active=bool(data.get("is_active", True)),
            created_at=data.get("created_at") or utc_now(),
            updated_at=data.get("updated_at") or utc_now(),
        )


@dataclass
class SharedList:
    """A named collection of todos with per-member permissions."""
    list_id: str
    name: str
    owner_id: str
    description: str = ""
    members: List[str] = field(default_factory=list)
    permissions: Dict[str, Permission] = field(default_factory=dict)
    created_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)

    def __post_init__(self):
        # Owner is always a member with owner permission
        if self.owner_id not in self.members:
            self.members.insert(0, self.owner_id)
        self.permissions[self.owner_id] = Permission.OWNER

    def permission_of(self, user_id: str) -> Optional[Permission]:
        if user_id not in self.members:
            return None
        return self.permissions.get(user_id, Permission.VIEWER)

    def is_member(self, user_id: str) -> bool:
        return user_id in self.members

    def can_edit(self, user_id: str) -> bool:
        return self.permission_of(user_id) in (Permission.OWNER, Permission.EDITOR)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "list_id": self.list_id,
            "name": self.name,
            "description": self.description,
            "owner_id": self.owner_id,
            "members": list(self.members),
            "permissions": {uid: p.value for uid, p in self.permissions.items()},
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SharedList":
        return cls(
            list_id=data.get("list_id", ""),
            name=data.get("name", ""),
            owner_id=data.get("owner_id", ""),
            description=data.get("description", ""),
            members=list(data.get("members") or []),
            permissions={
                uid: Permission.from_str(p)
                for uid, p in (data.get("permissions") or {}).items()
            },
            created_at=data.get("created_at") or utc_now(),
            updated_at=data.get("updated_at") or utc_now(),
        )
