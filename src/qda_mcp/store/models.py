"""Data models for the QDA store.

Attributes are snake_case in Python; ``to_dict``/``from_dict`` use the
camelCase keys of the state file and the project export format.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

DOCUMENT_TYPES = ("pdf", "txt", "docx")
CODE_LEVELS = ("main", "child", "subchild")
MEMO_TARGET_TYPES = ("document", "excerpt", "code", "theme")
STUDY_STATUSES = ("planning", "in-progress", "analysis", "writing", "completed")

# Level a code's parent must have, keyed by the code's own level
PARENT_LEVEL = {"main": None, "child": "main", "subchild": "child"}

ANALYTICS_ACTIONS = {
    "excerpt_created",
    "excerpt_updated",
    "excerpt_deleted",
    "code_created",
    "code_applied",
    "code_removed",
    "ai_suggestion_requested",
    "ai_suggestion_accepted",
    "ai_suggestion_rejected",
    "document_opened",
    "document_closed",
    "theme_created",
    "session_started",
    "session_ended",
}


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def encode_datetime(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def decode_datetime(value: Any) -> datetime | None:
    """Parse an ISO-8601 string (or pass a datetime through)."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _required_datetime(value: Any) -> datetime:
    return decode_datetime(value) or utcnow()


@dataclass
class TextSelection:
    """A completed text selection inside a document."""

    text: str
    start_offset: int
    end_offset: int
    document_id: str


@dataclass
class Document:
    """A raw text document owned by one study."""

    id: str
    title: str
    content: str
    type: str = "txt"
    size: int = 0
    uploaded_at: datetime = field(default_factory=utcnow)
    excerpt_ids: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "content": self.content,
            "type": self.type,
            "size": self.size,
            "uploadedAt": encode_datetime(self.uploaded_at),
            "excerptIds": list(self.excerpt_ids),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Document":
        return cls(
            id=data["id"],
            title=data.get("title", ""),
            content=data.get("content", ""),
            type=data.get("type", "txt"),
            size=int(data.get("size", 0)),
            uploaded_at=_required_datetime(data.get("uploadedAt")),
            # Older exports call this field "excerpts"
            excerpt_ids=list(data.get("excerptIds", data.get("excerpts", []))),
        )


@dataclass
class Excerpt:
    """A coded span of a document's text."""

    id: str
    text: str
    document_id: str
    start_offset: int
    end_offset: int
    code_ids: list[str] = field(default_factory=list)
    memo: str | None = None
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "text": self.text,
            "documentId": self.document_id,
            "startOffset": self.start_offset,
            "endOffset": self.end_offset,
            "codeIds": list(self.code_ids),
            "memo": self.memo,
            "createdAt": encode_datetime(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Excerpt":
        return cls(
            id=data["id"],
            text=data.get("text", ""),
            document_id=data["documentId"],
            start_offset=int(data["startOffset"]),
            end_offset=int(data["endOffset"]),
            code_ids=list(dict.fromkeys(data.get("codeIds", []))),
            memo=data.get("memo"),
            created_at=_required_datetime(data.get("createdAt")),
        )


@dataclass
class Code:
    """A label in the three-level code hierarchy.

    ``excerpt_ids``, ``frequency`` and ``document_count`` are derived from the
    study's excerpts and only ever written by the study controller.
    """

    id: str
    name: str
    color: str
    level: str = "main"
    parent_id: str | None = None
    description: str | None = None
    excerpt_ids: list[str] = field(default_factory=list)
    frequency: int = 0
    document_count: int = 0
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "color": self.color,
            "level": self.level,
            "parentId": self.parent_id,
            "excerptIds": list(self.excerpt_ids),
            "frequency": self.frequency,
            "documentCount": self.document_count,
            "createdAt": encode_datetime(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Code":
        return cls(
            id=data["id"],
            name=data["name"],
            color=data.get("color", ""),
            level=data.get("level", "main"),
            parent_id=data.get("parentId"),
            description=data.get("description"),
            excerpt_ids=list(data.get("excerptIds", [])),
            frequency=int(data.get("frequency", 0)),
            document_count=int(data.get("documentCount", 0)),
            created_at=_required_datetime(data.get("createdAt")),
        )


@dataclass
class Theme:
    """A named grouping of codes."""

    id: str
    name: str
    color: str
    description: str | None = None
    memo: str | None = None
    code_ids: list[str] = field(default_factory=list)
    parent_id: str | None = None
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "color": self.color,
            "memo": self.memo,
            "codeIds": list(self.code_ids),
            "parentId": self.parent_id,
            "createdAt": encode_datetime(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Theme":
        return cls(
            id=data["id"],
            name=data["name"],
            color=data.get("color", ""),
            description=data.get("description"),
            memo=data.get("memo"),
            code_ids=list(dict.fromkeys(data.get("codeIds", []))),
            parent_id=data.get("parentId"),
            created_at=_required_datetime(data.get("createdAt")),
        )


@dataclass
class Memo:
    """Free-text annotation attached to a document, excerpt, code or theme."""

    id: str
    content: str
    target_type: str
    target_id: str
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "content": self.content,
            "targetType": self.target_type,
            "targetId": self.target_id,
            "createdAt": encode_datetime(self.created_at),
            "updatedAt": encode_datetime(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Memo":
        return cls(
            id=data["id"],
            content=data.get("content", ""),
            target_type=data["targetType"],
            target_id=data["targetId"],
            created_at=_required_datetime(data.get("createdAt")),
            updated_at=_required_datetime(data.get("updatedAt")),
        )


@dataclass
class Study:
    """A research project: the aggregate root of the five collections.

    Collections are dicts keyed by id; insertion order is creation order.
    """

    id: str
    title: str
    description: str | None = None
    research_question: str | None = None
    status: str = "planning"
    tags: list[str] = field(default_factory=list)
    color: str = "#3b82f6"
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    last_accessed_at: datetime = field(default_factory=utcnow)
    documents: dict[str, Document] = field(default_factory=dict)
    codes: dict[str, Code] = field(default_factory=dict)
    themes: dict[str, Theme] = field(default_factory=dict)
    excerpts: dict[str, Excerpt] = field(default_factory=dict)
    memos: dict[str, Memo] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "researchQuestion": self.research_question,
            "status": self.status,
            "tags": list(self.tags),
            "color": self.color,
            "createdAt": encode_datetime(self.created_at),
            "updatedAt": encode_datetime(self.updated_at),
            "lastAccessedAt": encode_datetime(self.last_accessed_at),
            "documents": [d.to_dict() for d in self.documents.values()],
            "codes": [c.to_dict() for c in self.codes.values()],
            "themes": [t.to_dict() for t in self.themes.values()],
            "excerpts": [e.to_dict() for e in self.excerpts.values()],
            "memos": [m.to_dict() for m in self.memos.values()],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Study":
        return cls(
            id=data["id"],
            title=data.get("title", ""),
            description=data.get("description"),
            research_question=data.get("researchQuestion"),
            status=data.get("status", "planning"),
            tags=list(data.get("tags", [])),
            color=data.get("color", "#3b82f6"),
            created_at=_required_datetime(data.get("createdAt")),
            updated_at=_required_datetime(data.get("updatedAt")),
            last_accessed_at=_required_datetime(data.get("lastAccessedAt")),
            documents=_index(Document.from_dict(d) for d in data.get("documents", [])),
            codes=_index(Code.from_dict(c) for c in data.get("codes", [])),
            themes=_index(Theme.from_dict(t) for t in data.get("themes", [])),
            excerpts=_index(Excerpt.from_dict(e) for e in data.get("excerpts", [])),
            memos=_index(Memo.from_dict(m) for m in data.get("memos", [])),
        )


@dataclass
class Collaborator:
    """A member of a workspace."""

    id: str
    name: str
    initials: str
    color: str
    joined_at: datetime = field(default_factory=utcnow)
    last_active: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "initials": self.initials,
            "color": self.color,
            "joinedAt": encode_datetime(self.joined_at),
            "lastActive": encode_datetime(self.last_active),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Collaborator":
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            initials=data.get("initials", ""),
            color=data.get("color", ""),
            joined_at=_required_datetime(data.get("joinedAt")),
            last_active=_required_datetime(data.get("lastActive")),
        )


@dataclass
class Workspace:
    """A shareable container of studies with a join code."""

    id: str
    name: str
    code: str
    created_by: str
    created_at: datetime = field(default_factory=utcnow)
    collaborators: list[Collaborator] = field(default_factory=list)
    study_ids: list[str] = field(default_factory=list)
    research_mode: bool = False
    ai_enabled: bool = False
    participant_id: str | None = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "createdBy": self.created_by,
            "createdAt": encode_datetime(self.created_at),
            "collaborators": [c.to_dict() for c in self.collaborators],
            "studyIds": list(self.study_ids),
            "researchMode": self.research_mode,
            "aiEnabled": self.ai_enabled,
            "participantId": self.participant_id,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Workspace":
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            code=data["code"],
            created_by=data.get("createdBy", ""),
            created_at=_required_datetime(data.get("createdAt")),
            collaborators=[Collaborator.from_dict(c) for c in data.get("collaborators", [])],
            study_ids=list(data.get("studyIds", [])),
            research_mode=bool(data.get("researchMode", False)),
            ai_enabled=bool(data.get("aiEnabled", False)),
            participant_id=data.get("participantId"),
        )


@dataclass
class AnalyticsLog:
    """One research-mode event."""

    id: str
    workspace_id: str
    action: str
    timestamp: datetime = field(default_factory=utcnow)
    participant_id: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "timestamp": encode_datetime(self.timestamp),
            "workspaceId": self.workspace_id,
            "participantId": self.participant_id,
            "action": self.action,
            "details": dict(self.details),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AnalyticsLog":
        return cls(
            id=data["id"],
            workspace_id=data.get("workspaceId", ""),
            action=data["action"],
            timestamp=_required_datetime(data.get("timestamp")),
            participant_id=data.get("participantId"),
            details=dict(data.get("details") or {}),
        )


@dataclass
class StudyStatistics:
    """Counts and headline figures for one study."""

    study_id: str
    document_count: int = 0
    code_count: int = 0
    theme_count: int = 0
    excerpt_count: int = 0
    memo_count: int = 0
    coded_segments: int = 0
    average_codes_per_document: float = 0.0
    most_used_code: str | None = None
    recent_activity: datetime | None = None

    def to_dict(self) -> dict:
        return {
            "studyId": self.study_id,
            "documentCount": self.document_count,
            "codeCount": self.code_count,
            "themeCount": self.theme_count,
            "excerptCount": self.excerpt_count,
            "memoCount": self.memo_count,
            "codedSegments": self.coded_segments,
            "averageCodesPerDocument": self.average_codes_per_document,
            "mostUsedCode": self.most_used_code,
            "recentActivity": encode_datetime(self.recent_activity),
        }


@dataclass
class ResearchMetrics:
    """Aggregate coding behaviour of one research-mode participant."""

    participant_id: str
    workspace_id: str
    start_time: datetime
    end_time: datetime | None
    total_excerpts: int
    total_codes: int
    unique_codes: int
    average_codes_per_excerpt: float
    coding_speed: float  # excerpts per hour
    ai_suggestions_requested: int
    ai_suggestions_accepted: int
    ai_suggestions_rejected: int
    ai_acceptance_rate: float
    total_active_time: float  # milliseconds
    average_time_per_excerpt: float  # milliseconds
    documents_processed: int
    total_text_coded: int  # characters

    def to_dict(self) -> dict:
        return {
            "participantId": self.participant_id,
            "workspaceId": self.workspace_id,
            "startTime": encode_datetime(self.start_time),
            "endTime": encode_datetime(self.end_time),
            "totalExcerpts": self.total_excerpts,
            "totalCodes": self.total_codes,
            "uniqueCodes": self.unique_codes,
            "averageCodesPerExcerpt": self.average_codes_per_excerpt,
            "codingSpeed": self.coding_speed,
            "aiSuggestionsRequested": self.ai_suggestions_requested,
            "aiSuggestionsAccepted": self.ai_suggestions_accepted,
            "aiSuggestionsRejected": self.ai_suggestions_rejected,
            "aiAcceptanceRate": self.ai_acceptance_rate,
            "totalActiveTime": self.total_active_time,
            "averageTimePerExcerpt": self.average_time_per_excerpt,
            "documentsProcessed": self.documents_processed,
            "totalTextCoded": self.total_text_coded,
        }


def _index(items) -> dict:
    return {item.id: item for item in items}
