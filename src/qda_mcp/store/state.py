"""Application state: workspaces, studies and the research analytics log."""

from __future__ import annotations

import copy
import logging
import random
import secrets
import string
import threading
from datetime import datetime

from qda_mcp.config import Config
from qda_mcp.store.errors import NotFoundError, PersistenceError, ValidationError
from qda_mcp.store.models import (
    ANALYTICS_ACTIONS,
    STUDY_STATUSES,
    AnalyticsLog,
    Collaborator,
    ResearchMetrics,
    Study,
    StudyStatistics,
    Workspace,
    decode_datetime,
    encode_datetime,
    utcnow,
)
from qda_mcp.store.persistence import StateFile
from qda_mcp.store.study import THEME_COLORS, StudyController, new_id

logger = logging.getLogger(__name__)

JOIN_CODE_LENGTH = 6
JOIN_CODE_ALPHABET = string.ascii_uppercase + string.digits

# Study fields callers may change through update_study
UPDATABLE_STUDY_FIELDS = {
    "title",
    "description",
    "research_question",
    "status",
    "tags",
    "color",
}


def make_initials(name: str) -> str:
    """First letters of up to two words, upper-cased."""
    return "".join(part[0] for part in name.split() if part).upper()[:2]


class QDAStore:
    """Aggregate root of everything the server keeps.

    Studies are only mutated through the ``StudyController`` returned by
    ``study()``; workspace and study-level operations live here. One
    re-entrant lock serializes all of them.
    """

    def __init__(self, state_file: StateFile | None = None, max_analytics_logs: int = 5000):
        """Initialize an empty store.

        Args:
            state_file: Where ``save``/``load`` persist the state (optional).
            max_analytics_logs: Size of the rolling analytics log.
        """
        self._state_file = state_file
        self._max_analytics_logs = max_analytics_logs
        self._lock = threading.RLock()
        self._workspaces: dict[str, Workspace] = {}
        self._studies: dict[str, Study] = {}
        self._controllers: dict[str, StudyController] = {}
        self._analytics_logs: list[AnalyticsLog] = []
        self._session_starts: dict[str, datetime] = {}
        self._dirty = False

    @classmethod
    def from_config(cls, config: Config) -> "QDAStore":
        """Create a store backed by the configured state file and load it."""
        store = cls(StateFile(config.qda_state), max_analytics_logs=config.max_analytics_logs)
        store.load()
        return store

    # Persistence

    @property
    def dirty(self) -> bool:
        return self._dirty

    def _mark_dirty(self) -> None:
        self._dirty = True

    def to_state(self) -> dict:
        """Serialize the whole store to a JSON-compatible dict."""
        with self._lock:
            return {
                "workspaces": [w.to_dict() for w in self._workspaces.values()],
                "studies": [s.to_dict() for s in self._studies.values()],
                "analyticsLogs": [log.to_dict() for log in self._analytics_logs],
                "sessionStartTimes": {
                    ws_id: encode_datetime(started)
                    for ws_id, started in self._session_starts.items()
                },
            }

    def load_state(self, state: dict) -> None:
        """Replace the store's contents with a serialized state.

        Raises:
            PersistenceError: If the state is malformed; nothing changes then.
        """
        try:
            workspaces = [Workspace.from_dict(w) for w in state.get("workspaces", [])]
            studies = [Study.from_dict(s) for s in state.get("studies", [])]
            logs = [AnalyticsLog.from_dict(log) for log in state.get("analyticsLogs", [])]
            session_starts = {
                ws_id: decode_datetime(value)
                for ws_id, value in (state.get("sessionStartTimes") or {}).items()
                if value
            }
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise PersistenceError(f"Malformed state: {e}") from e

        with self._lock:
            self._workspaces = {w.id: w for w in workspaces}
            self._studies = {s.id: s for s in studies}
            self._controllers = {}
            self._analytics_logs = logs
            self._session_starts = session_starts
            self._dirty = False
        logger.info(
            "Loaded %d workspaces, %d studies, %d analytics entries",
            len(workspaces),
            len(studies),
            len(logs),
        )

    def load(self) -> bool:
        """Load from the state file. Returns False if there is none yet."""
        if self._state_file is None:
            return False
        state = self._state_file.load()
        if state is None:
            logger.info("No state file at %s, starting empty", self._state_file.path)
            return False
        self.load_state(state)
        return True

    def save(self) -> None:
        """Write the current state to the state file."""
        if self._state_file is None:
            return
        with self._lock:
            state = self.to_state()
            self._dirty = False
        try:
            self._state_file.save(state)
        except PersistenceError:
            self._dirty = True
            raise

    def flush(self) -> bool:
        """Save only if something changed. Returns True if a save happened."""
        if not self._dirty:
            return False
        self.save()
        return True

    # Workspaces

    def _require_workspace(self, workspace_id: str) -> Workspace:
        try:
            return self._workspaces[workspace_id]
        except KeyError:
            raise NotFoundError("Workspace", workspace_id) from None

    def _new_join_code(self) -> str:
        existing = {w.code for w in self._workspaces.values()}
        while True:
            code = "".join(secrets.choice(JOIN_CODE_ALPHABET) for _ in range(JOIN_CODE_LENGTH))
            if code not in existing:
                return code

    def _new_collaborator(self, name: str) -> Collaborator:
        name = name.strip()
        if not name:
            raise ValidationError("Collaborator name cannot be empty")
        return Collaborator(
            id=new_id(),
            name=name,
            initials=make_initials(name),
            color=random.choice(THEME_COLORS),
        )

    def create_workspace(self, name: str, collaborator_name: str) -> tuple[Workspace, Collaborator]:
        """Create a workspace owned by a first collaborator.

        Returns:
            Tuple of (workspace, creating collaborator).
        """
        if not name.strip():
            raise ValidationError("Workspace name cannot be empty")
        with self._lock:
            collaborator = self._new_collaborator(collaborator_name)
            workspace = Workspace(
                id=new_id(),
                name=name.strip(),
                code=self._new_join_code(),
                created_by=collaborator.id,
                collaborators=[collaborator],
            )
            self._workspaces[workspace.id] = workspace
            self._mark_dirty()
            logger.info("Created workspace '%s' (code %s)", workspace.name, workspace.code)
            return copy.deepcopy(workspace), copy.deepcopy(collaborator)

    def join_workspace(
        self, code: str, collaborator_name: str
    ) -> tuple[Workspace, Collaborator] | None:
        """Join a workspace by its share code (case-insensitive).

        Returns:
            Tuple of (workspace, new collaborator), or None for an unknown code.
        """
        wanted = code.strip().upper()
        with self._lock:
            workspace = next((w for w in self._workspaces.values() if w.code == wanted), None)
            if workspace is None:
                logger.warning("Join attempt with unknown workspace code")
                return None
            collaborator = self._new_collaborator(collaborator_name)
            workspace.collaborators.append(collaborator)
            self._mark_dirty()
            logger.info("%s joined workspace '%s'", collaborator.name, workspace.name)
            return copy.deepcopy(workspace), copy.deepcopy(collaborator)

    def get_workspace(self, workspace_id: str) -> Workspace:
        with self._lock:
            return copy.deepcopy(self._require_workspace(workspace_id))

    def list_workspaces(self) -> list[Workspace]:
        with self._lock:
            return copy.deepcopy(list(self._workspaces.values()))

    def workspace_studies(self, workspace_id: str) -> list[Study]:
        """Studies listed by a workspace, without their collections."""
        with self._lock:
            workspace = self._require_workspace(workspace_id)
            return [
                self._study_header(self._studies[sid])
                for sid in workspace.study_ids
                if sid in self._studies
            ]

    def update_research_settings(
        self,
        workspace_id: str,
        research_mode: bool | None = None,
        ai_enabled: bool | None = None,
        participant_id: str | None = None,
    ) -> Workspace:
        with self._lock:
            workspace = self._require_workspace(workspace_id)
            if research_mode is not None:
                workspace.research_mode = research_mode
            if ai_enabled is not None:
                workspace.ai_enabled = ai_enabled
            if participant_id is not None:
                workspace.participant_id = participant_id or None
            self._mark_dirty()
            return copy.deepcopy(workspace)

    # Studies

    def _require_study(self, study_id: str) -> Study:
        try:
            return self._studies[study_id]
        except KeyError:
            raise NotFoundError("Study", study_id) from None

    @staticmethod
    def _study_header(study: Study) -> Study:
        header = copy.copy(study)
        header.documents = {}
        header.codes = {}
        header.themes = {}
        header.excerpts = {}
        header.memos = {}
        header.tags = list(study.tags)
        return header

    def create_study(
        self,
        title: str,
        workspace_id: str | None = None,
        description: str | None = None,
        research_question: str | None = None,
        status: str = "planning",
        tags: list[str] | None = None,
        color: str = "#3b82f6",
    ) -> Study:
        """Create an empty study, listed by ``workspace_id`` when given."""
        if not title.strip():
            raise ValidationError("Study title cannot be empty")
        if status not in STUDY_STATUSES:
            raise ValidationError(f"Invalid study status '{status}'")
        with self._lock:
            workspace = self._require_workspace(workspace_id) if workspace_id else None
            study = Study(
                id=new_id(),
                title=title.strip(),
                description=description,
                research_question=research_question,
                status=status,
                tags=list(tags or []),
                color=color,
            )
            self._studies[study.id] = study
            if workspace is not None:
                workspace.study_ids.append(study.id)
            self._mark_dirty()
            logger.info("Created study '%s'", study.title)
            return self._study_header(study)

    def update_study(self, study_id: str, **updates) -> Study:
        """Update descriptive study fields (title, status, tags, ...)."""
        unknown = set(updates) - UPDATABLE_STUDY_FIELDS
        if unknown:
            raise ValidationError(f"Cannot update study fields: {', '.join(sorted(unknown))}")
        if "status" in updates and updates["status"] not in STUDY_STATUSES:
            raise ValidationError(f"Invalid study status '{updates['status']}'")
        with self._lock:
            study = self._require_study(study_id)
            for name, value in updates.items():
                if value is None:
                    continue
                setattr(study, name, list(value) if name == "tags" else value)
            study.updated_at = study.last_accessed_at = utcnow()
            self._mark_dirty()
            return self._study_header(study)

    def delete_study(self, study_id: str) -> None:
        """Delete a study and detach it from every workspace."""
        with self._lock:
            study = self._require_study(study_id)
            del self._studies[study_id]
            self._controllers.pop(study_id, None)
            for workspace in self._workspaces.values():
                if study_id in workspace.study_ids:
                    workspace.study_ids.remove(study_id)
            self._mark_dirty()
            logger.info("Deleted study '%s'", study.title)

    def duplicate_study(self, study_id: str) -> Study:
        """Deep-copy a study under fresh ids, remapping every reference.

        The copy is listed by the same workspaces as the original.
        """
        with self._lock:
            original = self._require_study(study_id)
            clone = copy.deepcopy(original)
            now = utcnow()

            id_map: dict[str, str] = {}
            for collection in (
                clone.documents,
                clone.codes,
                clone.themes,
                clone.excerpts,
                clone.memos,
            ):
                for old_id in collection:
                    id_map[old_id] = new_id()

            def remap(ids: list[str]) -> list[str]:
                return [id_map.get(i, i) for i in ids]

            for document in clone.documents.values():
                document.id = id_map[document.id]
                document.excerpt_ids = remap(document.excerpt_ids)
            for code in clone.codes.values():
                code.id = id_map[code.id]
                code.parent_id = id_map.get(code.parent_id, code.parent_id)
                code.excerpt_ids = remap(code.excerpt_ids)
            for theme in clone.themes.values():
                theme.id = id_map[theme.id]
                theme.parent_id = id_map.get(theme.parent_id, theme.parent_id)
                theme.code_ids = remap(theme.code_ids)
            for excerpt in clone.excerpts.values():
                excerpt.id = id_map[excerpt.id]
                excerpt.document_id = id_map.get(excerpt.document_id, excerpt.document_id)
                excerpt.code_ids = remap(excerpt.code_ids)
            for memo in clone.memos.values():
                memo.id = id_map[memo.id]
                memo.target_id = id_map.get(memo.target_id, memo.target_id)

            clone.id = new_id()
            clone.title = f"{original.title} (Copy)"
            clone.created_at = clone.updated_at = clone.last_accessed_at = now
            clone.documents = {d.id: d for d in clone.documents.values()}
            clone.codes = {c.id: c for c in clone.codes.values()}
            clone.themes = {t.id: t for t in clone.themes.values()}
            clone.excerpts = {e.id: e for e in clone.excerpts.values()}
            clone.memos = {m.id: m for m in clone.memos.values()}

            self._studies[clone.id] = clone
            for workspace in self._workspaces.values():
                if study_id in workspace.study_ids:
                    workspace.study_ids.append(clone.id)
            self._mark_dirty()
            logger.info("Duplicated study '%s'", original.title)
            return self._study_header(clone)

    def get_study(self, study_id: str) -> Study:
        """Study metadata without its collections."""
        with self._lock:
            return self._study_header(self._require_study(study_id))

    def list_studies(self) -> list[Study]:
        with self._lock:
            return [self._study_header(s) for s in self._studies.values()]

    def study(self, study_id: str) -> StudyController:
        """Controller for one study, created once and cached."""
        with self._lock:
            study = self._require_study(study_id)
            controller = self._controllers.get(study_id)
            if controller is None:
                controller = StudyController(
                    study,
                    lock=self._lock,
                    on_change=self._mark_dirty,
                    log_action=lambda action, details, sid=study_id: self.log_for_study(
                        sid, action, details
                    ),
                )
                self._controllers[study_id] = controller
            study.last_accessed_at = utcnow()
            return controller

    def clear_orphan_studies(self) -> int:
        """Delete studies that no workspace lists. Returns how many."""
        with self._lock:
            listed = {sid for w in self._workspaces.values() for sid in w.study_ids}
            orphans = [sid for sid in self._studies if sid not in listed]
            for sid in orphans:
                del self._studies[sid]
                self._controllers.pop(sid, None)
            if orphans:
                self._mark_dirty()
            return len(orphans)

    def get_study_statistics(self, study_id: str) -> StudyStatistics:
        """Counts and headline figures for one study.

        ``most_used_code`` is the code referenced by the most excerpts; ties go
        to the code created first. Unknown studies yield zeroed statistics.
        """
        with self._lock:
            study = self._studies.get(study_id)
            if study is None:
                return StudyStatistics(study_id=study_id, recent_activity=utcnow())

            usage: dict[str, int] = {}
            for excerpt in study.excerpts.values():
                for code_id in excerpt.code_ids:
                    usage[code_id] = usage.get(code_id, 0) + 1

            most_used = None
            # Insertion order breaks ties between equal createdAt values
            position = {cid: i for i, cid in enumerate(study.codes)}
            candidates = [study.codes[cid] for cid in usage if cid in study.codes]
            if candidates:
                best = min(
                    candidates, key=lambda c: (-usage[c.id], c.created_at, position[c.id])
                )
                most_used = best.name

            excerpt_count = len(study.excerpts)
            document_count = len(study.documents)
            return StudyStatistics(
                study_id=study_id,
                document_count=document_count,
                code_count=len(study.codes),
                theme_count=len(study.themes),
                excerpt_count=excerpt_count,
                memo_count=len(study.memos),
                coded_segments=excerpt_count,
                average_codes_per_document=(
                    excerpt_count / document_count if document_count else 0
                ),
                most_used_code=most_used,
                recent_activity=study.updated_at,
            )

    # Analytics

    def log_for_study(self, study_id: str, action: str, details: dict) -> None:
        """Log an action to every workspace that lists the study."""
        with self._lock:
            for workspace in list(self._workspaces.values()):
                if study_id in workspace.study_ids:
                    self.log_action(workspace.id, action, details)

    def log_action(self, workspace_id: str, action: str, details: dict | None = None) -> AnalyticsLog | None:
        """Record an analytics event when the workspace is in research mode.

        Returns:
            The stored entry, or None if the workspace does not record.
        """
        if action not in ANALYTICS_ACTIONS:
            raise ValidationError(f"Unknown analytics action '{action}'")
        with self._lock:
            workspace = self._workspaces.get(workspace_id)
            if workspace is None or not workspace.research_mode:
                return None
            entry = AnalyticsLog(
                id=new_id(),
                workspace_id=workspace_id,
                action=action,
                participant_id=workspace.participant_id,
                details=dict(details or {}),
            )
            self._analytics_logs.append(entry)
            overflow = len(self._analytics_logs) - self._max_analytics_logs
            if overflow > 0:
                del self._analytics_logs[:overflow]
            self._mark_dirty()
            return copy.deepcopy(entry)

    def analytics_logs(self, workspace_id: str | None = None) -> list[AnalyticsLog]:
        with self._lock:
            return copy.deepcopy([
                log
                for log in self._analytics_logs
                if workspace_id is None or log.workspace_id == workspace_id
            ])

    def clear_analytics_logs(self, workspace_id: str | None = None) -> int:
        """Drop analytics entries (all, or one workspace's). Returns how many."""
        with self._lock:
            before = len(self._analytics_logs)
            if workspace_id is None:
                self._analytics_logs = []
                self._session_starts = {}
            else:
                self._analytics_logs = [
                    log for log in self._analytics_logs if log.workspace_id != workspace_id
                ]
                self._session_starts.pop(workspace_id, None)
            self._mark_dirty()
            return before - len(self._analytics_logs)

    def start_session(self, workspace_id: str) -> bool:
        """Start a coding session. Returns False outside research mode."""
        with self._lock:
            workspace = self._require_workspace(workspace_id)
            if not workspace.research_mode:
                return False
            self._session_starts[workspace_id] = utcnow()
            self.log_action(workspace_id, "session_started")
            return True

    def end_session(self, workspace_id: str) -> bool:
        with self._lock:
            self._require_workspace(workspace_id)
            return self.log_action(workspace_id, "session_ended") is not None

    def get_research_metrics(self, workspace_id: str) -> ResearchMetrics | None:
        """Coding metrics of a research-mode workspace with a participant id.

        Returns:
            The metrics, or None when research mode or participant id is missing.
        """
        with self._lock:
            workspace = self._require_workspace(workspace_id)
            if not workspace.research_mode or not workspace.participant_id:
                return None

            logs = [log for log in self._analytics_logs if log.workspace_id == workspace_id]
            requested = sum(1 for log in logs if log.action == "ai_suggestion_requested")
            accepted = sum(1 for log in logs if log.action == "ai_suggestion_accepted")
            rejected = sum(1 for log in logs if log.action == "ai_suggestion_rejected")

            starts = [log.timestamp for log in logs if log.action == "session_started"]
            start_time = (
                starts[0] if starts else self._session_starts.get(workspace_id, utcnow())
            )
            ends = [
                log.timestamp
                for log in logs
                if log.action == "session_ended" and log.timestamp >= start_time
            ]
            end_time = ends[-1] if ends else None
            total_ms = ((end_time or utcnow()) - start_time).total_seconds() * 1000

            studies = [self._studies[sid] for sid in workspace.study_ids if sid in self._studies]
            excerpts = [e for s in studies for e in s.excerpts.values()]
            total_codes = sum(len(s.codes) for s in studies)
            applied = {cid for e in excerpts for cid in e.code_ids}
            total_excerpts = len(excerpts)

            return ResearchMetrics(
                participant_id=workspace.participant_id,
                workspace_id=workspace_id,
                start_time=start_time,
                end_time=end_time,
                total_excerpts=total_excerpts,
                total_codes=total_codes,
                unique_codes=len(applied),
                average_codes_per_excerpt=(
                    sum(len(e.code_ids) for e in excerpts) / total_excerpts
                    if total_excerpts
                    else 0
                ),
                coding_speed=total_excerpts / (total_ms / 3_600_000) if total_ms > 0 else 0,
                ai_suggestions_requested=requested,
                ai_suggestions_accepted=accepted,
                ai_suggestions_rejected=rejected,
                ai_acceptance_rate=accepted / requested if requested else 0,
                total_active_time=total_ms,
                average_time_per_excerpt=total_ms / total_excerpts if total_excerpts else 0,
                documents_processed=len({e.document_id for e in excerpts}),
                total_text_coded=sum(len(e.text) for e in excerpts),
            )
