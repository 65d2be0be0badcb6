"""Study controller: the only mutation entry point for a study's collections.

Every operation that changes which excerpts carry which codes ends in
``_refresh_codes``, which rewrites ``excerpt_ids``, ``frequency`` and
``document_count`` from the excerpts themselves. Public methods return copies
so callers cannot bypass the controller.
"""

from __future__ import annotations

import copy
import logging
import threading
import uuid
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

from qda_mcp.store.analysis import derive_code_stats
from qda_mcp.store.errors import DuplicateCodeNameError, NotFoundError, ValidationError
from qda_mcp.store.models import (
    CODE_LEVELS,
    DOCUMENT_TYPES,
    MEMO_TARGET_TYPES,
    PARENT_LEVEL,
    Code,
    Document,
    Excerpt,
    Memo,
    Study,
    TextSelection,
    Theme,
    utcnow,
)

logger = logging.getLogger(__name__)

CODE_COLORS = {
    "main": "#3b82f6",
    "child": "#22c55e",
    "subchild": "#eab308",
}

THEME_COLORS = [
    "#ec4899",
    "#8b5cf6",
    "#0ea5e9",
    "#22c55e",
    "#f97316",
    "#ef4444",
    "#06b6d4",
    "#84cc16",
    "#f59e0b",
    "#6366f1",
]

LogCallback = Callable[[str, dict], None]


def new_id() -> str:
    return str(uuid.uuid4())


@dataclass
class DeletedCode:
    """Undo record for one ``delete_code`` call.

    Only ``code`` is restored on undo; ``cascaded`` lists the descendants
    removed alongside it so the loss can be reported.
    """

    code: Code
    excerpt_ids: list[str] = field(default_factory=list)
    theme_ids: list[str] = field(default_factory=list)
    memos: list[Memo] = field(default_factory=list)
    cascaded: list[Code] = field(default_factory=list)


class StudyController:
    """Owns one study and exposes its coding operations.

    Thread Safety:
        All operations take the lock handed in by the owning store, so a
        composite operation (merge, move, excerpt creation with stat update)
        is never observed half-done.
    """

    def __init__(
        self,
        study: Study,
        lock: threading.RLock | None = None,
        on_change: Callable[[], None] | None = None,
        log_action: LogCallback | None = None,
    ):
        self._study = study
        self._lock = lock or threading.RLock()
        self._on_change = on_change
        self._log_action = log_action
        self._undo_stack: list[DeletedCode] = []

    @property
    def study_id(self) -> str:
        return self._study.id

    # Internal helpers

    def _touch(self) -> None:
        now = utcnow()
        self._study.updated_at = now
        self._study.last_accessed_at = now
        if self._on_change is not None:
            self._on_change()

    def _log(self, action: str, **details) -> None:
        if self._log_action is None:
            return
        details = {k: v for k, v in details.items() if v is not None}
        details["studyId"] = self._study.id
        self._log_action(action, details)

    def _require(self, collection: dict, kind: str, entity_id: str):
        try:
            return collection[entity_id]
        except KeyError:
            raise NotFoundError(kind, entity_id) from None

    def _refresh_codes(self, code_ids: Iterable[str]) -> None:
        """Recompute derived statistics for the given codes."""
        excerpts = list(self._study.excerpts.values())
        for code_id in dict.fromkeys(code_ids):
            code = self._study.codes.get(code_id)
            if code is None:
                continue
            code.excerpt_ids, code.frequency, code.document_count = derive_code_stats(
                code_id, excerpts
            )

    def _find_code_by_name(self, name: str, exclude_id: str | None = None) -> Code | None:
        lowered = name.strip().lower()
        for code in self._study.codes.values():
            if code.id != exclude_id and code.name.lower() == lowered:
                return code
        return None

    def _validate_parent(
        self, level: str, parent_id: str | None, codes: dict[str, Code] | None = None
    ) -> None:
        if level not in CODE_LEVELS:
            raise ValidationError(f"Invalid code level '{level}'")
        expected = PARENT_LEVEL[level]
        if expected is None:
            if parent_id:
                raise ValidationError("A main code cannot have a parent")
            return
        if not parent_id:
            raise ValidationError(f"A {level} code requires a {expected} parent")
        parent = self._require(self._study.codes if codes is None else codes, "Code", parent_id)
        if parent.level != expected:
            raise ValidationError(
                f"A {level} code must have a {expected} parent, got {parent.level}"
            )

    def _create_code(
        self,
        name: str,
        parent_id: str | None,
        level: str,
        description: str | None,
    ) -> Code:
        name = name.strip()
        if not name:
            raise ValidationError("Code name cannot be empty")
        if self._find_code_by_name(name) is not None:
            raise DuplicateCodeNameError(name)
        self._validate_parent(level, parent_id)

        code = Code(
            id=new_id(),
            name=name,
            color=CODE_COLORS[level],
            level=level,
            parent_id=parent_id or None,
            description=description,
        )
        self._study.codes[code.id] = code
        self._log("code_created", codeId=code.id, codeName=code.name)
        return code

    def _descendants(self, collection: dict, root_id: str) -> list:
        """Entities whose parent chain leads to ``root_id`` (breadth first)."""
        found = []
        frontier = [root_id]
        while frontier:
            parent_id = frontier.pop(0)
            for entity in collection.values():
                if entity.parent_id == parent_id:
                    found.append(entity)
                    frontier.append(entity.id)
        return found

    def _drop_memos(self, target_type: str, target_ids: set[str]) -> list[Memo]:
        dropped = [
            memo
            for memo in self._study.memos.values()
            if memo.target_type == target_type and memo.target_id in target_ids
        ]
        for memo in dropped:
            del self._study.memos[memo.id]
        return dropped

    def _delete_excerpts(self, excerpt_ids: set[str]) -> set[str]:
        """Remove excerpts; returns the code ids they carried."""
        affected: set[str] = set()
        for excerpt_id in excerpt_ids:
            excerpt = self._study.excerpts.pop(excerpt_id)
            affected.update(excerpt.code_ids)
            document = self._study.documents.get(excerpt.document_id)
            if document is not None and excerpt_id in document.excerpt_ids:
                document.excerpt_ids.remove(excerpt_id)
        self._drop_memos("excerpt", excerpt_ids)
        return affected

    # Reads

    def snapshot(self) -> Study:
        """Deep copy of the whole study."""
        with self._lock:
            return copy.deepcopy(self._study)

    def get_document(self, document_id: str) -> Document:
        with self._lock:
            return copy.deepcopy(self._require(self._study.documents, "Document", document_id))

    def get_code(self, code_id: str) -> Code:
        with self._lock:
            return copy.deepcopy(self._require(self._study.codes, "Code", code_id))

    def get_excerpt(self, excerpt_id: str) -> Excerpt:
        with self._lock:
            return copy.deepcopy(self._require(self._study.excerpts, "Excerpt", excerpt_id))

    def get_theme(self, theme_id: str) -> Theme:
        with self._lock:
            return copy.deepcopy(self._require(self._study.themes, "Theme", theme_id))

    def list_documents(self) -> list[Document]:
        with self._lock:
            return copy.deepcopy(list(self._study.documents.values()))

    def list_codes(self) -> list[Code]:
        with self._lock:
            return copy.deepcopy(list(self._study.codes.values()))

    def list_themes(self) -> list[Theme]:
        with self._lock:
            return copy.deepcopy(list(self._study.themes.values()))

    def list_excerpts(self) -> list[Excerpt]:
        with self._lock:
            return copy.deepcopy(list(self._study.excerpts.values()))

    def list_memos(self) -> list[Memo]:
        with self._lock:
            return copy.deepcopy(list(self._study.memos.values()))

    def find_code_by_name(self, name: str) -> Code | None:
        with self._lock:
            return copy.deepcopy(self._find_code_by_name(name))

    def is_duplicate_code_name(self, name: str, exclude_id: str | None = None) -> bool:
        with self._lock:
            return self._find_code_by_name(name, exclude_id) is not None

    def codes_for_document(self, document_id: str) -> list[Code]:
        with self._lock:
            code_ids: set[str] = set()
            for excerpt in self._study.excerpts.values():
                if excerpt.document_id == document_id:
                    code_ids.update(excerpt.code_ids)
            return copy.deepcopy(
                [c for c in self._study.codes.values() if c.id in code_ids]
            )

    def excerpts_for_document(self, document_id: str) -> list[Excerpt]:
        """Excerpts of a document in offset order."""
        with self._lock:
            excerpts = [e for e in self._study.excerpts.values() if e.document_id == document_id]
            excerpts.sort(key=lambda e: (e.start_offset, e.end_offset))
            return copy.deepcopy(excerpts)

    def excerpts_for_code(self, code_id: str) -> list[Excerpt]:
        with self._lock:
            return copy.deepcopy(
                [e for e in self._study.excerpts.values() if code_id in e.code_ids]
            )

    def child_codes(self, parent_id: str) -> list[Code]:
        with self._lock:
            return copy.deepcopy(
                [c for c in self._study.codes.values() if c.parent_id == parent_id]
            )

    def code_frequency(self, code_id: str) -> dict:
        with self._lock:
            code = self._study.codes.get(code_id)
            return {
                "excerptCount": code.frequency if code else 0,
                "documentCount": code.document_count if code else 0,
            }

    def memo_for(self, target_type: str, target_id: str) -> Memo | None:
        with self._lock:
            for memo in self._study.memos.values():
                if memo.target_type == target_type and memo.target_id == target_id:
                    return copy.deepcopy(memo)
            return None

    @property
    def undo_depth(self) -> int:
        return len(self._undo_stack)

    # Documents

    def add_document(
        self,
        title: str,
        content: str,
        type: str = "txt",
        size: int | None = None,
    ) -> Document:
        """Add a document; its content is immutable afterwards."""
        if type not in DOCUMENT_TYPES:
            raise ValidationError(f"Invalid document type '{type}'")
        with self._lock:
            document = Document(
                id=new_id(),
                title=title,
                content=content,
                type=type,
                size=size if size is not None else len(content.encode("utf-8")),
            )
            self._study.documents[document.id] = document
            self._touch()
            logger.info("Added document '%s' to study %s", title, self._study.id)
            return copy.deepcopy(document)

    def remove_document(self, document_id: str) -> None:
        """Remove a document together with its excerpts and their memos."""
        with self._lock:
            self._require(self._study.documents, "Document", document_id)
            excerpt_ids = {
                e.id for e in self._study.excerpts.values() if e.document_id == document_id
            }
            affected = self._delete_excerpts(excerpt_ids)
            del self._study.documents[document_id]
            self._drop_memos("document", {document_id})
            self._refresh_codes(affected)
            self._touch()
            logger.info(
                "Removed document %s (%d excerpts)", document_id, len(excerpt_ids)
            )

    # Codes

    def add_code(
        self,
        name: str,
        parent_id: str | None = None,
        level: str = "main",
        description: str | None = None,
    ) -> Code:
        """Create a code.

        Raises:
            DuplicateCodeNameError: If the name is already used in this study.
            ValidationError: If the level/parent combination is invalid.
        """
        with self._lock:
            code = self._create_code(name, parent_id, level, description)
            self._touch()
            return copy.deepcopy(code)

    def rename_code(self, code_id: str, new_name: str) -> bool:
        """Rename a code. Returns False, changing nothing, on a name collision."""
        with self._lock:
            code = self._require(self._study.codes, "Code", code_id)
            new_name = new_name.strip()
            if not new_name:
                raise ValidationError("Code name cannot be empty")
            if self._find_code_by_name(new_name, exclude_id=code_id) is not None:
                return False
            code.name = new_name
            self._touch()
            return True

    def update_code(
        self,
        code_id: str,
        color: str | None = None,
        description: str | None = None,
    ) -> Code:
        """Update presentation fields of a code."""
        with self._lock:
            code = self._require(self._study.codes, "Code", code_id)
            if color is not None:
                code.color = color
            if description is not None:
                code.description = description
            self._touch()
            return copy.deepcopy(code)

    def delete_code(self, code_id: str) -> list[str]:
        """Delete a code and every code below it in the hierarchy.

        The removed ids are stripped from all excerpts and themes. An undo
        record for the root code is pushed on this study's undo stack.

        Returns:
            Ids of all removed codes, root first.
        """
        with self._lock:
            root = self._require(self._study.codes, "Code", code_id)
            cascaded = self._descendants(self._study.codes, code_id)
            removed_ids = {code_id} | {c.id for c in cascaded}

            record = DeletedCode(
                code=copy.deepcopy(root),
                excerpt_ids=[e.id for e in self._study.excerpts.values() if code_id in e.code_ids],
                theme_ids=[t.id for t in self._study.themes.values() if code_id in t.code_ids],
                cascaded=copy.deepcopy(cascaded),
            )

            for excerpt in self._study.excerpts.values():
                excerpt.code_ids = [cid for cid in excerpt.code_ids if cid not in removed_ids]
            for theme in self._study.themes.values():
                theme.code_ids = [cid for cid in theme.code_ids if cid not in removed_ids]
            for removed_id in removed_ids:
                del self._study.codes[removed_id]

            memos = self._drop_memos("code", removed_ids)
            record.memos = [m for m in memos if m.target_id == code_id]

            self._undo_stack.append(record)
            self._touch()
            logger.info(
                "Deleted code '%s' (%d descendants)", root.name, len(cascaded)
            )
            return [code_id] + [c.id for c in cascaded]

    def undo_delete_code(self) -> Code | None:
        """Restore the most recently deleted root code.

        Codes removed by the cascade are not restored. The code is
        re-attached to the excerpts, themes and memos that still exist.

        Returns:
            The restored code, or None if nothing is left to undo.
        """
        with self._lock:
            if not self._undo_stack:
                return None
            record = self._undo_stack.pop()
            code = copy.deepcopy(record.code)
            try:
                if self._find_code_by_name(code.name) is not None:
                    raise DuplicateCodeNameError(code.name)
                if code.parent_id and code.parent_id not in self._study.codes:
                    raise ValidationError(
                        f"Cannot restore '{code.name}': its parent no longer exists"
                    )
            except ValidationError:
                self._undo_stack.append(record)
                raise

            self._study.codes[code.id] = code
            for excerpt_id in record.excerpt_ids:
                excerpt = self._study.excerpts.get(excerpt_id)
                if excerpt is not None and code.id not in excerpt.code_ids:
                    excerpt.code_ids.append(code.id)
            for theme_id in record.theme_ids:
                theme = self._study.themes.get(theme_id)
                if theme is not None and code.id not in theme.code_ids:
                    theme.code_ids.append(code.id)
            for memo in record.memos:
                self._study.memos[memo.id] = copy.deepcopy(memo)

            self._refresh_codes([code.id])
            self._touch()
            logger.info("Restored code '%s'", code.name)
            return copy.deepcopy(code)

    def merge_codes(self, source_id: str, target_id: str) -> Code:
        """Fold ``source`` into ``target`` and remove ``source``.

        Every excerpt carrying source ends up carrying target exactly once.
        Theme memberships and memos of source move to target; children of
        source are re-parented to target. Merges are not undoable.

        Returns:
            The updated target code.
        """
        with self._lock:
            if source_id == target_id:
                raise ValidationError("Cannot merge a code into itself")
            source = self._require(self._study.codes, "Code", source_id)
            target = self._require(self._study.codes, "Code", target_id)
            children = [c for c in self._study.codes.values() if c.parent_id == source_id]
            if children and source.level != target.level:
                raise ValidationError(
                    f"Cannot merge '{source.name}' ({source.level}) with children "
                    f"into '{target.name}' ({target.level})"
                )

            for excerpt in self._study.excerpts.values():
                if source_id in excerpt.code_ids:
                    merged = [cid for cid in excerpt.code_ids if cid != source_id]
                    if target_id not in merged:
                        merged.append(target_id)
                    excerpt.code_ids = merged
            for theme in self._study.themes.values():
                if source_id in theme.code_ids:
                    members = [cid for cid in theme.code_ids if cid != source_id]
                    if target_id not in members:
                        members.append(target_id)
                    theme.code_ids = members
            for child in children:
                child.parent_id = target_id
            for memo in self._study.memos.values():
                if memo.target_type == "code" and memo.target_id == source_id:
                    memo.target_id = target_id

            del self._study.codes[source_id]
            self._refresh_codes([target_id])
            self._touch()
            logger.info("Merged code '%s' into '%s'", source.name, target.name)
            return copy.deepcopy(target)

    # Excerpts

    def add_excerpt(
        self,
        selection: TextSelection,
        code_ids: Iterable[str],
        memo: str | None = None,
        new_code_name: str | None = None,
    ) -> Excerpt:
        """Code a text selection.

        Args:
            selection: The selected span and its document.
            code_ids: Existing codes to apply.
            memo: Optional memo stored on the excerpt.
            new_code_name: Optional name of a main code to create and apply.

        Raises:
            ValidationError: On an empty selection, bad offsets, or no codes.
            NotFoundError: If the document or a code does not exist.
        """
        code_ids = list(dict.fromkeys(code_ids))
        with self._lock:
            document = self._require(self._study.documents, "Document", selection.document_id)
            if not selection.text:
                raise ValidationError("Selection is empty")
            if not 0 <= selection.start_offset < selection.end_offset <= len(document.content):
                raise ValidationError(
                    f"Invalid offsets {selection.start_offset}-{selection.end_offset} "
                    f"for a document of {len(document.content)} characters"
                )
            for code_id in code_ids:
                self._require(self._study.codes, "Code", code_id)
            if not code_ids and not new_code_name:
                raise ValidationError("An excerpt needs at least one code")

            if new_code_name:
                code = self._create_code(new_code_name, None, "main", None)
                code_ids.append(code.id)

            excerpt = Excerpt(
                id=new_id(),
                text=selection.text,
                document_id=document.id,
                start_offset=selection.start_offset,
                end_offset=selection.end_offset,
                code_ids=code_ids,
                memo=memo,
            )
            self._study.excerpts[excerpt.id] = excerpt
            document.excerpt_ids.append(excerpt.id)
            self._refresh_codes(code_ids)
            self._touch()

            self._log(
                "excerpt_created",
                documentId=document.id,
                excerptId=excerpt.id,
                excerptText=excerpt.text[:100],
                excerptLength=len(excerpt.text),
            )
            for code_id in code_ids:
                self._log(
                    "code_applied",
                    excerptId=excerpt.id,
                    codeId=code_id,
                    codeName=self._study.codes[code_id].name,
                )
            return copy.deepcopy(excerpt)

    def update_excerpt_memo(self, excerpt_id: str, memo: str | None) -> Excerpt:
        with self._lock:
            excerpt = self._require(self._study.excerpts, "Excerpt", excerpt_id)
            excerpt.memo = memo or None
            self._touch()
            self._log("excerpt_updated", excerptId=excerpt_id, documentId=excerpt.document_id)
            return copy.deepcopy(excerpt)

    def remove_excerpt(self, excerpt_id: str) -> None:
        """Delete an excerpt and refresh every code that referenced it."""
        with self._lock:
            excerpt = self._require(self._study.excerpts, "Excerpt", excerpt_id)
            affected = self._delete_excerpts({excerpt_id})
            self._refresh_codes(affected)
            self._touch()
            self._log("excerpt_deleted", excerptId=excerpt_id, documentId=excerpt.document_id)

    def assign_code_to_excerpt(self, excerpt_id: str, code_id: str) -> bool:
        """Apply a code to an excerpt. Returns False if it was already applied."""
        with self._lock:
            excerpt = self._require(self._study.excerpts, "Excerpt", excerpt_id)
            code = self._require(self._study.codes, "Code", code_id)
            if code_id in excerpt.code_ids:
                return False
            excerpt.code_ids.append(code_id)
            self._refresh_codes([code_id])
            self._touch()
            self._log("code_applied", excerptId=excerpt_id, codeId=code_id, codeName=code.name)
            return True

    def remove_code_from_excerpt(self, excerpt_id: str, code_id: str) -> bool:
        """Remove a code from an excerpt. Returns False if it was not applied.

        An excerpt may be left without codes; it stays in the study.
        """
        with self._lock:
            excerpt = self._require(self._study.excerpts, "Excerpt", excerpt_id)
            if code_id not in excerpt.code_ids:
                return False
            excerpt.code_ids.remove(code_id)
            self._refresh_codes([code_id])
            self._touch()
            code = self._study.codes.get(code_id)
            self._log(
                "code_removed",
                excerptId=excerpt_id,
                codeId=code_id,
                codeName=code.name if code else None,
            )
            return True

    # Themes

    def add_theme(
        self,
        name: str,
        color: str | None = None,
        parent_id: str | None = None,
        description: str | None = None,
    ) -> Theme:
        """Create a theme; color defaults to the palette slot of the theme count."""
        name = name.strip()
        if not name:
            raise ValidationError("Theme name cannot be empty")
        with self._lock:
            if parent_id:
                self._require(self._study.themes, "Theme", parent_id)
            theme = Theme(
                id=new_id(),
                name=name,
                color=color or THEME_COLORS[len(self._study.themes) % len(THEME_COLORS)],
                description=description,
                parent_id=parent_id or None,
            )
            self._study.themes[theme.id] = theme
            self._touch()
            self._log("theme_created", themeId=theme.id, themeName=name)
            return copy.deepcopy(theme)

    def update_theme(
        self,
        theme_id: str,
        name: str | None = None,
        description: str | None = None,
        color: str | None = None,
        memo: str | None = None,
    ) -> Theme:
        with self._lock:
            theme = self._require(self._study.themes, "Theme", theme_id)
            if name is not None:
                if not name.strip():
                    raise ValidationError("Theme name cannot be empty")
                theme.name = name.strip()
            if description is not None:
                theme.description = description
            if color is not None:
                theme.color = color
            if memo is not None:
                theme.memo = memo
            self._touch()
            return copy.deepcopy(theme)

    def delete_theme(self, theme_id: str) -> list[str]:
        """Delete a theme and all themes nested below it.

        Returns:
            Ids of all removed themes, root first.
        """
        with self._lock:
            self._require(self._study.themes, "Theme", theme_id)
            removed = [theme_id] + [t.id for t in self._descendants(self._study.themes, theme_id)]
            for removed_id in removed:
                del self._study.themes[removed_id]
            self._drop_memos("theme", set(removed))
            self._touch()
            return removed

    def add_code_to_theme(self, theme_id: str, code_id: str) -> None:
        with self._lock:
            theme = self._require(self._study.themes, "Theme", theme_id)
            self._require(self._study.codes, "Code", code_id)
            if code_id not in theme.code_ids:
                theme.code_ids.append(code_id)
                self._touch()

    def remove_code_from_theme(self, theme_id: str, code_id: str) -> None:
        with self._lock:
            theme = self._require(self._study.themes, "Theme", theme_id)
            if code_id in theme.code_ids:
                theme.code_ids.remove(code_id)
                self._touch()

    def move_code_between_themes(self, code_id: str, from_theme_id: str, to_theme_id: str) -> None:
        """Move a code from one theme to another as a single step."""
        with self._lock:
            source = self._require(self._study.themes, "Theme", from_theme_id)
            target = self._require(self._study.themes, "Theme", to_theme_id)
            self._require(self._study.codes, "Code", code_id)
            if from_theme_id == to_theme_id:
                return
            if code_id in source.code_ids:
                source.code_ids.remove(code_id)
            if code_id not in target.code_ids:
                target.code_ids.append(code_id)
            self._touch()

    # Memos

    def _memo_target_exists(self, target_type: str, target_id: str) -> bool:
        collection = {
            "document": self._study.documents,
            "excerpt": self._study.excerpts,
            "code": self._study.codes,
            "theme": self._study.themes,
        }[target_type]
        return target_id in collection

    def add_memo(self, content: str, target_type: str, target_id: str) -> Memo:
        """Attach a memo to a target, replacing the content of an existing one.

        A target carries at most one memo.
        """
        if target_type not in MEMO_TARGET_TYPES:
            raise ValidationError(f"Invalid memo target type '{target_type}'")
        with self._lock:
            if not self._memo_target_exists(target_type, target_id):
                raise NotFoundError(target_type.capitalize(), target_id)
            for memo in self._study.memos.values():
                if memo.target_type == target_type and memo.target_id == target_id:
                    memo.content = content
                    memo.updated_at = utcnow()
                    self._touch()
                    return copy.deepcopy(memo)
            memo = Memo(
                id=new_id(),
                content=content,
                target_type=target_type,
                target_id=target_id,
            )
            self._study.memos[memo.id] = memo
            self._touch()
            return copy.deepcopy(memo)

    def update_memo(self, memo_id: str, content: str) -> Memo:
        with self._lock:
            memo = self._require(self._study.memos, "Memo", memo_id)
            memo.content = content
            memo.updated_at = utcnow()
            self._touch()
            return copy.deepcopy(memo)

    def delete_memo(self, memo_id: str) -> None:
        with self._lock:
            self._require(self._study.memos, "Memo", memo_id)
            del self._study.memos[memo_id]
            self._touch()

    # Bulk replacement (project import)

    def replace_collections(
        self,
        documents: list[Document],
        codes: list[Code],
        themes: list[Theme],
        excerpts: list[Excerpt],
        memos: list[Memo],
    ) -> None:
        """Swap in a complete set of collections after checking references.

        Code statistics and document excerpt lists are rebuilt from the
        excerpts. Nothing changes if validation fails.
        """
        docs_by_id = {d.id: d for d in documents}
        codes_by_id = {c.id: c for c in codes}
        doc_ids = set(docs_by_id)
        code_ids = set(codes_by_id)
        theme_ids = {t.id for t in themes}
        excerpt_ids = {e.id for e in excerpts}

        for excerpt in excerpts:
            document = docs_by_id.get(excerpt.document_id)
            if document is None:
                raise ValidationError(
                    f"Excerpt '{excerpt.id}' references unknown document '{excerpt.document_id}'"
                )
            if not 0 <= excerpt.start_offset < excerpt.end_offset <= len(document.content):
                raise ValidationError(
                    f"Excerpt '{excerpt.id}' has invalid offsets "
                    f"{excerpt.start_offset}..{excerpt.end_offset} for a document of "
                    f"{len(document.content)} characters"
                )
            missing = [cid for cid in excerpt.code_ids if cid not in code_ids]
            if missing:
                raise ValidationError(
                    f"Excerpt '{excerpt.id}' references unknown codes: {', '.join(missing)}"
                )
        seen_names: set[str] = set()
        for code in codes:
            lowered = code.name.strip().lower()
            if lowered in seen_names:
                raise DuplicateCodeNameError(code.name)
            seen_names.add(lowered)
            if code.parent_id and code.parent_id not in code_ids:
                raise ValidationError(
                    f"Code '{code.name}' references unknown parent '{code.parent_id}'"
                )
            try:
                self._validate_parent(code.level, code.parent_id, codes_by_id)
            except ValidationError as e:
                raise ValidationError(f"Code '{code.name}': {e}") from e
        for theme in themes:
            if theme.parent_id and theme.parent_id not in theme_ids:
                raise ValidationError(
                    f"Theme '{theme.name}' references unknown parent '{theme.parent_id}'"
                )
        targets = {
            "document": doc_ids,
            "excerpt": excerpt_ids,
            "code": code_ids,
            "theme": theme_ids,
        }
        for memo in memos:
            if memo.target_id not in targets.get(memo.target_type, set()):
                raise ValidationError(
                    f"Memo '{memo.id}' targets unknown {memo.target_type} '{memo.target_id}'"
                )

        with self._lock:
            self._study.documents = {d.id: d for d in copy.deepcopy(documents)}
            self._study.codes = {c.id: c for c in copy.deepcopy(codes)}
            self._study.themes = {t.id: t for t in copy.deepcopy(themes)}
            self._study.excerpts = {e.id: e for e in copy.deepcopy(excerpts)}
            self._study.memos = {m.id: m for m in copy.deepcopy(memos)}
            for theme in self._study.themes.values():
                theme.code_ids = [cid for cid in theme.code_ids if cid in code_ids]
            for document in self._study.documents.values():
                document.excerpt_ids = [
                    e.id for e in self._study.excerpts.values() if e.document_id == document.id
                ]
            self._refresh_codes(list(self._study.codes))
            self._undo_stack.clear()
            self._touch()
