"""Write tools for qdaMCP - create and change workspaces, studies and coding data."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from qda_mcp.auth import check_write_permission
from qda_mcp.config import Config
from qda_mcp.exports import import_project
from qda_mcp.parser import parse_document
from qda_mcp.store import DuplicateCodeNameError, QDAStore, TextSelection
from qda_mcp.tools import study_info

if TYPE_CHECKING:
    from fastmcp import FastMCP

logger = logging.getLogger(__name__)


def _resolve_import_path(path: str, qda_root: Path) -> Path:
    """
    Resolve a file to import, relative to QDA_ROOT.

    Args:
        path: Absolute path or path relative to qda_root
        qda_root: QDA_ROOT path

    Returns:
        Resolved file path

    Raises:
        ValueError: If the path is outside qda_root
    """
    root = qda_root.resolve()
    candidate = Path(path)
    if not candidate.is_absolute():
        candidate = root / candidate
    resolved = candidate.resolve()

    if resolved != root and root not in resolved.parents:
        raise ValueError(f"Path outside QDA_ROOT: {path}")

    return resolved


def register_tools_write(mcp: "FastMCP", config: Config, store: QDAStore) -> None:
    """Register all write tools with the FastMCP server.

    Args:
        mcp: FastMCP server instance
        config: Config instance (read-only mode, import root, autosave)
        store: QDAStore to mutate
    """

    def _saved(result):
        # Without a background autosave every write goes to disk immediately
        if config.autosave_interval == 0:
            store.flush()
        return result

    # Workspaces

    @mcp.tool()
    def tool_create_workspace(name: str, collaborator_name: str) -> dict:
        """Create a workspace and its first collaborator.

        Args:
            name: Workspace name
            collaborator_name: Name of the person creating it

        Returns:
            Dict with the workspace (including its 6-character join code)
            and the collaborator
        """
        check_write_permission(config, "tool_create_workspace")
        workspace, collaborator = store.create_workspace(name, collaborator_name)
        return _saved({
            "status": "created",
            "workspace": workspace.to_dict(),
            "collaborator": collaborator.to_dict(),
        })

    @mcp.tool()
    def tool_join_workspace(code: str, collaborator_name: str) -> dict:
        """Join a workspace with its join code (case-insensitive).

        Args:
            code: 6-character join code
            collaborator_name: Name of the person joining

        Returns:
            Dict with the workspace and the new collaborator
        """
        check_write_permission(config, "tool_join_workspace")
        joined = store.join_workspace(code, collaborator_name)
        if joined is None:
            raise ValueError(f"No workspace with code '{code}'")
        workspace, collaborator = joined
        return _saved({
            "status": "joined",
            "workspace": workspace.to_dict(),
            "collaborator": collaborator.to_dict(),
        })

    @mcp.tool()
    def tool_update_research_settings(
        workspace_id: str,
        research_mode: bool | None = None,
        ai_enabled: bool | None = None,
        participant_id: str | None = None,
    ) -> dict:
        """Turn research mode and AI assistance on or off for a workspace.

        In research mode, coding actions are written to the analytics log.

        Args:
            workspace_id: Workspace id
            research_mode: Record analytics for this workspace
            ai_enabled: Whether AI suggestions are part of the study condition
            participant_id: Participant identifier for the research export

        Returns:
            The updated workspace
        """
        check_write_permission(config, "tool_update_research_settings")
        workspace = store.update_research_settings(
            workspace_id,
            research_mode=research_mode,
            ai_enabled=ai_enabled,
            participant_id=participant_id,
        )
        return _saved(workspace.to_dict())

    # Studies

    @mcp.tool()
    def tool_create_study(
        title: str,
        workspace_id: str | None = None,
        description: str | None = None,
        research_question: str | None = None,
        status: str = "planning",
        tags: list[str] | None = None,
        color: str = "#3b82f6",
    ) -> dict:
        """Create an empty study.

        Args:
            title: Study title
            workspace_id: Optional workspace that lists the study
            description: Optional description
            research_question: Optional research question
            status: planning, in-progress, analysis, writing or completed
            tags: Optional tags
            color: Display color

        Returns:
            The study metadata
        """
        check_write_permission(config, "tool_create_study")
        study = store.create_study(
            title,
            workspace_id=workspace_id,
            description=description,
            research_question=research_question,
            status=status,
            tags=tags,
            color=color,
        )
        return _saved(study_info(study))

    @mcp.tool()
    def tool_update_study(
        study_id: str,
        title: str | None = None,
        description: str | None = None,
        research_question: str | None = None,
        status: str | None = None,
        tags: list[str] | None = None,
        color: str | None = None,
    ) -> dict:
        """Update study metadata. Omitted fields are left unchanged.

        Returns:
            The updated study metadata
        """
        check_write_permission(config, "tool_update_study")
        study = store.update_study(
            study_id,
            title=title,
            description=description,
            research_question=research_question,
            status=status,
            tags=tags,
            color=color,
        )
        return _saved(study_info(study))

    @mcp.tool()
    def tool_delete_study(study_id: str) -> dict:
        """Delete a study and everything in it.

        Args:
            study_id: Study id
        """
        check_write_permission(config, "tool_delete_study")
        store.delete_study(study_id)
        return _saved({"status": "deleted", "study_id": study_id})

    @mcp.tool()
    def tool_duplicate_study(study_id: str) -> dict:
        """Copy a study with all its data under new ids.

        Args:
            study_id: Study to copy

        Returns:
            The metadata of the copy (titled "<title> (Copy)")
        """
        check_write_permission(config, "tool_duplicate_study")
        return _saved(study_info(store.duplicate_study(study_id)))

    @mcp.tool()
    def tool_clear_orphan_studies() -> dict:
        """Delete studies that no workspace lists.

        Returns:
            Dict with the number of deleted studies
        """
        check_write_permission(config, "tool_clear_orphan_studies")
        return _saved({"status": "cleared", "deleted": store.clear_orphan_studies()})

    # Documents

    @mcp.tool()
    def tool_add_document(study_id: str, title: str, content: str, type: str = "txt") -> dict:
        """Add a text document to a study.

        Args:
            study_id: Study id
            title: Document title
            content: Plain text content
            type: Source type: txt, pdf or docx

        Returns:
            The document without its content
        """
        check_write_permission(config, "tool_add_document")
        document = store.study(study_id).add_document(title, content, type=type)
        result = document.to_dict()
        result.pop("content")
        return _saved(result)

    @mcp.tool()
    def tool_import_document(study_id: str, path: str) -> dict:
        """Import a .txt or .md file (or pdf/docx with an extractor) from QDA_ROOT.

        A markdown frontmatter ``title`` becomes the document title, otherwise
        the file name is used.

        Args:
            study_id: Study id
            path: File path, absolute or relative to QDA_ROOT

        Returns:
            The document without its content
        """
        check_write_permission(config, "tool_import_document")
        file_path = _resolve_import_path(path, config.qda_root)
        parsed = parse_document(file_path)
        document = store.study(study_id).add_document(
            parsed.title, parsed.content, type=parsed.type, size=parsed.size
        )
        logger.info("Imported %s into study %s", file_path.name, study_id)
        result = document.to_dict()
        result.pop("content")
        return _saved(result)

    @mcp.tool()
    def tool_remove_document(study_id: str, document_id: str) -> dict:
        """Remove a document together with its excerpts and memos.

        Code statistics are updated accordingly.
        """
        check_write_permission(config, "tool_remove_document")
        store.study(study_id).remove_document(document_id)
        return _saved({"status": "deleted", "document_id": document_id})

    # Codes

    @mcp.tool()
    def tool_create_code(
        study_id: str,
        name: str,
        level: str = "main",
        parent_id: str | None = None,
        description: str | None = None,
    ) -> dict:
        """Create a code.

        Args:
            study_id: Study id
            name: Code name, unique within the study (case-insensitive)
            level: main, child or subchild
            parent_id: Parent code id; required for child (main parent) and
                subchild (child parent), not allowed for main
            description: Optional description

        Returns:
            The new code
        """
        check_write_permission(config, "tool_create_code")
        code = store.study(study_id).add_code(
            name, parent_id=parent_id, level=level, description=description
        )
        return _saved(code.to_dict())

    @mcp.tool()
    def tool_rename_code(study_id: str, code_id: str, new_name: str) -> dict:
        """Rename a code. Fails if another code already has that name."""
        check_write_permission(config, "tool_rename_code")
        controller = store.study(study_id)
        if not controller.rename_code(code_id, new_name):
            raise DuplicateCodeNameError(new_name.strip())
        return _saved(controller.get_code(code_id).to_dict())

    @mcp.tool()
    def tool_update_code(
        study_id: str,
        code_id: str,
        color: str | None = None,
        description: str | None = None,
    ) -> dict:
        """Change a code's color or description."""
        check_write_permission(config, "tool_update_code")
        code = store.study(study_id).update_code(code_id, color=color, description=description)
        return _saved(code.to_dict())

    @mcp.tool()
    def tool_delete_code(study_id: str, code_id: str) -> dict:
        """Delete a code and all codes below it.

        The codes are removed from every excerpt and theme. The deletion of
        the top code can be reverted with tool_undo_delete_code.

        Returns:
            Dict with the ids of all removed codes
        """
        check_write_permission(config, "tool_delete_code")
        removed = store.study(study_id).delete_code(code_id)
        return _saved({"status": "deleted", "removed_code_ids": removed})

    @mcp.tool()
    def tool_undo_delete_code(study_id: str) -> dict:
        """Restore the most recently deleted code of a study.

        Only the code itself comes back (not its deleted children), re-applied
        to its surviving excerpts and themes.
        """
        check_write_permission(config, "tool_undo_delete_code")
        code = store.study(study_id).undo_delete_code()
        if code is None:
            return {"status": "nothing_to_undo", "code": None}
        return _saved({"status": "restored", "code": code.to_dict()})

    @mcp.tool()
    def tool_merge_codes(study_id: str, source_id: str, target_id: str) -> dict:
        """Merge one code into another.

        Excerpts, theme memberships, memos and child codes of the source move
        to the target, then the source is deleted.

        Returns:
            The updated target code
        """
        check_write_permission(config, "tool_merge_codes")
        code = store.study(study_id).merge_codes(source_id, target_id)
        return _saved(code.to_dict())

    # Excerpts

    @mcp.tool()
    def tool_create_excerpt(
        study_id: str,
        document_id: str,
        start_offset: int,
        end_offset: int,
        code_ids: list[str] | None = None,
        new_code_name: str | None = None,
        memo: str | None = None,
    ) -> dict:
        """Code a span of a document.

        The excerpt text is taken from the document between the offsets.

        Args:
            study_id: Study id
            document_id: Document id
            start_offset: Start character offset (inclusive)
            end_offset: End character offset (exclusive)
            code_ids: Codes to apply
            new_code_name: Optional new main code to create and apply
            memo: Optional memo

        Returns:
            The new excerpt
        """
        check_write_permission(config, "tool_create_excerpt")
        controller = store.study(study_id)
        document = controller.get_document(document_id)
        selection = TextSelection(
            text=document.content[start_offset:end_offset],
            start_offset=start_offset,
            end_offset=end_offset,
            document_id=document_id,
        )
        excerpt = controller.add_excerpt(
            selection, code_ids or [], memo=memo, new_code_name=new_code_name
        )
        return _saved(excerpt.to_dict())

    @mcp.tool()
    def tool_update_excerpt_memo(study_id: str, excerpt_id: str, memo: str | None = None) -> dict:
        """Set or clear the memo stored on an excerpt."""
        check_write_permission(config, "tool_update_excerpt_memo")
        excerpt = store.study(study_id).update_excerpt_memo(excerpt_id, memo)
        return _saved(excerpt.to_dict())

    @mcp.tool()
    def tool_delete_excerpt(study_id: str, excerpt_id: str) -> dict:
        """Delete an excerpt and update the statistics of its codes."""
        check_write_permission(config, "tool_delete_excerpt")
        store.study(study_id).remove_excerpt(excerpt_id)
        return _saved({"status": "deleted", "excerpt_id": excerpt_id})

    @mcp.tool()
    def tool_assign_code(study_id: str, excerpt_id: str, code_id: str) -> dict:
        """Apply an existing code to an excerpt."""
        check_write_permission(config, "tool_assign_code")
        controller = store.study(study_id)
        applied = controller.assign_code_to_excerpt(excerpt_id, code_id)
        return _saved({
            "status": "assigned" if applied else "unchanged",
            "excerpt": controller.get_excerpt(excerpt_id).to_dict(),
        })

    @mcp.tool()
    def tool_unassign_code(study_id: str, excerpt_id: str, code_id: str) -> dict:
        """Remove a code from an excerpt. The excerpt itself is kept."""
        check_write_permission(config, "tool_unassign_code")
        controller = store.study(study_id)
        removed = controller.remove_code_from_excerpt(excerpt_id, code_id)
        return _saved({
            "status": "removed" if removed else "unchanged",
            "excerpt": controller.get_excerpt(excerpt_id).to_dict(),
        })

    # Themes

    @mcp.tool()
    def tool_create_theme(
        study_id: str,
        name: str,
        color: str | None = None,
        parent_id: str | None = None,
        description: str | None = None,
        code_ids: list[str] | None = None,
    ) -> dict:
        """Create a theme, optionally nested and pre-filled with codes.

        Returns:
            The new theme
        """
        check_write_permission(config, "tool_create_theme")
        controller = store.study(study_id)
        if code_ids:
            for code_id in code_ids:
                controller.get_code(code_id)
        theme = controller.add_theme(
            name, color=color, parent_id=parent_id, description=description
        )
        for code_id in code_ids or []:
            controller.add_code_to_theme(theme.id, code_id)
        return _saved(controller.get_theme(theme.id).to_dict())

    @mcp.tool()
    def tool_update_theme(
        study_id: str,
        theme_id: str,
        name: str | None = None,
        description: str | None = None,
        color: str | None = None,
        memo: str | None = None,
    ) -> dict:
        """Update a theme. Omitted fields are left unchanged."""
        check_write_permission(config, "tool_update_theme")
        theme = store.study(study_id).update_theme(
            theme_id, name=name, description=description, color=color, memo=memo
        )
        return _saved(theme.to_dict())

    @mcp.tool()
    def tool_delete_theme(study_id: str, theme_id: str) -> dict:
        """Delete a theme and its nested themes. Codes are not affected."""
        check_write_permission(config, "tool_delete_theme")
        removed = store.study(study_id).delete_theme(theme_id)
        return _saved({"status": "deleted", "removed_theme_ids": removed})

    @mcp.tool()
    def tool_add_code_to_theme(study_id: str, theme_id: str, code_id: str) -> dict:
        """Add a code to a theme."""
        check_write_permission(config, "tool_add_code_to_theme")
        controller = store.study(study_id)
        controller.add_code_to_theme(theme_id, code_id)
        return _saved(controller.get_theme(theme_id).to_dict())

    @mcp.tool()
    def tool_remove_code_from_theme(study_id: str, theme_id: str, code_id: str) -> dict:
        """Remove a code from a theme."""
        check_write_permission(config, "tool_remove_code_from_theme")
        controller = store.study(study_id)
        controller.remove_code_from_theme(theme_id, code_id)
        return _saved(controller.get_theme(theme_id).to_dict())

    @mcp.tool()
    def tool_move_code_between_themes(
        study_id: str,
        code_id: str,
        from_theme_id: str,
        to_theme_id: str,
    ) -> dict:
        """Move a code from one theme to another."""
        check_write_permission(config, "tool_move_code_between_themes")
        controller = store.study(study_id)
        controller.move_code_between_themes(code_id, from_theme_id, to_theme_id)
        return _saved({
            "status": "moved",
            "from_theme": controller.get_theme(from_theme_id).to_dict(),
            "to_theme": controller.get_theme(to_theme_id).to_dict(),
        })

    # Memos

    @mcp.tool()
    def tool_write_memo(study_id: str, target_type: str, target_id: str, content: str) -> dict:
        """Write the memo of a document, excerpt, code or theme.

        A target has at most one memo; writing again replaces its content.

        Args:
            study_id: Study id
            target_type: document, excerpt, code or theme
            target_id: Id of the target
            content: Memo text

        Returns:
            The memo
        """
        check_write_permission(config, "tool_write_memo")
        memo = store.study(study_id).add_memo(content, target_type, target_id)
        return _saved(memo.to_dict())

    @mcp.tool()
    def tool_update_memo(study_id: str, memo_id: str, content: str) -> dict:
        """Replace the content of a memo."""
        check_write_permission(config, "tool_update_memo")
        memo = store.study(study_id).update_memo(memo_id, content)
        return _saved(memo.to_dict())

    @mcp.tool()
    def tool_delete_memo(study_id: str, memo_id: str) -> dict:
        """Delete a memo."""
        check_write_permission(config, "tool_delete_memo")
        store.study(study_id).delete_memo(memo_id)
        return _saved({"status": "deleted", "memo_id": memo_id})

    # Project import

    @mcp.tool()
    def tool_import_project(study_id: str, project_json: str) -> dict:
        """Replace a study's data with an exported project.

        Code statistics are recomputed from the imported excerpts. On any
        error the study is left unchanged.

        Args:
            study_id: Study id
            project_json: JSON produced by export_project_json

        Returns:
            Dict with the number of imported entities per collection
        """
        check_write_permission(config, "tool_import_project")
        counts = import_project(store.study(study_id), project_json)
        return _saved({"status": "imported", "counts": counts})

    # Research mode

    @mcp.tool()
    def tool_record_suggestion_feedback(
        study_id: str,
        code_name: str,
        accepted: bool,
        excerpt_id: str | None = None,
    ) -> dict:
        """Record whether an AI code suggestion was accepted or rejected.

        Only research-mode workspaces keep the record.
        """
        check_write_permission(config, "tool_record_suggestion_feedback")
        store.get_study(study_id)
        action = "ai_suggestion_accepted" if accepted else "ai_suggestion_rejected"
        store.log_for_study(
            study_id,
            action,
            {
                "excerptId": excerpt_id,
                "codeName": code_name,
                "aiSuggestion": code_name,
                "suggestionAccepted": accepted,
            },
        )
        return _saved({"status": "recorded", "action": action})

    @mcp.tool()
    def tool_start_session(workspace_id: str) -> dict:
        """Start a timed coding session for research metrics."""
        check_write_permission(config, "tool_start_session")
        started = store.start_session(workspace_id)
        return _saved({"status": "started" if started else "not_recording"})

    @mcp.tool()
    def tool_end_session(workspace_id: str) -> dict:
        """End the current coding session."""
        check_write_permission(config, "tool_end_session")
        ended = store.end_session(workspace_id)
        return _saved({"status": "ended" if ended else "not_recording"})

    @mcp.tool()
    def tool_clear_analytics(workspace_id: str | None = None) -> dict:
        """Clear the research analytics log, for one workspace or all.

        Returns:
            Dict with the number of removed entries
        """
        check_write_permission(config, "tool_clear_analytics")
        removed = store.clear_analytics_logs(workspace_id)
        return _saved({"status": "cleared", "removed": removed})
