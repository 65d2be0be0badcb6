"""MCP tools for qdaMCP server.

This module defines the read tools exposed by the MCP server:
- Browsing: workspaces, studies, documents, codes, excerpts, themes, memos
- Analysis: code tree, code statistics, co-occurrences, network graph
- Exports: project JSON, codebook CSV, research data CSV
- AI suggestions: codes for a selection, codebook refinements, themes, summaries
"""

import logging

from fastmcp import FastMCP

from qda_mcp.exports import export_codes_csv, export_project, export_research_csv
from qda_mcp.store import (
    QDAStore,
    Study,
    build_hierarchical_tree,
    build_network_graph,
    calculate_co_occurrences,
    get_code_document_count,
    get_code_excerpt_count,
    get_code_stats,
)
from qda_mcp.suggestions import SuggestionClient

logger = logging.getLogger(__name__)

COLLECTION_KEYS = ("documents", "codes", "themes", "excerpts", "memos")


def study_info(study: Study) -> dict:
    """Study metadata as a dict, without its collections."""
    info = study.to_dict()
    for key in COLLECTION_KEYS:
        info.pop(key, None)
    return info


def register_tools(
    mcp: FastMCP,
    store: QDAStore,
    suggestions: SuggestionClient,
    read_only: bool = False,
) -> None:
    """Register all read tools with the FastMCP server.

    Args:
        mcp: FastMCP server instance
        store: QDAStore holding all workspaces and studies
        suggestions: Client for the AI suggestion service
        read_only: Skip analytics logging, which writes to the state
    """

    @mcp.tool()
    def list_workspaces() -> list[dict]:
        """List all workspaces with their join codes, collaborators and study ids.

        Returns:
            List of workspaces with:
            - id, name, code: Identity and 6-character join code
            - collaborators: Members with name, initials and color
            - studyIds: Studies listed by the workspace
            - researchMode, aiEnabled, participantId: Research settings
        """
        return [w.to_dict() for w in store.list_workspaces()]

    @mcp.tool()
    def list_studies(workspace_id: str | None = None) -> list[dict]:
        """List studies, optionally only those of one workspace.

        Args:
            workspace_id: Optional workspace id to filter by

        Returns:
            List of study metadata (title, status, tags, dates)
        """
        if workspace_id:
            studies = store.workspace_studies(workspace_id)
        else:
            studies = store.list_studies()
        return [study_info(s) for s in studies]

    @mcp.tool()
    def get_study_statistics(study_id: str) -> dict:
        """Get counts and headline figures for a study.

        Args:
            study_id: Study id

        Returns:
            Dict with document/code/theme/excerpt/memo counts, coded segments,
            average excerpts per document, most used code and last activity
        """
        return store.get_study_statistics(study_id).to_dict()

    @mcp.tool()
    def list_documents(study_id: str) -> list[dict]:
        """List the documents of a study without their content.

        Args:
            study_id: Study id

        Returns:
            List of documents with id, title, type, size, uploadedAt and
            the number of excerpts coded in each
        """
        return [
            {
                "id": d.id,
                "title": d.title,
                "type": d.type,
                "size": d.size,
                "uploadedAt": d.to_dict()["uploadedAt"],
                "excerptCount": len(d.excerpt_ids),
            }
            for d in store.study(study_id).list_documents()
        ]

    @mcp.tool()
    def read_document(study_id: str, document_id: str) -> dict:
        """Read a document with its excerpts and the codes applied to it.

        Args:
            study_id: Study id
            document_id: Document id

        Returns:
            Dict with:
            - document: The full document including content
            - excerpts: Excerpts in the document, in offset order
            - codes: Codes applied anywhere in the document
            - memo: The document memo, if any
        """
        controller = store.study(study_id)
        document = controller.get_document(document_id)
        memo = controller.memo_for("document", document_id)
        return {
            "document": document.to_dict(),
            "excerpts": [e.to_dict() for e in controller.excerpts_for_document(document_id)],
            "codes": [c.to_dict() for c in controller.codes_for_document(document_id)],
            "memo": memo.to_dict() if memo else None,
        }

    @mcp.tool()
    def list_codes(study_id: str) -> list[dict]:
        """List all codes of a study with their statistics.

        Args:
            study_id: Study id

        Returns:
            List of codes with name, level, parentId, color, frequency,
            documentCount and excerptIds
        """
        return [c.to_dict() for c in store.study(study_id).list_codes()]

    @mcp.tool()
    def get_code_details(study_id: str, code_id: str) -> dict:
        """Get one code with its excerpts, child codes, themes and memo.

        Args:
            study_id: Study id
            code_id: Code id

        Returns:
            Dict with code, excerpts, children, themes, memo and counts
            recomputed from the excerpts
        """
        controller = store.study(study_id)
        code = controller.get_code(code_id)
        excerpts = controller.list_excerpts()
        memo = controller.memo_for("code", code_id)
        return {
            "code": code.to_dict(),
            "excerpts": [e.to_dict() for e in controller.excerpts_for_code(code_id)],
            "children": [c.to_dict() for c in controller.child_codes(code_id)],
            "themes": [
                {"id": t.id, "name": t.name}
                for t in controller.list_themes()
                if code_id in t.code_ids
            ],
            "memo": memo.to_dict() if memo else None,
            "excerptCount": get_code_excerpt_count(code_id, excerpts),
            "documentCount": get_code_document_count(code_id, excerpts),
        }

    @mcp.tool()
    def get_code_tree(study_id: str) -> list[dict]:
        """Get the code hierarchy as a nested tree.

        Args:
            study_id: Study id

        Returns:
            List of main codes, each node with id, name, color, level,
            frequency and (when it has any) children
        """
        return build_hierarchical_tree(store.study(study_id).list_codes())

    @mcp.tool()
    def get_code_statistics(study_id: str) -> dict:
        """Get summary figures of the codebook.

        Args:
            study_id: Study id

        Returns:
            Dict with totalCodes, mainCodes, childCodes, subchildCodes,
            totalExcerpts and averageFrequency
        """
        controller = store.study(study_id)
        return get_code_stats(controller.list_codes(), controller.list_excerpts())

    @mcp.tool()
    def get_co_occurrences(study_id: str, min_weight: int = 1) -> list[dict]:
        """Get pairs of codes that appear in the same document.

        Args:
            study_id: Study id
            min_weight: Only return pairs seen in at least this many documents

        Returns:
            List of {code1Id, code2Id, code1Name, code2Name, weight, documentIds},
            heaviest first
        """
        controller = store.study(study_id)
        codes = controller.list_codes()
        names = {c.id: c.name for c in codes}
        pairs = calculate_co_occurrences(codes, controller.list_excerpts())
        results = []
        for pair in sorted(pairs, key=lambda p: p.weight, reverse=True):
            if pair.weight < min_weight:
                continue
            entry = pair.to_dict()
            entry["code1Name"] = names[pair.code1_id]
            entry["code2Name"] = names[pair.code2_id]
            results.append(entry)
        return results

    @mcp.tool()
    def get_network_graph(study_id: str) -> dict:
        """Get the theme/code graph of a study.

        Args:
            study_id: Study id

        Returns:
            Dict with nodes ({id, name, type, frequency, color}) and links
            ({source, target, weight}) from themes to their codes and from
            codes to their parents
        """
        controller = store.study(study_id)
        return build_network_graph(controller.list_codes(), controller.list_themes())

    @mcp.tool()
    def list_excerpts(
        study_id: str,
        document_id: str | None = None,
        code_id: str | None = None,
    ) -> list[dict]:
        """List excerpts, optionally filtered by document and/or code.

        Args:
            study_id: Study id
            document_id: Optional document id filter
            code_id: Optional code id filter

        Returns:
            List of excerpts with text, documentId, offsets, codeIds and memo
        """
        excerpts = store.study(study_id).list_excerpts()
        return [
            e.to_dict()
            for e in excerpts
            if (document_id is None or e.document_id == document_id)
            and (code_id is None or code_id in e.code_ids)
        ]

    @mcp.tool()
    def list_themes(study_id: str) -> list[dict]:
        """List the themes of a study.

        Args:
            study_id: Study id

        Returns:
            List of themes with name, color, description, memo, codeIds and parentId
        """
        return [t.to_dict() for t in store.study(study_id).list_themes()]

    @mcp.tool()
    def list_memos(study_id: str, target_type: str | None = None) -> list[dict]:
        """List memos, optionally only those attached to one kind of target.

        Args:
            study_id: Study id
            target_type: Optional filter: document, excerpt, code or theme

        Returns:
            List of memos with content, targetType, targetId and dates
        """
        return [
            m.to_dict()
            for m in store.study(study_id).list_memos()
            if target_type is None or m.target_type == target_type
        ]

    @mcp.tool()
    def export_project_json(study_id: str) -> str:
        """Export a study's documents, codes, themes, excerpts and memos as JSON.

        The result can be passed to tool_import_project.

        Args:
            study_id: Study id
        """
        return export_project(store.study(study_id))

    @mcp.tool()
    def export_codebook_csv(study_id: str) -> str:
        """Export the codebook as CSV (Code, Frequency, Document Count, Level, Parent).

        Args:
            study_id: Study id
        """
        return export_codes_csv(store.study(study_id))

    @mcp.tool()
    def export_research_data(workspace_id: str) -> str:
        """Export a workspace's research log as CSV, with summary metrics.

        Args:
            workspace_id: Workspace id
        """
        return export_research_csv(store, workspace_id)

    @mcp.tool()
    def get_research_metrics(workspace_id: str) -> dict | None:
        """Get coding metrics for a research-mode workspace.

        Args:
            workspace_id: Workspace id

        Returns:
            Metrics dict, or None if the workspace is not in research mode
            or has no participant id
        """
        metrics = store.get_research_metrics(workspace_id)
        return metrics.to_dict() if metrics else None

    @mcp.tool()
    def suggest_codes(
        study_id: str,
        selected_text: str,
        document_id: str | None = None,
    ) -> list[dict]:
        """Suggest codes for a text selection.

        Falls back to keyword matching when the AI service is unavailable.

        Args:
            study_id: Study id
            selected_text: The highlighted text
            document_id: Optional document id, used as context

        Returns:
            Suggestions with code, confidence (0-1), reason and existingMatch,
            best first
        """
        controller = store.study(study_id)
        document_text = controller.get_document(document_id).content if document_id else None
        existing = [c.name for c in controller.list_codes()]

        results = suggestions.suggest_codes(selected_text, existing, document_text)
        if not read_only:
            store.log_for_study(
                study_id,
                "ai_suggestion_requested",
                {
                    "documentId": document_id,
                    "excerptLength": len(selected_text),
                    "suggestionCount": len(results),
                },
            )
        return [s.to_dict() for s in results]

    @mcp.tool()
    def suggest_refinements(study_id: str) -> list[dict]:
        """Suggest codebook refinements (merge, split, rename, group).

        Args:
            study_id: Study id

        Returns:
            Suggestions with type, codes, suggestion and reason
        """
        codes = [
            {"name": c.name, "frequency": c.frequency, "documentCount": c.document_count}
            for c in store.study(study_id).list_codes()
        ]
        if not codes:
            return []
        return [s.to_dict() for s in suggestions.suggest_refinements(codes)]

    @mcp.tool()
    def suggest_themes(study_id: str) -> list[dict]:
        """Suggest themes grouping the study's codes.

        Args:
            study_id: Study id

        Returns:
            Suggestions with name, description, suggestedCodes and summary
        """
        codes = [
            {"name": c.name, "frequency": c.frequency}
            for c in store.study(study_id).list_codes()
        ]
        if not codes:
            return []
        return [s.to_dict() for s in suggestions.suggest_themes(codes)]

    @mcp.tool()
    def summarize_code(study_id: str, code_id: str) -> dict:
        """Summarize what a code means based on its excerpts.

        Args:
            study_id: Study id
            code_id: Code id

        Returns:
            Dict with meaning, keyExcerpts and documentPresence
        """
        controller = store.study(study_id)
        code = controller.get_code(code_id)
        excerpts = controller.excerpts_for_code(code_id)
        titles = {d.id: d.title for d in controller.list_documents()}
        document_titles = list(dict.fromkeys(titles[e.document_id] for e in excerpts))
        summary = suggestions.summarize(
            "code", code.name, [e.text for e in excerpts], document_titles
        )
        return summary.to_dict()

    @mcp.tool()
    def summarize_theme(study_id: str, theme_id: str) -> dict:
        """Summarize what a theme means based on the excerpts of its codes.

        Args:
            study_id: Study id
            theme_id: Theme id

        Returns:
            Dict with meaning, keyExcerpts and documentPresence
        """
        controller = store.study(study_id)
        theme = controller.get_theme(theme_id)
        members = set(theme.code_ids)
        excerpts = [
            e for e in controller.list_excerpts() if members.intersection(e.code_ids)
        ]
        titles = {d.id: d.title for d in controller.list_documents()}
        document_titles = list(dict.fromkeys(titles[e.document_id] for e in excerpts))
        summary = suggestions.summarize(
            "theme", theme.name, [e.text for e in excerpts], document_titles
        )
        return summary.to_dict()
