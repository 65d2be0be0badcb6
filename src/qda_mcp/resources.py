"""MCP Resources for qdaMCP.

Resources expose workspaces, studies and documents as read-only markdown.
"""

from qda_mcp.store import QDAStore


def get_workspaces_resource(store: QDAStore) -> str:
    """Resource: qda://workspaces

    Lists all workspaces with their collaborators and studies.
    """
    workspaces = store.list_workspaces()
    if not workspaces:
        return "# Workspaces\n\nNo workspaces yet.\n"

    result_lines = ["# Workspaces\n\n"]
    for workspace in workspaces:
        result_lines.append(f"## {workspace.name}\n\n")
        result_lines.append(f"- **ID:** {workspace.id}\n")
        result_lines.append(f"- **Join code:** {workspace.code}\n")
        names = ", ".join(c.name for c in workspace.collaborators)
        result_lines.append(f"- **Collaborators:** {names or '_none_'}\n")
        if workspace.research_mode:
            result_lines.append(
                f"- **Research mode:** on (participant: {workspace.participant_id or '_unset_'}, "
                f"AI {'enabled' if workspace.ai_enabled else 'disabled'})\n"
            )

        studies = store.workspace_studies(workspace.id)
        if studies:
            result_lines.append("- **Studies:**\n")
            for study in studies:
                result_lines.append(f"  - {study.title} ({study.status}) `{study.id}`\n")
        else:
            result_lines.append("- **Studies:** _none_\n")
        result_lines.append("\n")

    return "".join(result_lines)


def get_study_resource(store: QDAStore, study_id: str) -> str:
    """Resource: qda://studies/{study_id}

    Study overview: metadata, statistics, documents, code tree and themes.
    """
    controller = store.study(study_id)
    study = store.get_study(study_id)
    stats = store.get_study_statistics(study_id)

    result_lines = [f"# {study.title}\n\n"]
    result_lines.append(f"**Status:** {study.status}\n")
    if study.research_question:
        result_lines.append(f"**Research question:** {study.research_question}\n")
    if study.tags:
        result_lines.append(f"**Tags:** {', '.join(study.tags)}\n")
    if study.description:
        result_lines.append(f"\n{study.description}\n")

    result_lines.append("\n## Statistics\n\n")
    result_lines.append(f"- Documents: {stats.document_count}\n")
    result_lines.append(f"- Codes: {stats.code_count}\n")
    result_lines.append(f"- Themes: {stats.theme_count}\n")
    result_lines.append(f"- Excerpts: {stats.excerpt_count}\n")
    result_lines.append(f"- Memos: {stats.memo_count}\n")
    if stats.most_used_code:
        result_lines.append(f"- Most used code: {stats.most_used_code}\n")

    result_lines.append("\n## Documents\n\n")
    documents = controller.list_documents()
    if documents:
        for document in documents:
            result_lines.append(
                f"- {document.title} ({document.type}, {len(document.excerpt_ids)} excerpts) "
                f"`{document.id}`\n"
            )
    else:
        result_lines.append("_No documents_\n")

    result_lines.append("\n## Codes\n\n")
    codes = controller.list_codes()
    if codes:
        indent = {"main": "", "child": "  ", "subchild": "    "}
        children: dict[str | None, list] = {}
        for code in codes:
            children.setdefault(code.parent_id, []).append(code)

        def walk(parent_id):
            for code in children.get(parent_id, []):
                result_lines.append(
                    f"{indent.get(code.level, '')}- {code.name} "
                    f"({code.frequency} excerpts, {code.document_count} documents) `{code.id}`\n"
                )
                walk(code.id)

        walk(None)
    else:
        result_lines.append("_No codes_\n")

    result_lines.append("\n## Themes\n\n")
    themes = controller.list_themes()
    if themes:
        names = {c.id: c.name for c in codes}
        for theme in themes:
            members = ", ".join(names[cid] for cid in theme.code_ids if cid in names)
            result_lines.append(f"- {theme.name}: {members or '_no codes_'} `{theme.id}`\n")
    else:
        result_lines.append("_No themes_\n")

    return "".join(result_lines)


def get_document_resource(store: QDAStore, study_id: str, document_id: str) -> str:
    """Resource: qda://studies/{study_id}/documents/{document_id}

    The full document text followed by its coded excerpts.
    """
    controller = store.study(study_id)
    document = controller.get_document(document_id)
    names = {c.id: c.name for c in controller.list_codes()}

    header = f"# {document.title}\n\n"
    header += f"**Type:** {document.type}\n"
    header += f"**Size:** {document.size} bytes\n\n"
    header += "---\n\n"

    parts = [header, document.content, "\n\n---\n\n## Excerpts\n\n"]
    excerpts = controller.excerpts_for_document(document_id)
    if not excerpts:
        parts.append("_No excerpts_\n")
    for excerpt in excerpts:
        codes = ", ".join(names[cid] for cid in excerpt.code_ids if cid in names)
        parts.append(
            f"- [{excerpt.start_offset}-{excerpt.end_offset}] \"{excerpt.text}\" "
            f"({codes or 'uncoded'})\n"
        )

    return "".join(parts)


def register_resources(mcp, store: QDAStore):
    """Register all resources with the FastMCP server.

    Args:
        mcp: FastMCP server instance
        store: QDAStore to read from
    """

    @mcp.resource("qda://workspaces")
    def list_workspaces():
        """List all workspaces with their studies."""
        return get_workspaces_resource(store)

    @mcp.resource("qda://studies/{study_id}")
    def study_overview(study_id: str):
        """Overview of a study: statistics, documents, code tree and themes."""
        return get_study_resource(store, study_id)

    @mcp.resource("qda://studies/{study_id}/documents/{document_id}")
    def read_document(study_id: str, document_id: str):
        """Full text of a document with its coded excerpts."""
        return get_document_resource(store, study_id, document_id)
