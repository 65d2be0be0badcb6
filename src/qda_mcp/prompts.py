"""MCP prompts for qdamcp.

Prompts are templates that give AI agents the context of a study. They
combine the codebook, themes, statistics and memos into one view.
"""

from fastmcp import FastMCP

from qda_mcp.store import NotFoundError, QDAStore, calculate_co_occurrences

# Excerpts quoted per code in a codebook review
SAMPLE_EXCERPTS = 2


def register_prompts(mcp: FastMCP, store: QDAStore) -> None:
    """Register all prompts with the FastMCP server.

    Args:
        mcp: FastMCP server instance
        store: QDAStore to read study data from
    """

    @mcp.prompt()
    def study_briefing(study_id: str) -> str:
        """Get a concise briefing of a study's current state.

        Args:
            study_id: Study to brief

        Returns:
            A structured summary with the research question, statistics,
            documents, main codes and themes.
        """
        try:
            study = store.get_study(study_id)
        except NotFoundError:
            return (
                f"# Study Briefing: {study_id}\n\n"
                f"Study '{study_id}' not found.\n\n"
                "Use the list_studies tool to see available studies."
            )

        controller = store.study(study_id)
        stats = store.get_study_statistics(study_id)
        briefing_parts = [f"# Study Briefing: {study.title}\n\n"]

        briefing_parts.append(f"**Status:** {study.status}\n")
        if study.research_question:
            briefing_parts.append(f"**Research question:** {study.research_question}\n")
        if study.description:
            briefing_parts.append(f"\n{study.description}\n")

        briefing_parts.append("\n## Progress\n\n")
        briefing_parts.append(
            f"{stats.document_count} documents, {stats.excerpt_count} coded excerpts, "
            f"{stats.code_count} codes, {stats.theme_count} themes, {stats.memo_count} memos.\n"
        )
        if stats.most_used_code:
            briefing_parts.append(f"Most used code: **{stats.most_used_code}**.\n")

        briefing_parts.append("\n## Documents\n\n")
        documents = controller.list_documents()
        if documents:
            for document in documents:
                coded = len(document.excerpt_ids)
                briefing_parts.append(
                    f"- **{document.title}**: {coded} excerpt{'s' if coded != 1 else ''}\n"
                )
        else:
            briefing_parts.append("_No documents imported yet_\n")

        briefing_parts.append("\n## Main Codes\n\n")
        main_codes = [c for c in controller.list_codes() if c.level == "main"]
        if main_codes:
            for code in sorted(main_codes, key=lambda c: c.frequency, reverse=True):
                briefing_parts.append(
                    f"- **{code.name}** ({code.frequency} excerpts in "
                    f"{code.document_count} documents)\n"
                )
        else:
            briefing_parts.append("_No codes yet_\n")

        briefing_parts.append("\n## Themes\n\n")
        themes = controller.list_themes()
        if themes:
            for theme in themes:
                briefing_parts.append(
                    f"- **{theme.name}**: {len(theme.code_ids)} codes"
                    f"{' - ' + theme.description if theme.description else ''}\n"
                )
        else:
            briefing_parts.append("_No themes yet_\n")

        return "".join(briefing_parts)

    @mcp.prompt()
    def codebook_review(study_id: str) -> str:
        """Ask for a critical review of a study's codebook.

        Lists every code with its hierarchy, usage, memo and sample
        excerpts, plus the strongest co-occurrences, and asks for concrete
        refinements (merges, splits, renames, theme groupings).

        Args:
            study_id: Study whose codebook to review
        """
        try:
            study = store.get_study(study_id)
        except NotFoundError:
            return f"Study '{study_id}' not found."

        controller = store.study(study_id)
        codes = controller.list_codes()
        excerpts = controller.list_excerpts()
        names = {c.id: c.name for c in codes}

        review_parts = [f"# Codebook Review: {study.title}\n\n"]
        if study.research_question:
            review_parts.append(f"Research question: {study.research_question}\n\n")

        review_parts.append("## Codes\n\n")
        if not codes:
            review_parts.append("_The codebook is empty._\n\n")
        for code in codes:
            parent = f" (under {names[code.parent_id]})" if code.parent_id in names else ""
            review_parts.append(
                f"### {code.name}{parent}\n\n"
                f"Level: {code.level}. Used {code.frequency} times in "
                f"{code.document_count} documents.\n"
            )
            if code.description:
                review_parts.append(f"Description: {code.description}\n")
            memo = controller.memo_for("code", code.id)
            if memo:
                review_parts.append(f"Memo: {memo.content}\n")
            samples = [e.text for e in excerpts if code.id in e.code_ids][:SAMPLE_EXCERPTS]
            for sample in samples:
                review_parts.append(f'> "{sample}"\n')
            review_parts.append("\n")

        pairs = sorted(
            calculate_co_occurrences(codes, excerpts), key=lambda p: p.weight, reverse=True
        )
        if pairs:
            review_parts.append("## Strongest Co-occurrences\n\n")
            for pair in pairs[:5]:
                review_parts.append(
                    f"- {names[pair.code1_id]} + {names[pair.code2_id]}: "
                    f"{pair.weight} documents\n"
                )
            review_parts.append("\n")

        review_parts.append("---\n\n")
        review_parts.append(
            "Review this codebook. Point out codes that overlap and should be merged, "
            "codes that are too broad and should be split, unclear names, and codes "
            "that belong together in a theme. Refer to codes by their exact names.\n"
        )
        return "".join(review_parts)
