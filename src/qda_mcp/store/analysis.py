"""Pure analysis functions over a study's codes, themes and excerpts.

Nothing here mutates its arguments. The study controller recomputes its
cached code statistics with ``derive_code_stats`` so that cached fields and
the counts reported here can never disagree.
"""

from collections.abc import Iterable
from dataclasses import dataclass, field

from qda_mcp.store.models import Code, Excerpt, Theme


@dataclass
class CoOccurrence:
    """Two codes appearing in excerpts of the same documents."""

    code1_id: str
    code2_id: str
    weight: int = 0
    document_ids: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "code1Id": self.code1_id,
            "code2Id": self.code2_id,
            "weight": self.weight,
            "documentIds": list(self.document_ids),
        }


def derive_code_stats(
    code_id: str, excerpts: Iterable[Excerpt]
) -> tuple[list[str], int, int]:
    """Scan excerpts for one code.

    Returns:
        Tuple of (excerpt_ids, frequency, document_count).
    """
    excerpt_ids: list[str] = []
    document_ids: set[str] = set()
    for excerpt in excerpts:
        if code_id in excerpt.code_ids:
            excerpt_ids.append(excerpt.id)
            document_ids.add(excerpt.document_id)
    return excerpt_ids, len(excerpt_ids), len(document_ids)


def get_code_excerpt_count(code_id: str, excerpts: Iterable[Excerpt]) -> int:
    """Number of excerpts tagged with ``code_id``."""
    return derive_code_stats(code_id, excerpts)[1]


def get_code_document_count(code_id: str, excerpts: Iterable[Excerpt]) -> int:
    """Number of distinct documents with an excerpt tagged ``code_id``."""
    return derive_code_stats(code_id, excerpts)[2]


def calculate_co_occurrences(
    codes: Iterable[Code], excerpts: Iterable[Excerpt]
) -> list[CoOccurrence]:
    """Count, per unordered code pair, the documents in which both appear.

    Excerpts are grouped by document; every pair of distinct codes found in a
    document's excerpts adds that document once to the pair. Pairs are keyed
    (and reported) with the smaller id first, so (a, b) and (b, a) collapse.
    Code ids not present in ``codes`` are ignored.
    """
    known = {code.id for code in codes}

    codes_by_document: dict[str, dict[str, None]] = {}
    for excerpt in excerpts:
        doc_codes = codes_by_document.setdefault(excerpt.document_id, {})
        for code_id in excerpt.code_ids:
            if code_id in known:
                doc_codes[code_id] = None

    pairs: dict[tuple[str, str], CoOccurrence] = {}
    for document_id, doc_codes in codes_by_document.items():
        code_list = list(doc_codes)
        for i in range(len(code_list)):
            for j in range(i + 1, len(code_list)):
                key = tuple(sorted((code_list[i], code_list[j])))
                entry = pairs.get(key)
                if entry is None:
                    entry = pairs[key] = CoOccurrence(code1_id=key[0], code2_id=key[1])
                entry.weight += 1
                entry.document_ids.append(document_id)

    return list(pairs.values())


def build_hierarchical_tree(codes: Iterable[Code]) -> list[dict]:
    """Project the code hierarchy as a forest of nested dicts.

    Each node is ``{id, name, frequency, level, color}`` plus ``children``
    when it has any. Assumes parent links never form a cycle.
    """
    code_list = list(codes)
    children_by_parent: dict[str, list[Code]] = {}
    for code in code_list:
        if code.parent_id:
            children_by_parent.setdefault(code.parent_id, []).append(code)

    def build_node(code: Code) -> dict:
        node = {
            "id": code.id,
            "name": code.name,
            "frequency": code.frequency,
            "level": code.level,
            "color": code.color,
        }
        children = children_by_parent.get(code.id)
        if children:
            node["children"] = [build_node(child) for child in children]
        return node

    return [build_node(code) for code in code_list if not code.parent_id]


def get_code_stats(codes: Iterable[Code], excerpts: Iterable[Excerpt]) -> dict:
    """Summary figures of a codebook."""
    code_list = list(codes)
    excerpt_count = sum(1 for _ in excerpts)
    return {
        "totalCodes": len(code_list),
        "mainCodes": sum(1 for c in code_list if c.level == "main"),
        "childCodes": sum(1 for c in code_list if c.level == "child"),
        "subchildCodes": sum(1 for c in code_list if c.level == "subchild"),
        "totalExcerpts": excerpt_count,
        "averageFrequency": (
            sum(c.frequency for c in code_list) / len(code_list) if code_list else 0
        ),
    }


def build_network_graph(codes: Iterable[Code], themes: Iterable[Theme]) -> dict:
    """Nodes and links for a force-directed view of themes and codes.

    Theme nodes are sized by member count, code nodes by frequency (minimum
    1). Links run parent code -> child code and theme -> member code.
    """
    code_list = list(codes)
    theme_list = list(themes)
    code_ids = {code.id for code in code_list}

    nodes: list[dict] = []
    links: list[dict] = []

    for theme in theme_list:
        nodes.append({
            "id": theme.id,
            "name": theme.name,
            "type": "theme",
            "frequency": len(theme.code_ids) * 10,
            "color": theme.color,
        })

    for code in code_list:
        nodes.append({
            "id": code.id,
            "name": code.name,
            "type": "code",
            "level": code.level,
            "frequency": code.frequency or 1,
            "color": code.color,
        })
        if code.parent_id and code.parent_id in code_ids:
            links.append({"source": code.parent_id, "target": code.id, "weight": 1})

    for theme in theme_list:
        for code_id in theme.code_ids:
            if code_id in code_ids:
                links.append({"source": theme.id, "target": code_id, "weight": 1})

    return {"nodes": nodes, "links": links}
