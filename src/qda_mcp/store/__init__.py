"""
Store module for qdamcp.

Holds the coding data model (documents, excerpts, codes, themes, memos),
the study controller that keeps code statistics consistent, the analysis
functions built on top of it, and the JSON state file. Everything else in
the server is a thin surface over this package.
"""

from qda_mcp.store.analysis import (
    CoOccurrence,
    build_hierarchical_tree,
    build_network_graph,
    calculate_co_occurrences,
    get_code_document_count,
    get_code_excerpt_count,
    get_code_stats,
)
from qda_mcp.store.errors import (
    DocumentParseError,
    DuplicateCodeNameError,
    NotFoundError,
    PersistenceError,
    ProjectImportError,
    QDAError,
    ValidationError,
)
from qda_mcp.store.models import (
    Code,
    Collaborator,
    Document,
    Excerpt,
    Memo,
    Study,
    StudyStatistics,
    TextSelection,
    Theme,
    Workspace,
)
from qda_mcp.store.persistence import StateFile
from qda_mcp.store.state import QDAStore
from qda_mcp.store.study import StudyController

__all__ = [
    "Code",
    "CoOccurrence",
    "Collaborator",
    "Document",
    "DocumentParseError",
    "DuplicateCodeNameError",
    "Excerpt",
    "Memo",
    "NotFoundError",
    "PersistenceError",
    "ProjectImportError",
    "QDAError",
    "QDAStore",
    "StateFile",
    "Study",
    "StudyController",
    "StudyStatistics",
    "TextSelection",
    "Theme",
    "ValidationError",
    "Workspace",
    "build_hierarchical_tree",
    "build_network_graph",
    "calculate_co_occurrences",
    "get_code_document_count",
    "get_code_excerpt_count",
    "get_code_stats",
]
