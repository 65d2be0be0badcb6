"""Shared fixtures for qdamcp tests."""

import pytest

from qda_mcp.config import reset_config
from qda_mcp.store import QDAStore, StateFile, TextSelection

QDA_ENV_VARS = (
    "QDA_ROOT",
    "QDA_PORT",
    "QDA_STATE",
    "QDA_AUTH_TOKEN",
    "QDA_READ_ONLY",
    "QDA_AUTOSAVE_INTERVAL",
    "QDA_MAX_ANALYTICS_LOGS",
    "QDA_AI_API_KEY",
    "QDA_AI_API_URL",
    "QDA_AI_MODEL",
    "QDA_AI_TIMEOUT",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Run every test without QDA_* variables from the outer environment."""
    for name in QDA_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    reset_config()
    yield
    reset_config()


@pytest.fixture
def store(tmp_path):
    """Empty store backed by a state file in tmp_path."""
    return QDAStore(StateFile(tmp_path / "state.json"))


@pytest.fixture
def study(store):
    """Controller of a fresh study inside a workspace."""
    workspace, _ = store.create_workspace("Lab", "Ada Lovelace")
    created = store.create_study("Remote Work", workspace_id=workspace.id)
    return store.study(created.id)


@pytest.fixture
def select():
    """Build the TextSelection for document.content[start:end]."""

    def make(document, start: int, end: int) -> TextSelection:
        return TextSelection(
            text=document.content[start:end],
            start_offset=start,
            end_offset=end,
            document_id=document.id,
        )

    return make
