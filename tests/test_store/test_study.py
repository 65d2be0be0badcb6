"""Tests for the study controller."""

import pytest

from qda_mcp.store import (
    DuplicateCodeNameError,
    NotFoundError,
    StudyController,
    TextSelection,
    ValidationError,
)
from qda_mcp.store.models import Study


def assert_stats_consistent(controller: StudyController):
    """Every code's cached statistics match a scan of the excerpts."""
    excerpts = controller.list_excerpts()
    for code in controller.list_codes():
        tagged = [e for e in excerpts if code.id in e.code_ids]
        assert code.frequency == len(tagged), code.name
        assert code.document_count == len({e.document_id for e in tagged}), code.name
        assert sorted(code.excerpt_ids) == sorted(e.id for e in tagged), code.name


@pytest.fixture
def doc(study):
    return study.add_document("Interview 1", "hello world, I like working from home")


class TestDocuments:
    """Tests for adding and removing documents."""

    def test_add_document_sets_size(self, study):
        document = study.add_document("Notes", "héllo")
        assert document.size == len("héllo".encode("utf-8"))
        assert document.type == "txt"
        assert study.get_document(document.id).content == "héllo"

    def test_add_document_rejects_unknown_type(self, study):
        with pytest.raises(ValidationError, match="Invalid document type"):
            study.add_document("Notes", "text", type="odt")

    def test_remove_document_cascades(self, study, doc, select):
        code = study.add_code("Greeting")
        excerpt = study.add_excerpt(select(doc, 0, 5), [code.id])
        study.add_memo("about the excerpt", "excerpt", excerpt.id)
        study.add_memo("about the interview", "document", doc.id)

        study.remove_document(doc.id)

        assert study.list_documents() == []
        assert study.list_excerpts() == []
        assert study.list_memos() == []
        assert study.get_code(code.id).frequency == 0
        assert study.get_code(code.id).document_count == 0

    def test_remove_unknown_document(self, study):
        with pytest.raises(NotFoundError):
            study.remove_document("missing")


class TestCodes:
    """Tests for code creation, renaming and validation."""

    def test_add_code_defaults(self, study):
        code = study.add_code("Greeting")
        assert code.level == "main"
        assert code.parent_id is None
        assert code.frequency == 0
        assert code.document_count == 0
        assert code.excerpt_ids == []
        assert code.color == "#3b82f6"

    def test_duplicate_name_is_case_insensitive(self, study):
        study.add_code("Greeting")
        with pytest.raises(DuplicateCodeNameError):
            study.add_code("  greeting ")
        assert len(study.list_codes()) == 1

    def test_empty_name_rejected(self, study):
        with pytest.raises(ValidationError):
            study.add_code("   ")

    def test_hierarchy_levels(self, study):
        main = study.add_code("Work")
        child = study.add_code("Focus", parent_id=main.id, level="child")
        sub = study.add_code("Deep work", parent_id=child.id, level="subchild")
        assert child.color == "#22c55e"
        assert sub.color == "#eab308"
        assert [c.id for c in study.child_codes(main.id)] == [child.id]

    def test_child_requires_main_parent(self, study):
        main = study.add_code("Work")
        child = study.add_code("Focus", parent_id=main.id, level="child")
        with pytest.raises(ValidationError):
            study.add_code("Orphan", level="child")
        with pytest.raises(ValidationError):
            study.add_code("Wrong", parent_id=child.id, level="child")
        with pytest.raises(ValidationError):
            study.add_code("Main with parent", parent_id=main.id)

    def test_rename_code(self, study):
        code = study.add_code("Greting")
        assert study.rename_code(code.id, "Greeting") is True
        assert study.get_code(code.id).name == "Greeting"

    def test_rename_collision_is_noop(self, study):
        first = study.add_code("Greeting")
        second = study.add_code("Farewell")
        assert study.rename_code(second.id, "GREETING") is False
        assert study.get_code(second.id).name == "Farewell"
        assert study.get_code(first.id).name == "Greeting"

    def test_rename_keeps_statistics(self, study, doc, select):
        code = study.add_code("Greeting")
        study.add_excerpt(select(doc, 0, 5), [code.id])
        study.rename_code(code.id, "Hello")
        renamed = study.get_code(code.id)
        assert renamed.frequency == 1
        assert renamed.document_count == 1

    def test_returned_codes_are_copies(self, study):
        code = study.add_code("Greeting")
        code.frequency = 99
        assert study.get_code(code.id).frequency == 0


class TestExcerpts:
    """Tests for excerpt creation and code assignment."""

    def test_hello_world_scenario(self, store):
        created = store.create_study("S")
        controller = store.study(created.id)
        document = controller.add_document("D", "hello world")
        greeting = controller.add_code("Greeting")

        controller.add_excerpt(
            TextSelection(text="hello", start_offset=0, end_offset=5, document_id=document.id),
            [greeting.id],
        )

        code = controller.get_code(greeting.id)
        assert code.frequency == 1
        assert code.document_count == 1

    def test_add_excerpt_links_document(self, study, doc, select):
        code = study.add_code("Greeting")
        excerpt = study.add_excerpt(select(doc, 0, 5), [code.id], memo="first")
        assert excerpt.text == "hello"
        assert excerpt.memo == "first"
        assert study.get_document(doc.id).excerpt_ids == [excerpt.id]
        assert study.get_code(code.id).excerpt_ids == [excerpt.id]

    def test_add_excerpt_requires_codes(self, study, doc, select):
        with pytest.raises(ValidationError, match="at least one code"):
            study.add_excerpt(select(doc, 0, 5), [])
        assert study.list_excerpts() == []

    def test_add_excerpt_with_new_code(self, study, doc, select):
        excerpt = study.add_excerpt(select(doc, 0, 5), [], new_code_name="Greeting")
        code = study.find_code_by_name("greeting")
        assert code is not None
        assert excerpt.code_ids == [code.id]
        assert code.frequency == 1

    def test_add_excerpt_rejects_bad_offsets(self, study, doc):
        code = study.add_code("Greeting")
        bad = TextSelection(text="hello", start_offset=5, end_offset=5, document_id=doc.id)
        with pytest.raises(ValidationError, match="Invalid offsets"):
            study.add_excerpt(bad, [code.id])
        too_long = TextSelection(text="x", start_offset=0, end_offset=500, document_id=doc.id)
        with pytest.raises(ValidationError):
            study.add_excerpt(too_long, [code.id])

    def test_add_excerpt_rejects_empty_selection(self, study, doc):
        code = study.add_code("Greeting")
        empty = TextSelection(text="", start_offset=0, end_offset=5, document_id=doc.id)
        with pytest.raises(ValidationError, match="empty"):
            study.add_excerpt(empty, [code.id])

    def test_add_excerpt_unknown_code_leaves_state(self, study, doc, select):
        with pytest.raises(NotFoundError):
            study.add_excerpt(select(doc, 0, 5), ["nope"])
        assert study.list_excerpts() == []

    def test_duplicate_code_ids_collapse(self, study, doc, select):
        code = study.add_code("Greeting")
        excerpt = study.add_excerpt(select(doc, 0, 5), [code.id, code.id])
        assert excerpt.code_ids == [code.id]
        assert study.get_code(code.id).frequency == 1

    def test_remove_excerpt_updates_codes(self, study, doc, select):
        a = study.add_code("A")
        b = study.add_code("B")
        excerpt = study.add_excerpt(select(doc, 0, 5), [a.id, b.id])
        study.add_excerpt(select(doc, 6, 11), [a.id])

        study.remove_excerpt(excerpt.id)

        assert study.get_code(a.id).frequency == 1
        assert study.get_code(b.id).frequency == 0
        assert study.get_code(b.id).document_count == 0
        assert excerpt.id not in study.get_document(doc.id).excerpt_ids

    def test_assign_and_remove_are_noops_when_in_state(self, study, doc, select):
        a = study.add_code("A")
        b = study.add_code("B")
        excerpt = study.add_excerpt(select(doc, 0, 5), [a.id])

        assert study.assign_code_to_excerpt(excerpt.id, b.id) is True
        assert study.assign_code_to_excerpt(excerpt.id, b.id) is False
        assert study.get_excerpt(excerpt.id).code_ids == [a.id, b.id]
        assert study.get_code(b.id).frequency == 1

        assert study.remove_code_from_excerpt(excerpt.id, b.id) is True
        assert study.remove_code_from_excerpt(excerpt.id, b.id) is False
        assert study.get_code(b.id).frequency == 0

    def test_removing_last_code_keeps_excerpt(self, study, doc, select):
        code = study.add_code("A")
        excerpt = study.add_excerpt(select(doc, 0, 5), [code.id])
        study.remove_code_from_excerpt(excerpt.id, code.id)
        assert study.get_excerpt(excerpt.id).code_ids == []

    def test_document_count_counts_distinct_documents(self, study, doc, select):
        other = study.add_document("Interview 2", "hello again")
        code = study.add_code("Greeting")
        study.add_excerpt(select(doc, 0, 5), [code.id])
        study.add_excerpt(select(doc, 6, 11), [code.id])
        study.add_excerpt(select(other, 0, 5), [code.id])

        stats = study.get_code(code.id)
        assert stats.frequency == 3
        assert stats.document_count == 2
        assert study.code_frequency(code.id) == {"excerptCount": 3, "documentCount": 2}

    def test_excerpts_for_document_in_offset_order(self, study, doc, select):
        code = study.add_code("A")
        later = study.add_excerpt(select(doc, 6, 11), [code.id])
        earlier = study.add_excerpt(select(doc, 0, 5), [code.id])
        assert [e.id for e in study.excerpts_for_document(doc.id)] == [earlier.id, later.id]

    def test_update_excerpt_memo(self, study, doc, select):
        code = study.add_code("A")
        excerpt = study.add_excerpt(select(doc, 0, 5), [code.id])
        assert study.update_excerpt_memo(excerpt.id, "note").memo == "note"
        assert study.update_excerpt_memo(excerpt.id, "").memo is None


class TestMerge:
    """Tests for merge_codes."""

    def test_merge_unions_excerpts(self, study, doc, select):
        a = study.add_code("A")
        b = study.add_code("B")
        e1 = study.add_excerpt(select(doc, 0, 5), [a.id])
        e2 = study.add_excerpt(select(doc, 6, 11), [a.id, b.id])
        other = study.add_document("Interview 2", "hello again")
        e3 = study.add_excerpt(select(other, 0, 5), [b.id])

        merged = study.merge_codes(a.id, b.id)

        assert sorted(merged.excerpt_ids) == sorted([e1.id, e2.id, e3.id])
        assert merged.frequency == 3
        assert merged.document_count == 2
        with pytest.raises(NotFoundError):
            study.get_code(a.id)
        for excerpt_id in (e1.id, e2.id, e3.id):
            code_ids = study.get_excerpt(excerpt_id).code_ids
            assert a.id not in code_ids
            assert code_ids.count(b.id) == 1
        assert_stats_consistent(study)

    def test_merge_moves_themes_and_memos(self, study):
        a = study.add_code("A")
        b = study.add_code("B")
        theme = study.add_theme("T")
        study.add_code_to_theme(theme.id, a.id)
        study.add_code_to_theme(theme.id, b.id)
        memo = study.add_memo("about A", "code", a.id)

        study.merge_codes(a.id, b.id)

        assert study.get_theme(theme.id).code_ids == [b.id]
        moved = study.list_memos()[0]
        assert moved.id == memo.id
        assert moved.target_id == b.id

    def test_merge_reparents_children(self, study):
        a = study.add_code("A")
        b = study.add_code("B")
        child = study.add_code("A child", parent_id=a.id, level="child")
        study.merge_codes(a.id, b.id)
        assert study.get_code(child.id).parent_id == b.id

    def test_merge_with_children_needs_same_level(self, study):
        a = study.add_code("A")
        b = study.add_code("B")
        study.add_code("A child", parent_id=a.id, level="child")
        b_child = study.add_code("B child", parent_id=b.id, level="child")
        with pytest.raises(ValidationError):
            study.merge_codes(a.id, b_child.id)
        assert study.get_code(a.id).name == "A"

    def test_merge_into_itself_rejected(self, study):
        a = study.add_code("A")
        with pytest.raises(ValidationError):
            study.merge_codes(a.id, a.id)


class TestDeleteAndUndo:
    """Tests for delete_code and undo_delete_code."""

    def test_delete_with_child_then_undo(self, study, doc, select):
        main = study.add_code("Work")
        child = study.add_code("Focus", parent_id=main.id, level="child")
        other = study.add_code("Other")
        excerpt = study.add_excerpt(select(doc, 0, 5), [main.id, child.id, other.id])

        removed = study.delete_code(main.id)

        assert removed == [main.id, child.id]
        assert study.get_excerpt(excerpt.id).code_ids == [other.id]
        assert {c.id for c in study.list_codes()} == {other.id}

        restored = study.undo_delete_code()

        assert restored.id == main.id
        assert {c.id for c in study.list_codes()} == {main.id, other.id}
        assert study.get_excerpt(excerpt.id).code_ids == [other.id, main.id]
        assert study.get_code(main.id).frequency == 1
        assert_stats_consistent(study)

    def test_delete_cascades_through_all_levels(self, study):
        main = study.add_code("Work")
        child = study.add_code("Focus", parent_id=main.id, level="child")
        sub = study.add_code("Deep work", parent_id=child.id, level="subchild")
        removed = study.delete_code(main.id)
        assert set(removed) == {main.id, child.id, sub.id}
        assert study.list_codes() == []

    def test_delete_strips_themes_and_memos(self, study):
        code = study.add_code("A")
        theme = study.add_theme("T")
        study.add_code_to_theme(theme.id, code.id)
        study.add_memo("memo", "code", code.id)

        study.delete_code(code.id)

        assert study.get_theme(theme.id).code_ids == []
        assert study.list_memos() == []

        study.undo_delete_code()
        assert study.get_theme(theme.id).code_ids == [code.id]
        assert study.memo_for("code", code.id).content == "memo"

    def test_undo_on_empty_stack(self, study):
        assert study.undo_delete_code() is None

    def test_undo_is_lifo(self, study):
        a = study.add_code("A")
        b = study.add_code("B")
        study.delete_code(a.id)
        study.delete_code(b.id)
        assert study.undo_depth == 2
        assert study.undo_delete_code().id == b.id
        assert study.undo_delete_code().id == a.id
        assert study.undo_depth == 0

    def test_undo_name_clash_keeps_record(self, study):
        a = study.add_code("A")
        study.delete_code(a.id)
        study.add_code("a")
        with pytest.raises(DuplicateCodeNameError):
            study.undo_delete_code()
        assert study.undo_depth == 1

    def test_undo_stacks_are_per_study(self, store):
        first = store.study(store.create_study("One").id)
        second = store.study(store.create_study("Two").id)
        code = first.add_code("A")
        first.delete_code(code.id)
        assert second.undo_delete_code() is None
        assert first.undo_delete_code().id == code.id


class TestThemes:
    """Tests for theme operations."""

    def test_palette_rotates(self, study):
        first = study.add_theme("One")
        second = study.add_theme("Two")
        explicit = study.add_theme("Three", color="#000000")
        assert first.color == "#ec4899"
        assert second.color == "#8b5cf6"
        assert explicit.color == "#000000"

    def test_add_code_to_theme_is_idempotent(self, study):
        code = study.add_code("A")
        theme = study.add_theme("T")
        study.add_code_to_theme(theme.id, code.id)
        once = study.get_theme(theme.id).code_ids
        study.add_code_to_theme(theme.id, code.id)
        assert study.get_theme(theme.id).code_ids == once == [code.id]

    def test_remove_code_from_theme_is_idempotent(self, study):
        code = study.add_code("A")
        theme = study.add_theme("T")
        study.add_code_to_theme(theme.id, code.id)
        study.remove_code_from_theme(theme.id, code.id)
        study.remove_code_from_theme(theme.id, code.id)
        assert study.get_theme(theme.id).code_ids == []

    def test_move_code_between_themes(self, study):
        code = study.add_code("A")
        source = study.add_theme("From")
        target = study.add_theme("To")
        study.add_code_to_theme(source.id, code.id)

        study.move_code_between_themes(code.id, source.id, target.id)

        assert study.get_theme(source.id).code_ids == []
        assert study.get_theme(target.id).code_ids == [code.id]

    def test_move_to_unknown_theme_changes_nothing(self, study):
        code = study.add_code("A")
        source = study.add_theme("From")
        study.add_code_to_theme(source.id, code.id)
        with pytest.raises(NotFoundError):
            study.move_code_between_themes(code.id, source.id, "missing")
        assert study.get_theme(source.id).code_ids == [code.id]

    def test_delete_theme_cascades(self, study):
        root = study.add_theme("Root")
        nested = study.add_theme("Nested", parent_id=root.id)
        deeper = study.add_theme("Deeper", parent_id=nested.id)
        study.add_memo("theme memo", "theme", nested.id)

        removed = study.delete_theme(root.id)

        assert removed == [root.id, nested.id, deeper.id]
        assert study.list_themes() == []
        assert study.list_memos() == []

    def test_update_theme(self, study):
        theme = study.add_theme("T")
        updated = study.update_theme(theme.id, name="Renamed", memo="notes")
        assert updated.name == "Renamed"
        assert updated.memo == "notes"


class TestMemos:
    """Tests for memos."""

    def test_one_memo_per_target(self, study):
        code = study.add_code("A")
        first = study.add_memo("first", "code", code.id)
        second = study.add_memo("second", "code", code.id)
        assert first.id == second.id
        assert len(study.list_memos()) == 1
        assert study.memo_for("code", code.id).content == "second"

    def test_memo_target_must_exist(self, study):
        with pytest.raises(NotFoundError):
            study.add_memo("text", "code", "missing")
        with pytest.raises(ValidationError):
            study.add_memo("text", "study", "x")

    def test_update_and_delete(self, study):
        code = study.add_code("A")
        memo = study.add_memo("first", "code", code.id)
        assert study.update_memo(memo.id, "changed").content == "changed"
        study.delete_memo(memo.id)
        assert study.list_memos() == []


class TestInvariant:
    """Code statistics stay consistent across mixed operations."""

    def test_mixed_sequence(self, study, select):
        d1 = study.add_document("One", "alpha beta gamma delta")
        d2 = study.add_document("Two", "epsilon zeta eta theta")
        a = study.add_code("A")
        b = study.add_code("B")
        c = study.add_code("C", parent_id=a.id, level="child")

        e1 = study.add_excerpt(select(d1, 0, 5), [a.id, b.id])
        e2 = study.add_excerpt(select(d1, 6, 10), [c.id])
        e3 = study.add_excerpt(select(d2, 0, 7), [b.id])
        assert_stats_consistent(study)

        study.assign_code_to_excerpt(e3.id, c.id)
        assert_stats_consistent(study)
        study.remove_code_from_excerpt(e1.id, b.id)
        assert_stats_consistent(study)
        study.remove_excerpt(e2.id)
        assert_stats_consistent(study)
        d = study.add_code("D")
        study.add_excerpt(select(d2, 8, 12), [d.id, b.id])
        study.merge_codes(d.id, b.id)
        assert_stats_consistent(study)
        study.delete_code(a.id)
        assert_stats_consistent(study)
        study.undo_delete_code()
        assert_stats_consistent(study)


class TestChangeHooks:
    """Tests for the change and logging callbacks."""

    def test_on_change_called_for_writes(self):
        calls = []
        controller = StudyController(Study(id="s1", title="S"), on_change=lambda: calls.append(1))
        controller.add_document("D", "hello")
        controller.list_documents()
        assert calls == [1]

    def test_log_action_receives_study_id(self, select):
        logged = []
        controller = StudyController(
            Study(id="s1", title="S"),
            log_action=lambda action, details: logged.append((action, details)),
        )
        document = controller.add_document("D", "hello world")
        code = controller.add_code("Greeting")
        controller.add_excerpt(select(document, 0, 5), [code.id])

        actions = [action for action, _ in logged]
        assert actions == ["code_created", "excerpt_created", "code_applied"]
        assert all(details["studyId"] == "s1" for _, details in logged)
        assert logged[1][1]["excerptLength"] == 5
