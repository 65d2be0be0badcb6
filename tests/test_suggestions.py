"""Tests for the AI suggestion client and its local fallbacks."""

import json

import httpx
import pytest

from qda_mcp.config import Config
from qda_mcp.suggestions import (
    SuggestionClient,
    heuristic_refinements,
    heuristic_themes,
    keyword_code_suggestions,
    template_summary,
)


def chat_response(content: str) -> httpx.Response:
    return httpx.Response(200, json={"choices": [{"message": {"content": content}}]})


@pytest.fixture
def config(monkeypatch):
    monkeypatch.setenv("QDA_AI_API_KEY", "sk-test")
    monkeypatch.setenv("QDA_AI_API_URL", "https://ai.example.test/v1/chat/completions")
    monkeypatch.setenv("QDA_AI_MODEL", "test-model")
    return Config.from_env()


def client_answering(config, handler) -> SuggestionClient:
    return SuggestionClient(config, transport=httpx.MockTransport(handler))


class TestKeywordFallback:
    """Tests for keyword_code_suggestions."""

    def test_confidence_grows_with_matches(self):
        result = keyword_code_suggestions(
            "Too much stress and anxiety, I feel lonely. One meeting a day.", []
        )

        assert [s.code for s in result] == ["Mental Health", "Communication"]
        assert result[0].confidence == 0.95
        assert result[1].confidence == pytest.approx(0.65)
        assert result[1].reason == "Contains keywords: meeting"

    def test_existing_match(self):
        result = keyword_code_suggestions("family time", ["Balance", "Stress"])
        assert result[0].code == "Work-Life Balance"
        assert result[0].existing_match == "Balance"

    def test_no_keywords(self):
        assert keyword_code_suggestions("The weather was nice.", []) == []


class TestHeuristics:
    """Tests for the refinement, theme and summary fallbacks."""

    def test_refinements_merge_overlapping_names(self):
        codes = [{"name": "Stress"}, {"name": "Work stress"}, {"name": "Commute"}]
        result = heuristic_refinements(codes)
        assert len(result) == 1
        assert result[0].type == "merge"
        assert result[0].codes == ["Stress", "Work stress"]

    def test_themes_need_two_codes(self):
        codes = [{"name": "Video calls"}, {"name": "Email overload"}, {"name": "Stress"}]
        result = heuristic_themes(codes)
        assert [t.name for t in result] == ["Communication"]
        assert result[0].suggested_codes == ["Video calls", "Email overload"]
        assert result[0].to_dict()["suggestedCodes"] == ["Video calls", "Email overload"]

    def test_template_summary(self):
        summary = template_summary("Stress", ["a" * 150, "b", "c", "d"], ["Interview 1"])
        assert summary.meaning == (
            '"Stress" captures instances related to stress. '
            "Found 4 time(s) across 1 document(s)."
        )
        assert summary.key_excerpts == ["a" * 100 + "...", "b...", "c..."]
        assert summary.document_presence == "Found in: Interview 1"


class TestSuggestionClient:
    """Tests for SuggestionClient against a mocked service."""

    def test_disabled_without_key(self):
        client = SuggestionClient(Config.from_env())
        assert client.enabled is False
        assert client.suggest_codes("video call", [])[0].code == "Communication"

    def test_suggest_codes_request_and_ranking(self, config):
        requests = []

        def handler(request):
            requests.append(request)
            return chat_response(json.dumps([
                {"code": "Isolation", "confidence": 0.6, "reason": "alone"},
                {"code": "Stress", "confidence": 1.7, "reason": "tense", "existingMatch": "Stress"},
            ]))

        result = client_answering(config, handler).suggest_codes(
            "I feel alone", ["Stress"], document_text="x" * 5000
        )

        assert [s.code for s in result] == ["Stress", "Isolation"]
        assert result[0].confidence == 1.0
        assert result[0].existing_match == "Stress"

        request = requests[0]
        assert str(request.url) == "https://ai.example.test/v1/chat/completions"
        assert request.headers["Authorization"] == "Bearer sk-test"
        body = json.loads(request.content)
        assert body["model"] == "test-model"
        assert body["max_tokens"] == 1000
        assert "x" * 3000 + "..." in body["messages"][1]["content"]
        assert "x" * 3001 not in body["messages"][1]["content"]

    def test_fenced_json_answer(self, config):
        answer = '```json\n[{"code": "Commute", "confidence": 0.8, "reason": "travel"}]\n```'
        client = client_answering(config, lambda request: chat_response(answer))
        assert [s.code for s in client.suggest_codes("my commute", [])] == ["Commute"]

    def test_http_error_falls_back(self, config, caplog):
        client = client_answering(config, lambda request: httpx.Response(500, text="boom"))
        result = client.suggest_codes("video call", [])
        assert result[0].code == "Communication"
        assert "HTTP 500" in caplog.text

    def test_network_error_falls_back(self, config):
        def handler(request):
            raise httpx.ConnectError("unreachable", request=request)

        client = client_answering(config, handler)
        assert client.suggest_themes([{"name": "Stress"}, {"name": "Anxiety"}])[0].name == (
            "Mental Health"
        )

    def test_invalid_json_falls_back(self, config):
        client = client_answering(config, lambda request: chat_response("no idea"))
        codes = [{"name": "Stress"}, {"name": "Work stress"}]
        assert client.suggest_refinements(codes)[0].type == "merge"

    def test_unexpected_shape_falls_back(self, config):
        client = client_answering(config, lambda request: httpx.Response(200, json={"x": 1}))
        summary = client.summarize("code", "Stress", ["tense"], ["Interview 1"])
        assert summary.document_presence == "Found in: Interview 1"

    def test_refinements_skip_unknown_types(self, config):
        answer = json.dumps([
            {"type": "delete", "codes": ["A"], "suggestion": "s", "reason": "r"},
            {"type": "rename", "codes": ["B"], "suggestion": "Call it C", "reason": "r"},
        ])
        client = client_answering(config, lambda request: chat_response(answer))
        result = client.suggest_refinements([{"name": "A"}, {"name": "B"}])
        assert [r.type for r in result] == ["rename"]
        assert result[0].to_dict()["suggestion"] == "Call it C"

    def test_themes_and_summary_from_service(self, config):
        answers = iter([
            json.dumps([{"name": "Place", "description": "d", "suggestedCodes": ["Home"]}]),
            json.dumps({"meaning": "m", "keyExcerpts": ["k"], "documentPresence": "p"}),
        ])
        client = client_answering(config, lambda request: chat_response(next(answers)))

        themes = client.suggest_themes([{"name": "Home"}])
        summary = client.summarize("theme", "Place", ["at home"], ["Interview 1"])

        assert themes[0].to_dict() == {
            "name": "Place",
            "description": "d",
            "suggestedCodes": ["Home"],
            "summary": "",
        }
        assert summary.to_dict() == {
            "meaning": "m",
            "keyExcerpts": ["k"],
            "documentPresence": "p",
        }
