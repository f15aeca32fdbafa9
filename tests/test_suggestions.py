import json
import os
import sys
import unittest
from pathlib import Path
from unittest import mock

import requests

PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = PROJECT_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from api_models import GroqModel, Model, ModelRequestError, create_model
from constants import GROQ_API_URL, GROQ_MODEL
from reconcile import reconcile
from suggestions import (
    HEURISTIC_SOURCE,
    SuggestionService,
    build_request_payload,
    heuristic_prompt_suggestions,
    parse_model_suggestions,
)

SNAPSHOT = {
    "notes": [{"id": "n1", "title": "Auth", "content": "JWT refresh flow", "tags": ["auth"]}],
    "prompts": [
        {"text": "add refresh token rotation", "tool": "claude", "sessionLabel": "auth", "outcome": "partial"},
        {"text": "write tests for token expiry", "tool": "claude", "sessionLabel": "auth"},
    ],
}


class FakeModel(Model):
    provider = "groq"

    def __init__(self, reply="", error=None):
        super().__init__("fake")
        self.reply = reply
        self.error = error
        self.calls = []

    def call_model(self, user_prompt, system_prompt=None):
        self.calls.append((user_prompt, system_prompt))
        if self.error is not None:
            raise self.error
        return self.reply


class HeuristicSuggestionTests(unittest.TestCase):
    def test_templates_focus_on_latest_prompt(self) -> None:
        state = reconcile(SNAPSHOT)
        items = heuristic_prompt_suggestions(state.notes, state.prompts, state.sessions)

        self.assertEqual(len(items), 6)
        self.assertIn("write tests for token expiry", items[0].prompt)
        self.assertEqual(items[0].tool, "claude")
        self.assertEqual(items[0].session_label, "auth")

    def test_templates_without_context(self) -> None:
        items = heuristic_prompt_suggestions(limit=3)

        self.assertEqual(len(items), 3)
        self.assertIn("current coding task", items[0].prompt)
        self.assertEqual(items[0].session_label, "delivery-slice")


class ParseSuggestionTests(unittest.TestCase):
    def test_fenced_json_array(self) -> None:
        content = '```json\n[{"prompt": "Split the auth service", "reason": "smaller", "tool": "claude"}, {"prompt": ""}]\n```'
        items = parse_model_suggestions(content)

        self.assertEqual(len(items), 1)
        self.assertEqual(items[0].prompt, "Split the auth service")
        self.assertEqual(items[0].tool, "claude")

    def test_free_form_lines(self) -> None:
        items = parse_model_suggestions("1. Add retry logic\n- Log the failures\n\n")

        self.assertEqual([item.prompt for item in items], ["Add retry logic", "Log the failures"])
        self.assertEqual(items[0].reason, "Parsed from free-form model output.")

    def test_limit_and_empty(self) -> None:
        content = json.dumps([{"prompt": f"p{index}"} for index in range(10)])

        self.assertEqual(len(parse_model_suggestions(content, limit=4)), 4)
        self.assertEqual(parse_model_suggestions("   "), [])

    def test_request_payload_is_bounded(self) -> None:
        state = reconcile(
            {
                "notes": [{"id": f"n{index}", "content": "x" * 500} for index in range(8)],
                "prompts": [{"text": f"prompt {index}"} for index in range(15)],
            }
        )
        payload = build_request_payload(state.notes, state.prompts, state.sessions)

        self.assertEqual(len(payload["notes"]), 5)
        self.assertEqual(len(payload["notes"][0]["content"]), 223)
        self.assertEqual(len(payload["prompts"]), 10)
        self.assertEqual(payload["prompts"][0]["text"], "prompt 5")


class SuggestionServiceTests(unittest.TestCase):
    def test_no_model_uses_heuristics(self) -> None:
        result = SuggestionService(model=None, auto_create=False).evolve(SNAPSHOT)

        self.assertEqual(result.source, HEURISTIC_SOURCE)
        self.assertEqual(len(result.items), 6)
        self.assertIn("GROQ_API_KEY", result.message)

    def test_model_reply_is_used(self) -> None:
        model = FakeModel(reply='[{"prompt": "Rotate keys on logout", "sessionLabel": "auth"}]')
        result = SuggestionService(model=model).evolve(SNAPSHOT)

        self.assertEqual(result.source, "groq")
        self.assertEqual([item.prompt for item in result.items], ["Rotate keys on logout"])
        self.assertEqual(result.message, "Generated by Groq prompt-evolution model.")
        user_prompt, system_prompt = model.calls[0]
        self.assertIn("at most 6 items", system_prompt)
        self.assertEqual(json.loads(user_prompt)["prompts"][-1]["text"], "write tests for token expiry")

    def test_http_error_falls_back(self) -> None:
        model = FakeModel(error=ModelRequestError("unavailable", status_code=503))

        with self.assertLogs("suggestions", level="WARNING"):
            result = SuggestionService(model=model).evolve(SNAPSHOT)

        self.assertEqual(result.source, HEURISTIC_SOURCE)
        self.assertEqual(result.message, "Groq returned HTTP 503, using heuristic fallback.")

    def test_network_error_falls_back(self) -> None:
        model = FakeModel(error=ModelRequestError("connection reset"))

        with self.assertLogs("suggestions", level="WARNING"):
            result = SuggestionService(model=model).evolve(SNAPSHOT)

        self.assertEqual(result.message, "Prompt evolution request failed, using heuristic fallback.")

    def test_empty_reply_falls_back(self) -> None:
        result = SuggestionService(model=FakeModel(reply="")).evolve(SNAPSHOT)

        self.assertEqual(result.source, HEURISTIC_SOURCE)
        self.assertIn("empty or invalid", result.message)

    def test_result_serializes(self) -> None:
        payload = SuggestionService(model=None, auto_create=False).evolve(None).to_dict()

        self.assertEqual(payload["source"], "heuristic")
        self.assertEqual(set(payload["items"][0]), {"prompt", "reason", "tool", "sessionLabel"})


class GroqModelTests(unittest.TestCase):
    def _response(self, ok=True, status_code=200, body=None):
        response = mock.Mock(ok=ok, status_code=status_code)
        response.json.return_value = body if body is not None else {}
        return response

    def test_posts_chat_completion(self) -> None:
        session = mock.Mock()
        session.post.return_value = self._response(body={"choices": [{"message": {"content": "[]"}}]})
        model = GroqModel("key-123", session=session)

        self.assertEqual(model.call_model("hello", system_prompt="rules"), "[]")

        args, kwargs = session.post.call_args
        self.assertEqual(args[0], GROQ_API_URL)
        self.assertEqual(kwargs["headers"]["Authorization"], "Bearer key-123")
        self.assertEqual(kwargs["json"]["model"], GROQ_MODEL)
        self.assertEqual(kwargs["json"]["temperature"], 0.5)
        self.assertEqual(kwargs["json"]["max_tokens"], 700)
        self.assertEqual([message["role"] for message in kwargs["json"]["messages"]], ["system", "user"])

    def test_http_error_carries_status(self) -> None:
        session = mock.Mock()
        session.post.return_value = self._response(ok=False, status_code=429)

        with self.assertRaises(ModelRequestError) as ctx:
            GroqModel("key", session=session).call_model("hello")
        self.assertEqual(ctx.exception.status_code, 429)

    def test_non_object_body_is_a_request_error(self) -> None:
        for body in (["not", "an", "object"], {"choices": ["text"]}, {"choices": []}):
            with self.subTest(body=body):
                session = mock.Mock()
                session.post.return_value = self._response(body=body)

                with self.assertRaises(ModelRequestError):
                    GroqModel("key", session=session).call_model("hello")

    def test_unexpected_body_falls_back_to_heuristics(self) -> None:
        session = mock.Mock()
        session.post.return_value = self._response(body=["not", "an", "object"])

        with self.assertLogs("suggestions", level="WARNING"):
            result = SuggestionService(model=GroqModel("key", session=session)).evolve({})

        self.assertEqual(result.source, HEURISTIC_SOURCE)
        self.assertEqual(result.message, "Prompt evolution request failed, using heuristic fallback.")

    def test_transport_error_is_wrapped(self) -> None:
        session = mock.Mock()
        session.post.side_effect = requests.ConnectionError("down")

        with self.assertRaises(ModelRequestError) as ctx:
            GroqModel("key", session=session).call_model("hello")
        self.assertIsNone(ctx.exception.status_code)

    def test_missing_key_rejected(self) -> None:
        with self.assertRaises(EnvironmentError):
            GroqModel("")


class CreateModelTests(unittest.TestCase):
    def test_no_keys_means_no_model(self) -> None:
        with mock.patch.dict(os.environ, {}, clear=True):
            self.assertIsNone(create_model(""))

    def test_groq_key_selects_groq(self) -> None:
        with mock.patch.dict(os.environ, {"GROQ_API_KEY": "abc"}, clear=True):
            model = create_model("")

        self.assertIsInstance(model, GroqModel)
        self.assertEqual(model.provider, "groq")

    def test_gemini_key_selects_gemini(self) -> None:
        with mock.patch.dict(os.environ, {"GEMINI_API_KEY": "abc"}, clear=True):
            with mock.patch("api_models.genai") as fake_genai:
                model = create_model("")

        fake_genai.configure.assert_called_once_with(api_key="abc")
        self.assertEqual(model.provider, "gemini")

    def test_unknown_provider_logged(self) -> None:
        with mock.patch.dict(os.environ, {"GROQ_API_KEY": "abc"}, clear=True):
            with self.assertLogs("api_models", level="WARNING"):
                self.assertIsNone(create_model("openai"))


if __name__ == "__main__":
    unittest.main()
