import unittest
from types import SimpleNamespace
from unittest.mock import Mock, patch


def _completion(content):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


class SummarizerTests(unittest.TestCase):
    def test_summarize_returns_stripped_title(self):
        from issuerelay.services.summarizer import TITLE_PROMPT, Summarizer

        client = Mock()
        client.chat.completions.create.return_value = _completion(' "Fix crash on startup" \n')

        title = Summarizer(model="test-model", client=client).summarize("fix crash")

        self.assertEqual(title, "Fix crash on startup")
        kwargs = client.chat.completions.create.call_args.kwargs
        self.assertEqual(kwargs["model"], "test-model")
        self.assertEqual(kwargs["messages"][0], {"role": "system", "content": TITLE_PROMPT})
        self.assertEqual(kwargs["messages"][1], {"role": "user", "content": "fix crash"})

    def test_provider_error_is_wrapped(self):
        from issuerelay.errors import ExternalServiceError
        from issuerelay.services.summarizer import Summarizer

        client = Mock()
        client.chat.completions.create.side_effect = TimeoutError("read timeout")

        with self.assertRaises(ExternalServiceError) as ctx:
            Summarizer(client=client).summarize("x")
        self.assertEqual(ctx.exception.service, "summarizer")

    def test_empty_completion_is_an_error(self):
        from issuerelay.errors import ExternalServiceError
        from issuerelay.services.summarizer import Summarizer

        client = Mock()
        client.chat.completions.create.return_value = _completion("   ")

        with self.assertRaises(ExternalServiceError):
            Summarizer(client=client).summarize("x")

    def test_build_summarizer_without_key(self):
        from issuerelay.services import summarizer

        with patch.object(summarizer.settings, "openai_api_key", None):
            self.assertIsNone(summarizer.build_summarizer())

    def test_sdk_client_is_configured_without_retries(self):
        from issuerelay.services import summarizer

        with patch("issuerelay.services.summarizer.openai.OpenAI") as ctor:
            summarizer.Summarizer(api_key="sk-test", timeout=3)

        ctor.assert_called_once_with(api_key="sk-test", timeout=3, max_retries=0)


if __name__ == "__main__":
    unittest.main()
