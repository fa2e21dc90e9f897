import threading
import unittest
from unittest.mock import MagicMock, Mock

import httpx
import openai

from gptui.core import Message, Role, StreamCoordinator
from gptui.core.client import CompletionStream, EventKind, OpenAIClientWrapper
from gptui.errors import (
    AuthFailure,
    ChatError,
    RateLimited,
    ServerError,
    TransportError,
    translate_error,
)

from .test_base import FakeTransport, wait_for

REQUEST = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")


def status_error(cls, status):
    response = httpx.Response(status, request=REQUEST)
    return cls("failed", response=response, body=None)


def chunk(content):
    return Mock(choices=[Mock(delta=Mock(content=content))])


class TestTranslateError(unittest.TestCase):
    def test_connection_errors(self):
        self.assertIsInstance(translate_error(openai.APIConnectionError(request=REQUEST)), TransportError)
        self.assertIsInstance(translate_error(openai.APITimeoutError(request=REQUEST)), TransportError)

    def test_status_errors(self):
        self.assertIsInstance(translate_error(status_error(openai.AuthenticationError, 401)), AuthFailure)
        self.assertIsInstance(translate_error(status_error(openai.PermissionDeniedError, 403)), AuthFailure)
        self.assertIsInstance(translate_error(status_error(openai.RateLimitError, 429)), RateLimited)
        self.assertIsInstance(translate_error(status_error(openai.InternalServerError, 500)), ServerError)
        self.assertIsInstance(translate_error(status_error(openai.APIStatusError, 503)), ServerError)

    def test_other_status_is_generic(self):
        error = translate_error(status_error(openai.BadRequestError, 400))
        self.assertIs(type(error), ChatError)
        self.assertIn("400", str(error))

    def test_errors_carry_hints(self):
        error = translate_error(status_error(openai.AuthenticationError, 401))
        self.assertTrue(error.hint)
        self.assertIn(error.hint, error.describe())


class TestOpenAIClientWrapper(unittest.TestCase):
    def setUp(self):
        self.mock_client = Mock()
        self.wrapper = OpenAIClientWrapper(self.mock_client)

    def test_post_stream_yields_content_deltas(self):
        self.mock_client.chat.completions.create.return_value = [
            chunk("Hel"),
            chunk(None),
            Mock(choices=[]),
            chunk("lo"),
        ]
        messages = [{"role": "user", "content": "hi"}]

        self.assertEqual(list(self.wrapper.post_stream("gpt-4", messages)), ["Hel", "lo"])
        self.mock_client.chat.completions.create.assert_called_once_with(
            model="gpt-4", messages=messages, stream=True
        )

    def test_post_stream_closes_response_early(self):
        response = MagicMock()
        response.__iter__.return_value = iter([chunk("a"), chunk("b")])
        self.mock_client.chat.completions.create.return_value = response

        stream = self.wrapper.post_stream("gpt-4", [])
        self.assertEqual(next(stream), "a")
        stream.close()
        response.close.assert_called_once()

    def test_post_stream_translates_errors(self):
        self.mock_client.chat.completions.create.side_effect = status_error(openai.RateLimitError, 429)
        with self.assertRaises(RateLimited):
            list(self.wrapper.post_stream("gpt-4", []))

    def test_complete_returns_message_content(self):
        self.mock_client.chat.completions.create.return_value = Mock(
            choices=[Mock(message=Mock(content="A title"))]
        )
        self.assertEqual(self.wrapper.complete("gpt-4", []), "A title")

    def test_complete_translates_errors(self):
        self.mock_client.chat.completions.create.side_effect = openai.APIConnectionError(request=REQUEST)
        with self.assertRaises(TransportError):
            self.wrapper.complete("gpt-4", [])


class TestCompletionStream(unittest.TestCase):
    def test_poll_collects_text_until_done(self):
        stream = CompletionStream(lambda: iter(["a", "b", "c"]))
        events = []
        wait_for(lambda: events.extend(stream.poll()) or stream.done)

        self.assertEqual([e.kind for e in events], [EventKind.DELTA] * 3 + [EventKind.DONE])
        self.assertEqual(stream.text, "abc")
        self.assertIsNone(stream.error)

    def test_iteration_is_single_pass(self):
        stream = CompletionStream(lambda: iter(["x", "y"]))
        self.assertEqual(list(stream), ["x", "y"])
        with self.assertRaises(RuntimeError):
            list(stream)

    def test_result_raises_stream_error(self):
        def produce():
            yield "partial"
            raise RateLimited("slow down")

        stream = CompletionStream(produce)
        with self.assertRaises(RateLimited):
            stream.result()
        self.assertEqual(stream.text, "partial")

    def test_unexpected_worker_failure_becomes_transport_error(self):
        def produce():
            raise ValueError("boom")
            yield  # pragma: no cover

        stream = CompletionStream(produce)
        stream.wait(2)
        self.assertIsInstance(stream.error, TransportError)

    def test_cancel_keeps_only_delivered_text(self):
        release = threading.Event()
        closed = threading.Event()

        def produce():
            try:
                yield "one "
                yield "two"
                release.wait(5)
                yield " three"
                yield " four"
            finally:
                closed.set()

        stream = CompletionStream(produce)

        def delivered():
            stream.poll()
            return stream.text == "one two"

        wait_for(delivered)
        stream.cancel()
        release.set()

        self.assertTrue(closed.wait(2))
        self.assertTrue(stream.cancelled)
        self.assertTrue(stream.done)
        self.assertEqual(stream.poll(), [])
        self.assertEqual(stream.text, "one two")


class TestStreamCoordinator(unittest.TestCase):
    def setUp(self):
        self.transport = FakeTransport(["Hi", " there"])
        self.coordinator = StreamCoordinator(self.transport)
        self.messages = [
            Message(Role.SYSTEM, "Be brief.", 1.0),
            Message(Role.USER, "Hello", 2.0),
        ]

    def test_start_sends_api_payload(self):
        stream = self.coordinator.start(self.messages, "gpt-4")
        self.assertEqual(stream.result(), "Hi there")
        self.assertEqual(
            self.transport.stream_calls[0],
            [{"role": "system", "content": "Be brief."}, {"role": "user", "content": "Hello"}],
        )

    def test_complete_runs_non_streaming_request(self):
        self.assertEqual(self.coordinator.complete(self.messages, "gpt-4"), self.transport.summary)
        self.assertEqual(len(self.transport.complete_calls), 1)

    def test_request_errors_propagate(self):
        self.transport.complete_error = ServerError("down")
        with self.assertRaises(ServerError):
            self.coordinator.complete(self.messages, "gpt-4")
