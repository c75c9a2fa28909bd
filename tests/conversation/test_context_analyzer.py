import unittest
from datetime import UTC, datetime

from step_sync_assistant.conversation import ContextAnalyzer, LexicalContextAnalyzer, Sentiment
from step_sync_assistant.conversation.context import detect_sentiment
from step_sync_assistant.memory import Message


def _message(role: str, text: str) -> Message:
    return Message(id=text, session_id="s1", role=role, text=text, timestamp=datetime.now(UTC))


class SentimentTests(unittest.TestCase):
    def test_levels(self) -> None:
        self.assertEqual(Sentiment.VERY_FRUSTRATED, detect_sentiment("this is so annoying!!!"))
        self.assertEqual(Sentiment.FRUSTRATED, detect_sentiment("why isn't it syncing"))
        self.assertEqual(Sentiment.HAPPY, detect_sentiment("perfect, thank you!"))
        self.assertEqual(Sentiment.SATISFIED, detect_sentiment("it works now"))
        self.assertEqual(Sentiment.NEUTRAL, detect_sentiment("my step count is wrong"))

    def test_is_frustrated(self) -> None:
        self.assertTrue(Sentiment.VERY_FRUSTRATED.is_frustrated)
        self.assertTrue(Sentiment.FRUSTRATED.is_frustrated)
        self.assertFalse(Sentiment.NEUTRAL.is_frustrated)


class LexicalContextAnalyzerTests(unittest.TestCase):
    def setUp(self) -> None:
        self._analyzer = LexicalContextAnalyzer()

    def test_satisfies_protocol(self) -> None:
        self.assertIsInstance(self._analyzer, ContextAnalyzer)

    def test_empty_conversation(self) -> None:
        snapshot = self._analyzer.analyze([])
        self.assertEqual(Sentiment.NEUTRAL, snapshot.sentiment)
        self.assertEqual(0, snapshot.turn_count)
        self.assertFalse(snapshot.has_references)

    def test_current_text_drives_sentiment(self) -> None:
        history = [_message("user", "hello"), _message("assistant", "Hi! What's going on?")]
        snapshot = self._analyzer.analyze(history, "this is so annoying!!!")
        self.assertEqual(Sentiment.VERY_FRUSTRATED, snapshot.sentiment)
        self.assertTrue(snapshot.is_frustrated)
        self.assertEqual(2, snapshot.turn_count)
        self.assertEqual(3, snapshot.message_count)

    def test_repeated_problem_reports_read_as_frustration(self) -> None:
        history = [_message("user", "my steps are missing"), _message("assistant", "Which day?")]
        self.assertEqual(Sentiment.NEUTRAL, self._analyzer.analyze([], "my step count is wrong").sentiment)
        self.assertEqual(Sentiment.FRUSTRATED, self._analyzer.analyze(history, "the count is wrong too").sentiment)

    def test_tracks_mentions_and_problems(self) -> None:
        history = [
            _message("user", "[APP] on my watch lost data"),
            _message("assistant", "Let me look."),
        ]
        snapshot = self._analyzer.analyze(history, "now it says permission denied")
        self.assertEqual("[APP]", snapshot.last_mentioned_app)
        self.assertEqual("watch", snapshot.last_mentioned_device)
        self.assertEqual("permissions", snapshot.last_mentioned_problem)
        self.assertTrue(snapshot.has_references)

    def test_no_mentions(self) -> None:
        snapshot = self._analyzer.analyze([], "hello")
        self.assertIsNone(snapshot.last_mentioned_app)
        self.assertIsNone(snapshot.last_mentioned_device)
        self.assertIsNone(snapshot.last_mentioned_problem)


if __name__ == "__main__":
    unittest.main()
