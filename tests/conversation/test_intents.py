import unittest

from step_sync_assistant.conversation import Intent, IntentClassifier, KeywordIntentClassifier
from step_sync_assistant.conversation.templates import render


class KeywordIntentClassifierTests(unittest.TestCase):
    def setUp(self) -> None:
        self._classifier = KeywordIntentClassifier()

    def _assert_intent(self, text: str, intent: Intent, confidence: float) -> None:
        result = self._classifier.classify(text, [])
        self.assertEqual(intent, result.intent, text)
        self.assertAlmostEqual(confidence, result.confidence, places=2)

    def test_satisfies_protocol(self) -> None:
        self.assertIsInstance(self._classifier, IntentClassifier)

    def test_simple_intents(self) -> None:
        self._assert_intent("Hi there", Intent.GREETING, 0.95)
        self._assert_intent("thanks so much", Intent.THANKS, 0.95)
        self._assert_intent("ok that's all, bye", Intent.FAREWELL, 0.92)

    def test_diagnostic_intents(self) -> None:
        self._assert_intent("My steps are not syncing", Intent.STEPS_NOT_SYNCING, 0.92)
        self._assert_intent("the app shows the wrong step count", Intent.WRONG_STEP_COUNT, 0.90)
        self._assert_intent("battery saver is on all the time", Intent.BATTERY_OPTIMIZATION, 0.85)
        self._assert_intent("permission was denied", Intent.PERMISSION_DENIED, 0.90)

    def test_permission_questions(self) -> None:
        self._assert_intent("why do you need permission", Intent.WHY_PERMISSION_NEEDED, 0.90)
        self._assert_intent("I want to grant access", Intent.WANT_TO_GRANT_PERMISSION, 0.90)

    def test_sanitized_app_placeholder(self) -> None:
        self._assert_intent("[APP] isn't installed", Intent.HEALTH_CONNECT_NOT_INSTALLED, 0.90)
        self._assert_intent("several [APP] and [APP] record steps", Intent.MULTIPLE_APPS_CONFLICT, 0.85)

    def test_fuzzy_fallbacks(self) -> None:
        self._assert_intent("I can't see anything", Intent.NEED_HELP, 0.68)
        self._assert_intent("stpes", Intent.NEED_HELP, 0.62)
        self._assert_intent("why?", Intent.NEED_HELP, 0.55)

    def test_unmatched_text_is_unclear(self) -> None:
        self._assert_intent("asdf qwerty", Intent.UNCLEAR, 0.3)
        self._assert_intent("", Intent.UNCLEAR, 0.3)


class TemplateTests(unittest.TestCase):
    def test_every_intent_has_a_template(self) -> None:
        for intent in Intent:
            self.assertTrue(render(intent).strip(), intent.value)

    def test_greeting_introduces_the_assistant(self) -> None:
        self.assertIn("Step Sync Assistant", render(Intent.GREETING))


if __name__ == "__main__":
    unittest.main()
