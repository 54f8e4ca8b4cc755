import unittest

from libraries.smart_pause.common import PlaybackStatus, parse_status
from libraries.smart_pause.registry import EndpointRegistry, ResumeStack


class ResumeStackTests(unittest.TestCase):
    def test_push_inserts_at_front_and_pop_is_lifo(self):
        stack = ResumeStack()
        for name in ("a", "b", "c"):
            stack.push(name)

        self.assertEqual(list(stack), ["c", "b", "a"])
        self.assertEqual(stack.pop(), "c")
        self.assertEqual(stack.pop(), "b")
        self.assertEqual(stack.pop(), "a")
        self.assertIsNone(stack.pop())

    def test_push_moves_existing_entry_to_top_without_duplicating(self):
        stack = ResumeStack()
        stack.push("a")
        stack.push("b")
        stack.push("a")

        self.assertEqual(list(stack), ["a", "b"])
        self.assertEqual(len(stack), 2)

    def test_remove_is_idempotent(self):
        stack = ResumeStack()
        stack.push("a")
        stack.remove("a")
        stack.remove("a")
        stack.remove("never-there")

        self.assertEqual(len(stack), 0)
        self.assertNotIn("a", stack)
        self.assertIsNone(stack.pop())


class EndpointRegistryTests(unittest.TestCase):
    def test_upsert_overwrites_status(self):
        registry = EndpointRegistry()
        registry.upsert("a", PlaybackStatus.PLAYING)
        registry.upsert("a", PlaybackStatus.PAUSED)

        self.assertEqual(registry.status("a"), PlaybackStatus.PAUSED)
        self.assertEqual(len(registry), 1)

    def test_upsert_rejects_empty_id(self):
        registry = EndpointRegistry()
        with self.assertRaises(ValueError):
            registry.upsert("", PlaybackStatus.PLAYING)

    def test_any_playing_and_playing_keep_observation_order(self):
        registry = EndpointRegistry()
        self.assertFalse(registry.any_playing())

        registry.upsert("b", PlaybackStatus.PLAYING)
        registry.upsert("a", PlaybackStatus.STOPPED)
        registry.upsert("c", PlaybackStatus.PLAYING)

        self.assertTrue(registry.any_playing())
        self.assertEqual(registry.playing(), ["b", "c"])

    def test_auto_paused_flags(self):
        registry = EndpointRegistry()
        registry.mark_auto_paused("a")
        self.assertTrue(registry.is_auto_paused("a"))
        registry.clear_auto_paused("a")
        registry.clear_auto_paused("a")
        self.assertFalse(registry.is_auto_paused("a"))

    def test_remove_drops_status_flag_and_stack_entry(self):
        registry = EndpointRegistry()
        registry.upsert("a", PlaybackStatus.PAUSED)
        registry.mark_auto_paused("a")
        registry.stack.push("a")

        registry.remove("a")
        registry.remove("a")

        self.assertNotIn("a", registry)
        self.assertFalse(registry.is_auto_paused("a"))
        self.assertNotIn("a", registry.stack)


class ParseStatusTests(unittest.TestCase):
    def test_known_values_map_to_enum(self):
        self.assertIs(parse_status("Playing"), PlaybackStatus.PLAYING)
        self.assertIs(parse_status("Paused"), PlaybackStatus.PAUSED)
        self.assertIs(parse_status("Stopped"), PlaybackStatus.STOPPED)

    def test_unknown_values_are_rejected(self):
        for value in ("playing", "Buffering", "", None, 3):
            self.assertIsNone(parse_status(value))


if __name__ == "__main__":
    unittest.main()
