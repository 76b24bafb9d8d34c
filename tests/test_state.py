import os
import shutil
import tempfile
import unittest

from tipbot.state import TransportState


class TestTransportState(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.mkdtemp(prefix="tipbot-state-")
        self.path = os.path.join(self.tmpdir, "state.json")

    def tearDown(self):
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def test_roundtrip(self):
        state = TransportState(self.path)
        self.assertEqual(state.get_cursor("telegram"), 0)
        self.assertIsNone(state.get_cursor("twitter", None))

        state.set_cursor("telegram", 42)
        state.set_cursor("twitter", "1790000000000000000")

        reloaded = TransportState(self.path)
        self.assertEqual(reloaded.get_cursor("telegram"), 42)
        self.assertEqual(reloaded.get_cursor("twitter", None), "1790000000000000000")
        self.assertFalse(os.path.exists(self.path + ".tmp"))

    def test_corrupt_file_starts_empty(self):
        with open(self.path, "w", encoding="utf-8") as f:
            f.write("{not json")
        state = TransportState(self.path)
        self.assertEqual(state.data, {})


if __name__ == "__main__":
    unittest.main()
