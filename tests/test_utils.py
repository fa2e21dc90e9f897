import logging
import tempfile
import unittest
from pathlib import Path
from unittest.mock import Mock, patch

import pyperclip
from prompt_toolkit.key_binding import KeyPress
from prompt_toolkit.keys import Keys

from gptui.core import Key, KeyEvent
from gptui.errors import ChatError, ClipboardError
from gptui.utils.clipboard import Clipboard
from gptui.utils.editor import edit, resolve_editor
from gptui.utils.log import init_logger
from gptui.utils.spinner import Spinner
from gptui.utils.terminal import Terminal, translate


class TestTranslate(unittest.TestCase):
    def test_control_keys(self):
        self.assertEqual(translate(KeyPress(Keys.ControlM)), [KeyEvent(Key.ENTER)])
        self.assertEqual(translate(KeyPress(Keys.ControlJ)), [KeyEvent(Key.NEWLINE)])
        self.assertEqual(translate(KeyPress(Keys.ControlAt)), [KeyEvent(Key.COPY_MODE)])
        self.assertEqual(translate(KeyPress(Keys.ControlC)), [KeyEvent(Key.CANCEL)])
        self.assertEqual(translate(KeyPress(Keys.PageUp)), [KeyEvent(Key.PAGE_UP)])

    def test_printable_character(self):
        self.assertEqual(translate(KeyPress("a")), [KeyEvent(Key.CHAR, "a")])
        self.assertEqual(translate(KeyPress("é")), [KeyEvent(Key.CHAR, "é")])

    def test_tab_is_inserted(self):
        self.assertEqual(translate(KeyPress(Keys.ControlI)), [KeyEvent(Key.CHAR, "\t")])

    def test_paste_keeps_newlines(self):
        events = translate(KeyPress(Keys.BracketedPaste, "ab\r\nc"))
        self.assertEqual(
            events,
            [KeyEvent(Key.CHAR, "a"), KeyEvent(Key.CHAR, "b"), KeyEvent(Key.NEWLINE), KeyEvent(Key.CHAR, "c")],
        )

    def test_unmapped_key_is_dropped(self):
        self.assertEqual(translate(KeyPress(Keys.F5)), [])

    def test_terminal_without_input_reads_nothing(self):
        terminal = Terminal(console=Mock())
        self.assertEqual(terminal.read_events(), [])
        self.assertFalse(terminal.wait(0))


class TestEditor(unittest.TestCase):
    def fake_editor(self, text, returncode=0):
        def run(argv):
            Path(argv[-1]).write_text(text, encoding="utf-8")
            return Mock(returncode=returncode)

        return run

    def test_resolve_editor(self):
        with patch.dict("os.environ", {"VISUAL": "", "EDITOR": "emacs"}):
            self.assertEqual(resolve_editor(), "emacs")
            self.assertEqual(resolve_editor("nano -w"), "nano -w")
        with patch.dict("os.environ", {}, clear=True):
            self.assertEqual(resolve_editor(), "vi")

    @patch("gptui.utils.editor.subprocess.run")
    def test_returns_saved_text(self, mock_run):
        seen = {}

        def run(argv):
            seen["argv"] = argv
            seen["initial"] = Path(argv[-1]).read_text(encoding="utf-8")
            Path(argv[-1]).write_text("edited\n", encoding="utf-8")
            return Mock(returncode=0)

        mock_run.side_effect = run

        self.assertEqual(edit("draft", "nano -w"), "edited")
        self.assertEqual(seen["argv"][:2], ["nano", "-w"])
        self.assertEqual(seen["initial"], "draft")
        self.assertFalse(Path(seen["argv"][-1]).exists())

    @patch("gptui.utils.editor.subprocess.run")
    def test_empty_file_cancels(self, mock_run):
        mock_run.side_effect = self.fake_editor("   \n")
        self.assertIsNone(edit("draft", "vi"))

    @patch("gptui.utils.editor.subprocess.run")
    def test_non_zero_exit_cancels(self, mock_run):
        mock_run.side_effect = self.fake_editor("text", returncode=1)
        self.assertIsNone(edit("", "vi"))

    @patch("gptui.utils.editor.subprocess.run")
    def test_missing_editor(self, mock_run):
        mock_run.side_effect = FileNotFoundError("no such editor")
        with self.assertRaises(ChatError):
            edit("", "does-not-exist")


class TestClipboard(unittest.TestCase):
    @patch("gptui.utils.clipboard.PyperclipClipboard")
    def test_write(self, mock_backend):
        Clipboard().write("print(1)")
        data = mock_backend.return_value.set_data.call_args.args[0]
        self.assertEqual(data.text, "print(1)")

    @patch("gptui.utils.clipboard.PyperclipClipboard")
    def test_backend_failure(self, mock_backend):
        mock_backend.return_value.set_data.side_effect = pyperclip.PyperclipException("no xclip")
        with self.assertRaises(ClipboardError):
            Clipboard().write("x")


class TestLogger(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.root = logging.getLogger()
        self.saved = (self.root.handlers[:], self.root.level)

    def tearDown(self):
        for handler in self.root.handlers:
            handler.close()
        self.root.handlers, level = self.saved
        self.root.setLevel(level)
        self.tmp.cleanup()

    def test_writes_to_rotating_file(self):
        path = init_logger(Path(self.tmp.name) / "logs", level="info")

        logging.getLogger("gptui.test").info("hello log")
        for handler in self.root.handlers:
            handler.flush()

        self.assertEqual(path.name, "gptui.log")
        self.assertIn("hello log", path.read_text(encoding="utf-8"))
        self.assertEqual(self.root.level, logging.INFO)

    def test_level_from_environment(self):
        with patch.dict("os.environ", {"GPTUI_LOG_LEVEL": "debug"}):
            init_logger(Path(self.tmp.name))
        self.assertEqual(self.root.level, logging.DEBUG)


class TestSpinner(unittest.TestCase):
    def setUp(self):
        self.yaspin_patcher = patch("gptui.utils.spinner.yaspin")
        self.mock_yaspin = self.yaspin_patcher.start()
        self.console_patcher = patch("gptui.utils.spinner.console")
        self.mock_console = self.console_patcher.start()

    def tearDown(self):
        self.yaspin_patcher.stop()
        self.console_patcher.stop()

    def test_context_manager(self):
        with Spinner("Titling threads"):
            self.mock_yaspin.return_value.start.assert_called_once()
        self.mock_yaspin.return_value.stop.assert_called_once()

    def test_start_and_stop_are_idempotent(self):
        spinner = Spinner()
        spinner.start()
        spinner.start()
        spinner.stop()
        spinner.stop()
        self.mock_yaspin.return_value.start.assert_called_once()
        self.mock_yaspin.return_value.stop.assert_called_once()

    def test_update_sets_progress_text(self):
        spinner = Spinner("naming threads ")
        spinner.update("1/3")
        self.assertEqual(self.mock_yaspin.return_value.text, "1/3")
