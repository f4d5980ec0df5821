import sys
import threading
import types

import pytest

from relayout import daemon
from relayout.config import Config, LayoutSwitchMode, SmartConversionMode
from relayout.engine import ConversionOrchestrator, ConversionOutcome
from relayout.daemon import layout_switch_target


class FakeEditor:
    """A text field plus the system clipboard, driven by simulated keys."""

    def __init__(self, selection='', line=''):
        self.selection = selection
        self.line = line
        self.clipboard = 'old clipboard'
        self.pasted = []
        self.deselected = 0

    # pyperclip interface
    def paste(self):
        return self.clipboard

    def copy(self, text):
        self.clipboard = text

    # keys
    def key_copy(self):
        if self.selection:
            self.clipboard = self.selection

    def key_paste(self):
        self.pasted.append(self.clipboard)

    def key_select_word_left(self):
        words = self.line.split()
        self.selection = words[-1] if words else ''

    def key_select_line_start(self):
        self.selection = self.line

    def key_right(self):
        self.selection = ''
        self.deselected += 1


class FakeMonitor:
    supported = True

    def __init__(self, current='us'):
        self.current = current
        self.switched = []

    def get(self):
        return None, self.current

    def switch_to(self, layout_id):
        self.switched.append(layout_id)
        return True


@pytest.fixture
def editor(monkeypatch):
    editor = FakeEditor()
    restored = []
    monkeypatch.setattr(daemon.time, 'sleep', lambda s: None)
    monkeypatch.setattr(daemon, '_release_hotkey_keys', lambda: None)
    monkeypatch.setattr(daemon, '_simulate_copy', editor.key_copy)
    monkeypatch.setattr(daemon, '_simulate_paste', editor.key_paste)
    monkeypatch.setattr(daemon, '_simulate_select_word_left', editor.key_select_word_left)
    monkeypatch.setattr(daemon, '_simulate_select_line_start', editor.key_select_line_start)
    monkeypatch.setattr(daemon, '_simulate_right_arrow', editor.key_right)
    monkeypatch.setattr(daemon, '_restore_clipboard_later',
                        lambda clip, backup, delay: restored.append((backup, delay)))
    editor.restored = restored
    return editor


def _config(smart_mode=SmartConversionMode.GREEDY_LINE, layout_switch=LayoutSwitchMode.ALWAYS):
    config = Config()
    config.conversion.smart_mode = smart_mode
    config.conversion.layout_switch = layout_switch
    return config


def _orchestrator():
    return ConversionOrchestrator(lambda: ['us', 'ru'])


# ── worker ────────────────────────────────────────────────────────────────────

def test_selected_text_is_converted_directly(editor):
    editor.selection = 'ghbdtn'
    mode, original, outcome = daemon._worker_do_convert(_orchestrator(), _config(), editor)
    assert (mode, original) == ('direct', 'ghbdtn')
    assert outcome == ConversionOutcome('привет', 'ru')
    assert editor.pasted == ['привет']
    assert editor.restored == [('old clipboard', 2.0)]


def test_greedy_line_converts_wrong_tail(editor):
    editor.line = '12 ghbdtn'
    mode, original, outcome = daemon._worker_do_convert(_orchestrator(), _config(), editor)
    assert (mode, original) == ('greedy_line', '12 ghbdtn')
    assert editor.pasted == ['12 привет']


def test_greedy_line_nothing_wrong_deselects(editor):
    editor.line = '12345'
    _, _, outcome = daemon._worker_do_convert(_orchestrator(), _config(), editor)
    assert outcome is None
    assert editor.pasted == []
    assert editor.deselected == 1
    assert editor.clipboard == 'old clipboard'


def test_last_word(editor):
    editor.line = 'hi ghbdtn'
    config = _config(SmartConversionMode.LAST_WORD)
    mode, original, outcome = daemon._worker_do_convert(_orchestrator(), config, editor)
    assert (mode, original) == ('last_word', 'ghbdtn')
    assert editor.pasted == ['привет']


def test_last_word_that_looks_right_is_left_alone(editor):
    editor.line = 'ghbdtn 123'
    config = _config(SmartConversionMode.LAST_WORD)
    _, original, outcome = daemon._worker_do_convert(_orchestrator(), config, editor)
    assert original == '123'
    assert outcome is None
    assert editor.deselected == 1
    assert editor.clipboard == 'old clipboard'


def test_disabled_smart_mode_needs_a_selection(editor):
    editor.line = 'ghbdtn'
    config = _config(SmartConversionMode.DISABLED)
    mode, original, outcome = daemon._worker_do_convert(_orchestrator(), config, editor)
    assert (mode, original, outcome) == ('disabled', None, None)
    assert editor.pasted == []
    assert editor.clipboard == 'old clipboard'


def test_clipboard_is_restored_when_copy_fails(editor, monkeypatch):
    editor.clipboard = 'precious'

    def broken_copy():
        raise RuntimeError('keyboard controller unavailable')

    monkeypatch.setattr(daemon, '_simulate_copy', broken_copy)
    with pytest.raises(RuntimeError):
        daemon._worker_do_convert(_orchestrator(), _config(), editor)
    assert editor.clipboard == 'precious'
    assert editor.restored == []


def test_clipboard_is_restored_when_conversion_fails(editor):
    editor.clipboard = 'precious'
    editor.selection = 'ghbdtn'

    class BrokenOrchestrator:
        def convert_selected_text(self, text):
            raise ValueError(text)

    with pytest.raises(ValueError):
        daemon._worker_do_convert(BrokenOrchestrator(), _config(), editor)
    assert editor.clipboard == 'precious'
    assert editor.pasted == []


def test_log_lines_use_ascii_separators(editor, caplog):
    caplog.set_level('INFO', logger='relayout.daemon')
    editor.line = '12345'
    daemon._worker_do_convert(_orchestrator(), _config(), editor)
    editor.selection = 'ghbdtn'
    daemon._worker_do_convert(_orchestrator(), _config(), editor)
    assert 'no change (greedy_line): text may already be correct' in caplog.text
    assert '✓ direct → ru  "привет"' in caplog.text
    assert '—' not in caplog.text


def test_conversion_switches_os_layout(editor):
    editor.selection = 'ghbdtn'
    lang_monitor = FakeMonitor('us')
    daemon._worker_do_convert(_orchestrator(), _config(), editor, lang_monitor)
    assert lang_monitor.switched == ['ru']


def test_no_conversion_still_toggles_with_always(editor):
    lang_monitor = FakeMonitor('ru')
    daemon._worker_do_convert(_orchestrator(), _config(SmartConversionMode.DISABLED),
                              editor, lang_monitor)
    assert lang_monitor.switched == ['us']


def test_no_conversion_keeps_layout_with_if_any_word(editor):
    lang_monitor = FakeMonitor('ru')
    config = _config(SmartConversionMode.DISABLED, LayoutSwitchMode.IF_ANY_WORD)
    daemon._worker_do_convert(_orchestrator(), config, editor, lang_monitor)
    assert lang_monitor.switched == []


# ── layout switch policy ──────────────────────────────────────────────────────


@pytest.mark.parametrize('mode, original, converted, expected', [
    (LayoutSwitchMode.ALWAYS,       '12 ghbdtn', '12 привет', 'ru'),
    (LayoutSwitchMode.IF_LAST_WORD, '12 ghbdtn', '12 привет', 'ru'),
    (LayoutSwitchMode.IF_ANY_WORD,  '12 ghbdtn', '12 привет', 'ru'),
    (LayoutSwitchMode.ALWAYS,       'ghbdtn 12', 'привет 12', 'ru'),
    (LayoutSwitchMode.IF_LAST_WORD, 'ghbdtn 12', 'привет 12', None),
    (LayoutSwitchMode.IF_ANY_WORD,  'ghbdtn 12', 'привет 12', 'ru'),
])
def test_switch_after_conversion(mode, original, converted, expected):
    outcome = ConversionOutcome(converted, 'ru')
    assert layout_switch_target(mode, original, outcome, 'us', ['us', 'ru']) == expected


@pytest.mark.parametrize('current, expected', [('us', 'ru'), ('ru', 'us'), ('de', None), (None, None)])
def test_always_cycles_without_conversion(current, expected):
    assert layout_switch_target(LayoutSwitchMode.ALWAYS, None, None, current, ['us', 'ru']) == expected


def test_always_needs_two_layouts_to_cycle():
    assert layout_switch_target(LayoutSwitchMode.ALWAYS, None, None, 'us', ['us']) is None


@pytest.mark.parametrize('mode', [LayoutSwitchMode.IF_LAST_WORD, LayoutSwitchMode.IF_ANY_WORD])
def test_conditional_modes_without_conversion(mode):
    assert layout_switch_target(mode, 'abc', None, 'us', ['us', 'ru']) is None


# ── run_daemon ────────────────────────────────────────────────────────────────

def test_run_daemon_debounces_and_dispatches(monkeypatch):
    stop_event = threading.Event()
    registered = {}
    jobs = []

    class FakeHotKeys:
        def __init__(self, hotkeys):
            registered.update(hotkeys)

        def start(self):
            callback = registered['<ctrl>+<alt>+k']
            callback()
            callback()

        def is_alive(self):
            return True

        def stop(self):
            registered['stopped'] = True

    def fake_worker(orchestrator, config, clip, lang_monitor=None):
        jobs.append(clip)
        stop_event.set()

    fake_pynput = types.ModuleType('pynput')
    fake_pynput.keyboard = types.SimpleNamespace(GlobalHotKeys=FakeHotKeys)
    fake_pyperclip = types.ModuleType('pyperclip')
    monkeypatch.setitem(sys.modules, 'pynput', fake_pynput)
    monkeypatch.setitem(sys.modules, 'pyperclip', fake_pyperclip)
    monkeypatch.setattr(daemon.LanguageMonitor, 'start', lambda self: False)
    monkeypatch.setattr(daemon, '_worker_do_convert', fake_worker)

    config = Config()
    config.daemon.hotkey = '<ctrl>+<alt>+k'
    daemon.run_daemon(config, _orchestrator(), stop_event)

    assert jobs == [fake_pyperclip]
    assert registered['stopped'] is True
