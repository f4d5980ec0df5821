"""
Global hotkey daemon.

The hotkey callback never touches the clipboard or the keyboard. It only puts
a signal on a queue, and a single worker thread does copy -> convert -> paste.
The OS hotkey handler returns at once, and conversions never overlap.

One hotkey press:
  1. Copy the current selection. If there is one, convert it ("direct").
  2. Otherwise apply the smart mode: select the last word or the whole line
     before the cursor, copy it, and convert only what looks mistyped.
  3. Paste the result over the selection, restore the clipboard later.
  4. Flip the OS layout according to the layout-switch policy.
"""

import logging
import queue
import sys
import threading
import time

from .config import Config, LayoutSwitchMode, SmartConversionMode
from .engine import ConversionOrchestrator, ConversionOutcome, tokenize
from .log import die
from .monitor import LanguageMonitor

logger = logging.getLogger(__name__)

_DELAY_AFTER_COPY   = 0.35   # seconds to wait after simulating Ctrl+C
_DELAY_BEFORE_PASTE = 0.12   # seconds to wait before simulating Ctrl+V
_DELAY_AFTER_SELECT = 0.08   # seconds for the app to extend its selection
_CLIPBOARD_TIMEOUT  = 0.6    # max seconds to wait for copied text
_CLIPBOARD_POLL     = 0.05   # polling interval
_DEBOUNCE           = 0.5


# =============================================================================
# KEY SIMULATION
# =============================================================================

def _primary_modifier():
    from pynput.keyboard import Key
    return Key.cmd if sys.platform == 'darwin' else Key.ctrl


def _tap(key, *modifiers) -> None:
    from pynput.keyboard import Controller
    kb = Controller()
    for mod in modifiers:
        kb.press(mod)
    try:
        kb.press(key)
        kb.release(key)
    finally:
        for mod in reversed(modifiers):
            kb.release(mod)


def _release_hotkey_keys() -> None:
    """
    Release Ctrl, Shift, Alt and Space so they are not held down when we
    simulate Ctrl+C. A physically held modifier would turn it into Ctrl+Shift+C.
    """
    from pynput.keyboard import Controller, Key
    kb = Controller()
    for key in (Key.ctrl, Key.ctrl_l, Key.ctrl_r,
                Key.shift, Key.shift_l, Key.shift_r,
                Key.alt, Key.alt_l, Key.alt_r, Key.space):
        kb.release(key)


def _simulate_copy() -> None:
    _tap('c', _primary_modifier())
    time.sleep(_DELAY_AFTER_COPY)


def _simulate_paste() -> None:
    _tap('v', _primary_modifier())
    time.sleep(0.05)


def _simulate_select_word_left() -> None:
    from pynput.keyboard import Key
    word_mod = Key.alt if sys.platform == 'darwin' else Key.ctrl
    _tap(Key.left, Key.shift, word_mod)
    time.sleep(_DELAY_AFTER_SELECT)


def _simulate_select_line_start() -> None:
    from pynput.keyboard import Key
    if sys.platform == 'darwin':
        _tap(Key.left, Key.shift, Key.cmd)
    else:
        _tap(Key.home, Key.shift)
    time.sleep(_DELAY_AFTER_SELECT)


def _simulate_right_arrow() -> None:
    """Collapse the selection to its end."""
    from pynput.keyboard import Key
    _tap(Key.right)


# =============================================================================
# CLIPBOARD
# =============================================================================

def _wait_clipboard_change(pyperclip_module, old_text: str,
                           timeout: float = _CLIPBOARD_TIMEOUT) -> str:
    """Poll clipboard until it differs from old_text or timeout expires."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        current = pyperclip_module.paste() or ''
        if current != old_text:
            return current
        time.sleep(_CLIPBOARD_POLL)
    return old_text


def _copy_selection(pyperclip_module, select=None) -> str | None:
    """Copy what is selected (after select(), if given). None if nothing was."""
    pyperclip_module.copy('')
    if select is not None:
        select()
    _simulate_copy()
    text = _wait_clipboard_change(pyperclip_module, '')
    return text if text.strip() else None


def _restore_clipboard_later(pyperclip_module, backup: str, delay: float) -> None:
    def _restore():
        time.sleep(delay)
        pyperclip_module.copy(backup)
    threading.Thread(target=_restore, daemon=True).start()


# =============================================================================
# LAYOUT SWITCH POLICY
# =============================================================================

def _changed_words(original: str, converted: str) -> list:
    """Per word token of original: did conversion change it? Conversion keeps length."""
    flags, pos = [], 0
    for token in tokenize(original):
        end = pos + len(token)
        if token[0].isalnum():
            flags.append(converted[pos:end] != token)
        pos = end
    return flags


def layout_switch_target(mode: LayoutSwitchMode, original: str | None,
                         outcome: ConversionOutcome | None,
                         current: str | None, enabled) -> str | None:
    """The layout to activate after a hotkey press, or None to leave it alone."""
    if outcome is not None and original is not None and outcome.text != original:
        if mode is LayoutSwitchMode.ALWAYS:
            return outcome.target_layout_id
        changed = _changed_words(original, outcome.text)
        if mode is LayoutSwitchMode.IF_LAST_WORD and changed and changed[-1]:
            return outcome.target_layout_id
        if mode is LayoutSwitchMode.IF_ANY_WORD and any(changed):
            return outcome.target_layout_id
        return None

    # Nothing converted: "always" still toggles to the next enabled layout.
    if mode is LayoutSwitchMode.ALWAYS and current in enabled and len(enabled) > 1:
        return enabled[(enabled.index(current) + 1) % len(enabled)]
    return None


# =============================================================================
# WORKER
# =============================================================================

def _worker_do_convert(orchestrator: ConversionOrchestrator, config: Config,
                       pyperclip_module, lang_monitor: LanguageMonitor | None = None):
    """
    The actual work for one hotkey press. Always runs in the worker thread.
    Returns (mode, original, outcome); outcome is None when nothing changed.

    The clipboard backup is put back on every path. After a paste it is
    restored later, so the target app has read the converted text first.
    """
    backup = pyperclip_module.paste() or ''
    pasted = False
    try:
        # Let the OS process the hotkey release before simulating our own keys.
        _release_hotkey_keys()
        time.sleep(0.15)

        mode = 'direct'
        original = _copy_selection(pyperclip_module)
        outcome = None

        if original is not None:
            outcome = orchestrator.convert_selected_text(original)
        else:
            smart = config.conversion.smart_mode
            mode = smart.value
            if smart is SmartConversionMode.LAST_WORD:
                original = _copy_selection(pyperclip_module, _simulate_select_word_left)
                if original is not None:
                    outcome = orchestrator.convert_last_word(original)
            elif smart is SmartConversionMode.GREEDY_LINE:
                original = _copy_selection(pyperclip_module, _simulate_select_line_start)
                if original is not None:
                    outcome = orchestrator.convert_line_greedy(original)
            else:
                logger.info('✗ nothing selected and smart conversion is disabled')

        if outcome is None or outcome.text == original:
            if original is not None and mode != 'direct':
                _simulate_right_arrow()
            if original is not None:
                logger.info('~ no change (%s): text may already be correct', mode)
            elif mode != SmartConversionMode.DISABLED.value:
                logger.info('✗ nothing to convert: select text or type something first')
            outcome = None
        else:
            pyperclip_module.copy(outcome.text)
            time.sleep(_DELAY_BEFORE_PASTE)
            _simulate_paste()
            pasted = True

            preview = outcome.text[:60].replace('\n', '↵')
            ellipsis = '…' if len(outcome.text) > 60 else ''
            logger.info('✓ %s → %s  "%s%s"', mode, outcome.target_layout_id, preview, ellipsis)
    finally:
        if pasted:
            _restore_clipboard_later(pyperclip_module, backup,
                                     config.daemon.restore_clipboard_delay)
        else:
            pyperclip_module.copy(backup)

    if lang_monitor is not None and lang_monitor.supported:
        _, current = lang_monitor.get()
        target = layout_switch_target(config.conversion.layout_switch, original, outcome,
                                      current, orchestrator.enabled_layouts())
        if target and target != current:
            lang_monitor.switch_to(target)

    return mode, original, outcome


def run_daemon(config: Config, orchestrator: ConversionOrchestrator,
               stop_event: threading.Event | None = None) -> None:
    """
    Start the hotkey daemon and block until stop_event is set, the listener
    dies, or Ctrl+C.
    """
    try:
        import pyperclip
    except ImportError:
        die('Daemon mode requires pyperclip.\n  pip install pyperclip')
    try:
        from pynput import keyboard as pynput_kb
    except ImportError:
        die('Daemon mode requires pynput.\n  pip install pynput')

    stop_event = stop_event or threading.Event()

    lang_monitor = LanguageMonitor()
    if lang_monitor.start():
        _, current = lang_monitor.get()
        logger.info('layout monitor: active (current layout: %s)', current)
    else:
        logger.info('layout monitor: not supported on this platform, layout switching off')
        lang_monitor = None

    hotkey = config.daemon.hotkey
    logger.info('hotkey   : %s', hotkey)
    logger.info('layouts  : %s', ', '.join(orchestrator.enabled_layouts()))
    logger.info('smart    : %s', config.conversion.smart_mode.value)
    logger.info('ready, press Ctrl+C in this terminal to stop\n')

    work_q: queue.Queue = queue.Queue()
    last_fire = [0.0]

    def _on_activate():
        # Runs in pynput's listener thread, must return fast.
        now = time.monotonic()
        if now - last_fire[0] < _DEBOUNCE:
            return
        last_fire[0] = now
        work_q.put(True)

    def _worker_loop():
        while work_q.get():
            try:
                _worker_do_convert(orchestrator, config, pyperclip, lang_monitor)
            except Exception:
                logger.exception('unexpected error')

    threading.Thread(target=_worker_loop, daemon=True).start()

    listener = pynput_kb.GlobalHotKeys({hotkey: _on_activate})
    listener.start()
    try:
        while listener.is_alive() and not stop_event.wait(0.5):
            pass
    except KeyboardInterrupt:
        pass
    finally:
        listener.stop()
        work_q.put(None)
        if lang_monitor is not None:
            lang_monitor.stop()
        logger.info('stopped.')
