"""
relayout: system tray front-end.

Runs the hotkey daemon on a background thread. Right-click the tray icon to
Start / Stop / Restart, pick the smart conversion mode, open the log or exit.
"""

import logging
import os
import subprocess
import sys
import threading
import time
from pathlib import Path

from .cli import resolve_enabled_layouts
from .config import DEFAULT_CONFIG_PATH, Config, SmartConversionMode
from .engine import ConversionOrchestrator
from .log import setup_logging
from .monitor import LanguageMonitor

logger = logging.getLogger(__name__)

APP_NAME = 'relayout'
DEFAULT_LOG_FILE = DEFAULT_CONFIG_PATH.parent / 'relayout.log'

_SMART_MODE_LABELS = {
    SmartConversionMode.GREEDY_LINE: 'Greedy line',
    SmartConversionMode.LAST_WORD:   'Last word',
    SmartConversionMode.DISABLED:    'Selection only',
}


def _make_icon(running: bool):
    """Round badge with an "R": green when running, grey when stopped."""
    from PIL import Image, ImageDraw, ImageFont
    size = 64
    img  = Image.new('RGBA', (size, size), (0, 0, 0, 0))
    draw = ImageDraw.Draw(img)
    color = (40, 180, 40, 255) if running else (120, 120, 120, 255)
    draw.ellipse([2, 2, size - 2, size - 2], fill=color)
    try:
        font = ImageFont.truetype('DejaVuSans-Bold.ttf', 36)
    except OSError:
        font = ImageFont.load_default()
    text = 'R'
    bbox = draw.textbbox((0, 0), text, font=font)
    tw = bbox[2] - bbox[0]
    th = bbox[3] - bbox[1]
    draw.text(((size - tw) / 2 - bbox[0], (size - th) / 2 - bbox[1]),
              text, font=font, fill=(255, 255, 255, 255))
    return img


def _open_file(path: Path) -> None:
    if sys.platform == 'win32':
        os.startfile(path)
    elif sys.platform == 'darwin':
        subprocess.Popen(['open', str(path)])
    else:
        subprocess.Popen(['xdg-open', str(path)])


class TrayApp:
    """Owns the daemon thread and the menu state of one tray icon."""

    def __init__(self, config: Config, log_file: Path):
        self.config = config
        self.log_file = log_file
        self._monitor = LanguageMonitor()
        self._thread: threading.Thread | None = None
        self._stop_event = threading.Event()

    # ── Daemon thread ─────────────────────────────────────────────────────────

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run_daemon_thread(self) -> None:
        from .daemon import run_daemon
        orchestrator = ConversionOrchestrator(
            lambda: resolve_enabled_layouts(None, self.config, self._monitor),
            whole_line_ratio=self.config.conversion.whole_line_ratio,
            whole_line_min_words=self.config.conversion.whole_line_min_words,
        )
        try:
            run_daemon(self.config, orchestrator, self._stop_event)
        except Exception:
            logger.exception('daemon crashed')

    def start(self) -> bool:
        if self.is_running():
            return False
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run_daemon_thread, daemon=True)
        self._thread.start()
        time.sleep(0.5)
        return self._thread.is_alive()

    def stop(self) -> None:
        if not self.is_running():
            return
        self._stop_event.set()
        self._thread.join(timeout=2.0)
        self._thread = None

    def set_smart_mode(self, mode: SmartConversionMode) -> None:
        # The worker reads the config on every press, no restart needed.
        self.config.conversion.smart_mode = mode
        logger.info('smart mode: %s', mode.value)

    # ── Menu ──────────────────────────────────────────────────────────────────

    def _refresh(self, icon) -> None:
        running = self.is_running()
        icon.icon  = _make_icon(running)
        icon.title = f'{APP_NAME} ({"running" if running else "stopped"})'
        icon.menu  = self.build_menu()

    def build_menu(self):
        import pystray
        running = self.is_running()

        def on_start(icon, item):
            ok = self.start()
            self._refresh(icon)
            icon.notify(f'Hotkey active: {self.config.daemon.hotkey}' if ok
                        else f'Failed to start. Check {self.log_file}', APP_NAME)

        def on_stop(icon, item):
            self.stop()
            self._refresh(icon)

        def on_restart(icon, item):
            self.stop()
            time.sleep(0.3)
            self.start()
            self._refresh(icon)

        def smart_mode_item(mode):
            def on_select(icon, item):
                self.set_smart_mode(mode)
                self._refresh(icon)

            def checked(item):
                return self.config.conversion.smart_mode is mode

            return pystray.MenuItem(_SMART_MODE_LABELS[mode], on_select,
                                    checked=checked, radio=True)

        def on_open_log(icon, item):
            if self.log_file.exists():
                _open_file(self.log_file)
            else:
                icon.notify('The log file is created when the daemon starts.', APP_NAME)

        def on_exit(icon, item):
            self.stop()
            icon.stop()

        status_label = '● Running' if running else '○ Stopped'

        return pystray.Menu(
            pystray.MenuItem(f'{APP_NAME}  {status_label}', None, enabled=False),
            pystray.Menu.SEPARATOR,
            pystray.MenuItem('Start',   on_start,   enabled=not running),
            pystray.MenuItem('Stop',    on_stop,    enabled=running),
            pystray.MenuItem('Restart', on_restart, enabled=running),
            pystray.Menu.SEPARATOR,
            pystray.MenuItem('Without a selection', pystray.Menu(
                *(smart_mode_item(mode) for mode in SmartConversionMode))),
            pystray.MenuItem('Open Log', on_open_log),
            pystray.Menu.SEPARATOR,
            pystray.MenuItem('Exit', on_exit),
        )


def main() -> None:
    try:
        import pystray
    except ImportError:
        from .log import die
        die('Tray mode requires pystray and Pillow.\n  pip install pystray Pillow')

    config = Config.load()
    log_file = Path(config.logging.file) if config.logging.file else DEFAULT_LOG_FILE
    log_file.parent.mkdir(parents=True, exist_ok=True)
    setup_logging(config.logging.level, str(log_file))

    app = TrayApp(config, log_file)
    app.start()
    running = app.is_running()

    icon = pystray.Icon(
        name=APP_NAME,
        icon=_make_icon(running),
        title=f'{APP_NAME} ({"running" if running else "stopped"})',
    )
    icon.menu = app.build_menu()

    def _on_setup(icon):
        icon.visible = True
        if not running:
            icon.notify('Check that pynput and pyperclip are installed.\n'
                        f'Log: {log_file}', f'{APP_NAME} could not start')

    icon.run(_on_setup)


if __name__ == '__main__':
    main()
