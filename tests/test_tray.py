import threading
from pathlib import Path

import pytest

from relayout.config import Config, SmartConversionMode
from relayout.tray import TrayApp, _make_icon

pytest.importorskip('PIL')


@pytest.mark.parametrize('running, color', [(True, (40, 180, 40, 255)), (False, (120, 120, 120, 255))])
def test_icon_color_follows_state(running, color):
    img = _make_icon(running)
    assert img.size == (64, 64)
    assert img.mode == 'RGBA'
    assert img.getpixel((8, 32)) == color
    assert img.getpixel((0, 0))[3] == 0


def test_start_and_stop_daemon_thread(monkeypatch, tmp_path):
    started = threading.Event()

    def fake_run_daemon(config, orchestrator, stop_event=None):
        started.set()
        stop_event.wait()

    monkeypatch.setattr('relayout.daemon.run_daemon', fake_run_daemon)
    app = TrayApp(Config(), Path(tmp_path / 'relayout.log'))

    assert app.start() is True
    assert started.is_set()
    assert app.is_running()
    assert app.start() is False

    app.stop()
    assert not app.is_running()


def test_set_smart_mode_updates_config(tmp_path):
    app = TrayApp(Config(), tmp_path / 'relayout.log')
    app.set_smart_mode(SmartConversionMode.LAST_WORD)
    assert app.config.conversion.smart_mode is SmartConversionMode.LAST_WORD
