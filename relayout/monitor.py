"""
OS keyboard layout monitor.

Windows:  GetKeyboardLayout on the foreground window thread. The low-word
          LCID is mapped to an XKB-style code ("us", "ru", ...).
macOS:    Reads the current input source id from the HIToolbox defaults
          (e.g. "com.apple.keylayout.Russian").
Linux:    `xkblayout-state print %s`, falling back to `setxkbmap -query`.

Every identifier reported here is one the layout registry resolves, so it can
go straight into the enabled-layouts list or a convert() call.
"""

import logging
import plistlib
import re
import subprocess
import sys
import threading
from xml.parsers.expat import ExpatError

from .layouts import REGISTRY

logger = logging.getLogger(__name__)

# LCID low-word -> XKB-style layout code (only families with a layout table)
_LCID_MAP = {
    0x0409: 'us', 0x0809: 'gb', 0x0C09: 'us', 0x1009: 'us',
    0x0419: 'ru',
    0x0422: 'ua',
    0x0407: 'de', 0x0807: 'de', 0x0C07: 'de',
    0x040C: 'fr', 0x080C: 'fr',
    0x040A: 'es', 0x0C0A: 'es',
}

_SUBPROCESS_TIMEOUT = 1
_WM_INPUTLANGCHANGEREQUEST = 0x0050
_KCF_STRING_ENCODING_UTF8 = 0x08000100
_MACOS_LAYOUT_PREFIX = 'com.apple.keylayout.'
_MACOS_NAME_JUNK = re.compile(r'[\s.]+')


def _run(*cmd: str) -> str | None:
    try:
        return subprocess.check_output(
            cmd, stderr=subprocess.DEVNULL, timeout=_SUBPROCESS_TIMEOUT
        ).decode().strip()
    except (OSError, subprocess.SubprocessError):
        return None


def _setxkbmap_layouts() -> list:
    out = _run('setxkbmap', '-query')
    if not out:
        return []
    for line in out.splitlines():
        if line.startswith('layout:'):
            return [l.strip().lower() for l in line.split(':', 1)[1].split(',') if l.strip()]
    return []


def _same_family(a: str, b: str) -> bool:
    layout = REGISTRY.lookup(a)
    return layout is not None and layout is REGISTRY.lookup(b)


def _pick_os_layout(layout_id: str, os_layouts: list) -> int | None:
    """Index of layout_id in the OS list, or of the first entry in its family."""
    if layout_id in os_layouts:
        return os_layouts.index(layout_id)
    for i, os_id in enumerate(os_layouts):
        if _same_family(layout_id, os_id):
            return i
    return None


# ── Windows ───────────────────────────────────────────────────────────────────

def _user32():
    import ctypes
    return ctypes.windll.user32


def _keyboard_layout_list_windows() -> list:
    """HKLs of the installed keyboard layouts, as ints."""
    import ctypes
    try:
        user32 = _user32()
        count = user32.GetKeyboardLayoutList(0, None)
        buf = (ctypes.c_void_p * count)()
        user32.GetKeyboardLayoutList(count, buf)
    except (AttributeError, OSError):
        return []
    return [hkl or 0 for hkl in buf]


# ── macOS ─────────────────────────────────────────────────────────────────────

def _macos_enabled_sources() -> list:
    """Keyboard layout input source ids enabled in System Settings."""
    out = _run('defaults', 'export', 'com.apple.HIToolbox', '-')
    if not out:
        return []
    try:
        prefs = plistlib.loads(out.encode())
    except (ValueError, ExpatError):
        logger.debug('unreadable HIToolbox preferences')
        return []
    ids = []
    for source in prefs.get('AppleEnabledInputSources', []):
        name = source.get('KeyboardLayout Name')
        if not name:
            continue
        # "U.S." -> com.apple.keylayout.US
        source_id = _MACOS_LAYOUT_PREFIX + _MACOS_NAME_JUNK.sub('', name)
        if source_id not in ids:
            ids.append(source_id)
    return ids


def _tis_select_input_source(source_id: str) -> bool:
    """TISSelectInputSource on the input source whose id is source_id."""
    import ctypes
    import ctypes.util
    carbon_path = ctypes.util.find_library('Carbon')
    cf_path = ctypes.util.find_library('CoreFoundation')
    if not carbon_path or not cf_path:
        return False
    try:
        carbon = ctypes.cdll.LoadLibrary(carbon_path)
        cf = ctypes.cdll.LoadLibrary(cf_path)
        id_key = ctypes.c_void_p.in_dll(carbon, 'kTISPropertyInputSourceID')
        key_callbacks = ctypes.c_void_p.in_dll(cf, 'kCFTypeDictionaryKeyCallBacks')
        value_callbacks = ctypes.c_void_p.in_dll(cf, 'kCFTypeDictionaryValueCallBacks')
    except (OSError, ValueError):
        return False

    c_void_p, c_long = ctypes.c_void_p, ctypes.c_long
    cf.CFStringCreateWithCString.restype = c_void_p
    cf.CFStringCreateWithCString.argtypes = [c_void_p, ctypes.c_char_p, ctypes.c_uint32]
    cf.CFDictionaryCreate.restype = c_void_p
    cf.CFDictionaryCreate.argtypes = [c_void_p, ctypes.POINTER(c_void_p), ctypes.POINTER(c_void_p),
                                      c_long, c_void_p, c_void_p]
    cf.CFArrayGetCount.restype = c_long
    cf.CFArrayGetCount.argtypes = [c_void_p]
    cf.CFArrayGetValueAtIndex.restype = c_void_p
    cf.CFArrayGetValueAtIndex.argtypes = [c_void_p, c_long]
    cf.CFRelease.argtypes = [c_void_p]
    carbon.TISCreateInputSourceList.restype = c_void_p
    carbon.TISCreateInputSourceList.argtypes = [c_void_p, ctypes.c_bool]
    carbon.TISSelectInputSource.restype = ctypes.c_int32
    carbon.TISSelectInputSource.argtypes = [c_void_p]

    value = cf.CFStringCreateWithCString(None, source_id.encode(), _KCF_STRING_ENCODING_UTF8)
    keys = (c_void_p * 1)(id_key.value)
    values = (c_void_p * 1)(value)
    props = cf.CFDictionaryCreate(None, keys, values, 1,
                                  ctypes.addressof(key_callbacks),
                                  ctypes.addressof(value_callbacks))
    sources = carbon.TISCreateInputSourceList(props, False)
    try:
        if not sources or cf.CFArrayGetCount(sources) == 0:
            return False
        status = carbon.TISSelectInputSource(cf.CFArrayGetValueAtIndex(sources, 0))
        if status != 0:
            logger.debug('TISSelectInputSource failed with status %d', status)
        return status == 0
    finally:
        if sources:
            cf.CFRelease(sources)
        cf.CFRelease(props)
        cf.CFRelease(value)


class LanguageMonitor:
    """
    Polls the OS keyboard layout and tracks (previous, current).
    Both are layout identifiers, or None if detection is not supported.
    """

    _POLL_INTERVAL = 0.15  # seconds

    def __init__(self):
        self.current:  str | None = None
        self.previous: str | None = None
        self._lock = threading.Lock()
        self._thread: threading.Thread | None = None
        self._stop = threading.Event()
        self._supported: bool = True

    # ── Public API ────────────────────────────────────────────────────────────

    def start(self) -> bool:
        """Start polling. Returns True if layout detection is supported."""
        layout = self.current_os_layout()
        if layout is None:
            self._supported = False
            return False
        with self._lock:
            self.current = layout
            self.previous = layout
        self._stop.clear()
        self._thread = threading.Thread(target=self._poll_loop, daemon=True)
        self._thread.start()
        return True

    def stop(self) -> None:
        self._stop.set()

    def get(self) -> tuple:
        """Return (previous, current)."""
        with self._lock:
            return self.previous, self.current

    @property
    def supported(self) -> bool:
        return self._supported

    def current_os_layout(self) -> str | None:
        if sys.platform == 'win32':
            return self._get_layout_windows()
        elif sys.platform == 'darwin':
            return self._get_layout_macos()
        return self._get_layout_linux()

    def installed_layouts(self) -> list:
        """Layouts enabled in the OS, in the OS's order."""
        if sys.platform == 'win32':
            return self._installed_windows()
        if sys.platform == 'darwin':
            return _macos_enabled_sources()
        return _setxkbmap_layouts()

    def switch_to(self, layout_id: str) -> bool:
        """
        Make layout_id the active OS layout. An id the OS does not list
        verbatim ("ru" on a Mac) picks the first OS layout of the same family.
        """
        if sys.platform == 'win32':
            os_id = self._switch_windows(layout_id)
        elif sys.platform == 'darwin':
            os_id = self._switch_macos(layout_id)
        else:
            os_id = self._switch_linux(layout_id)
        if os_id is None:
            return False
        with self._lock:
            if os_id != self.current:
                self.previous, self.current = self.current, os_id
        logger.info("switched layout to '%s'", os_id)
        return True

    # ── Internal ──────────────────────────────────────────────────────────────

    def _poll_loop(self) -> None:
        while not self._stop.wait(self._POLL_INTERVAL):
            layout = self.current_os_layout()
            if layout is None:
                continue
            with self._lock:
                if layout != self.current:
                    self.previous = self.current
                    self.current = layout

    # ── Windows ───────────────────────────────────────────────────────────────

    def _get_layout_windows(self) -> str | None:
        try:
            user32 = _user32()
            hwnd = user32.GetForegroundWindow()
            thread_id = user32.GetWindowThreadProcessId(hwnd, None)
            hkl = user32.GetKeyboardLayout(thread_id)
        except (AttributeError, OSError):
            return None
        return _LCID_MAP.get(hkl & 0xFFFF)

    def _installed_windows(self) -> list:
        codes = []
        for hkl in _keyboard_layout_list_windows():
            code = _LCID_MAP.get(hkl & 0xFFFF)
            if code and code not in codes:
                codes.append(code)
        return codes

    def _switch_windows(self, layout_id: str) -> str | None:
        hkls = _keyboard_layout_list_windows()
        codes = [_LCID_MAP.get(hkl & 0xFFFF, '') for hkl in hkls]
        index = _pick_os_layout(layout_id, codes)
        if index is None:
            logger.debug("layout '%s' is not installed", layout_id)
            return None
        import ctypes
        try:
            user32 = _user32()
            # The foreground window's thread switches its own input language.
            posted = user32.PostMessageW(user32.GetForegroundWindow(), _WM_INPUTLANGCHANGEREQUEST,
                                         0, ctypes.c_void_p(hkls[index]))
        except (AttributeError, OSError):
            return None
        return codes[index] if posted else None

    # ── macOS ─────────────────────────────────────────────────────────────────

    def _get_layout_macos(self) -> str | None:
        # e.g. "com.apple.keylayout.Russian"
        return _run('defaults', 'read', 'com.apple.HIToolbox',
                    'AppleCurrentKeyboardLayoutInputSourceID') or None

    def _switch_macos(self, layout_id: str) -> str | None:
        sources = _macos_enabled_sources()
        index = _pick_os_layout(layout_id, sources)
        if index is None:
            logger.debug("layout '%s' is not an enabled input source %s", layout_id, sources)
            return None
        if not _tis_select_input_source(sources[index]):
            return None
        return sources[index]

    # ── Linux ─────────────────────────────────────────────────────────────────

    def _get_layout_linux(self) -> str | None:
        out = _run('xkblayout-state', 'print', '%s')
        if out:
            return out.lower()
        layouts = _setxkbmap_layouts()
        return layouts[0] if layouts else None

    def _switch_linux(self, layout_id: str) -> str | None:
        layouts = _setxkbmap_layouts()
        index = _pick_os_layout(layout_id, layouts)
        if index is None:
            logger.debug("layout '%s' is not in the OS layout list %s", layout_id, layouts)
            return None
        if _run('xkblayout-state', 'set', str(index)) is None:
            logger.debug('xkblayout-state set failed')
            return None
        return layouts[index]
