"""
relayout: fix text typed in the wrong keyboard layout.

Usage:
  relayout "ghbdtn"                  # detect among enabled layouts → "привет"
  relayout -f us -t ru "ghbdtn"      # explicit direction
  relayout --greedy "Привет ghbdtn"  # convert only the mistyped tail
  relayout --clipboard               # convert clipboard in place
  relayout --daemon                  # global hotkey daemon
"""

import argparse
import logging
import sys
from pathlib import Path

from .config import DEFAULT_LAYOUTS, Config
from .engine import ConversionOrchestrator, convert, detect_source_layout
from .layouts import REGISTRY
from .log import die, setup_logging
from .monitor import LanguageMonitor

logger = logging.getLogger(__name__)


# =============================================================================
# ENABLED LAYOUTS
# =============================================================================

def _split_ids(value: str) -> list:
    return [s.strip() for s in value.split(',') if s.strip()]


def resolve_enabled_layouts(cli_value: str | None, config: Config,
                            monitor: LanguageMonitor | None = None) -> list:
    """
    Enabled layout ids, first usable source wins:
    --layouts, then [layouts] enabled, then the OS layout list (only ids
    with a layout table, and only if at least two are left), then the
    built-in us/ru pair.
    """
    if cli_value:
        return _split_ids(cli_value)
    if config.layouts.enabled:
        return list(config.layouts.enabled)
    if monitor is not None:
        installed = [l for l in monitor.installed_layouts() if REGISTRY.lookup(l) is not None]
        if len(installed) >= 2:
            return installed
        logger.debug('OS lists %d usable layout(s), using %s', len(installed), DEFAULT_LAYOUTS)
    return list(DEFAULT_LAYOUTS)


def _validate_layout(layout_id: str, role: str) -> str:
    if REGISTRY.lookup(layout_id) is None:
        die(f"Unknown {role} layout '{layout_id}'. Run --list to see options.")
    return layout_id


def print_supported_layouts() -> None:
    print('\nSupported layouts (any identifier containing a name, or a code as a whole segment):\n')
    for layout, tokens in REGISTRY.families():
        print(f'  {layout.id:10} ← {", ".join(tokens)}')
    print('\nexamples: us, ru, com.apple.keylayout.Russian, xkb:de\n')


# =============================================================================
# CONVERSION MODES
# =============================================================================

def _convert_explicit(text: str, from_id: str | None, to_id: str | None, layouts: list) -> str:
    """Explicit direction; a missing side is filled from the enabled layouts."""
    if from_id is None:
        from_id = detect_source_layout(text, [l for l in layouts if l != to_id] or layouts)
        if from_id is None:
            die('could not detect the layout the text was typed in.')
    if to_id is None:
        to_id = next((l for l in layouts if l != from_id), None)
        if to_id is None:
            die('need a target layout: pass -t or enable at least two layouts.')
    result = convert(text, from_id, to_id)
    if result is None:
        die(f"cannot convert '{from_id}' → '{to_id}'.")
    return result


def _convert_text(args, text: str, orchestrator: ConversionOrchestrator) -> str:
    if args.from_id or args.to_id:
        return _convert_explicit(text, args.from_id, args.to_id, orchestrator.enabled_layouts())

    if args.greedy:
        outcome = orchestrator.convert_line_greedy(text)
        if outcome is None:
            logger.debug('nothing at the end of the line looks mistyped')
            return text
        return outcome.text

    outcome = orchestrator.convert_selected_text(text)
    if outcome is None:
        die('could not convert: enable at least two layouts that cover the text.')
    return outcome.text


def _read_clipboard() -> str:
    try:
        import pyperclip
    except ImportError:
        die('Clipboard mode requires pyperclip.\n  pip install pyperclip')
    return pyperclip.paste() or ''


def _write_clipboard(text: str) -> None:
    try:
        import pyperclip
    except ImportError:
        die('Clipboard mode requires pyperclip.\n  pip install pyperclip')
    pyperclip.copy(text)


def _read_input(args) -> str:
    if args.text is not None:
        text = args.text
    elif not sys.stdin.isatty():
        text = sys.stdin.read()
    else:
        print('Enter text to convert (Ctrl+D / Ctrl+Z when done):', file=sys.stderr)
        text = sys.stdin.read()
    return text.rstrip('\n')


# =============================================================================
# MAIN
# =============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='relayout',
        description='Convert text typed in the wrong keyboard layout.',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
examples:
  relayout "ghbdtn"                        # auto-detect → "привет"
  echo "ghbdtn" | relayout -f us -t ru     # explicit US→RU
  relayout --greedy "Привет ghbdtn"        # only the mistyped tail
  relayout --check "ghbdtn"                # exit 0 if it looks mistyped
  relayout --layouts us,de "Hallo"         # override enabled layouts
  relayout --clipboard                     # convert clipboard
  relayout --daemon --hotkey "<ctrl>+<alt>+k"
  relayout --list                          # show supported layouts
        """,
    )

    parser.add_argument('-f', '--from', dest='from_id', metavar='LAYOUT',
                        help='source layout (default: auto-detect)')
    parser.add_argument('-t', '--to', dest='to_id', metavar='LAYOUT',
                        help='target layout (default: the other enabled layout)')
    parser.add_argument('text', nargs='?', default=None,
                        help='text to convert (omit to read from stdin)')
    parser.add_argument('--greedy', '-g', action='store_true',
                        help='convert only the wrong-layout tail of the line')
    parser.add_argument('--check', action='store_true',
                        help='print yes/no: does the text look typed in the wrong layout')
    parser.add_argument('--layouts', metavar='IDS',
                        help='comma-separated enabled layouts (default: config, then OS)')
    parser.add_argument('--clipboard', '-c', action='store_true',
                        help='read from clipboard, write converted text back')
    parser.add_argument('--daemon', '-d', action='store_true',
                        help='start hotkey daemon (requires pynput + pyperclip)')
    parser.add_argument('--hotkey', metavar='HOTKEY',
                        help='hotkey for daemon mode (default: <ctrl>+<alt>+<space>)')
    parser.add_argument('--list', '-l', action='store_true',
                        help='list supported layouts and exit')
    parser.add_argument('--config', metavar='PATH', type=Path,
                        help='config file (default: ~/.config/relayout/config.toml)')
    parser.add_argument('--log', metavar='FILE',
                        help='write log output to FILE (useful with pythonw.exe)')
    parser.add_argument('--verbose', '-v', action='store_true',
                        help='log engine decisions')
    return parser


def main(argv=None) -> None:
    args = build_parser().parse_args(argv)

    setup_logging('DEBUG' if args.verbose else 'INFO', args.log)
    config = Config.load(args.config)
    setup_logging('DEBUG' if args.verbose else config.logging.level,
                  args.log or config.logging.file or None)

    if args.list:
        print_supported_layouts()
        return

    if args.from_id:
        _validate_layout(args.from_id, 'source')
    if args.to_id:
        _validate_layout(args.to_id, 'target')

    monitor = LanguageMonitor()
    if args.daemon:
        if args.hotkey:
            config.daemon.hotkey = args.hotkey
        # Re-resolved per conversion so OS layout changes are picked up.
        orchestrator = _orchestrator(
            config, lambda: resolve_enabled_layouts(args.layouts, config, monitor))
        from .daemon import run_daemon
        run_daemon(config, orchestrator)
        return

    layouts = resolve_enabled_layouts(args.layouts, config, monitor)
    for layout_id in layouts:
        _validate_layout(layout_id, 'enabled')
    orchestrator = _orchestrator(config, lambda: layouts)
    logger.debug('enabled layouts: %s', ', '.join(layouts))

    if args.clipboard:
        text = _read_clipboard()
        if not text.strip():
            die('clipboard is empty.')
        result = _convert_text(args, text, orchestrator)
        _write_clipboard(result)
        logger.info('✓ converted text written to clipboard')
        return

    text = _read_input(args)

    if args.check:
        wrong = orchestrator.looks_like_wrong_layout(text)
        print('yes' if wrong else 'no')
        sys.exit(0 if wrong else 1)

    print(_convert_text(args, text, orchestrator))


def _orchestrator(config: Config, enabled) -> ConversionOrchestrator:
    return ConversionOrchestrator(
        enabled,
        whole_line_ratio=config.conversion.whole_line_ratio,
        whole_line_min_words=config.conversion.whole_line_min_words,
    )


if __name__ == '__main__':
    main()
