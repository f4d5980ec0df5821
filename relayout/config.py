"""Configuration loaded from ~/.config/relayout/config.toml."""

import logging
import tomllib
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path.home() / '.config' / 'relayout' / 'config.toml'
DEFAULT_LAYOUTS = ['us', 'ru']


class SmartConversionMode(str, Enum):
    """What the hotkey does when nothing is selected."""
    DISABLED = 'disabled'
    LAST_WORD = 'last_word'
    GREEDY_LINE = 'greedy_line'


class LayoutSwitchMode(str, Enum):
    """When to flip the OS layout after a hotkey conversion."""
    ALWAYS = 'always'
    IF_LAST_WORD = 'if_last_word'
    IF_ANY_WORD = 'if_any_word'


@dataclass
class LayoutsConfig:
    enabled: list = field(default_factory=list)  # empty: ask the OS


@dataclass
class ConversionConfig:
    smart_mode: SmartConversionMode = SmartConversionMode.GREEDY_LINE
    layout_switch: LayoutSwitchMode = LayoutSwitchMode.ALWAYS
    whole_line_ratio: float = 0.7
    whole_line_min_words: int = 3


@dataclass
class DaemonConfig:
    hotkey: str = '<ctrl>+<alt>+<space>'
    restore_clipboard_delay: float = 2.0


@dataclass
class LoggingConfig:
    level: str = 'INFO'
    file: str = ''


def _enum_value(enum_cls, raw, default):
    try:
        return enum_cls(raw)
    except ValueError:
        valid = ', '.join(m.value for m in enum_cls)
        logger.warning("invalid %s '%s' (expected one of: %s), using '%s'",
                       enum_cls.__name__, raw, valid, default.value)
        return default


@dataclass
class Config:
    layouts: LayoutsConfig = field(default_factory=LayoutsConfig)
    conversion: ConversionConfig = field(default_factory=ConversionConfig)
    daemon: DaemonConfig = field(default_factory=DaemonConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def load(cls, path: Path | None = None) -> 'Config':
        """
        Load configuration from a TOML file.

        A missing file means defaults. An unreadable or malformed one is logged
        and also falls back to defaults.
        """
        if path is None:
            path = DEFAULT_CONFIG_PATH

        if not path.exists():
            logger.debug('no config file at %s, using defaults', path)
            return cls()

        logger.debug('loading configuration from %s', path)
        try:
            with open(path, 'rb') as f:
                data = tomllib.load(f)
        except (OSError, tomllib.TOMLDecodeError) as e:
            logger.warning('failed to load config %s: %s, using defaults', path, e)
            return cls()
        return cls._from_dict(data)

    @classmethod
    def _from_dict(cls, data: dict) -> 'Config':
        config = cls()

        if 'layouts' in data:
            enabled = data['layouts'].get('enabled', [])
            if isinstance(enabled, str):
                enabled = [s.strip() for s in enabled.split(',') if s.strip()]
            config.layouts = LayoutsConfig(enabled=list(enabled))

        if 'conversion' in data:
            c = data['conversion']
            defaults = config.conversion
            config.conversion = ConversionConfig(
                smart_mode=_enum_value(SmartConversionMode,
                                       c.get('smart_mode', defaults.smart_mode.value),
                                       defaults.smart_mode),
                layout_switch=_enum_value(LayoutSwitchMode,
                                          c.get('layout_switch', defaults.layout_switch.value),
                                          defaults.layout_switch),
                whole_line_ratio=float(c.get('whole_line_ratio', defaults.whole_line_ratio)),
                whole_line_min_words=int(c.get('whole_line_min_words', defaults.whole_line_min_words)),
            )

        if 'daemon' in data:
            d = data['daemon']
            config.daemon = DaemonConfig(
                hotkey=d.get('hotkey', config.daemon.hotkey),
                restore_clipboard_delay=float(
                    d.get('restore_clipboard_delay', config.daemon.restore_clipboard_delay)),
            )

        if 'logging' in data:
            l = data['logging']
            config.logging = LoggingConfig(
                level=l.get('level', config.logging.level),
                file=l.get('file', config.logging.file),
            )

        return config
