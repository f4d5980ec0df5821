"""
Keyboard layout tables and the layout registry.

Every layout is described by the character it prints at each of the same 94
physical key slots (the four character rows of a standard keyboard, then the
same four rows with Shift held). Slots are labelled by what US QWERTY prints
there, so position 16 is "the key US QWERTY calls 'w'" in every layout.
"""

import re
from dataclasses import dataclass
from functools import cached_property


# =============================================================================
# PHYSICAL KEYS
# =============================================================================

def _rows(*rows: str) -> str:
    return ''.join(rows)


PHYSICAL_KEYS = _rows(
    '`1234567890-=', 'qwertyuiop[]\\', "asdfghjkl;'", 'zxcvbnm,./',
    '~!@#$%^&*()_+', 'QWERTYUIOP{}|', 'ASDFGHJKL:"', 'ZXCVBNM<>?',
)


@dataclass(frozen=True)
class LayoutDefinition:
    """Characters one layout produces at each physical key slot."""

    id: str
    characters: str
    physical_keys: str = PHYSICAL_KEYS

    def __post_init__(self):
        if len(self.characters) != len(self.physical_keys):
            raise ValueError(
                f"layout '{self.id}' has {len(self.characters)} characters "
                f"for {len(self.physical_keys)} physical keys"
            )

    @cached_property
    def char_map(self) -> 'CharacterMap':
        return CharacterMap(self)


class CharacterMap:
    """
    Bidirectional view over a LayoutDefinition.

    position -> character is total. character -> position is first-seen wins,
    so a layout printing the same character on two keys always reports the
    earlier slot.
    """

    def __init__(self, layout: LayoutDefinition):
        self.layout = layout
        self._positions: dict = {}
        for i, c in enumerate(layout.characters):
            self._positions.setdefault(c, i)
        self.charset = frozenset(self._positions)

    def to_char(self, position: int) -> str:
        return self.layout.characters[position]

    def to_position(self, char: str) -> int | None:
        return self._positions.get(char)

    def __contains__(self, char: str) -> bool:
        return char in self._positions


# =============================================================================
# LAYOUT TABLES
# =============================================================================

# ── US QWERTY (also ABC and British) ──────────────────────────────────────────
US = LayoutDefinition('us', PHYSICAL_KEYS)

# ── Russian ───────────────────────────────────────────────────────────────────
RUSSIAN = LayoutDefinition('russian', _rows(
    'ё1234567890-=', 'йцукенгшщзхъ\\', 'фывапролджэ', 'ячсмитьбю.',
    'Ё!"№;%:?*()_+', 'ЙЦУКЕНГШЩЗХЪ/', 'ФЫВАПРОЛДЖЭ', 'ЯЧСМИТЬБЮ,',
))

# ── Ukrainian ─────────────────────────────────────────────────────────────────
UKRAINIAN = LayoutDefinition('ukrainian', _rows(
    "'1234567890-=", 'йцукенгшщзхї\\', 'фівапролджє', 'ячсмитьбю.',
    '₴!"№;%:?*()_+', 'ЙЦУКЕНГШЩЗХЇ/', 'ФІВАПРОЛДЖЄ', 'ЯЧСМИТЬБЮ,',
))

# ── German QWERTZ ─────────────────────────────────────────────────────────────
GERMAN = LayoutDefinition('german', _rows(
    '^1234567890ß´', 'qwertzuiopü+#', 'asdfghjklöä', 'yxcvbnm,.-',
    '°!"§$%&/()=?`', "QWERTZUIOPÜ*'", 'ASDFGHJKLÖÄ', 'YXCVBNM;:_',
))

# ── French AZERTY ─────────────────────────────────────────────────────────────
FRENCH = LayoutDefinition('french', _rows(
    '²&é"\'(-è_çà)=', 'azertyuiop^$*', 'qsdfghjklmù', 'wxcvbn,;:!',
    '³1234567890°+', 'AZERTYUIOP¨£µ', 'QSDFGHJKLM%', 'WXCVBN?./§',
))

# ── Spanish ───────────────────────────────────────────────────────────────────
SPANISH = LayoutDefinition('spanish', _rows(
    "º1234567890'¡", 'qwertyuiop`+ç', 'asdfghjklñ´', 'zxcvbnm,.-',
    'ª!"·$%&/()=?¿', 'QWERTYUIOP^*Ç', 'ASDFGHJKLÑ¨', 'ZXCVBNM;:_',
))


# =============================================================================
# REGISTRY
# =============================================================================

_SEGMENT_SPLIT = re.compile(r'[^0-9a-z]+')


@dataclass(frozen=True)
class LayoutPattern:
    """
    Matches an OS layout identifier against a family token.

    Containment is used for family names long enough to be unambiguous
    ("russian"). Short codes ("us", "ru") only match a whole identifier
    segment: "com.apple.keylayout.US" and "us" match "us",
    "com.apple.keylayout.Russian" does not.
    """

    token: str
    segment: bool = False

    def matches(self, layout_id: str) -> bool:
        lowered = layout_id.lower()
        if self.segment:
            return self.token in _SEGMENT_SPLIT.split(lowered)
        return self.token in lowered


# Order matters: the first matching pattern wins. Variant names that embed a
# more generic token ("ABC-QWERTZ" embeds "abc") come before that token.
DEFAULT_PATTERNS: tuple = (
    (LayoutPattern('russian'),       RUSSIAN),
    (LayoutPattern('ukrainian'),     UKRAINIAN),
    (LayoutPattern('german'),        GERMAN),
    (LayoutPattern('qwertz'),        GERMAN),
    (LayoutPattern('french'),        FRENCH),
    (LayoutPattern('azerty'),        FRENCH),
    (LayoutPattern('spanish'),       SPANISH),
    (LayoutPattern('british'),       US),
    (LayoutPattern('abc'),           US),
    (LayoutPattern('usinternational'), US),
    (LayoutPattern('usextended'),    US),
    (LayoutPattern('australian'),    US),
    (LayoutPattern('irish'),         US),
    (LayoutPattern('us', segment=True), US),
    (LayoutPattern('gb', segment=True), US),
    (LayoutPattern('ru', segment=True), RUSSIAN),
    (LayoutPattern('ua', segment=True), UKRAINIAN),
    (LayoutPattern('de', segment=True), GERMAN),
    (LayoutPattern('fr', segment=True), FRENCH),
    (LayoutPattern('es', segment=True), SPANISH),
)


class LayoutRegistry:
    """Resolves OS layout identifiers to layout definitions, first match wins."""

    def __init__(self, patterns=DEFAULT_PATTERNS):
        self._patterns = tuple(patterns)

    def lookup(self, layout_id: str) -> LayoutDefinition | None:
        for pattern, layout in self._patterns:
            if pattern.matches(layout_id):
                return layout
        return None

    def families(self) -> list:
        """Distinct layout definitions with the tokens that resolve to each."""
        seen: dict = {}
        for pattern, layout in self._patterns:
            seen.setdefault(layout.id, (layout, []))[1].append(pattern.token)
        return list(seen.values())


REGISTRY = LayoutRegistry()


def lookup(layout_id: str) -> LayoutDefinition | None:
    return REGISTRY.lookup(layout_id)
