"""
Annotation data model.

Boxes and images travel over the wire as plain dicts with the camelCase
keys the browser client uses (``fontSize``, ``isBold``, ``imageBytes`` ...).
The dataclasses below are the validated in-process form; ``from_dict`` and
``to_dict`` convert at the boundary.

Updates are expressed as one of four explicit patch variants rather than
arbitrary partial dicts: :class:`MoveTo`, :class:`Resize`, :class:`SetText`
and :class:`SetStyle`.  :func:`parse_patch` maps an incoming dict onto
exactly one of them or raises :class:`~pdf_collab.errors.PatchError`.
"""

import base64
import re
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional, Tuple, Union

from .errors import PatchError

PLACEHOLDER_TEXT = 'Type...'
DEFAULT_FONT_SIZE = 12.0
DEFAULT_COLOR = '#000000'

_HEX_COLOR = re.compile(r'^#?([a-f\d]{2})([a-f\d]{2})([a-f\d]{2})$', re.IGNORECASE)

RGB = Tuple[float, float, float]


def hex_to_rgb01(value: Optional[str]) -> RGB:
    """Convert ``#RRGGBB`` to a 0-1 RGB triple; anything unparsable is black."""
    match = _HEX_COLOR.match(value or DEFAULT_COLOR)
    if not match:
        return (0.0, 0.0, 0.0)
    r, g, b = (int(part, 16) / 255 for part in match.groups())
    return (r, g, b)


def rgb01_to_hex(color: RGB) -> str:
    def channel(v: float) -> str:
        return '%02x' % round(max(0.0, min(255.0, v * 255)))
    return '#' + ''.join(channel(v) for v in color)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _coerce_bytes(value: Any) -> bytes:
    """Accept the shapes image bytes arrive in: raw bytes, base64 text,
    a list of ints, or a JSON-serialised typed array (``{"0": 137, ...}``)."""
    if value is None:
        return b''
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)
    if isinstance(value, str):
        if ',' in value and value.startswith('data:'):
            value = value.split(',', 1)[1]
        return base64.b64decode(value)
    if isinstance(value, dict):
        return bytes(value[k] for k in sorted(value, key=int))
    if isinstance(value, (list, tuple)):
        return bytes(value)
    raise ValueError('unsupported image byte encoding: %s' % type(value).__name__)


# ---------------------------------------------------------------------------
# Patch variants
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class MoveTo:
    left: float
    top: float

    def to_dict(self) -> Dict[str, Any]:
        return {'left': self.left, 'top': self.top}


@dataclass(frozen=True)
class Resize:
    width: float
    height: float

    def to_dict(self) -> Dict[str, Any]:
        return {'width': self.width, 'height': self.height}


@dataclass(frozen=True)
class SetText:
    text: str

    def to_dict(self) -> Dict[str, Any]:
        return {'text': self.text}


@dataclass(frozen=True)
class SetStyle:
    font_size: Optional[float] = None
    color: Optional[str] = None
    is_bold: Optional[bool] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        if self.font_size is not None:
            out['fontSize'] = self.font_size
        if self.color is not None:
            out['color'] = self.color
        if self.is_bold is not None:
            out['isBold'] = self.is_bold
        return out


Patch = Union[MoveTo, Resize, SetText, SetStyle]

_STYLE_KEYS = {'fontSize', 'color', 'isBold'}


def parse_patch(raw: Any) -> Patch:
    """Validate a wire patch and return the matching variant."""
    if isinstance(raw, (MoveTo, Resize, SetText, SetStyle)):
        return raw
    if not isinstance(raw, dict) or not raw:
        raise PatchError('patch must be a non-empty object')
    keys = set(raw)
    if keys == {'left', 'top'}:
        if not (_is_number(raw['left']) and _is_number(raw['top'])):
            raise PatchError('move patch needs numeric left/top')
        return MoveTo(float(raw['left']), float(raw['top']))
    if keys == {'width', 'height'}:
        w, h = raw['width'], raw['height']
        if not (_is_number(w) and _is_number(h)) or w <= 0 or h <= 0:
            raise PatchError('resize patch needs positive width/height')
        return Resize(float(w), float(h))
    if keys == {'text'}:
        if not isinstance(raw['text'], str):
            raise PatchError('text patch needs a string')
        return SetText(raw['text'])
    if keys <= _STYLE_KEYS:
        size = raw.get('fontSize')
        color = raw.get('color')
        bold = raw.get('isBold')
        if size is not None and (not _is_number(size) or size <= 0):
            raise PatchError('fontSize must be a positive number')
        if color is not None and (not isinstance(color, str) or not _HEX_COLOR.match(color)):
            raise PatchError('color must be #RRGGBB')
        if bold is not None and not isinstance(bold, bool):
            raise PatchError('isBold must be a boolean')
        return SetStyle(float(size) if size is not None else None, color, bold)
    raise PatchError('unrecognised patch fields: %s' % ', '.join(sorted(keys)))


# ---------------------------------------------------------------------------
# Annotations
# ---------------------------------------------------------------------------

@dataclass
class Box:
    """A placed text annotation.  Position and size are screen pixels."""

    id: str
    left: float
    top: float
    width: float = 180.0
    height: float = DEFAULT_FONT_SIZE + 8
    text: str = PLACEHOLDER_TEXT
    font_size: float = DEFAULT_FONT_SIZE
    color: str = DEFAULT_COLOR
    is_bold: bool = False
    locked: bool = False

    ACCEPTS = (MoveTo, Resize, SetText, SetStyle)

    @property
    def is_drawable(self) -> bool:
        return bool(self.text and self.text.strip()) and self.text != PLACEHOLDER_TEXT

    def apply(self, patch: Patch) -> 'Box':
        if not isinstance(patch, self.ACCEPTS):
            raise PatchError('%s does not apply to a box' % type(patch).__name__)
        if isinstance(patch, SetStyle):
            changes = {k: v for k, v in (('font_size', patch.font_size),
                                         ('color', patch.color),
                                         ('is_bold', patch.is_bold)) if v is not None}
            return replace(self, **changes)
        return replace(self, **vars(patch))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'left': self.left,
            'top': self.top,
            'width': self.width,
            'height': self.height,
            'text': self.text,
            'fontSize': self.font_size,
            'color': self.color,
            'isBold': self.is_bold,
            'locked': self.locked,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Box':
        if not isinstance(data, dict) or not data.get('id'):
            raise ValueError('box requires an id')
        font_size = data.get('fontSize') or DEFAULT_FONT_SIZE
        return cls(
            id=str(data['id']),
            left=float(data.get('left', 0)),
            top=float(data.get('top', 0)),
            width=float(data.get('width', 180)),
            height=float(data.get('height', float(font_size) + 8)),
            text=str(data.get('text') or ''),
            font_size=float(font_size),
            color=data.get('color') or DEFAULT_COLOR,
            is_bold=bool(data.get('isBold', False)),
            locked=bool(data.get('locked', False)),
        )


@dataclass
class ImageAnnotation:
    """A placed raster annotation.  Position and size are screen pixels."""

    id: str
    left: float
    top: float
    width: float
    height: float
    image_bytes: bytes = field(default=b'', repr=False)
    image_type: str = 'image/png'
    image_url: Optional[str] = None

    ACCEPTS = (MoveTo, Resize)

    def apply(self, patch: Patch) -> 'ImageAnnotation':
        if not isinstance(patch, self.ACCEPTS):
            raise PatchError('%s does not apply to an image' % type(patch).__name__)
        return replace(self, **vars(patch))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'left': self.left,
            'top': self.top,
            'width': self.width,
            'height': self.height,
            'imageBytes': base64.b64encode(self.image_bytes).decode('ascii'),
            'imageType': self.image_type,
            'imageUrl': self.image_url,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ImageAnnotation':
        if not isinstance(data, dict) or not data.get('id'):
            raise ValueError('image requires an id')
        return cls(
            id=str(data['id']),
            left=float(data.get('left', 0)),
            top=float(data.get('top', 0)),
            width=float(data['width']),
            height=float(data['height']),
            image_bytes=_coerce_bytes(data.get('imageBytes')),
            image_type=str(data.get('imageType') or 'image/png').lower(),
            image_url=data.get('imageUrl'),
        )


@dataclass(frozen=True)
class TextBlock:
    """A glyph run already present in the source document.

    ``x``/``y`` is the baseline origin in PDF points (bottom-left origin).
    ``color`` is a 0-1 RGB triple.
    """

    text: str
    x: float
    y: float
    width: float
    height: float
    font_name: str
    font_size: float
    is_bold: bool = False
    is_italic: bool = False
    color: RGB = (0.0, 0.0, 0.0)
    page: int = 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            'str': self.text,
            'x': self.x,
            'y': self.y,
            'width': self.width,
            'height': self.height,
            'fontName': self.font_name,
            'fontSize': self.font_size,
            'isBold': self.is_bold,
            'isItalic': self.is_italic,
            'color': {'r': self.color[0], 'g': self.color[1], 'b': self.color[2]},
        }
