"""
Text and JSON rendering for decoded message trees.

Text form, two spaces per nesting level, fields in decode order:

    1: 150
    2: "abc"
    3: {
      1: 42
    }
    4: {}
    5: 00ff10
"""

from __future__ import annotations

import json
from typing import Any, Dict, Iterator, List

from pb_raw_decoder import WIRE_TYPE_NAMES, Bytes, Raw, Submessage, Text, UInt


INDENT = '  '

_ESCAPES = {
    '\\': '\\\\',
    '"': '\\"',
    '\n': '\\n',
    '\r': '\\r',
    '\t': '\\t',
}


def escape_text(s: str) -> str:
    out = []
    for ch in s:
        esc = _ESCAPES.get(ch)
        if esc is not None:
            out.append(esc)
        elif ch.isprintable():
            out.append(ch)
        else:
            cp = ord(ch)
            if cp <= 0xFF:
                out.append(f'\\x{cp:02x}')
            elif cp <= 0xFFFF:
                out.append(f'\\u{cp:04x}')
            else:
                out.append(f'\\U{cp:08x}')
    return ''.join(out)


def format_value(value) -> str:
    if isinstance(value, UInt):
        return str(value.value)
    if isinstance(value, Text):
        return '"' + escape_text(value.text) + '"'
    if isinstance(value, (Raw, Bytes)):
        return bytes(value.data).hex()
    raise TypeError(f'Cannot format {type(value).__name__} inline')


def iter_lines(message: Submessage, depth: int = 0) -> Iterator[str]:
    # explicit stack: nesting can be as deep as the input is long
    stack = [(iter(message.fields), depth)]
    while stack:
        fields, level = stack[-1]
        field = next(fields, None)
        if field is None:
            stack.pop()
            if stack:
                yield INDENT * (level - 1) + '}'
            continue
        pad = INDENT * level
        value = field.value
        if isinstance(value, Submessage):
            if value.fields:
                yield f'{pad}{field.number}: {{'
                stack.append((iter(value.fields), level + 1))
            else:
                yield f'{pad}{field.number}: {{}}'
        else:
            yield f'{pad}{field.number}: {format_value(value)}'


def render_text(message: Submessage) -> str:
    lines = list(iter_lines(message))
    if not lines:
        return ''
    return '\n'.join(lines) + '\n'


def to_dict(message: Submessage) -> Dict[str, Any]:
    root: Dict[str, Any] = {'fields': []}
    stack = [(message.fields, root['fields'])]
    while stack:
        fields, out = stack.pop()
        for f in fields:
            value = f.value
            entry: Dict[str, Any] = {
                'number': f.number,
                'wireType': WIRE_TYPE_NAMES.get(f.wire_type, str(f.wire_type)),
                'kind': value.kind,
            }
            if isinstance(value, Submessage):
                children: List[Dict[str, Any]] = []
                entry['fields'] = children
                stack.append((value.fields, children))
            elif isinstance(value, UInt):
                entry['value'] = value.value
            elif isinstance(value, Text):
                entry['value'] = value.text
            else:
                entry['value'] = bytes(value.data).hex()
            out.append(entry)
    return root


def render_json(message: Submessage, indent: int = 2) -> str:
    return json.dumps(to_dict(message), indent=indent, ensure_ascii=False) + '\n'
