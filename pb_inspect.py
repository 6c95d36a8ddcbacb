#!/usr/bin/env python3
"""Dump the structure of protobuf wire-format blobs without a schema.

Usage:
    python -m pb_inspect blob.bin [more.bin ...] [--json] [--inflate]
    python -m pb_inspect --hex "08 96 01"
    cat blob.bin | python -m pb_inspect -
"""

import argparse
import os
import sys

from pb_raw_decoder import DecodeError, decode_message, inflate_if_compressed
from pb_renderer import render_json, render_text


def _env_int(name, default):
    try:
        return int(os.getenv(name) or default)
    except ValueError:
        return default


def _env_flag(name):
    return (os.getenv(name) or '').strip().lower() in ('1', 'true', 'yes', 'on')


MAX_INPUT_BYTES = _env_int('PB_INSPECT_MAX_BYTES', 64 * 1024 * 1024)
INFLATE_DEFAULT = _env_flag('PB_INSPECT_INFLATE')


def parse_hex_arg(text):
    s = text.strip()
    if s[:2].lower() == '0x':
        s = s[2:]
    s = ''.join(s.split()).replace(':', '')
    try:
        return bytes.fromhex(s)
    except ValueError:
        raise ValueError(f'Invalid hex string: {text!r}') from None


def read_input(name, max_bytes=None):
    limit = MAX_INPUT_BYTES if max_bytes is None else max_bytes
    if name == '-':
        data = sys.stdin.buffer.read(limit + 1)
    else:
        if os.path.getsize(name) > limit:
            raise ValueError(f'Input exceeds {limit} bytes')
        with open(name, 'rb') as f:
            data = f.read(limit + 1)
    if len(data) > limit:
        raise ValueError(f'Input exceeds {limit} bytes')
    return data


def inspect_bytes(data, as_json=False, inflate=False, allow_raw_deflate=False, log=None):
    if inflate or allow_raw_deflate:
        unpacked = inflate_if_compressed(data, allow_raw_deflate=allow_raw_deflate)
        if log:
            log(f"compression: {unpacked['method']} ({len(data):,} -> {len(unpacked['data']):,} bytes)")
            for attempt in unpacked['attempts']:
                log(f'  tried {attempt}')
        data = unpacked['data']
    message = decode_message(data)
    if as_json:
        return render_json(message)
    return render_text(message)


def build_parser():
    parser = argparse.ArgumentParser(
        prog='pb-inspect',
        description='Decode protobuf wire-format data without a schema',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Length-delimited fields are shown as a nested message when their bytes parse
as one, otherwise as a quoted UTF-8 string, otherwise as lowercase hex.

Examples:
    pb-inspect capture.bin
    pb-inspect --hex 08960112036162632a020801
    pb-inspect --inflate --json record.bin
"""
    )
    parser.add_argument('inputs', nargs='*', metavar='FILE',
                        help="Files to decode ('-' reads stdin)")
    parser.add_argument('--hex', action='append', default=[], metavar='HEX',
                        help='Decode a hex string given on the command line (repeatable)')
    parser.add_argument('--json', action='store_true',
                        help='Output as JSON')
    parser.add_argument('--inflate', action='store_true', default=INFLATE_DEFAULT,
                        help='Inflate zlib/gzip-compressed input before decoding')
    parser.add_argument('--raw-deflate', action='store_true',
                        help='Also try headerless deflate (implies --inflate)')
    parser.add_argument('-v', '--verbose', action='store_true',
                        help='Print input sizes and decompression details to stderr')
    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    sources = [(False, name, name) for name in args.inputs]
    sources += [(True, f'hex[{i}]', h) for i, h in enumerate(args.hex)]
    if not sources:
        parser.error('no input given (FILE, - or --hex)')

    def log(msg):
        print(msg, file=sys.stderr)

    status = 0
    for is_hex, label, source in sources:
        try:
            if is_hex:
                data = parse_hex_arg(source)
            else:
                data = read_input(source)
            if args.verbose:
                log(f'{label}: {len(data):,} bytes')
            out = inspect_bytes(
                data,
                as_json=args.json,
                inflate=args.inflate,
                allow_raw_deflate=args.raw_deflate,
                log=log if args.verbose else None,
            )
        except OSError as e:
            log(f'error: {label}: {e.strerror or e}')
            status = 1
            continue
        except DecodeError as e:
            log(f'error: {label}: not a protobuf message: {e}')
            status = 1
            continue
        except ValueError as e:
            log(f'error: {label}: {e}')
            status = 1
            continue
        except RecursionError:
            log(f'error: {label}: nesting too deep for JSON output, use text output')
            status = 1
            continue

        if len(sources) > 1:
            print(f'# {label}')
        print(out, end='')
    return status


if __name__ == '__main__':
    sys.exit(main())
