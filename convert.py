#!/usr/bin/env python3
"""CLI entry point for ef80escape bytes <-> UTF-8 text conversion."""

import argparse
import json
import os
import sys

# Add parent dir to path so we can import ef80escape from a checkout
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from ef80escape.transcoder import encode, decode, scan
from ef80escape.bundle import write_bundle, read_bundle, unpack_bundle
from ef80escape.fuzz import run_fuzz


def _read_input(path) -> bytes:
    if path == '-':
        return sys.stdin.buffer.read()
    with open(path, 'rb') as f:
        return f.read()


def _write_output(path, data: bytes):
    if path:
        with open(path, 'wb') as f:
            f.write(data)
        print(f"Written to {path}", file=sys.stderr)
    else:
        sys.stdout.buffer.write(data)
        sys.stdout.buffer.flush()


def cmd_encode(args):
    text = encode(_read_input(args.file))
    if args.json:
        text = json.dumps(text, ensure_ascii=False) + '\n'
    _write_output(args.output, text.encode('utf-8'))


def cmd_decode(args):
    # Strict: the input has to be well-formed UTF-8 already
    text = _read_input(args.file).decode('utf-8')
    if args.json:
        text = json.loads(text)
        if not isinstance(text, str):
            raise ValueError(f"expected a JSON string, got {type(text).__name__}")
    _write_output(args.output, decode(text))


def cmd_info(args):
    stats = scan(_read_input(args.file))
    print(f"File: {args.file}")
    print(f"Input bytes: {stats.input_bytes}")
    print(f"  valid UTF-8: {stats.text_bytes}")
    print(f"  raw (mapped to U+EF80..U+EFFF): {stats.raw_bytes}")
    print(f"Escape markers inserted: {stats.escapes}")
    print(f"Output codepoints: {stats.output_chars}")
    print(f"Unchanged: {'yes' if stats.zero_copy else 'no'}")


def cmd_pack(args):
    write_bundle(args.dir, args.output, progress=not args.quiet)


def cmd_unpack(args):
    bundle = read_bundle(args.bundle)
    _, fail = unpack_bundle(bundle, args.output, progress=not args.quiet)
    return 1 if fail else 0


def cmd_fuzz(args):
    print(f"Fuzzing {args.iterations} payloads (max {args.max_length} bytes, "
          f"seed={args.seed})...")
    report = run_fuzz(args.iterations, max_length=args.max_length,
                      seed=args.seed, progress=not args.quiet)
    print(f"  {report.iterations} payloads, {report.total_bytes} bytes, "
          f"{len(report.failures)} failures")
    for failure in report.failures[:10]:
        print(f"  FAIL: {failure.data!r} - {failure.error}", file=sys.stderr)
    return 0 if report.ok else 1


def build_parser():
    parser = argparse.ArgumentParser(
        description='Lossless conversion between arbitrary bytes and UTF-8 text'
    )
    subparsers = parser.add_subparsers(dest='command', help='Command to run')

    # 'encode' command - bytes to text
    encode_parser = subparsers.add_parser('encode', help='Convert bytes to UTF-8 text')
    encode_parser.add_argument('file', help="Input file ('-' for stdin)")
    encode_parser.add_argument('-o', '--output', help='Output file (default: stdout)')
    encode_parser.add_argument('--json', action='store_true',
                               help='Write a JSON string literal')
    encode_parser.set_defaults(func=cmd_encode)

    # 'decode' command - text back to bytes
    decode_parser = subparsers.add_parser('decode', help='Convert encoded text back to bytes')
    decode_parser.add_argument('file', help="Input file ('-' for stdin)")
    decode_parser.add_argument('-o', '--output', help='Output file (default: stdout)')
    decode_parser.add_argument('--json', action='store_true',
                               help='Input is a JSON string literal')
    decode_parser.set_defaults(func=cmd_decode)

    # 'info' command - show how a file would be encoded
    info_parser = subparsers.add_parser('info', help='Show encoding statistics for a file')
    info_parser.add_argument('file', help="File to inspect ('-' for stdin)")
    info_parser.set_defaults(func=cmd_info)

    # 'pack' / 'unpack' commands - directory trees in a JSON bundle
    pack_parser = subparsers.add_parser('pack', help='Pack a directory into a JSON bundle')
    pack_parser.add_argument('dir', help='Directory to pack')
    pack_parser.add_argument('-o', '--output', required=True, help='Bundle file to write')
    pack_parser.add_argument('-q', '--quiet', action='store_true',
                             help='No progress bar')
    pack_parser.set_defaults(func=cmd_pack)

    unpack_parser = subparsers.add_parser('unpack', help='Restore a directory from a bundle')
    unpack_parser.add_argument('bundle', help='Bundle file to read')
    unpack_parser.add_argument('-o', '--output', required=True,
                               help='Destination directory')
    unpack_parser.add_argument('-q', '--quiet', action='store_true',
                               help='No progress bar')
    unpack_parser.set_defaults(func=cmd_unpack)

    # 'fuzz' command - randomized round-trip check
    fuzz_parser = subparsers.add_parser('fuzz', help='Round-trip random payloads')
    fuzz_parser.add_argument('-n', '--iterations', type=int, default=10000,
                             help='Number of payloads (default: 10000)')
    fuzz_parser.add_argument('--max-length', type=int, default=256,
                             help='Maximum payload length (default: 256)')
    fuzz_parser.add_argument('--seed', type=int, default=None,
                             help='RNG seed (default: random)')
    fuzz_parser.add_argument('-q', '--quiet', action='store_true',
                             help='No progress bar')
    fuzz_parser.set_defaults(func=cmd_fuzz)

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    try:
        return args.func(args) or 0
    except (OSError, ValueError) as e:
        # UnicodeDecodeError and JSONDecodeError are ValueErrors too
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == '__main__':
    sys.exit(main())
