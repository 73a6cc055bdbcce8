#!/usr/bin/env python3
"""pynar — read and write Nix archives."""

import argparse
import logging
import sys

from pynar import decoder, fs, hash as narhash
from pynar.errors import NarError


def cmd_pack(args):
    if args.output:
        with open(args.output, "wb") as out:
            fs.pack_path(args.path, out)
    else:
        fs.pack_path(args.path, sys.stdout.buffer)
        sys.stdout.buffer.flush()


def cmd_unpack(args):
    if args.archive == "-":
        fs.unpack_path(sys.stdin.buffer, args.dest)
    else:
        with open(args.archive, "rb") as f:
            fs.unpack_path(f, args.dest)


def _show(name: bytes) -> str:
    # Names are arbitrary bytes; undecodable ones print as \xNN escapes.
    return name.decode(errors="backslashreplace")


def cmd_ls(args):
    with open(args.archive, "rb") as f:
        for entry in decoder.open_archive(f).entries():
            path = "/" + _show(entry.path)
            if entry.is_dir():
                print(f"dr-xr-xr-x {0:>10} {path}")
            elif entry.is_symlink():
                print(f"lrwxrwxrwx {0:>10} {path} -> {_show(entry.target)}")
            else:
                perms = "-r-xr-xr-x" if entry.executable else "-r--r--r--"
                print(f"{perms} {entry.size:>10} {path}")


def cmd_hash_path(args):
    if args.hex:
        print(f"sha256:{narhash.nar_hash_hex(args.path)}")
    else:
        print(narhash.nar_hash_sri(args.path))


def main(argv=None):
    parser = argparse.ArgumentParser(prog="pynar", description="Read and write Nix archives")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log debug messages")
    sub = parser.add_subparsers(dest="command")

    # pack
    p = sub.add_parser("pack", help="Serialize a path to NAR")
    p.add_argument("path")
    p.add_argument("-o", "--output", help="Write to a file instead of stdout")
    p.set_defaults(func=cmd_pack)

    # unpack
    p = sub.add_parser("unpack", help="Restore a NAR into a new path")
    p.add_argument("archive", help="NAR file (or - for stdin)")
    p.add_argument("dest")
    p.set_defaults(func=cmd_unpack)

    # ls
    p = sub.add_parser("ls", help="List the entries of a NAR")
    p.add_argument("archive")
    p.set_defaults(func=cmd_ls)

    # hash-path
    p = sub.add_parser("hash-path", help="Hash a path in NAR format")
    p.add_argument("path")
    p.add_argument("--hex", action="store_true", help="Print sha256:<hex> instead of SRI")
    p.set_defaults(func=cmd_hash_path)

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(name)s: %(message)s",
    )
    if not args.command:
        parser.print_help()
        sys.exit(1)
    try:
        args.func(args)
    except NarError as err:
        print(f"pynar: {err}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
