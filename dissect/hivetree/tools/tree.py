from __future__ import annotations

import argparse
import sys
from pathlib import Path

from dissect.hivetree.exceptions import Error
from dissect.hivetree.hive import RegistryHive


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Print the key tree of a Windows registry hive")
    parser.add_argument("hive", type=Path, help="path to the registry hive")
    parser.add_argument("-v", "--verbose", action="store_true", help="print a summary of every key instead of its name")
    args = parser.parse_args(argv)

    try:
        fh = args.hive.open("rb")
    except OSError as e:
        print(f"Unable to open {args.hive}: {e}", file=sys.stderr)
        return 1

    with fh:
        try:
            hive = RegistryHive(fh)
            print(f"Last modification time: {hive.timestamp:%a %b %d %H:%M:%S %Y} UTC")

            for depth, key in hive.walk():
                print(" " * depth + (repr(key) if args.verbose else key.name))
        except Error as e:
            print(f"Fatal: {e}", file=sys.stderr)
            return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
