#!/usr/bin/env python3
"""List, rename or delete enrolled identities.

Usage:
    python scripts/manage_gallery.py list
    python scripts/manage_gallery.py rename ALICE "Alice Smith"
    python scripts/manage_gallery.py delete BOB
    python scripts/manage_gallery.py export-thumbnail ALICE alice.jpg
"""

from __future__ import annotations

import argparse
import sys
from datetime import datetime
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from faceid.config import Config
from faceid.gallery_store import FaissGalleryStore
from faceid.logging_config import setup_logging

logger = setup_logging(__name__)


def parse_args() -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(description="Manage the face gallery")
    parser.add_argument(
        "--gallery-dir",
        type=str,
        default=None,
        help="Gallery directory (overrides .env GALLERY_DIR)",
    )
    parser.add_argument(
        "--dimension",
        type=int,
        default=None,
        help="Embedding dimension (overrides .env EMBEDDING_DIM)",
    )

    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("list", help="List enrolled identities")

    rename = sub.add_parser("rename", help="Rename an identity")
    rename.add_argument("old")
    rename.add_argument("new")

    delete = sub.add_parser("delete", help="Delete an identity")
    delete.add_argument("identity")

    export = sub.add_parser("export-thumbnail", help="Write an identity's thumbnail to a file")
    export.add_argument("identity")
    export.add_argument("output")

    return parser.parse_args()


def main() -> int:
    """Main function."""
    args = parse_args()
    config = Config.from_env()
    gallery_dir = Path(args.gallery_dir) if args.gallery_dir else config.gallery_dir
    dimension = args.dimension or config.embedding_dim
    store = FaissGalleryStore(gallery_dir, dimension=dimension)

    if args.command == "list":
        entries = store.list()
        if not entries:
            print("Gallery is empty")
        for entry in entries:
            enrolled = datetime.fromtimestamp(entry.enrolled_at).strftime("%Y-%m-%d %H:%M")
            thumb = "yes" if entry.thumbnail else "no"
            print(f"{entry.identity:<30} enrolled {enrolled}  thumbnail: {thumb}")
        return 0

    if args.command == "rename":
        try:
            renamed = store.rename(args.old, args.new)
        except ValueError as e:
            print(f"Error: {e}")
            return 1
        if not renamed:
            print(f"Error: '{args.old}' is not enrolled")
            return 1
        print(f"Renamed '{args.old}' -> '{args.new}'")
        return 0

    if args.command == "delete":
        if not store.delete(args.identity):
            print(f"Error: '{args.identity}' is not enrolled")
            return 1
        print(f"Deleted '{args.identity}'")
        return 0

    entry = store.get(args.identity)
    if entry is None or entry.thumbnail is None:
        print(f"Error: no thumbnail for '{args.identity}'")
        return 1
    Path(args.output).write_bytes(entry.thumbnail)
    print(f"Thumbnail written to {args.output}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
