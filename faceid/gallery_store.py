"""Persistent gallery of enrolled identities backed by a FAISS index.

Layout of the store directory:

    gallery.faiss      FAISS IndexFlatIP holding one embedding per identity
    gallery.json       identity, enrollment time and thumbnail file per row
    thumbnails/*.jpg   optional operator-facing face crops

Row i of the index belongs to entry i of gallery.json. The whole store is
rewritten on every mutation; galleries are small (one vector per person).

A save writes both files to .tmp siblings first. Replacing gallery.faiss
commits the save; a gallery.json.tmp left without its index .tmp is a
committed save whose metadata swap was interrupted, and is finished on load.
Thumbnail file names include a content hash so a committed gallery.json
never points at a half-written replacement.
"""

from __future__ import annotations

import hashlib
import json
import os
import threading
import time
from pathlib import Path
from typing import Dict, List, Optional

import faiss
import numpy as np

from faceid.interfaces import GalleryEntry
from faceid.logging_config import get_logger
from faceid.matcher_faiss import normalize

logger = get_logger(__name__)

INDEX_FILE = "gallery.faiss"
METADATA_FILE = "gallery.json"
THUMBNAIL_DIR = "thumbnails"


def _thumbnail_name(identity: str, data: bytes) -> str:
    # Identities are free text; hash them into safe file names
    key = hashlib.sha1(identity.encode("utf-8")).hexdigest()
    return f"{key}-{hashlib.sha1(data).hexdigest()[:12]}.jpg"


class FaissGalleryStore:
    """Gallery store persisted as a FAISS index plus JSON metadata.

    Implements the GalleryStore protocol. Every list() call returns a new
    snapshot list; entries themselves are immutable.

    Attributes:
        root_dir: Directory holding the store files
        dimension: Embedding dimension of the model in use

    Example:
        >>> store = FaissGalleryStore("data/gallery", dimension=embedder.embedding_dim)
        >>> store.upsert("alice", embedding, thumbnail=jpeg_bytes)
        >>> [e.identity for e in store.list()]
        ['alice']
    """

    def __init__(self, root_dir: str | Path, dimension: int):
        """Open (or create) a gallery store.

        Args:
            root_dir: Store directory; created on first write
            dimension: Embedding dimension

        Raises:
            RuntimeError: If the files on disk are inconsistent.
        """
        if dimension <= 0:
            raise ValueError(f"dimension must be > 0, got {dimension}")

        self.root_dir = Path(root_dir)
        self.dimension = dimension
        self._lock = threading.Lock()
        self._entries: Dict[str, GalleryEntry] = {}

        self._load()

    @property
    def index_path(self) -> Path:
        return self.root_dir / INDEX_FILE

    @property
    def metadata_path(self) -> Path:
        return self.root_dir / METADATA_FILE

    @property
    def thumbnail_dir(self) -> Path:
        return self.root_dir / THUMBNAIL_DIR

    def list(self) -> List[GalleryEntry]:
        """Return a snapshot of all entries in enrollment order."""
        with self._lock:
            return list(self._entries.values())

    def get(self, identity: str) -> Optional[GalleryEntry]:
        """Return the entry for identity, or None."""
        with self._lock:
            return self._entries.get(identity)

    def upsert(
        self,
        identity: str,
        embedding: np.ndarray,
        thumbnail: Optional[bytes] = None,
    ) -> GalleryEntry:
        """Insert or replace an identity.

        Args:
            identity: Non-empty identity key
            embedding: Embedding of length `dimension` (normalized on insert)
            thumbnail: Optional JPEG bytes

        Returns:
            The stored entry.

        Raises:
            ValueError: If identity is empty or the dimension is wrong.
            OSError: If the store cannot be written; the store is unchanged.
        """
        identity = self._check_identity(identity)
        vector = normalize(embedding)
        if vector.shape[0] != self.dimension:
            raise ValueError(
                f"Embedding dimension {vector.shape[0]} != store dimension {self.dimension}"
            )

        entry = GalleryEntry(
            identity=identity,
            embedding=vector,
            enrolled_at=time.time(),
            thumbnail=thumbnail,
        )

        with self._lock:
            replaced = identity in self._entries
            entries = dict(self._entries)
            entries[identity] = entry
            self._commit(entries)

        logger.info(f"{'Updated' if replaced else 'Enrolled'} identity '{identity}'")
        return entry

    def delete(self, identity: str) -> bool:
        """Delete an identity. Returns False if it was not enrolled."""
        with self._lock:
            if identity not in self._entries:
                return False
            entries = {k: v for k, v in self._entries.items() if k != identity}
            self._commit(entries)

        logger.info(f"Deleted identity '{identity}'")
        return True

    def rename(self, old_identity: str, new_identity: str) -> bool:
        """Rename an identity, keeping its embedding and thumbnail.

        The enrollment time is refreshed.

        Returns:
            False if old_identity was not enrolled.

        Raises:
            ValueError: If new_identity is empty or already taken.
        """
        new_identity = self._check_identity(new_identity)

        with self._lock:
            entry = self._entries.get(old_identity)
            if entry is None:
                return False
            if new_identity == old_identity:
                return True
            if new_identity in self._entries:
                raise ValueError(f"Identity '{new_identity}' already exists")

            renamed = GalleryEntry(
                identity=new_identity,
                embedding=entry.embedding,
                enrolled_at=time.time(),
                thumbnail=entry.thumbnail,
            )
            # Rebuild to keep the renamed entry in its original position
            entries = {
                (new_identity if key == old_identity else key): (
                    renamed if key == old_identity else value
                )
                for key, value in self._entries.items()
            }
            self._commit(entries)

        logger.info(f"Renamed identity '{old_identity}' -> '{new_identity}'")
        return True

    @staticmethod
    def _check_identity(identity: str) -> str:
        if not isinstance(identity, str) or not identity.strip():
            raise ValueError("Identity must be a non-empty string")
        return identity.strip()

    @staticmethod
    def _tmp(path: Path) -> Path:
        return path.with_name(path.name + ".tmp")

    def _commit(self, entries: Dict[str, GalleryEntry]) -> None:
        # Memory changes only after the save succeeds
        self._save(list(entries.values()))
        self._entries = entries

    def _save(self, entries: List[GalleryEntry]) -> None:
        self.root_dir.mkdir(parents=True, exist_ok=True)
        self.thumbnail_dir.mkdir(parents=True, exist_ok=True)

        metadata = []
        keep = set()
        for entry in entries:
            thumb_name = None
            if entry.thumbnail is not None:
                thumb_name = _thumbnail_name(entry.identity, entry.thumbnail)
                thumb_path = self.thumbnail_dir / thumb_name
                if not thumb_path.exists():
                    tmp_thumb = self._tmp(thumb_path)
                    tmp_thumb.write_bytes(entry.thumbnail)
                    os.replace(tmp_thumb, thumb_path)
                keep.add(thumb_name)
            metadata.append(
                {
                    "identity": entry.identity,
                    "enrolled_at": entry.enrolled_at,
                    "thumbnail": thumb_name,
                }
            )

        index = faiss.IndexFlatIP(self.dimension)
        if entries:
            matrix = np.stack([e.embedding for e in entries]).astype(np.float32)
            index.add(np.ascontiguousarray(matrix))

        index_tmp = self._tmp(self.index_path)
        metadata_tmp = self._tmp(self.metadata_path)

        # Index .tmp must be complete before the metadata .tmp appears
        faiss.write_index(index, str(index_tmp))
        with open(metadata_tmp, "w", encoding="utf-8") as f:
            json.dump({"dimension": self.dimension, "entries": metadata}, f, indent=2)

        os.replace(index_tmp, self.index_path)
        os.replace(metadata_tmp, self.metadata_path)

        self._remove_stale_thumbnails(keep)
        logger.debug(f"Saved gallery ({len(entries)} entries) to {self.root_dir}")

    def _remove_stale_thumbnails(self, keep: set) -> None:
        for stale in self.thumbnail_dir.glob("*.jpg"):
            if stale.name not in keep:
                stale.unlink()

    def _recover(self) -> None:
        index_tmp = self._tmp(self.index_path)
        metadata_tmp = self._tmp(self.metadata_path)

        if index_tmp.exists():
            # Interrupted before the index swap: the old files are current
            logger.warning(f"Discarding unfinished gallery save in {self.root_dir}")
            index_tmp.unlink()
            if metadata_tmp.exists():
                metadata_tmp.unlink()
        elif metadata_tmp.exists():
            logger.warning(f"Finishing interrupted gallery save in {self.root_dir}")
            os.replace(metadata_tmp, self.metadata_path)

    def _load(self) -> None:
        self._recover()

        if not self.index_path.exists() and not self.metadata_path.exists():
            logger.debug(f"No gallery at {self.root_dir}; starting empty")
            return

        if not self.index_path.exists():
            raise RuntimeError(f"Gallery index missing: {self.index_path}")
        if not self.metadata_path.exists():
            raise RuntimeError(f"Gallery metadata missing: {self.metadata_path}")

        index = faiss.read_index(str(self.index_path))
        if index.d != self.dimension:
            raise RuntimeError(
                f"Index dimension {index.d} doesn't match expected dimension {self.dimension}"
            )

        with open(self.metadata_path, "r", encoding="utf-8") as f:
            metadata = json.load(f)["entries"]

        if len(metadata) != index.ntotal:
            raise RuntimeError(
                f"Mismatch: {len(metadata)} metadata rows but {index.ntotal} index entries"
            )

        vectors = (
            index.reconstruct_n(0, index.ntotal)
            if index.ntotal > 0
            else np.zeros((0, self.dimension), dtype=np.float32)
        )

        for row, vector in zip(metadata, vectors):
            thumbnail = None
            if row.get("thumbnail"):
                thumb_path = self.thumbnail_dir / row["thumbnail"]
                if thumb_path.exists():
                    thumbnail = thumb_path.read_bytes()
                else:
                    logger.warning(f"Thumbnail missing for '{row['identity']}': {thumb_path}")

            self._entries[row["identity"]] = GalleryEntry(
                identity=row["identity"],
                embedding=normalize(vector),
                enrolled_at=float(row["enrolled_at"]),
                thumbnail=thumbnail,
            )

        logger.info(f"Loaded {len(self._entries)} identities from {self.root_dir}")

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __repr__(self) -> str:
        """String representation of store."""
        return (
            f"FaissGalleryStore(root_dir='{self.root_dir}', "
            f"dim={self.dimension}, entries={len(self)})"
        )
