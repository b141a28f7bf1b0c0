"""
Card files on disk.

Cards live as <ID>.md in the cards directory until they are archived, then
as read-only files in the archive directory. Every load records the file's
revision; writes compare it again first so an edit made while a pass was
running is never overwritten.
"""

import hashlib
import logging
import os
import shutil
import stat
from dataclasses import dataclass
from pathlib import Path

from cardsync.lib.config import LifecycleConfig
from cardsync.lib.constants import CARD_ID_PATTERN
from cardsync.lib.document import WorkItemDocument, parse_document, serialize_document
from cardsync.lib.errors import ConcurrentEdit, MalformedDocument

logger = logging.getLogger(__name__)

ARCHIVED_MODE = 0o444


def file_revision(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()[:12]


@dataclass(frozen=True)
class LoadedCard:
    """A card as read at the start of a pass."""
    doc: WorkItemDocument
    path: Path
    revision: str
    archived: bool


class CardStore:
    """Reads and writes card files under the configured directories."""

    def __init__(self, cards_dir: Path, archive_dir: Path, lifecycle: LifecycleConfig | None = None):
        self.cards_dir = cards_dir
        self.archive_dir = archive_dir
        self.lifecycle = lifecycle or LifecycleConfig()

    def locate(self, card_id: str) -> Path:
        """Path of the card file, active or archived.

        Raises:
            ValueError: if card_id is not a valid card ID
            FileNotFoundError: if no card file exists
        """
        if not CARD_ID_PATTERN.match(card_id):
            raise ValueError(f"Invalid card ID '{card_id}'")

        for directory in (self.cards_dir, self.archive_dir):
            path = directory / f"{card_id}.md"
            if path.exists():
                return path
        raise FileNotFoundError(f"No card file for {card_id} in {self.cards_dir} or {self.archive_dir}")

    def load(self, card_id: str) -> LoadedCard:
        """Read and parse a card.

        Raises:
            FileNotFoundError: if the card doesn't exist
            MalformedDocument: if the card doesn't parse, or names another ID
        """
        path = self.locate(card_id)
        text = path.read_text()
        doc = parse_document(text, self.lifecycle)
        if doc.id != card_id:
            raise MalformedDocument(f"{path.name} declares ID '{doc.id}'", key="ID")
        return LoadedCard(
            doc=doc,
            path=path,
            revision=file_revision(text),
            archived=self.is_archived(path),
        )

    def is_archived(self, path: Path) -> bool:
        return path.parent.resolve() == self.archive_dir.resolve()

    def current_revision(self, path: Path) -> str | None:
        if not path.exists():
            return None
        return file_revision(path.read_text())

    def write(self, path: Path, doc: WorkItemDocument, expected_revision: str) -> str:
        """Replace the card file with `doc` and return the new revision.

        The file is written to a sibling temp file and renamed over the
        original, keeping its permission bits.

        Raises:
            PermissionError: if the card is archived; archived cards are read-only
            ConcurrentEdit: if the file no longer has `expected_revision`
        """
        if self.is_archived(path):
            raise PermissionError(f"{path} is archived and read-only")
        if self.current_revision(path) != expected_revision:
            raise ConcurrentEdit(str(path))

        text = serialize_document(doc)
        mode = stat.S_IMODE(path.stat().st_mode)
        tmp = path.with_name(f".{path.name}.tmp")
        tmp.write_text(text)
        os.chmod(tmp, mode)
        os.replace(tmp, path)

        logger.debug(f"[STORE] wrote {path}")
        return file_revision(text)

    def archive(self, path: Path, expected_revision: str) -> Path:
        """Move a card into the archive directory and make it read-only.

        Raises:
            ConcurrentEdit: if the file changed since it was last written
            FileExistsError: if the archive already holds a card of that name
        """
        if self.current_revision(path) != expected_revision:
            raise ConcurrentEdit(str(path))

        self.archive_dir.mkdir(parents=True, exist_ok=True)
        dest = self.archive_dir / path.name
        if dest.exists():
            raise FileExistsError(f"{dest} already exists")

        shutil.move(str(path), str(dest))
        os.chmod(dest, ARCHIVED_MODE)
        logger.info(f"[STORE] archived {path.name} -> {dest}")
        return dest
