"""Atomic, change-detecting publication of the configuration document."""

import os
import tempfile
from pathlib import Path
from typing import Protocol

from ..logging_config import get_logger
from .builder import serialize_document

logger = get_logger(__name__)


class IPublisher(Protocol):
    """Writes a document to its target path."""

    def publish(self, document: dict, target_path: Path) -> bool:
        """Write document if its content differs. Returns True if written."""
        ...


class AtomicPublisher:
    """Temp file in the target directory, fsync, then os.replace.

    Readers see either the previous complete document or the new one.
    Blocking; the sync cycle runs it in a worker thread.
    """

    def publish(self, document: dict, target_path: Path) -> bool:
        target_path = Path(target_path)
        content = serialize_document(document).encode("utf-8")

        try:
            if target_path.read_bytes() == content:
                logger.debug("Document unchanged, skipping write to %s", target_path)
                return False
        except FileNotFoundError:
            pass

        target_path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path_str = tempfile.mkstemp(
            dir=target_path.parent,
            prefix=f".{target_path.name}.",
            suffix=".tmp",
        )
        tmp_path = Path(tmp_path_str)
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, target_path)
        except Exception:
            # Clean up temp file on failure
            try:
                tmp_path.unlink(missing_ok=True)
            except OSError:
                logger.warning("Could not remove temp file %s", tmp_path)
            raise

        logger.info(
            "Published document",
            extra={"context": {"path": str(target_path), "bytes": len(content)}},
        )
        return True
