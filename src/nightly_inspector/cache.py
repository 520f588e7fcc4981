"""On-disk cache of previously seen nightlies."""

import json
import logging
import os
import tempfile
import threading
from pathlib import Path

from pydantic import ValidationError

from nightly_inspector.models import Nightly

logger = logging.getLogger(__name__)


class NightlyCache:
    """A JSON array of Nightly records at a fixed path."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def load(self) -> list[Nightly]:
        """Read the cached set; a missing or corrupt file yields ``[]``."""
        try:
            content = self.path.read_text()
        except FileNotFoundError:
            # No cache yet, cold start
            return []
        except OSError as e:
            logger.warning("Cache file reading error: %s", e)
            return []

        try:
            raw = json.loads(content)
        except json.JSONDecodeError as e:
            logger.warning("Cache file %s is corrupt, starting fresh: %s", self.path, e)
            return []
        if not isinstance(raw, list):
            logger.warning("Cache file %s is not a list, starting fresh", self.path)
            return []

        nightlies: list[Nightly] = []
        seen: set[str] = set()
        for item in raw:
            try:
                nightly = Nightly.model_validate(item)
            except ValidationError as e:
                logger.info("Skipping unreadable cache entry: %s", e)
                continue
            if nightly.sha in seen:
                continue
            seen.add(nightly.sha)
            nightlies.append(nightly)
        logger.debug("Loaded %d nightlies from %s", len(nightlies), self.path)
        return nightlies

    def save(self, nightlies: list[Nightly]) -> None:
        """Atomically replace the cache file."""
        payload = json.dumps(
            [n.model_dump(mode="json", by_alias=True) for n in nightlies],
            indent=2,
        )
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=".nightlies-", suffix=".json")
        try:
            with os.fdopen(fd, "w") as fh:
                fh.write(payload)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        logger.debug("Updated nightlies saved to %s", self.path)

    def save_in_background(self, nightlies: list[Nightly]) -> threading.Thread:
        """Write the cache without blocking; errors are only logged.

        The thread is a daemon so the process may exit before it finishes.
        """
        snapshot = [n.model_copy() for n in nightlies]

        def _write() -> None:
            try:
                self.save(snapshot)
            except Exception as e:
                logger.warning("Error saving nightlies: %s", e)

        thread = threading.Thread(target=_write, name="nightly-cache-save", daemon=True)
        thread.start()
        return thread
