"""
Path reference rewriting

Replaces references to the relative ``gen/`` tree with the runtime root,
one file at a time. Files are independent, so they are processed on a
thread pool.
"""

import logging
import os
import re
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import List, Optional

logger = logging.getLogger(__name__)


def relative_reference_pattern(relative_root: str = "gen/") -> "re.Pattern":
    """
    Pattern matching a token-initial relative root

    ``gen/`` preceded by a path or word character is part of something else
    (``/etc/scion/gen/``, ``regen/``) and does not match.
    """
    return re.compile(rb'(?<![\w./-])' + re.escape(relative_root.encode()))


class PathRewriter:
    """Rewrite relative config-tree references to an absolute root"""

    def __init__(self,
                 absolute_root: str,
                 relative_root: str = "gen/",
                 max_workers: Optional[int] = None):
        """
        Args:
            absolute_root: Runtime location of the tree, e.g. /etc/scion/gen
            relative_root: Reference prefix found in the bundle
            max_workers: Thread pool size (None lets the executor decide)
        """
        self.relative_root = relative_root
        self.replacement = absolute_root.rstrip('/').encode() + b'/'
        self.pattern = relative_reference_pattern(relative_root)
        self.max_workers = max_workers

    def rewrite_file(self, path: Path) -> int:
        """
        Rewrite one file in place

        Returns:
            Number of substituted references (0 means the file was not touched)
        """
        content = path.read_bytes()
        new_content, count = self.pattern.subn(self.replacement, content)
        if count:
            path.write_bytes(new_content)
        return count

    def rewrite_tree(self, root: Path) -> List[Path]:
        """
        Rewrite every regular file below root

        Returns:
            Files that contained at least one reference, sorted
        """
        files = sorted(
            Path(dirpath) / name
            for dirpath, _, filenames in os.walk(root)
            for name in filenames
            if not (Path(dirpath) / name).is_symlink()
        )

        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            counts = list(pool.map(self.rewrite_file, files))

        rewritten = [f for f, n in zip(files, counts) if n]
        logger.info("Rewrote %d references in %d of %d files",
                    sum(counts), len(rewritten), len(files))
        return rewritten

    def remaining_references(self, path: Path) -> int:
        """Count relative references still present in a file"""
        return len(self.pattern.findall(path.read_bytes()))
