"""Asset path resolver for wildcard and database-key asset references.

Mask definitions may point at a concrete file ("tokens/wolf.webp"), a
wildcard pattern ("tokens/guards/bear-*.png") that picks one matching file
at random, or, for effects, a dotted database key ("jb2a.fire.loop") that
resolves through an effect database to one of its files.
"""

import fnmatch
import inspect
import logging
import os
import random
from pathlib import Path
from typing import Any, Callable, List, Mapping, Optional, Union
from urllib.parse import unquote

logger = logging.getLogger(__name__)

# Maximum depth followed when descending database keys
MAX_DATABASE_DEPTH = 10

Browser = Callable[[str], Any]


def is_wildcard(path: Optional[str]) -> bool:
    return bool(path) and ('*' in path or '?' in path)


def split_pattern(path: str):
    """Split "dir/sub/name-*.png" into ("dir/sub/", "name-*.png")"""
    last_slash = path.rfind('/')
    if last_slash < 0:
        return "", path
    return path[:last_slash + 1], path[last_slash + 1:]


def local_browser(base_dir: Union[str, Path]) -> Browser:
    """Browser listing files below base_dir on the local filesystem

    Returned paths keep the directory prefix as written in the pattern.
    """
    base = Path(base_dir)

    def browse(directory: str) -> List[str]:
        target = base / directory
        if not target.is_dir():
            return []
        return [
            f"{directory}{entry}"
            for entry in sorted(os.listdir(target))
            if (target / entry).is_file()
        ]

    return browse


class AssetPathResolver:
    """Resolve asset references into concrete paths

    Args:
        browser: Callable listing the files of a directory (sync or async).
            Without one, wildcard paths cannot be resolved and yield None.
        database: Optional nested mapping used for effect database keys
        rng: Random source (injectable for deterministic tests)
    """

    def __init__(self, browser: Optional[Browser] = None,
                 database: Optional[Mapping[str, Any]] = None,
                 rng: Optional[random.Random] = None):
        self._browser = browser
        self._database = database or {}
        self._rng = rng or random.Random()

    async def resolve(self, path: Optional[str]) -> Optional[str]:
        """Resolve a possibly-wildcard path

        Returns:
            The path unchanged when it has no wildcard, a random matching
            file when it does, or None when nothing matches.
        """
        if not path or not is_wildcard(path):
            return path

        directory, pattern = split_pattern(path)
        try:
            files = await self._browse(directory)
        except Exception as e:
            logger.warning(f"Error resolving wildcard path: {path} | {e}")
            return None

        pattern = pattern.lower()
        matches = [
            f for f in files
            if fnmatch.fnmatchcase(unquote(f.rsplit('/', 1)[-1]).lower(), pattern)
        ]
        if not matches:
            logger.debug(f"No files match wildcard path: {path}")
            return None
        return self._rng.choice(matches)

    async def resolve_effect(self, raw_path: Optional[str]) -> Optional[str]:
        """Resolve an effect asset reference

        Paths containing "/" are treated as files (wildcards allowed),
        anything else as a database key.
        """
        if not raw_path:
            return None
        if '/' in raw_path:
            return await self.resolve(raw_path)

        entry = self._lookup(raw_path, 0)
        if entry is None:
            return None
        file = entry
        if isinstance(file, Mapping):
            file = file.get('file')
        if isinstance(file, (list, tuple)):
            file = self._rng.choice(file) if file else None
        if isinstance(file, Mapping):
            file = file.get('file')
        return file if isinstance(file, str) else None

    async def _browse(self, directory: str) -> List[str]:
        if self._browser is None:
            raise LookupError("No browser configured for wildcard resolution")
        result = self._browser(directory)
        if inspect.isawaitable(result):
            result = await result
        return list(result or [])

    def _lookup(self, key: str, depth: int):
        """Find a playable entry, descending into random children"""
        if depth > MAX_DATABASE_DEPTH:
            return None
        node: Any = self._database
        for segment in key.split('.'):
            if not isinstance(node, Mapping) or segment not in node:
                return None
            node = node[segment]

        if isinstance(node, (str, list, tuple)):
            return node
        if isinstance(node, Mapping):
            if 'file' in node:
                return node
            children = sorted(node.keys())
            if children:
                child = self._rng.choice(children)
                return self._lookup(f"{key}.{child}", depth + 1)
        return None
