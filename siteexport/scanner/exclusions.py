"""Path exclusion rules applied while enumerating the content tree."""

import os
from collections.abc import Iterable
from pathlib import Path

from siteexport.scanner.filesystem import parse_filename

# Directories relative to the content root that never belong in an export:
# other migration tools' archives, cache and temp directories, hosting
# mu-plugins and the exporter's own plugin directory.
DEFAULT_EXCLUDED_PATHS = (
    "ai1wm-backups",
    "hostinger-migration-archives",
    "updraft",
    "backup",
    "backups",
    "vivid-migration-backups",
    "migration-backups",
    "plugins/custom-migrator",
    "plugins/all-in-one-migration",
    "plugins/updraftplus",
    "cache",
    "wp-cache",
    "et_cache",
    "w3tc",
    "wp-rocket-config",
    "w3tc-config",
    "mu-plugins/endurance-page-cache.php",
    "mu-plugins/endurance-php-edge.php",
    "mu-plugins/endurance-browser-cache.php",
    "mu-plugins/gd-system-plugin.php",
    "mu-plugins/wp-stack-cache.php",
    "mu-plugins/wpcomsh-loader.php",
    "mu-plugins/wpcomsh",
    "mu-plugins/mu-plugin.php",
    "mu-plugins/wpe-wp-sign-on-plugin.php",
    "mu-plugins/wpengine-security-auditor.php",
    "mu-plugins/aaa-wp-cerber.php",
    "mu-plugins/sqlite-database-integration",
    "mu-plugins/0-sqlite.php",
    "uploads/civicrm",
    "temp",
    "tmp",
)

# .sql is deliberately absent: plain SQL files in the tree are content.
BACKUP_EXTENSIONS = frozenset({"wpress", "bak", "backup", "old"})
CACHE_SUFFIXES = (".less.cache",)
CACHE_DATABASE_EXTENSIONS = frozenset({"sqlite"})


def is_backup_file(path: str) -> bool:
    return parse_filename(os.path.basename(path)).extension in BACKUP_EXTENSIONS


def is_cache_file(path: str) -> bool:
    filename = os.path.basename(path)
    if filename.endswith(CACHE_SUFFIXES):
        return True
    return parse_filename(filename).extension in CACHE_DATABASE_EXTENSIONS


class ExclusionFilter:
    """Decides whether a path is left out of the export.

    Prefix rules match a configured path exactly or anything below it, so
    ``cache`` excludes ``cache/x`` but not ``cache-legit/x``. Extra prefixes
    can be added at any time and are applied together with the defaults.
    """

    def __init__(
        self,
        source_dir: Path | str,
        extra_prefixes: Iterable[str | Path] = (),
        defaults: Iterable[str] = DEFAULT_EXCLUDED_PATHS,
    ):
        root = os.path.realpath(source_dir)
        self._prefixes: list[str] = []
        self.add_prefixes(os.path.join(root, relative) for relative in defaults)
        self.add_prefixes(extra_prefixes)

    @property
    def prefixes(self) -> tuple[str, ...]:
        return tuple(self._prefixes)

    def add_prefixes(self, prefixes: Iterable[str | Path]) -> None:
        for prefix in prefixes:
            normalized = _normalize(prefix)
            if normalized and normalized not in self._prefixes:
                self._prefixes.append(normalized)

    def is_excluded(self, path: str | Path) -> bool:
        path = str(path)
        return self.matches_prefix(path) or is_backup_file(path) or is_cache_file(path)

    def matches_prefix(self, path: str) -> bool:
        for prefix in self._prefixes:
            boundary = prefix if prefix.endswith(os.sep) else prefix + os.sep
            if path == prefix or path.startswith(boundary):
                return True
        return False


def _normalize(prefix: str | Path) -> str:
    normalized = os.path.realpath(prefix)
    if normalized != os.sep:
        normalized = normalized.rstrip(os.sep)
    return normalized
