"""
Configuration: git-config parsing, submodule settings and subscribe rules.

Settings file example::

    [submodule]
        enableSuperProjectSubscriptions = true
        verboseSuperprojectUpdate = SUBJECT_ONLY
    [gerrit]
        canonicalWebUrl = https://review.example.com/
    [user]
        name = Code Review
        email = review@example.com
    [subscribe "ProjectX"]
        allow = ProjectY refs/heads/*:refs/heads/*
        allow = ProjectZ refs/heads/master
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from enum import Enum
from io import BytesIO
from pathlib import Path
from typing import TYPE_CHECKING, Dict, List, Optional, Tuple, Union

from git.config import GitConfigParser, cp

from .models import PersonIdent, SubscribeRule, SyncError

if TYPE_CHECKING:
    from .object_store import ObjectStore


logger = logging.getLogger(__name__)

CONFIG_ENV = "SUPERPROJECT_SYNC_CONFIG"
REFS_META_CONFIG = "refs/meta/config"
PROJECT_CONFIG_FILE = "project.config"

SectionKey = Tuple[str, Optional[str]]

_TRUE = {"true", "yes", "on", "1"}
_FALSE = {"false", "no", "off", "0"}


class ConfigError(SyncError):
    """Raised for malformed configuration input."""

    pass


class GitConfig:
    """git-config formatted settings read through GitPython's ``GitConfigParser``.

    Section names and keys are case-insensitive, subsection names are not.
    Keys may repeat; all values are kept in file order.
    """

    def __init__(self, parser: Optional[GitConfigParser] = None) -> None:
        self._sections: Dict[SectionKey, Dict[str, List[str]]] = {}
        if parser is not None:
            for header in parser.sections():
                values = self._sections.setdefault(_section_key(header), {})
                for option, option_values in parser.items_all(header):
                    # A key without "=" is a boolean true in git
                    values.setdefault(option.lower(), []).extend(
                        "true" if v is None else str(v) for v in option_values
                    )

    @classmethod
    def from_bytes(cls, data: bytes, source: str = "<string>") -> GitConfig:
        fp = BytesIO(data)
        fp.name = source
        try:
            parser = GitConfigParser(fp, read_only=True, merge_includes=False)
            parser.read()
        except (cp.Error, UnicodeDecodeError) as e:
            raise ConfigError(f"Cannot parse {source}: {e}") from e
        return cls(parser)

    @classmethod
    def from_text(cls, text: str, source: str = "<string>") -> GitConfig:
        return cls.from_bytes(text.encode("utf-8"), source)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> GitConfig:
        path = Path(path)
        try:
            data = path.read_bytes()
        except OSError as e:
            raise ConfigError(f"Cannot read config file {path}: {e}") from e
        return cls.from_bytes(data, source=str(path))

    def subsections(self, section: str) -> List[str]:
        section = section.lower()
        return [sub for (name, sub) in self._sections if name == section and sub is not None]

    def get_all(self, section: str, subsection: Optional[str], key: str) -> List[str]:
        values = self._sections.get((section.lower(), subsection), {})
        return list(values.get(key.lower(), []))

    def get(
        self, section: str, subsection: Optional[str], key: str, default: Optional[str] = None
    ) -> Optional[str]:
        values = self.get_all(section, subsection, key)
        return values[-1] if values else default

    def get_bool(self, section: str, subsection: Optional[str], key: str, default: bool) -> bool:
        value = self.get(section, subsection, key)
        if value is None:
            return default
        lowered = value.lower()
        if lowered in _TRUE:
            return True
        if lowered in _FALSE:
            return False
        raise ConfigError(f"Invalid boolean for {section}.{key}: '{value}'")


def _section_key(header: str) -> SectionKey:
    """Split a raw ``name "subsection"`` header as kept by ``GitConfigParser``."""
    name, _, sub = header.strip().partition(" ")
    sub = sub.strip()
    if not sub:
        return name.lower(), None
    if len(sub) >= 2 and sub[0] == sub[-1] == '"':
        sub = sub[1:-1]
    return name.lower(), re.sub(r"\\(.)", r"\1", sub)


class VerboseMode(Enum):
    """How much submodule history goes into a superproject commit message."""

    OFF = "OFF"
    SUBJECT_ONLY = "SUBJECT_ONLY"
    FULL = "FULL"

    @classmethod
    def parse(cls, value: Optional[str]) -> VerboseMode:
        if value is None:
            return cls.FULL
        lowered = value.strip().lower()
        if lowered in _TRUE:
            return cls.FULL
        if lowered in _FALSE:
            return cls.OFF
        try:
            return cls(value.strip().upper())
        except ValueError as e:
            raise ConfigError(f"Invalid verboseSuperprojectUpdate value '{value}'") from e


@dataclass(frozen=True)
class SubmoduleSettings:
    """Server-wide settings for superproject subscriptions."""

    enable_superproject_subscriptions: bool = True
    verbose_superproject_update: VerboseMode = VerboseMode.FULL
    canonical_web_url: Optional[str] = None
    server_name: str = "Superproject Sync"
    server_email: str = "superproject-sync@localhost"

    @property
    def server_ident(self) -> PersonIdent:
        return PersonIdent(self.server_name, self.server_email)

    @classmethod
    def from_config(cls, cfg: GitConfig) -> SubmoduleSettings:
        defaults = cls()
        return cls(
            enable_superproject_subscriptions=cfg.get_bool(
                "submodule", None, "enableSuperProjectSubscriptions", True
            ),
            verbose_superproject_update=VerboseMode.parse(
                cfg.get("submodule", None, "verboseSuperprojectUpdate")
            ),
            canonical_web_url=cfg.get("gerrit", None, "canonicalWebUrl"),
            server_name=cfg.get("user", None, "name", defaults.server_name),
            server_email=cfg.get("user", None, "email", defaults.server_email),
        )


def default_config_path() -> Optional[Path]:
    env_path = os.environ.get(CONFIG_ENV)
    if env_path:
        return Path(env_path).expanduser()
    return None


def load_settings(path: Optional[Union[str, Path]] = None) -> Tuple[SubmoduleSettings, GitConfig]:
    """Load settings from ``path`` (or ``$SUPERPROJECT_SYNC_CONFIG``).

    Returns defaults with an empty config when no file is configured.
    """
    path = Path(path) if path else default_config_path()
    if path is None:
        logger.debug("No settings file configured; using defaults")
        cfg = GitConfig()
    else:
        logger.info(f"Loading settings from {path}")
        cfg = GitConfig.from_file(path)
    return SubmoduleSettings.from_config(cfg), cfg


class StaticRules:
    """Subscribe rules served from ``[subscribe "<submodule>"]`` sections."""

    def __init__(self, rules: Optional[Dict[str, List[SubscribeRule]]] = None) -> None:
        self.rules: Dict[str, List[SubscribeRule]] = dict(rules or {})

    @classmethod
    def from_config(cls, cfg: GitConfig) -> StaticRules:
        rules: Dict[str, List[SubscribeRule]] = {}
        for submodule in cfg.subsections("subscribe"):
            for value in cfg.get_all("subscribe", submodule, "allow"):
                parts = value.split()
                if len(parts) != 2:
                    raise ConfigError(
                        f"subscribe.{submodule}.allow must be 'PROJECT REFSPEC', got '{value}'"
                    )
                rules.setdefault(submodule, []).append(SubscribeRule.from_refspec(*parts))
        return cls(rules)

    def __call__(self, submodule_project: str) -> List[SubscribeRule]:
        return list(self.rules.get(submodule_project, []))


def parse_allow_superproject(cfg: GitConfig) -> List[SubscribeRule]:
    """Read ``[allowSuperproject "name"] matching = refspec`` sections."""
    rules: List[SubscribeRule] = []
    for superproject in cfg.subsections("allowSuperproject"):
        for refspec in cfg.get_all("allowSuperproject", superproject, "matching"):
            rules.append(SubscribeRule.from_refspec(superproject, refspec))
    return rules


class ProjectConfigRules:
    """Subscribe rules read from each submodule project's ``refs/meta/config``.

    Parsed configs are cached per project for the lifetime of this object.
    """

    def __init__(self, store: "ObjectStore") -> None:
        self.store = store
        self._cache: Dict[str, List[SubscribeRule]] = {}

    def __call__(self, submodule_project: str) -> List[SubscribeRule]:
        if submodule_project not in self._cache:
            self._cache[submodule_project] = self._load(submodule_project)
        return list(self._cache[submodule_project])

    def _load(self, project: str) -> List[SubscribeRule]:
        tip = self.store.resolve_ref(project, REFS_META_CONFIG)
        if tip is None:
            logger.debug(f"No {REFS_META_CONFIG} in {project}")
            return []
        data = self.store.read_blob(project, tip, PROJECT_CONFIG_FILE)
        if data is None:
            return []
        cfg = GitConfig.from_bytes(data, source=f"{project}:{PROJECT_CONFIG_FILE}")
        return parse_allow_superproject(cfg)
