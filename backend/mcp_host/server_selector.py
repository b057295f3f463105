# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Server Selector

Picks the one server that executes a prompt. The default strategy classifies
the prompt against an ordered keyword rule table and maps the task category to
preferred server-name fragments. Selection is a pure function of its inputs.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Tuple

from mcp_host.core.errors import ConfigurationError
from mcp_host.mcp_capabilities import DiscoveryResult

GENERIC_CATEGORY = "generic"


@dataclass(frozen=True)
class TaskRule:
    """One row of the classification table"""
    category: str
    keywords: Tuple[str, ...]
    preferred_servers: Tuple[str, ...]

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TaskRule":
        try:
            return cls(
                category=str(data["category"]),
                keywords=tuple(str(k).lower() for k in data.get("keywords", ())),
                preferred_servers=tuple(str(s).lower() for s in data.get("preferred_servers", ())),
            )
        except KeyError as e:
            raise ConfigurationError(f"Selector rule missing field {e}", field="selector.rules")

    def match(self, prompt: str) -> Optional[str]:
        """First keyword contained in the lowercased prompt"""
        for keyword in self.keywords:
            if keyword in prompt:
                return keyword
        return None


# Ordered: the first matching category wins.
DEFAULT_TASK_RULES: Tuple[TaskRule, ...] = (
    TaskRule(
        category="search",
        keywords=("search", "look up", "lookup", "find", "google", "browse", "web", "news",
                  "pesquis", "busca", "procur"),
        preferred_servers=("search", "brave", "tavily", "google", "web", "fetch", "browser"),
    ),
    TaskRule(
        category="file",
        keywords=("file", "document", "folder", "directory", "drive", "pdf", "spreadsheet",
                  "arquivo", "documento", "pasta"),
        preferred_servers=("gdrive", "drive", "filesystem", "file", "document", "fs"),
    ),
    TaskRule(
        category="data",
        keywords=("query", "database", "sql", "table", "measurement", "metric", "bucket",
                  "influx", "time series", "data", "consulta", "dados", "banco"),
        preferred_servers=("influx", "database", "db", "sql", "postgres", "sqlite", "mysql", "data"),
    ),
    TaskRule(
        category=GENERIC_CATEGORY,
        keywords=("help", "what can you", "list tools", "capabilities", "ajuda"),
        preferred_servers=("help", "everything", "demo", "generic"),
    ),
)


@dataclass(frozen=True)
class Selection:
    """Chosen server and why"""
    server: str
    reason: str
    category: Optional[str] = None

    def to_dict(self) -> dict:
        return {"server": self.server, "reason": self.reason, "category": self.category}


class ServerSelector(ABC):
    """Strategy interface so a model-driven classifier can replace the keyword table"""

    @abstractmethod
    def select(self, prompt: str, discovery: Mapping[str, DiscoveryResult]) -> Selection:
        ...


class KeywordServerSelector(ServerSelector):
    """Keyword substring classification with deterministic fallback"""

    def __init__(self, rules: Optional[Sequence[TaskRule]] = None):
        self.rules: Tuple[TaskRule, ...] = tuple(rules) if rules else DEFAULT_TASK_RULES
        self._generic = next(
            (r for r in self.rules if r.category == GENERIC_CATEGORY),
            TaskRule(GENERIC_CATEGORY, (), ()),
        )

    @classmethod
    def from_config(cls, rules: Optional[Iterable[Mapping[str, Any]]]) -> "KeywordServerSelector":
        if not rules:
            return cls()
        return cls([TaskRule.from_dict(r) for r in rules])

    def classify(self, prompt: str) -> Tuple[TaskRule, Optional[str]]:
        """Return the first matching rule and keyword, or the generic rule"""
        text = (prompt or "").lower()
        for rule in self.rules:
            keyword = rule.match(text)
            if keyword is not None:
                return rule, keyword
        return self._generic, None

    def select(self, prompt: str, discovery: Mapping[str, DiscoveryResult]) -> Selection:
        names: List[str] = list(discovery)
        if not names:
            raise ConfigurationError("No MCP servers configured", field="servers")

        if len(names) == 1:
            return Selection(
                server=names[0],
                reason=f"Only one server configured: '{names[0]}'",
            )

        rule, keyword = self.classify(prompt)
        matched = f"matched '{keyword}'" if keyword else "no keyword matched"
        selectable = [name for name in names if discovery[name].selectable]

        for fragment in rule.preferred_servers:
            for name in selectable:
                if fragment in name.lower():
                    return Selection(
                        server=name,
                        reason=(
                            f"Task classified as '{rule.category}' ({matched}); "
                            f"selected preferred server '{name}'"
                        ),
                        category=rule.category,
                    )

        if selectable:
            return Selection(
                server=selectable[0],
                reason=(
                    f"Task classified as '{rule.category}' ({matched}); no preferred server "
                    f"available, selected first available server '{selectable[0]}'"
                ),
                category=rule.category,
            )

        return Selection(
            server=names[0],
            reason=(
                f"No servers available; falling back to first configured server '{names[0]}'"
            ),
            category=rule.category,
        )
