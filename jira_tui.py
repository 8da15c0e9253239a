#!/usr/bin/env python3
# jira_tui: Terminal Jira watcher with several JQL views, cached per tab and refreshed in the background
#
# Hotkeys
#   Tab / Shift-Tab  switch view
#   j/k, arrows      move selection
#   r                refresh every view now (ignores the freshness window)
#   c                clear new-issue highlights
#   f                flag / unflag the selected issue (kept in state.conf)
#   s                cycle sort (created, updated, owner, flagged)
#   o                open the selected issue in the browser
#   d                show the JQL behind the current tab
#   e                open settings (views, activity panel, project key)
#   q / Esc          quit (or close the open modal)
#   Ctrl-V           paste the system clipboard into a settings text field
#
# Config (config.json)
#   {
#     "project": "PROJ",
#     "domain": "your-company.atlassian.net",
#     "views": [{"name": "My Work", "jql": "assignee = currentUser() ORDER BY updated DESC"}],
#     "activity": {"enabled": true, "pollingIntervalMinutes": 5, "jql": "updated >= -1h"}
#   }
#
# Notes
# - Every query is rewritten to "(<conditions>) AND project = <project> [ORDER BY ...]"
#   right before it is validated or executed; the config keeps the query as typed.
# - Views are re-fetched every 60s unless fetched in the last 30s; the activity
#   view has its own cadence (pollingIntervalMinutes).
#
# Environment
# - JIRA_EMAIL, JIRA_API_KEY (or a .env file in the current dir / script dir)
# - MOCK_FETCH=1 (optional offline demo)

from __future__ import annotations

import argparse
import asyncio
import copy
import datetime as dt
import json
import math
import os
import re
import sys
import time
import webbrowser
from dataclasses import dataclass, field
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional, Set, Tuple

import pyperclip
import requests
import yaml
from prompt_toolkit import Application, prompt
from prompt_toolkit.clipboard.pyperclip import PyperclipClipboard
from prompt_toolkit.filters import Condition
from prompt_toolkit.key_binding import KeyBindings
from prompt_toolkit.keys import Keys
from prompt_toolkit.layout import HSplit, Layout, Window
from prompt_toolkit.layout.containers import Float, FloatContainer
from prompt_toolkit.layout.controls import FormattedTextControl
from prompt_toolkit.layout.dimension import Dimension
from prompt_toolkit.styles import Style
from prompt_toolkit.widgets import Frame
import logging
from logging.handlers import RotatingFileHandler


logger = logging.getLogger('jira_tui')


# -----------------------------
# Errors
# -----------------------------
class JiraTuiError(Exception):
    """Base class for errors that are shown to the user verbatim."""


class ConfigCorrupt(JiraTuiError):
    pass


class ConfigInvalid(JiraTuiError):
    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        lines = "\n".join(f"- {err}" for err in self.errors)
        super().__init__(f"Config validation failed:\n{lines}")


class QueryInvalid(JiraTuiError):
    def __init__(self, failures: List["ViewValidation"]):
        self.failures = list(failures)
        super().__init__(format_validation_failures(self.failures))


class TransportError(JiraTuiError):
    pass


# -----------------------------
# Config models
# -----------------------------
DEFAULT_ACTIVITY_JQL = (
    "(assignee = currentUser() OR reporter = currentUser()) AND updated >= -1h ORDER BY updated DESC"
)
DEFAULT_ACTIVITY_INTERVAL = 5
ACTIVITY_TAB_NAME = "Activity"
DEFAULT_CONFIG_PATH = os.path.join(os.getcwd(), "config.json")
DEFAULT_STATE_PATH = os.path.join(os.getcwd(), "state.conf")
SETUP_HINT = "Copy config.json.example or run: jira-tui --setup"


@dataclass
class View:
    name: str
    jql: str


@dataclass
class ActivityConfig:
    enabled: bool = False
    polling_interval_minutes: float = DEFAULT_ACTIVITY_INTERVAL
    jql: str = ""


@dataclass
class Config:
    project: str
    domain: str
    views: List[View] = field(default_factory=list)
    activity: Optional[ActivityConfig] = None   # None => section absent from config.json
    extra: Dict[str, object] = field(default_factory=dict)

    @property
    def activity_enabled(self) -> bool:
        return bool(self.activity is not None and self.activity.enabled)


_KNOWN_CONFIG_KEYS = ("project", "domain", "views", "activity")


def parse_interval(raw: object) -> float:
    """Minutes from config.json or a text field; 0 when unusable. Whole numbers come back as ints."""
    if isinstance(raw, bool):
        return 0
    if isinstance(raw, (int, float)):
        return raw if math.isfinite(raw) else 0
    try:
        value = float(str(raw).strip())
    except (TypeError, ValueError):
        return 0
    if not math.isfinite(value):
        return 0
    return int(value) if value.is_integer() else value


def config_from_dict(raw: object) -> Config:
    if not isinstance(raw, dict):
        raise ConfigCorrupt(f"Config must be a JSON object. {SETUP_HINT}")
    views: List[View] = []
    raw_views = raw.get("views")
    if isinstance(raw_views, list):
        for item in raw_views:
            if not isinstance(item, dict):
                item = {}
            views.append(View(name=str(item.get("name") or ""), jql=str(item.get("jql") or "")))
    activity: Optional[ActivityConfig] = None
    raw_activity = raw.get("activity")
    if isinstance(raw_activity, dict):
        activity = ActivityConfig(
            enabled=bool(raw_activity.get("enabled", False)),
            polling_interval_minutes=parse_interval(raw_activity.get("pollingIntervalMinutes", 0)),
            jql=str(raw_activity.get("jql") or ""),
        )
    extra = {k: v for k, v in raw.items() if k not in _KNOWN_CONFIG_KEYS}
    return Config(
        project=str(raw.get("project") or ""),
        domain=str(raw.get("domain") or ""),
        views=views,
        activity=activity,
        extra=extra,
    )


def config_to_dict(cfg: Config) -> Dict[str, object]:
    data: Dict[str, object] = {
        "project": cfg.project,
        "domain": cfg.domain,
        "views": [{"name": v.name, "jql": v.jql} for v in cfg.views],
    }
    if cfg.activity is not None:
        data["activity"] = {
            "enabled": cfg.activity.enabled,
            "pollingIntervalMinutes": cfg.activity.polling_interval_minutes,
            "jql": cfg.activity.jql,
        }
    for key, value in cfg.extra.items():
        data.setdefault(key, value)
    return data


def load_config(path: str) -> Config:
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = json.load(f)
    except (OSError, ValueError) as exc:
        raise ConfigCorrupt(f"Failed to load {path}. {SETUP_HINT}\n{exc}") from exc
    return config_from_dict(raw)


def save_config(cfg: Config, path: str) -> None:
    directory = os.path.dirname(path)
    if directory and not os.path.isdir(directory):
        os.makedirs(directory, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        f.write(json.dumps(config_to_dict(cfg), indent=2, ensure_ascii=False) + "\n")
    logger.info("Config saved to %s", path)


def validate_config(cfg: Config) -> List[str]:
    """Return every problem with *cfg* at once; an empty list means usable."""
    errors: List[str] = []
    if not cfg.project.strip():
        errors.append("Missing project key in config.json.")
    if not cfg.domain.strip():
        errors.append("Missing domain in config.json.")
    if not cfg.views:
        errors.append("At least one view is required in config.json.")
    for idx, view in enumerate(cfg.views):
        name = view.name.strip()
        label = f'View "{name}"' if name else f"View #{idx + 1}"
        if not name:
            errors.append(f"{label} is missing a name.")
        if not view.jql.strip():
            errors.append(f"{label} is missing a JQL query.")
    if cfg.activity_enabled:
        interval = cfg.activity.polling_interval_minutes
        if not interval or interval <= 0:
            errors.append("Activity polling interval must be a positive number.")
        if not cfg.activity.jql.strip():
            errors.append("Activity JQL query is required when activity is enabled.")
    return errors


def should_run_setup(cfg: Config) -> bool:
    if not cfg.views:
        return True
    return all(not v.jql.strip() for v in cfg.views)


# -----------------------------
# State file (flagged issues)
# -----------------------------
class FlagStore:
    """Issue keys the user marked for follow-up, persisted as {"flaggedIssueKeys": [...]}."""

    def __init__(self, path: str):
        self.path = path
        self._keys: List[str] = []

    def load(self) -> List[str]:
        self._keys = self._read()
        return list(self._keys)

    def _read(self) -> List[str]:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError):
            return []
        if not isinstance(data, dict):
            return []
        raw = data.get("flaggedIssueKeys")
        if not isinstance(raw, list):
            return []
        keys: List[str] = []
        for item in raw:
            if isinstance(item, str) and item not in keys:
                keys.append(item)
        return keys

    def _write(self, keys: List[str]) -> None:
        try:
            directory = os.path.dirname(self.path)
            if directory and not os.path.isdir(directory):
                os.makedirs(directory, exist_ok=True)
            with open(self.path, "w", encoding="utf-8") as f:
                f.write(json.dumps({"flaggedIssueKeys": keys}, indent=2) + "\n")
        except OSError:
            logger.warning("Unable to write state file %s", self.path, exc_info=True)

    def keys(self) -> Set[str]:
        return set(self._keys)

    def is_flagged(self, key: str) -> bool:
        return key in self._keys

    def toggle(self, key: str) -> bool:
        """Flip the flag on *key*, rewrite the state file and return the new flag."""
        keys = list(self._keys)
        if key in keys:
            keys.remove(key)
            flagged = False
        else:
            keys.append(key)
            flagged = True
        self._write(keys)
        self._keys = keys
        logger.debug("Flag %s -> %s", key, flagged)
        return flagged


# -----------------------------
# Query scoping
# -----------------------------
_ORDER_BY_RE = re.compile(r"\border\s+by\b", re.IGNORECASE)


def split_order_by(jql: str) -> Tuple[str, str]:
    m = _ORDER_BY_RE.search(jql)
    if not m:
        return jql.strip(), ""
    return jql[:m.start()].strip(), jql[m.start():].strip()


def scope_to_project(jql: str, project: str) -> str:
    """Constrain *jql* to *project*, keeping any ORDER BY clause last.

    Not idempotent: scoping an already scoped query wraps it again.
    """
    conditions, order_by = split_order_by(jql)
    if not conditions:
        scoped = f"project = {project}"
    else:
        scoped = f"({conditions}) AND project = {project}"
    return f"{scoped} {order_by}" if order_by else scoped


# -----------------------------
# Jira client
# -----------------------------
ISSUE_FIELDS = ["summary", "status", "reporter", "assignee", "customfield_10010", "created", "updated"]
SEARCH_PAGE_SIZE = 100
REQUEST_TIMEOUT = 60


@dataclass
class JqlValidationResult:
    query: str
    valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


@dataclass
class ViewValidation:
    name: str
    jql: str
    valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


def _parse_jira_datetime(raw: Optional[str]) -> Optional[dt.datetime]:
    if not raw:
        return None
    for fmt in ("%Y-%m-%dT%H:%M:%S.%f%z", "%Y-%m-%dT%H:%M:%S%z"):
        try:
            return dt.datetime.strptime(raw, fmt)
        except ValueError:
            continue
    try:
        return dt.datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return None


def _display_name(raw: object) -> Optional[str]:
    if isinstance(raw, dict):
        name = raw.get("displayName")
        if name:
            return str(name)
    return None


@dataclass(frozen=True)
class Issue:
    id: str
    key: str
    summary: str = ""
    status: str = ""
    status_category: str = ""
    assignee: Optional[str] = None
    reporter: Optional[str] = None
    created: Optional[dt.datetime] = None
    updated: Optional[dt.datetime] = None
    request_type: Optional[str] = None

    @classmethod
    def from_api(cls, raw: Dict[str, object]) -> "Issue":
        fields = raw.get("fields") or {}
        status = fields.get("status") or {}
        category = status.get("statusCategory") or {}
        service_desk = fields.get("customfield_10010") or {}
        request_type = (service_desk.get("requestType") or {}).get("name") if isinstance(service_desk, dict) else None
        return cls(
            id=str(raw.get("id") or ""),
            key=str(raw.get("key") or ""),
            summary=str(fields.get("summary") or ""),
            status=str(status.get("name") or ""),
            status_category=str(category.get("name") or ""),
            assignee=_display_name(fields.get("assignee")),
            reporter=_display_name(fields.get("reporter")),
            created=_parse_jira_datetime(fields.get("created")),
            updated=_parse_jira_datetime(fields.get("updated")),
            request_type=request_type,
        )

    @property
    def subject(self) -> str:
        return self.summary or self.key

    @property
    def owner(self) -> str:
        return self.assignee or "Unassigned"

    @property
    def status_name(self) -> str:
        return self.status or "Unknown"

    @property
    def created_ts(self) -> float:
        return self.created.timestamp() if self.created else 0.0

    @property
    def updated_ts(self) -> float:
        return self.updated.timestamp() if self.updated else 0.0


def _session(email: str, api_key: str) -> requests.Session:
    s = requests.Session()
    s.auth = (email, api_key)
    s.headers["Accept"] = "application/json"
    s.headers["Content-Type"] = "application/json"
    return s


class JiraClient:
    def __init__(self, domain: str, email: str, api_key: str, session: Optional[requests.Session] = None):
        self.domain = domain.strip()
        self.base_url = f"https://{self.domain}/rest/api/3"
        self.session = session if session is not None else _session(email, api_key)

    def _post(self, endpoint: str, payload: Dict[str, object]) -> Dict:
        try:
            resp = self.session.post(f"{self.base_url}{endpoint}", json=payload, timeout=REQUEST_TIMEOUT)
        except requests.exceptions.RequestException as exc:
            logger.warning("Jira request %s failed: %s", endpoint, exc)
            raise TransportError(f"Jira request failed: {exc}") from exc
        if resp.status_code >= 300:
            logger.warning("Jira HTTP %s on %s: %s", resp.status_code, endpoint, resp.text[:200])
            raise TransportError(f"Jira API error: {resp.status_code} {resp.reason} - {resp.text}")
        try:
            return resp.json() or {}
        except ValueError as exc:
            raise TransportError(f"Jira API returned invalid JSON: {exc}") from exc

    def validate_jql(self, queries: List[str]) -> List[JqlValidationResult]:
        data = self._post("/jql/parse?validation=strict", {"queries": list(queries)})
        results: List[JqlValidationResult] = []
        for item in data.get("queries") or []:
            errors = [str(e) for e in (item.get("errors") or [])]
            warnings = [str(w) for w in (item.get("warnings") or [])]
            results.append(JqlValidationResult(
                query=str(item.get("query") or ""),
                valid=not errors,
                errors=errors,
                warnings=warnings,
            ))
        if len(results) != len(queries):
            raise TransportError(f"Jira returned {len(results)} validation results for {len(queries)} queries")
        return results

    def search_issues(self, jql: str) -> List[Issue]:
        issues: List[Issue] = []
        next_token: Optional[str] = None
        pages = 0
        while True:
            body: Dict[str, object] = {"jql": jql, "maxResults": SEARCH_PAGE_SIZE, "fields": ISSUE_FIELDS}
            if next_token:
                body["nextPageToken"] = next_token
            data = self._post("/search/jql", body)
            for raw in data.get("issues") or []:
                if isinstance(raw, dict):
                    issues.append(Issue.from_api(raw))
            pages += 1
            next_token = data.get("nextPageToken")
            if not next_token:
                break
        logger.debug("search_issues fetched %d issues in %d page(s)", len(issues), pages)
        return issues


def load_dotenv_credentials() -> Dict[str, str]:
    """Load JIRA_EMAIL / JIRA_API_KEY from a .env file (current dir or script dir) if present."""
    found: Dict[str, str] = {}
    candidates = [os.getcwd(), os.path.dirname(os.path.abspath(__file__))]
    for base in candidates:
        path = os.path.join(base, ".env")
        if not os.path.isfile(path):
            continue
        try:
            with open(path, "r", encoding="utf-8") as f:
                for line in f:
                    line = line.strip()
                    if not line or line.startswith('#') or '=' not in line:
                        continue
                    k, v = line.split('=', 1)
                    k = k.strip()
                    v = v.strip().strip('"').strip("'")
                    if k in ("JIRA_EMAIL", "JIRA_API_KEY") and v and k not in found:
                        found[k] = v
                        os.environ.setdefault(k, v)
        except OSError:
            continue
    return found


def resolve_credentials() -> Tuple[str, str]:
    email = os.environ.get("JIRA_EMAIL")
    api_key = os.environ.get("JIRA_API_KEY")
    if not (email and api_key):
        dotenv = load_dotenv_credentials()
        email = email or dotenv.get("JIRA_EMAIL")
        api_key = api_key or dotenv.get("JIRA_API_KEY")
    if not (email and api_key):
        raise TransportError("Missing required environment variables: JIRA_API_KEY, JIRA_EMAIL")
    return email, api_key


def create_client(cfg: Config):
    if os.environ.get("MOCK_FETCH") == "1":
        logger.info("MOCK_FETCH enabled; using generated issues")
        return MockJiraClient(cfg.project)
    email, api_key = resolve_credentials()
    return JiraClient(cfg.domain, email, api_key)


def validate_batch(client, scoped_queries: List[str]) -> List[JqlValidationResult]:
    """Validate already scoped queries in one round trip, preserving order.

    Raises TransportError for the whole batch when the call itself fails.
    """
    if not scoped_queries:
        return []
    try:
        results = client.validate_jql(list(scoped_queries))
    except TransportError:
        raise
    except Exception as exc:
        raise TransportError(f"Validation failed: {exc}") from exc
    return [
        JqlValidationResult(query=r.query, valid=not r.errors, errors=list(r.errors), warnings=list(r.warnings))
        for r in results
    ]


def build_validation_queries(cfg: Config) -> List[Tuple[str, str]]:
    queries = [(v.name, scope_to_project(v.jql, cfg.project)) for v in cfg.views]
    if cfg.activity_enabled:
        queries.append((ACTIVITY_TAB_NAME, scope_to_project(cfg.activity.jql, cfg.project)))
    return queries


def collect_view_validations(
    queries: List[Tuple[str, str]], results: List[JqlValidationResult]
) -> List[ViewValidation]:
    """Zip results back to view names by position; keep failures and entries with warnings."""
    out: List[ViewValidation] = []
    for (name, jql), result in zip(queries, results):
        if result.valid and not result.warnings:
            continue
        out.append(ViewValidation(name=name, jql=jql, valid=result.valid,
                                  errors=list(result.errors), warnings=list(result.warnings)))
    return out


def format_validation_failures(failures: List[ViewValidation]) -> str:
    lines: List[str] = []
    for failure in failures:
        errors = failure.errors or ["Invalid JQL"]
        for err in errors:
            lines.append(f"- {failure.name}: {err}")
        for warn in failure.warnings:
            lines.append(f"  {failure.name} warning: {warn}")
    return "JQL validation failed:\n" + "\n".join(lines)


# -----------------------------
# View cache
# -----------------------------
FRESHNESS_WINDOW_SECONDS = 30.0

Fetcher = Callable[[int], Awaitable[List[Issue]]]


@dataclass
class CacheEntry:
    issues: List[Issue]
    fetched_at: float


class ViewCache:
    """Per-tab issue snapshots; an entry is replaced whole or not at all."""

    def __init__(self, freshness_window: float = FRESHNESS_WINDOW_SECONDS,
                 clock: Callable[[], float] = time.time, activity_index: Optional[int] = None):
        self.freshness_window = freshness_window
        self.clock = clock
        self.activity_index = activity_index
        self.entries: Dict[int, CacheEntry] = {}

    def get(self, index: int) -> Optional[CacheEntry]:
        return self.entries.get(index)

    def issues(self, index: int) -> List[Issue]:
        entry = self.entries.get(index)
        return list(entry.issues) if entry else []

    def is_fresh(self, index: int, now: Optional[float] = None) -> bool:
        entry = self.entries.get(index)
        if entry is None:
            return False
        now = self.clock() if now is None else now
        return now - entry.fetched_at < self.freshness_window

    def store(self, index: int, issues: List[Issue], now: Optional[float] = None) -> CacheEntry:
        entry = CacheEntry(issues=list(issues), fetched_at=self.clock() if now is None else now)
        self.entries[index] = entry
        return entry

    def reset(self, activity_index: Optional[int] = None) -> None:
        self.entries = {}
        self.activity_index = activity_index

    def latest_fetch(self) -> Optional[float]:
        if not self.entries:
            return None
        return max(e.fetched_at for e in self.entries.values())

    async def get_or_fetch(
        self,
        index: int,
        fetcher: Fetcher,
        force: bool = False,
        on_fetched: Optional[Callable[[int, List[Issue]], None]] = None,
    ) -> List[Issue]:
        if not force:
            # activity slot is refreshed only by its own timer
            if index == self.activity_index or self.is_fresh(index):
                return self.issues(index)
        issues = await fetcher(index)
        self.store(index, issues)
        if on_fetched is not None:
            on_fetched(index, issues)
        return list(issues)


# -----------------------------
# New-issue tracking
# -----------------------------
class NewIssueTracker:
    def __init__(self):
        self.seen: Set[str] = set()
        self.highlighted: Set[str] = set()

    def fold_in(self, issues: List[Issue], is_initial_load: bool) -> Set[str]:
        new_ids: Set[str] = set()
        for issue in issues:
            if not is_initial_load and issue.id not in self.seen:
                new_ids.add(issue.id)
            self.seen.add(issue.id)
        return new_ids

    def highlight(self, ids: Set[str]) -> None:
        self.highlighted |= set(ids)

    def clear_highlights(self) -> None:
        self.highlighted = set()

    def is_new(self, issue_id: str) -> bool:
        return issue_id in self.highlighted


# -----------------------------
# Sync engine
# -----------------------------
MAX_ERROR_LOG = 50


class StaleCycle(Exception):
    """A fetch finished after the configuration it was started for was replaced."""


class SyncEngine:
    """Owns the live config plus every cache/tracker derived from it."""

    def __init__(self, cfg: Config, client, flags: FlagStore, *,
                 clock: Callable[[], float] = time.time,
                 freshness_window: float = FRESHNESS_WINDOW_SECONDS):
        self.config = cfg
        self.client = client
        self.flags = flags
        self.cache = ViewCache(freshness_window=freshness_window, clock=clock,
                               activity_index=self.activity_index(cfg))
        self.tracker = NewIssueTracker()
        self.generation = 0
        self.loading = True
        self.progress = ""
        self.error: Optional[str] = None
        self.last_failure: Optional[str] = None
        self.errors: List[str] = []
        self.validation_failures: List[ViewValidation] = []
        self.validation_warnings: List[ViewValidation] = []
        self.last_refresh: Optional[dt.datetime] = None
        self.on_change: Callable[[], None] = lambda: None
        self._cycle_generation: Optional[int] = None

    # tabs -------------------------------------------------------------
    def tabs(self, cfg: Optional[Config] = None) -> List[str]:
        cfg = cfg or self.config
        names = [v.name for v in cfg.views]
        if cfg.activity_enabled:
            names.append(ACTIVITY_TAB_NAME)
        return names

    def activity_index(self, cfg: Optional[Config] = None) -> Optional[int]:
        cfg = cfg or self.config
        return len(cfg.views) if cfg.activity_enabled else None

    def tab_jql(self, index: int, cfg: Optional[Config] = None) -> Optional[str]:
        cfg = cfg or self.config
        if index == self.activity_index(cfg):
            return cfg.activity.jql
        if 0 <= index < len(cfg.views):
            return cfg.views[index].jql
        return None

    def is_refreshing(self) -> bool:
        return self._cycle_generation == self.generation

    def _notify(self) -> None:
        try:
            self.on_change()
        except Exception:
            logger.debug("on_change callback failed", exc_info=True)

    def _set_progress(self, message: str) -> None:
        self.progress = message
        self._notify()

    def fail(self, message: str) -> None:
        self.error = message
        self.loading = False
        self._notify()

    # remote calls -----------------------------------------------------
    async def fetch_index(self, cfg: Config, index: int, generation: int) -> List[Issue]:
        jql = self.tab_jql(index, cfg)
        if jql is None:
            return []
        scoped = scope_to_project(jql, cfg.project)
        loop = asyncio.get_running_loop()
        issues = await loop.run_in_executor(None, self.client.search_issues, scoped)
        if generation != self.generation:
            raise StaleCycle()
        return issues

    async def validate_queries(self, scoped_queries: List[str]) -> List[JqlValidationResult]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, validate_batch, self.client, list(scoped_queries))

    async def validate_config_queries(self, cfg: Optional[Config] = None) -> List[ViewValidation]:
        cfg = cfg or self.config
        queries = build_validation_queries(cfg)
        results = await self.validate_queries([jql for _, jql in queries])
        checked = collect_view_validations(queries, results)
        for entry in checked:
            if entry.valid:
                logger.info("JQL warnings for %s: %s", entry.name, "; ".join(entry.warnings))
            else:
                logger.warning("JQL invalid for %s: %s", entry.name, "; ".join(entry.errors))
        return checked

    async def validate_before_load(self, cfg: Optional[Config] = None) -> bool:
        """Check config and every query; on failure leave the reason for the UI and return False."""
        cfg = cfg or self.config
        generation = self.generation
        problems = validate_config(cfg)
        if problems:
            self.fail(str(ConfigInvalid(problems)))
            return False
        self._set_progress("Validating JQL queries...")
        checked = await self.validate_config_queries(cfg)
        if generation != self.generation:
            return False
        self.validation_failures = [c for c in checked if not c.valid]
        self.validation_warnings = [c for c in checked if c.valid]
        if self.validation_failures:
            self.loading = False
            self.progress = ""
            self._notify()
            return False
        return True

    # refresh cycles ---------------------------------------------------
    def _folder(self, initial: bool) -> Callable[[int, List[Issue]], None]:
        def _fold(index: int, issues: List[Issue]) -> None:
            new_ids = self.tracker.fold_in(issues, is_initial_load=initial)
            if new_ids:
                logger.info("%d new issue(s) in tab %d", len(new_ids), index)
                self.tracker.highlight(new_ids)
        return _fold

    def _record_failure(self, name: str, exc: Exception) -> None:
        self.last_failure = f"{name}: {exc}"
        self.errors = (self.errors + [self.last_failure])[-MAX_ERROR_LOG:]
        logger.warning("Refresh of %s failed; keeping cached issues: %s", name, exc)
        logger.debug("Refresh failure detail", exc_info=True)

    async def refresh_views(self, cfg: Optional[Config] = None, *, force: bool = False,
                            initial: bool = False,
                            progress: Optional[Callable[[str], None]] = None) -> bool:
        """Sequentially refresh every standard view. Returns False when the cycle did not run to completion."""
        cfg = cfg or self.config
        if self.is_refreshing():
            logger.debug("Refresh skipped; previous cycle still running")
            return False
        generation = self.generation
        self._cycle_generation = generation
        names = [v.name for v in cfg.views]
        fetched: List[int] = []
        fold = self._folder(initial)

        def on_fetched(index: int, issues: List[Issue]) -> None:
            fetched.append(index)
            fold(index, issues)

        async def fetcher(index: int) -> List[Issue]:
            return await self.fetch_index(cfg, index, generation)

        logger.info("Refreshing %d view(s) (force=%s, initial=%s)", len(names), force, initial)
        try:
            for i, name in enumerate(names):
                if not (force or initial) and self.cache.is_fresh(i):
                    continue
                message = f"Loading {name}... ({i + 1}/{len(names)})"
                self._set_progress(message)
                if progress is not None:
                    progress(message)
                try:
                    await self.cache.get_or_fetch(i, fetcher, force=force or initial, on_fetched=on_fetched)
                except StaleCycle:
                    logger.info("Discarding refresh results for a replaced configuration")
                    return False
                except Exception as exc:
                    if initial:
                        raise
                    self._record_failure(name, exc)
            if generation != self.generation:
                return False
            if fetched or initial:
                self.last_refresh = dt.datetime.now()
            self.loading = False
            logger.info("Refresh finished; fetched %d view(s)", len(fetched))
            return True
        finally:
            if self._cycle_generation == generation:
                self._cycle_generation = None
            self.progress = ""
            self._notify()

    async def refresh_activity(self, cfg: Optional[Config] = None, *, initial: bool = False) -> bool:
        cfg = cfg or self.config
        index = self.activity_index(cfg)
        if index is None:
            return False
        generation = self.generation

        async def fetcher(idx: int) -> List[Issue]:
            return await self.fetch_index(cfg, idx, generation)

        try:
            issues = await self.cache.get_or_fetch(index, fetcher, force=True, on_fetched=self._folder(initial))
        except StaleCycle:
            return False
        except Exception as exc:
            self._record_failure(ACTIVITY_TAB_NAME, exc)
            return False
        finally:
            self._notify()
        logger.info("Activity refresh fetched %d issue(s)", len(issues))
        return True

    async def refresh_all_forced(self, cfg: Optional[Config] = None) -> bool:
        cfg = cfg or self.config
        ok = await self.refresh_views(cfg, force=True)
        if ok and cfg.activity_enabled:
            await self.refresh_activity(cfg, initial=False)
        return ok

    def apply_config(self, cfg: Config) -> None:
        """Swap in a committed configuration; seen ids survive, everything else starts over."""
        self.config = cfg
        self.generation += 1
        self.cache.reset(activity_index=self.activity_index(cfg))
        self.tracker.clear_highlights()
        self.loading = True
        self.error = None
        self.last_failure = None
        self.validation_failures = []
        self.validation_warnings = []
        self.progress = ""
        logger.info("Configuration applied (generation %d, %d view(s))", self.generation, len(cfg.views))
        self._notify()

    # user actions -----------------------------------------------------
    def sorted_issues(self, tab_index: int, sort_mode: str) -> List[Issue]:
        return sort_issues(self.cache.issues(tab_index), sort_mode, self.flags.keys())

    def clear_highlights(self) -> None:
        self.tracker.clear_highlights()
        self._notify()

    def toggle_flag(self, key: str) -> bool:
        flagged = self.flags.toggle(key)
        self._notify()
        return flagged


# -----------------------------
# Polling scheduler
# -----------------------------
GLOBAL_REFRESH_SECONDS = 60.0


class PollingScheduler:
    """Drives the 60s view refresh, the activity cadence and manual refreshes."""

    def __init__(self, engine: SyncEngine, global_interval: float = GLOBAL_REFRESH_SECONDS):
        self.engine = engine
        self.global_interval = global_interval
        self.tasks: List[asyncio.Task] = []
        self.manual_task: Optional[asyncio.Task] = None

    def arm(self, prevalidated: bool = False) -> None:
        self.disarm()
        cfg = copy.deepcopy(self.engine.config)
        self.tasks.append(asyncio.create_task(self._global_loop(cfg, prevalidated)))
        if cfg.activity_enabled:
            self.tasks.append(asyncio.create_task(self._activity_loop(cfg)))
        logger.info("Scheduler armed (activity=%s)", cfg.activity_enabled)

    def disarm(self) -> None:
        for task in self.tasks:
            task.cancel()
        if self.tasks:
            logger.debug("Scheduler disarmed (%d task(s) cancelled)", len(self.tasks))
        self.tasks = []

    def rearm(self, cfg: Config) -> None:
        self.disarm()
        self.engine.apply_config(cfg)
        self.arm(prevalidated=False)

    def trigger_manual(self) -> bool:
        # loading stays set from apply_config until the validate-then-initial-load pass ends
        if self.engine.loading or self.engine.is_refreshing():
            logger.debug("Manual refresh refused; a load is still pending")
            return False
        cfg = copy.deepcopy(self.engine.config)
        self.manual_task = asyncio.create_task(self.engine.refresh_all_forced(cfg))
        return True

    async def _global_loop(self, cfg: Config, prevalidated: bool) -> None:
        engine = self.engine
        try:
            if not prevalidated and not await engine.validate_before_load(cfg):
                return
            await engine.refresh_views(cfg, force=True, initial=True)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception("Initial load failed")
            engine.fail(str(exc))
            return
        while True:
            await asyncio.sleep(self.global_interval)
            try:
                await engine.refresh_views(cfg, force=False)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Scheduled refresh failed")

    async def _activity_loop(self, cfg: Config) -> None:
        interval = float(cfg.activity.polling_interval_minutes) * 60
        await self.engine.refresh_activity(cfg, initial=True)
        while True:
            await asyncio.sleep(interval)
            await self.engine.refresh_activity(cfg, initial=False)


# -----------------------------
# Settings editor
# -----------------------------
SETTINGS_TRANSITIONS: Dict[str, Set[str]] = {
    'menu': {'project', 'views', 'activity', 'closed'},
    'views': {'menu', 'edit-view'},
    'edit-view': {'views', 'menu'},
    'activity': {'menu'},
    'project': {'menu'},
    'closed': set(),
}
MENU_ACTIONS = ('project', 'views', 'activity', 'save', 'cancel')
QUERY_FIELDS = ('jql', 'activity_jql')
SINGLE_LINE_FIELDS = ('name', 'project', 'interval')

Validator = Callable[[List[str]], Awaitable[List[JqlValidationResult]]]


class SettingsEditor:
    """Modal editor over a deep copy of the config; nothing leaks out before save()."""

    def __init__(self, cfg: Config, validator: Validator,
                 on_save: Optional[Callable[[Config], None]] = None,
                 on_close: Optional[Callable[[], None]] = None):
        self.draft = copy.deepcopy(cfg)
        self.validator = validator
        self.on_save = on_save
        self.on_close = on_close
        self.mode = 'menu'
        self.menu_index = 0
        self.view_index = 0
        self.field_index = 0
        self.edit_field: Optional[str] = None
        self.edit_value = ""
        self.cursor = 0
        self.is_new_view = False
        self.pending_name = ""
        self.validating = False
        self.error: Optional[str] = None
        self.warning: Optional[str] = None
        self.result: Optional[str] = None
        self._token = 0

    # transitions ------------------------------------------------------
    def _goto(self, mode: str) -> None:
        if mode not in SETTINGS_TRANSITIONS[self.mode]:
            raise ValueError(f"Illegal settings transition {self.mode} -> {mode}")
        self.mode = mode

    @property
    def closed(self) -> bool:
        return self.mode == 'closed'

    def menu_labels(self) -> List[str]:
        act = self.draft.activity
        return [
            f"Project: {self.draft.project}",
            f"Views ({len(self.draft.views)})",
            f"Activity: {'Enabled' if act is not None and act.enabled else 'Disabled'}",
            "Save & Close",
            "Cancel",
        ]

    def view_labels(self) -> List[str]:
        return [v.name for v in self.draft.views] + ["[+ Add View]", "[Back]"]

    def move(self, delta: int) -> None:
        if self.edit_field is not None or self.closed:
            return
        if self.mode == 'menu':
            self.menu_index = max(0, min(len(MENU_ACTIONS) - 1, self.menu_index + delta))
        elif self.mode == 'views':
            self.view_index = max(0, min(len(self.draft.views) + 1, self.view_index + delta))
        elif self.mode == 'edit-view':
            self.field_index = max(0, min(1, self.field_index + delta))

    def select(self) -> None:
        if self.edit_field is not None or self.closed:
            return
        self.error = None
        if self.mode == 'menu':
            action = MENU_ACTIONS[self.menu_index]
            if action == 'project':
                self._goto('project')
                self._start_edit('project', self.draft.project)
            elif action == 'views':
                self._goto('views')
                self.view_index = 0
            elif action == 'activity':
                self._goto('activity')
            elif action == 'save':
                self.save()
            else:
                self.cancel()
        elif self.mode == 'views':
            count = len(self.draft.views)
            if self.view_index == count:
                self._goto('edit-view')
                self.is_new_view = True
                self.pending_name = ""
                self.field_index = 0
                self._start_edit('name', "")
            elif self.view_index == count + 1:
                self._goto('menu')
            else:
                self._goto('edit-view')
                self.is_new_view = False
                self.field_index = 0
        elif self.mode == 'edit-view':
            if self.is_new_view:
                return
            view = self.draft.views[self.view_index]
            if self.field_index == 0:
                self._start_edit('name', view.name)
            else:
                self._start_edit('jql', view.jql)
        elif self.mode == 'activity':
            self.toggle_activity()
        elif self.mode == 'project':
            self._start_edit('project', self.draft.project)

    def delete_selected(self) -> bool:
        if self.mode != 'views' or self.edit_field is not None:
            return False
        if self.view_index >= len(self.draft.views):
            return False
        if len(self.draft.views) <= 1:
            self.error = "Cannot remove the last view. At least one view is required."
            return False
        del self.draft.views[self.view_index]
        self.view_index = min(self.view_index, len(self.draft.views))
        self.error = None
        return True

    def toggle_activity(self) -> None:
        if self.draft.activity is None:
            self.draft.activity = ActivityConfig(
                enabled=True,
                polling_interval_minutes=DEFAULT_ACTIVITY_INTERVAL,
                jql=DEFAULT_ACTIVITY_JQL,
            )
        else:
            self.draft.activity.enabled = not self.draft.activity.enabled

    def begin_interval_edit(self) -> bool:
        if self.mode != 'activity' or self.edit_field is not None or not self.draft.activity_enabled:
            return False
        self._start_edit('interval', str(self.draft.activity.polling_interval_minutes))
        return True

    def begin_activity_jql_edit(self) -> bool:
        if self.mode != 'activity' or self.edit_field is not None or not self.draft.activity_enabled:
            return False
        self._start_edit('activity_jql', self.draft.activity.jql)
        return True

    # text field -------------------------------------------------------
    def _start_edit(self, field_name: str, value: str) -> None:
        self.edit_field = field_name
        self.edit_value = value
        self.cursor = len(value)
        self.error = None
        self.warning = None

    def _clear_edit(self) -> None:
        self.edit_field = None
        self.edit_value = ""
        self.cursor = 0
        self.validating = False

    def _can_type(self) -> bool:
        return self.edit_field is not None and not self.validating

    def insert(self, text: str) -> None:
        if not self._can_type() or not text:
            return
        text = text.replace("\r\n", "\n").replace("\r", "\n")
        if self.edit_field in SINGLE_LINE_FIELDS:
            text = text.replace("\n", " ")
            if len(text) > 1:
                text = text.strip()
        text = "".join(ch for ch in text if ch == "\n" or ord(ch) >= 32)
        if not text:
            return
        self.edit_value = self.edit_value[:self.cursor] + text + self.edit_value[self.cursor:]
        self.cursor += len(text)
        self.error = None

    def backspace(self) -> None:
        if not self._can_type():
            return
        if self.cursor > 0:
            self.edit_value = self.edit_value[:self.cursor - 1] + self.edit_value[self.cursor:]
            self.cursor -= 1
        self.error = None

    def delete(self) -> None:
        if not self._can_type():
            return
        if self.cursor < len(self.edit_value):
            self.edit_value = self.edit_value[:self.cursor] + self.edit_value[self.cursor + 1:]
        self.error = None

    def cursor_left(self) -> None:
        if self._can_type():
            self.cursor = max(0, self.cursor - 1)

    def cursor_right(self) -> None:
        if self._can_type():
            self.cursor = min(len(self.edit_value), self.cursor + 1)

    def cursor_home(self) -> None:
        if self._can_type():
            self.cursor = 0

    def cursor_end(self) -> None:
        if self._can_type():
            self.cursor = len(self.edit_value)

    # commit -----------------------------------------------------------
    async def confirm_edit(self) -> bool:
        """Commit the field being edited into the draft; query fields go through remote validation."""
        if self.edit_field is None or self.validating or self.closed:
            return False
        field_name = self.edit_field
        value = self.edit_value
        if field_name in QUERY_FIELDS:
            query = value.strip()
            if not query:
                self.error = "JQL is required"
                return False
            token = self._token
            self.validating = True
            self.error = None
            scoped = scope_to_project(query, self.draft.project)
            try:
                results = await self.validator([scoped])
            except Exception as exc:
                if token != self._token or self.closed:
                    return False
                self.validating = False
                self.error = str(exc) or "Validation failed"
                logger.warning("Settings validation call failed: %s", exc)
                return False
            if token != self._token or self.closed:
                return False
            self.validating = False
            result = results[0] if results else None
            if result is None:
                self.error = "Validation failed - no response"
                return False
            if result.errors:
                self.error = result.errors[0]
                return False
            self.warning = "; ".join(result.warnings) or None
            value = query
        return self._apply_edit(field_name, value)

    def _apply_edit(self, field_name: str, value: str) -> bool:
        if field_name == 'project':
            project = value.strip()
            if not project:
                self.error = "Project key is required"
                return False
            self.draft.project = project
            self._clear_edit()
            self._goto('menu')
            return True
        if field_name == 'name':
            name = value.strip()
            if not name:
                self.error = "View name is required"
                return False
            if self.is_new_view:
                self.pending_name = name
                self.field_index = 1
                self._start_edit('jql', "")
                return True
            self.draft.views[self.view_index].name = name
        elif field_name == 'jql':
            if self.is_new_view:
                self.draft.views.append(View(name=self.pending_name, jql=value))
                self.view_index = len(self.draft.views) - 1
                self.is_new_view = False
                self.pending_name = ""
            else:
                self.draft.views[self.view_index].jql = value
        elif field_name == 'interval':
            interval = parse_interval(value)
            if interval <= 0:
                self.error = "Polling interval must be a positive number of minutes"
                return False
            self.draft.activity.polling_interval_minutes = interval
        elif field_name == 'activity_jql':
            self.draft.activity.jql = value
        self._clear_edit()
        return True

    def cancel_edit(self) -> None:
        if self.edit_field is None:
            return
        self._token += 1
        new_view = self.is_new_view
        self._clear_edit()
        self.error = None
        if new_view:
            self.is_new_view = False
            self.pending_name = ""
            self._goto('views')

    def escape(self) -> None:
        if self.closed:
            return
        if self.edit_field is not None:
            self.cancel_edit()
            if self.mode == 'project':
                self._goto('menu')
            return
        self.error = None
        if self.mode == 'menu':
            self.cancel()
        elif self.mode == 'edit-view':
            self._goto('views')
        else:
            self._goto('menu')

    def save(self) -> bool:
        if self.mode != 'menu':
            return False
        problems = validate_config(self.draft)
        if problems:
            self.error = problems[0]
            return False
        self._goto('closed')
        self.result = 'saved'
        self._token += 1
        if self.on_save is not None:
            self.on_save(self.draft)
        return True

    def cancel(self) -> None:
        if self.mode != 'menu':
            return
        self._goto('closed')
        self.result = 'cancelled'
        self._token += 1
        if self.on_close is not None:
            self.on_close()


# -----------------------------
# Sorting & rows
# -----------------------------
SORT_MODES = ['created', 'updated', 'owner', 'flagged']
SORT_LABELS = {'created': 'Created', 'updated': 'Updated', 'owner': 'Owner', 'flagged': 'Flagged'}


def sort_issues(issues: List[Issue], mode: str, flagged: Set[str]) -> List[Issue]:
    if mode == 'created':
        return sorted(issues, key=lambda i: i.created_ts, reverse=True)
    if mode == 'updated':
        return sorted(issues, key=lambda i: i.updated_ts, reverse=True)
    if mode == 'owner':
        return sorted(issues, key=lambda i: i.owner.casefold())
    if mode == 'flagged':
        return sorted(issues, key=lambda i: (0 if i.key in flagged else 1, -i.created_ts))
    return list(issues)


def _truncate_or_pad(text: str, width: int) -> str:
    if width <= 0:
        return ""
    if len(text) > width:
        if width <= 3:
            return text[:width]
        return text[:width - 3] + "..."
    return text.ljust(width)


def compute_columns(total_width: int) -> Dict[str, int]:
    cols = {'key': 12, 'owner': 20, 'status': 20}
    fixed = 1 + cols['key'] + cols['owner'] + cols['status'] + 9
    cols['subject'] = max(0, total_width - 6 - fixed)
    return cols


def format_issue_row(issue: Issue, cols: Dict[str, int], flagged: bool) -> str:
    key = _truncate_or_pad(issue.key + (" *" if flagged else ""), cols['key'])
    subject = _truncate_or_pad(issue.subject, cols['subject'])
    owner = _truncate_or_pad(issue.owner, cols['owner'])
    status = _truncate_or_pad(issue.status_name, cols['status'])
    return f" {key} | {subject} | {owner} | {status}"


def issue_url(domain: str, key: str) -> str:
    return f"https://{domain.strip()}/browse/{key}"


def open_url(url: str) -> bool:
    try:
        return bool(webbrowser.open(url))
    except webbrowser.Error:
        logger.warning("Unable to open %s", url, exc_info=True)
        return False


# -----------------------------
# Themes
# -----------------------------
@dataclass
class ThemePreset:
    name: str
    style: Dict[str, str]
    description: Optional[str] = None


BASE_THEME_STYLE: Dict[str, str] = {
    'title': 'bold #10b981',
    'tab.active': 'bg:#3b82f6 #ffffff bold',
    'tab.inactive': 'bg:#374151 #9ca3af',
    'table.header': 'bold #10b981',
    'table.row': '#e5e5e5',
    'table.row.selected': 'bg:#3b82f6 #ffffff',
    'table.row.new': 'bg:#dc2626 #ffffff',
    'table.row.new.dim': 'bg:#7f1d1d #ffffff',
    'table.empty': '#888888',
    'status': '#6b7280',
    'status.message': '#fbbf24',
    'loading': 'bold #ffd700',
    'error.title': 'bold #ef4444',
    'error': '#f87171',
    'warning': '#fbbf24',
    'hint': '#888888',
    'modal': 'bg:#111827 #e5e5e5',
    'modal.title': 'bold #f59e0b',
    'modal.heading': 'bold #10b981',
    'modal.item': '#e5e5e5',
    'modal.item.selected': 'bg:#3b82f6 #ffffff',
    'modal.label': '#9ca3af',
    'modal.field': '#e5e5e5',
    'modal.field.editing': 'bold #fbbf24',
    'modal.hint': '#6b7280',
}


def _load_theme_presets(theme_dir: Path) -> List[ThemePreset]:
    presets: List[ThemePreset] = [ThemePreset(name="Default", style=dict(BASE_THEME_STYLE))]
    seen = {"default"}
    if not theme_dir.is_dir():
        return presets
    candidates = sorted(theme_dir.glob("*.yml")) + sorted(theme_dir.glob("*.yaml"))
    for path in candidates:
        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        except (OSError, yaml.YAMLError):
            logger.warning("Failed to load theme file %s", path, exc_info=True)
            continue
        if not isinstance(data, dict):
            continue
        name = str(data.get("name") or path.stem).strip() or path.stem
        style_dict = dict(BASE_THEME_STYLE)
        overrides = data.get("style")
        if isinstance(overrides, dict):
            for key, value in overrides.items():
                if isinstance(key, str) and isinstance(value, str):
                    style_dict[key] = value
        preset = ThemePreset(name=name, style=style_dict, description=data.get("description"))
        lowered = name.lower()
        if lowered == "default":
            presets[0] = preset
            continue
        if lowered in seen:
            continue
        presets.append(preset)
        seen.add(lowered)
    return presets


def select_theme(presets: List[ThemePreset], name: Optional[str]) -> ThemePreset:
    if name:
        for preset in presets:
            if preset.name.lower() == name.strip().lower():
                return preset
        logger.warning("Theme %r not found; using %s", name, presets[0].name)
    return presets[0]


# -----------------------------
# UI
# -----------------------------
BLINK_SECONDS = 0.5


@dataclass
class UIState:
    selected_tab: int = 0
    selected_row: int = 0
    v_offset: int = 0
    sort_index: int = 0
    show_jql: bool = False
    settings: Optional[SettingsEditor] = None
    blink_on: bool = True
    status_line: str = ""
    scheduler: Optional[PollingScheduler] = None
    confirm_task: Optional[asyncio.Task] = None

    @property
    def sort_mode(self) -> str:
        return SORT_MODES[self.sort_index % len(SORT_MODES)]


def build_ui(engine: SyncEngine, config_path: str, theme: Optional[ThemePreset] = None,
             prevalidated: bool = True) -> Tuple[Application, UIState]:
    """Full-screen tabbed issue browser over *engine*.

    - Tab / Shift-Tab: switch view; j/k, arrows: move selection
    - r refresh all; c clear highlights; f flag; s sort; o open; d JQL; e settings
    - q / Esc quit (or close the open modal)
    """
    ui = UIState()
    scheduler = PollingScheduler(engine)
    ui.scheduler = scheduler
    theme = theme or ThemePreset(name="Default", style=dict(BASE_THEME_STYLE))
    app: Optional[Application] = None

    def invalidate() -> None:
        if app is not None:
            app.invalidate()

    engine.on_change = invalidate

    def _terminal_size() -> Tuple[int, int]:
        try:
            size = app.output.get_size()
            return size.columns, size.rows
        except Exception:
            return 120, 40

    def current_issues() -> List[Issue]:
        return engine.sorted_issues(ui.selected_tab, ui.sort_mode)

    def _clamp_selection() -> None:
        tabs = engine.tabs()
        if ui.selected_tab >= len(tabs):
            ui.selected_tab = 0
        rows = current_issues()
        ui.selected_row = max(0, min(ui.selected_row, len(rows) - 1)) if rows else 0

    def selected_issue() -> Optional[Issue]:
        rows = current_issues()
        if not rows:
            return None
        _clamp_selection()
        return rows[ui.selected_row]

    # rendering --------------------------------------------------------
    def build_tab_fragments() -> List[Tuple[str, str]]:
        frags: List[Tuple[str, str]] = [('class:title', f" Jira - {engine.config.project} "), ('', ' ')]
        for idx, name in enumerate(engine.tabs()):
            cls = 'class:tab.active' if idx == ui.selected_tab else 'class:tab.inactive'
            frags.append((cls, f" {name} "))
            frags.append(('', ' '))
        return frags

    def _build_error_fragments() -> List[Tuple[str, str]]:
        return [
            ('class:error.title', "Error\n\n"),
            ('class:error', f"{engine.error}\n\n"),
            ('class:hint', "Press Esc to exit"),
        ]

    def _build_validation_fragments() -> List[Tuple[str, str]]:
        frags: List[Tuple[str, str]] = [('class:error.title', "JQL Validation Errors\n\n")]
        for failure in engine.validation_failures:
            frags.append(('class:warning', f"{failure.name}:\n"))
            for err in failure.errors or ["Invalid JQL"]:
                frags.append(('class:error', f"  {err}\n"))
            for warn in failure.warnings:
                frags.append(('class:warning', f"  Warning: {warn}\n"))
            frags.append(('', "\n"))
        frags.append(('class:hint', "Fix the queries (press e for settings) or press Esc to exit."))
        return frags

    def build_body_fragments() -> List[Tuple[str, str]]:
        if engine.error:
            return _build_error_fragments()
        if engine.validation_failures:
            return _build_validation_fragments()
        if engine.loading and engine.cache.get(ui.selected_tab) is None:
            return [('class:loading', f"\n  {engine.progress or 'Loading Jira issues...'}")]
        rows = current_issues()
        if not rows:
            return [('class:table.empty', "\n  No issues found")]
        _clamp_selection()
        width, height = _terminal_size()
        cols = compute_columns(width)
        header = " " + " | ".join([
            "Issue".ljust(cols['key']), "Subject".ljust(cols['subject']),
            "Owner".ljust(cols['owner']), "Status".ljust(cols['status']),
        ])
        visible = max(1, height - 6)
        if ui.selected_row < ui.v_offset:
            ui.v_offset = ui.selected_row
        elif ui.selected_row >= ui.v_offset + visible:
            ui.v_offset = ui.selected_row - visible + 1
        flagged = engine.flags.keys()
        frags: List[Tuple[str, str]] = [('class:table.header', header + "\n\n")]
        for idx in range(ui.v_offset, min(len(rows), ui.v_offset + visible)):
            issue = rows[idx]
            if engine.tracker.is_new(issue.id):
                cls = 'class:table.row.new' if ui.blink_on else 'class:table.row.new.dim'
            elif idx == ui.selected_row:
                cls = 'class:table.row.selected'
            else:
                cls = 'class:table.row'
            line = format_issue_row(issue, cols, issue.key in flagged)
            frags.append((cls, line.ljust(max(0, width - 2)) + "\n"))
        return frags

    def build_status_bar() -> List[Tuple[str, str]]:
        count = len(current_issues())
        refreshed = engine.last_refresh.strftime('%H:%M:%S') if engine.last_refresh else '--:--:--'
        base = (f" Tab: Views | j/k: Navigate | o: Open | f: Flag | d: JQL | s: Sort ({SORT_LABELS[ui.sort_mode]})"
                f" | r: Refresh | c: Clear | e: Settings | {count} issues | {refreshed}")
        frags: List[Tuple[str, str]] = [('class:status', base)]
        message = engine.progress or ui.status_line
        if message:
            frags.append(('class:status.message', f"  {message}"))
        return frags

    def _field_fragments(ed: SettingsEditor, field_name: str, value: str) -> List[Tuple[str, str]]:
        if ed.edit_field == field_name:
            text = ed.edit_value[:ed.cursor] + "▏" + ed.edit_value[ed.cursor:]
            return [('class:modal.field.editing', f"  [{text}]\n")]
        return [('class:modal.field', f"  [{value}]\n")]

    def _list_fragments(labels: List[str], selected: int) -> List[Tuple[str, str]]:
        frags: List[Tuple[str, str]] = []
        for idx, label in enumerate(labels):
            if idx == selected:
                frags.append(('class:modal.item.selected', f" > {label}\n"))
            else:
                frags.append(('class:modal.item', f"   {label}\n"))
        return frags

    def build_settings_fragments() -> List[Tuple[str, str]]:
        ed = ui.settings
        if ed is None:
            return []
        frags: List[Tuple[str, str]] = []
        if ed.mode == 'menu':
            frags += _list_fragments(ed.menu_labels(), ed.menu_index)
        elif ed.mode == 'views':
            frags.append(('class:modal.heading', "Views\n"))
            frags.append(('class:modal.hint', "Enter to edit, d to delete\n\n"))
            frags += _list_fragments(ed.view_labels(), ed.view_index)
        elif ed.mode == 'edit-view':
            view = None if ed.is_new_view else ed.draft.views[ed.view_index]
            title = "New View" if ed.is_new_view else f"Edit: {view.name}"
            frags.append(('class:modal.heading', f"{title}\n\n"))
            name_value = ed.pending_name if ed.is_new_view else view.name
            jql_value = "" if ed.is_new_view else view.jql
            markers = ["> " if ed.field_index == idx and ed.edit_field is None else "  " for idx in (0, 1)]
            frags.append(('class:modal.label', f"{markers[0]}Name:\n"))
            frags += _field_fragments(ed, 'name', name_value)
            frags.append(('class:modal.label', f"{markers[1]}JQL:\n"))
            frags += _field_fragments(ed, 'jql', jql_value)
        elif ed.mode == 'activity':
            act = ed.draft.activity
            enabled = act is not None and act.enabled
            frags.append(('class:modal.heading', "Activity Panel\n\n"))
            frags.append(('class:modal.item', f"Status: {'Enabled' if enabled else 'Disabled'} (Enter to toggle)\n\n"))
            if enabled:
                frags.append(('class:modal.label', "Polling Interval (minutes):\n"))
                frags += _field_fragments(ed, 'interval', str(act.polling_interval_minutes))
                frags.append(('class:modal.label', "JQL:\n"))
                frags += _field_fragments(ed, 'activity_jql', act.jql)
        elif ed.mode == 'project':
            frags.append(('class:modal.heading', "Project Key\n\n"))
            frags += _field_fragments(ed, 'project', ed.draft.project)
        if ed.error:
            frags.append(('class:error', f"\n{ed.error}\n"))
        if ed.warning:
            frags.append(('class:warning', f"\nWarning: {ed.warning}\n"))
        if ed.validating:
            frags.append(('class:warning', "\nValidating...\n"))
        if ed.edit_field is not None:
            hint = "←/→: move cursor, Enter: save, Esc: cancel"
        elif ed.mode == 'activity':
            hint = "Enter: toggle, i: interval, j: JQL, Esc: back"
        else:
            hint = "j/k: navigate | Enter: select | Esc: back"
        frags.append(('class:modal.hint', f"\n{hint}"))
        return frags

    def build_jql_fragments() -> List[Tuple[str, str]]:
        tabs = engine.tabs()
        name = tabs[ui.selected_tab] if ui.selected_tab < len(tabs) else ""
        jql = engine.tab_jql(ui.selected_tab) or ""
        return [
            ('class:modal.heading', f"{name} - JQL Query\n\n"),
            ('class:modal.item', jql + "\n\n"),
            ('class:modal.hint', "Press Esc to close"),
        ]

    tab_window = Window(content=FormattedTextControl(text=build_tab_fragments), height=1)
    body_window = Window(content=FormattedTextControl(text=build_body_fragments), wrap_lines=False)
    status_window = Window(content=FormattedTextControl(text=build_status_bar), height=1)
    settings_window = Window(
        content=FormattedTextControl(text=build_settings_fragments),
        width=Dimension(preferred=86, max=90),
        height=Dimension(preferred=21, max=25),
        wrap_lines=True,
        style='class:modal',
    )
    jql_window = Window(
        content=FormattedTextControl(text=build_jql_fragments),
        width=Dimension(preferred=78, max=80),
        height=Dimension(min=4, max=20),
        wrap_lines=True,
        style='class:modal',
    )
    settings_float = Float(content=Frame(body=settings_window, title="Settings", style='class:modal'))
    jql_float = Float(content=Frame(body=jql_window, title="JQL", style='class:modal'))
    floats: List[Float] = []
    root = HSplit([tab_window, Window(height=1, char=' '), body_window, status_window])
    container = FloatContainer(content=root, floats=floats)

    def _show_float(item: Optional[Float]) -> None:
        floats.clear()
        if item is not None:
            floats.append(item)
        invalidate()

    # actions ----------------------------------------------------------
    def switch_tab(delta: int) -> None:
        tabs = engine.tabs()
        if not tabs:
            return
        ui.selected_tab = (ui.selected_tab + delta) % len(tabs)
        ui.selected_row = 0
        ui.v_offset = 0
        invalidate()

    def move(delta: int) -> None:
        rows = current_issues()
        if not rows:
            ui.selected_row = 0
        else:
            ui.selected_row = max(0, min(len(rows) - 1, ui.selected_row + delta))
        invalidate()

    def cycle_sort() -> None:
        ui.sort_index = (ui.sort_index + 1) % len(SORT_MODES)
        ui.selected_row = 0
        ui.v_offset = 0
        invalidate()

    def manual_refresh() -> None:
        if scheduler.trigger_manual():
            ui.status_line = "Refreshing..."
        else:
            ui.status_line = "Refresh already running"
        invalidate()

    def clear_highlights() -> None:
        engine.clear_highlights()
        ui.status_line = ""
        invalidate()

    def toggle_flag() -> None:
        issue = selected_issue()
        if issue is None:
            return
        flagged = engine.toggle_flag(issue.key)
        ui.status_line = f"{issue.key} {'flagged' if flagged else 'unflagged'}"
        invalidate()

    def open_selected() -> None:
        issue = selected_issue()
        if issue is None:
            return
        url = issue_url(engine.config.domain, issue.key)
        if not open_url(url):
            ui.status_line = f"Could not open {url}"
        invalidate()

    def toggle_jql() -> None:
        ui.show_jql = not ui.show_jql
        _show_float(jql_float if ui.show_jql else None)

    def _settings_saved(draft: Config) -> None:
        committed = copy.deepcopy(draft)
        try:
            save_config(committed, config_path)
            ui.status_line = "Settings saved"
        except OSError as exc:
            logger.exception("Unable to write %s", config_path)
            ui.status_line = f"Settings applied but not written: {exc}"
        ui.settings = None
        ui.selected_tab = 0
        ui.selected_row = 0
        ui.v_offset = 0
        _show_float(None)
        scheduler.rearm(committed)

    def _settings_closed() -> None:
        ui.settings = None
        _show_float(None)

    def open_settings() -> None:
        ui.settings = SettingsEditor(engine.config, validator=engine.validate_queries,
                                     on_save=_settings_saved, on_close=_settings_closed)
        ui.show_jql = False
        _show_float(settings_float)

    def _spawn_confirm() -> None:
        ed = ui.settings
        if ed is None:
            return

        async def _confirm() -> None:
            try:
                await ed.confirm_edit()
            finally:
                invalidate()

        ui.confirm_task = asyncio.create_task(_confirm())
        invalidate()

    def quit_app(event) -> None:
        scheduler.disarm()
        event.app.exit()

    # key bindings -----------------------------------------------------
    kb = KeyBindings()
    in_settings = Condition(lambda: ui.settings is not None)
    settings_typing = Condition(lambda: ui.settings is not None and ui.settings.edit_field is not None)
    settings_nav = Condition(lambda: ui.settings is not None and ui.settings.edit_field is None)
    jql_open = Condition(lambda: ui.settings is None and ui.show_jql)
    is_normal = Condition(lambda: ui.settings is None and not ui.show_jql)

    @kb.add('c-c')
    def _(event):
        quit_app(event)

    @kb.add('q', filter=is_normal)
    @kb.add('escape', filter=is_normal, eager=True)
    def _(event):
        quit_app(event)

    @kb.add('tab', filter=is_normal)
    def _(event):
        switch_tab(1)

    @kb.add('s-tab', filter=is_normal)
    def _(event):
        switch_tab(-1)

    @kb.add('j', filter=is_normal)
    @kb.add('down', filter=is_normal)
    def _(event):
        move(1)

    @kb.add('k', filter=is_normal)
    @kb.add('up', filter=is_normal)
    def _(event):
        move(-1)

    @kb.add('s', filter=is_normal)
    def _(event):
        cycle_sort()

    @kb.add('r', filter=is_normal)
    def _(event):
        manual_refresh()

    @kb.add('c', filter=is_normal)
    def _(event):
        clear_highlights()

    @kb.add('f', filter=is_normal)
    def _(event):
        toggle_flag()

    @kb.add('o', filter=is_normal)
    def _(event):
        open_selected()

    @kb.add('d', filter=is_normal)
    def _(event):
        toggle_jql()

    @kb.add('e', filter=is_normal)
    def _(event):
        open_settings()

    @kb.add('escape', filter=jql_open, eager=True)
    @kb.add('q', filter=jql_open)
    @kb.add('d', filter=jql_open)
    def _(event):
        toggle_jql()

    # settings: navigation
    @kb.add('j', filter=settings_nav)
    @kb.add('down', filter=settings_nav)
    def _(event):
        ed = ui.settings
        if ed.mode == 'activity':
            ed.begin_activity_jql_edit()
        else:
            ed.move(1)
        invalidate()

    @kb.add('J', filter=settings_nav)
    def _(event):
        ui.settings.begin_activity_jql_edit()
        invalidate()

    @kb.add('k', filter=settings_nav)
    @kb.add('up', filter=settings_nav)
    def _(event):
        ui.settings.move(-1)
        invalidate()

    @kb.add('i', filter=settings_nav)
    def _(event):
        ui.settings.begin_interval_edit()
        invalidate()

    @kb.add('d', filter=settings_nav)
    def _(event):
        ui.settings.delete_selected()
        invalidate()

    @kb.add('enter', filter=settings_nav)
    def _(event):
        ui.settings.select()
        invalidate()

    @kb.add('escape', filter=in_settings, eager=True)
    def _(event):
        ed = ui.settings
        ed.escape()
        if ed.closed:
            _settings_closed()
        invalidate()

    # settings: text field
    @kb.add('enter', filter=settings_typing)
    def _(event):
        _spawn_confirm()

    @kb.add('backspace', filter=settings_typing)
    def _(event):
        ui.settings.backspace(); invalidate()

    @kb.add('delete', filter=settings_typing)
    def _(event):
        ui.settings.delete(); invalidate()

    @kb.add('left', filter=settings_typing)
    def _(event):
        ui.settings.cursor_left(); invalidate()

    @kb.add('right', filter=settings_typing)
    def _(event):
        ui.settings.cursor_right(); invalidate()

    @kb.add('home', filter=settings_typing)
    @kb.add('c-a', filter=settings_typing)
    def _(event):
        ui.settings.cursor_home(); invalidate()

    @kb.add('end', filter=settings_typing)
    @kb.add('c-e', filter=settings_typing)
    def _(event):
        ui.settings.cursor_end(); invalidate()

    @kb.add('c-v', filter=settings_typing)
    def _(event):
        try:
            data = event.app.clipboard.get_data()
        except pyperclip.PyperclipException as exc:
            logger.warning("Clipboard unavailable: %s", exc)
            ui.settings.error = "Clipboard unavailable"
            invalidate()
            return
        ui.settings.insert(data.text); invalidate()

    @kb.add(Keys.BracketedPaste, filter=settings_typing)
    @kb.add(Keys.Any, filter=settings_typing)
    def _(event):
        ui.settings.insert(event.data); invalidate()

    style = Style.from_dict(theme.style)
    app = Application(layout=Layout(container), key_bindings=kb, full_screen=True, style=style,
                      clipboard=PyperclipClipboard())

    async def _ticker():
        while True:
            await asyncio.sleep(BLINK_SECONDS)
            if engine.tracker.highlighted:
                ui.blink_on = not ui.blink_on
            else:
                ui.blink_on = True
            invalidate()

    def _pre_run() -> None:
        scheduler.arm(prevalidated=prevalidated)
        app.create_background_task(_ticker())

    app.pre_run_callables.append(_pre_run)
    return app, ui


def run_ui(engine: SyncEngine, config_path: str, theme: Optional[ThemePreset] = None,
           prevalidated: bool = True) -> None:
    app, ui = build_ui(engine, config_path, theme=theme, prevalidated=prevalidated)
    try:
        app.run()
    finally:
        if ui.scheduler is not None:
            ui.scheduler.disarm()


# -----------------------------
# Setup wizard
# -----------------------------
def _ask_yes_no(ask: Callable[[str], str], question: str) -> bool:
    return ask(f"{question} (y/n): ").strip().lower().startswith("y")


def _read_multiline_jql(ask: Callable[[str], str], out: Callable[[str], None]) -> str:
    out("Enter JQL (multi-line allowed, finish with an empty line):")
    lines: List[str] = []
    while True:
        line = ask("")
        if line == "":
            if lines:
                return "\n".join(lines).strip()
            continue
        lines.append(line)


def _wizard_validate(client_factory: Callable[[str], object], domain: str, jql: str,
                     project: str) -> Tuple[bool, List[str]]:
    try:
        client = client_factory(domain)
        results = validate_batch(client, [scope_to_project(jql, project)])
    except JiraTuiError as exc:
        return False, [str(exc)]
    if not results:
        return False, ["Validation failed - no response"]
    return results[0].valid, results[0].errors


def _default_client_factory(domain: str):
    return create_client(Config(project="", domain=domain))


def run_setup_wizard(
    config_path: str,
    ask: Optional[Callable[[str], str]] = None,
    client_factory: Optional[Callable[[str], object]] = None,
    out: Callable[[str], None] = print,
) -> Optional[Config]:
    """Interactive first-run setup; returns the saved config or None when aborted."""
    ask = ask or prompt
    client_factory = client_factory or _default_client_factory
    existing: Optional[Config] = None
    if os.path.exists(config_path):
        try:
            existing = load_config(config_path)
        except ConfigCorrupt:
            existing = None

    out("Jira TUI setup")
    default_domain = existing.domain.strip() if existing else ""
    if default_domain:
        answer = ask(f"Jira domain (default: {default_domain}): ")
    else:
        answer = ask("Jira domain (e.g., your-company.atlassian.net): ")
    domain = (answer.strip() or default_domain).strip()
    if not domain:
        out("Error: Domain is required.")
        return None

    project = ask("Jira project key (e.g., PROJ): ").strip()
    if not project:
        out("Error: Project key is required.")
        return None

    views: List[View] = []
    while True:
        out(f"Adding view #{len(views) + 1}")
        name = ask("View name (e.g., My Work): ").strip()
        if not name:
            out("Error: View name is required.")
            continue
        jql = _read_multiline_jql(ask, out)
        out("Validating JQL...")
        valid, errors = _wizard_validate(client_factory, domain, jql, project)
        if not valid:
            out("Invalid JQL:")
            for err in errors:
                out(f"   {err}")
            continue
        views.append(View(name=name, jql=jql))
        out(f'Added view "{name}" ({len(views)} so far)')
        if not _ask_yes_no(ask, "Add another view?"):
            break

    activity = ActivityConfig(enabled=False, polling_interval_minutes=DEFAULT_ACTIVITY_INTERVAL, jql="")
    out("The Activity panel polls one extra query on its own, faster cadence.")
    if _ask_yes_no(ask, "Enable Activity panel?"):
        activity.enabled = True
        activity.jql = DEFAULT_ACTIVITY_JQL
        if not _ask_yes_no(ask, "Use default Activity JQL?"):
            custom = _read_multiline_jql(ask, out)
            valid, errors = _wizard_validate(client_factory, domain, custom, project)
            if valid:
                activity.jql = custom
            else:
                out("Invalid Activity JQL:")
                for err in errors:
                    out(f"   {err}")
                out("Using default Activity JQL instead.")
        raw_interval = ask(f"Polling interval in minutes (default {DEFAULT_ACTIVITY_INTERVAL}): ").strip()
        interval = parse_interval(raw_interval)
        activity.polling_interval_minutes = interval if interval > 0 else DEFAULT_ACTIVITY_INTERVAL

    cfg = Config(project=project, domain=domain, views=views, activity=activity,
                 extra=dict(existing.extra) if existing else {})
    if existing is not None and not _ask_yes_no(ask, f"{config_path} already exists. Overwrite?"):
        out("Aborted.")
        return None
    save_config(cfg, config_path)
    out(f"Config saved to {config_path}")
    for view in cfg.views:
        out(f"  • {view.name}")
    return cfg


# -----------------------------
# Mock client
# -----------------------------
MOCK_PEOPLE = ["Ada Lovelace", "Grace Hopper", None, "Linus Torvalds"]
MOCK_STATUSES = [("To Do", "To Do"), ("In Progress", "In Progress"), ("Done", "Done"), ("Blocked", "In Progress")]


class MockJiraClient:
    """Offline stand-in for JiraClient; each search grows the result set by one issue."""

    def __init__(self, project: str):
        self.project = project or "DEMO"
        self.calls: Dict[str, int] = {}

    def validate_jql(self, queries: List[str]) -> List[JqlValidationResult]:
        return [JqlValidationResult(query=q, valid=True) for q in queries]

    def search_issues(self, jql: str) -> List[Issue]:
        count = self.calls.get(jql, 0)
        self.calls[jql] = count + 1
        base = sum(ord(ch) for ch in jql) % 50
        now = dt.datetime.now(dt.timezone.utc)
        issues: List[Issue] = []
        for n in range(6 + count):
            num = 100 + base + n
            status, category = MOCK_STATUSES[num % len(MOCK_STATUSES)]
            issues.append(Issue(
                id=str(10000 + num),
                key=f"{self.project}-{num}",
                summary=f"Sample issue {num}",
                status=status,
                status_category=category,
                assignee=MOCK_PEOPLE[num % len(MOCK_PEOPLE)],
                reporter=MOCK_PEOPLE[(num + 1) % len(MOCK_PEOPLE)],
                created=now - dt.timedelta(hours=num - 100),
                updated=now - dt.timedelta(minutes=(num * 7) % 300),
            ))
        return issues


# -----------------------------
# CLI
# -----------------------------
def setup_logging(log_level: str = 'ERROR', log_path: Optional[str] = None) -> logging.Logger:
    if log_path is None:
        log_path = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'jira_tui.log')
    # Reset handlers so --log-level reliably controls file output.
    for h in list(logger.handlers):
        logger.removeHandler(h)
        h.close()
    logger.setLevel(logging.DEBUG)
    fh = RotatingFileHandler(log_path, maxBytes=2000000, backupCount=2, encoding='utf-8')
    lvl = getattr(logging, str(log_level).upper(), logging.ERROR)
    if not isinstance(lvl, int):
        lvl = logging.ERROR
    fh.setLevel(lvl)
    fh.setFormatter(logging.Formatter('%(asctime)s %(levelname)s %(message)s'))
    logger.addHandler(fh)
    return logger


def preflight(config_path: str, client_factory: Callable[[Config], object] = create_client) -> Tuple[Config, object]:
    """Load and fully validate the config before any UI starts; raises JiraTuiError subclasses."""
    cfg = load_config(config_path)
    problems = validate_config(cfg)
    if problems:
        raise ConfigInvalid(problems)
    client = client_factory(cfg)
    queries = build_validation_queries(cfg)
    results = validate_batch(client, [jql for _, jql in queries])
    checked = collect_view_validations(queries, results)
    failures = [c for c in checked if not c.valid]
    if failures:
        raise QueryInvalid(failures)
    for entry in checked:
        logger.info("JQL warnings for %s: %s", entry.name, "; ".join(entry.warnings))
    return cfg, client


async def _fetch_summary(engine: SyncEngine) -> List[Tuple[str, int]]:
    await engine.refresh_views(force=True, initial=True)
    await engine.refresh_activity(initial=True)
    return [(name, len(engine.cache.issues(idx))) for idx, name in enumerate(engine.tabs())]


def run_summary(engine: SyncEngine) -> int:
    try:
        counts = asyncio.run(_fetch_summary(engine))
    except JiraTuiError as exc:
        print(str(exc), file=sys.stderr)
        return 1
    for name, count in counts:
        print(f"{name}: {count} issues")
    if engine.last_failure:
        print(f"Warning: {engine.last_failure}", file=sys.stderr)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    ap = argparse.ArgumentParser(description="Jira multi-view terminal watcher")
    ap.add_argument("--config-file", default=DEFAULT_CONFIG_PATH, help="Path to config.json")
    ap.add_argument("--state-file", default=DEFAULT_STATE_PATH, help="Path to the flagged-issues state file")
    ap.add_argument("--setup", action="store_true", help="Run the interactive setup wizard and exit")
    ap.add_argument("--no-ui", action="store_true", help="Fetch every view once, print counts and exit")
    ap.add_argument("--log-level", default="ERROR", help="File log level (DEBUG, INFO, WARNING, ERROR)")
    ap.add_argument("--log-file", default=None, help="Log file path (default: jira_tui.log beside this script)")
    ap.add_argument("--theme", default=None, help="Theme preset name from themes/*.yml")
    args = ap.parse_args(argv)

    setup_logging(args.log_level, args.log_file)
    config_path = args.config_file

    if args.setup or not os.path.exists(config_path):
        return 0 if run_setup_wizard(config_path) is not None else 1
    try:
        if should_run_setup(load_config(config_path)):
            return 0 if run_setup_wizard(config_path) is not None else 1
    except ConfigCorrupt:
        pass  # preflight reports it with the remediation hint

    try:
        cfg, client = preflight(config_path)
    except JiraTuiError as exc:
        logger.error("Startup failed: %s", exc)
        print(str(exc), file=sys.stderr)
        return 1

    flags = FlagStore(args.state_file)
    flags.load()
    engine = SyncEngine(cfg, client, flags)

    if args.no_ui:
        return run_summary(engine)

    presets = _load_theme_presets(Path(__file__).resolve().parent / "themes")
    run_ui(engine, config_path, theme=select_theme(presets, args.theme), prevalidated=True)
    return 0


if __name__ == "__main__":
    sys.exit(main())
