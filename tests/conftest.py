import os
import sys
import threading

import pytest

ROOT_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if ROOT_DIR not in sys.path:
    sys.path.insert(0, ROOT_DIR)

from prompt_toolkit.application import create_app_session
from prompt_toolkit.input import DummyInput
from prompt_toolkit.output import DummyOutput

import jira_tui as jt


def make_raw_issue(num: int, *, summary=None, assignee="Ada Lovelace", status="In Progress",
                   created="2024-01-10T10:00:00.000+0000", updated="2024-01-11T10:00:00.000+0000",
                   project="PROJ") -> dict:
    """Minimal /search/jql issue payload."""
    return {
        'id': str(10000 + num),
        'key': f'{project}-{num}',
        'fields': {
            'summary': f'Issue {num}' if summary is None else summary,
            'status': {'name': status, 'statusCategory': {'name': 'In Progress'}},
            'assignee': {'displayName': assignee} if assignee else None,
            'reporter': {'displayName': 'Grace Hopper'},
            'created': created,
            'updated': updated,
            'customfield_10010': None,
        },
    }


def make_issue(num: int, **overrides) -> jt.Issue:
    return jt.Issue.from_api(make_raw_issue(num, **overrides))


class FakeJiraClient:
    """Synchronous stand-in for JiraClient keyed by the scoped query text."""

    def __init__(self, results=None, invalid=None):
        self.results = dict(results or {})
        self.invalid = dict(invalid or {})
        self.searches = []
        self.validations = []
        self.fail_on = set()
        self._lock = threading.Lock()

    def search_issues(self, jql):
        with self._lock:
            self.searches.append(jql)
        if jql in self.fail_on:
            raise jt.TransportError("Jira API error: 500 Internal Server Error - boom")
        return list(self.results.get(jql, []))

    def validate_jql(self, queries):
        self.validations.append(list(queries))
        out = []
        for q in queries:
            errors = [msg for needle, msg in self.invalid.items() if needle in q]
            out.append(jt.JqlValidationResult(query=q, valid=not errors, errors=errors))
        return out


def make_config(**overrides) -> jt.Config:
    base = dict(
        project='PROJ',
        domain='acme.atlassian.net',
        views=[jt.View('Mine', 'assignee = currentUser()'), jt.View('Open', 'status = Open ORDER BY created DESC')],
        activity=None,
    )
    base.update(overrides)
    return jt.Config(**base)


@pytest.fixture
def fake_client():
    return FakeJiraClient()


@pytest.fixture
def flag_store(tmp_path):
    store = jt.FlagStore(str(tmp_path / 'state.conf'))
    store.load()
    return store


@pytest.fixture
def app_session():
    with create_app_session(input=DummyInput(), output=DummyOutput()) as session:
        yield session
