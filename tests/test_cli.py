import json

import pytest

import jira_tui as jt
from conftest import FakeJiraClient


def _scripted(answers):
    it = iter(answers)
    asked = []

    def ask(question):
        asked.append(question)
        return next(it)

    ask.asked = asked
    return ask


def _write_config(path, **overrides):
    data = {
        'project': 'PROJ',
        'domain': 'acme.atlassian.net',
        'views': [{'name': 'Mine', 'jql': 'assignee = currentUser()'}],
    }
    data.update(overrides)
    path.write_text(json.dumps(data), encoding='utf-8')
    return path


# -- setup wizard --------------------------------------------------------

def test_wizard_writes_config(tmp_path):
    path = tmp_path / 'config.json'
    client = FakeJiraClient()
    ask = _scripted([
        'acme.atlassian.net', 'PROJ',
        'Mine', 'assignee = currentUser()', 'ORDER BY updated DESC', '',
        'n',
        'y', 'y', '10',
    ])

    cfg = jt.run_setup_wizard(str(path), ask=ask, client_factory=lambda domain: client, out=lambda msg: None)

    saved = json.loads(path.read_text(encoding='utf-8'))
    assert saved == {
        'project': 'PROJ',
        'domain': 'acme.atlassian.net',
        'views': [{'name': 'Mine', 'jql': 'assignee = currentUser()\nORDER BY updated DESC'}],
        'activity': {'enabled': True, 'pollingIntervalMinutes': 10, 'jql': jt.DEFAULT_ACTIVITY_JQL},
    }
    assert cfg.views[0].name == 'Mine'
    assert client.validations == [['(assignee = currentUser()) AND project = PROJ ORDER BY updated DESC']]


def test_wizard_retries_invalid_query(tmp_path):
    path = tmp_path / 'config.json'
    client = FakeJiraClient(invalid={'bogus': "Field 'bogus' does not exist"})
    messages = []
    ask = _scripted([
        'acme.atlassian.net', 'PROJ',
        'Broken', 'bogus = 1', '',
        'Fixed', 'status = Open', '',
        'n',
        'n',
    ])

    cfg = jt.run_setup_wizard(str(path), ask=ask, client_factory=lambda domain: client, out=messages.append)

    assert [v.name for v in cfg.views] == ['Fixed']
    assert "   Field 'bogus' does not exist" in messages
    assert cfg.activity == jt.ActivityConfig(enabled=False, polling_interval_minutes=5, jql='')


def test_wizard_requires_domain(tmp_path):
    path = tmp_path / 'config.json'
    cfg = jt.run_setup_wizard(str(path), ask=_scripted(['  ']), client_factory=lambda d: FakeJiraClient(),
                              out=lambda msg: None)
    assert cfg is None
    assert not path.exists()


def test_wizard_keeps_existing_file_when_overwrite_declined(tmp_path):
    path = _write_config(tmp_path / 'config.json')
    before = path.read_text(encoding='utf-8')
    ask = _scripted(['', 'OPS', 'New', 'x = 1', '', 'n', 'n', 'n'])

    cfg = jt.run_setup_wizard(str(path), ask=ask, client_factory=lambda d: FakeJiraClient(), out=lambda msg: None)

    assert cfg is None
    assert path.read_text(encoding='utf-8') == before


# -- preflight / main ----------------------------------------------------

def test_preflight_reports_invalid_queries(tmp_path):
    path = _write_config(tmp_path / 'config.json')
    client = FakeJiraClient(invalid={'currentUser': 'Function not allowed'})

    with pytest.raises(jt.QueryInvalid) as excinfo:
        jt.preflight(str(path), client_factory=lambda cfg: client)

    assert str(excinfo.value) == 'JQL validation failed:\n- Mine: Function not allowed'


def test_preflight_rejects_invalid_config_before_any_request(tmp_path):
    path = _write_config(tmp_path / 'config.json', domain='')
    calls = []

    with pytest.raises(jt.ConfigInvalid) as excinfo:
        jt.preflight(str(path), client_factory=lambda cfg: calls.append(cfg))

    assert 'Missing domain in config.json.' in excinfo.value.errors
    assert calls == []


def test_preflight_returns_config_and_client(tmp_path):
    path = _write_config(tmp_path / 'config.json')
    client = FakeJiraClient()

    cfg, got = jt.preflight(str(path), client_factory=lambda c: client)

    assert got is client
    assert cfg.project == 'PROJ'
    assert client.validations == [['(assignee = currentUser()) AND project = PROJ']]


def _main_args(tmp_path, config_path, *extra):
    return [
        '--config-file', str(config_path),
        '--state-file', str(tmp_path / 'state.conf'),
        '--log-file', str(tmp_path / 'jira_tui.log'),
        *extra,
    ]


def test_main_exits_nonzero_on_invalid_config(tmp_path, capsys):
    path = _write_config(tmp_path / 'config.json', project='')

    assert jt.main(_main_args(tmp_path, path, '--no-ui')) == 1

    err = capsys.readouterr().err
    assert 'Missing project key in config.json.' in err


def test_main_no_ui_with_mock_client(tmp_path, capsys, monkeypatch):
    monkeypatch.setenv('MOCK_FETCH', '1')
    path = _write_config(tmp_path / 'config.json', views=[
        {'name': 'Mine', 'jql': 'assignee = currentUser()'},
        {'name': 'Open', 'jql': 'status = Open'},
    ])

    assert jt.main(_main_args(tmp_path, path, '--no-ui', '--log-level', 'DEBUG')) == 0

    out = capsys.readouterr().out.splitlines()
    assert out == ['Mine: 6 issues', 'Open: 6 issues']
    assert (tmp_path / 'jira_tui.log').exists()


def test_main_runs_wizard_when_config_missing(tmp_path, monkeypatch):
    calls = []
    monkeypatch.setattr(jt, 'run_setup_wizard', lambda path: calls.append(path) or None)

    assert jt.main(_main_args(tmp_path, tmp_path / 'missing.json')) == 1
    assert calls == [str(tmp_path / 'missing.json')]


def test_setup_logging_respects_level(tmp_path):
    log = jt.setup_logging('warning', str(tmp_path / 'app.log'))
    assert len(log.handlers) == 1
    assert log.handlers[0].level == jt.logging.WARNING
    assert log.level == jt.logging.DEBUG

    log = jt.setup_logging('nonsense', str(tmp_path / 'app.log'))
    assert len(log.handlers) == 1
    assert log.handlers[0].level == jt.logging.ERROR
