import json
from types import SimpleNamespace

import pytest
from prompt_toolkit.clipboard import ClipboardData, InMemoryClipboard
from prompt_toolkit.keys import Keys

import jira_tui as jt
from conftest import FakeJiraClient, make_config, make_issue


def _find_handler(kb, key):
    """Return the handler that would fire for *key* given the current UI state."""
    for candidate in (key, Keys.Any):
        for binding in kb.bindings:
            if binding.keys == (candidate,) and binding.filter():
                return binding.handler
    raise AssertionError(f"no active binding for {key!r}")


def _press(ui_ctx, key, data=''):
    event = SimpleNamespace(data=data or key, app=ui_ctx.app)
    _find_handler(ui_ctx.app.key_bindings, key)(event)


@pytest.fixture
def scheduled_tasks(monkeypatch):
    captured = []

    class DummyTask:
        def __init__(self, coro):
            self._coro = coro

        def cancel(self):
            pass

    def fake_create_task(coro):
        captured.append(coro)
        return DummyTask(coro)

    monkeypatch.setattr(jt.asyncio, "create_task", fake_create_task)
    yield captured
    for coro in captured:
        coro.close()


@pytest.fixture
def ui_ctx(app_session, tmp_path, flag_store, scheduled_tasks):
    config_path = tmp_path / 'config.json'
    cfg = make_config()
    jt.save_config(cfg, str(config_path))
    engine = jt.SyncEngine(cfg, FakeJiraClient(), flag_store)
    engine.cache.store(0, [
        make_issue(1, created='2024-01-01T00:00:00.000+0000', assignee='Zed'),
        make_issue(2, created='2024-02-01T00:00:00.000+0000', assignee='Ada'),
    ])
    engine.cache.store(1, [make_issue(3)])
    engine.loading = False
    app, ui = jt.build_ui(engine, str(config_path))
    exits = []
    app.exit = lambda *a, **k: exits.append(True)
    return SimpleNamespace(app=app, ui=ui, engine=engine, config_path=config_path,
                           exits=exits, tasks=scheduled_tasks)


def test_tab_cycles_views_and_resets_selection(ui_ctx):
    ui_ctx.ui.selected_row = 1
    _press(ui_ctx, 'c-i')
    assert ui_ctx.ui.selected_tab == 1
    assert ui_ctx.ui.selected_row == 0

    _press(ui_ctx, 'c-i')
    assert ui_ctx.ui.selected_tab == 0

    _press(ui_ctx, 's-tab')
    assert ui_ctx.ui.selected_tab == 1


def test_navigation_stays_in_bounds(ui_ctx):
    _press(ui_ctx, 'j')
    _press(ui_ctx, 'j')
    assert ui_ctx.ui.selected_row == 1
    _press(ui_ctx, 'k')
    _press(ui_ctx, 'k')
    assert ui_ctx.ui.selected_row == 0


def test_sort_cycles_modes(ui_ctx):
    assert ui_ctx.ui.sort_mode == 'created'
    for expected in ['updated', 'owner', 'flagged', 'created']:
        _press(ui_ctx, 's')
        assert ui_ctx.ui.sort_mode == expected


def test_flag_toggles_selected_issue(ui_ctx, flag_store):
    _press(ui_ctx, 'f')

    # newest created first, so PROJ-2 is selected
    assert flag_store.is_flagged('PROJ-2')
    state = json.loads(open(flag_store.path, encoding='utf-8').read())
    assert state == {'flaggedIssueKeys': ['PROJ-2']}
    assert 'flagged' in ui_ctx.ui.status_line

    _press(ui_ctx, 'f')
    assert not flag_store.is_flagged('PROJ-2')


def test_clear_highlights(ui_ctx):
    ui_ctx.engine.tracker.highlight({'10001'})
    _press(ui_ctx, 'c')
    assert ui_ctx.engine.tracker.highlighted == set()


def test_manual_refresh_schedules_forced_cycle(ui_ctx):
    _press(ui_ctx, 'r')
    assert len(ui_ctx.tasks) == 1
    assert ui_ctx.ui.status_line == 'Refreshing...'


def test_open_uses_issue_url(ui_ctx, monkeypatch):
    opened = []
    monkeypatch.setattr(jt.webbrowser, 'open', lambda url: opened.append(url) or True)
    _press(ui_ctx, 'o')
    assert opened == ['https://acme.atlassian.net/browse/PROJ-2']


def test_jql_modal_toggles(ui_ctx):
    _press(ui_ctx, 'd')
    assert ui_ctx.ui.show_jql
    assert len(ui_ctx.app.layout.container.floats) == 1

    _press(ui_ctx, 'escape')
    assert not ui_ctx.ui.show_jql
    assert ui_ctx.exits == []


def test_quit(ui_ctx):
    _press(ui_ctx, 'q')
    assert ui_ctx.exits == [True]


def test_settings_cancel_keeps_live_config(ui_ctx):
    _press(ui_ctx, 'e')
    assert ui_ctx.ui.settings is not None
    ui_ctx.ui.settings.draft.project = 'OTHER'

    _press(ui_ctx, 'escape')

    assert ui_ctx.ui.settings is None
    assert ui_ctx.engine.config.project == 'PROJ'
    assert ui_ctx.exits == []


def test_settings_typing_captures_letters(ui_ctx):
    _press(ui_ctx, 'e')
    _press(ui_ctx, 'c-m')
    ed = ui_ctx.ui.settings
    assert ed.edit_field == 'project'

    _press(ui_ctx, 'c-h')
    _press(ui_ctx, 'q', data='q')

    assert ed.edit_value == 'PROq'
    assert ui_ctx.exits == []


def test_settings_enter_keeps_confirm_task(ui_ctx):
    _press(ui_ctx, 'e')
    _press(ui_ctx, 'c-m')
    assert ui_ctx.ui.settings.edit_field == 'project'

    _press(ui_ctx, 'c-m')

    assert len(ui_ctx.tasks) == 1
    assert ui_ctx.ui.confirm_task is not None


def test_settings_ctrl_v_pastes_clipboard(ui_ctx):
    ui_ctx.app.clipboard = InMemoryClipboard(ClipboardData('OPS\r\n'))
    _press(ui_ctx, 'e')
    _press(ui_ctx, 'c-m')
    ed = ui_ctx.ui.settings
    ed.edit_value = ''
    ed.cursor = 0

    _press(ui_ctx, 'c-v')

    assert ed.edit_value == 'OPS'
    assert ed.cursor == 3


def test_settings_save_writes_config_and_rearms(ui_ctx):
    _press(ui_ctx, 'e')
    ed = ui_ctx.ui.settings
    ed.draft.views[0].name = 'Everything'
    for _ in range(3):
        _press(ui_ctx, 'j')
    assert ed.menu_index == jt.MENU_ACTIONS.index('save')

    _press(ui_ctx, 'c-m')

    saved = json.loads(ui_ctx.config_path.read_text(encoding='utf-8'))
    assert saved['views'][0]['name'] == 'Everything'
    assert ui_ctx.ui.settings is None
    assert ui_ctx.engine.config.views[0].name == 'Everything'
    assert ui_ctx.engine.generation == 1
    assert len(ui_ctx.tasks) == 1


def test_body_shows_validation_failures(ui_ctx):
    ui_ctx.engine.validation_failures = [jt.ViewValidation('Mine', 'x', False, ['Bad field'])]
    body = ui_ctx.app.layout.container.content.children[2].content
    text = ''.join(t for _, t in body.text())
    assert 'JQL Validation Errors' in text
    assert 'Bad field' in text


def test_body_renders_rows_with_highlight(ui_ctx):
    ui_ctx.engine.tracker.highlight({'10001'})
    body = ui_ctx.app.layout.container.content.children[2].content
    fragments = body.text()
    styles = [style for style, text in fragments if 'PROJ-1' in text]
    assert styles == ['class:table.row.new']
