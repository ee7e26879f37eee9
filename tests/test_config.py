"""Config defaults, merging and the persisted scan status."""

from test_common import *
from src.core.models import ScanCursor
from src.utils.config import (
    DEFAULT_CONFIG, get_api_key, get_status, load_config, load_scan_cursor,
    mark_run_complete, save_scan_cursor,
)


class TestLoadConfig:
    def test_missing_file_written_with_defaults(self, tmp_path):
        path = tmp_path / 'configs' / 'config.json'
        config = load_config(path)
        assert config == DEFAULT_CONFIG
        assert json.loads(path.read_text(encoding='utf-8')) == DEFAULT_CONFIG

    def test_user_values_merged_over_defaults(self, tmp_path):
        path = tmp_path / 'config.json'
        path.write_text(json.dumps({'dust': {'mode': 'remove'}, 'extra': 1}), encoding='utf-8')
        config = load_config(path)
        assert config['dust']['mode'] == 'remove'
        assert config['dust']['interval'] == 'day'
        assert config['extra'] == 1
        assert json.loads(path.read_text(encoding='utf-8'))['output']['timezone'] == 'UTC'

    def test_corrupt_file_uses_defaults(self, tmp_path):
        path = tmp_path / 'config.json'
        path.write_text('{oops', encoding='utf-8')
        assert load_config(path) == DEFAULT_CONFIG

    def test_defaults_not_mutated(self, tmp_path):
        config = load_config(tmp_path / 'config.json')
        config['dust']['mode'] = 'remove'
        assert DEFAULT_CONFIG['dust']['mode'] == 'off'


def test_api_key_from_environment(monkeypatch):
    monkeypatch.setenv('HELIUS_API_KEY', '  abc  ')
    assert get_api_key() == 'abc'
    monkeypatch.setenv('HELIUS_API_KEY', '')
    assert get_api_key() is None


class TestStatus:
    def test_defaults(self, tmp_path):
        status = get_status(tmp_path / 'status.json')
        assert status == {'last_run': None, 'last_run_success': False, 'scan_cursors': {}}

    def test_cursor_saved_loaded_and_cleared(self, tmp_path):
        path = tmp_path / 'status.json'
        cursor = ScanCursor(addresses=(OWNER, OWNER_TOKEN_ACCOUNTS[0]), next_address_index=1,
                            before_by_address=((OWNER, 'SigA'),))
        save_scan_cursor(OWNER, cursor, path)
        assert load_scan_cursor(OWNER, path) == cursor
        assert load_scan_cursor(OTHER, path) is None
        save_scan_cursor(OWNER, None, path)
        assert load_scan_cursor(OWNER, path) is None

    def test_mark_run_complete(self, tmp_path):
        path = tmp_path / 'status.json'
        mark_run_complete(False, path)
        status = get_status(path)
        assert status['last_run'] is not None
        assert status['last_run_success'] is False
