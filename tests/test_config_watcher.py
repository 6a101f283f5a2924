"""配置文件监控器测试"""

import os
import tempfile
from unittest.mock import MagicMock, Mock, patch

from proxy_health.services.config_manager import ConfigManager
from proxy_health.services.config_watcher import ConfigFileHandler, ConfigWatcher


def write_config(content: str) -> str:
    with tempfile.NamedTemporaryFile(mode='w', suffix='.yaml', delete=False,
                                     encoding='utf-8') as f:
        f.write(content)
        return f.name


class TestConfigFileHandler:
    """配置文件事件处理器测试"""

    def test_triggers_only_for_config_file(self):
        callback = Mock()
        handler = ConfigFileHandler('/etc/proxy/config.yaml', callback)

        handler.on_modified(MagicMock(is_directory=False, src_path='/etc/proxy/other.yaml'))
        handler.on_modified(MagicMock(is_directory=True, src_path='/etc/proxy/config.yaml'))
        callback.assert_not_called()

        handler.on_modified(MagicMock(is_directory=False, src_path='/etc/proxy/config.yaml'))
        callback.assert_called_once()

    def test_callback_error_is_contained(self):
        handler = ConfigFileHandler('/etc/proxy/config.yaml', Mock(side_effect=RuntimeError))

        handler.on_modified(MagicMock(is_directory=False, src_path='/etc/proxy/config.yaml'))


class TestConfigWatcher:
    """配置监控器测试"""

    def setup_method(self):
        self.config_path = write_config("targets:\n  - {id: p1, host: h, port: 80}\n")
        self.manager = ConfigManager(self.config_path)
        self.manager.load_config()
        self.watcher = ConfigWatcher(self.manager)

    def teardown_method(self):
        self.watcher.stop_watching()
        os.unlink(self.config_path)

    def _rewrite(self, content: str):
        with open(self.config_path, 'w', encoding='utf-8') as f:
            f.write(content)

    def test_change_callbacks_receive_old_and_new(self):
        callback = Mock()
        self.watcher.add_change_callback(callback)
        self._rewrite("targets:\n  - {id: p2, host: h, port: 81}\n")

        self.watcher._on_config_changed()

        old_config, new_config = callback.call_args.args
        assert old_config['targets'][0]['id'] == 'p1'
        assert new_config['targets'][0]['id'] == 'p2'

    def test_invalid_reload_does_not_notify(self):
        callback = Mock()
        self.watcher.add_change_callback(callback)
        self._rewrite("monitoring:\n  batch_size: 0\n")

        self.watcher._on_config_changed()

        callback.assert_not_called()
        assert self.manager.get_targets()[0].id == 'p1'

    def test_unchanged_content_does_not_notify(self):
        callback = Mock()
        self.watcher.add_change_callback(callback)

        self.watcher._on_config_changed()

        callback.assert_not_called()

    def test_remove_change_callback(self):
        callback = Mock()
        self.watcher.add_change_callback(callback)
        self.watcher.remove_change_callback(callback)

        assert self.watcher.change_callbacks == []

    @patch('proxy_health.services.config_watcher.Observer')
    def test_start_and_stop(self, mock_observer_class):
        observer = mock_observer_class.return_value

        self.watcher.start_watching()
        assert self.watcher.is_running()
        observer.schedule.assert_called_once()
        observer.start.assert_called_once()

        self.watcher.start_watching()
        observer.start.assert_called_once()

        self.watcher.stop_watching()
        assert not self.watcher.is_running()
        observer.stop.assert_called_once()
        observer.join.assert_called_once()
