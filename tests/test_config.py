import os
import tempfile
import unittest
from unittest.mock import MagicMock, patch

from funlocal.config import LocalConfig
from funlocal.container import ContainerManager
from funlocal.images import ImageManager
from funlocal.shutdown import ShutdownCoordinator


class LocalConfigTest(unittest.TestCase):
    def test_defaults(self):
        config = LocalConfig()
        self.assertEqual(config.image_version, "1.6.0")
        self.assertEqual(config.registry_mirror, "registry.cn-beijing.aliyuncs.com")
        self.assertEqual((config.probe_host, config.probe_port), ("google.com", 443))
        self.assertEqual(config.probe_timeout, 1.0)
        self.assertEqual(config.exec_poll_interval, 0.1)
        self.assertFalse(config.force_pull)

    def test_from_env(self):
        with patch.dict(os.environ, {"FUN_VERBOSE": "2", "FUN_FORCE_PULL": "true"}):
            config = LocalConfig.from_env()
        self.assertTrue(config.verbose)
        self.assertTrue(config.force_pull)

        with patch.dict(os.environ, {"FUN_VERBOSE": "yes", "FUN_FORCE_PULL": "0"}):
            config = LocalConfig.from_env()
        self.assertFalse(config.verbose)
        self.assertFalse(config.force_pull)

    def test_serialize(self):
        config = LocalConfig()
        config.image_version = "1.7.0"
        config.probe_timeout = 2.5
        config.force_pull = True

        restored = LocalConfig.deserialize(config.serialize())

        self.assertEqual(restored.serialize(), config.serialize())
        self.assertEqual(restored.probe_timeout, 2.5)

    def test_deserialize_partial(self):
        config = LocalConfig.deserialize({"registry_mirror": "mirror.local", "unknown": 1})
        self.assertEqual(config.registry_mirror, "mirror.local")
        self.assertEqual(config.image_version, "1.6.0")
        self.assertFalse(hasattr(config, "unknown"))


class LogFileTest(unittest.TestCase):
    def test_from_env(self):
        with patch.dict(os.environ, {"FUN_LOG_FILE": "/var/log/fun.log"}):
            self.assertEqual(LocalConfig.from_env().log_file, "/var/log/fun.log")
        with patch.dict(os.environ, {}, clear=True):
            self.assertIsNone(LocalConfig.from_env().log_file)

    def test_no_file_by_default(self):
        handlers = LocalConfig().logging_handlers()
        self.assertIsNone(handlers.handler)

    def test_components_share_log_file(self):
        with tempfile.TemporaryDirectory() as tmp_dir:
            config = LocalConfig()
            config.log_file = os.path.join(tmp_dir, "fun.log")
            coordinator = ShutdownCoordinator(MagicMock())
            containers = ContainerManager(MagicMock(), coordinator, config)
            images = ImageManager(MagicMock(), coordinator, config)

            self.assertIs(containers.logging_handlers, images.logging_handlers)
            containers.logging.info("container started")
            images.logging.info("image pulled")
            handler = config.logging_handlers().handler
            handler.flush()
            with open(config.log_file) as f:
                content = f.read()

            containers.logging_handlers = None
            images.logging_handlers = None
            handler.close()

        self.assertIn("Local.Containers", content)
        self.assertIn("container started", content)
        self.assertIn("image pulled", content)


if __name__ == "__main__":
    unittest.main()
