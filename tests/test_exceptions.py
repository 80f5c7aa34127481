import unittest
from unittest.mock import Mock

import docker

from funlocal.exceptions import (
    CommandExecutionError,
    DriveNotSharedError,
    MountConfigError,
    PathNotSharedError,
    classify_create_error,
)


class ClassifyCreateError(unittest.TestCase):
    def test_mount_config_on_toolbox(self):
        error = docker.errors.APIError("400", explanation="invalid mount config for type \"bind\"")
        classified = classify_create_error(error, lambda: True, is_windows=True)
        self.assertIsInstance(classified, MountConfigError)
        self.assertIn("C:\\Users", str(classified))

    def test_toolbox_queried_only_on_match(self):
        is_toolbox = Mock(return_value=True)
        error = docker.errors.APIError("500", explanation="conflict: name already in use")
        self.assertIsNone(classify_create_error(error, is_toolbox, is_windows=True))
        is_toolbox.assert_not_called()

    def test_drive_not_shared(self):
        error = docker.errors.APIError("500", explanation="C: drive is not shared. ")
        classified = classify_create_error(error, lambda: False, is_windows=True)
        self.assertIsInstance(classified, DriveNotSharedError)
        self.assertIn("shared-drives", str(classified))
        self.assertIsNone(classify_create_error(error, lambda: False, is_windows=False))


class Messages(unittest.TestCase):
    def test_command(self):
        self.assertEqual(
            str(CommandExecutionError(["npm", "install"], 1)), "npm install exited with code 1"
        )
        self.assertEqual(str(CommandExecutionError("make", 2)), "make exited with code 2")

    def test_paths(self):
        error = PathNotSharedError(["/opt/a", "/srv/b"])
        self.assertIn("'/opt/a,/srv/b'", str(error))


if __name__ == "__main__":
    unittest.main()
