import json
import os
import tempfile
import unittest

from funlocal.config import LocalConfig
from funlocal.function import NasConfig, NasMountPoint
from funlocal.mounts import (
    InstallTarget,
    bind_mount,
    convert_install_targets_to_mounts,
    find_paths_out_of_shared_paths,
    resolve_nas_config_to_mounts,
    resolve_tmp_dir_to_mount,
    shared_paths_of_docker_for_mac,
    transform_mounts_for_toolbox,
    transform_path_for_virtualbox,
)


class NasMounts(unittest.TestCase):
    def setUp(self):
        self.base_dir = tempfile.TemporaryDirectory()
        self.addCleanup(self.base_dir.cleanup)

    def test_mount_points(self):
        nas = NasConfig(
            user_id=10003,
            group_id=10003,
            mount_points=[
                NasMountPoint("012194b28f-ujc20.cn-hangzhou.nas.aliyuncs.com:/", "/mnt/nas"),
                NasMountPoint("012194b28f-ujc20.cn-hangzhou.nas.aliyuncs.com:/data", "/mnt/data"),
            ],
        )
        mounts = resolve_nas_config_to_mounts(self.base_dir.name, "demo", nas)

        nas_root = os.path.join(
            self.base_dir.name, ".fun", "nas", "012194b28f-ujc20.cn-hangzhou.nas.aliyuncs.com"
        )
        self.assertEqual([m["Target"] for m in mounts], ["/mnt/nas", "/mnt/data"])
        self.assertEqual(mounts[0]["Source"].rstrip(os.sep), nas_root)
        self.assertEqual(mounts[1]["Source"], os.path.join(nas_root, "data"))
        self.assertFalse(mounts[0]["ReadOnly"])
        self.assertTrue(os.path.isdir(os.path.join(nas_root, "data")))

    def test_auto(self):
        mounts = resolve_nas_config_to_mounts(self.base_dir.name, "demo", NasConfig(auto=True))
        self.assertEqual(len(mounts), 1)
        self.assertEqual(mounts[0]["Target"], "/mnt/auto")
        self.assertEqual(
            mounts[0]["Source"],
            os.path.join(self.base_dir.name, ".fun", "nas", "auto-default", "demo"),
        )

    def test_no_nas(self):
        self.assertEqual(resolve_nas_config_to_mounts(self.base_dir.name, "demo", None), [])


class OtherMounts(unittest.TestCase):
    def test_tmp_dir(self):
        self.assertIsNone(resolve_tmp_dir_to_mount(None))
        mount = resolve_tmp_dir_to_mount("/var/tmp/fun")
        self.assertEqual(mount["Target"], "/tmp")
        self.assertEqual(mount["Source"], "/var/tmp/fun")

    def test_install_targets(self):
        with tempfile.TemporaryDirectory() as base_dir:
            host_path = os.path.join(base_dir, ".fun", "root")
            target = InstallTarget(host_path, "/code/.fun/root")
            mounts = convert_install_targets_to_mounts([target])
            self.assertTrue(os.path.isdir(host_path))
        self.assertEqual(mounts[0]["Target"], "/code/.fun/root")
        self.assertEqual(convert_install_targets_to_mounts(None), [])


class SharedPaths(unittest.TestCase):
    def test_defaults(self):
        config = LocalConfig()
        config.docker_settings_path = "/nonexistent/settings.json"
        self.assertEqual(
            shared_paths_of_docker_for_mac(config), ["/Users", "/Volumes", "/private", "/tmp"]
        )

    def test_settings_file(self):
        with tempfile.NamedTemporaryFile("w", suffix=".json", delete=False) as f:
            json.dump({"defaultFileSharingPaths": ["/Users", "/opt"]}, f)
        self.addCleanup(os.remove, f.name)
        config = LocalConfig()
        config.docker_settings_path = f.name

        mounts = [
            bind_mount("/Users/dev/code", "/code"),
            bind_mount("/opt/nas", "/mnt/nas"),
            bind_mount("/private/tmp", "/tmp"),
        ]
        self.assertEqual(find_paths_out_of_shared_paths(mounts, config), ["/private/tmp"])


class Toolbox(unittest.TestCase):
    def test_path(self):
        self.assertEqual(
            transform_path_for_virtualbox("C:\\Users\\image_crawler\\code"),
            "/c/Users/image_crawler/code",
        )

    def test_mounts(self):
        mounts = transform_mounts_for_toolbox([bind_mount("D:\\work\\fn", "/code", True)])
        self.assertEqual(mounts[0]["Source"], "/d/work/fn")
        self.assertEqual(mounts[0]["Target"], "/code")
        self.assertTrue(mounts[0]["ReadOnly"])


if __name__ == "__main__":
    unittest.main()
