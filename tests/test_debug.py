import unittest
from unittest.mock import patch

from funlocal.debug import (
    generate_debug_env,
    generate_docker_debug_opts,
    generate_vscode_debug_config,
    pycharm_debug_tips,
)
from funlocal.exceptions import UnsupportedRuntimeError


class DebugEnv(unittest.TestCase):
    def test_runtimes(self):
        self.assertEqual(
            generate_debug_env("nodejs10", 9229), {"DEBUG_OPTIONS": "--inspect-brk=0.0.0.0:9229"}
        )
        self.assertEqual(generate_debug_env("nodejs6", 5858), {"DEBUG_OPTIONS": "--debug-brk=5858"})
        self.assertEqual(
            generate_debug_env("python3", 5678),
            {"DEBUG_OPTIONS": "-m ptvsd --host 0.0.0.0 --port 5678 --wait"},
        )
        self.assertIn("address=5005", generate_debug_env("java8", 5005)["DEBUG_OPTIONS"])

    def test_pycharm(self):
        self.assertEqual(generate_debug_env("python2.7", 5678, "pycharm"), {})
        self.assertEqual(generate_docker_debug_opts("python2.7", 5678, "pycharm"), {})

    def test_unsupported(self):
        with self.assertRaises(UnsupportedRuntimeError):
            generate_debug_env("custom", 9000)

    def test_docker_opts(self):
        self.assertEqual(
            generate_docker_debug_opts("nodejs8", 9229),
            {"ports": (9229,), "port_bindings": {9229: 9229}},
        )
        self.assertEqual(generate_docker_debug_opts("php7.2", 9000), {})


class DebugConfig(unittest.TestCase):
    def test_vscode(self):
        config = generate_vscode_debug_config("svc", "fn", "python3", "/home/dev/src", 5678)
        launch = config["configurations"][0]
        self.assertEqual(launch["name"], "fc/svc/fn")
        self.assertEqual(launch["type"], "python")
        self.assertEqual(launch["pathMappings"][0]["remoteRoot"], "/code")

        with self.assertRaises(UnsupportedRuntimeError):
            generate_vscode_debug_config("svc", "fn", "custom", "/home/dev/src", 5678)

    def test_pycharm_tips(self):
        with patch("funlocal.debug.host_address", return_value="10.0.0.5"):
            tips = pycharm_debug_tips("/nonexistent/src", 5678)
        self.assertIn("pydevd.settrace('10.0.0.5', port=5678", tips)
        self.assertIn("/nonexistent=/code", tips)


if __name__ == "__main__":
    unittest.main()
