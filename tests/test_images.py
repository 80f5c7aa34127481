import io
import os
import tempfile
import unittest
from unittest.mock import MagicMock, Mock

from funlocal.config import LocalConfig
from funlocal.exceptions import ImagePullError, StreamBuildError
from funlocal.images import (
    BuildEventKind,
    BuildStream,
    ImageManager,
    build_output,
    parse_build_record,
)
from funlocal.shutdown import ShutdownCoordinator

IMAGE = "aliyunfc/runtime-python3.6:1.6.0"


class BuildRecords(unittest.TestCase):
    def test_record_kinds(self):
        event = parse_build_record('{"stream": "Step 1/2 : FROM aliyunfc/runtime-python3.6\\n"}')
        self.assertEqual(event.kind, BuildEventKind.STREAM)
        self.assertEqual(event.text, "Step 1/2 : FROM aliyunfc/runtime-python3.6\n")

        event = parse_build_record('{"aux": {"ID": "sha256:abc"}}')
        self.assertEqual(event.kind, BuildEventKind.IMAGE_ID)
        self.assertEqual(event.text, "sha256:abc\n")

        event = parse_build_record('{"error": "boom", "errorDetail": {"message": "boom"}}')
        self.assertEqual(event.kind, BuildEventKind.ERROR)
        self.assertEqual(event.text, "boom")

    def test_unknown_records_pass_through(self):
        event = parse_build_record("not json at all")
        self.assertEqual(event.kind, BuildEventKind.LOG)
        self.assertEqual(event.text, "not json at all\n")

        event = parse_build_record('{"status": "Downloading"}')
        self.assertEqual(event.kind, BuildEventKind.LOG)
        self.assertEqual(event.text, '{"status": "Downloading"}\n')

    def test_build_output_stops_at_error(self):
        chunks = [
            b'{"stream": "step 1\\n"}\n{"aux":',
            b' {"ID": "sha256:abc"}}\n',
            b'{"error": "boom"}\n{"stream": "never shown\\n"}\n',
        ]
        produced = []
        with self.assertRaises(StreamBuildError) as ctx:
            for text in build_output(chunks):
                produced.append(text)

        self.assertEqual(produced, ["step 1\n", "sha256:abc\n"])
        self.assertEqual(ctx.exception.message, "boom")

    def test_build_output_without_trailing_newline(self):
        chunks = [b'{"stream": "a"}\n\n', b'{"stream": "b"}']
        self.assertEqual(list(build_output(chunks)), ["a", "b"])


class Images(unittest.TestCase):
    def setUp(self):
        self.client = MagicMock()
        self.api = self.client.api
        self.coordinator = ShutdownCoordinator(self.client)
        self.config = LocalConfig()
        self.config.disable_rich_output = True
        self.probe = Mock()
        self.probe.is_restricted.return_value = False
        self.images = ImageManager(self.client, self.coordinator, self.config, self.probe)

    def test_image_exist(self):
        self.api.images.return_value = [{"Id": "sha256:abc"}]
        self.assertTrue(self.images.image_exist(IMAGE))
        self.api.images.assert_called_once_with(filters={"reference": IMAGE})

        self.api.images.return_value = []
        self.assertFalse(self.images.image_exist(IMAGE))

    def test_pull_skipped_when_present(self):
        self.api.images.return_value = [{"Id": "sha256:abc"}]
        self.assertEqual(self.images.pull_image_if_need(IMAGE), IMAGE)
        self.api.pull.assert_not_called()

    def test_force_pull(self):
        self.config.force_pull = True
        self.api.images.return_value = [{"Id": "sha256:abc"}]
        self.api.pull.return_value = iter([{"status": "Status: Image is up to date"}])

        self.assertEqual(self.images.pull_image_if_need(IMAGE), IMAGE)
        self.api.pull.assert_called_once_with(
            "aliyunfc/runtime-python3.6", tag="1.6.0", stream=True, decode=True
        )

    def test_pull_missing(self):
        self.api.images.return_value = []
        self.api.pull.return_value = iter(
            [
                {"status": "Pulling fs layer", "id": "a1b2c3"},
                {"status": "Pull complete", "id": "a1b2c3"},
            ]
        )
        self.assertEqual(self.images.pull_image_if_need(IMAGE), IMAGE)
        self.api.pull.assert_called_once()

    def test_pull_error(self):
        self.api.pull.return_value = iter(
            [{"status": "Pulling fs layer", "id": "a1b2c3"}, {"error": "unauthorized"}]
        )
        with self.assertRaises(ImagePullError) as ctx:
            self.images.pull_image(IMAGE)
        self.assertEqual(ctx.exception.image, IMAGE)
        self.assertEqual(ctx.exception.message, "unauthorized")

    def test_pull_with_progress(self):
        self.images.disable_rich_output = False
        self.api.pull.return_value = iter(
            [
                {"status": "Pulling from aliyunfc/runtime-python3.6", "id": "1.6.0"},
                {"status": "Pulling fs layer", "id": "a1b2c3"},
                {
                    "status": "Downloading",
                    "id": "a1b2c3",
                    "progressDetail": {"current": 512, "total": 1024},
                },
                {"status": "Download complete", "id": "a1b2c3"},
                {"status": "Pull complete", "id": "a1b2c3"},
                {"status": "Digest: sha256:abc"},
            ]
        )
        self.assertEqual(self.images.pull_image(IMAGE), IMAGE)

    def test_build(self):
        registered = []

        def stream():
            registered.append(len(self.coordinator))
            yield b'{"stream": "Step 1/1 : FROM scratch\\n"}\n'
            yield b'{"aux": {"ID": "sha256:abc"}}\n'

        self.api._stream_helper.return_value = stream()
        output = io.StringIO()

        with tempfile.TemporaryDirectory() as context_dir:
            os.makedirs(os.path.join(context_dir, "docker"))
            dockerfile = os.path.join(context_dir, "docker", "Dockerfile")
            with open(dockerfile, "w") as f:
                f.write("FROM scratch\n")
            with open(os.path.join(context_dir, ".dockerignore"), "w") as f:
                f.write("# comment\nnode_modules\n")

            tag = self.images.build_image(context_dir, dockerfile, "fun-cache-abc", output)

        self.assertEqual(tag, "fun-cache-abc")
        self.api._url.assert_called_once_with("/build")
        kwargs = self.api._post.call_args[1]
        self.assertEqual(
            kwargs["params"],
            {"t": "fun-cache-abc", "rm": True, "dockerfile": os.path.join("docker", "Dockerfile")},
        )
        self.assertEqual(kwargs["headers"]["Content-Type"], "application/tar")
        self.assertTrue(kwargs["stream"])
        self.api._stream_helper.assert_called_once_with(self.api._post.return_value, decode=False)
        self.assertEqual(output.getvalue(), "Step 1/1 : FROM scratch\nsha256:abc\n")
        self.assertEqual(registered, [1])
        self.assertEqual(len(self.coordinator), 0)

    def test_build_failure(self):
        self.api._stream_helper.return_value = iter(
            [b'{"error": "COPY failed: no such file"}\n']
        )

        with tempfile.TemporaryDirectory() as context_dir:
            dockerfile = os.path.join(context_dir, "Dockerfile")
            with open(dockerfile, "w") as f:
                f.write("FROM scratch\nCOPY missing /\n")

            with self.assertRaises(StreamBuildError):
                self.images.build_image(context_dir, dockerfile, "broken", io.StringIO())

        self.assertEqual(len(self.coordinator), 0)

    def test_build_cancelled_by_shutdown(self):
        def stream():
            yield b'{"stream": "Step 1/2 : FROM scratch\\n"}\n'
            self.coordinator.shutdown()
            yield b'{"stream": "Step 2/2 : COPY . /code\\n"}\n'
            yield b'{"aux": {"ID": "sha256:abc"}}\n'

        self.api._stream_helper.return_value = stream()
        response = self.api._post.return_value
        output = io.StringIO()

        with tempfile.TemporaryDirectory() as context_dir:
            dockerfile = os.path.join(context_dir, "Dockerfile")
            with open(dockerfile, "w") as f:
                f.write("FROM scratch\nCOPY . /code\n")

            with self.assertRaises(StreamBuildError) as ctx:
                self.images.build_image(context_dir, dockerfile, "fun-cache-abc", output)

        response.close.assert_called_once_with()
        self.assertIn("cancelled", ctx.exception.message)
        self.assertEqual(output.getvalue(), "Step 1/2 : FROM scratch\n")
        self.assertEqual(len(self.coordinator), 0)


class BuildStreamClose(unittest.TestCase):
    def test_close_while_iterating(self):
        api = MagicMock()
        response = Mock()
        stream = None
        seen = []

        def chunks():
            yield b"step 1\n"
            stream.close()
            yield b"step 2\n"

        api._stream_helper.return_value = chunks()
        stream = BuildStream(api, response)

        for chunk in stream:
            seen.append(chunk)

        self.assertEqual(seen, [b"step 1\n"])
        self.assertTrue(stream.closed)
        response.close.assert_called_once_with()

    def test_read_error_after_close(self):
        api = MagicMock()
        response = Mock()
        stream = None

        def chunks():
            yield b"step 1\n"
            stream.close()
            raise AttributeError("'NoneType' object has no attribute 'read'")

        api._stream_helper.return_value = chunks()
        stream = BuildStream(api, response)

        self.assertEqual(list(stream), [b"step 1\n"])

    def test_read_error_while_open(self):
        api = MagicMock()

        def chunks():
            yield b"step 1\n"
            raise ConnectionResetError()

        api._stream_helper.return_value = chunks()
        stream = BuildStream(api, Mock())

        with self.assertRaises(ConnectionResetError):
            list(stream)


if __name__ == "__main__":
    unittest.main()
