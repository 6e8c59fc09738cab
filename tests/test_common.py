from __future__ import annotations

import io
import os
import tempfile
import unittest
from contextlib import redirect_stdout
from pathlib import Path
from unittest import mock

from ami_ci.common import (
    AmiCiError,
    append_github_path,
    aws_ec2_command,
    require_env,
    run_cmd,
    stream_cmd,
    write_github_env,
    write_github_outputs,
)


class EnvHelperTests(unittest.TestCase):
    def test_require_env_rejects_empty_value(self) -> None:
        with mock.patch.dict(os.environ, {"DEMO_VALUE": ""}):
            with self.assertRaises(AmiCiError):
                require_env("DEMO_VALUE")

    def test_require_env_returns_value(self) -> None:
        with mock.patch.dict(os.environ, {"DEMO_VALUE": "x"}):
            self.assertEqual(require_env("DEMO_VALUE"), "x")


class RunCmdTests(unittest.TestCase):
    def test_failure_becomes_tool_error_with_stderr(self) -> None:
        with self.assertRaises(AmiCiError) as ctx:
            run_cmd(["sh", "-c", "echo nope >&2; exit 3"])
        self.assertIn("nope", str(ctx.exception))

    def test_returns_stdout(self) -> None:
        self.assertEqual(run_cmd(["sh", "-c", "echo hi"]), "hi\n")

    def test_stream_cmd_echoes_lines_and_returns_exit_code(self) -> None:
        echoed = io.StringIO()
        with redirect_stdout(echoed):
            result = stream_cmd(["sh", "-c", "echo a; echo b; exit 2"])
        self.assertEqual(result, (2, ["a", "b"]))
        self.assertEqual(echoed.getvalue(), "a\nb\n")


class AwsCommandTests(unittest.TestCase):
    def test_adds_region_only_when_set(self) -> None:
        self.assertEqual(
            aws_ec2_command("deregister-image", "--image-id", "ami-1"),
            ["aws", "ec2", "deregister-image", "--image-id", "ami-1", "--output", "json"],
        )
        self.assertIn("--region", aws_ec2_command("describe-images", region="us-east-1"))


class GithubFileTests(unittest.TestCase):
    def test_outputs_and_env_are_appended(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            output_file = Path(temp_dir) / "output"
            env_file = Path(temp_dir) / "env"
            output_file.write_text("existing=1\n", encoding="utf-8")
            with mock.patch.dict(
                os.environ,
                {"GITHUB_OUTPUT": str(output_file), "GITHUB_ENV": str(env_file)},
            ):
                write_github_outputs({"ami_id": "ami-0abc"})
                write_github_env({"AMI_ID": "ami-0abc"})

            self.assertEqual(output_file.read_text(encoding="utf-8"), "existing=1\nami_id=ami-0abc\n")
            self.assertEqual(env_file.read_text(encoding="utf-8"), "AMI_ID=ami-0abc\n")

    def test_append_github_path_writes_directory(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            path_file = Path(temp_dir) / "path"
            with mock.patch.dict(os.environ, {"GITHUB_PATH": str(path_file)}):
                self.assertTrue(append_github_path("/opt/bin"))
            self.assertEqual(path_file.read_text(encoding="utf-8"), "/opt/bin\n")

    def test_append_github_path_is_noop_outside_actions(self) -> None:
        with mock.patch.dict(os.environ, {}, clear=True):
            self.assertFalse(append_github_path("/opt/bin"))


if __name__ == "__main__":
    unittest.main()
