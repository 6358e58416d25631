"""Tests for the Code node."""

import json
import shutil

import pytest

from flowhook.core.router import NodeInputs
from flowhook.nodes.code_run import CodeRunNode, build_harness
from flowhook.services.code_runner import CodeRunnerError, ExternalCodeRunner


class FailingRunner:
    async def run(self, script: str):
        raise CodeRunnerError("Script timed out after 30s", "RUNTIME_TIMEOUT")


class TestHarness:
    """Tests for script wrapping."""

    def test_inputs_and_code_are_embedded(self):
        """The harness carries the inputs as a JSON literal."""
        script = build_harness("return $input.first();", [{"a": "b"}])

        assert 'const inputData = [{"a": "b"}];' in script
        assert "return $input.first();" in script
        assert "__USER_CODE__" not in script

    def test_placeholder_text_in_inputs_stays_data(self):
        """Placeholder names inside inputs or code are not substituted."""
        script = build_harness(
            "return '__INPUT_DATA__';", [{"note": "__USER_CODE__"}]
        )

        assert 'const inputData = [{"note": "__USER_CODE__"}];' in script
        assert "return '__INPUT_DATA__';" in script
        assert script.count("return '__INPUT_DATA__';") == 1


class TestCodeRunNode:
    """Tests for running scripts through the runner collaborator."""

    @pytest.mark.asyncio
    async def test_json_output_is_parsed(self, make_context, fake_runner):
        """Stdout JSON becomes the node output."""
        inputs = NodeInputs(positional=[{"name": 'O"Brien'}])
        config = {"code": "const who = {{name}};\nreturn {ok: true, who};"}

        output = await CodeRunNode().run(config, inputs, make_context(code_runner=fake_runner))

        assert output == {"ok": True}
        script = fake_runner.scripts[0]
        # Expressions become JSON literals inside the script
        assert 'const who = "O\\"Brien";' in script

    @pytest.mark.asyncio
    async def test_plain_text_is_wrapped(self, make_context, make_runner):
        """Non-JSON stdout is returned under result."""
        runner = make_runner(stdout="hello\n")

        output = await CodeRunNode().run(
            {"code": "return 1;"}, NodeInputs(), make_context(code_runner=runner)
        )

        assert output == {"result": "hello"}

    @pytest.mark.asyncio
    async def test_script_error(self, make_context, make_runner):
        """A non-zero exit reports the thrown message."""
        runner = make_runner(
            stderr=json.dumps({"error": "boom", "stack": None}), returncode=1
        )

        output = await CodeRunNode().run(
            {"code": "throw new Error('boom');"}, NodeInputs(), make_context(code_runner=runner)
        )

        assert output == {"error": "Code execution failed", "message": "JavaScript error: boom"}

    @pytest.mark.asyncio
    async def test_no_output(self, make_context, make_runner):
        """A script that prints nothing fails."""
        runner = make_runner(stdout="  \n")

        output = await CodeRunNode().run(
            {"code": "return;"}, NodeInputs(), make_context(code_runner=runner)
        )

        assert output["message"] == "No output from JavaScript execution"

    @pytest.mark.asyncio
    async def test_missing_code(self, make_context, fake_runner):
        """Empty code is rejected before the runner is called."""
        output = await CodeRunNode().run(
            {"code": "   "}, NodeInputs(), make_context(code_runner=fake_runner)
        )

        assert output == {"error": "Code execution failed", "message": "No code provided"}
        assert fake_runner.scripts == []

    @pytest.mark.asyncio
    async def test_runner_failure(self, make_context):
        """Runtime failures become error outputs."""
        output = await CodeRunNode().run(
            {"code": "while (true) {}"}, NodeInputs(), make_context(code_runner=FailingRunner())
        )

        assert output["message"] == "Script timed out after 30s"


@pytest.mark.skipif(shutil.which("node") is None, reason="node runtime not installed")
class TestWithNodeRuntime:
    """End-to-end runs against a real node runtime."""

    @pytest.mark.asyncio
    async def test_input_helpers(self, make_context):
        runner = ExternalCodeRunner(["node"], timeout=30)
        inputs = NodeInputs(positional=[{"n": 2}, {"n": 3}])
        config = {"code": "return {sum: $input.all().reduce((a, i) => a + i.n, 0)};"}

        output = await CodeRunNode().run(config, inputs, make_context(code_runner=runner))

        assert output == {"sum": 5}

    @pytest.mark.asyncio
    async def test_thrown_error(self, make_context):
        runner = ExternalCodeRunner(["node"], timeout=30)

        output = await CodeRunNode().run(
            {"code": "throw new Error('nope');"}, NodeInputs(), make_context(code_runner=runner)
        )

        assert output["message"] == "JavaScript error: nope"
