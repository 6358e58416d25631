"""Code node.

Runs a user JavaScript snippet in an external runtime process. The engine
never evaluates user code itself: the snippet is wrapped in a harness and
handed to the code runner collaborator.
"""

import json
import re
from dataclasses import dataclass
from typing import Any

import structlog

from flowhook.core.router import NodeInputs
from flowhook.core.templates import resolve_in_script
from flowhook.models.node import NodeCategory, NodeDefinition
from flowhook.nodes.base import BaseNode, NodeContext, NodeExecutionError, NodeValidationError
from flowhook.services.code_runner import CodeRunnerError, ExternalCodeRunner

logger = structlog.get_logger()

# Placeholders are substituted in one pass, so braces in the harness stay literal
HARNESS_TEMPLATE = """(async function() {
    const inputData = __INPUT_DATA__;

    const $input = {
        first: function() {
            return inputData && inputData.length > 0 ? inputData[0] : null;
        },
        all: function() {
            return inputData || [];
        },
        item: function(index) {
            return inputData && inputData[index] !== undefined ? inputData[index] : null;
        }
    };
    Object.freeze(inputData);

    try {
        const userFunction = async function() {
__USER_CODE__
        };

        const result = await userFunction();
        console.log(JSON.stringify(result === undefined ? null : result));
    } catch (error) {
        console.error(JSON.stringify({
            error: error && error.message ? error.message : String(error),
            stack: error && error.stack ? error.stack : null
        }));
        process.exit(1);
    }
})();
"""


HARNESS_PLACEHOLDER = re.compile(r"__INPUT_DATA__|__USER_CODE__")


def build_harness(code: str, positional: list[Any]) -> str:
    """Wrap user code in the ``$input`` harness.

    Input data and code are never rescanned for placeholders.
    """
    values = {
        "__INPUT_DATA__": json.dumps(positional, ensure_ascii=False),
        "__USER_CODE__": code,
    }
    return HARNESS_PLACEHOLDER.sub(lambda m: values[m.group()], HARNESS_TEMPLATE)


def _script_error(text: str) -> str | None:
    """Error message from the harness' error JSON, if the text is one."""
    try:
        payload = json.loads(text)
    except ValueError:
        return None
    if isinstance(payload, dict) and payload.get("error"):
        return str(payload["error"])
    return None


@dataclass
class CodeRunConfig:
    code: str


class CodeRunNode(BaseNode[CodeRunConfig]):
    """Execute JavaScript out of process.

    The script sees ``$input.first()``, ``$input.all()`` and
    ``$input.item(i)`` over the positional inputs, and ``{{ ... }}``
    expressions in it are substituted as JSON literals beforehand. The
    returned value must be JSON-serialisable; plain-text output is wrapped
    as ``{"result": text}``.
    """

    failure_title = "Code execution failed"

    def get_definition(self) -> NodeDefinition:
        """Get node definition."""
        return NodeDefinition(
            name="codeRun",
            display_name="Code",
            description="Runs JavaScript in an external sandboxed runtime",
            category=NodeCategory.CODE,
            aliases=["code"],
            tags=["code", "javascript", "script"],
        )

    def validate_input(self, config: dict[str, Any]) -> CodeRunConfig:
        """Require non-empty code."""
        code = config.get("code")
        if not code or not isinstance(code, str) or not code.strip():
            raise NodeValidationError("No code provided", field="code")
        return CodeRunConfig(code=code)

    async def execute(
        self,
        config: CodeRunConfig,
        inputs: NodeInputs,
        context: NodeContext,
    ) -> Any:
        """Run the wrapped script and parse its output."""
        script = build_harness(resolve_in_script(config.code, inputs), inputs.positional)
        runner = context.code_runner or ExternalCodeRunner()

        try:
            result = await runner.run(script)
        except CodeRunnerError as e:
            raise NodeExecutionError(
                str(e), node_name="codeRun", error_code=e.error_code
            ) from e

        output = result.combined_output
        if not result.ok:
            message = _script_error(result.stderr.strip()) or output or "Script exited with an error"
            logger.warning(
                "code_run_failed",
                node_id=context.node_id,
                returncode=result.returncode,
            )
            raise NodeExecutionError(
                f"JavaScript error: {message}",
                node_name="codeRun",
                error_code="SCRIPT_ERROR",
            )

        text = result.stdout.strip()
        if not text:
            raise NodeExecutionError(
                "No output from JavaScript execution",
                node_name="codeRun",
                error_code="NO_OUTPUT",
            )

        try:
            return json.loads(text)
        except ValueError:
            if _script_error(output) is not None:
                raise NodeExecutionError(
                    f"JavaScript error: {output}",
                    node_name="codeRun",
                    error_code="SCRIPT_ERROR",
                ) from None
            return {"result": text}
