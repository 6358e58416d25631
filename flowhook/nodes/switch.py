"""Switch node.

Evaluates ordered rules and routes data to the edge of the first
matching rule (``output{n}``), or to ``fallback`` when none matches.
"""

from dataclasses import dataclass, field
from typing import Any

import structlog

from flowhook.core.conditions import UNARY_OPERATORS, DataType, coerce_operands, evaluate_condition
from flowhook.core.router import NodeInputs
from flowhook.core.templates import resolve
from flowhook.models.node import NodeCategory, NodeDefinition
from flowhook.nodes.base import BaseNode, NodeContext, NodeValidationError

logger = structlog.get_logger()

FALLBACK_OUTPUT = -1
DEFAULT_FALLBACK_NAME = "No Match"


@dataclass
class SwitchRule:
    """One switch rule; operands are compared as strings."""

    value: Any = ""
    operator: str = "equal"
    value2: Any = ""
    output_name: str | None = None


@dataclass
class SwitchConfig:
    """Configuration for the switch node."""

    rules: list[SwitchRule] = field(default_factory=list)
    fallback_output: str = DEFAULT_FALLBACK_NAME


class SwitchNode(BaseNode[SwitchConfig]):
    """Multi-way branch on ordered rules.

    Output:
        {"matchedOutput": int, "outputName": str, "output": <first input>}
    """

    failure_title = "Switch evaluation failed"

    def get_definition(self) -> NodeDefinition:
        """Get node definition."""
        return NodeDefinition(
            name="switch",
            display_name="Switch",
            description="Routes data to the output of the first matching rule",
            category=NodeCategory.LOGIC,
            tags=["logic", "branch", "switch"],
        )

    def validate_input(self, config: dict[str, Any]) -> SwitchConfig:
        """Validate the rule list."""
        raw_rules = config.get("rules") or []
        if not isinstance(raw_rules, list):
            raise NodeValidationError("Rules must be a list", field="rules")

        rules = []
        for index, raw in enumerate(raw_rules):
            if not isinstance(raw, dict):
                raise NodeValidationError(f"Rule {index} must be an object", field="rules")
            rules.append(
                SwitchRule(
                    value=raw.get("value", ""),
                    operator=str(raw.get("operator") or "equal"),
                    value2=raw.get("value2", ""),
                    output_name=raw.get("outputName"),
                )
            )
        return SwitchConfig(
            rules=rules,
            fallback_output=str(config.get("fallbackOutput") or DEFAULT_FALLBACK_NAME),
        )

    async def execute(
        self,
        config: SwitchConfig,
        inputs: NodeInputs,
        context: NodeContext,
    ) -> dict[str, Any]:
        """Return the index of the first matching rule."""
        forwarded = inputs.first({})
        for index, rule in enumerate(config.rules):
            value = resolve(rule.value, inputs)
            value2 = (
                resolve(rule.value2, inputs)
                if rule.operator not in UNARY_OPERATORS
                else None
            )
            value, value2 = coerce_operands(value, value2, DataType.STRING)
            if evaluate_condition(value, rule.operator, value2):
                logger.debug("switch_rule_matched", node_id=context.node_id, rule_index=index)
                return {
                    "matchedOutput": index,
                    "outputName": rule.output_name or f"Output {index}",
                    "output": forwarded,
                }

        logger.debug("switch_fallback", node_id=context.node_id, rules=len(config.rules))
        return {
            "matchedOutput": FALLBACK_OUTPUT,
            "outputName": config.fallback_output,
            "output": forwarded,
        }
