"""Conditional (If) node.

Evaluates typed condition clauses and reports a boolean the branch router
uses to choose between the node's ``true`` and ``false`` edges.
"""

from dataclasses import dataclass, field
from typing import Any

import structlog

from flowhook.core.conditions import (
    LITERAL_OPERATORS,
    UNARY_OPERATORS,
    CombineOperation,
    DataType,
    coerce_operands,
    combine,
    evaluate_condition,
)
from flowhook.core.router import NodeInputs
from flowhook.core.templates import resolve_value
from flowhook.models.node import NodeCategory, NodeDefinition
from flowhook.nodes.base import BaseNode, NodeContext, NodeValidationError

logger = structlog.get_logger()


@dataclass
class Condition:
    """One condition clause."""

    operator: str = "equal"
    value1: Any = ""
    value2: Any = ""
    data_type: str = DataType.STRING.value

    @property
    def needs_second_operand(self) -> bool:
        return self.operator not in UNARY_OPERATORS | LITERAL_OPERATORS


@dataclass
class ConditionalConfig:
    """Configuration for the conditional node."""

    conditions: list[Condition] = field(default_factory=list)
    combine_operation: str = CombineOperation.AND.value


class ConditionalNode(BaseNode[ConditionalConfig]):
    """Branch on typed conditions.

    Output:
        {"result": bool, "conditionResults": [bool, ...], "output": <first input>}
    """

    failure_title = "If node failed"

    def get_definition(self) -> NodeDefinition:
        """Get node definition."""
        return NodeDefinition(
            name="conditional",
            display_name="If",
            description="Routes data to the true or false branch based on conditions",
            category=NodeCategory.LOGIC,
            aliases=["if"],
            tags=["logic", "branch", "condition"],
        )

    def validate_input(self, config: dict[str, Any]) -> ConditionalConfig:
        """Validate the clause list."""
        raw_conditions = config.get("conditions") or []
        if not isinstance(raw_conditions, list):
            raise NodeValidationError("Conditions must be a list", field="conditions")

        conditions = []
        for index, raw in enumerate(raw_conditions):
            if not isinstance(raw, dict):
                raise NodeValidationError(
                    f"Condition {index} must be an object", field="conditions"
                )
            conditions.append(
                Condition(
                    operator=str(raw.get("operator") or "equal"),
                    value1=raw.get("value1", ""),
                    value2=raw.get("value2", ""),
                    data_type=str(raw.get("dataType") or DataType.STRING.value),
                )
            )

        combine_operation = str(config.get("combineOperation") or CombineOperation.AND.value)
        return ConditionalConfig(conditions=conditions, combine_operation=combine_operation)

    async def execute(
        self,
        config: ConditionalConfig,
        inputs: NodeInputs,
        context: NodeContext,
    ) -> dict[str, Any]:
        """Evaluate every clause and combine the results."""
        forwarded = inputs.first({})
        if not config.conditions:
            return {
                "result": False,
                "output": forwarded,
                "error": "No conditions configured",
            }

        results = [self.evaluate(condition, inputs) for condition in config.conditions]
        result = combine(results, config.combine_operation)

        logger.debug(
            "conditional_evaluated",
            node_id=context.node_id,
            result=result,
            condition_results=results,
            combine_operation=config.combine_operation,
        )
        return {"result": result, "conditionResults": results, "output": forwarded}

    @staticmethod
    def evaluate(condition: Condition, inputs: NodeInputs) -> bool:
        """Resolve, coerce and evaluate one clause."""
        value1 = resolve_value(condition.value1, inputs)
        value2 = (
            resolve_value(condition.value2, inputs)
            if condition.needs_second_operand
            else None
        )
        value1, value2 = coerce_operands(value1, value2, condition.data_type)
        return evaluate_condition(value1, condition.operator, value2)

    def error_output(self, error: Exception, inputs: NodeInputs) -> dict[str, Any]:
        """Failures still report a false result so the false branch is taken."""
        output = super().error_output(error, inputs)
        return {"result": False, "output": inputs.first({}), **output}
