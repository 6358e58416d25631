"""Template resolver.

Resolves ``{{ path }}`` expressions inside node configuration against the
outputs visible to a node. Two syntaxes are understood:

- ``{{ $('NodeName').item.json.path }}`` (legacy, collapses to ``NodeName.path``)
- ``{{ path }}``

A path is looked up by custom name first, then by positional reference
(``input-N``, ``input-N[i]``), then by scanning every positional input.
Unresolved expressions are left in place verbatim; resolution never raises.

Three destinations need different escaping:

- ``resolve``: plain text
- ``resolve_in_json``: string leaves of a JSON document, re-serialised
- ``resolve_in_script``: each value substituted as a JSON literal
"""

import json
import re
from datetime import datetime
from typing import Any
from zoneinfo import ZoneInfo

import structlog

from flowhook.config import get_settings
from flowhook.core.router import NodeInputs

logger = structlog.get_logger()

# Legacy alternative first so it wins when both could match at a position
TEMPLATE_PATTERN = re.compile(
    r"\{\{\s*\$\('(?P<node>[^']+)'\)\.item\.json\.(?P<legacy>[^}]+?)\s*\}\}"
    r"|\{\{(?P<path>[^}]+)\}\}"
)

_INPUT_REF = re.compile(r"^input-(\d+)(?:\[(\d+)\])?$")
_INDEX_TOKEN = re.compile(r"^\[(\d+)\]$")

NOW_VARIABLE = "now"
NOW_FORMAT = "%d/%m/%Y %H:%M:%S"


def _as_inputs(inputs: NodeInputs | list[Any] | None) -> NodeInputs:
    if inputs is None:
        return NodeInputs()
    if isinstance(inputs, NodeInputs):
        return inputs
    return NodeInputs(positional=list(inputs))


def stringify(value: Any) -> str:
    """Render a resolved value as text.

    Strings are kept verbatim, booleans become ``true``/``false``,
    integral floats drop their ``.0`` and containers become compact JSON.
    """
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, ensure_ascii=False, separators=(",", ":"))
    return str(value)


def _tokenize(path: str) -> list[str] | None:
    """Split ``a.b[0][1].c`` into ``['a', 'b', '[0]', '[1]', 'c']``.

    Returns None when a bracket is never closed.
    """
    tokens: list[str] = []
    current = ""
    i = 0
    while i < len(path):
        char = path[i]
        if char == ".":
            if current:
                tokens.append(current)
                current = ""
        elif char == "[":
            if current:
                tokens.append(current)
                current = ""
            end = path.find("]", i)
            if end == -1:
                return None
            tokens.append(path[i : end + 1])
            i = end + 1
            continue
        else:
            current += char
        i += 1
    if current:
        tokens.append(current)
    return tokens


def _unwrap_single(value: Any) -> Any:
    if isinstance(value, list) and len(value) == 1:
        return value[0]
    return value


def traverse_path(path: str, value: Any) -> Any:
    """Navigate a dotted / bracketed path inside a value.

    A single-element list is unwrapped to its element whenever the next
    hop is a key, and after a final key hop.

    Args:
        path: Remaining path such as ``choices[0].message.content``
        value: Value to start from

    Returns:
        The value found, or None when any hop is missing
    """
    if not path:
        return value
    tokens = _tokenize(path)
    if tokens is None:
        return None

    current = value
    for token in tokens:
        index_match = _INDEX_TOKEN.match(token)
        if index_match:
            index = int(index_match.group(1))
            if not isinstance(current, list) or index >= len(current):
                return None
            current = current[index]
            continue

        current = _unwrap_single(current)
        if isinstance(current, dict):
            if token not in current:
                return None
            current = current[token]
        elif isinstance(current, list) and token.isdigit():
            index = int(token)
            if index >= len(current):
                return None
            current = current[index]
        else:
            return None
        if current is None:
            return None

    if tokens and not _INDEX_TOKEN.match(tokens[-1]):
        current = _unwrap_single(current)
    return current


def _now_text() -> str:
    zone = ZoneInfo(get_settings().template_timezone)
    return datetime.now(zone).strftime(NOW_FORMAT)


def _is_numeric(text: str) -> bool:
    try:
        float(text)
    except ValueError:
        return False
    return True


def get_value_from_path(path: str, inputs: NodeInputs | list[Any] | None) -> Any:
    """Look a path up against a node's inputs.

    Args:
        path: Path expression (already stripped of braces)
        inputs: Inputs visible to the node

    Returns:
        The resolved value, or None when nothing matches
    """
    path = path.strip()
    if path == NOW_VARIABLE:
        return _now_text()

    inputs = _as_inputs(inputs)
    head, _, rest = path.partition(".")

    # By custom name
    if head in inputs.named and not _is_numeric(head):
        return traverse_path(rest, inputs.named[head])

    # By positional reference
    ref = _INPUT_REF.match(head)
    if ref:
        index = int(ref.group(1))
        if index >= len(inputs.positional):
            return None
        value = inputs.positional[index]
        if ref.group(2) is not None:
            item = int(ref.group(2))
            if not isinstance(value, list) or item >= len(value):
                return None
            value = value[item]
        if value is None:
            return None
        return traverse_path(rest, value)

    # Fallback scan over positional inputs
    for candidate in inputs.positional:
        if not isinstance(candidate, (dict, list)):
            continue
        value = traverse_path(path, candidate)
        if value is not None:
            return value
    return None


def _match_path(match: re.Match[str]) -> str:
    if match.group("node") is not None:
        return f"{match.group('node').strip()}.{match.group('legacy').strip()}"
    return match.group("path").strip()


def _substitute(template: str, inputs: NodeInputs, render) -> str:
    def replace(match: re.Match[str]) -> str:
        path = _match_path(match)
        value = get_value_from_path(path, inputs)
        if value is None:
            logger.debug("template_variable_unresolved", path=path)
            return match.group(0)
        return render(value)

    return TEMPLATE_PATTERN.sub(replace, template)


def resolve(template: Any, inputs: NodeInputs | list[Any] | None) -> Any:
    """Resolve every expression in a plain-text template.

    Non-string templates are returned unchanged.

    Args:
        template: Template text
        inputs: Inputs visible to the node

    Returns:
        Text with resolved expressions substituted
    """
    if not isinstance(template, str) or "{{" not in template:
        return template
    return _substitute(template, _as_inputs(inputs), stringify)


def resolve_value(template: Any, inputs: NodeInputs | list[Any] | None) -> Any:
    """Resolve a template, keeping the raw value for a lone expression.

    ``"{{ items }}"`` yields the list itself rather than its JSON text, so
    callers can compare lengths or emptiness. Anything else is resolved
    as plain text.
    """
    if not isinstance(template, str):
        return template
    match = TEMPLATE_PATTERN.fullmatch(template.strip())
    if match:
        value = get_value_from_path(_match_path(match), _as_inputs(inputs))
        return template if value is None else value
    return resolve(template, inputs)


def resolve_in_structure(data: Any, inputs: NodeInputs | list[Any] | None) -> Any:
    """Resolve string leaves of a nested dict/list structure.

    Keys are left untouched.
    """
    inputs = _as_inputs(inputs)
    if isinstance(data, dict):
        return {key: resolve_in_structure(value, inputs) for key, value in data.items()}
    if isinstance(data, list):
        return [resolve_in_structure(item, inputs) for item in data]
    return resolve(data, inputs)


def resolve_in_json(template: Any, inputs: NodeInputs | list[Any] | None) -> Any:
    """Resolve a JSON document template, keeping the result valid JSON.

    The template is parsed, expressions inside string leaves are resolved,
    and the document is serialised again so quotes and newlines in
    resolved values are escaped. Templates that are not JSON fall back to
    plain resolution.

    Args:
        template: JSON text containing expressions
        inputs: Inputs visible to the node

    Returns:
        Compact JSON text (non-ASCII kept), or plain-resolved text
    """
    if not isinstance(template, str):
        return template
    try:
        document = json.loads(template)
    except ValueError:
        logger.debug("json_template_not_json_using_plain_resolution")
        return resolve(template, inputs)
    resolved = resolve_in_structure(document, inputs)
    return json.dumps(resolved, ensure_ascii=False, separators=(",", ":"))


def resolve_in_script(template: Any, inputs: NodeInputs | list[Any] | None) -> Any:
    """Resolve expressions in script source as JSON literals.

    Strings become quoted, escaped literals; numbers and booleans are
    inlined; objects and arrays are serialised. Unresolved expressions
    stay in place so the script fails visibly.
    """
    if not isinstance(template, str) or "{{" not in template:
        return template
    return _substitute(
        template,
        _as_inputs(inputs),
        lambda value: json.dumps(value, ensure_ascii=False),
    )
