"""Placeholders that wire one step's arguments to another step's result.

A placeholder reads ``{{stepId.result.records[0].Email}}``. Arguments are
compiled once into an ``ArgumentTemplate`` when a plan is accepted; each
dispatch attempt resolves the template against the results completed so far.
"""

import json
import re
from dataclasses import dataclass
from typing import Any, Mapping, Union

from actionflow.exceptions import UnresolvedDependency
from actionflow.execution import ToolResult

PLACEHOLDER = re.compile(r"\{\{\s*([^.{}\s\[\]]+)((?:[.\[][^{}\s]*)?)\s*\}\}")
_PATH_TOKEN = re.compile(r"\[(\d+)\]|([^.\[\]]+)")


def parse_path(text: str) -> tuple:
    """``"records[0].Email"`` -> ``("records", 0, "Email")``."""
    return tuple(int(index) if index else key for index, key in _PATH_TOKEN.findall(text))


def lookup_path(value: Any, path: tuple) -> Any:
    """Walk dict keys and list indices. Raises LookupError when a hop is missing."""
    for part in path:
        if isinstance(value, Mapping):
            if part not in value and str(part) not in value:
                raise LookupError(part)
            value = value[part] if part in value else value[str(part)]
        elif isinstance(value, (list, tuple)):
            try:
                value = value[int(part)]
            except (ValueError, IndexError) as e:
                raise LookupError(part) from e
        else:
            raise LookupError(part)
    return value


@dataclass(frozen=True)
class StepReference:
    step_id: str
    path: tuple
    path_text: str = ""

    def render(self) -> str:
        if self.path_text:
            return f"{{{{{self.step_id}.result.{self.path_text}}}}}"
        return f"{{{{{self.step_id}.result}}}}"

    def resolve(self, results: Mapping[str, ToolResult]) -> Any:
        result = results.get(self.step_id)
        if result is None or not result.ok:
            raise LookupError(self.step_id)
        return lookup_path(result.data, self.path)


@dataclass(frozen=True)
class Interpolation:
    """A string with references embedded in literal text."""

    parts: tuple

    @property
    def references(self) -> list[StepReference]:
        return [p for p in self.parts if isinstance(p, StepReference)]


def _reference(match: re.Match) -> StepReference:
    path_text = match.group(2).lstrip(".")
    if path_text == "result" or path_text.startswith(("result.", "result[")):
        path_text = path_text[len("result"):].lstrip(".")
    return StepReference(step_id=match.group(1), path=parse_path(path_text), path_text=path_text)


def _compile(value: Any) -> Any:
    if isinstance(value, str):
        matches = list(PLACEHOLDER.finditer(value))
        if not matches:
            return value
        if len(matches) == 1 and matches[0].group(0) == value.strip():
            return _reference(matches[0])
        parts, cursor = [], 0
        for match in matches:
            if match.start() > cursor:
                parts.append(value[cursor:match.start()])
            parts.append(_reference(match))
            cursor = match.end()
        if cursor < len(value):
            parts.append(value[cursor:])
        return Interpolation(tuple(parts))
    if isinstance(value, dict):
        return {k: _compile(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_compile(v) for v in value]
    return value


def _walk(value: Any, leaf):
    if isinstance(value, (StepReference, Interpolation)):
        return leaf(value)
    if isinstance(value, dict):
        return {k: _walk(v, leaf) for k, v in value.items()}
    if isinstance(value, list):
        return [_walk(v, leaf) for v in value]
    return value


@dataclass(frozen=True)
class ArgumentTemplate:
    tree: dict

    @property
    def references(self) -> list[StepReference]:
        found: list[StepReference] = []

        def collect(node):
            if isinstance(node, StepReference):
                found.append(node)
            else:
                found.extend(node.references)
            return node

        _walk(self.tree, collect)
        return found

    @property
    def depends_on(self) -> list[str]:
        return list(dict.fromkeys(ref.step_id for ref in self.references))

    def remap(self, mapping: Mapping[str, str]) -> "ArgumentTemplate":
        """Point references at new step ids."""

        def move(ref: StepReference) -> StepReference:
            return StepReference(mapping.get(ref.step_id, ref.step_id), ref.path, ref.path_text)

        def leaf(node):
            if isinstance(node, StepReference):
                return move(node)
            return Interpolation(
                tuple(move(p) if isinstance(p, StepReference) else p for p in node.parts)
            )

        return ArgumentTemplate(_walk(self.tree, leaf))

    def to_raw(self) -> dict:
        """Arguments with placeholders rendered back to text."""

        def leaf(node):
            if isinstance(node, StepReference):
                return node.render()
            return "".join(p.render() if isinstance(p, StepReference) else p for p in node.parts)

        return _walk(self.tree, leaf)


def compile_arguments(arguments: dict) -> ArgumentTemplate:
    return ArgumentTemplate(_compile(dict(arguments or {})))


def _as_text(value: Any) -> str:
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return str(value)


def resolve_arguments(
    template: ArgumentTemplate,
    results: Mapping[str, ToolResult],
) -> dict:
    """Substitute every reference using successful results.

    A placeholder that is the whole value keeps the referenced value's type;
    one embedded in text is rendered as a string.

    Raises:
        UnresolvedDependency: carrying every reference that could not be
            substituted. Nothing is partially applied.
    """
    unresolved: list[StepReference] = []

    def value_of(ref: StepReference) -> Any:
        try:
            return ref.resolve(results)
        except LookupError:
            unresolved.append(ref)
            return None

    def leaf(node: Union[StepReference, Interpolation]):
        if isinstance(node, StepReference):
            return value_of(node)
        return "".join(
            _as_text(value_of(p)) if isinstance(p, StepReference) else p
            for p in node.parts
        )

    resolved = _walk(template.tree, leaf)
    if unresolved:
        names = ", ".join(ref.render() for ref in unresolved)
        raise UnresolvedDependency(f"Unresolved placeholders: {names}", references=unresolved)
    return resolved


def cyclic_steps(templates: Mapping[str, ArgumentTemplate]) -> set[str]:
    """Step ids that depend on themselves, directly or through other steps.

    Only references between the given steps are followed.
    """
    graph = {
        step_id: [dep for dep in template.depends_on if dep in templates]
        for step_id, template in templates.items()
    }
    cyclic = set()
    for start, deps in graph.items():
        seen = set()
        stack = list(deps)
        while stack:
            node = stack.pop()
            if node == start:
                cyclic.add(start)
                break
            if node in seen:
                continue
            seen.add(node)
            stack.extend(graph[node])
    return cyclic
