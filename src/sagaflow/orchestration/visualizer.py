"""Workflow Visualizer - render workflows as Mermaid, Graphviz DOT or ASCII.

Pure, read-only functions over ``workflow.name`` and ``workflow.steps``;
nothing here touches a context or the engine. Useful for documentation,
debugging and log output.

Architecture::

    Workflow.steps
        │
        ▼
    _GraphBuilder  ── walks the step tree once
        │               nodes: (id, label, kind, group)
        │               edges: (source, target, label)
        ▼
    to_mermaid(workflow)  → str (Mermaid flowchart)
    to_dot(workflow)      → str (Graphviz digraph)
    to_ascii(workflow)    → str (indented tree)

    Node shapes:
    - start / end      → ((circle))
    - leaf             → ("rounded"),  compensating leaf → ["rectangle"]
    - conditional      → {"diamond"}   edges labelled true / false
    - parallel         → [/"fork"/]    one edge per member
    - sub-workflow     → subgraph / cluster around its steps
    - for-each / while → {{"hexagon"}}  body loops back to it, exit labelled done
    - retry            → [["subroutine"]] followed by its block
    - try              → (["stadium"])  try block, then the finally block

Example::

    from sagaflow.orchestration.visualizer import to_mermaid

    print(to_mermaid(workflow))
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass, field

from sagaflow.orchestration.step_types import (
    ConditionalStep,
    ForEachStep,
    ParallelStep,
    RetryStep,
    Step,
    StepKind,
    SubWorkflowStep,
    TryStep,
    WhileStep,
    is_compensating,
)
from sagaflow.orchestration.workflow import Workflow


_Exit = tuple[str, str | None]


@dataclass
class _Node:
    id: str
    label: str
    kind: str
    group: str | None = None


@dataclass
class _Graph:
    nodes: list[_Node] = field(default_factory=list)
    edges: list[tuple[str, str, str | None]] = field(default_factory=list)
    groups: dict[str, str] = field(default_factory=dict)


def _sanitize(name: str) -> str:
    return re.sub(r"\W+", "_", name).strip("_") or "step"


def _escape(label: str) -> str:
    return label.replace('"', "'")


class _GraphBuilder:
    def __init__(self) -> None:
        self.graph = _Graph()

    def build(self, workflow: Workflow) -> _Graph:
        self.graph.nodes.append(_Node("wf_start", "Start", "terminal"))
        exits = self._sequence(workflow.steps, "S", [("wf_start", None)], None)
        self.graph.nodes.append(_Node("wf_end", "End", "terminal"))
        self._connect(exits, "wf_end")
        return self.graph

    def _connect(self, exits: list[_Exit], target: str) -> None:
        for source, label in exits:
            self.graph.edges.append((source, target, label))

    def _sequence(self, steps: Sequence[Step], prefix: str, exits: list[_Exit], group: str | None) -> list[_Exit]:
        for index, step in enumerate(steps):
            exits = self._node(step, f"{prefix}{index}", exits, group)
        return exits

    def _node(self, step: Step, path: str, exits: list[_Exit], group: str | None) -> list[_Exit]:
        node_id = f"{path}_{_sanitize(step.name)}"

        if isinstance(step, ConditionalStep):
            self.graph.nodes.append(_Node(node_id, step.name, "conditional", group))
            self._connect(exits, node_id)
            then_exits = self._sequence(step.then_steps, f"{path}T", [(node_id, "true")], group)
            else_exits = self._sequence(step.else_steps, f"{path}E", [(node_id, "false")], group)
            return then_exits + else_exits

        if isinstance(step, ParallelStep):
            self.graph.nodes.append(_Node(node_id, step.name, "parallel", group))
            self._connect(exits, node_id)
            if not step.members:
                return [(node_id, None)]
            merged: list[_Exit] = []
            for index, member in enumerate(step.members):
                merged.extend(self._node(member, f"{path}P{index}", [(node_id, None)], group))
            return merged

        if isinstance(step, SubWorkflowStep):
            self.graph.groups[node_id] = step.name
            if not step.workflow.steps:
                return exits
            return self._sequence(step.workflow.steps, f"{path}W", exits, node_id)

        if isinstance(step, (ForEachStep, WhileStep)):
            self.graph.nodes.append(_Node(node_id, step.name, "loop", group))
            self._connect(exits, node_id)
            if not step.steps:
                return [(node_id, None)]
            entry = "each" if isinstance(step, ForEachStep) else "true"
            body = self._sequence(step.steps, f"{path}L", [(node_id, entry)], group)
            self._connect(body, node_id)
            return [(node_id, "done")]

        if isinstance(step, RetryStep):
            label = f"{step.name} x{step.max_attempts}"
            self.graph.nodes.append(_Node(node_id, label, "retry", group))
            self._connect(exits, node_id)
            return self._sequence(step.steps, f"{path}R", [(node_id, None)], group)

        if isinstance(step, TryStep):
            caught = ", ".join(exc_type.__name__ for exc_type, _ in step.handlers)
            label = f"{step.name} / catch {caught}" if caught else step.name
            self.graph.nodes.append(_Node(node_id, label, "try", group))
            self._connect(exits, node_id)
            body = self._sequence(step.steps, f"{path}T", [(node_id, None)], group)
            return self._sequence(step.finally_steps, f"{path}F", body, group)

        kind = "compensating" if is_compensating(step) else "leaf"
        self.graph.nodes.append(_Node(node_id, step.name, kind, group))
        self._connect(exits, node_id)
        return [(node_id, None)]


def _graph(workflow: Workflow) -> _Graph:
    return _GraphBuilder().build(workflow)


# ---------------------------------------------------------------------------
# Mermaid
# ---------------------------------------------------------------------------

_MERMAID_SHAPES = {
    "terminal": '(("{}"))',
    "leaf": '("{}")',
    "compensating": '["{}"]',
    "conditional": '{{"{}"}}',
    "parallel": '[/"{}"/]',
    "loop": '{{{{"{}"}}}}',
    "retry": '[["{}"]]',
    "try": '(["{}"])',
}

_MERMAID_STYLES = {
    "compensating": "fill:#fce4ec,stroke:#ad1457",
    "conditional": "fill:#fff3e0,stroke:#e65100",
    "parallel": "fill:#e8f5e9,stroke:#2e7d32",
    "loop": "fill:#e3f2fd,stroke:#1565c0",
    "retry": "fill:#f3e5f5,stroke:#6a1b9a",
    "try": "fill:#fffde7,stroke:#f9a825",
}


def to_mermaid(
    workflow: Workflow,
    *,
    direction: str = "TD",
    include_styles: bool = True,
    title: str | None = None,
) -> str:
    """Render a workflow as a Mermaid flowchart.

    Parameters
    ----------
    workflow
        The workflow to visualize.
    direction
        Graph direction: ``"TD"`` (top-down), ``"LR"`` (left-right).
    include_styles
        If True, colour compensating and control-flow nodes.
    title
        Optional title; defaults to the workflow name.

    Returns
    -------
    str
        Complete Mermaid graph definition.
    """
    graph = _graph(workflow)
    lines = ["---", f"title: {title or workflow.name}", "---", f"graph {direction}"]

    def node_line(node: _Node, indent: str) -> str:
        return f"{indent}{node.id}" + _MERMAID_SHAPES[node.kind].format(_escape(node.label))

    for node in graph.nodes:
        if node.group is None:
            lines.append(node_line(node, "    "))
    for group_id, label in graph.groups.items():
        members = [n for n in graph.nodes if n.group == group_id]
        if not members:
            continue
        lines.append(f'    subgraph {group_id} ["{_escape(label)}"]')
        lines.extend(node_line(n, "        ") for n in members)
        lines.append("    end")

    lines.append("")
    for source, target, label in graph.edges:
        arrow = f"-->|{label}|" if label else "-->"
        lines.append(f"    {source} {arrow} {target}")

    if include_styles:
        styles = [
            f"    style {n.id} {_MERMAID_STYLES[n.kind]}" for n in graph.nodes if n.kind in _MERMAID_STYLES
        ]
        if styles:
            lines.append("")
            lines.extend(styles)

    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Graphviz DOT
# ---------------------------------------------------------------------------

_DOT_SHAPES = {
    "terminal": "circle",
    "leaf": "box, style=rounded",
    "compensating": "box",
    "conditional": "diamond",
    "parallel": "parallelogram",
    "loop": "hexagon",
    "retry": "box3d",
    "try": "octagon",
}


def to_dot(workflow: Workflow, *, rankdir: str = "TB") -> str:
    """Render a workflow as a Graphviz ``digraph``."""
    graph = _graph(workflow)
    lines = [f'digraph "{_escape(workflow.name)}" {{', f"    rankdir={rankdir};"]

    def node_line(node: _Node, indent: str) -> str:
        return f'{indent}{node.id} [label="{_escape(node.label)}", shape={_DOT_SHAPES[node.kind]}];'

    for node in graph.nodes:
        if node.group is None:
            lines.append(node_line(node, "    "))
    for group_id, label in graph.groups.items():
        members = [n for n in graph.nodes if n.group == group_id]
        if not members:
            continue
        lines.append(f"    subgraph cluster_{group_id} {{")
        lines.append(f'        label="{_escape(label)}";')
        lines.extend(node_line(n, "        ") for n in members)
        lines.append("    }")

    for source, target, label in graph.edges:
        attrs = f' [label="{label}"]' if label else ""
        lines.append(f"    {source} -> {target}{attrs};")
    lines.append("}")
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# ASCII
# ---------------------------------------------------------------------------

_ASCII_MARKERS = {
    StepKind.LEAF: "",
    StepKind.CONDITIONAL: "? ",
    StepKind.PARALLEL: "‖ ",
    StepKind.SUB_WORKFLOW: "» ",
    StepKind.FOR_EACH: "↻ ",
    StepKind.WHILE: "↻ ",
    StepKind.RETRY: "⟲ ",
    StepKind.TRY: "! ",
}


def to_ascii(workflow: Workflow) -> str:
    """Render a workflow as an indented tree."""
    header = workflow.name
    if workflow.compensation_enabled:
        header += " (compensation)"
    lines = [header]

    def label(step: Step) -> str:
        text = f"{_ASCII_MARKERS[step.kind]}{step.name}"
        return text + " [undo]" if is_compensating(step) else text

    def walk(items: Sequence[tuple[str, Step | None, Sequence]], prefix: str) -> None:
        for i, (text, step, children) in enumerate(items):
            last = i == len(items) - 1
            lines.append(f"{prefix}{'└── ' if last else '├── '}{text}")
            walk(children, prefix + ("    " if last else "│   "))

    def entries(steps: Sequence[Step]) -> list[tuple[str, Step | None, Sequence]]:
        result = []
        for step in steps:
            if isinstance(step, ConditionalStep):
                branches = [("then", None, entries(step.then_steps))]
                if step.else_steps:
                    branches.append(("else", None, entries(step.else_steps)))
                result.append((label(step), step, branches))
            elif isinstance(step, TryStep):
                blocks = [("try", None, entries(step.steps))]
                blocks.extend((f"catch {exc_type.__name__}", None, []) for exc_type, _ in step.handlers)
                if step.finally_steps:
                    blocks.append(("finally", None, entries(step.finally_steps)))
                result.append((label(step), step, blocks))
            else:
                result.append((label(step), step, entries(step.children())))
        return result

    walk(entries(workflow.steps), "")
    if not workflow.steps:
        lines.append("└── (no steps)")
    return "\n".join(lines)
