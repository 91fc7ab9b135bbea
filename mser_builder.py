"""
Evaluation-node builder: turns component emissions into evaluation nodes.

For every emitted component the builder bridges the previous snapshot of the
component and the snapshots of every merged sub-component up to the new
threshold value, creates the node for the new snapshot and runs the local
minimum checks that became possible.
"""

from collections import deque
from typing import Iterable, List, Optional

from mser_evaluation import EvaluationGraph, EvaluationOrderError, MinimumReporter


class Component:
    """
    Mutable component as seen by the builder.

    The component source updates `value`, `size` and `ancestors` before each
    emission; the builder owns `evaluation_node`, the handle of the node
    attached by the last emission (None before the first one), together with
    the graph and graph generation that handle belongs to.
    """

    def __init__(self, value: int, size: int, ancestors: Optional[List['Component']] = None,
                 component_id=None):
        self.value = value
        self.size = size
        self.ancestors = list(ancestors) if ancestors else []
        self.component_id = component_id
        self.evaluation_node = None
        self.evaluation_graph = None
        self.evaluation_generation = None

    def clear_ancestors(self) -> None:
        self.ancestors = []

    def __repr__(self):
        return f"Component(value={self.value}, size={self.size}, id={self.component_id})"


class EvaluationNodeBuilder:
    """
    Builds the evaluation graph from a stream of component emissions.

    Emissions must be processed one at a time: attach() creates all nodes of
    one emission and drains its minimum checks before returning.

    Args:
        delta (int): Stability window, in threshold steps
        reporter (MinimumReporter): Receives every local minimum
        graph (EvaluationGraph): Graph to extend, a new one by default
    """

    def __init__(self, delta: int, reporter: MinimumReporter, graph: Optional[EvaluationGraph] = None):
        if graph is None:
            graph = EvaluationGraph(delta)
        elif graph.delta != delta:
            raise ValueError(f"graph delta {graph.delta} does not match builder delta {delta}")
        self.delta = delta
        self.reporter = reporter
        self.graph = graph

    def attach(self, component: Component) -> int:
        """
        Attach a new evaluation node to an emitted component.

        Args:
            component (Component): Component emitted at `component.value`

        Returns:
            int: Handle of the node created for the component

        Raises:
            EvaluationOrderError: If the emission is not strictly above the
                component's previous snapshot, or an ancestor was never
                emitted, is not below the new value or was already merged,
                or a slot belongs to another graph or predates a compaction
        """
        value = component.value
        self._check_emission(component)

        pending = deque()
        ancestors = []
        if component.evaluation_node is not None:
            ancestors.append(self._bridge(component.evaluation_node, value, pending))
        for c in component.ancestors:
            ancestors.append(self._bridge(c.evaluation_node, value, pending))

        handle = self.graph.create_node(value, component.size, ancestors, component.component_id)
        self._set_slot(component, handle)
        component.clear_ancestors()

        if self.graph.compute_score(handle):
            pending.extend(ancestors)
        self._drain(pending)
        return handle

    def run(self, components: Iterable[Component]) -> int:
        """Attach every emission in order; returns the number of emissions."""
        count = 0
        for component in components:
            self.attach(component)
            count += 1
        return count

    def compact(self, live_components: Iterable[Component]) -> dict:
        """
        Compact the graph around the given components and rewrite their handles.

        Components left out keep a stale slot; emitting them afterwards
        raises EvaluationOrderError.
        """
        live_components = [c for c in live_components if self._slot(c) is not None]
        mapping = self.graph.compact(c.evaluation_node for c in live_components)
        for c in live_components:
            self._set_slot(c, mapping[c.evaluation_node])
        return mapping

    def _set_slot(self, component, handle):
        component.evaluation_node = handle
        component.evaluation_graph = self.graph
        component.evaluation_generation = self.graph.generation

    def _slot(self, component):
        """Handle attached to a component, checked against this graph and generation."""
        if component.evaluation_node is None:
            return None
        if component.evaluation_graph is not self.graph:
            raise EvaluationOrderError(f"component {component!r} belongs to another evaluation graph")
        if component.evaluation_generation != self.graph.generation:
            raise EvaluationOrderError(
                f"component {component!r} holds a handle from before a graph compaction")
        return component.evaluation_node

    def _check_emission(self, component):
        value = component.value
        prior = self._slot(component)
        if prior is not None and self.graph[prior].value >= value:
            raise EvaluationOrderError(
                f"component emitted at value {value}, previous snapshot at {self.graph[prior].value}")
        if prior is not None and self.graph[prior].successor is not None:
            raise EvaluationOrderError(f"component {component!r} was already merged")
        seen = set()
        for c in component.ancestors:
            if c is component:
                raise EvaluationOrderError(f"component {component!r} lists itself as ancestor")
            n = self._slot(c)
            if n is None:
                raise EvaluationOrderError(f"ancestor {c!r} was never emitted")
            if n in seen or n == prior:
                raise EvaluationOrderError(f"ancestor {c!r} merged twice at value {value}")
            seen.add(n)
            node = self.graph[n]
            if node.value >= value:
                raise EvaluationOrderError(
                    f"ancestor {c!r} at value {node.value} is not below emission value {value}")
            if node.successor is not None:
                raise EvaluationOrderError(f"ancestor {c!r} was already merged")

    def _bridge(self, handle, to_value, pending):
        # one node per integer value strictly between the snapshot and to_value
        origin = self.graph[handle]
        n = handle
        for v in range(origin.value + 1, to_value):
            b = self.graph.create_node(v, origin.size, [n], origin.component_id)
            if self.graph.compute_score(b):
                pending.append(n)
            n = b
        return n

    def _drain(self, pending):
        while pending:
            n = pending.popleft()
            if self.graph.is_local_minimum(n):
                self.reporter.found_new_minimum(self.graph[n])
