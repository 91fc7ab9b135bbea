"""
MSER Evaluation Graph

This module holds the persistent history of a component tree sweep and
computes the MSER stability score of every component snapshot, as described in:
"Robust Wide Baseline Stereo from Maximally Stable Extremal Regions"
by J. Matas et al. (BMVC 2002)

Every time the component source emits a component at threshold value V, one
evaluation node is created for (component, V). Gaps between two emissions of
the same branch are filled with synthetic bridging nodes, one per integer
value, so that the history of every node is dense.

Key concepts:
- Arena storage: nodes live in a list and refer to each other by integer handle
- History ancestor: the largest ancestor of a node, used for score lookups
- Score: relative growth of the region over a window of `delta` thresholds
      score = (size - size_at(value - delta)) / size
- Local minimum: score <= history ancestor score and score < successor score

Usage:
    graph = EvaluationGraph(delta=2)
    a = graph.create_node(5, 100)
    b = graph.create_node(6, 100, ancestors=[a])
    graph.compute_score(b)  # False, history too short

Memory:
    Nodes are never deleted during the sweep, memory is O(total merge events).
    EvaluationGraph.compact() drops history that no future score can reach.
"""

import numpy as np


class EvaluationOrderError(ValueError):
    """A component was emitted out of threshold order or merged twice."""


class EvaluationNode:
    """
    One snapshot of a component at a given threshold value.

    Attributes:
        handle (int): Index of the node in its EvaluationGraph
        value (int): Threshold value at which the component exists
        size (int): Number of pixels of the component
        ancestors (list): Handles of the nodes merged into this one, in order
        history_ancestor (int | None): Handle of the largest ancestor
        successor (int | None): Handle of the node this one merged into
        score (float): MSER score, meaningful only if is_score_valid
        is_score_valid (bool): True once the score has been computed
        component_id: Id of the component the node's pixels belong to.
            Bridging nodes inherit it from the node they extend.
    """

    __slots__ = ('handle', 'value', 'size', 'ancestors', 'history_ancestor',
                 'successor', 'score', 'is_score_valid', 'component_id')

    def __init__(self, handle, value, size, ancestors, history_ancestor, component_id=None):
        self.handle = handle
        self.value = value
        self.size = size
        self.ancestors = ancestors
        self.history_ancestor = history_ancestor
        self.successor = None
        self.score = 0.0
        self.is_score_valid = False
        self.component_id = component_id

    def __repr__(self):
        score = f"{self.score:.4f}" if self.is_score_valid else "--"
        return (f"EvaluationNode(handle={self.handle}, value={self.value}, "
                f"size={self.size}, score={score})")


class MinimumReporter:
    """Receives nodes whose MSER score is a local minimum."""

    def found_new_minimum(self, node):
        raise NotImplementedError


class MinimaCollector(MinimumReporter):
    """Reporter that keeps every reported node, in report order."""

    def __init__(self):
        self.minima = []

    def found_new_minimum(self, node):
        self.minima.append(node)

    def __len__(self):
        return len(self.minima)


class EvaluationGraph:
    """
    Arena of evaluation nodes addressed by integer handle.

    Each node field that may change after construction is written at most
    once: `successor` when the node is merged into a later node, and
    `score`/`is_score_valid` when enough history is available.

    Attributes:
        delta (int): Width of the threshold window used for scores
        nodes (list): EvaluationNode records, indexed by handle
        generation (int): Bumped by every compact(); handles taken before
            a compaction are only valid if they were remapped
    """

    def __init__(self, delta):
        if delta < 0:
            raise ValueError(f"delta must be non-negative, got {delta}")
        self.delta = delta
        self.nodes = []
        self.generation = 0

    def __len__(self):
        return len(self.nodes)

    def __getitem__(self, handle):
        return self.nodes[handle]

    def _node(self, handle):
        if not isinstance(handle, (int, np.integer)) or not 0 <= handle < len(self.nodes):
            raise EvaluationOrderError(f"unknown evaluation node handle {handle!r}")
        return self.nodes[handle]

    def create_node(self, value, size, ancestors=(), component_id=None):
        """
        Append a node and link it to its ancestors.

        Args:
            value (int): Threshold value of the new node
            size (int): Pixel count of the component
            ancestors (iterable): Handles of the nodes merged at this value.
                Every ancestor must have a lower value and no successor yet.
            component_id: Id of the underlying component

        Returns:
            int: Handle of the new node

        Raises:
            EvaluationOrderError: If an ancestor is unknown, not strictly
                below `value`, listed twice or already merged. Nothing is
                modified in that case.

        The history ancestor is the ancestor with the greatest size; on ties
        the first one in `ancestors` wins.
        """
        ancestors = list(ancestors)
        history_ancestor = None
        history_size = -1
        for a in ancestors:
            anc = self._node(a)
            if anc.value >= value:
                raise EvaluationOrderError(
                    f"ancestor at value {anc.value} is not below new node value {value}")
            if anc.successor is not None:
                raise EvaluationOrderError(
                    f"node {a} at value {anc.value} already merged into node {anc.successor}")
            if anc.size > history_size:
                history_ancestor = a
                history_size = anc.size
        if len(set(ancestors)) != len(ancestors):
            raise EvaluationOrderError(f"duplicate ancestors {ancestors}")

        handle = len(self.nodes)
        self.nodes.append(EvaluationNode(handle, value, size, ancestors, history_ancestor, component_id))
        for a in ancestors:
            self.nodes[a].successor = handle
        return handle

    def ancestor_at_delta(self, handle):
        """
        Find the history node `delta` thresholds below a node.

        Walks the history ancestor chain and stops at the first node whose
        value is at or below `value - delta`. With dense bridging that node
        sits exactly at `value - delta`.

        Returns:
            int | None: Handle of that node, None if the history is too short
        """
        node = self.nodes[handle]
        target = node.value - self.delta
        n = node.history_ancestor
        while n is not None and self.nodes[n].value > target:
            n = self.nodes[n].history_ancestor
        return n

    def compute_score(self, handle):
        """
        Compute the MSER score of a node if its history reaches far enough.

        Returns:
            bool: True if the score is valid. A node with too short a history
                keeps is_score_valid False.

        Raises:
            EvaluationOrderError: If the score was already computed
        """
        node = self.nodes[handle]
        if node.is_score_valid:
            raise EvaluationOrderError(f"score of node {handle} already computed")
        n = self.ancestor_at_delta(handle)
        if n is None:
            return False
        node.score = (node.size - self.nodes[n].size) / node.size
        node.is_score_valid = True
        return True

    def is_local_minimum(self, handle):
        """
        Three point local minimum test on a node with a scored successor.

        Plateaus are admitted backward (<=) but not forward (<), so a run of
        equal scores is reported once, at its last node in sweep order (the
        one whose successor rises).
        """
        node = self.nodes[handle]
        if not node.is_score_valid or node.history_ancestor is None or node.successor is None:
            return False
        history = self.nodes[node.history_ancestor]
        successor = self.nodes[node.successor]
        if not history.is_score_valid or not successor.is_score_valid:
            return False
        return node.score <= history.score and node.score < successor.score

    def history(self, handle):
        """Handles of the history chain, starting at `handle` and going back."""
        chain = []
        n = handle
        while n is not None:
            chain.append(n)
            n = self.nodes[n].history_ancestor
        return chain

    def history_arrays(self, handle):
        """
        History chain as arrays, oldest first, for plotting.

        Returns:
            tuple: (values, sizes, scores) numpy arrays; scores are NaN where
                the score is not valid
        """
        chain = self.history(handle)[::-1]
        values = np.array([self.nodes[n].value for n in chain], dtype=np.int64)
        sizes = np.array([self.nodes[n].size for n in chain], dtype=np.int64)
        scores = np.array([self.nodes[n].score if self.nodes[n].is_score_valid else np.nan
                           for n in chain], dtype=np.float64)
        return values, sizes, scores

    def compact(self, retained):
        """
        Drop every node that no future score or minimum check can reach.

        For each retained handle (typically the nodes currently attached to
        live components) the node itself, its history ancestor and its
        history chain down to the first node at or below `value - delta`
        are kept. Everything else is dropped and the arena is renumbered.

        Args:
            retained (iterable): Handles that must survive

        Returns:
            dict: Mapping from old handle to new handle for kept nodes

        Notes:
            - Must not be called while a minimum check is pending
            - Links to dropped nodes become None, dropped records get
              handle None
            - The graph generation is bumped, every handle held outside
              the graph is stale unless remapped through the result
        """
        keep = set()
        for h in retained:
            node = self._node(h)
            keep.add(h)
            target = node.value - self.delta
            n = node.history_ancestor
            while n is not None:
                keep.add(n)
                if self.nodes[n].value <= target:
                    break
                n = self.nodes[n].history_ancestor

        mapping = {old: new for new, old in enumerate(sorted(keep))}
        nodes = []
        for node in self.nodes:
            if node.handle not in mapping:
                node.handle = None
                continue
            node.handle = mapping[node.handle]
            node.ancestors = [mapping[a] for a in node.ancestors if a in mapping]
            node.history_ancestor = mapping.get(node.history_ancestor)
            node.successor = mapping.get(node.successor)
            nodes.append(node)
        self.nodes = nodes
        self.generation += 1
        return mapping
