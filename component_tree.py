"""
Component Tree Source for MSER

This module turns the component tree of an integer image into the stream of
component emissions consumed by the MSER evaluation builder.

The tree itself is computed by scikit-image (max-tree of the inverted sweep
levels, i.e. the min-tree of the levels). Each canonical node of that tree
is a connected component of {pixels with level <= t} at the level t where it
first appears or last changes. Sweeping t upward:
1. A leaf node is a newly born component (a regional minimum)
2. An inner node continues its largest child; the other children are merged
   into it and become the ancestors of the emission
3. The root covers the whole image at the highest level

Usage:
    gray = np.array(...)  # integer image, any number of dimensions
    source = MaxTreeComponentSource(gray)
    for component in source.components():
        builder.attach(component)
    pixels = source.region_pixels(node.component_id)

Performance notes:
    - Pixel loops in get_pixel_nodes / get_node_areas are pure Python
    - Memory is O(num_pixels) for the tree arrays

References:
    Salembier et al., "Antiextensive connected operators for image and
    sequence processing" (1998), and skimage.morphology.max_tree
"""

from skimage import morphology
import numpy as np

from mser_builder import Component


class MaxTreeComponentSource:
    """
    Emits the components of an image's component tree in increasing level order.

    Attributes:
        shape (tuple): Shape of the input image
        dark_to_bright (bool): True if the sweep goes from dark to bright values
        max_value (int): Largest pixel value of the input image
        levels (np.ndarray): Flattened sweep level of every pixel (int64)
        parent (np.ndarray): Flattened max-tree parent array
        traverser (np.ndarray): Pixel order with every parent before its children
        root (int): Flat index of the canonical pixel of the root node
        node_of (np.ndarray): Canonical pixel of the node each pixel belongs to
        nodes (list): Canonical pixels (tree nodes) in traversal order
        areas (np.ndarray): Area of each node, indexed by canonical pixel
        children (dict): Canonical pixel -> list of child canonical pixels
    """

    def __init__(self, image, dark_to_bright=True, connectivity=1):
        """
        Build the component tree of an integer image.

        Args:
            image (np.ndarray): Integer image of any dimensionality
            dark_to_bright (bool): Sweep from low to high pixel values if
                True, from high to low otherwise. The sweep level always
                increases, for bright-to-dark it is max(image) - image.
            connectivity (int): Neighborhood connectivity, see
                skimage.morphology.max_tree

        Raises:
            ValueError: If the image is empty or not of integer type
        """
        image = np.asarray(image)
        if image.ndim == 0 or image.size == 0:
            raise ValueError(f"Expected a non-empty image, got shape {image.shape}")
        if not (np.issubdtype(image.dtype, np.integer) or image.dtype == bool):
            raise ValueError(f"Expected an integer image, got dtype {image.dtype}")

        levels = image.astype(np.int64)
        self.max_value = int(levels.max())
        if not dark_to_bright:
            levels = self.max_value - levels

        self.shape = image.shape
        self.dark_to_bright = dark_to_bright
        self.levels = levels.ravel()

        # max-tree of the inverted levels is the min-tree of the levels
        parent, traverser = morphology.max_tree(levels.max() - levels, connectivity=connectivity)
        self.parent = parent.ravel()
        self.traverser = traverser
        self.root = int(traverser[0])

        self.node_of = self.get_pixel_nodes()
        self.nodes = [int(p) for p in traverser if self.node_of[p] == p]
        self.areas = self.get_node_areas()
        self.children = self.get_children()

    def get_pixel_nodes(self):
        """
        Map every pixel to the canonical pixel of its tree node.

        A pixel is canonical if it is the root or its parent lies at another
        level. Other pixels share the node of their parent.

        Returns:
            np.ndarray: Flat array, node_of[p] = canonical pixel of p's node

        Time complexity: O(num_pixels)
        """
        node_of = np.empty(self.levels.size, dtype=np.int64)
        for p in self.traverser:
            q = self.parent[p]
            if p == self.root or self.levels[q] != self.levels[p]:
                node_of[p] = p
            else:
                node_of[p] = node_of[q]
        return node_of

    def get_node_areas(self):
        """
        Compute the area (pixel count) of every node, children included.

        Returns:
            np.ndarray: areas[c] for each canonical pixel c, 0 elsewhere

        Algorithm:
            1. Count the pixels owned directly by each node
            2. Walk the nodes children-first and add each area to its parent
        """
        areas = np.bincount(self.node_of, minlength=self.levels.size).astype(np.int64)
        for p in reversed(self.nodes):
            if p != self.root:
                areas[self.node_of[self.parent[p]]] += areas[p]
        return areas

    def get_children(self):
        """Child nodes of every node, in traversal order."""
        children = {}
        for p in self.nodes:
            if p != self.root:
                children.setdefault(int(self.node_of[self.parent[p]]), []).append(p)
        return children

    def components(self):
        """
        Generate component emissions in increasing level order.

        Each emission yields a Component whose value, size, ancestors and
        component_id describe the node being emitted. A component object
        is reused for the whole branch it continues, so its evaluation_node
        slot carries over between emissions.

        Yields:
            Component: The emitted component, to be consumed before the next
                emission is requested

        Notes:
            - The continued child is the largest one, the first in traversal
              order on ties
            - Children always lie at strictly lower levels than their parent,
              so a stable sort by level emits them first
        """
        nodes = np.array(self.nodes, dtype=np.int64)
        order = nodes[np.argsort(self.levels[nodes], kind='stable')]
        component_of = {}

        for p in order:
            p = int(p)
            value = int(self.levels[p])
            size = int(self.areas[p])
            kids = self.children.get(p, [])
            if kids:
                main = max(kids, key=lambda c: self.areas[c])
                component = component_of.pop(main)
                component.ancestors = [component_of.pop(c) for c in kids if c != main]
            else:
                component = Component(value, size, component_id=p)
            component.value = value
            component.size = size
            component.component_id = p
            component_of[p] = component
            yield component

    def pixel_value(self, level):
        """Pixel value of the image at a sweep level (levels are inverted for bright-to-dark)."""
        return level if self.dark_to_bright else self.max_value - level

    def subtree_nodes(self, component_id):
        """Canonical pixels of a node and all of its descendants."""
        stack = [component_id]
        found = []
        while stack:
            n = stack.pop()
            found.append(n)
            stack.extend(self.children.get(n, []))
        return found

    def region_pixels(self, component_id):
        """
        Flat indices of the pixels of a component.

        Args:
            component_id (int): Canonical pixel of the node, as stored in
                Component.component_id and EvaluationNode.component_id

        Returns:
            np.ndarray: Sorted flat pixel indices
        """
        return np.flatnonzero(np.isin(self.node_of, self.subtree_nodes(component_id)))

    def region_mask(self, component_id):
        mask = np.zeros(self.levels.size, dtype=bool)
        mask[self.region_pixels(component_id)] = True
        return mask.reshape(self.shape)

    def get_bounding_box(self, indices):
        """
        Axis-aligned bounding box of a set of flat pixel indices.

        Returns:
            tuple: ((min_0, max_0), (min_1, max_1), ...) inclusive, one pair
                per image axis
        """
        coords = np.unravel_index(indices, self.shape)
        return tuple((int(c.min()), int(c.max())) for c in coords)
