from mser_evaluation import MinimumReporter


class RegionFilter(MinimumReporter):
    """
    Post-filter for MSER minima.

    Forwards a reported node to `sink` if its size lies in
    [min_size, max_size] and its score is at most max_variation, and counts
    it as discarded otherwise.

    Args:
        min_size (int): Minimum region size in pixels (inclusive)
        max_size (int): Maximum region size in pixels (inclusive)
        max_variation (float): Maximum MSER score (inclusive)
        sink (MinimumReporter): Receives the accepted nodes
    """

    def __init__(self, min_size, max_size, max_variation, sink):
        if min_size < 0:
            raise ValueError(f"min_size must be non-negative, got {min_size}")
        if min_size > max_size:
            raise ValueError(f"min_size {min_size} is larger than max_size {max_size}")
        if max_variation < 0:
            raise ValueError(f"max_variation must be non-negative, got {max_variation}")
        self.min_size = min_size
        self.max_size = max_size
        self.max_variation = max_variation
        self.sink = sink
        self.num_discarded = 0

    def found_new_minimum(self, node):
        if self.min_size <= node.size <= self.max_size and node.score <= self.max_variation:
            self.sink.found_new_minimum(node)
        else:
            self.num_discarded += 1

    def __str__(self):
        return f"discarded {self.num_discarded} regions"
