"""
Connected component analysis for moon detection

Labelling works on horizontal runs: each row of the binary mask is split into
runs of foreground pixels, runs in adjacent rows that overlap horizontally are
4-connected and get merged through a union-find, and per-blob statistics are
accumulated from the runs rather than from individual pixels.
"""

import logging
import math
from typing import List

import numpy as np

from .models import BlobInfo, CropRect

logger = logging.getLogger(__name__)


class UnionFind:
    """Disjoint sets over dense integer ids, stored in flat arrays"""

    def __init__(self, size: int):
        self.parent = np.arange(size, dtype=np.int64)
        self.rank = np.zeros(size, dtype=np.int64)

    def find(self, item: int) -> int:
        root = item
        while self.parent[root] != root:
            root = self.parent[root]
        # Path compression
        while self.parent[item] != root:
            self.parent[item], item = root, self.parent[item]
        return int(root)

    def union(self, a: int, b: int) -> int:
        root_a = self.find(a)
        root_b = self.find(b)
        if root_a == root_b:
            return root_a

        if self.rank[root_a] < self.rank[root_b]:
            root_a, root_b = root_b, root_a
        self.parent[root_b] = root_a
        if self.rank[root_a] == self.rank[root_b]:
            self.rank[root_a] += 1
        return root_a

    def roots(self) -> np.ndarray:
        return np.array([self.find(i) for i in range(len(self.parent))], dtype=np.int64)


def find_runs(mask: np.ndarray):
    """Foreground runs as (rows, starts, ends) with ends exclusive, in row-major order"""
    padded = np.zeros((mask.shape[0], mask.shape[1] + 2), dtype=np.int8)
    padded[:, 1:-1] = mask
    transitions = np.diff(padded, axis=1)
    start_rows, starts = np.nonzero(transitions == 1)
    _, ends = np.nonzero(transitions == -1)
    return start_rows, starts, ends


class ConnectedComponentsAnalyzer:
    """Two-pass 4-connected labelling and blob statistics"""

    def label(self, mask: np.ndarray):
        """Label image (0 = background) and the number of labels"""
        mask = np.asarray(mask, dtype=bool)
        rows, starts, ends = find_runs(mask)
        labels = np.zeros(mask.shape, dtype=np.int32)
        if len(rows) == 0:
            return labels, 0

        run_labels = self._label_runs(rows, starts, ends)
        for row, start, end, run_label in zip(rows, starts, ends, run_labels):
            labels[row, start:end] = run_label
        return labels, int(run_labels.max())

    def find_blobs(self, mask: np.ndarray, min_area: int = 0, max_area: int = None) -> List[BlobInfo]:
        """Blobs with min_area <= area <= max_area, largest first"""
        mask = np.asarray(mask, dtype=bool)
        height, width = mask.shape
        if max_area is None:
            max_area = height * width

        rows, starts, ends = find_runs(mask)
        if len(rows) == 0:
            return []

        run_labels = self._label_runs(rows, starts, ends)
        count = int(run_labels.max())
        lengths = ends - starts

        area = np.bincount(run_labels, weights=lengths, minlength=count + 1)
        sum_x = np.bincount(run_labels, weights=(starts + ends - 1) * lengths / 2.0, minlength=count + 1)
        sum_y = np.bincount(run_labels, weights=rows * lengths, minlength=count + 1)

        min_x = np.full(count + 1, width, dtype=np.int64)
        max_x = np.full(count + 1, -1, dtype=np.int64)
        min_y = np.full(count + 1, height, dtype=np.int64)
        max_y = np.full(count + 1, -1, dtype=np.int64)
        np.minimum.at(min_x, run_labels, starts)
        np.maximum.at(max_x, run_labels, ends - 1)
        np.minimum.at(min_y, run_labels, rows)
        np.maximum.at(max_y, run_labels, rows)

        kept = [label for label in range(1, count + 1) if min_area <= area[label] <= max_area]
        logger.debug(f"Connected components: {count} labels, {len(kept)} within area window")
        if not kept:
            return []

        labels = np.zeros(mask.shape, dtype=np.int32)
        for row, start, end, run_label in zip(rows, starts, ends, run_labels):
            labels[row, start:end] = run_label

        edge_points = self._edge_points(mask, labels)

        blobs = []
        for label in kept:
            points = edge_points.get(label, np.empty((0, 2), dtype=np.float64))
            perimeter = len(points)
            circularity = 4.0 * math.pi * area[label] / (perimeter * perimeter) if perimeter > 0 else 0.0
            blobs.append(BlobInfo(
                label=label,
                area=int(area[label]),
                bounding_box=CropRect(int(min_x[label]), int(min_y[label]),
                                      int(max_x[label] - min_x[label] + 1),
                                      int(max_y[label] - min_y[label] + 1)),
                centroid=(float(sum_x[label] / area[label]), float(sum_y[label] / area[label])),
                circularity=min(1.0, circularity),
                edge_points=points,
            ))

        blobs.sort(key=lambda blob: blob.area, reverse=True)
        return blobs

    @staticmethod
    def _label_runs(rows: np.ndarray, starts: np.ndarray, ends: np.ndarray) -> np.ndarray:
        """Dense labels (1..N) per run; overlapping runs in adjacent rows share a label"""
        sets = UnionFind(len(rows))

        row_bounds = np.flatnonzero(np.diff(rows)) + 1
        row_begin = np.concatenate(([0], row_bounds))
        row_end = np.concatenate((row_bounds, [len(rows)]))

        for index in range(1, len(row_begin)):
            prev_lo, prev_hi = row_begin[index - 1], row_end[index - 1]
            cur_lo, cur_hi = row_begin[index], row_end[index]
            if rows[cur_lo] != rows[prev_lo] + 1:
                continue

            i, j = prev_lo, cur_lo
            while i < prev_hi and j < cur_hi:
                if starts[i] < ends[j] and starts[j] < ends[i]:
                    sets.union(i, j)
                if ends[i] < ends[j]:
                    i += 1
                else:
                    j += 1

        _, dense = np.unique(sets.roots(), return_inverse=True)
        return dense.astype(np.int64) + 1

    @staticmethod
    def _edge_points(mask: np.ndarray, labels: np.ndarray):
        """Per-label (x, y) arrays of foreground pixels touching background or the border"""
        padded = np.pad(mask, 1, constant_values=False)
        interior = (padded[:-2, 1:-1] & padded[2:, 1:-1] & padded[1:-1, :-2] & padded[1:-1, 2:])
        edge = mask & ~interior

        ys, xs = np.nonzero(edge)
        edge_labels = labels[ys, xs]
        order = np.argsort(edge_labels, kind='stable')
        ys, xs, edge_labels = ys[order], xs[order], edge_labels[order]

        unique, first = np.unique(edge_labels, return_index=True)
        groups = np.split(np.column_stack((xs, ys)).astype(np.float64), first[1:])
        return dict(zip(unique.tolist(), groups))
