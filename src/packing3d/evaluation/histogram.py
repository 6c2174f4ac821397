"""
Size and shape histograms of the packed particles.
"""

import math

import numpy as np

from ..config import ScaleMode

NUM_SHAPE_BINS = 17


#=====================================
# Shape descriptors from sorted semi-axes (S, I, L)
#=====================================

def flatness_from_semi_axes(semi_axes) -> float:
    return float(semi_axes[0] / semi_axes[1])


def elongation_from_semi_axes(semi_axes) -> float:
    return float(semi_axes[1] / semi_axes[2])


def equancy_from_semi_axes(semi_axes) -> float:
    return float(semi_axes[0] / semi_axes[2])


SHAPE_EVALUATORS = (("flatness", flatness_from_semi_axes),
                    ("elongation", elongation_from_semi_axes),
                    ("equancy", equancy_from_semi_axes))


def default_shape_bins(num_bins: int = NUM_SHAPE_BINS):
    return np.linspace(0.0, 1.0, num_bins)


class SizeEvaluator:
    """Particle size as seen by the configured scale mode."""

    def __init__(self, scale_mode: ScaleMode):
        self.scale_mode = scale_mode

    def __call__(self, shape) -> float:
        if self.scale_mode == ScaleMode.SIEVE_LIKE:
            return float(2.0 * shape.semi_axes()[1])
        return float(np.cbrt(6.0 * shape.volume() / math.pi))


def _bin_index(values, bins):
    """Index k with bins[k-1] <= value < bins[k]; values beyond the last edge land in the last bin."""
    return np.searchsorted(np.asarray(bins, dtype=float), values, side="right")


class ParticleHistogram:
    """
    Mass fraction and number histograms over size bins, plus number fraction
    histograms of flatness, elongation and equancy.

    With size edges [b0, ..., bn] there are n + 2 size classes: below b0,
    one per interval and above bn.
    """

    def __init__(self, size_bins, size_evaluator: SizeEvaluator, shape_bins=None,
                 shape_evaluators=SHAPE_EVALUATORS):
        self.size_bins = np.asarray(size_bins, dtype=float)
        self.size_evaluator = size_evaluator
        self.shape_evaluators = list(shape_evaluators)
        if shape_bins is None:
            shape_bins = [default_shape_bins() for _ in self.shape_evaluators]
        self.shape_bins = [np.asarray(b, dtype=float) for b in shape_bins]
        self.clear()

    def clear(self):
        self.mass_fraction_histogram = np.zeros(len(self.size_bins) + 1)
        self.number_histogram = np.zeros(len(self.size_bins) + 1, dtype=np.int64)
        self.shape_histograms = [np.zeros(len(b)) for b in self.shape_bins]

    @property
    def num_shape_evaluators(self) -> int:
        return len(self.shape_evaluators)

    def evaluate(self, ranks, comm):
        self.clear()
        rank_sizes, rank_volumes = [], []
        rank_shape_values = [[] for _ in self.shape_evaluators]
        for r in ranks:
            s = r.storage
            shapes = [s.shapes[i] for i in s.owned_indices()]
            rank_sizes.append([self.size_evaluator(shape) for shape in shapes])
            rank_volumes.append([shape.volume() for shape in shapes])
            semi_axes = [shape.semi_axes() for shape in shapes]
            for k, (_, evaluator) in enumerate(self.shape_evaluators):
                rank_shape_values[k].append([evaluator(a) for a in semi_axes])

        sizes = comm.allgather(rank_sizes)
        if len(sizes) == 0:
            return
        volumes = comm.allgather(rank_volumes)
        shape_values = [comm.allgather(values) for values in rank_shape_values]
        size_class = _bin_index(sizes, self.size_bins)
        self.number_histogram = np.bincount(size_class, minlength=len(self.size_bins) + 1)
        mass = np.bincount(size_class, weights=volumes, minlength=len(self.size_bins) + 1)
        self.mass_fraction_histogram = mass / np.sum(volumes)
        for k, bins in enumerate(self.shape_bins):
            index = np.clip(_bin_index(np.asarray(shape_values[k]), bins) - 1, 0, len(bins) - 1)
            counts = np.bincount(index, minlength=len(bins)).astype(float)
            self.shape_histograms[k] = counts / len(sizes)

    def __str__(self):
        lines = ["Size histogram"]
        lines.append(f"  bins:           {' '.join(f'{b:.4g}' for b in self.size_bins)}")
        lines.append(f"  mass fractions: {' '.join(f'{h:.4f}' for h in self.mass_fraction_histogram)}")
        lines.append(f"  numbers:        {' '.join(str(int(h)) for h in self.number_histogram)}")
        for (name, _), histogram in zip(self.shape_evaluators, self.shape_histograms):
            lines.append(f"  {name:<15} {' '.join(f'{h:.3f}' for h in histogram)}")
        return "\n".join(lines)
