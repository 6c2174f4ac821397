"""
Particle diameter distributions.

Every source owns its random generator seeded from the configuration, so
sources created with the same seed on different ranks produce identical
sequences.
"""

import logging
import math
import time

import numpy as np

from ..config import ConfigurationError, DistributionConfig, DistributionKind

logger = logging.getLogger(__name__)


def resolve_seed(random_seed: int) -> int:
    """Negative seeds are replaced by the current time."""
    return int(random_seed) if random_seed >= 0 else int(time.time())


def mean_diameters_from_sieve_sizes(sieve_sizes):
    """Geometric mean of consecutive sieve sizes."""
    sizes = np.asarray(sieve_sizes, dtype=float)
    if len(sizes) < 2:
        raise ConfigurationError("At least two sieve sizes are required")
    return np.sqrt(sizes[:-1] * sizes[1:])


def percentile_from_sieve_distribution(diameters, mass_fractions, percentile: float) -> float:
    """
    Diameter below which `percentile` % of the mass lies.

    The cumulative mass fraction is interpolated logarithmically in the diameter.
    """
    diameters = np.asarray(diameters, dtype=float)
    fractions = np.asarray(mass_fractions, dtype=float)
    order = np.argsort(diameters)
    diameters, fractions = diameters[order], fractions[order]
    cumulative = np.cumsum(fractions) / np.sum(fractions)
    return float(np.exp(np.interp(percentile / 100.0, cumulative, np.log(diameters))))


def particle_numbers_from_mass_fractions(diameters, mass_fractions, normal_volume: float,
                                         total_mass: float, density: float):
    """Expected number of particles per class for the given total mass."""
    diameters = np.asarray(diameters, dtype=float)
    fractions = np.asarray(mass_fractions, dtype=float)
    particle_mass = density * normal_volume * diameters ** 3
    return fractions * total_mass / particle_mass


class DiameterSource:
    """Base class of the diameter distributions."""

    def get(self) -> float:
        raise NotImplementedError

    def generation_range(self):
        """(minimum, maximum) diameter the source can produce."""
        raise NotImplementedError


class UniformDiameter(DiameterSource):

    def __init__(self, diameter: float):
        self.diameter = float(diameter)

    def get(self):
        return self.diameter

    def generation_range(self):
        return self.diameter, self.diameter


class LogNormalDiameter(DiameterSource):
    """exp(X) with X normally distributed with mean `mu` and variance `variance`."""

    def __init__(self, mu: float, variance: float, seed: int):
        self.mu = float(mu)
        self.sigma = math.sqrt(variance)
        self.rng = np.random.default_rng(seed)

    def get(self):
        return float(self.rng.lognormal(self.mu, self.sigma))

    def generation_range(self):
        # practically bounded by 4 standard deviations
        return math.exp(self.mu - 4.0 * self.sigma), math.exp(self.mu + 4.0 * self.sigma)


class DiscreteSieving(DiameterSource):
    """Diameter classes drawn with probabilities proportional to their expected particle numbers."""

    def __init__(self, diameters, mass_fractions, seed: int, normal_volume: float,
                 total_mass: float, density: float):
        self.diameters = np.asarray(diameters, dtype=float)
        self.mass_fractions = np.asarray(mass_fractions, dtype=float)
        if len(self.diameters) != len(self.mass_fractions):
            raise ConfigurationError("Number of diameters and mass fractions differ")
        numbers = particle_numbers_from_mass_fractions(self.diameters, self.mass_fractions, normal_volume,
                                                       total_mass, density)
        if np.sum(numbers) <= 0.0:
            raise ConfigurationError("Mass fractions must contain at least one positive entry")
        self.expected_numbers = numbers
        self.probabilities = numbers / np.sum(numbers)
        self.rng = np.random.default_rng(seed)
        logger.info(f"Expected particle numbers per class: {np.array2string(numbers, precision=1)}")

    def draw_class(self) -> int:
        return int(self.rng.choice(len(self.probabilities), p=self.probabilities))

    def get(self):
        return float(self.diameters[self.draw_class()])

    def generation_range(self):
        used = self.diameters[self.mass_fractions > 0.0]
        return float(used.min()), float(used.max())


class ContinuousSieving(DiscreteSieving):
    """Sieve class drawn like DiscreteSieving, diameter log-uniform inside the sieve interval."""

    def __init__(self, sieve_sizes, mass_fractions, seed: int, normal_volume: float,
                 total_mass: float, density: float):
        self.sieve_sizes = np.asarray(sieve_sizes, dtype=float)
        if len(self.sieve_sizes) != len(mass_fractions) + 1:
            raise ConfigurationError("Sieving curve needs one more sieve size than mass fractions")
        super().__init__(mean_diameters_from_sieve_sizes(self.sieve_sizes), mass_fractions, seed,
                         normal_volume, total_mass, density)

    def get(self):
        k = self.draw_class()
        lo, hi = sorted((self.sieve_sizes[k], self.sieve_sizes[k + 1]))
        return float(math.exp(self.rng.uniform(math.log(lo), math.log(hi))))

    def generation_range(self):
        used = np.nonzero(self.mass_fractions > 0.0)[0]
        bounds = np.concatenate([self.sieve_sizes[used], self.sieve_sizes[used + 1]])
        return float(bounds.min()), float(bounds.max())


def create_diameter_source(config: DistributionConfig, normal_volume: float,
                           total_mass: float, density: float, seed=None) -> DiameterSource:
    if seed is None:
        seed = resolve_seed(config.random_seed)
    kind = config.kind
    if kind == DistributionKind.UNIFORM:
        return UniformDiameter(config.uniform_diameter)
    if kind == DistributionKind.LOG_NORMAL:
        return LogNormalDiameter(config.lognormal_mu, config.lognormal_variance, seed)
    if kind == DistributionKind.MASS_FRACTIONS:
        return DiscreteSieving(config.diameters, config.mass_fractions, seed, normal_volume, total_mass, density)
    if kind == DistributionKind.SIEVING_CURVE:
        diameters = mean_diameters_from_sieve_sizes(config.sieve_sizes)
        d50 = percentile_from_sieve_distribution(diameters, config.mass_fractions, 50.0)
        d16 = percentile_from_sieve_distribution(diameters, config.mass_fractions, 16.0)
        d84 = percentile_from_sieve_distribution(diameters, config.mass_fractions, 84.0)
        logger.info(f"Curve properties: D50 = {d50:.4g}, D16 = {d16:.4g}, D84 = {d84:.4g}, "
                    f"estimated std. dev. = {math.sqrt(d84 / d16):.4g}")
        if config.use_discrete_form:
            return DiscreteSieving(diameters, config.mass_fractions, seed, normal_volume, total_mass, density)
        return ContinuousSieving(config.sieve_sizes, config.mass_fractions, seed, normal_volume,
                                 total_mass, density)
    raise ConfigurationError(f"Unknown particle distribution {kind}")
