"""
Distribution Fitting

Fits univariate distributions to numeric data and draws from them.
'auto' picks the candidate with the best Kolmogorov-Smirnov goodness of
fit.
"""

import numpy as np
from typing import Dict
from dataclasses import dataclass
from scipy import stats
import logging

logger = logging.getLogger(__name__)


@dataclass
class DistributionParams:
    """Parameters for a statistical distribution"""
    distribution: str
    params: Dict[str, float]
    goodness_of_fit: float = 0.0

    def generate(self, size: int, rng: np.random.Generator) -> np.ndarray:
        """Generate random values from this distribution"""
        if self.distribution == "normal":
            return rng.normal(loc=self.params['mean'], scale=self.params['std'], size=size)
        elif self.distribution == "uniform":
            return rng.uniform(low=self.params['min'], high=self.params['max'], size=size)
        elif self.distribution == "exponential":
            return rng.exponential(scale=self.params['scale'], size=size)
        elif self.distribution == "lognormal":
            return rng.lognormal(mean=self.params['mean'], sigma=self.params['sigma'], size=size)
        elif self.distribution == "gamma":
            return rng.gamma(shape=self.params['shape'], scale=self.params['scale'], size=size)
        elif self.distribution == "constant":
            return np.full(size, self.params['value'], dtype=float)
        else:
            raise ValueError(f"Unknown distribution: {self.distribution}")


class DistributionFitter:
    """Fits statistical distributions to data"""

    def __init__(self):
        self.supported_distributions = [
            'normal', 'uniform', 'exponential', 'lognormal', 'gamma'
        ]

    def fit(self, data: np.ndarray, distribution: str = 'auto') -> DistributionParams:
        """
        Fit a distribution to data

        Args:
            data: Numeric data to fit
            distribution: Distribution name or 'auto' for best fit

        Returns:
            Distribution parameters
        """
        data = np.asarray(data, dtype=float)
        data = data[~np.isnan(data)]

        if len(data) == 0:
            raise ValueError("No valid data to fit")

        if np.ptp(data) == 0:
            return DistributionParams("constant", {'value': float(data[0])}, goodness_of_fit=1.0)

        if distribution != 'auto':
            return self._fit_distribution(data, distribution)

        best_params = None
        best_gof = -np.inf

        for dist in self.supported_distributions:
            try:
                params = self._fit_distribution(data, dist)
            except (ValueError, FloatingPointError, RuntimeError) as e:
                logger.debug(f"Failed to fit {dist}: {e}")
                continue
            if params.goodness_of_fit > best_gof:
                best_gof = params.goodness_of_fit
                best_params = params

        if best_params is None:
            best_params = self._fit_distribution(data, 'normal')

        return best_params

    def _fit_distribution(self, data: np.ndarray, distribution: str) -> DistributionParams:
        """Fit a specific distribution"""
        if distribution == 'normal':
            params = {'mean': float(np.mean(data)), 'std': float(np.std(data))}

        elif distribution == 'uniform':
            params = {'min': float(np.min(data)), 'max': float(np.max(data))}

        elif distribution == 'exponential':
            if np.min(data) < 0:
                raise ValueError("exponential requires non-negative data")
            params = {'scale': float(np.mean(data))}

        elif distribution == 'lognormal':
            if np.min(data) <= 0:
                raise ValueError("lognormal requires positive data")
            log_data = np.log(data)
            params = {'mean': float(np.mean(log_data)), 'sigma': float(np.std(log_data))}

        elif distribution == 'gamma':
            if np.min(data) <= 0:
                raise ValueError("gamma requires positive data")
            shape, _, scale = stats.gamma.fit(data, floc=0)
            params = {'shape': float(shape), 'scale': float(scale)}

        else:
            raise ValueError(f"Unknown distribution: {distribution}")

        gof = self._goodness_of_fit(data, distribution, params)

        return DistributionParams(
            distribution=distribution,
            params=params,
            goodness_of_fit=gof
        )

    def _goodness_of_fit(self, data: np.ndarray, distribution: str, params: Dict) -> float:
        """Calculate goodness of fit using KS test"""
        if distribution == 'normal':
            if params['std'] == 0:
                return 0.0
            ks_stat, _ = stats.kstest(data, 'norm', args=(params['mean'], params['std']))
        elif distribution == 'uniform':
            ks_stat, _ = stats.kstest(data, 'uniform', args=(params['min'], params['max'] - params['min']))
        elif distribution == 'exponential':
            ks_stat, _ = stats.kstest(data, 'expon', args=(0, params['scale']))
        elif distribution == 'lognormal':
            ks_stat, _ = stats.kstest(data, 'lognorm', args=(params['sigma'], 0, np.exp(params['mean'])))
        elif distribution == 'gamma':
            ks_stat, _ = stats.kstest(data, 'gamma', args=(params['shape'], 0, params['scale']))
        else:
            return 0.0

        return 1.0 - ks_stat
