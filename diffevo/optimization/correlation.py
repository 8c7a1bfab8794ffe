# Copyright (c) Meta Platforms, Inc. and affiliates.
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.

"""Post-run report on the parameters of the final population.

A quadratic model of the fitness is fitted on the best individual and its
nearest neighbors. The Hessian of the negated fitness at the maximum,
inverted, plays the role of a covariance matrix of the parameters: it gives
an estimate of the uncertainty of each parameter (how much it can move for a
given loss of fitness) and of the correlations between parameters.
"""

import logging
import warnings
import numpy as np
import pandas as pd
from sklearn.linear_model import LinearRegression
from sklearn.preprocessing import PolynomialFeatures
import diffevo.common.typing as tp
from diffevo.common import errors

logger = logging.getLogger(__name__)


def num_quadratic_coefficients(nvars: int) -> int:
    """Constant + linear + quadratic (including cross products) terms"""
    return 1 + nvars + nvars * (nvars + 1) // 2


class CorrelationReport(tp.NamedTuple):
    """Result of the parameter correlation analysis

    Attributes
    ----------
    best: np.ndarray
        parameters of the best individual of the population
    num_cases: int
        number of individuals used for fitting the quadratic model
    hessian: np.ndarray
        Hessian of the negated fitness around the best individual
    std: pd.Series
        estimated standard deviation of each parameter (NaN if the fit is not concave along it)
    correlations: pd.DataFrame
        estimated parameter correlations
    eigenvalues: np.ndarray
        eigenvalues of the Hessian, by decreasing order (sensitivity along each principal direction)
    eigenvectors: pd.DataFrame
        principal directions (columns) matching the eigenvalues
    """

    best: np.ndarray
    num_cases: int
    hessian: np.ndarray
    std: pd.Series
    correlations: pd.DataFrame
    eigenvalues: np.ndarray
    eigenvectors: pd.DataFrame

    def __str__(self) -> str:
        with pd.option_context("display.float_format", "{:.4f}".format):
            return "\n".join(
                [
                    f"Parameter correlations from {self.num_cases} cases around {self.best.tolist()}",
                    "Standard deviations:",
                    self.std.to_string(),
                    "Correlations:",
                    self.correlations.to_string(),
                    "Principal directions (columns) with sensitivity "
                    + " ".join(f"{x:.4g}" for x in self.eigenvalues),
                    self.eigenvectors.to_string(),
                ]
            )


class ParameterCorrelation:
    """Reporter computing a CorrelationReport from a population buffer
    (one individual per row, parameters followed by fitness).

    Parameters
    ----------
    names: sequence of str or None
        names of the parameters, defaults to "x0", "x1" ...
    case_factor: float
        number of cases used for the fit, as a multiple of the number of coefficients
        of the quadratic model (limited by the population size)
    """

    def __init__(self, names: tp.Optional[tp.Sequence[str]] = None, case_factor: float = 1.5) -> None:
        assert case_factor >= 1.0
        self.names = None if names is None else list(names)
        self.case_factor = case_factor

    def __call__(self, population: np.ndarray) -> CorrelationReport:
        report = self.compute(population)
        logger.info("%s", report)
        return report

    def compute(self, population: np.ndarray) -> CorrelationReport:
        # pylint: disable=too-many-locals
        popsize, nvars = population.shape[0], population.shape[1] - 1
        names = [f"x{i}" for i in range(nvars)] if self.names is None else self.names
        assert len(names) == nvars, f"Got {len(names)} names for {nvars} parameters"
        ncoefs = num_quadratic_coefficients(nvars)
        if popsize < ncoefs:
            raise errors.CorrelationReportError(
                f"Population of {popsize} is too small to fit {ncoefs} quadratic coefficients"
            )
        num_cases = min(popsize, int(self.case_factor * ncoefs))
        params, values = population[:, :nvars], population[:, nvars]
        best = params[int(np.argmax(values))].copy()
        # scale by the spread of each parameter, fixed parameters are not scaled
        scale = np.std(params, axis=0)
        scale[scale <= 0] = 1.0
        distances = np.sum(((params - best) / scale) ** 2, axis=1)
        selected = np.argsort(distances, kind="stable")[:num_cases]
        y = values[selected]
        if not max(y) - min(y) > 0:
            raise errors.CorrelationReportError("Fitness is constant around the best individual")
        X = (params[selected] - best) / scale
        features = PolynomialFeatures(degree=2)
        model = LinearRegression().fit(features.fit_transform(X), -y)  # negated fitness is convex around the max
        hessian = np.zeros((nvars, nvars))
        for coef, powers in zip(model.coef_, features.powers_):
            active = np.nonzero(powers)[0]
            if powers.sum() != 2:
                continue
            if active.size == 1:  # square term: d2/dx2 of c x^2 is 2c
                hessian[active[0], active[0]] = 2 * coef
            else:
                i, j = active
                hessian[i, j] = hessian[j, i] = coef
        hessian /= np.outer(scale, scale)  # back to the original units
        try:
            covariance = np.linalg.inv(hessian)
        except np.linalg.LinAlgError as e:
            raise errors.CorrelationReportError("Singular Hessian, parameters are not identifiable") from e
        variances = np.diag(covariance)
        if np.any(variances <= 0):
            warnings.warn(
                "The quadratic fit is not concave, some deviations are undefined",
                errors.IllConditionedReportWarning,
            )
        std = np.sqrt(np.where(variances > 0, variances, np.nan))
        with np.errstate(invalid="ignore", divide="ignore"):
            corr = covariance / np.outer(std, std)
        eigenvalues, eigenvectors = np.linalg.eigh(hessian)
        order = np.argsort(eigenvalues)[::-1]
        return CorrelationReport(
            best=best,
            num_cases=num_cases,
            hessian=hessian,
            std=pd.Series(std, index=names),
            correlations=pd.DataFrame(np.clip(corr, -1.0, 1.0), index=names, columns=names),
            eigenvalues=eigenvalues[order],
            eigenvectors=pd.DataFrame(eigenvectors[:, order], index=names),
        )
