# Copyright (c) Meta Platforms, Inc. and affiliates.
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.


# base classes


class DiffEvoError(Exception):
    """Base class for error raised by diffevo"""


class DiffEvoWarning(Warning):
    pass


# errors
# pylint: disable=too-many-ancestors


class DiffEvoRuntimeError(RuntimeError, DiffEvoError):
    """Runtime error raised by diffevo"""


class DiffEvoValueError(ValueError, DiffEvoError):
    """Invalid problem or configuration value"""


class CorrelationReportError(DiffEvoRuntimeError):
    """The post-run parameter correlation report could not be computed"""


class UnregisteredNameError(KeyError, DiffEvoValueError):
    """Lookup of a name missing from a registry"""


# warnings


class DiffEvoRuntimeWarning(RuntimeWarning, DiffEvoWarning):
    """Runtime warning raise by diffevo"""


class EvaluationEscapeWarning(DiffEvoRuntimeWarning):
    """Initialization gave up after too many unusable evaluations"""


class IllConditionedReportWarning(DiffEvoRuntimeWarning):
    """The quadratic fit of the correlation report is not concave"""
