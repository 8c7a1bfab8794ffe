# Copyright (c) Meta Platforms, Inc. and affiliates.
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.

from .base import registry
from .base import OptimizationResult
from .base import SUCCESS, ALLOCATION_FAILURE, REPORT_FAILURE
from .bounds import Bounds
from .differentialevolution import DifferentialEvolution
from .differentialevolution import diff_ev
