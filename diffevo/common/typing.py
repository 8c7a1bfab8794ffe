# Copyright (c) Meta Platforms, Inc. and affiliates.
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.

"""Type aliases shared by the package, and the protocols of the
collaborators which can be injected in the optimizer.
"""
# pylint: disable=unused-import
from typing import Any as Any
from typing import Callable as Callable
from typing import Dict as Dict
from typing import List as List
from typing import NamedTuple as NamedTuple
from typing import Optional as Optional
from typing import Sequence as Sequence
from typing import Tuple as Tuple
from typing import Type as Type
from typing import Union as Union
from typing_extensions import Protocol

import numpy as _np


ArrayLike = Union[Tuple[float, ...], List[float], _np.ndarray]
# the criterion is maximized, it receives the parameters and the current minimum trial threshold
Criterion = Callable[[_np.ndarray, int], float]
RandomStateLike = Union[None, int, _np.random.RandomState]
UnivariateFunction = Callable[[float], float]


class UniformSource(Protocol):
    """Random source, the only draws used are uniform in [0, 1)"""

    # pylint: disable=pointless-statement

    def uniform(self) -> float:
        ...


class StatisticsChannel(Protocol):
    """Observational side channel, enabled during the initialization only"""

    # pylint: disable=pointless-statement

    def enable(self) -> None:
        ...

    def disable(self) -> None:
        ...
