# Copyright (c) Meta Platforms, Inc. and affiliates.
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.

import argparse
import logging
import os
import numpy as np
import diffevo.common.typing as tp
from diffevo.functions import corefuncs
from diffevo.optimization import callbacks
from diffevo.optimization import base
from diffevo.optimization.differentialevolution import DifferentialEvolution

logger = logging.getLogger(__name__)


# pylint: disable=too-many-arguments
def launch(
    criterion: str,
    nvars: int,
    nints: int = 0,
    low: float = -5.0,
    high: float = 5.0,
    seed: tp.Optional[int] = None,
    print_progress: bool = False,
    **config: tp.Any,
) -> base.OptimizationResult:
    """Maximizes a registered criterion on the box [low, high]^nvars"""
    func = corefuncs.registry[criterion]
    if not corefuncs.registry.get_info(criterion)["positive"]:
        logger.warning("%s is never strictly positive, no individual will be usable for initialization", criterion)
    optimizer = DifferentialEvolution(**config)(
        np.full(nvars, low), np.full(nvars, high), nints=nints, random_state=seed
    )
    if print_progress:
        printer = callbacks.OptimizationPrinter()
        for event in callbacks.EVENTS:
            optimizer.register_callback(event, printer)
    return optimizer.maximize(func)


def _overinit(value: str) -> tp.Union[int, str]:
    if value == "popsize":
        return value
    try:
        return int(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f'expected an integer or "popsize" (got {value!r})') from e


def get_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Maximize a registered criterion with differential evolution.")
    parser.add_argument(
        "criterion", type=str, choices=sorted(corefuncs.registry), help="name of a registered criterion"
    )
    parser.add_argument("--nvars", type=int, default=2, help="number of variables")
    parser.add_argument("--nints", type=int, default=0, help="number of leading integer variables")
    parser.add_argument("--low", type=float, default=-5.0, help="lower bound of all variables")
    parser.add_argument("--high", type=float, default=5.0, help="upper bound of all variables")
    parser.add_argument("--popsize", type=int, default=50, help="population size")
    parser.add_argument(
        "--overinit",
        type=_overinit,
        default=0,
        help='number of over-initialization candidates, or "popsize" for as many as the population size',
    )
    parser.add_argument("--mintrades", type=int, default=1, help="initial minimum trial threshold")
    parser.add_argument(
        "--max_evals", type=int, default=1_000_000, help="safety cap on the evaluations of the initialization"
    )
    parser.add_argument(
        "--max_bad_gen", type=int, default=50, help="contiguous generations without improvement before stopping"
    )
    parser.add_argument("--mutate_dev", type=float, default=0.8, help="differential mutation weight")
    parser.add_argument("--pcross", type=float, default=0.5, help="crossover probability")
    parser.add_argument("--pclimb", type=float, default=0.0, help="hill-climbing probability")
    parser.add_argument("--seed", type=int, default=None, help="Use a seed for reproducibility")
    parser.add_argument("--print_progress", action="store_true", help="print the progress of the run")
    return parser.parse_args()


def main() -> None:
    logging.basicConfig(level=os.environ.get("LOGLEVEL", "WARNING"))
    args = get_args()
    result = launch(**vars(args))
    print(f"Best parameters: {result.parameters.tolist()}")
    print(f"Best fitness: {result.fitness}")
    print(f"Status: {result.status} ({result.num_generations} generations, {result.num_evals} evaluations)")


if __name__ == "__main__":
    main()
