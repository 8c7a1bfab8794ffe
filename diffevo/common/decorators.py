# Copyright (c) Meta Platforms, Inc. and affiliates.
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.

import typing as tp
import functools
from . import errors


X = tp.TypeVar("X")


class Registry(tp.Mapping[str, X]):
    """Name to object mapping (optimizer presets, benchmark criteria...),
    with optional information attached to each entry.
    Registration is permanent, and looking up an unknown name raises an
    UnregisteredNameError listing the available names.
    """

    def __init__(self) -> None:
        super().__init__()
        self.data: tp.Dict[str, X] = {}
        self._information: tp.Dict[str, tp.Dict[str, tp.Any]] = {}

    def register(self, obj: X, info: tp.Optional[tp.Dict[str, tp.Any]] = None) -> X:
        """Decorator registering a function or class under its own name"""
        name = getattr(obj, "__name__", obj.__class__.__name__)
        self.register_name(name, obj, info)
        return obj

    def register_name(self, name: str, obj: X, info: tp.Optional[tp.Dict[str, tp.Any]] = None) -> None:
        if name in self.data:
            raise errors.DiffEvoRuntimeError(f'"{name}" is already registered')
        self.data[name] = obj
        self._information[name] = {} if info is None else dict(info)

    def register_with_info(self, **info: tp.Any) -> tp.Callable[[X], X]:
        """Decorator registering a function along with information about it, e.g.:
        @registry.register_with_info(maximum=1.0)
        """
        return functools.partial(self.register, info=info)  # type: ignore

    def get_info(self, name: str) -> tp.Dict[str, tp.Any]:
        self._check(name)
        return dict(self._information[name])

    def _check(self, name: str) -> None:
        if name not in self.data:
            raise errors.UnregisteredNameError(f'"{name}" is not registered, available: {sorted(self.data)}')

    def __getitem__(self, key: str) -> X:
        self._check(key)
        return self.data[key]

    def __contains__(self, key: object) -> bool:
        return key in self.data

    def __iter__(self) -> tp.Iterator[str]:
        return iter(self.data)

    def __len__(self) -> int:
        return len(self.data)
