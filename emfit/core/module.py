from __future__ import annotations
import dataclasses
import json
from abc import ABC
from pathlib import Path
from typing import Any, Generic, get_args, get_origin, Type, TypeVar
import torch
from torch import nn

C = TypeVar("C")
M = TypeVar("M", bound="ConfigModule")  # type: ignore

_CONFIG_FILE = "config.json"
_BUFFERS_FILE = "parameters.pt"


def generic_argument(cls: type, origin: type) -> Any:
    """
    Returns the type argument that ``cls`` passes to the generic base class ``origin``.
    """
    for base in getattr(cls, "__orig_bases__", ()):
        if get_origin(base) is origin:
            args = get_args(base)
            if args:
                return args[0]
    raise ValueError(f"`{cls.__name__}` does not parametrize `{origin.__name__}`")


class ConfigModule(nn.Module, Generic[C], ABC):
    """
    Module whose buffer shapes follow entirely from a dataclass configuration. Saving writes the
    configuration as JSON next to the state dict, which is all that :meth:`load` needs to
    rebuild the module.
    """

    def __init__(self, config: C):
        super().__init__()
        self.config = config

    @classmethod
    def load(cls: Type[M], path: Path) -> M:
        """
        Rebuilds a module from a directory written by :meth:`save`.
        """
        assert path.is_dir(), "Modules can only be loaded from a directory."

        with (path / _CONFIG_FILE).open("r") as f:
            config = generic_argument(cls, ConfigModule)(**json.load(f))
        module = cls(config)
        with (path / _BUFFERS_FILE).open("rb") as f:
            module.load_state_dict(torch.load(f, weights_only=True))
        return module

    def save(self, path: Path) -> None:
        """
        Writes ``config.json`` and ``parameters.pt`` into the given existing directory.
        """
        assert path.is_dir(), "Modules can only be saved to a directory."

        with (path / _CONFIG_FILE).open("w+") as f:
            json.dump(dataclasses.asdict(self.config), f)
        with (path / _BUFFERS_FILE).open("wb+") as f:
            torch.save(self.state_dict(), f)
