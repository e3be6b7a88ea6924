"""Bind process-wide objects (store, config, authenticator) into a FastAPI app.

Handlers declare `store: Injected[ObjectStore]`; `bind(app, ObjectStore, store)`
decides what they receive.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Annotated, Any, Callable, TypeVar

from fastapi import Depends, FastAPI

T = TypeVar("T")


@lru_cache(maxsize=None)
def _provider(tp: type) -> Callable[[], Any]:
    def provide() -> Any:
        raise RuntimeError(f"no {tp.__name__} bound to this application")

    provide.__name__ = f"provide_{tp.__name__}"
    return provide


def bind(app: FastAPI, tp: type[T], value: T) -> None:
    app.dependency_overrides[_provider(tp)] = lambda: value


class Injected:
    def __class_getitem__(cls, tp: type) -> Any:
        return Annotated[tp, Depends(_provider(tp))]
