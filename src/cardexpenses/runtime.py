from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Callable, Generic, Optional, TypeVar

from PIL import Image


log = logging.getLogger(__name__)

T = TypeVar("T")


class LazyHandle(Generic[T]):
    """
    Process-wide value that is loaded once and reused.

    `initialize()` runs the loader at most once, even under concurrent callers; `get()`
    initializes on first use. `reset()` exists for tests.
    """

    def __init__(self, name: str, loader: Callable[[], T]) -> None:
        self.name = name
        self._loader = loader
        self._lock = threading.Lock()
        self._loaded = False
        self._value: Optional[T] = None

    @property
    def loaded(self) -> bool:
        return self._loaded

    def initialize(self) -> T:
        with self._lock:
            if not self._loaded:
                log.debug("Initializing %s", self.name)
                self._value = self._loader()
                self._loaded = True
            return self._value  # type: ignore[return-value]

    def get(self) -> T:
        if self._loaded:
            return self._value  # type: ignore[return-value]
        return self.initialize()

    def reset(self) -> None:
        with self._lock:
            self._loaded = False
            self._value = None


def _init_image_codecs() -> tuple[str, ...]:
    Image.init()
    return tuple(sorted(Image.OPEN))


IMAGE_CODECS: LazyHandle[tuple[str, ...]] = LazyHandle("image codecs", _init_image_codecs)


_LOGO_HANDLES: dict[str, LazyHandle[Optional[bytes]]] = {}
_LOGO_LOCK = threading.Lock()


def logo_handle(path: Optional[str]) -> LazyHandle[Optional[bytes]]:
    """Load-once handle for the header logo bytes, shared per path; a missing or unreadable file yields None."""
    key = path or ""
    with _LOGO_LOCK:
        handle = _LOGO_HANDLES.get(key)
        if handle is None:
            handle = _LOGO_HANDLES[key] = _new_logo_handle(path)
        return handle


def _new_logo_handle(path: Optional[str]) -> LazyHandle[Optional[bytes]]:
    def _load() -> Optional[bytes]:
        if not path:
            return None
        try:
            return Path(path).expanduser().read_bytes()
        except OSError as e:
            log.warning("Logo %s unavailable: %s", path, e)
            return None

    return LazyHandle(f"logo {path or '-'}", _load)
