"""
Interface of the camera decoder used by the scan arbiter.

The decoding library itself is an external collaborator. Adapters wrap it
behind BaseDecoder so the arbiter can start, pause, resume and stop it
without knowing which library runs underneath.
"""

from abc import ABC, abstractmethod
from typing import Callable

from models import ScanFormat

DecodeCallback = Callable[[str, ScanFormat], None]


class BaseDecoder(ABC):
    """
    Camera decode loop emitting ``(decoded_text, format_hint)``.

    Contract:
    - ``start(on_decoded)`` begins emitting on every successful frame decode,
      typically 5-10 times per second, including repeats for a symbol that
      stays in view
    - ``pause()`` keeps the viewfinder live but stops emitting
    - ``resume()`` starts emitting again after a pause
    - ``stop()`` returns only once the decode loop has actually stopped
    """

    @abstractmethod
    def start(self, on_decoded: DecodeCallback) -> None:
        ...

    @abstractmethod
    def pause(self) -> None:
        ...

    @abstractmethod
    def resume(self) -> None:
        ...

    @abstractmethod
    def stop(self) -> None:
        ...

    @property
    @abstractmethod
    def is_scanning(self) -> bool:
        ...
