from collections.abc import Callable
from typing import Any, TypeVar

from perilbus.datastructures import Disposition

T = TypeVar("T")

Handler = Callable[[T], Disposition]
AnyHandler = Callable[[Any], Any]
