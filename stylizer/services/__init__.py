"""Services package initialization."""

from .poll_loop import PollLoop
from .result_cache import ResultCache
from .transformation_client import TransformationClient
from .stylizer import StylizerSession

__all__ = ["PollLoop", "ResultCache", "TransformationClient", "StylizerSession"]
