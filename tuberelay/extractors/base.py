"""
视频信息提取器基类
"""
from abc import ABC, abstractmethod
from typing import Optional

from tuberelay.models import ResolvedVideo
from tuberelay.utils.config import AppConfig


class BaseExtractor(ABC):
    """视频信息提取器基类

    Everything that talks to the video site lives behind this interface, so
    changes on the upstream side never reach the normalizer or planner.
    """

    def __init__(self, config: AppConfig):
        self.config = config

    @abstractmethod
    def can_handle(self, url: str) -> bool:
        """检查是否可以处理该 URL"""
        pass

    @abstractmethod
    def extract(self, url: str, deadline: Optional[float] = None) -> ResolvedVideo:
        """
        提取视频信息 (blocking)

        Args:
            deadline: time.monotonic() value after which no new attempt starts

        Returns:
            ResolvedVideo: metadata plus every rendition the site offers

        Raises:
            InvalidSourceUrl: url is not a video page this extractor handles
            UpstreamUnavailable: the site could not be reached or refused
            UpstreamTimeout: the deadline passed before an answer arrived
        """
        pass

    def is_available(self) -> bool:
        return True
