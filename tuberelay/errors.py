"""
Error taxonomy shared by the catalog and delivery pipeline.

Every error carries a machine-checkable ``kind`` plus a human-readable
``detail``; the HTTP layer renders both and uses ``status_code``.
"""
from __future__ import annotations


class DeliveryError(Exception):
    """Base class for every failure surfaced to a caller."""

    kind = "DeliveryError"
    status_code = 500
    retryable = False

    def __init__(self, detail: str | None = None):
        self.detail = detail or self.default_detail()
        super().__init__(self.detail)

    @classmethod
    def default_detail(cls) -> str:
        return cls.kind

    def to_dict(self) -> dict[str, str]:
        return {"error": self.kind, "details": self.detail}


class InvalidSourceUrl(DeliveryError):
    kind = "InvalidSourceUrl"
    status_code = 400

    @classmethod
    def default_detail(cls) -> str:
        return "Invalid YouTube URL"


class NoCompatibleRenditions(DeliveryError):
    kind = "NoCompatibleRenditions"
    status_code = 422

    @classmethod
    def default_detail(cls) -> str:
        return "No compatible formats found for this video"


class FormatNotFound(DeliveryError):
    """The requested identifier is not in the current rendition list.

    Rendition lists are not stable across calls, so callers should re-fetch
    the catalog before retrying.
    """

    kind = "FormatNotFound"
    status_code = 404

    @classmethod
    def default_detail(cls) -> str:
        return "Requested format not found"


class UpstreamUnavailable(DeliveryError):
    kind = "UpstreamUnavailable"
    status_code = 502
    retryable = True

    @classmethod
    def default_detail(cls) -> str:
        return "Failed to fetch video information"


class UpstreamTimeout(UpstreamUnavailable):
    kind = "UpstreamTimeout"
    status_code = 504

    @classmethod
    def default_detail(cls) -> str:
        return "Timed out waiting for the video site"


class MergeFailed(DeliveryError):
    kind = "MergeFailed"
    status_code = 500

    @classmethod
    def default_detail(cls) -> str:
        return "Failed to merge video and audio"
