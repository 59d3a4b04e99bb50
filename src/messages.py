#!/usr/bin/env python3
"""
Request/response envelope between the cycle coordinator and the page session.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union


@dataclass(frozen=True)
class Ping:
    pass


@dataclass(frozen=True)
class GenerateVideo:
    fields: Dict[str, str]
    row_index: int


@dataclass(frozen=True)
class PrepareDownload:
    filename: str


@dataclass(frozen=True)
class CheckDownloads:
    limit: int = 10


@dataclass(frozen=True)
class CheckUnprocessed:
    pass


Request = Union[Ping, GenerateVideo, PrepareDownload, CheckDownloads, CheckUnprocessed]


@dataclass
class Response:
    success: bool
    error: Optional[str] = None
    error_type: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, **data) -> "Response":
        return cls(success=True, data=data)

    @classmethod
    def failure(cls, exc: BaseException) -> "Response":
        data = {}
        if getattr(exc, 'channel_closed', False):
            data['reloading'] = True
        return cls(success=False, error=str(exc), error_type=type(exc).__name__, data=data)

    def to_dict(self) -> Dict[str, Any]:
        result = {'success': self.success}
        if self.error is not None:
            result['error'] = self.error
        result.update(self.data)
        return result
