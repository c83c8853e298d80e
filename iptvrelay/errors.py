"""Exceptions raised inside the relay"""


class RelayError(Exception):
    """Base class for relay errors"""


class SourceUnavailable(RelayError):
    """One upstream listing strategy failed"""

    def __init__(self, tag: str, reason: str):
        super().__init__(f"{tag}: {reason}")
        self.tag = tag
        self.reason = reason


class UpstreamProxyFailure(RelayError):
    """The proxied upstream could not be reached or answered with an error"""

    def __init__(self, url: str, reason: str, status_code: int = 0):
        super().__init__(f"{url}: {reason}")
        self.url = url
        self.reason = reason
        self.status_code = status_code
