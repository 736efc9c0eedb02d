"""Error taxonomy for the resolution and ranking pipeline.

Only `LocaleProviderError` can become user-visible, and only while a
non-empty search is active. Everything else is recovered where it happens.
"""


class LocaleEngineError(Exception):
    """Base class for all engine errors."""


class ProviderError(LocaleEngineError):
    """An upstream lookup failed (transport error, bad status, malformed body)."""


class ProviderDeniedError(ProviderError):
    """The upstream refused the request (access denied or rate limited).

    Aborts the remaining strategies of that provider, never the whole chain.
    """

    def __init__(self, provider: str, status: str):
        super().__init__(f"{provider} refused the request: {status}")
        self.provider = provider
        self.status = status


class LocaleProviderError(LocaleEngineError):
    """The top-level locale list fetch failed."""


class FetchAborted(LocaleEngineError):
    """A fetch was superseded or its owner went away."""


class LocationUnavailable(LocaleEngineError):
    """Device position is unknown: permission denied or no fix."""
