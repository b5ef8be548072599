"""Shared httpx client lifecycle for the adapters that call out over HTTP."""

import httpx

from config.defaults import DEFAULTS


class HttpClientOwner:
    """Holds an httpx client; closes it only if this object created it.

    Injected clients belong to the caller and are left open.
    """

    _client = None
    _owns_client = False

    def _init_client(self, client=None, **kwargs):
        if client is not None:
            self._client = client
            self._owns_client = False
        else:
            kwargs.setdefault("timeout", DEFAULTS["http_timeout"])
            self._client = httpx.Client(**kwargs)
            self._owns_client = True
        return self._client

    def close(self):
        if self._owns_client and self._client is not None:
            self._client.close()
            self._owns_client = False

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
