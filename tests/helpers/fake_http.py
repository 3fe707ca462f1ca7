import json as _json


class FakeResponse:
    """
    Stand-in for aiohttp.ClientResponse used as `async with session.get(...) as resp`.
    Set `json_exc` to make .json() raise (e.g. ValueError for a bad body).
    """
    def __init__(self, status=200, payload=None, body=None, json_exc=None):
        self.status = status
        self._payload = payload
        self._body = body if body is not None else _json.dumps(payload)
        self._json_exc = json_exc

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    async def json(self, content_type="application/json", **kw):
        if self._json_exc is not None:
            raise self._json_exc
        return self._payload

    async def text(self):
        return self._body


class _Raising:
    def __init__(self, exc):
        self._exc = exc

    async def __aenter__(self):
        raise self._exc

    async def __aexit__(self, exc_type, exc, tb):
        return False


class FakeSession:
    """
    Minimal aiohttp.ClientSession double.
    `handler(method, url, params)` returns a FakeResponse or an exception instance
    (raised when the request is entered). Every call is recorded in `calls`.
    """
    def __init__(self, handler):
        self._handler = handler
        self.calls = []
        self.closed = False

    def _request(self, method, url, params=None, **kw):
        self.calls.append({"method": method, "url": url, "params": params, **kw})
        res = self._handler(method, url, params)
        if isinstance(res, BaseException):
            return _Raising(res)
        return res

    def get(self, url, params=None, **kw):
        return self._request("GET", url, params, **kw)

    def post(self, url, **kw):
        return self._request("POST", url, None, **kw)

    async def close(self):
        self.closed = True
