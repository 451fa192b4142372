from __future__ import annotations

import unittest
from unittest import mock
from urllib.parse import parse_qs

import httpx
import requests

from enginesis.http_client import (
    HttpxTransport,
    RequestsTransport,
    TransportError,
    convert_params_to_form_data,
    select_transport,
)


class FormDataTests(unittest.TestCase):
    def test_conversion(self):
        form = convert_params_to_form_data(
            {
                "fn": "GameGet",
                "game_id": 1099,
                "flag": True,
                "off": False,
                "ids": [1, 2, 3],
                "meta": {"a": 1},
                "skip": None,
                "callback": lambda r: None,
            }
        )
        self.assertEqual(
            form,
            {
                "fn": "GameGet",
                "game_id": "1099",
                "flag": "true",
                "off": "false",
                "ids": "1,2,3",
                "meta": '{"a": 1}',
            },
        )


class HttpxTransportTests(unittest.IsolatedAsyncioTestCase):
    async def test_posts_form_and_returns_any_status(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["method"] = request.method
            seen["url"] = str(request.url)
            seen["form"] = parse_qs(request.content.decode("utf-8"))
            return httpx.Response(503, text="busy")

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        transport = HttpxTransport(client=client)
        resp = await transport.post_form("https://www.enginesis.com/index.php", {"fn": "GameGet", "game_id": "1"})
        await client.aclose()

        self.assertEqual(resp.status_code, 503)
        self.assertEqual(resp.text, "busy")
        self.assertEqual(seen["method"], "POST")
        self.assertEqual(seen["url"], "https://www.enginesis.com/index.php")
        self.assertEqual(seen["form"], {"fn": ["GameGet"], "game_id": ["1"]})

    async def test_connection_error_becomes_transport_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        transport = HttpxTransport(client=client)
        with self.assertRaises(TransportError):
            await transport.post_form("https://www.enginesis.com/index.php", {"fn": "GameGet"})
        await client.aclose()

    async def test_closed_transport_is_unavailable(self):
        transport = HttpxTransport()
        self.assertTrue(transport.is_available())
        await transport.aclose()
        self.assertFalse(transport.is_available())

        fallback = RequestsTransport()
        self.assertIs(select_transport([transport, fallback]), fallback)
        self.assertIsNone(select_transport([transport]))
        fallback.close()


class RequestsTransportTests(unittest.IsolatedAsyncioTestCase):
    async def test_success(self):
        session = requests.Session()
        reply = mock.Mock(status_code=200, text='{"results": {}}')
        with mock.patch.object(session, "post", return_value=reply) as post:
            resp = await RequestsTransport(session=session).post_form("https://h/index.php", {"fn": "GameGet"})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json(), {"results": {}})
        post.assert_called_once()
        self.assertEqual(post.call_args.kwargs["data"], {"fn": "GameGet"})

    async def test_retries_once_then_raises(self):
        session = requests.Session()
        with mock.patch.object(
            session, "post", side_effect=requests.exceptions.ConnectionError("reset")
        ) as post:
            with self.assertRaises(TransportError):
                await RequestsTransport(session=session).post_form("https://h/index.php", {"fn": "GameGet"})
        self.assertEqual(post.call_count, 2)
        self.assertEqual(post.call_args.kwargs["headers"]["Connection"], "close")

    async def test_timeout_is_not_retried(self):
        session = requests.Session()
        with mock.patch.object(session, "post", side_effect=requests.exceptions.Timeout("slow")) as post:
            with self.assertRaises(TransportError):
                await RequestsTransport(session=session).post_form("https://h/index.php", {"fn": "GameGet"})
        self.assertEqual(post.call_count, 1)


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
