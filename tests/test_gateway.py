"""Tests for the completion gateway service and its HTTP surface."""

from __future__ import annotations

import json
import unittest

import httpx

from august_chat.config import ServerConfig, ServerSecrets
from august_chat.exceptions import (
    GatewayAuthError,
    GatewayConfigurationError,
    GatewayRequestError,
    UpstreamProviderError,
)
from august_chat.gateway.server import create_app
from august_chat.gateway.service import CompletionGateway, parse_bearer, parse_request

SECRETS = ServerSecrets(
    identity_url="https://auth.example.test",
    service_role_key="service-secret",
    provider_api_key="provider-secret",
)
PROVIDER_URL = "https://provider.example.test/v1/chat/completions"


def _completion(content: str) -> dict:
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


class UpstreamStub:
    """Records provider and identity calls and answers from a script."""

    def __init__(self, provider_responses: list[httpx.Response], user_status: int = 200) -> None:
        self.provider_responses = list(provider_responses)
        self.user_status = user_status
        self.provider_payloads: list[dict] = []
        self.provider_headers: list[httpx.Headers] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.path == "/auth/v1/user":
            if self.user_status != 200:
                return httpx.Response(self.user_status, json={"msg": "invalid JWT"})
            return httpx.Response(200, json={"id": "user-1"})
        self.provider_payloads.append(json.loads(request.content))
        self.provider_headers.append(request.headers)
        return self.provider_responses.pop(0)


class ParseTests(unittest.TestCase):
    def test_parse_bearer(self) -> None:
        self.assertEqual(parse_bearer("Bearer abc"), "abc")
        self.assertEqual(parse_bearer("bearer  abc "), "abc")
        self.assertIsNone(parse_bearer("Basic abc"))
        self.assertIsNone(parse_bearer("Bearer "))
        self.assertIsNone(parse_bearer(None))

    def test_invalid_json(self) -> None:
        with self.assertRaises(GatewayRequestError) as ctx:
            parse_request(b"{oops")
        self.assertEqual(ctx.exception.error, "Invalid JSON body")

    def test_messages_must_be_non_empty_array(self) -> None:
        for body in ({"messages": []}, {"messages": "hi"}, {}):
            with self.subTest(body=body):
                with self.assertRaises(GatewayRequestError) as ctx:
                    parse_request(json.dumps(body))
                self.assertEqual(ctx.exception.error, "messages must be a non-empty array")

    def test_invalid_message_reports_detail(self) -> None:
        with self.assertRaises(GatewayRequestError) as ctx:
            parse_request(json.dumps({"messages": [{"role": "tool", "content": "x"}]}))
        self.assertEqual(ctx.exception.error, "Invalid request body")
        self.assertTrue(ctx.exception.detail)

    def test_enable_web_alias(self) -> None:
        request = parse_request(
            json.dumps({"messages": [{"role": "user", "content": "hi"}], "enableWeb": True})
        )
        self.assertTrue(request.enable_web)


class CompletionGatewayTests(unittest.IsolatedAsyncioTestCase):
    """Validate authentication and shape negotiation."""

    def _gateway(self, stub: UpstreamStub, **config) -> CompletionGateway:  # type: ignore[no-untyped-def]
        client = httpx.AsyncClient(transport=httpx.MockTransport(stub))
        self.addAsyncCleanup(client.aclose)
        return CompletionGateway(
            ServerConfig(provider_url=PROVIDER_URL, **config), SECRETS, http_client=client
        )

    def _body(self, model: str = "openai/gpt-4o", enable_web: bool = True) -> str:
        return json.dumps(
            {
                "messages": [{"role": "user", "content": "Hello"}],
                "model": model,
                "enableWeb": enable_web,
            }
        )

    async def test_first_success_stops_negotiation(self) -> None:
        stub = UpstreamStub(
            [httpx.Response(400, text="unsupported"), httpx.Response(200, json=_completion("Hi"))]
        )
        gateway = self._gateway(stub)
        content = await gateway.complete("Bearer tok", self._body())
        self.assertEqual(content, "Hi")
        self.assertEqual(len(stub.provider_payloads), 2)
        self.assertIn("web_search_options", stub.provider_payloads[0])
        self.assertIn("tools", stub.provider_payloads[1])

    async def test_provider_headers(self) -> None:
        stub = UpstreamStub([httpx.Response(200, json=_completion("ok"))])
        gateway = self._gateway(stub, referer="https://app.test", title="Test App")
        await gateway.complete("Bearer tok", self._body(enable_web=False))
        headers = stub.provider_headers[0]
        self.assertEqual(headers["Authorization"], "Bearer provider-secret")
        self.assertEqual(headers["HTTP-Referer"], "https://app.test")
        self.assertEqual(headers["X-Title"], "Test App")

    async def test_exhaustion_reports_last_detail(self) -> None:
        stub = UpstreamStub(
            [
                httpx.Response(400, text="first"),
                httpx.Response(400, text="second"),
                httpx.Response(502, text="last failure"),
            ]
        )
        gateway = self._gateway(stub)
        with self.assertRaises(UpstreamProviderError) as ctx:
            await gateway.complete("Bearer tok", self._body())
        self.assertEqual(ctx.exception.to_dict(), {"error": "OpenRouter error", "detail": "last failure"})

    async def test_success_without_content_is_empty(self) -> None:
        stub = UpstreamStub([httpx.Response(200, json={"choices": []})])
        gateway = self._gateway(stub)
        self.assertEqual(await gateway.complete("Bearer tok", self._body(enable_web=False)), "")

    async def test_missing_header(self) -> None:
        gateway = self._gateway(UpstreamStub([]))
        with self.assertRaises(GatewayAuthError) as ctx:
            await gateway.complete(None, self._body())
        self.assertEqual(ctx.exception.error, "Missing Authorization header")

    async def test_missing_configuration(self) -> None:
        client = httpx.AsyncClient(transport=httpx.MockTransport(UpstreamStub([])))
        self.addAsyncCleanup(client.aclose)
        gateway = CompletionGateway(ServerConfig(), ServerSecrets(), http_client=client)
        with self.assertRaises(GatewayConfigurationError):
            await gateway.complete("Bearer tok", self._body())

    async def test_rejected_token(self) -> None:
        stub = UpstreamStub([], user_status=401)
        gateway = self._gateway(stub)
        with self.assertRaises(GatewayAuthError) as ctx:
            await gateway.complete("Bearer tok", self._body())
        self.assertEqual(ctx.exception.error, "Unauthorized")
        self.assertEqual(stub.provider_payloads, [])

    async def test_model_allow_list(self) -> None:
        stub = UpstreamStub([httpx.Response(200, json=_completion("ok"))])
        gateway = self._gateway(stub, allowed_models=["openai/gpt-4o"])
        with self.assertRaises(GatewayRequestError) as ctx:
            await gateway.complete("Bearer tok", self._body(model="other/model"))
        self.assertEqual(ctx.exception.error, "Model not allowed")

    async def test_default_model_when_omitted(self) -> None:
        stub = UpstreamStub([httpx.Response(200, json=_completion("ok"))])
        gateway = self._gateway(stub)
        body = json.dumps({"messages": [{"role": "user", "content": "hi"}]})
        await gateway.complete("Bearer tok", body)
        self.assertEqual(stub.provider_payloads[0]["model"], gateway.resolve_model(None))


class GatewayServerTests(unittest.IsolatedAsyncioTestCase):
    """Validate the HTTP contract through the ASGI app."""

    async def asyncSetUp(self) -> None:
        self.stub = UpstreamStub([])
        self.upstream = httpx.AsyncClient(transport=httpx.MockTransport(self.stub))
        app = create_app(
            {"server": {"provider_url": PROVIDER_URL, "path": "/chat"}},
            secrets=SECRETS,
            http_client=self.upstream,
        )
        self.client = httpx.AsyncClient(
            transport=httpx.ASGITransport(app=app), base_url="http://gateway.test"
        )

    async def asyncTearDown(self) -> None:
        await self.client.aclose()
        await self.upstream.aclose()

    async def _post(self, body: object, token: str | None = "tok") -> httpx.Response:
        headers = {"Origin": "https://ui.example.test"}
        if token is not None:
            headers["Authorization"] = f"Bearer {token}"
        return await self.client.post("/chat", content=json.dumps(body), headers=headers)

    async def test_preflight(self) -> None:
        response = await self.client.options("/chat", headers={"Origin": "https://ui.test"})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.text, "ok")
        self.assertEqual(response.headers["access-control-allow-origin"], "https://ui.test")

    async def test_other_methods_are_rejected(self) -> None:
        response = await self.client.get("/chat")
        self.assertEqual(response.status_code, 405)
        self.assertEqual(response.json(), {"error": "Method not allowed"})

    async def test_success(self) -> None:
        self.stub.provider_responses.append(httpx.Response(200, json=_completion("Hi there")))
        response = await self._post(
            {"messages": [{"role": "user", "content": "Hello"}], "model": "x/y"}
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"content": "Hi there"})
        self.assertEqual(
            response.headers["access-control-allow-origin"], "https://ui.example.test"
        )

    async def test_missing_authorization(self) -> None:
        response = await self._post({"messages": [{"role": "user", "content": "x"}]}, token=None)
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json(), {"error": "Missing Authorization header"})

    async def test_bad_body(self) -> None:
        response = await self._post({"messages": []})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"], "messages must be a non-empty array")
        self.assertIn("access-control-allow-origin", response.headers)

    async def test_upstream_failure_never_leaks_keys(self) -> None:
        self.stub.provider_responses.extend(
            [httpx.Response(400, text="no tools"), httpx.Response(503, text="overloaded")]
        )
        response = await self._post(
            {
                "messages": [{"role": "user", "content": "x"}],
                "model": "meta/llama",
                "enableWeb": True,
            }
        )
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json(), {"error": "OpenRouter error", "detail": "overloaded"})
        self.assertNotIn("provider-secret", response.text)
        self.assertNotIn("service-secret", response.text)


if __name__ == "__main__":
    unittest.main()
