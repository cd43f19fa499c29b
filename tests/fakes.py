"""
In-memory fakes for the Cloudflare v4 and NPM APIs, served through
httpx.MockTransport.
"""

import itertools
import json
from typing import Optional

import httpx

from npm_cloudflare_sync.config import CloudflareConfig, RetryConfig
from npm_cloudflare_sync.http_client import RetryingHTTPClient
from npm_cloudflare_sync.retry_manager import RetryManager

CF_BASE = "/client/v4"


async def no_sleep(delay: float) -> None:
    return None


class FakeCloudflare:
    """
    Stateful stand-in for the parts of the Cloudflare API the client uses.

    mutations records every POST/PUT/DELETE as (method, name) in order.
    """

    def __init__(self, zones: dict[str, str], page_size: int = 50) -> None:
        self.zones = dict(zones)
        self.records: dict[str, dict] = {}
        self.requests: list[httpx.Request] = []
        self.mutations: list[tuple[str, str]] = []
        self.page_size = page_size
        self.fail_zones = False
        self._ids = itertools.count(1)

    def add_record(self, zone_name: str, name: str, type_: str, content: str) -> str:
        record_id = f"rec{next(self._ids)}"
        self.records[record_id] = {
            "id": record_id,
            "zone_id": self.zones[zone_name],
            "name": name,
            "type": type_,
            "content": content,
            "proxied": True,
            "ttl": 1,
        }
        return record_id

    def find(self, name: str, type_: Optional[str] = None) -> Optional[dict]:
        for record in self.records.values():
            if record["name"] == name and (type_ is None or record["type"] == type_):
                return record
        return None

    def _page(self, items: list, request: httpx.Request) -> httpx.Response:
        page = int(request.url.params.get("page", "1"))
        per_page = int(request.url.params.get("per_page", str(self.page_size)))
        per_page = min(per_page, self.page_size)
        total_pages = max(1, -(-len(items) // per_page))
        chunk = items[(page - 1) * per_page:page * per_page]
        return httpx.Response(200, json={
            "success": True,
            "errors": [],
            "result": chunk,
            "result_info": {"page": page, "per_page": per_page, "total_pages": total_pages},
        })

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        parts = request.url.path[len(CF_BASE):].strip("/").split("/")

        if parts == ["zones"] and request.method == "GET":
            if self.fail_zones:
                return httpx.Response(403, json={
                    "success": False, "errors": [{"message": "forbidden"}],
                })
            zones = [{"id": zid, "name": name} for name, zid in self.zones.items()]
            return self._page(zones, request)

        if len(parts) >= 3 and parts[0] == "zones" and parts[2] == "dns_records":
            zone_id = parts[1]
            if len(parts) == 3 and request.method == "GET":
                records = [
                    {k: v for k, v in r.items() if k != "zone_id"}
                    for r in self.records.values()
                    if r["zone_id"] == zone_id
                ]
                return self._page(records, request)

            if len(parts) == 3 and request.method == "POST":
                body = json.loads(request.content)
                record_id = f"rec{next(self._ids)}"
                record = dict(body, id=record_id, zone_id=zone_id)
                record.setdefault("ttl", 1)
                self.records[record_id] = record
                self.mutations.append(("POST", body["name"]))
                return httpx.Response(200, json={"success": True, "result": record})

            record_id = parts[3]
            if record_id not in self.records:
                return httpx.Response(404, json={
                    "success": False, "errors": [{"message": "Record not found"}],
                })
            if request.method == "PUT":
                body = json.loads(request.content)
                self.records[record_id].update(body)
                self.mutations.append(("PUT", body["name"]))
                return httpx.Response(200, json={
                    "success": True, "result": self.records[record_id],
                })
            if request.method == "DELETE":
                record = self.records.pop(record_id)
                self.mutations.append(("DELETE", record["name"]))
                return httpx.Response(200, json={"success": True, "result": {"id": record_id}})

        return httpx.Response(404, json={"success": False, "errors": [{"message": "not found"}]})


class FakeNPM:
    """Stand-in for the NPM token and proxy-host endpoints."""

    def __init__(self, hosts: Optional[list[dict]] = None) -> None:
        self.hosts = list(hosts or [])
        self.valid_tokens = {"token-1"}
        self.issued = 0
        self.login_calls = 0
        self.host_calls = 0
        self.reject_next_token = False
        self.down = False
        self.hosts_status = 200

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if self.down:
            raise httpx.ConnectError("connection refused", request=request)

        if request.url.path == "/api/tokens" and request.method == "POST":
            self.login_calls += 1
            body = json.loads(request.content)
            if body != {"identity": "admin@example.com", "secret": "changeme"}:
                return httpx.Response(401, json={"error": {"message": "Invalid credentials"}})
            self.issued += 1
            token = f"token-{self.issued}"
            self.valid_tokens.add(token)
            return httpx.Response(200, json={"token": token, "expires": "2099-01-01"})

        if request.url.path == "/api/nginx/proxy-hosts":
            self.host_calls += 1
            token = request.headers.get("Authorization", "").removeprefix("Bearer ")
            if self.reject_next_token:
                self.reject_next_token = False
                self.valid_tokens.discard(token)
            if token not in self.valid_tokens:
                return httpx.Response(401, json={"error": {"message": "Token expired"}})
            if self.hosts_status != 200:
                return httpx.Response(self.hosts_status, text="upstream error")
            return httpx.Response(200, json=self.hosts)

        return httpx.Response(404, text="not found")


class StaticIPResolver:
    """Resolver stand-in returning a settable address."""

    def __init__(self, ip: str) -> None:
        self.ip = ip
        self.calls = 0

    async def resolve(self) -> str:
        self.calls += 1
        return self.ip

    async def close(self) -> None:
        return None


def cloudflare_http(fake: FakeCloudflare) -> RetryingHTTPClient:
    return RetryingHTTPClient(
        headers={"Authorization": "Bearer cf-token"},
        retry_manager=RetryManager(RetryConfig(), sleep=no_sleep),
        client=httpx.AsyncClient(transport=httpx.MockTransport(fake)),
    )


CF_CONFIG = CloudflareConfig(api_token="cf-token", email="ops@example.com")


def npm_host(
    host_id: int,
    domains,
    forward_host: str = "10.0.0.5",
    forward_port: int = 8080,
    modified_on: str = "2024-01-01 10:00:00",
) -> dict:
    return {
        "id": host_id,
        "domain_names": domains,
        "forward_host": forward_host,
        "forward_port": forward_port,
        "modified_on": modified_on,
        "created_on": "2024-01-01 09:00:00",
    }
