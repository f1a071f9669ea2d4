from __future__ import annotations

import logging
import random
from typing import Any

import requests

from .errors import ConfigurationError, ExhaustedPoolError, NetboxAPIError
from .schemas import IPAddress, Prefix

logger = logging.getLogger(__name__)

# Netbox answers a lost race for an address with a validation error.
CONFLICT_STATUSES = {400, 409}


def gateway_address(prefix: Prefix) -> str:
    gateway = prefix.gateway
    if gateway is None:
        raise ConfigurationError(f"netbox prefix {prefix.id} is missing an ipv4 gateway address")
    return gateway.bare_address


class NetboxClient:
    def __init__(
        self,
        base_url: str,
        token: str,
        *,
        verify_ssl: bool = True,
        timeout_s: float = 10.0,
        rng: random.Random | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.verify_ssl = verify_ssl
        self.timeout_s = timeout_s
        self.rng = rng or random.Random()

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Token {self.token}", "Accept": "application/json"}

    def _check(self, response: requests.Response) -> Any:
        if response.status_code < 200 or response.status_code >= 300:
            raise NetboxAPIError(response.status_code, response.text, url=response.url)
        return response.json()

    def get_json(self, url_or_path: str) -> Any:
        url = url_or_path if url_or_path.startswith("http") else f"{self.base_url}{url_or_path}"
        response = requests.get(url, headers=self._headers(), verify=self.verify_ssl, timeout=self.timeout_s)
        return self._check(response)

    def create_json(self, path: str, item: dict[str, Any]) -> Any:
        response = requests.post(
            f"{self.base_url}{path}",
            json=item,
            headers=self._headers(),
            verify=self.verify_ssl,
            timeout=self.timeout_s,
        )
        return self._check(response)

    def list_prefixes(self) -> list[Prefix]:
        prefixes: list[Prefix] = []
        next_url: str | None = "/api/ipam/prefixes/"
        while next_url:
            page = self.get_json(next_url)
            prefixes.extend(Prefix.model_validate(item) for item in page.get("results", []))
            next_url = page.get("next")
        return prefixes

    def find_prefix(self, pool_field: str, pool_value: str) -> Prefix:
        matches = [prefix for prefix in self.list_prefixes() if prefix.pool_tag(pool_field) == pool_value]
        if not matches:
            raise ConfigurationError(f"no prefix found in netbox with {pool_field}={pool_value}")
        if len(matches) > 1:
            ids = ", ".join(str(prefix.id) for prefix in matches)
            raise ConfigurationError(f"multiple netbox prefixes match {pool_field}={pool_value}: {ids}")
        return matches[0]

    def get_available_ips(self, prefix_id: int) -> list[IPAddress]:
        payload = self.get_json(f"/api/ipam/prefixes/{prefix_id}/available-ips")
        return [IPAddress.model_validate(item) for item in payload]

    def create_ip_address(self, address: str, description: str) -> IPAddress:
        payload = self.create_json("/api/ipam/ip-addresses/", {"address": address, "description": description})
        return IPAddress.model_validate(payload)

    def reserve_ip_address(self, prefix_id: int, description: str, *, attempts: int = 3) -> IPAddress:
        """Claim a random free address in the prefix and register it in netbox.

        Netbox has no atomic claim, so a create that loses a race is retried
        against a fresh availability list, up to ``attempts`` picks in total.
        The returned record carries the CIDR form; ``bare_address`` strips it.
        """
        attempts = max(1, attempts)
        attempt = 0
        while True:
            attempt += 1
            available = self.get_available_ips(prefix_id)
            if not available:
                raise ExhaustedPoolError(f"no available ips in netbox prefix {prefix_id}")

            candidate = self.rng.choice(available)
            try:
                reserved = self.create_ip_address(candidate.address, description)
            except NetboxAPIError as exc:
                if exc.status not in CONFLICT_STATUSES or attempt == attempts:
                    raise
                logger.warning(
                    "ip %s in prefix %s was claimed concurrently (attempt %d/%d), picking again",
                    candidate.address,
                    prefix_id,
                    attempt,
                    attempts,
                )
                continue

            logger.info("reserved ip %s in prefix %s for %s", reserved.address, prefix_id, description)
            return reserved
