from __future__ import annotations


class UpstreamHTTPError(RuntimeError):
    """A non-2xx response from the cluster API server or the IPAM service."""

    service = "upstream"

    def __init__(self, status: int, body: str, url: str = "") -> None:
        self.status = status
        self.body = body
        self.url = url
        super().__init__(f"{self.service} returned HTTP {status}: {body[:200]}")


class KubernetesAPIError(UpstreamHTTPError):
    service = "kubernetes"


class NetboxAPIError(UpstreamHTTPError):
    service = "netbox"


class ConfigurationError(RuntimeError):
    pass


class ExhaustedPoolError(RuntimeError):
    pass
