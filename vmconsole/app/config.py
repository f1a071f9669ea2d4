import os
from dataclasses import dataclass


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes"}


@dataclass
class ConsoleConfig:
    kube_url: str
    netbox_url: str
    netbox_token: str
    oidc_issuer: str
    oidc_client_id: str
    oidc_client_secret: str
    oidc_redirect_base: str
    oidc_audience: str = ""
    kube_verify_ssl: bool = True
    kube_ns_label_selector: str = "vmconsole.io/enabled=true"
    image_namespace: str = "vm-images"
    image_label_selector: str = "vmconsole.io/enabled=true"
    machine_network_name: str = "bridge-external"
    machine_preference: str = "ubuntu"
    ipv4_annotation_key: str = "vmconsole.io/ipv4Address"
    netbox_verify_ssl: bool = True
    netbox_pool_field: str = "pool"
    netbox_pool_value: str = "external"
    ip_reserve_attempts: int = 3
    http_timeout_s: float = 10.0
    session_hours: int = 12
    session_cookie_secure: bool = False
    base_path: str = ""


def _normalize_base_path(value: str) -> str:
    value = value.strip()
    if value and not value.startswith("/"):
        value = f"/{value}"
    if value.endswith("/") and value != "/":
        value = value[:-1]
    return value


def load_config() -> ConsoleConfig:
    return ConsoleConfig(
        kube_url=os.getenv("KUBE_URL", "https://kubernetes.default.svc").rstrip("/"),
        netbox_url=os.getenv("NETBOX_URL", "http://netbox:8080").rstrip("/"),
        netbox_token=os.getenv("NETBOX_TOKEN", ""),
        oidc_issuer=os.getenv("OIDC_ISSUER", ""),
        oidc_client_id=os.getenv("OIDC_CLIENT_ID", ""),
        oidc_client_secret=os.getenv("OIDC_CLIENT_SECRET", ""),
        oidc_redirect_base=os.getenv("OIDC_REDIRECT_BASE", "http://127.0.0.1:8000").rstrip("/"),
        oidc_audience=os.getenv("OIDC_AUDIENCE", ""),
        kube_verify_ssl=_env_bool("KUBE_VERIFY_SSL", "true"),
        kube_ns_label_selector=os.getenv("KUBE_NS_LABEL_SELECTOR", "vmconsole.io/enabled=true"),
        image_namespace=os.getenv("IMAGE_NAMESPACE", "vm-images"),
        image_label_selector=os.getenv("IMAGE_LABEL_SELECTOR", "vmconsole.io/enabled=true"),
        machine_network_name=os.getenv("MACHINE_NETWORK_NAME", "bridge-external"),
        machine_preference=os.getenv("MACHINE_PREFERENCE", "ubuntu"),
        ipv4_annotation_key=os.getenv("IPV4_ANNOTATION_KEY", "vmconsole.io/ipv4Address"),
        netbox_verify_ssl=_env_bool("NETBOX_VERIFY_SSL", "true"),
        netbox_pool_field=os.getenv("NETBOX_POOL_FIELD", "pool"),
        netbox_pool_value=os.getenv("NETBOX_POOL_VALUE", "external"),
        ip_reserve_attempts=max(1, int(os.getenv("IP_RESERVE_ATTEMPTS", "3"))),
        http_timeout_s=float(os.getenv("HTTP_TIMEOUT_S", "10")),
        session_hours=int(os.getenv("SESSION_HOURS", "12")),
        session_cookie_secure=_env_bool("SESSION_COOKIE_SECURE", "false"),
        base_path=_normalize_base_path(os.getenv("CONSOLE_BASE_PATH", "")),
    )
