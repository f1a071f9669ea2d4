import os
import random
import tempfile

_DB_DIR = tempfile.mkdtemp(prefix="vmconsole-tests-")
os.environ.setdefault("ALLOW_SQLITE_FOR_TESTS", "true")
os.environ.setdefault("DATABASE_URL", f"sqlite:///{_DB_DIR}/console.db")

import pytest
import responses
from fastapi.testclient import TestClient

from vmconsole.app.auth import UserSession, require_user_session
from vmconsole.app.config import ConsoleConfig
from vmconsole.app.kubernetes_client import KubernetesClient
from vmconsole.app.netbox_client import NetboxClient
from vmconsole.app.oidc import OIDCProvider

KUBE_URL = "https://kube.test:6443"
NETBOX_URL = "https://netbox.test"
ISSUER = "https://sso.test/realms/lab"
ANNOTATION_KEY = "vmconsole.io/ipv4Address"


def vm_payload(name, *, namespace="team-a", ip=None, status=None, created="2024-05-01T10:00:00Z"):
    metadata = {"name": name, "namespace": namespace, "creationTimestamp": created, "annotations": {}}
    if ip:
        metadata["annotations"][ANNOTATION_KEY] = ip
    payload = {"apiVersion": "kubevirt.io/v1", "kind": "VirtualMachine", "metadata": metadata, "spec": {"running": True}}
    if status:
        payload["status"] = {"printableStatus": status}
    return payload


def namespace_payload(*names):
    return {"kind": "NamespaceList", "items": [{"metadata": {"name": name}} for name in names]}


def prefix_payload(prefix_id=1, *, pool="external", gateway="10.0.0.1/24"):
    custom_fields = {"pool": pool}
    if gateway:
        custom_fields["gateway"] = {"id": 7, "address": gateway}
    return {"id": prefix_id, "prefix": "10.0.0.0/24", "custom_fields": custom_fields}


@pytest.fixture
def config():
    return ConsoleConfig(
        kube_url=KUBE_URL,
        netbox_url=NETBOX_URL,
        netbox_token="nb-token",
        oidc_issuer=ISSUER,
        oidc_client_id="console",
        oidc_client_secret="console-secret",
        oidc_redirect_base="http://testserver",
        ipv4_annotation_key=ANNOTATION_KEY,
    )


@pytest.fixture
def mocked():
    with responses.RequestsMock(assert_all_requests_are_fired=False) as rsps:
        yield rsps


@pytest.fixture
def kube():
    return KubernetesClient(KUBE_URL, "user-id-token")


@pytest.fixture
def netbox():
    return NetboxClient(NETBOX_URL, "nb-token", rng=random.Random(42))


@pytest.fixture
def client(config):
    from vmconsole.app.main import app

    previous = (app.state.config, app.state.oidc)
    app.state.config = config
    app.state.oidc = OIDCProvider.from_config(config)
    with TestClient(app) as test_client:
        yield test_client
    app.state.config, app.state.oidc = previous
    app.dependency_overrides.clear()


@pytest.fixture
def logged_in(client):
    from vmconsole.app.main import app

    app.dependency_overrides[require_user_session] = lambda: UserSession(id_token="user-id-token", user={"name": "Alice"})
    return client
