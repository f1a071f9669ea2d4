import json
from dataclasses import replace
from urllib.parse import parse_qs, urlparse

import responses
from jose import jwt

from vmconsole.app.main import app

from conftest import ISSUER, KUBE_URL, NETBOX_URL, namespace_payload, prefix_payload, vm_payload

NAMESPACES_URL = f"{KUBE_URL}/api/v1/namespaces"
VMS_URL = f"{KUBE_URL}/apis/kubevirt.io/v1/namespaces/team-a/virtualmachines"
DISCOVERY = {
    "issuer": ISSUER,
    "authorization_endpoint": f"{ISSUER}/protocol/openid-connect/auth",
    "token_endpoint": f"{ISSUER}/protocol/openid-connect/token",
}


def _stub_form_choices(mocked):
    mocked.add(
        responses.GET,
        f"{KUBE_URL}/api/v1/namespaces/vm-images/persistentvolumeclaims",
        json={"items": [{"metadata": {"name": "ubuntu-22.04"}}]},
    )
    mocked.add(
        responses.GET,
        f"{KUBE_URL}/apis/instancetype.kubevirt.io/v1beta1/virtualmachineclusterinstancetypes",
        json={
            "items": [
                {"metadata": {"name": "u1.large", "labels": {"instancetype.kubevirt.io/cpu": "4", "instancetype.kubevirt.io/memory": "16Gi"}}},
                {"metadata": {"name": "u1.small", "labels": {"instancetype.kubevirt.io/cpu": "1", "instancetype.kubevirt.io/memory": "2Gi"}}},
            ]
        },
    )


def _form(**overrides):
    data = {
        "name": "vm1",
        "sourcePVCName": "ubuntu-22.04",
        "rootDiskSize": "50",
        "size": "u1.small",
        "sshKey": "ssh-ed25519 AAAA test@example",
    }
    data.update(overrides)
    return data


def test_healthz(client):
    assert client.get("/healthz").json() == {"status": "ok", "base_path": "/"}


def test_base_path_is_stripped(client, config):
    app.state.config = replace(config, base_path="/console")

    assert client.get("/console/healthz").json() == {"status": "ok", "base_path": "/console"}


def test_index_redirects_to_first_enabled_namespace(logged_in, mocked):
    mocked.add(responses.GET, NAMESPACES_URL, json=namespace_payload("team-a", "team-b"))

    response = logged_in.get("/", follow_redirects=False)

    assert response.status_code == 303
    assert response.headers["location"] == "/namespaces/team-a/machines"
    query = parse_qs(urlparse(mocked.calls[0].request.url).query)
    assert query == {"labelSelector": ["vmconsole.io/enabled=true"]}


def test_index_without_namespaces(logged_in, mocked):
    mocked.add(responses.GET, NAMESPACES_URL, json=namespace_payload())

    response = logged_in.get("/namespaces")

    assert response.status_code == 200
    assert "No namespaces available" in response.text


def test_machines_list(logged_in, mocked):
    mocked.add(responses.GET, NAMESPACES_URL, json=namespace_payload("team-a"))
    mocked.add(
        responses.GET,
        VMS_URL,
        json={"items": [vm_payload("web-1", ip="10.0.0.5", status="Running"), vm_payload("db-1")]},
    )

    response = logged_in.get("/namespaces/team-a/machines")

    assert response.status_code == 200
    assert "web-1" in response.text
    assert "10.0.0.5" in response.text
    assert "Running" in response.text
    assert "Pending" in response.text
    assert "Alice" in response.text
    assert "http-equiv='refresh'" not in response.text
    kube_calls = [call for call in mocked.calls if call.request.url.startswith(KUBE_URL)]
    assert all(call.request.headers["Authorization"] == "Bearer user-id-token" for call in kube_calls)


def test_machines_list_auto_refresh(logged_in, mocked):
    mocked.add(responses.GET, NAMESPACES_URL, json=namespace_payload("team-a"))
    mocked.add(responses.GET, VMS_URL, json={"items": []})

    response = logged_in.get("/namespaces/team-a/machines?refresh=true")

    assert "http-equiv='refresh' content='3'" in response.text
    assert "No machines in this namespace yet." in response.text


def test_machine_detail_not_found(logged_in, mocked):
    mocked.add(responses.GET, f"{VMS_URL}/ghost", body='{"reason":"NotFound"}', status=404)

    response = logged_in.get("/namespaces/team-a/machines/ghost")

    assert response.status_code == 404
    assert "NotFound" in response.text


def test_machine_detail(logged_in, mocked):
    mocked.add(responses.GET, NAMESPACES_URL, json=namespace_payload("team-a"))
    mocked.add(responses.GET, f"{VMS_URL}/web-1", json=vm_payload("web-1", ip="10.0.0.5", status="Starting"))

    response = logged_in.get("/namespaces/team-a/machines/web-1")

    assert response.status_code == 200
    assert "Starting" in response.text
    assert "printableStatus" in response.text


def test_events_newest_first(logged_in, mocked):
    mocked.add(responses.GET, NAMESPACES_URL, json=namespace_payload("team-a"))
    mocked.add(
        responses.GET,
        f"{KUBE_URL}/api/v1/namespaces/team-a/events",
        json={
            "items": [
                {"metadata": {"name": "e1"}, "lastTimestamp": "2024-05-01T09:00:00Z", "type": "Normal", "reason": "OlderReason", "message": "m1"},
                {"metadata": {"name": "e2"}, "lastTimestamp": "2024-05-01T11:00:00Z", "type": "Warning", "reason": "NewerReason", "message": "m2"},
            ]
        },
    )

    response = logged_in.get("/namespaces/team-a/events")

    assert response.status_code == 200
    assert response.text.index("NewerReason") < response.text.index("OlderReason")


def test_new_machine_form_lists_choices(logged_in, mocked):
    mocked.add(responses.GET, NAMESPACES_URL, json=namespace_payload("team-a"))
    _stub_form_choices(mocked)

    response = logged_in.get("/namespaces/team-a/machines/new")

    assert response.status_code == 200
    assert "ubuntu-22.04" in response.text
    assert response.text.index("u1.small") < response.text.index("u1.large")


def test_create_machine(logged_in, mocked):
    mocked.add(responses.GET, f"{NETBOX_URL}/api/ipam/prefixes/", json={"count": 1, "next": None, "results": [prefix_payload(1)]})
    mocked.add(responses.GET, f"{NETBOX_URL}/api/ipam/prefixes/1/available-ips", json=[{"address": "10.0.0.5/24"}])
    mocked.add(responses.POST, f"{NETBOX_URL}/api/ipam/ip-addresses/", json={"address": "10.0.0.5/24", "description": "team-a/vm1"}, status=201)
    mocked.add(responses.POST, VMS_URL, json=vm_payload("vm1", ip="10.0.0.5"), status=201)

    response = logged_in.post("/namespaces/team-a/machines/new", data=_form(), follow_redirects=False)

    assert response.status_code == 303
    assert response.headers["location"] == "/namespaces/team-a/machines/vm1?refresh=true"
    create_call = mocked.calls[-1]
    manifest = json.loads(create_call.request.body)
    assert manifest["metadata"]["annotations"]["vmconsole.io/ipv4Address"] == "10.0.0.5"
    assert manifest["spec"]["dataVolumeTemplates"][0]["spec"]["pvc"]["resources"]["requests"]["storage"] == "50Gi"


def test_create_machine_invalid_form(logged_in, mocked):
    mocked.add(responses.GET, NAMESPACES_URL, json=namespace_payload("team-a"))
    _stub_form_choices(mocked)

    response = logged_in.post("/namespaces/team-a/machines/new", data=_form(rootDiskSize="lots", name=""))

    assert response.status_code == 422
    assert "rootDiskSize" in response.text
    assert not any(call.request.url.startswith(NETBOX_URL) for call in mocked.calls)


def test_create_machine_exhausted_pool(logged_in, mocked):
    mocked.add(responses.GET, f"{NETBOX_URL}/api/ipam/prefixes/", json={"count": 1, "next": None, "results": [prefix_payload(1)]})
    mocked.add(responses.GET, f"{NETBOX_URL}/api/ipam/prefixes/1/available-ips", json=[])

    response = logged_in.post("/namespaces/team-a/machines/new", data=_form())

    assert response.status_code == 503
    assert not any(call.request.method == "POST" for call in mocked.calls)


def test_create_machine_without_pool_prefix(logged_in, mocked):
    mocked.add(responses.GET, f"{NETBOX_URL}/api/ipam/prefixes/", json={"count": 0, "next": None, "results": []})

    response = logged_in.post("/namespaces/team-a/machines/new", data=_form())

    assert response.status_code == 500
    assert "Configuration error" in response.text


def test_logout_success_page(client):
    response = client.get("/auth/logout/success")

    assert response.status_code == 200
    assert "Logout successful" in response.text


def _start_login(client, mocked, path="/namespaces/team-a/machines?refresh=true"):
    mocked.add(responses.GET, f"{ISSUER}/.well-known/openid-configuration", json=DISCOVERY)
    response = client.get(path, follow_redirects=False)
    assert response.status_code == 303
    location = response.headers["location"]
    assert location.startswith(DISCOVERY["authorization_endpoint"])
    return parse_qs(urlparse(location).query)


def test_login_callback_and_logout(client, mocked):
    query = _start_login(client, mocked)
    assert query["code_challenge_method"] == ["S256"]
    assert client.cookies.get("vmconsole_session")

    access_token = jwt.encode({"sub": "alice", "name": "Alice"}, "not-verified", algorithm="HS256")
    mocked.add(responses.POST, DISCOVERY["token_endpoint"], json={"access_token": access_token, "id_token": "oidc-id-token"})
    response = client.get(f"/auth/callback?code=abc&state={query['state'][0]}", follow_redirects=False)

    assert response.status_code == 303
    assert response.headers["location"] == "/namespaces/team-a/machines?refresh=true"

    mocked.add(responses.GET, NAMESPACES_URL, json=namespace_payload("team-a"))
    mocked.add(responses.GET, VMS_URL, json={"items": []})
    page = client.get("/namespaces/team-a/machines")

    assert page.status_code == 200
    assert "Alice" in page.text
    assert mocked.calls[-1].request.headers["Authorization"] == "Bearer oidc-id-token"

    response = client.get("/auth/logout", follow_redirects=False)
    assert response.status_code == 303
    assert response.headers["location"] == "/auth/logout/success"

    again = client.get("/namespaces/team-a/machines", follow_redirects=False)
    assert again.status_code == 303
    assert again.headers["location"].startswith(DISCOVERY["authorization_endpoint"])


def test_login_callback_rejects_state_mismatch(client, mocked):
    _start_login(client, mocked)

    response = client.get("/auth/callback?code=abc&state=forged")

    assert response.status_code == 502
    assert "state" in response.text


def test_login_callback_without_pending_login(client):
    client.cookies.clear()

    response = client.get("/auth/callback?code=abc&state=x")

    assert response.status_code == 502
    assert "code_verifier" in response.text


def test_login_callback_requires_id_token(client, mocked):
    query = _start_login(client, mocked)
    mocked.add(responses.POST, DISCOVERY["token_endpoint"], json={"access_token": "at-only"})

    response = client.get(f"/auth/callback?code=abc&state={query['state'][0]}")

    assert response.status_code == 502
    assert "id_token" in response.text


def test_create_machine_rejects_multiline_ssh_key(logged_in, mocked):
    mocked.add(responses.GET, NAMESPACES_URL, json=namespace_payload("team-a"))
    _stub_form_choices(mocked)

    key = "ssh-ed25519 AAAA me\n  - ssh-rsa BBBB other\nruncmd:\n  - [touch, /root/marker]"
    response = logged_in.post("/namespaces/team-a/machines/new", data=_form(sshKey=key))

    assert response.status_code == 422
    assert "sshKey" in response.text
    assert not any(call.request.method == "POST" for call in mocked.calls)
