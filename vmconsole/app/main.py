from __future__ import annotations

import logging
import os

import requests
from fastapi import Depends, FastAPI, Form, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from pydantic import ValidationError
from sqlalchemy.orm import Session

from .auth import (
    LoginRequired,
    UserSession,
    authorize_user,
    get_config,
    get_oidc,
    logout_user,
    require_user_session,
    set_session_cookie,
)
from .config import ConsoleConfig, load_config
from .db import get_db, init_db, purge_expired_sessions
from .errors import ConfigurationError, ExhaustedPoolError, UpstreamHTTPError
from .kubernetes_client import KubernetesClient
from .netbox_client import NetboxClient
from .oidc import OIDCError, OIDCProvider
from .provisioning import provision_machine
from .schemas import MachineCreateForm
from .ui_pages import (
    render_error_page,
    render_events_content,
    render_layout,
    render_logout_success_page,
    render_machine_content,
    render_machines_content,
    render_new_machine_content,
    render_no_namespaces_page,
)

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

AUTO_REFRESH_S = 3

CONFIG = load_config()

app = FastAPI(title="KubeVirt VM Console", version="0.1.0")
app.state.config = CONFIG
app.state.oidc = OIDCProvider.from_config(CONFIG)


def _with_base(config: ConsoleConfig, path: str) -> str:
    return f"{config.base_path}{path}" if config.base_path else path


def get_kube_client(
    session: UserSession = Depends(require_user_session),
    config: ConsoleConfig = Depends(get_config),
) -> KubernetesClient:
    return KubernetesClient(
        config.kube_url,
        session.id_token,
        verify_ssl=config.kube_verify_ssl,
        timeout_s=config.http_timeout_s,
    )


def get_netbox_client(config: ConsoleConfig = Depends(get_config)) -> NetboxClient:
    return NetboxClient(
        config.netbox_url,
        config.netbox_token,
        verify_ssl=config.netbox_verify_ssl,
        timeout_s=config.http_timeout_s,
    )


def _error_response(request: Request, status: int, title: str, detail: str) -> HTMLResponse:
    config: ConsoleConfig = request.app.state.config
    return HTMLResponse(render_error_page(status, title, detail, base_path=config.base_path), status_code=status)


@app.exception_handler(LoginRequired)
def login_required_handler(request: Request, exc: LoginRequired) -> RedirectResponse:
    response = RedirectResponse(url=exc.location, status_code=303)
    set_session_cookie(response, exc.session_token, request.app.state.config, exc.max_age)
    return response


@app.exception_handler(UpstreamHTTPError)
def upstream_error_handler(request: Request, exc: UpstreamHTTPError) -> HTMLResponse:
    status = exc.status if 400 <= exc.status < 600 else 502
    logger.warning("%s request failed with HTTP %s: %s", exc.service, exc.status, exc.url)
    return _error_response(request, status, f"{exc.service.capitalize()} request failed", exc.body)


@app.exception_handler(ConfigurationError)
def configuration_error_handler(request: Request, exc: ConfigurationError) -> HTMLResponse:
    logger.error("configuration error: %s", exc)
    return _error_response(request, 500, "Configuration error", str(exc))


@app.exception_handler(ExhaustedPoolError)
def exhausted_pool_handler(request: Request, exc: ExhaustedPoolError) -> HTMLResponse:
    logger.error("ip pool exhausted: %s", exc)
    return _error_response(request, 503, "No free IP addresses", str(exc))


@app.exception_handler(OIDCError)
def oidc_error_handler(request: Request, exc: OIDCError) -> HTMLResponse:
    logger.warning("login failed: %s", exc)
    return _error_response(request, 502, "Login failed", str(exc))


@app.exception_handler(requests.RequestException)
def transport_error_handler(request: Request, exc: requests.RequestException) -> HTMLResponse:
    logger.warning("upstream transport error: %s", exc)
    return _error_response(request, 502, "Upstream unreachable", str(exc))


@app.on_event("startup")
def startup() -> None:
    init_db()
    removed = purge_expired_sessions()
    if removed:
        logger.info("purged %d expired console sessions", removed)


@app.middleware("http")
async def strip_base_path_middleware(request: Request, call_next):
    base_path = request.app.state.config.base_path
    if base_path and base_path != "/":
        path = request.scope.get("path", "")
        if path == base_path or path.startswith(f"{base_path}/"):
            rewritten = path[len(base_path):] or "/"
            request.scope["path"] = rewritten
            request.scope["raw_path"] = rewritten.encode("utf-8")
    return await call_next(request)


@app.get("/healthz")
def healthz(config: ConsoleConfig = Depends(get_config)) -> dict[str, str]:
    return {"status": "ok", "base_path": config.base_path or "/"}


def _render_namespace_page(
    kube: KubernetesClient,
    config: ConsoleConfig,
    session: UserSession,
    namespace: str,
    title: str,
    content: str,
    active: str,
    *,
    refresh: bool = False,
    status_code: int = 200,
) -> HTMLResponse:
    namespaces = kube.list_namespaces(label_selector=config.kube_ns_label_selector)
    html = render_layout(
        title,
        content,
        base_path=config.base_path,
        namespaces=namespaces.items,
        current_namespace=namespace,
        active=active,
        user_name=session.display_name,
        refresh_s=AUTO_REFRESH_S if refresh else None,
    )
    return HTMLResponse(html, status_code=status_code)


@app.get("/", response_class=HTMLResponse)
@app.get("/namespaces", response_class=HTMLResponse)
def namespaces_index(
    kube: KubernetesClient = Depends(get_kube_client),
    config: ConsoleConfig = Depends(get_config),
):
    namespaces = kube.list_namespaces(label_selector=config.kube_ns_label_selector)
    if namespaces.items:
        first = namespaces.items[0].metadata.name
        return RedirectResponse(url=_with_base(config, f"/namespaces/{first}/machines"), status_code=303)
    return HTMLResponse(render_no_namespaces_page(base_path=config.base_path, label_selector=config.kube_ns_label_selector))


@app.get("/namespaces/{ns}/machines", response_class=HTMLResponse)
def machines_index(
    ns: str,
    refresh: bool = False,
    session: UserSession = Depends(require_user_session),
    kube: KubernetesClient = Depends(get_kube_client),
    config: ConsoleConfig = Depends(get_config),
) -> HTMLResponse:
    machines = kube.list_virtual_machines(ns)
    content = render_machines_content(
        ns,
        machines.items,
        base_path=config.base_path,
        annotation_key=config.ipv4_annotation_key,
        refresh=refresh,
    )
    return _render_namespace_page(kube, config, session, ns, "Machines", content, "machines", refresh=refresh)


def _render_new_machine(
    kube: KubernetesClient,
    config: ConsoleConfig,
    session: UserSession,
    ns: str,
    *,
    values: dict[str, str] | None = None,
    errors: list[str] | None = None,
    status_code: int = 200,
) -> HTMLResponse:
    images = kube.list_persistent_volume_claims(config.image_namespace, label_selector=config.image_label_selector)
    sizes = kube.list_cluster_instancetypes()
    content = render_new_machine_content(
        ns,
        base_path=config.base_path,
        images=images.items,
        sizes=sizes.items,
        values=values,
        errors=errors,
    )
    return _render_namespace_page(kube, config, session, ns, "New Machine", content, "machines", status_code=status_code)


@app.get("/namespaces/{ns}/machines/new", response_class=HTMLResponse)
def new_machine_form(
    ns: str,
    session: UserSession = Depends(require_user_session),
    kube: KubernetesClient = Depends(get_kube_client),
    config: ConsoleConfig = Depends(get_config),
) -> HTMLResponse:
    return _render_new_machine(kube, config, session, ns)


@app.post("/namespaces/{ns}/machines/new")
def create_machine(
    ns: str,
    name: str = Form(""),
    sourcePVCName: str = Form(""),
    rootDiskSize: str = Form(""),
    size: str = Form(""),
    sshKey: str = Form(""),
    session: UserSession = Depends(require_user_session),
    kube: KubernetesClient = Depends(get_kube_client),
    netbox: NetboxClient = Depends(get_netbox_client),
    config: ConsoleConfig = Depends(get_config),
):
    values = {"name": name, "sourcePVCName": sourcePVCName, "rootDiskSize": rootDiskSize, "size": size, "sshKey": sshKey}
    try:
        form = MachineCreateForm.model_validate(values)
    except ValidationError as exc:
        errors = [f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in exc.errors()]
        return _render_new_machine(kube, config, session, ns, values=values, errors=errors, status_code=422)

    vm = provision_machine(kube, netbox, ns, form, config)
    return RedirectResponse(
        url=_with_base(config, f"/namespaces/{ns}/machines/{vm.metadata.name}?refresh=true"),
        status_code=303,
    )


@app.get("/namespaces/{ns}/machines/{name}", response_class=HTMLResponse)
def machine_detail(
    ns: str,
    name: str,
    refresh: bool = False,
    session: UserSession = Depends(require_user_session),
    kube: KubernetesClient = Depends(get_kube_client),
    config: ConsoleConfig = Depends(get_config),
) -> HTMLResponse:
    machine = kube.get_virtual_machine(ns, name)
    content = render_machine_content(
        ns,
        machine,
        base_path=config.base_path,
        annotation_key=config.ipv4_annotation_key,
        refresh=refresh,
    )
    return _render_namespace_page(kube, config, session, ns, name, content, "machines", refresh=refresh)


@app.get("/namespaces/{ns}/events", response_class=HTMLResponse)
def events_index(
    ns: str,
    session: UserSession = Depends(require_user_session),
    kube: KubernetesClient = Depends(get_kube_client),
    config: ConsoleConfig = Depends(get_config),
) -> HTMLResponse:
    events = kube.list_events(ns)
    content = render_events_content(events.items)
    return _render_namespace_page(kube, config, session, ns, "Events", content, "events")


@app.get("/auth/callback")
def auth_callback(
    request: Request,
    db: Session = Depends(get_db),
    config: ConsoleConfig = Depends(get_config),
    oidc: OIDCProvider = Depends(get_oidc),
) -> RedirectResponse:
    return authorize_user(request, db, config, oidc)


@app.get("/auth/logout")
def auth_logout(request: Request, db: Session = Depends(get_db), config: ConsoleConfig = Depends(get_config)) -> RedirectResponse:
    return logout_user(request, db, config)


@app.get("/auth/logout/success", response_class=HTMLResponse)
def auth_logout_success(config: ConsoleConfig = Depends(get_config)) -> HTMLResponse:
    return HTMLResponse(render_logout_success_page(base_path=config.base_path))
