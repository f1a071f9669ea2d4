from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from html import escape
from typing import Any

from .schemas import ClusterInstancetype, KubeEvent, Namespace, PersistentVolumeClaim, VirtualMachine

NAV_ITEMS = [
    ("machines", "Machines", "/machines"),
    ("events", "Events", "/events"),
]

STYLE = """
  :root { color-scheme: dark; --bg: #0b1020; --panel: #121a33; --muted: #8ea0c9; --text: #e6ecff; --border: #23325f; }
  body { margin: 0; font-family: Inter, system-ui, -apple-system, Segoe UI, Roboto, sans-serif; background: radial-gradient(circle at 10% 10%, #172345, var(--bg)); color: var(--text); }
  .layout { display: grid; grid-template-columns: 250px 1fr; min-height: 100vh; }
  .sidebar { border-right: 1px solid var(--border); padding: 16px; background: #0c1430; }
  .brand { font-size: 20px; font-weight: 700; margin-bottom: 14px; }
  .nav { display:flex; flex-direction:column; gap:8px; margin-bottom: 18px; }
  .nav-link { color:#c9d5f7; text-decoration:none; padding:8px 10px; border-radius:8px; border:1px solid transparent; }
  .nav-link:hover, .nav-link.active { background:#15244c; border-color:#3552a3; }
  .section { color: var(--muted); font-size: 12px; text-transform: uppercase; margin: 6px 0; }
  .content { padding: 22px; }
  .card { background: var(--panel); border:1px solid var(--border); border-radius:12px; padding:12px; }
  .muted { color: var(--muted); }
  .error { color:#ff9cbc; margin-bottom:8px; }
  table { width: 100%; border-collapse: collapse; }
  th, td { text-align: left; padding: 8px; border-bottom: 1px solid var(--border); font-size: 14px; }
  a { color: #9cc2ff; }
  .button { display:inline-block; border:1px solid #2f5dad; background:#123777; color:#e8f2ff; padding:8px 12px; border-radius:8px; text-decoration:none; cursor:pointer; }
  input, select, textarea { width:100%; box-sizing:border-box; margin:6px 0 10px; background:#0f1a3b; border:1px solid #2a447f; color:#dce7ff; border-radius:8px; padding:9px; }
  pre { white-space: pre-wrap; word-wrap: break-word; font-size: 12px; color:#d9e3ff; }
"""


def _with_base(base_path: str, path: str) -> str:
    return f"{base_path}{path}" if base_path else path


def _document(title: str, body: str, *, refresh_s: int | None = None) -> str:
    refresh = f"<meta http-equiv='refresh' content='{refresh_s}' />" if refresh_s else ""
    return f"""<!doctype html>
<html>
  <head>
    <meta charset='utf-8' />
    <meta name='viewport' content='width=device-width, initial-scale=1' />
    {refresh}
    <title>{escape(title)}</title>
    <style>{STYLE}</style>
  </head>
  <body>
{body}
  </body>
</html>
"""


def render_layout(
    title: str,
    content: str,
    *,
    base_path: str,
    namespaces: Iterable[Namespace],
    current_namespace: str,
    active: str,
    user_name: str,
    refresh_s: int | None = None,
) -> str:
    ns = escape(current_namespace)
    nav_html = "".join(
        f"<a class='nav-link {'active' if key == active else ''}' href='{_with_base(base_path, f'/namespaces/{ns}{path}')}'>{label}</a>"
        for key, label, path in NAV_ITEMS
    )
    namespace_html = "".join(
        f"<a class='nav-link {'active' if item.metadata.name == current_namespace else ''}' "
        f"href='{_with_base(base_path, f'/namespaces/{escape(item.metadata.name)}/machines')}'>{escape(item.metadata.name)}</a>"
        for item in namespaces
    )
    body = f"""
    <div class='layout'>
      <aside class='sidebar'>
        <div class='brand'>VM Console</div>
        <nav class='nav'>{nav_html}</nav>
        <div class='section'>Namespaces</div>
        <nav class='nav'>{namespace_html}</nav>
        <div class='section'>{escape(user_name)}</div>
        <a class='nav-link' href='{_with_base(base_path, '/auth/logout')}'>Logout</a>
      </aside>
      <main class='content'>
        {content}
      </main>
    </div>"""
    return _document(title, body, refresh_s=refresh_s)


def _refresh_toggle(base_path: str, path: str, enabled: bool) -> str:
    target = path if enabled else f"{path}?refresh=true"
    label = "Auto-refresh: on" if enabled else "Auto-refresh: off"
    return f"<a class='button' href='{_with_base(base_path, target)}'>{label}</a>"


def render_machines_content(
    namespace: str,
    machines: Iterable[VirtualMachine],
    *,
    base_path: str,
    annotation_key: str,
    refresh: bool,
) -> str:
    ns = escape(namespace)
    rows = "".join(
        "<tr>"
        f"<td><a href='{_with_base(base_path, f'/namespaces/{ns}/machines/{escape(vm.metadata.name)}')}'>{escape(vm.metadata.name)}</a></td>"
        f"<td>{escape(vm.ipv4_address(annotation_key))}</td>"
        f"<td>{escape(vm.printable_status)}</td>"
        f"<td>{escape(vm.metadata.creationTimestamp or '')}</td>"
        "</tr>"
        for vm in machines
    )
    if not rows:
        rows = "<tr><td colspan='4' class='muted'>No machines in this namespace yet.</td></tr>"
    toggle = _refresh_toggle(base_path, f"/namespaces/{ns}/machines", refresh)
    return f"""
        <h1>Machines</h1>
        <p class='muted'>A list of virtual machines deployed in the selected namespace.</p>
        <p>{toggle} <a class='button' href='{_with_base(base_path, f'/namespaces/{ns}/machines/new')}'>Create machine</a></p>
        <div class='card'>
          <table>
            <thead><tr><th>Name</th><th>IP Address</th><th>Status</th><th>Created</th></tr></thead>
            <tbody>{rows}</tbody>
          </table>
        </div>"""


def render_machine_content(namespace: str, machine: VirtualMachine, *, base_path: str, annotation_key: str, refresh: bool) -> str:
    ns = escape(namespace)
    name = escape(machine.metadata.name)
    status = machine.status.model_dump() if machine.status else {}
    toggle = _refresh_toggle(base_path, f"/namespaces/{ns}/machines/{name}", refresh)
    return f"""
        <h1>{name}</h1>
        <p class='muted'>Status: {escape(machine.printable_status)} &middot; IP: {escape(machine.ipv4_address(annotation_key)) or '-'}</p>
        <p>{toggle} <a class='button' href='{_with_base(base_path, f'/namespaces/{ns}/machines')}'>All machines</a></p>
        <div class='card'><pre>{escape(json.dumps(status, indent=2, sort_keys=True))}</pre></div>"""


def sort_instancetypes(sizes: Iterable[ClusterInstancetype]) -> list[ClusterInstancetype]:
    return sorted(sizes, key=lambda item: (item.cpu, item.memory_gi))


def render_new_machine_content(
    namespace: str,
    *,
    base_path: str,
    images: Iterable[PersistentVolumeClaim],
    sizes: Iterable[ClusterInstancetype],
    values: Mapping[str, Any] | None = None,
    errors: list[str] | None = None,
    default_size: str = "u1.small",
) -> str:
    values = values or {}
    ns = escape(namespace)
    selected_image = str(values.get("sourcePVCName", ""))
    selected_size = str(values.get("size", default_size))
    image_options = "".join(
        f"<option value='{escape(image.metadata.name)}' {'selected' if image.metadata.name == selected_image else ''}>{escape(image.metadata.name)}</option>"
        for image in images
    )
    size_options = "".join(
        f"<label><input type='radio' name='size' value='{escape(size.metadata.name)}' "
        f"{'checked' if size.metadata.name == selected_size else ''} style='width:auto' /> "
        f"{escape(size.metadata.name)} &middot; {size.cpu} CPU &middot; {size.memory_gi:g} GiB</label><br />"
        for size in sort_instancetypes(sizes)
    )
    errors_html = "".join(f"<div class='error'>{escape(err)}</div>" for err in errors or [])
    return f"""
        <h1>New Machine</h1>
        <form class='card' method='post' action='{_with_base(base_path, f'/namespaces/{ns}/machines/new')}'>
          {errors_html}
          <label>Name</label>
          <input name='name' value='{escape(str(values.get('name', '')))}' required />
          <label>Image</label>
          <select name='sourcePVCName' required>{image_options}</select>
          <label>Root disk size (GiB)</label>
          <input name='rootDiskSize' type='number' min='1' value='{escape(str(values.get('rootDiskSize', 20)))}' required />
          <label>Size</label>
          <div>{size_options}</div>
          <label>SSH public key</label>
          <textarea name='sshKey' rows='3' required>{escape(str(values.get('sshKey', '')))}</textarea>
          <button class='button' type='submit'>Create</button>
          <a class='button' href='{_with_base(base_path, f'/namespaces/{ns}/machines')}'>Cancel</a>
        </form>"""


def sort_events(events: Iterable[KubeEvent]) -> list[KubeEvent]:
    return sorted(events, key=lambda event: event.seen_at, reverse=True)


def render_events_content(events: Iterable[KubeEvent]) -> str:
    rows = "".join(
        "<tr>"
        f"<td>{escape(event.seen_at)}</td>"
        f"<td>{escape(event.type)}</td>"
        f"<td>{escape(event.reason)}</td>"
        f"<td>{escape(event.involvedObject.kind)} {escape(event.involvedObject.name)}</td>"
        f"<td>{escape(event.message)}</td>"
        "</tr>"
        for event in sort_events(events)
    )
    if not rows:
        rows = "<tr><td colspan='5' class='muted'>No recent events.</td></tr>"
    return f"""
        <h1>Events</h1>
        <p class='muted'>A list of recent events that have occurred in the selected namespace.</p>
        <div class='card'>
          <table>
            <thead><tr><th>Last Seen</th><th>Type</th><th>Reason</th><th>Object</th><th>Message</th></tr></thead>
            <tbody>{rows}</tbody>
          </table>
        </div>"""


def render_no_namespaces_page(*, base_path: str, label_selector: str) -> str:
    body = f"""
    <div class='content'>
      <div class='card'>
        <h2>No namespaces available</h2>
        <p class='muted'>None of the namespaces you can see carry the label <code>{escape(label_selector)}</code>.</p>
        <a class='button' href='{_with_base(base_path, '/auth/logout')}'>Logout</a>
      </div>
    </div>"""
    return _document("VM Console", body)


def render_logout_success_page(*, base_path: str) -> str:
    body = f"""
    <div class='content'>
      <div class='card'>
        <h2>Logout successful</h2>
        <a class='button' href='{_with_base(base_path, '/')}'>Login</a>
      </div>
    </div>"""
    return _document("Logged out", body)


def render_error_page(status: int, title: str, detail: str, *, base_path: str) -> str:
    body = f"""
    <div class='content'>
      <div class='card'>
        <h2>{status} &middot; {escape(title)}</h2>
        <pre>{escape(detail)}</pre>
        <a class='button' href='{_with_base(base_path, '/')}'>Back to console</a>
      </div>
    </div>"""
    return _document(title, body)
