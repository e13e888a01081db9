import io
from collections import defaultdict, deque

import pytest
from rich.console import Console

from gs_config import GeoServerConfig
from gs_rest import GeoServerClient


BASE = "http://gs/rest"

WMS_SETTINGS = (
    "<wms><id>wms</id><enabled>true</enabled>"
    "<maxRequestMemory>65536</maxRequestMemory>"
    "<maxRenderingTime>60</maxRenderingTime></wms>"
)


def listing(*names):
    items = "".join(f"<featureTypeName>{n}</featureTypeName>" for n in names)
    return f"<list>{items}</list>"


class FakeResponse:
    def __init__(self, status_code, text=""):
        self.status_code = status_code
        self.text = text
        self.content = text.encode("utf-8")


class FakeSession:
    """
    Stands in for requests.Session. Routes map (METHOD, path below BASE) to a
    queue of responses; the last queued response repeats. An exception in the
    queue is raised instead of returned. Unknown routes answer 404.
    """

    def __init__(self):
        self.auth = None
        self.routes = defaultdict(deque)
        self.calls = []

    def add(self, method, path, *responses):
        for r in responses:
            if isinstance(r, int):
                r = FakeResponse(r)
            self.routes[(method, path)].append(r)
        return self

    def request(self, method, url, headers=None, data=None, params=None, timeout=None):
        path = url[len(BASE) + 1:] if url.startswith(BASE + "/") else url
        self.calls.append({"method": method, "path": path, "headers": headers,
                           "data": data, "params": params, "timeout": timeout})
        queue = self.routes.get((method, path))
        if not queue:
            return FakeResponse(404, "not found")
        r = queue.popleft() if len(queue) > 1 else queue[0]
        if isinstance(r, Exception):
            raise r
        return r

    def count(self, method, path):
        return sum(1 for c in self.calls if c["method"] == method and c["path"] == path)


def happy_session(*names):
    s = FakeSession()
    s.add("GET", "about/version", 200)
    s.add("POST", "workspaces", 201)
    s.add("POST", "workspaces/osm_shortbread/datastores/", 201)
    s.add("GET", "workspaces/osm_shortbread/datastores/osm/featuretypes.xml",
          FakeResponse(200, listing(*names)))
    s.add("POST", "workspaces/osm_shortbread/datastores/osm/featuretypes", 201)
    s.add("POST", "workspaces/osm_shortbread/styles", 201)
    s.add("PUT", "workspaces/osm_shortbread/styles/versatile-simple", 200)
    s.add("POST", "workspaces/osm_shortbread/layergroups", 201)
    s.add("GET", "services/wms/settings.xml", FakeResponse(200, WMS_SETTINGS))
    s.add("PUT", "services/wms/settings", 200)
    return s


@pytest.fixture
def style_file(tmp_path):
    p = tmp_path / "versatile-style.mbstyle"
    p.write_text('{"version": 8, "layers": []}', encoding="utf-8")
    return p


@pytest.fixture
def config(style_file):
    return GeoServerConfig(base_uri=BASE, style_file=str(style_file), retry_interval=5)


@pytest.fixture
def output():
    return io.StringIO()


@pytest.fixture
def make_provisioner(config, output):
    from gs_provision import Provisioner

    def _make(session, cfg=None, sleeps=None):
        cfg = cfg or config
        client = GeoServerClient(cfg, session=session)
        console = Console(file=output, width=200, color_system=None, highlight=False)
        sleep = sleeps.append if sleeps is not None else (lambda seconds: None)
        return Provisioner(cfg, client=client, console=console, sleep=sleep)

    return _make
