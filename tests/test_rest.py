import xml.etree.ElementTree as ET

import pytest

from gs_config import GeoServerConfig
from gs_rest import (
    MBSTYLE,
    GeoServerClient,
    Outcome,
    classify,
    datastore_xml,
    featuretype_xml,
    layergroup_xml,
    parse_feature_type_names,
    set_max_request_memory,
    style_xml,
    workspace_xml,
)

from conftest import BASE, WMS_SETTINGS, FakeSession, listing


@pytest.mark.parametrize("code", [200, 201, 202, 204, 299])
def test_classify_2xx_is_success(code):
    assert classify(code) is Outcome.SUCCESS


def test_classify_conflict_means_exists():
    assert classify(409) is Outcome.EXISTS


@pytest.mark.parametrize("code", [0, 199, 300, 301, 400, 401, 403, 404, 408, 410, 500, 503])
def test_classify_everything_else_failed(code):
    assert classify(code) is Outcome.FAILED


def test_workspace_body():
    assert workspace_xml("osm_shortbread") == "<workspace><name>osm_shortbread</name></workspace>"


def test_datastore_body_points_at_tile_archive():
    body = datastore_xml("osm", "osm_shortbread", "file:///data/shortbread.mbtiles")
    assert body.startswith("<dataStore>\n <name>osm</name>\n <type>MBTiles with vector tiles</type>\n")
    assert '  <entry key="database">file:///data/shortbread.mbtiles</entry>\n' in body
    assert '  <entry key="dbtype">mbtiles</entry>\n' in body
    assert '  <entry key="namespace">osm_shortbread</entry>\n' in body
    assert body.endswith(" </connectionParameters>\n</dataStore>")


def test_featuretype_body_uses_name_as_native_name_and_title():
    body = featuretype_xml("roads", "osm_shortbread", "osm")
    root = ET.fromstring(body)
    assert root.findtext("nativeName") == "roads"
    assert root.findtext("title") == "roads"
    assert root.findtext("namespace/name") == "osm_shortbread"
    store = root.find("store")
    assert store.get("class") == "dataStore"
    assert store.findtext("name") == "osm_shortbread:osm"


def test_style_body():
    root = ET.fromstring(style_xml("versatile-simple", "osm_shortbread"))
    assert root.findtext("format") == "mbstyle"
    assert root.findtext("filename") == "versatile-simple.mbstyle"
    assert root.findtext("workspace") == "osm_shortbread"


def test_layergroup_body_has_wildcard_publishables_and_style():
    body = layergroup_xml("osm-shortbread", "osm_shortbread", "versatile-simple")
    assert "<publishables>\n<published/>\n</publishables>" in body
    root = ET.fromstring(body)
    assert root.findtext("mode") == "SINGLE"
    assert root.findtext("title") == "osm-shortbread"
    assert root.findtext("styles/style/name") == "osm_shortbread:versatile-simple"


def test_parse_feature_type_names():
    assert parse_feature_type_names(listing("roads", "buildings", "water")) == ["roads", "buildings", "water"]


def test_parse_feature_type_names_empty_listing():
    assert parse_feature_type_names("<list/>") == []
    assert parse_feature_type_names("") == []
    assert parse_feature_type_names(b"  \n") == []


def test_parse_feature_type_names_rejects_garbage():
    with pytest.raises(ET.ParseError):
        parse_feature_type_names("<list><featureTypeName>roads</list>")


def test_set_max_request_memory_only_touches_that_field():
    updated = ET.fromstring(set_max_request_memory(WMS_SETTINGS))
    assert updated.findtext("maxRequestMemory") == "0"
    assert updated.findtext("maxRenderingTime") == "60"
    assert updated.findtext("id") == "wms"


def test_set_max_request_memory_accepts_declared_bytes():
    doc = b'<?xml version="1.0" encoding="UTF-8"?>\n<wms><maxRequestMemory>1</maxRequestMemory></wms>'
    assert ET.fromstring(set_max_request_memory(doc)).findtext("maxRequestMemory") == "0"


def test_set_max_request_memory_adds_missing_field():
    updated = ET.fromstring(set_max_request_memory("<wms><enabled>true</enabled></wms>"))
    assert updated.findtext("maxRequestMemory") == "0"
    assert updated.findtext("enabled") == "true"


def test_client_sends_auth_content_type_and_utf8_body():
    session = FakeSession()
    cfg = GeoServerConfig(base_uri=BASE + "/", username="u", password="p", timeout=3.0)
    client = GeoServerClient(cfg, session=session)
    assert session.auth == ("u", "p")

    client.post("workspaces", "<workspace><name>ö</name></workspace>", content_type="text/xml")
    call = session.calls[-1]
    assert call["method"] == "POST"
    assert call["path"] == "workspaces"
    assert call["headers"] == {"Content-Type": "text/xml"}
    assert call["data"] == "<workspace><name>ö</name></workspace>".encode("utf-8")
    assert call["timeout"] == 3.0


def test_client_passes_bytes_through():
    session = FakeSession()
    client = GeoServerClient(GeoServerConfig(base_uri=BASE), session=session)
    client.put("workspaces/ws/styles/s", b"\x00{}", content_type=MBSTYLE)
    call = session.calls[-1]
    assert call["data"] == b"\x00{}"
    assert call["headers"] == {"Content-Type": MBSTYLE}


def test_client_get_has_no_body():
    session = FakeSession()
    client = GeoServerClient(GeoServerConfig(base_uri=BASE), session=session)
    r = client.get("about/version")
    assert r.status_code == 404
    assert session.calls[-1]["headers"] is None
    assert session.calls[-1]["data"] is None
