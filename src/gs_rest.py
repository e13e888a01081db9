"""
Thin GeoServer REST client plus the XML bodies the import sends.

The bodies are reproduced exactly as GeoServer expects them; names are
interpolated verbatim.
"""

from __future__ import annotations

import enum
import logging
import xml.etree.ElementTree as ET
from typing import Dict, List, Optional, Union

import requests

from gs_config import GeoServerConfig


log = logging.getLogger(__name__)

XML = "application/xml"
TEXT_XML = "text/xml"
MBSTYLE = "application/vnd.geoserver.mbstyle+json"


class Outcome(enum.Enum):
    SUCCESS = "success"
    EXISTS = "exists"
    FAILED = "failed"


def classify(status_code: int) -> Outcome:
    """2xx is success, 409 means the resource is already there, anything else failed."""
    if 200 <= status_code <= 299:
        return Outcome.SUCCESS
    if status_code == 409:
        return Outcome.EXISTS
    return Outcome.FAILED


class GeoServerClient:
    """
    Authenticated requests.Session bound to one GeoServer REST root.

    Transport errors (requests.RequestException) are not caught here.
    """

    def __init__(self, config: GeoServerConfig, session: Optional[requests.Session] = None):
        self.config = config
        self.session = session if session is not None else requests.Session()
        self.session.auth = config.auth

    def request(
        self,
        method: str,
        path: str,
        body: Union[str, bytes, None] = None,
        content_type: Optional[str] = None,
        params: Optional[Dict[str, str]] = None,
    ) -> requests.Response:
        url = self.config.url(path)
        headers = {"Content-Type": content_type} if content_type else None
        data = body.encode("utf-8") if isinstance(body, str) else body
        r = self.session.request(
            method,
            url,
            headers=headers,
            data=data,
            params=params,
            timeout=self.config.timeout,
        )
        log.debug("%s %s -> %s", method, url, r.status_code)
        return r

    def get(self, path: str, params: Optional[Dict[str, str]] = None) -> requests.Response:
        return self.request("GET", path, params=params)

    def post(self, path: str, body: Union[str, bytes], content_type: str = XML) -> requests.Response:
        return self.request("POST", path, body=body, content_type=content_type)

    def put(self, path: str, body: Union[str, bytes], content_type: str = XML) -> requests.Response:
        return self.request("PUT", path, body=body, content_type=content_type)


def workspace_xml(workspace: str) -> str:
    return f"<workspace><name>{workspace}</name></workspace>"


def datastore_xml(store: str, workspace: str, mbtiles_uri: str) -> str:
    return f"""<dataStore>
 <name>{store}</name>
 <type>MBTiles with vector tiles</type>
 <enabled>true</enabled>
 <workspace>
  <name>{workspace}</name>
 </workspace>
 <connectionParameters>
  <entry key="database">{mbtiles_uri}</entry>
  <entry key="dbtype">mbtiles</entry>
  <entry key="namespace">{workspace}</entry>
 </connectionParameters>
</dataStore>"""


def featuretype_xml(name: str, workspace: str, store: str) -> str:
    # nativeName and title are both the discovered name
    return f"""<featureType>
  <nativeName>{name}</nativeName>
  <title>{name}</title>
  <namespace>
    <name>{workspace}</name>
  </namespace>
  <store class="dataStore">
    <name>{workspace}:{store}</name>
  </store>
</featureType>"""


def style_xml(style_name: str, workspace: str) -> str:
    return f"""<style>
  <name>{style_name}</name>
  <format>mbstyle</format>
  <filename>{style_name}.mbstyle</filename>
  <workspace>{workspace}</workspace>
</style>"""


def layergroup_xml(group: str, workspace: str, style_name: str) -> str:
    # An empty <published/> lets GeoServer pick up every published layer
    return f"""<layerGroup>
<name>{group}</name>
<mode>SINGLE</mode>
<title>{group}</title>
<workspace>
  <name>{workspace}</name>
</workspace>
<publishables>
<published/>
</publishables>
<styles>
 <style>
  <name>{workspace}:{style_name}</name>
 </style>
</styles>
</layerGroup>"""


def parse_feature_type_names(xml_text: Union[str, bytes]) -> List[str]:
    """
    Returns every <featureTypeName> from a `featuretypes.xml?list=available` listing.

    A blank body means nothing is available. Malformed XML raises ET.ParseError.
    """
    if not xml_text or not xml_text.strip():
        return []
    root = ET.fromstring(xml_text)
    names = []
    for el in root.iter("featureTypeName"):
        name = (el.text or "").strip()
        if name:
            names.append(name)
    return names


def set_max_request_memory(settings_xml: Union[str, bytes], value: str = "0") -> str:
    """
    Parse a WMS settings document, set maxRequestMemory and serialize it back.

    0 means no per-request memory limit. The element is added under the root
    when the document does not carry one yet.
    """
    root = ET.fromstring(settings_xml)
    found = False
    for el in root.iter("maxRequestMemory"):
        el.text = value
        found = True
    if not found:
        ET.SubElement(root, "maxRequestMemory").text = value
    return ET.tostring(root, encoding="unicode")
