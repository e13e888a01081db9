from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from typing import Mapping, Optional, Tuple


DEFAULT_REST_URL = "http://geoserver:8080/geoserver/rest"


@dataclass(frozen=True)
class GeoServerConfig:
    """
    Everything the import needs to know about the target GeoServer.

    Read once at start and passed into the provisioner; never mutated.
    """

    base_uri: str = DEFAULT_REST_URL
    workspace: str = "osm_shortbread"
    store: str = "osm"
    style_name: str = "versatile-simple"
    username: str = "admin"
    password: str = "geoserver"
    mbtiles_uri: str = "file:///data/shortbread.mbtiles"
    style_file: str = "/styles/versatile-style.mbstyle"
    layer_group: str = "osm-shortbread"
    public_url: str = "http://localhost/geoserver"
    max_attempts: int = 30
    retry_interval: float = 5.0
    timeout: Optional[float] = None

    @property
    def auth(self) -> Tuple[str, str]:
        return (self.username, self.password)

    def url(self, *parts: str) -> str:
        """Join REST path segments onto base_uri (a trailing '/' on the last part is kept)."""
        base = self.base_uri.rstrip("/")
        path = "/".join(p.strip("/") for p in parts if p.strip("/"))
        if parts and parts[-1].endswith("/"):
            path += "/"
        return f"{base}/{path}" if path else base

    def with_overrides(self, **overrides) -> "GeoServerConfig":
        """Return a copy with every non-None override applied."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **changes) if changes else self

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "GeoServerConfig":
        env = os.environ if environ is None else environ
        values = {}
        for f in fields(cls):
            raw = env.get(ENV_VARS[f.name])
            if raw is None or raw.strip() == "":
                continue
            raw = raw.strip()
            if f.name == "max_attempts":
                values[f.name] = int(raw)
            elif f.name in ("retry_interval", "timeout"):
                values[f.name] = float(raw)
            else:
                values[f.name] = raw
        return cls(**values)


ENV_VARS = {
    "base_uri": "GEOSERVER_REST_URL",
    "workspace": "GEOSERVER_WORKSPACE",
    "store": "GEOSERVER_STORE",
    "style_name": "GEOSERVER_STYLE",
    "username": "GEOSERVER_USER",
    "password": "GEOSERVER_PASSWORD",
    "mbtiles_uri": "GEOSERVER_MBTILES",
    "style_file": "GEOSERVER_STYLE_FILE",
    "layer_group": "GEOSERVER_LAYER_GROUP",
    "public_url": "GEOSERVER_PUBLIC_URL",
    "max_attempts": "GEOSERVER_MAX_ATTEMPTS",
    "retry_interval": "GEOSERVER_RETRY_INTERVAL",
    "timeout": "GEOSERVER_TIMEOUT",
}
