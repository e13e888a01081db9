#!/usr/bin/env python3
"""
GeoServer import - publish an MBTiles vector tile archive on a fresh GeoServer

What it does:
- Waits until the GeoServer REST API answers (about/version)
- Creates the workspace and an MBTiles datastore pointing at the tile archive
- Lists the feature types the datastore offers and publishes every one of them
- Uploads an MBStyle and bundles all published layers into one layer group
- Sets WMS maxRequestMemory to 0 so large tile renders are not cut off

Every step tolerates "already exists" (HTTP 409), so the import can be re-run
against a server that is partially or fully provisioned. Workspace, datastore
and feature type discovery are prerequisites and abort the run when they fail;
the later steps are best-effort and only get reported.
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import socket
import sys
import time
import uuid
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Callable, List, Optional, Sequence

import requests
from rich.console import Console
from rich.markup import escape

from gs_config import GeoServerConfig
from gs_rest import (
    MBSTYLE,
    TEXT_XML,
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


log = logging.getLogger(__name__)

_console = Console()

LOG_FILE_NAME = "geoserver-import.log"


def default_logs_dir() -> Path:
    """GEOSERVER_LOG_DIR when set, otherwise ./logs under the working directory."""
    return Path(os.getenv("GEOSERVER_LOG_DIR") or Path.cwd() / "logs")


def cleanup_old_logs(logs_dir: Path, max_days: int = 7) -> None:
    """Delete import log files older than max_days. A file that cannot be removed is only warned about."""
    cutoff = time.time() - (max_days * 24 * 60 * 60)
    for p in logs_dir.glob(LOG_FILE_NAME + "*"):
        try:
            if p.stat().st_mtime < cutoff:
                p.unlink()
        except OSError as e:
            log.warning("could not remove old log %s: %s", p, e)


def setup_file_logging(logs_dir: Optional[Path] = None) -> Path:
    """
    Configure local file logging (GEOSERVER_LOG_DIR, else ./logs) with:
    - size-based rotation at 10 MB
    - retention cleanup older than 7 days
    """
    logs_dir = logs_dir or default_logs_dir()
    logs_dir.mkdir(parents=True, exist_ok=True)

    log_path = logs_dir / LOG_FILE_NAME

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.INFO)

    # Avoid duplicate handlers when main() runs more than once in a process
    if not any(isinstance(h, RotatingFileHandler) and getattr(h, "baseFilename", "").endswith(str(log_path))
               for h in root_logger.handlers):
        handler = RotatingFileHandler(
            filename=str(log_path),
            maxBytes=10 * 1024 * 1024,  # 10 MB
            backupCount=20,
            encoding="utf-8",
        )
        formatter = logging.Formatter(
            fmt="%(asctime)sZ %(levelname)s %(name)s %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S",
        )
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)

    cleanup_old_logs(logs_dir, max_days=7)
    return log_path


def audit(event: str, **fields) -> None:
    """Write one JSON line describing an import event to the audit logger."""
    payload = {"event": event, **fields}
    logging.getLogger("geoserver_import.audit").info(json.dumps(payload, default=str))


class StepFailed(Exception):
    """A provisioning call came back with something other than 2xx or 409."""

    def __init__(self, operation: str, status_code: Optional[int] = None, detail: str = ""):
        self.operation = operation
        self.status_code = status_code
        self.detail = detail
        msg = f"{operation} failed"
        if status_code is not None:
            msg += f" (HTTP {status_code})"
        if detail:
            msg += f": {detail}"
        super().__init__(msg)


@dataclass
class Step:
    title: str
    action: Callable[[], None]
    # fatal steps end the run; the others are reported and skipped
    fatal: bool


@dataclass
class ImportReport:
    ready: bool = False
    feature_types: List[str] = field(default_factory=list)
    published: int = 0
    failed: int = 0
    style_created: bool = False
    soft_failures: List[str] = field(default_factory=list)
    aborted_at: Optional[str] = None

    @property
    def exit_code(self) -> int:
        return 0 if self.ready and self.aborted_at is None else 1


class Provisioner:
    def __init__(
        self,
        config: GeoServerConfig,
        client: Optional[GeoServerClient] = None,
        console: Optional[Console] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config
        self.client = client or GeoServerClient(config)
        self.console = console or _console
        self.sleep = sleep
        self.report = ImportReport()

    # -- output -----------------------------------------------------------

    def _info(self, msg: str) -> None:
        self.console.print(f"[yellow]{escape(msg)}[/yellow]")

    def _ok(self, msg: str) -> None:
        self.console.print(f"[green]✓ {escape(msg)}[/green]")

    def _fail(self, msg: str) -> None:
        self.console.print(f"[red]✗ {escape(msg)}[/red]")

    def _check(self, r: requests.Response, operation: str) -> Outcome:
        outcome = classify(r.status_code)
        if outcome is Outcome.SUCCESS:
            self._ok(f"{operation} completed successfully (HTTP {r.status_code})")
        else:
            self._fail(f"{operation} failed (HTTP {r.status_code})")
        return outcome

    # -- steps ------------------------------------------------------------

    def steps(self) -> List[Step]:
        cfg = self.config
        return [
            Step(f"Creating workspace '{cfg.workspace}'", self.create_workspace, fatal=True),
            Step(f"Creating datastore '{cfg.store}'", self.create_datastore, fatal=True),
            Step("Retrieving available feature types", self.discover_feature_types, fatal=True),
            Step("Publishing feature types", self.publish_feature_types, fatal=False),
            Step(f"Creating MBStyle '{cfg.style_name}'", self.provision_style, fatal=False),
            Step(f"Creating layer group '{cfg.layer_group}'", self.create_layer_group, fatal=False),
            Step("Configuring WMS settings", self.tune_wms_memory, fatal=False),
        ]

    def wait_until_ready(self) -> bool:
        cfg = self.config
        self._info("Waiting for GeoServer to be ready...")
        for attempt in range(1, cfg.max_attempts + 1):
            try:
                r = self.client.get("about/version")
                if classify(r.status_code) is Outcome.SUCCESS:
                    self._ok("GeoServer is ready")
                    audit("geoserver_ready", attempts=attempt)
                    return True
                log.debug("readiness probe %d returned HTTP %s", attempt, r.status_code)
            except requests.RequestException as e:
                log.debug("readiness probe %d: %s", attempt, e)
            self.console.print(f"Attempt {attempt}/{cfg.max_attempts} - waiting for GeoServer...")
            if attempt < cfg.max_attempts:
                self.sleep(cfg.retry_interval)

        self._fail("GeoServer failed to start within expected time")
        audit("geoserver_not_ready", attempts=cfg.max_attempts, result="FAILURE")
        return False

    def _create(self, path: str, body: str, operation: str, what: str, content_type: str = TEXT_XML) -> Outcome:
        r = self.client.post(path, body, content_type=content_type)
        outcome = self._check(r, operation)
        if outcome is Outcome.EXISTS:
            self._info(f"  {what} already exists, continuing...")
        elif outcome is Outcome.FAILED:
            raise StepFailed(operation, r.status_code, r.text)
        return outcome

    def create_workspace(self) -> None:
        cfg = self.config
        self._create("workspaces", workspace_xml(cfg.workspace), "Workspace creation", "Workspace")

    def create_datastore(self) -> None:
        cfg = self.config
        self._create(
            f"workspaces/{cfg.workspace}/datastores/",
            datastore_xml(cfg.store, cfg.workspace, cfg.mbtiles_uri),
            "Datastore creation",
            "Datastore",
        )

    def discover_feature_types(self) -> None:
        cfg = self.config
        r = self.client.get(
            f"workspaces/{cfg.workspace}/datastores/{cfg.store}/featuretypes.xml",
            params={"list": "available"},
        )
        if self._check(r, "Feature types retrieval") is not Outcome.SUCCESS:
            raise StepFailed("Feature types retrieval", r.status_code, r.text)
        try:
            names = parse_feature_type_names(r.content)
        except ET.ParseError as e:
            raise StepFailed("Feature types retrieval", r.status_code, f"unreadable listing ({e})") from e

        self.report.feature_types = names
        self.console.print(f"[green]  Found {len(names)} feature types to publish[/green]")
        for name in names:
            self.console.print(f"    - {escape(name)}")
        audit("feature_types_discovered", count=len(names), names=names)

    def publish_feature_types(self) -> None:
        cfg = self.config
        report = self.report
        path = f"workspaces/{cfg.workspace}/datastores/{cfg.store}/featuretypes"
        for name in report.feature_types:
            self._info(f"  Publishing '{name}'...")
            try:
                r = self.client.post(path, featuretype_xml(name, cfg.workspace, cfg.store))
            except requests.RequestException as e:
                self._fail(f"Publishing '{name}' failed ({e})")
                report.failed += 1
                audit("feature_type_failed", name=name, error=str(e))
                continue

            outcome = self._check(r, f"Publishing '{name}'")
            if outcome is Outcome.SUCCESS:
                report.published += 1
            elif outcome is Outcome.EXISTS:
                # counted so a re-run reports the same total
                self._info(f"    Feature type '{name}' already exists, skipping...")
                report.published += 1
            else:
                self.console.print(f"[red]    Failed to publish '{escape(name)}'[/red]")
                report.failed += 1
            audit("feature_type_" + ("failed" if outcome is Outcome.FAILED else "published"),
                  name=name, status=r.status_code)

    def provision_style(self) -> None:
        cfg = self.config
        r = self.client.post(f"workspaces/{cfg.workspace}/styles", style_xml(cfg.style_name, cfg.workspace))
        outcome = self._check(r, "Style definition creation")
        style_path = Path(cfg.style_file)
        if outcome is Outcome.FAILED:
            self._info("  Continuing without style creation...")
            if not style_path.is_file():
                self._fail(f"  Style file not found: {style_path}")
            raise StepFailed("Style definition creation", r.status_code, r.text)
        if outcome is Outcome.EXISTS:
            self._info("  Style already exists, updating...")
        self.report.style_created = True

        if not style_path.is_file():
            self._fail(f"  Style file not found: {style_path}")
            audit("style_upload_skipped", style_file=str(style_path))
            return

        self._info("  Uploading style content...")
        try:
            payload = style_path.read_bytes()
        except OSError as e:
            raise StepFailed("Style content upload", detail=str(e)) from e
        r = self.client.put(f"workspaces/{cfg.workspace}/styles/{cfg.style_name}", payload, content_type=MBSTYLE)
        if self._check(r, "Style content upload") is not Outcome.SUCCESS:
            raise StepFailed("Style content upload", r.status_code, r.text)
        self._ok(f"  MBStyle '{cfg.style_name}' created successfully")

    def create_layer_group(self) -> None:
        cfg = self.config
        r = self.client.post(
            f"workspaces/{cfg.workspace}/layergroups",
            layergroup_xml(cfg.layer_group, cfg.workspace, cfg.style_name),
        )
        outcome = self._check(r, "Layer group creation")
        if outcome is Outcome.EXISTS:
            self._info("  Layer group already exists, skipping...")
        elif outcome is Outcome.FAILED:
            self._info("  You can create it manually in GeoServer admin interface")
            raise StepFailed("Layer group creation", r.status_code, r.text)
        else:
            self._ok(f"  Layer group '{cfg.layer_group}' created successfully")

    def tune_wms_memory(self) -> None:
        r = self.client.get("services/wms/settings.xml")
        if self._check(r, "WMS settings retrieval") is not Outcome.SUCCESS:
            self._info("  You may need to manually configure WMS settings")
            raise StepFailed("WMS settings retrieval", r.status_code, r.text)
        try:
            updated = set_max_request_memory(r.content, "0")
        except ET.ParseError as e:
            self._info("  You may need to manually configure WMS settings")
            raise StepFailed("WMS settings retrieval", r.status_code, f"unreadable settings ({e})") from e

        self._info("  Updating WMS maxRequestMemory to 0...")
        r = self.client.put("services/wms/settings", updated)
        if self._check(r, "WMS settings update") is not Outcome.SUCCESS:
            self._info("  You may need to manually set maxRequestMemory to 0 in WMS settings")
            raise StepFailed("WMS settings update", r.status_code, r.text)
        self._ok("  WMS settings updated successfully")

    # -- run --------------------------------------------------------------

    def run(self) -> ImportReport:
        report = self.report = ImportReport()
        self._info("Starting GeoServer data import process...")

        if not self.wait_until_ready():
            return report
        report.ready = True

        for number, step in enumerate(self.steps(), start=1):
            self._info(f"Step {number}: {step.title}...")
            try:
                step.action()
            except (StepFailed, requests.RequestException) as e:
                audit("step_failed", step=step.title, fatal=step.fatal, error=str(e),
                      status=getattr(e, "status_code", None), result="FAILURE")
                if step.fatal:
                    log.error("aborting import at %r: %s", step.title, e)
                    self._fail(f"  {e}")
                    report.aborted_at = step.title
                    return report
                log.warning("best-effort step %r failed: %s", step.title, e)
                report.soft_failures.append(step.title)
            else:
                audit("step_completed", step=step.title)

        self.print_summary()
        return report

    def print_summary(self) -> None:
        report = self.report
        self._info("Import process completed!")
        self.console.print(f"Summary: published: {report.published}, failed: {report.failed}")
        self._ok(f"Successfully published: {report.published} feature types")
        if report.failed > 0:
            self._fail(f"Failed to publish: {report.failed} feature types")
        self.console.print("[green]GeoServer is now ready with your MBTiles data![/green]")
        self._info(f"Access GeoServer at: {self.config.public_url}")
        self._info(f"Credentials: {self.config.username} / *******")


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Publish an MBTiles vector tile archive on GeoServer")
    p.add_argument("--url", dest="base_uri", type=str, default=None,
                   help="GeoServer REST root (env GEOSERVER_REST_URL, default: http://geoserver:8080/geoserver/rest).")
    p.add_argument("--workspace", type=str, default=None, help="Workspace name (default: osm_shortbread).")
    p.add_argument("--store", type=str, default=None, help="Datastore name (default: osm).")
    p.add_argument("--style", dest="style_name", type=str, default=None,
                   help="Style name (default: versatile-simple).")
    p.add_argument("--user", dest="username", type=str, default=None, help="Admin user (default: admin).")
    p.add_argument("--password", type=str, default=None, help="Admin password (env GEOSERVER_PASSWORD).")
    p.add_argument("--mbtiles", dest="mbtiles_uri", type=str, default=None,
                   help="Tile archive URI as GeoServer sees it (default: file:///data/shortbread.mbtiles).")
    p.add_argument("--style-file", type=str, default=None,
                   help="Local MBStyle file to upload (default: /styles/versatile-style.mbstyle).")
    p.add_argument("--layer-group", type=str, default=None, help="Layer group name (default: osm-shortbread).")
    p.add_argument("--public-url", type=str, default=None,
                   help="URL printed at the end for users (default: http://localhost/geoserver).")
    p.add_argument("--max-attempts", type=int, default=None, help="Readiness probes before giving up (default: 30).")
    p.add_argument("--retry-interval", type=float, default=None,
                   help="Seconds between readiness probes (default: 5).")
    p.add_argument("--timeout", type=float, default=None, help="Per-request timeout in seconds (default: none).")
    p.add_argument("--log-dir", type=str, default=None, help="Directory for the rotating import log (env GEOSERVER_LOG_DIR, default: ./logs).")
    return p.parse_args(argv)


def build_config(args: argparse.Namespace) -> GeoServerConfig:
    overrides = {k: v for k, v in vars(args).items() if k != "log_dir"}
    return GeoServerConfig.from_env().with_overrides(**overrides)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    try:
        log_path = setup_file_logging(Path(args.log_dir) if args.log_dir else None)
    except OSError as e:
        # the import itself does not need the log file
        _console.print(f"[yellow]Logging to console only, cannot write log file: {escape(str(e))}[/yellow]")
        log_path = None

    run_id = str(uuid.uuid4())
    try:
        config = build_config(args)
        audit("run_started", run_id=run_id,
              host=socket.gethostname(),
              base_uri=config.base_uri,
              workspace=config.workspace,
              store=config.store,
              style=config.style_name,
              layer_group=config.layer_group,
              audit_log_file=log_path,
        )
        report = Provisioner(config).run()
    except Exception as e:
        audit("run_failed", run_id=run_id, error=str(e), error_type=type(e).__name__)
        raise

    audit("run_completed", run_id=run_id,
          exit_code=report.exit_code,
          published=report.published,
          failed=report.failed,
          soft_failures=report.soft_failures,
          aborted_at=report.aborted_at,
          result="SUCCESS" if report.exit_code == 0 else "FAILURE",
    )
    return report.exit_code


if __name__ == "__main__":
    sys.exit(main())
