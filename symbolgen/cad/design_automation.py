"""Thin async client for APS Design Automation and OSS endpoints."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote

import httpx

from symbolgen.cad.auth import APSTokenProvider
from symbolgen.cad.errors import ExecutionServiceError

logger = logging.getLogger(__name__)

SCRIPT_NAME = "script.scr"
DWG_NAME = "Symbol.dwg"
PNG_NAME = "Symbol.png"
ALIAS = "production"

PENDING_STATUSES = frozenset({"pending", "inprogress"})

PollCallback = Callable[[str, float], None]


@dataclass(frozen=True)
class WorkItemOutcome:
  work_item_id: str
  status: str
  report: str | None

  @property
  def succeeded(self) -> bool:
    return self.status == "success"


class DesignAutomationClient:
  """Wraps the REST calls one symbol run needs."""

  def __init__(
    self,
    http: httpx.AsyncClient,
    tokens: APSTokenProvider,
    *,
    nickname: str,
    activity_name: str,
    engine_version: str,
    region: str = "EMEA",
    da_base_url: str = "https://developer.api.autodesk.com/da/us-east/v3",
    oss_base_url: str = "https://developer.api.autodesk.com/oss/v2",
    poll_interval: float = 2.0,
    max_polls: int = 150,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
  ) -> None:
    self._http = http
    self._tokens = tokens
    self.nickname = nickname
    self.activity_name = activity_name
    self.engine_version = engine_version
    self._region = region
    self._da = da_base_url.rstrip("/")
    self._oss = oss_base_url.rstrip("/")
    self._poll_interval = poll_interval
    self._max_polls = max_polls
    self._sleep = sleep
    self._activity_lock = asyncio.Lock()
    self._activity_ready = False

  async def _headers(self, *, json_body: bool = False) -> dict[str, str]:
    headers = {"Authorization": f"Bearer {await self._tokens.get_token()}"}
    if json_body:
      headers["Content-Type"] = "application/json"
    return headers

  @staticmethod
  def _raise_for(response: httpx.Response, action: str) -> None:
    if response.is_success:
      return
    logger.error("%s failed (%s): %s", action, response.status_code, response.text)
    raise ExecutionServiceError(f"{action} failed ({response.status_code}): {response.text[:300]}", status_code=response.status_code)

  def activity_spec(self) -> dict[str, Any]:
    return {
      "id": self.activity_name,
      "engine": self.engine_version,
      "commandLine": [f'$(engine.path)\\accoreconsole.exe /s "$(args[script].path)"'],
      "parameters": {
        "script": {"verb": "get", "description": "AutoLISP script file", "required": True, "localName": SCRIPT_NAME},
        "dwgOutput": {"verb": "put", "description": "Output DWG file", "required": True, "localName": DWG_NAME},
        "pngOutput": {"verb": "put", "description": "Output PNG file", "required": False, "localName": PNG_NAME},
      },
      "description": "Symbol generation activity with DWG and PNG output",
    }

  async def ensure_activity(self) -> None:
    """Create the activity and its alias once per client; later calls reuse them.

    A stale activity left by an earlier process is replaced on first use.
    """
    if self._activity_ready:
      return
    async with self._activity_lock:
      if self._activity_ready:
        return
      spec = self.activity_spec()
      response = await self._http.post(f"{self._da}/activities", json=spec, headers=await self._headers(json_body=True))
      if response.status_code == 409:
        logger.info("Activity %s exists; recreating", self.activity_name)
        await self.delete_activity()
        response = await self._http.post(f"{self._da}/activities", json=spec, headers=await self._headers(json_body=True))
      self._raise_for(response, "Activity creation")

      alias = await self._http.post(
        f"{self._da}/activities/{quote(self.activity_name, safe='')}/aliases",
        json={"id": ALIAS, "version": 1},
        headers=await self._headers(json_body=True),
      )
      if not alias.is_success and alias.status_code != 409:
        logger.warning("Alias creation for %s returned %s: %s", self.activity_name, alias.status_code, alias.text)
      self._activity_ready = True

  async def delete_activity(self) -> None:
    response = await self._http.delete(f"{self._da}/activities/{quote(self.activity_name, safe='')}", headers=await self._headers())
    self._activity_ready = False
    if not response.is_success and response.status_code != 404:
      logger.warning("Activity deletion returned %s", response.status_code)

  async def create_bucket(self, bucket_key: str) -> str:
    headers = await self._headers(json_body=True)
    headers["x-ads-region"] = self._region
    response = await self._http.post(f"{self._oss}/buckets", json={"bucketKey": bucket_key, "policyKey": "transient"}, headers=headers)
    if response.status_code != 409:
      self._raise_for(response, "Bucket creation")
    return bucket_key

  async def delete_bucket(self, bucket_key: str) -> None:
    response = await self._http.delete(f"{self._oss}/buckets/{bucket_key}", headers=await self._headers())
    if not response.is_success and response.status_code != 404:
      logger.warning("Bucket %s deletion returned %s", bucket_key, response.status_code)

  def _object_url(self, bucket_key: str, name: str) -> str:
    return f"{self._oss}/buckets/{bucket_key}/objects/{quote(name, safe='')}"

  async def upload(self, bucket_key: str, name: str, data: bytes) -> None:
    """Upload through a signed S3 URL and finalise the object."""
    object_url = self._object_url(bucket_key, name)
    signed = await self._http.get(f"{object_url}/signeds3upload", params={"parts": 1}, headers=await self._headers())
    self._raise_for(signed, "Signed upload URL")
    payload = signed.json()
    upload_key, urls = payload["uploadKey"], payload["urls"]

    put = await self._http.put(urls[0], content=data, headers={"Content-Type": "application/octet-stream"})
    self._raise_for(put, "S3 upload")
    etag = put.headers.get("etag", "")

    done = await self._http.post(
      f"{object_url}/signeds3upload",
      json={"uploadKey": upload_key, "parts": [{"partNumber": 1, "etag": etag}]},
      headers=await self._headers(json_body=True),
    )
    self._raise_for(done, "Upload completion")

  async def signed_url(self, bucket_key: str, name: str, *, writable: bool = False) -> str:
    params = {"access": "readwrite"} if writable else None
    response = await self._http.post(f"{self._object_url(bucket_key, name)}/signed", params=params, json={"minutesExpiration": 60}, headers=await self._headers(json_body=True))
    self._raise_for(response, "Signed URL")
    return str(response.json()["signedUrl"])

  async def submit_work_item(self, arguments: dict[str, Any]) -> str:
    body = {"activityId": f"{self.nickname}.{self.activity_name}+{ALIAS}", "arguments": arguments}
    response = await self._http.post(f"{self._da}/workitems", json=body, headers=await self._headers(json_body=True))
    self._raise_for(response, "WorkItem submission")
    return str(response.json()["id"])

  async def wait_for_work_item(self, work_item_id: str, on_poll: PollCallback | None = None) -> WorkItemOutcome:
    """Poll until the work item leaves pending/inprogress, then fetch its report."""
    elapsed = 0.0
    for _ in range(self._max_polls):
      response = await self._http.get(f"{self._da}/workitems/{work_item_id}", headers=await self._headers())
      self._raise_for(response, "WorkItem status")
      data = response.json()
      status = str(data.get("status", "unknown"))

      if status in PENDING_STATUSES:
        if on_poll is not None:
          on_poll(status, elapsed)
        await self._sleep(self._poll_interval)
        elapsed += self._poll_interval
        continue

      report = await self.fetch_report(data.get("reportUrl"))
      return WorkItemOutcome(work_item_id=work_item_id, status=status, report=report)

    raise ExecutionServiceError(f"WorkItem {work_item_id} still running after {self._max_polls} polls", work_item_id=work_item_id)

  async def fetch_report(self, report_url: str | None) -> str | None:
    if not report_url:
      return None
    try:
      response = await self._http.get(report_url)
    except httpx.HTTPError as exc:
      logger.warning("Could not fetch work item report: %s", exc)
      return None
    return response.text if response.is_success else None

  async def download(self, url: str) -> bytes | None:
    try:
      response = await self._http.get(url)
    except httpx.HTTPError as exc:
      logger.warning("Output download failed: %s", exc)
      return None
    if not response.is_success:
      return None
    return response.content
