import logging
from typing import Any, Dict, List, Optional, Protocol

import httpx
from config import settings
from pydantic import ValidationError
from schemas.reading import Reading

logger = logging.getLogger(__name__)


class ReadingSource(Protocol):
    """Delivers the latest normalized reading of every PDU"""

    async def fetch(self) -> List[Reading]:
        ...


class StaticReadingSource:
    """Serves a fixed list of readings, replaced with `update`"""

    def __init__(self, readings: Optional[List[Reading]] = None):
        self.readings = list(readings or [])

    def update(self, readings: List[Reading]):
        self.readings = list(readings)

    async def fetch(self) -> List[Reading]:
        return list(self.readings)


def _has_value(value: Any) -> bool:
    return value is not None and str(value).strip().lower() not in ("", "null", "undefined")


class HttpReadingSource:
    """
    Reads PDU power data and rack sensors from the acquisition API.

    Both endpoints are paged with ``skip``/``limit`` and wrap items in a
    ``{"success": true, "data": [...]}`` envelope.  Sensor values are joined on
    the rack id.  PDUs without a rack name are dropped.
    """

    def __init__(
        self,
        power_url: str,
        sensors_url: Optional[str] = None,
        api_key: Optional[str] = None,
        page_size: int = 100,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not power_url:
            raise ValueError("power_url is required")

        self.power_url = power_url
        self.sensors_url = sensors_url
        self.page_size = page_size

        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._http = httpx.AsyncClient(headers=headers, timeout=timeout, transport=transport)

    async def close(self):
        await self._http.aclose()

    async def _fetch_all(self, url: str) -> List[Dict[str, Any]]:
        items: List[Dict[str, Any]] = []
        skip = 0
        while True:
            resp = await self._http.get(url, params={"skip": skip, "limit": self.page_size})
            resp.raise_for_status()
            body = resp.json()
            if not body.get("success") or body.get("data") is None:
                raise ValueError(f"Invalid response from {url}")

            page = body["data"] if isinstance(body["data"], list) else []
            items.extend(page)
            if len(page) < self.page_size:
                return items
            skip += self.page_size

    async def fetch(self) -> List[Reading]:
        power_items = await self._fetch_all(self.power_url)

        sensors: Dict[str, Dict[str, Any]] = {}
        if self.sensors_url:
            try:
                for item in await self._fetch_all(self.sensors_url):
                    if _has_value(item.get("rackId")):
                        sensors[str(item["rackId"]).strip()] = item
            except (httpx.HTTPError, ValueError) as e:
                # Sensors are optional; evaluate power metrics alone
                logger.warning(f"⚠️ Sensor data unavailable this cycle: {str(e)}")

        readings = []
        skipped = 0
        for item in power_items:
            if not _has_value(item.get("rackName")):
                skipped += 1
                continue

            rack_id = str(item.get("rackId") or "").strip() or None
            sensor = sensors.get(rack_id or "", {})
            try:
                readings.append(
                    Reading(
                        pdu_id=str(item.get("id")),
                        rack_id=rack_id,
                        name=str(item["rackName"]).strip(),
                        country=item.get("country"),
                        site=item.get("site"),
                        dc=item.get("dc"),
                        phase=item.get("phase"),
                        chain=str(item.get("chain") or "") or None,
                        node=str(item.get("node") or "") or None,
                        serial=item.get("serial"),
                        gw_name=item.get("gwName"),
                        gw_ip=item.get("gwIp"),
                        group=item.get("group"),
                        current=item.get("totalAmps"),
                        voltage=item.get("totalVolts"),
                        temperature=item.get("temperature"),
                        power=item.get("totalWatts"),
                        sensor_temperature=sensor.get("temperature"),
                        sensor_humidity=sensor.get("humidity"),
                    )
                )
            except ValidationError as e:
                skipped += 1
                logger.warning(f"Skipping malformed PDU item {item.get('id')}: {e}")

        if skipped:
            logger.info(f"{skipped} PDU items without rack name or with bad values skipped")
        return readings


def create_reading_source() -> Optional[HttpReadingSource]:
    """Source for the configured acquisition API, None when it is not configured"""
    if not settings.reading_source_url:
        return None
    return HttpReadingSource(
        settings.reading_source_url,
        sensors_url=settings.reading_sensors_url,
        api_key=settings.reading_source_api_key,
        page_size=settings.reading_page_size,
        timeout=settings.reading_timeout_seconds,
    )
