"""
Thin HTTP client for the reporting API, used by dashboards and scripts.

NotificationListener follows the browser client: it holds the event
stream open and reconnects after a drop, or polls the notification list
when streaming is not available. Either way, listeners see each
notification id at most once per listener instance.
"""

import json
import logging
import threading
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Tuple

import requests

from config import CLIENT_POLL_INTERVAL, CLIENT_RECONNECT_DELAY, CLIENT_TIMEOUT

logger = logging.getLogger(__name__)


class ApiClientError(Exception):
    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code


class ApiClient:
    def __init__(self, base_url: str = "http://localhost:8000", session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = CLIENT_TIMEOUT

    def _make_request(self, method: str, endpoint: str, **kwargs):
        """Helper method for all API requests"""
        url = f"{self.base_url}{endpoint}"
        response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        try:
            response.raise_for_status()
        except requests.exceptions.HTTPError:
            try:
                message = response.json().get("error", "API request failed")
            except ValueError:
                message = "API request failed"
            logger.error("API request %s %s failed: %s", method, endpoint, message)
            raise ApiClientError(response.status_code, message)
        return response.json()

    # ---------- reports ----------

    def list_reports(self) -> List[Dict]:
        return self._make_request("GET", "/reports")

    def get_report(self, report_id: int) -> Dict:
        return self._make_request("GET", f"/reports/{report_id}")

    def create_report(self, report: Dict) -> Dict:
        return self._make_request("POST", "/reports", json=report)

    def update_report(self, report_id: int, fields: Dict) -> Dict:
        return self._make_request("PUT", f"/reports/{report_id}", json=fields)

    def delete_report(self, report_id: int) -> Dict:
        return self._make_request("DELETE", f"/reports/{report_id}")

    # ---------- notifications ----------

    def list_notifications(self, user_id: Optional[int] = None) -> List[Dict]:
        params = {"user_id": user_id} if user_id is not None else None
        return self._make_request("GET", "/notifications", params=params)

    def mark_read(self, notification_id: int, is_read: bool = True) -> Dict:
        return self._make_request("PUT", f"/notifications/{notification_id}", json={"is_read": is_read})

    def delete_notification(self, notification_id: int) -> Dict:
        return self._make_request("DELETE", f"/notifications/{notification_id}")

    def open_stream(self) -> requests.Response:
        response = self.session.get(
            f"{self.base_url}/notifications/stream",
            stream=True,
            timeout=(self.timeout, None),
            headers={"Accept": "text/event-stream"},
        )
        response.raise_for_status()
        return response


def parse_events(lines: Iterable[str]) -> Iterator[Tuple[Optional[str], Dict]]:
    """Yield (event id, decoded data) for each event in a server-sent event stream."""
    event_id = None
    data: List[str] = []
    for line in lines:
        if line is None:
            continue
        if line == "":
            if data:
                yield event_id, json.loads("\n".join(data))
            event_id, data = None, []
            continue
        if line.startswith(":"):
            continue
        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if field == "id":
            event_id = value
        elif field == "data":
            data.append(value)


class NotificationListener:
    def __init__(self, client: ApiClient, poll_interval: float = CLIENT_POLL_INTERVAL,
                 reconnect_delay: float = CLIENT_RECONNECT_DELAY):
        self.client = client
        self.poll_interval = poll_interval
        self.reconnect_delay = reconnect_delay
        self.listeners: List[Callable[[Dict], None]] = []
        self.seen_ids = set()

    def subscribe(self, callback: Callable[[Dict], None]):
        self.listeners.append(callback)

        def unsubscribe():
            if callback in self.listeners:
                self.listeners.remove(callback)
        return unsubscribe

    def _deliver(self, notification: Dict) -> bool:
        notification_id = notification.get("id")
        if notification_id in self.seen_ids:
            return False
        self.seen_ids.add(notification_id)
        for listener in list(self.listeners):
            listener(notification)
        return True

    def stream_once(self, stop: Optional[threading.Event] = None) -> int:
        """Consume one stream connection until it ends. Returns the number of new notifications."""
        delivered = 0
        response = self.client.open_stream()
        try:
            for _, notification in parse_events(response.iter_lines(decode_unicode=True)):
                if self._deliver(notification):
                    delivered += 1
                if stop is not None and stop.is_set():
                    break
        finally:
            response.close()
        return delivered

    def poll_once(self) -> int:
        delivered = 0
        for notification in self.client.list_notifications():
            if not notification.get("is_read") and self._deliver(notification):
                delivered += 1
        return delivered

    def run_stream(self, stop: threading.Event):
        while not stop.is_set():
            try:
                self.stream_once(stop)
            except (requests.exceptions.RequestException, ValueError) as e:
                logger.warning("Notification stream dropped: %s", e)
            stop.wait(self.reconnect_delay)

    def run_polling(self, stop: threading.Event):
        while not stop.is_set():
            try:
                self.poll_once()
            except (requests.exceptions.RequestException, ApiClientError) as e:
                logger.error("Notification polling failed: %s", e)
            stop.wait(self.poll_interval)
