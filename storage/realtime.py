"""
PocketBase realtime feed (server-sent events).

PocketBase pushes single-record change events; every event triggers a fresh
list of the subscribed scope so callers always receive a full snapshot.
If the stream drops, the feed reconnects after a delay and re-lists.
"""
from __future__ import annotations
import json
import logging
import threading
from typing import Iterable, Iterator, Optional, Sequence, Tuple

import requests

from core.exceptions import BackendRejected, BackendUnreachable, TodoError
from storage.base import ErrorCallback, SnapshotCallback, Subscription
from storage.pocketbase import PocketBaseClient

logger = logging.getLogger(__name__)

TASKS_TOPIC = "tasks/*"


def iter_sse(lines: Iterable[str]) -> Iterator[Tuple[str, str]]:
    """Yield (event, data) pairs from the lines of an event stream."""
    event, data = "message", []
    for line in lines:
        if line is None:
            continue
        if isinstance(line, bytes):
            line = line.decode("utf-8")
        if not line:
            if data:
                yield event, "\n".join(data)
            event, data = "message", []
            continue
        if line.startswith(":"):
            continue
        name, _, value = line.partition(":")
        value = value[1:] if value.startswith(" ") else value
        if name == "event":
            event = value
        elif name == "data":
            data.append(value)
    if data:
        yield event, "\n".join(data)


def _client_id(data: str) -> str:
    try:
        client_id = json.loads(data)["clientId"]
    except (ValueError, KeyError, TypeError) as e:
        raise BackendRejected(f"Realtime connect: malformed PB_CONNECT ({e!r})") from e
    return str(client_id)


class _LiveFeed:
    def __init__(self, client: PocketBaseClient, topic: str, reconnect_delay: float,
                 on_snapshot: SnapshotCallback, on_error: ErrorCallback):
        self.client = client
        self.topic = topic
        self.reconnect_delay = reconnect_delay
        self.on_snapshot = on_snapshot
        self.on_error = on_error
        self._resp: Optional[requests.Response] = None
        self._lock = threading.Lock()
        self.sub: Optional[Subscription] = None

    def close_stream(self) -> None:
        with self._lock:
            resp, self._resp = self._resp, None
        if resp is not None:
            resp.close()

    def deliver(self) -> None:
        sub = self.sub
        try:
            tasks = self.client.list_tasks(sub.group_ids)
        except TodoError as e:
            if sub.active:
                self.on_error(e)
            return
        except Exception as e:
            if sub.active:
                logger.exception("[realtime] re-list failed")
                self.on_error(BackendRejected(f"Unexpected sync failure: {e!r}"))
            return
        if sub.active:
            self.on_snapshot(tasks)

    def listen(self) -> None:
        url = f"{self.client.base_url}/api/realtime"
        resp = self.client.session.get(url, stream=True, timeout=(10, None),
                                       headers={"Accept": "text/event-stream"})
        with self._lock:
            self._resp = resp
        try:
            if not resp.ok:
                raise BackendUnreachable(f"Realtime connect: {resp.status_code} {resp.text}")
            for event, data in iter_sse(resp.iter_lines(decode_unicode=True)):
                if not self.sub.active:
                    return
                if event == "PB_CONNECT":
                    client_id = _client_id(data)
                    self.client.set_realtime_subscriptions(client_id, [self.topic])
                    logger.info("[realtime] subscribed topic=%s", self.topic)
                elif event == self.topic:
                    self.deliver()
        finally:
            self.close_stream()

    def run(self) -> None:
        self.deliver()
        while self.sub.active:
            try:
                self.listen()
            except (requests.RequestException, TodoError) as e:
                if not self.sub.active:
                    break
                logger.warning("[realtime] stream lost (%s); retry in %ss", e, self.reconnect_delay)
                err = e if isinstance(e, TodoError) else BackendUnreachable(str(e))
                self.on_error(err)
            except Exception as e:
                # closing the stream from unsubscribe() can surface as any read error
                if not self.sub.active:
                    break
                logger.exception("[realtime] stream failed; retry in %ss", self.reconnect_delay)
                self.on_error(BackendRejected(f"Unexpected stream failure: {e!r}"))
            if self.sub.wait(self.reconnect_delay):
                break
            self.deliver()


class RealtimeSubscriber:
    """Push strategy: one SSE connection per subscription, full re-list on each change."""
    def __init__(self, client: PocketBaseClient, topic: str = TASKS_TOPIC, reconnect_delay: float = 5.0):
        self.client = client
        self.topic = topic
        self.reconnect_delay = reconnect_delay

    def subscribe(self, group_ids: Optional[Sequence[str]], on_snapshot: SnapshotCallback,
                  on_error: ErrorCallback) -> Subscription:
        feed = _LiveFeed(self.client, self.topic, self.reconnect_delay, on_snapshot, on_error)
        sub = Subscription(group_ids, on_cancel=feed.close_stream)
        feed.sub = sub
        threading.Thread(target=feed.run, daemon=True, name="pb-realtime").start()
        return sub
