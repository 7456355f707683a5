"""paho-mqtt transport for the robot's local MQTT broker.

The robot runs its own broker on port 8883 behind TLS with a self-signed
certificate.  The client id and username are the robot's blid.  The robot
publishes its shadow as ``{"state": {"reported": {...}}}`` fragments and
accepts JSON commands on the ``cmd`` topic.
"""

from __future__ import annotations

import asyncio
import copy
import json
import logging
import ssl
import time
from collections.abc import Sequence
from typing import Any, cast

import paho.mqtt.client as mqtt

from pyroomba._constants import (
    COMMAND_INITIATOR,
    COMMAND_TIMEOUT,
    COMMAND_TOPIC,
    MQTT_KEEPALIVE,
    MQTT_PORT,
    STATUS_TIMEOUT,
)
from pyroomba._redact import redact_for_log
from pyroomba._transport import EventSource, TransportEvent
from pyroomba.config import DeviceIdentity
from pyroomba.exceptions import RoombaCommandError, RoombaTransportError
from pyroomba.models.mission import RoomMission

_logger = logging.getLogger(__name__)

# MQTT 3.1.1 CONNACK refusals as mapped to MQTT 5 reason codes by paho.
_CONNACK_MESSAGES: dict[int, str] = {
    132: "Connection refused: unacceptable protocol version",
    133: "Connection refused: identifier rejected",
    134: "Connection refused: bad user name or password",
    135: "Connection refused: not authorised",
    136: "Connection refused: server unavailable",
}


def build_tls_context(cipher: str) -> ssl.SSLContext:
    """TLS context pinned to a single suite, without certificate checks.

    OpenSSL cannot restrict individual TLS 1.3 suites through
    ``set_ciphers``, so ``TLS_*`` names only force TLS 1.3 and leave the
    1.3 suite list at its default.
    """
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    context.check_hostname = False
    context.verify_mode = ssl.CERT_NONE
    if cipher.startswith("TLS_"):
        context.minimum_version = ssl.TLSVersion.TLSv1_3
    else:
        context.maximum_version = ssl.TLSVersion.TLSv1_2
        # Robot certificates use keys the default security level refuses.
        context.set_ciphers(f"{cipher}:@SECLEVEL=0")
    return context


def connack_error(reason_code: Any) -> str:
    return _CONNACK_MESSAGES.get(int(reason_code.value), f"Connection refused: {reason_code}")


def parse_reported(payload: bytes) -> dict[str, Any] | None:
    """Extract ``state.reported`` from a shadow update, if present."""
    try:
        parsed = json.loads(payload)
    except (UnicodeDecodeError, json.JSONDecodeError):
        return None
    if not isinstance(parsed, dict):
        return None
    state = parsed.get("state")
    if not isinstance(state, dict):
        return None
    reported = state.get("reported")
    return reported if isinstance(reported, dict) else None


def _merge_shadow(target: dict[str, Any], incoming: dict[str, Any]) -> dict[str, Any]:
    """Deep-merge a reported fragment into the accumulated shadow."""
    for key, value in incoming.items():
        existing = target.get(key)
        if isinstance(value, dict) and isinstance(existing, dict):
            _merge_shadow(existing, value)
        else:
            target[key] = copy.deepcopy(value)
    return target


class LocalRobot(EventSource):
    """Threaded paho-mqtt connection that emits events onto an asyncio loop.

    All listeners run on the loop thread; the paho network thread only
    hands work over with ``call_soon_threadsafe``.
    """

    def __init__(
        self,
        identity: DeviceIdentity,
        cipher: str,
        *,
        port: int = MQTT_PORT,
        keepalive: int = MQTT_KEEPALIVE,
        command_timeout: float = COMMAND_TIMEOUT,
        state_timeout: float = STATUS_TIMEOUT,
    ) -> None:
        super().__init__()
        self._identity = identity
        self._cipher = cipher
        self._port = port
        self._keepalive = keepalive
        self._command_timeout = command_timeout
        self._state_timeout = state_timeout
        self._loop: asyncio.AbstractEventLoop | None = None
        self._client: mqtt.Client | None = None
        self._ended = False
        self._shadow: dict[str, Any] = {}
        self._shadow_waiters: list[asyncio.Event] = []
        self._publish_waiters: dict[int, asyncio.Future[None]] = {}

    @property
    def cipher(self) -> str:
        return self._cipher

    @property
    def shadow(self) -> dict[str, Any]:
        """Copy of every reported field received on this connection."""
        return copy.deepcopy(self._shadow)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def connect(self) -> None:
        """Start connecting in an executor; the outcome arrives as an event."""
        loop = asyncio.get_running_loop()
        self._loop = loop
        _logger.debug(
            "Connecting to robot %s",
            redact_for_log(
                {
                    "address": self._identity.address,
                    "port": self._port,
                    "cipher": self._cipher,
                    "client_id": self._identity.blid,
                }
            ),
        )
        future = loop.run_in_executor(None, self._blocking_connect)
        future.add_done_callback(self._on_connect_attempt_done)

    def _blocking_connect(self) -> mqtt.Client:
        client = mqtt.Client(
            callback_api_version=cast(Any, mqtt).CallbackAPIVersion.VERSION2,
            client_id=self._identity.blid,
            protocol=mqtt.MQTTv311,
        )
        client.enable_logger(_logger)
        client.username_pw_set(self._identity.blid, self._identity.password)
        client.tls_set_context(build_tls_context(self._cipher))
        client.tls_insecure_set(True)
        client.on_connect = self._on_connect
        client.on_message = self._on_message
        client.on_disconnect = self._on_disconnect
        client.on_publish = self._on_publish

        try:
            client.connect(self._identity.address, self._port, keepalive=self._keepalive)
        except ssl.SSLError as exc:
            raise RoombaTransportError(f"TLS handshake failed: {exc}", cipher=self._cipher) from exc
        except OSError as exc:
            raise RoombaTransportError(
                f"Connection to {self._identity.address}:{self._port} failed: {exc}",
                cipher=self._cipher,
            ) from exc
        # Assigned before the network thread starts so that commands issued
        # from a CONNECT listener find the client.
        self._client = client
        client.loop_start()
        return client

    def _on_connect_attempt_done(self, future: asyncio.Future[mqtt.Client]) -> None:
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            self.emit(TransportEvent.ERROR, exc)
            return
        client = future.result()
        if self._ended and self._client is client:
            # end() ran while the socket was still opening.
            self._client = None
            self._shutdown(client)

    def end(self) -> None:
        """Disconnect and stop the network thread.  Safe to call repeatedly."""
        self._ended = True
        client = self._client
        self._client = None
        for waiter in self._publish_waiters.values():
            if not waiter.done():
                waiter.set_exception(RoombaCommandError("Connection closed before acknowledgement"))
        self._publish_waiters.clear()
        for event in self._shadow_waiters:
            event.set()
        if client is not None:
            self._shutdown(client)

    def _shutdown(self, client: mqtt.Client) -> None:
        try:
            client.disconnect()
        finally:
            client.loop_stop()
            _logger.debug("MQTT network loop stopped")

    # ------------------------------------------------------------------
    # paho callbacks (network thread)
    # ------------------------------------------------------------------

    def _call_soon(self, callback: Any, *args: Any) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(callback, *args)

    def _on_connect(
        self,
        client: mqtt.Client,
        _userdata: Any,
        _flags: Any,
        reason_code: Any,
        _properties: Any,
    ) -> None:
        if reason_code.is_failure:
            self._call_soon(
                self.emit,
                TransportEvent.ERROR,
                RoombaTransportError(connack_error(reason_code), cipher=self._cipher),
            )
            return
        _logger.debug("MQTT connected reason=%s", reason_code)
        client.subscribe("#", qos=0)
        self._call_soon(self.emit, TransportEvent.CONNECT)

    def _on_message(self, _client: mqtt.Client, _userdata: Any, msg: mqtt.MQTTMessage) -> None:
        reported = parse_reported(msg.payload)
        if reported is None:
            _logger.debug("Ignoring message on topic=%s", msg.topic)
            return
        self._call_soon(self._apply_reported, reported)

    def _on_disconnect(
        self,
        _client: mqtt.Client,
        _userdata: Any,
        _disconnect_flags: Any,
        reason_code: Any,
        _properties: Any,
    ) -> None:
        if self._ended or not reason_code.is_failure:
            return
        self._call_soon(
            self.emit,
            TransportEvent.ERROR,
            RoombaTransportError(f"Disconnected: {reason_code}", cipher=self._cipher),
        )

    def _on_publish(self, _client: mqtt.Client, _userdata: Any, mid: int, _reason_code: Any, _properties: Any) -> None:
        self._call_soon(self._resolve_publish, mid)

    # ------------------------------------------------------------------
    # Loop-thread handlers
    # ------------------------------------------------------------------

    def _apply_reported(self, reported: dict[str, Any]) -> None:
        _merge_shadow(self._shadow, reported)
        for event in self._shadow_waiters:
            event.set()
        # Listeners get the whole shadow so one event is enough to judge
        # completeness, even if the connect burst arrived before they
        # subscribed.
        self.emit(TransportEvent.STATE, self.shadow)

    def _resolve_publish(self, mid: int) -> None:
        waiter = self._publish_waiters.pop(mid, None)
        if waiter is not None and not waiter.done():
            waiter.set_result(None)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def _command(self, command: str, **args: Any) -> None:
        client = self._client
        if client is None:
            raise RoombaCommandError(f"Cannot send {command}: not connected", command=command)

        payload = {"command": command, "time": int(time.time()), "initiator": COMMAND_INITIATOR, **args}
        _logger.debug("Publishing command %s", payload)
        info = client.publish(COMMAND_TOPIC, json.dumps(payload), qos=0)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise RoombaCommandError(
                f"Publishing {command} failed: {mqtt.error_string(info.rc)}",
                command=command,
            )

        waiter: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._publish_waiters[info.mid] = waiter
        try:
            await asyncio.wait_for(waiter, self._command_timeout)
        except TimeoutError as exc:
            raise RoombaCommandError(f"{command} was not acknowledged in time", command=command) from exc
        finally:
            self._publish_waiters.pop(info.mid, None)

    async def clean(self) -> None:
        await self._command("start")

    async def clean_room(self, mission: RoomMission) -> None:
        await self._command("start", **mission.to_command_args())

    async def pause(self) -> None:
        await self._command("pause")

    async def resume(self) -> None:
        await self._command("resume")

    async def dock(self) -> None:
        await self._command("dock")

    async def find(self) -> None:
        await self._command("find")

    async def get_robot_state(self, fields: Sequence[str]) -> dict[str, Any]:
        """Wait until every field in *fields* has been reported, then return them."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._state_timeout
        while True:
            missing = [name for name in fields if name not in self._shadow]
            if not missing:
                return {name: copy.deepcopy(self._shadow[name]) for name in fields}
            if self._ended:
                raise RoombaCommandError("Connection closed while waiting for state", command="getRobotState")

            remaining = deadline - loop.time()
            if remaining <= 0:
                raise RoombaCommandError(f"Robot did not report {missing}", command="getRobotState")
            waiter = asyncio.Event()
            self._shadow_waiters.append(waiter)
            try:
                await asyncio.wait_for(waiter.wait(), remaining)
            except TimeoutError:
                continue
            finally:
                self._shadow_waiters.remove(waiter)


def local_robot_factory(identity: DeviceIdentity, cipher: str) -> LocalRobot:
    return LocalRobot(identity, cipher)
