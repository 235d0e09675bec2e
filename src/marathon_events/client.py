from __future__ import annotations

import logging
from typing import Any, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field

from .cluster import Cluster
from .config import MarathonConfig
from .exceptions import MarathonAPIError, RequestBuildError
from .listeners import EventsChannel
from .logging_utils import log_event
from .retry import RetryPolicy
from .subscription import EventSubscriptionManager

MARATHON_API_SUBSCRIPTION = "/v2/eventSubscriptions"
MARATHON_API_PING = "/ping"


class Subscriptions(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    callback_urls: list[str] = Field(default_factory=list, alias="callbackUrls")


class MarathonClient:
    """Marathon API client scoped to event subscriptions.

    Requests go to the first healthy cluster member; members that fail at
    the transport level or answer 5xx are marked down and the call moves on
    to the next one.
    """

    def __init__(
        self,
        config: MarathonConfig,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        retry_policy: Optional[RetryPolicy] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._config = config
        self._logger = logger or logging.getLogger(__name__)
        headers: dict[str, str] = {}
        if config.dcos_token:
            headers["Authorization"] = f"token={config.dcos_token}"
        self._http = httpx.AsyncClient(
            auth=config.basic_auth,
            headers=headers,
            timeout=config.request_timeout,
            transport=transport,
        )
        # The event stream stays open indefinitely; only connecting is bounded.
        self._stream_http = httpx.AsyncClient(
            auth=config.basic_auth,
            headers=headers,
            timeout=httpx.Timeout(config.request_timeout, read=None),
            transport=transport,
        )
        self.cluster = Cluster(
            config.marathon_url,
            health_check=self._ping,
            health_check_interval=config.health_check_interval,
            logger=self._logger,
        )
        self._events = EventSubscriptionManager(
            self, config, retry_policy=retry_policy, logger=self._logger
        )

    @property
    def config(self) -> MarathonConfig:
        return self._config

    @property
    def events(self) -> EventSubscriptionManager:
        return self._events

    async def __aenter__(self) -> "MarathonClient":
        return self

    async def __aexit__(self, *_exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._events.aclose()
        await self.cluster.aclose()
        await self._stream_http.aclose()
        await self._http.aclose()

    def build_api_request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[dict[str, Any]] = None,
        json: Optional[Any] = None,
        headers: Optional[dict[str, str]] = None,
        stream: bool = False,
    ) -> tuple[httpx.Request, str]:
        """Build a request against the current member.

        Raises ``MarathonUnavailableError`` when no member is up and
        ``RequestBuildError`` when httpx rejects the request itself.
        """
        member = self.cluster.get_member()
        http = self._stream_http if stream else self._http
        try:
            request = http.build_request(
                method, f"{member}{path}", params=params, json=json, headers=headers
            )
        except (httpx.InvalidURL, TypeError, ValueError) as exc:
            raise RequestBuildError(
                f"unable to build {method} {path} against {member}: {exc}"
            ) from exc
        return request, member

    async def send_stream(self, request: httpx.Request) -> httpx.Response:
        return await self._stream_http.send(request, stream=True)

    async def api_call(
        self,
        method: str,
        path: str,
        *,
        params: Optional[dict[str, Any]] = None,
        json: Optional[Any] = None,
    ) -> Any:
        while True:
            request, member = self.build_api_request(
                method, path, params=params, json=json
            )
            try:
                response = await self._http.send(request)
            except httpx.TransportError as exc:
                log_event(
                    self._logger,
                    logging.WARNING,
                    "marathon.request.failed",
                    method=method,
                    path=path,
                    member=member,
                    exc=exc,
                )
                self.cluster.mark_down(member)
                continue
            if 500 <= response.status_code < 600:
                log_event(
                    self._logger,
                    logging.WARNING,
                    "marathon.request.server_error",
                    method=method,
                    path=path,
                    member=member,
                    status=response.status_code,
                )
                self.cluster.mark_down(member)
                continue
            if response.is_error:
                body_preview = (response.text or "").strip().replace("\n", " ")[:200]
                raise MarathonAPIError(
                    f"Marathon API error for {method} {path}: "
                    f"status={response.status_code} body={body_preview!r}",
                    status_code=response.status_code,
                )
            if response.content:
                return response.json()
            return None

    async def _ping(self, member: str) -> bool:
        response = await self._http.get(f"{member}{MARATHON_API_PING}")
        return response.is_success

    async def subscriptions(self) -> Subscriptions:
        payload = await self.api_call("GET", MARATHON_API_SUBSCRIPTION)
        return Subscriptions.model_validate(payload or {})

    async def subscribe(self, callback: str) -> None:
        await self.api_call(
            "POST", MARATHON_API_SUBSCRIPTION, params={"callbackUrl": callback}
        )

    async def unsubscribe(self, callback: str) -> None:
        await self.api_call(
            "DELETE", MARATHON_API_SUBSCRIPTION, params={"callbackUrl": callback}
        )

    async def has_subscription(self, callback: str) -> bool:
        subscriptions = await self.subscriptions()
        return callback in subscriptions.callback_urls

    def subscription_url(self) -> str:
        return self._events.subscription_url()

    async def add_events_listener(self, filter: int) -> EventsChannel:
        """Attach a listener for events whose id intersects ``filter``."""
        return await self._events.add_events_listener(filter)

    async def remove_events_listener(self, channel: EventsChannel) -> None:
        await self._events.remove_events_listener(channel)


__all__ = ["MarathonClient", "Subscriptions"]
