"""Marathon event catalog.

Maps the ``eventType`` tag found on the wire to a bit identity and a
pydantic model the full payload is validated against.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntFlag
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from .exceptions import UnknownEventError


class EventID(IntFlag):
    API_REQUEST = 1 << 0
    STATUS_UPDATE = 1 << 1
    FRAMEWORK_MESSAGE = 1 << 2
    SUBSCRIPTION = 1 << 3
    UNSUBSCRIBED = 1 << 4
    STREAM_ATTACHED = 1 << 5
    STREAM_DETACHED = 1 << 6
    ADD_HEALTH_CHECK = 1 << 7
    REMOVE_HEALTH_CHECK = 1 << 8
    FAILED_HEALTH_CHECK = 1 << 9
    CHANGED_HEALTH_CHECK = 1 << 10
    GROUP_CHANGE_SUCCESS = 1 << 11
    GROUP_CHANGE_FAILED = 1 << 12
    DEPLOYMENT_SUCCESS = 1 << 13
    DEPLOYMENT_FAILED = 1 << 14
    DEPLOYMENT_INFO = 1 << 15
    DEPLOYMENT_STEP_SUCCESS = 1 << 16
    DEPLOYMENT_STEP_FAILURE = 1 << 17
    APP_TERMINATED = 1 << 18

    APPLICATIONS = (
        API_REQUEST
        | STATUS_UPDATE
        | CHANGED_HEALTH_CHECK
        | FAILED_HEALTH_CHECK
        | APP_TERMINATED
    )
    SUBSCRIPTIONS = SUBSCRIPTION | UNSUBSCRIBED | STREAM_ATTACHED | STREAM_DETACHED
    HEALTH_CHECKS = (
        ADD_HEALTH_CHECK
        | REMOVE_HEALTH_CHECK
        | FAILED_HEALTH_CHECK
        | CHANGED_HEALTH_CHECK
    )
    DEPLOYMENTS = (
        DEPLOYMENT_SUCCESS
        | DEPLOYMENT_FAILED
        | DEPLOYMENT_INFO
        | DEPLOYMENT_STEP_SUCCESS
        | DEPLOYMENT_STEP_FAILURE
    )
    ALL = (1 << 19) - 1


class EventPayload(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="allow"
    )

    event_type: str
    timestamp: Optional[str] = None


class HealthCheck(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="allow"
    )

    grace_period_seconds: Optional[float] = None
    interval_seconds: Optional[float] = None
    max_consecutive_failures: Optional[int] = None
    path: Optional[str] = None
    port_index: Optional[int] = None
    protocol: Optional[str] = None
    timeout_seconds: Optional[float] = None


class IPAddress(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="allow"
    )

    ip_address: str
    protocol: Optional[str] = None


class APIRequestEvent(EventPayload):
    client_ip: Optional[str] = None
    uri: Optional[str] = None
    app_definition: Optional[dict[str, Any]] = None


class StatusUpdateEvent(EventPayload):
    slave_id: Optional[str] = None
    task_id: str
    task_status: str
    message: Optional[str] = None
    app_id: str
    host: Optional[str] = None
    ports: list[int] = []
    ip_addresses: list[IPAddress] = []
    version: Optional[str] = None


class FrameworkMessageEvent(EventPayload):
    executor_id: str
    message: Optional[str] = None
    slave_id: Optional[str] = None


class SubscriptionEvent(EventPayload):
    callback_url: str
    client_ip: Optional[str] = None


class StreamEvent(EventPayload):
    remote_address: Optional[str] = None


class HealthCheckEvent(EventPayload):
    app_id: str
    health_check: Optional[HealthCheck] = None


class HealthCheckChangedEvent(EventPayload):
    app_id: str
    task_id: Optional[str] = None
    version: Optional[str] = None
    alive: bool


class GroupChangeEvent(EventPayload):
    group_id: str
    version: Optional[str] = None
    reason: Optional[str] = None


class DeploymentEvent(EventPayload):
    id: str
    plan: Optional[dict[str, Any]] = None


class DeploymentStepEvent(EventPayload):
    plan: Optional[dict[str, Any]] = None
    current_step: Optional[dict[str, Any]] = None


class AppTerminatedEvent(EventPayload):
    app_id: str


@dataclass(frozen=True)
class EventSpec:
    id: EventID
    name: str
    model: type[EventPayload]


@dataclass(frozen=True)
class Event:
    id: EventID
    name: str
    payload: EventPayload


_CATALOG: dict[str, EventSpec] = {
    entry.name: entry
    for entry in (
        EventSpec(EventID.API_REQUEST, "api_post_event", APIRequestEvent),
        EventSpec(EventID.STATUS_UPDATE, "status_update_event", StatusUpdateEvent),
        EventSpec(
            EventID.FRAMEWORK_MESSAGE, "framework_message_event", FrameworkMessageEvent
        ),
        EventSpec(EventID.SUBSCRIPTION, "subscribe_event", SubscriptionEvent),
        EventSpec(EventID.UNSUBSCRIBED, "unsubscribe_event", SubscriptionEvent),
        EventSpec(EventID.STREAM_ATTACHED, "event_stream_attached", StreamEvent),
        EventSpec(EventID.STREAM_DETACHED, "event_stream_detached", StreamEvent),
        EventSpec(EventID.ADD_HEALTH_CHECK, "add_health_check_event", HealthCheckEvent),
        EventSpec(
            EventID.REMOVE_HEALTH_CHECK, "remove_health_check_event", HealthCheckEvent
        ),
        EventSpec(
            EventID.FAILED_HEALTH_CHECK, "failed_health_check_event", HealthCheckEvent
        ),
        EventSpec(
            EventID.CHANGED_HEALTH_CHECK,
            "health_status_changed_event",
            HealthCheckChangedEvent,
        ),
        EventSpec(
            EventID.GROUP_CHANGE_SUCCESS, "group_change_success", GroupChangeEvent
        ),
        EventSpec(EventID.GROUP_CHANGE_FAILED, "group_change_failed", GroupChangeEvent),
        EventSpec(EventID.DEPLOYMENT_SUCCESS, "deployment_success", DeploymentEvent),
        EventSpec(EventID.DEPLOYMENT_FAILED, "deployment_failed", DeploymentEvent),
        EventSpec(EventID.DEPLOYMENT_INFO, "deployment_info", DeploymentStepEvent),
        EventSpec(
            EventID.DEPLOYMENT_STEP_SUCCESS,
            "deployment_step_success",
            DeploymentStepEvent,
        ),
        EventSpec(
            EventID.DEPLOYMENT_STEP_FAILURE,
            "deployment_step_failure",
            DeploymentStepEvent,
        ),
        EventSpec(EventID.APP_TERMINATED, "app_terminated_event", AppTerminatedEvent),
    )
}


def get_event(event_type: str) -> EventSpec:
    entry = _CATALOG.get(event_type)
    if entry is None:
        raise UnknownEventError(event_type)
    return entry


def event_names() -> list[str]:
    return list(_CATALOG)


def parse_event_filter(value: str) -> int:
    """Turn ``"status_update_event,deployments"`` into a filter mask.

    Accepts wire tags and ``EventID`` member names in any case; an empty
    string selects every event.
    """
    mask = 0
    for raw in value.split(","):
        name = raw.strip()
        if not name:
            continue
        entry = _CATALOG.get(name)
        if entry is not None:
            mask |= entry.id
            continue
        member = EventID.__members__.get(name.upper())
        if member is None:
            raise UnknownEventError(name)
        mask |= member
    return mask or int(EventID.ALL)


__all__ = [
    "Event",
    "EventID",
    "EventPayload",
    "EventSpec",
    "event_names",
    "get_event",
    "parse_event_filter",
]
