"""Pub/Sub v1 bindings: topics, subscriptions and publishing."""

import base64
import logging
from typing import Any, Dict, Iterator, List, Optional, Sequence

from gcmdlets.core import (
    FetchResult,
    GCmdletsError,
    InvalidArgumentError,
    ResourceConflictError,
    ResourceNotFoundError,
    qualify_name,
)
from gcmdlets.paging import CancellationToken, execute, fetch, get_or_raise, iter_items

logger = logging.getLogger(__name__)

# Subscriptions whose topic was deleted report this in place of a topic name.
DELETED_TOPIC = "_deleted-topic_"


def topic_path(name: str, project: str) -> str:
    if name.lower() == DELETED_TOPIC:
        return name
    return qualify_name(name, project, "topics")


def subscription_path(name: str, project: str) -> str:
    return qualify_name(name, project, "subscriptions")


# --- Topics ---


def list_topics(
    service: Any, project: str, cancel: Optional[CancellationToken] = None
) -> Iterator[Dict[str, Any]]:
    def make_request(page_token):
        return service.projects().topics().list(
            project=f"projects/{project}", pageToken=page_token
        )

    return iter_items(make_request, "topics", f"topics of project '{project}'", cancel)


def get_topic(service: Any, project: str, name: str) -> Dict[str, Any]:
    topic = topic_path(name, project)
    return get_or_raise(service.projects().topics().get(topic=topic), topic, project)


def create_topic(service: Any, project: str, name: str) -> Dict[str, Any]:
    topic = topic_path(name, project)
    result = execute(
        service.projects().topics().create(name=topic, body={}),
        topic,
        project,
        action="create",
        messages={ResourceConflictError: f"Topic '{topic}' already exists."},
    )
    logger.debug(f"GCP API: topics.create() created {topic}")
    return result


def delete_topic(service: Any, project: str, name: str) -> None:
    topic = topic_path(name, project)
    execute(
        service.projects().topics().delete(topic=topic),
        topic,
        project,
        action="delete",
    )
    logger.debug(f"GCP API: topics.delete() removed {topic}")


# --- Subscriptions ---


def list_subscriptions(
    service: Any, project: str, cancel: Optional[CancellationToken] = None
) -> Iterator[Dict[str, Any]]:
    def make_request(page_token):
        return service.projects().subscriptions().list(
            project=f"projects/{project}", pageToken=page_token
        )

    return iter_items(
        make_request, "subscriptions", f"subscriptions of project '{project}'", cancel
    )


def fetch_subscription(service: Any, project: str, name: str) -> FetchResult:
    subscription = subscription_path(name, project)
    return fetch(
        service.projects().subscriptions().get(subscription=subscription),
        subscription,
        project,
    )


def get_subscription(service: Any, project: str, name: str) -> Dict[str, Any]:
    return fetch_subscription(service, project, name).unwrap()


def iter_topic_subscriptions(
    service: Any,
    project: str,
    topic: str,
    cancel: Optional[CancellationToken] = None,
) -> Iterator[FetchResult]:
    """Resolve every subscription attached to a topic.

    The topic only lists names, so each one is fetched. A name that no longer
    resolves (deleted between the two calls) comes back as NOT_FOUND.
    """
    topic = topic_path(topic, project)

    def make_request(page_token):
        return service.projects().topics().subscriptions().list(
            topic=topic, pageToken=page_token
        )

    for name in iter_items(
        make_request, "subscriptions", f"subscriptions of topic '{topic}'", cancel
    ):
        yield fetch_subscription(service, project, name)


def create_subscription(
    service: Any,
    project: str,
    name: str,
    topic: str,
    ack_deadline: Optional[int] = None,
    push_endpoint: Optional[str] = None,
) -> Dict[str, Any]:
    subscription = subscription_path(name, project)
    topic = topic_path(topic, project)
    body: Dict[str, Any] = {"topic": topic}
    if ack_deadline is not None:
        if not 10 <= ack_deadline <= 600:
            raise InvalidArgumentError(
                "Ack deadline must be between 10 and 600 seconds.", subscription
            )
        body["ackDeadlineSeconds"] = ack_deadline
    if push_endpoint:
        body["pushConfig"] = {"pushEndpoint": push_endpoint}

    return execute(
        service.projects().subscriptions().create(name=subscription, body=body),
        subscription,
        project,
        action="create",
        messages={
            ResourceConflictError: f"Subscription '{subscription}' already exists.",
            ResourceNotFoundError: f"Topic '{topic}' does not exist.",
        },
    )


def delete_subscription(service: Any, project: str, name: str) -> None:
    subscription = subscription_path(name, project)
    execute(
        service.projects().subscriptions().delete(subscription=subscription),
        subscription,
        project,
        action="delete",
    )


# --- Messages ---


def build_message(
    data: Optional[str] = None, attributes: Optional[Dict[str, str]] = None
) -> Dict[str, Any]:
    """Build a PubsubMessage. ``data`` is text; it is base64-encoded for the wire."""
    if not data and not attributes:
        raise InvalidArgumentError("A message needs data, attributes, or both.")
    message: Dict[str, Any] = {}
    if data:
        message["data"] = base64.b64encode(data.encode("utf-8")).decode("ascii")
    if attributes:
        message["attributes"] = dict(attributes)
    return message


def publish(
    service: Any, project: str, topic: str, messages: Sequence[Dict[str, Any]]
) -> List[Dict[str, Any]]:
    """Publish messages and return them with their server-assigned ``messageId``."""
    if not messages:
        raise InvalidArgumentError("No messages to publish.")
    topic = topic_path(topic, project)
    response = execute(
        service.projects().topics().publish(topic=topic, body={"messages": list(messages)}),
        topic,
        project,
        action="publish to",
    )
    message_ids = response.get("messageIds", [])
    if len(message_ids) != len(messages):
        raise GCmdletsError(
            f"Published {len(messages)} message(s) but the server returned "
            f"{len(message_ids)} message ID(s).",
            resource=topic,
            scope=project,
        )
    return [dict(message, messageId=mid) for message, mid in zip(messages, message_ids)]
