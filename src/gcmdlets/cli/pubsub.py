import logging
from typing import List, Optional

import typer
from typing_extensions import Annotated

from gcmdlets import pubsub
from gcmdlets.cli.common import (
    emit,
    error_console,
    for_each,
    get_project,
    get_service,
    handle_error,
    interruptible,
    parse_key_values,
    report_error,
)
from gcmdlets.core import FetchStatus
from gcmdlets.prompts import ConfirmationGate

logger = logging.getLogger(__name__)

app = typer.Typer(help="Pub/Sub topics, subscriptions and messages.", no_args_is_help=True)
topic_app = typer.Typer(help="Manage topics.", no_args_is_help=True)
subscription_app = typer.Typer(help="Manage subscriptions.", no_args_is_help=True)
app.add_typer(topic_app, name="topic")
app.add_typer(subscription_app, name="subscription")

Names = Annotated[List[str], typer.Argument(help="Short or fully qualified names")]


@topic_app.command("list")
def topic_list(ctx: typer.Context) -> None:
    """
    List the topics of a project.
    """
    try:
        project = get_project(ctx)
        with interruptible() as cancel:
            emit(ctx, pubsub.list_topics(get_service("pubsub"), project, cancel), "topic")
    except Exception as e:
        handle_error(e)


@topic_app.command("get")
def topic_get(ctx: typer.Context, names: Names) -> None:
    """
    Get topics by name.
    """
    try:
        project = get_project(ctx)
        service = get_service("pubsub")
        for_each(names, lambda n: emit(ctx, [pubsub.get_topic(service, project, n)], "topic"))
    except Exception as e:
        handle_error(e)


@topic_app.command("create")
def topic_create(ctx: typer.Context, names: Names) -> None:
    """
    Create topics.
    """
    try:
        project = get_project(ctx)
        service = get_service("pubsub")
        for_each(
            names, lambda n: emit(ctx, [pubsub.create_topic(service, project, n)], "topic")
        )
    except Exception as e:
        handle_error(e)


@topic_app.command("delete")
def topic_delete(
    ctx: typer.Context,
    names: Names,
    force: bool = typer.Option(False, "--force", help="Delete without asking"),
) -> None:
    """
    Delete topics. Their subscriptions are kept and detached.
    """
    try:
        project = get_project(ctx)
        service = get_service("pubsub")
        gate = ConfirmationGate(force=force)

        def delete(name):
            topic = pubsub.topic_path(name, project)
            if gate.confirm(f"Delete topic '{topic}'?"):
                pubsub.delete_topic(service, project, name)
            else:
                error_console.print(f"Skipped topic {topic}")

        for_each(names, delete)
    except Exception as e:
        handle_error(e)


@subscription_app.command("list")
def subscription_list(
    ctx: typer.Context,
    topic: Optional[str] = typer.Option(
        None, "--topic", "-t", help="Only subscriptions attached to this topic"
    ),
) -> None:
    """
    List subscriptions of a project or of one topic.
    """
    try:
        project = get_project(ctx)
        service = get_service("pubsub")
        with interruptible() as cancel:
            if topic is None:
                emit(ctx, pubsub.list_subscriptions(service, project, cancel), "subscription")
                return

            missing = []

            def found():
                for result in pubsub.iter_topic_subscriptions(service, project, topic, cancel):
                    if result.status is FetchStatus.FOUND:
                        yield result.value
                    elif result.status is FetchStatus.NOT_FOUND:
                        missing.append(result.error)
                    else:
                        raise result.error

            emit(ctx, found(), "subscription")
            for error in missing:
                report_error(error)
            if missing:
                raise typer.Exit(code=1)
    except Exception as e:
        handle_error(e)


@subscription_app.command("get")
def subscription_get(ctx: typer.Context, names: Names) -> None:
    """
    Get subscriptions by name.
    """
    try:
        project = get_project(ctx)
        service = get_service("pubsub")
        for_each(
            names,
            lambda n: emit(ctx, [pubsub.get_subscription(service, project, n)], "subscription"),
        )
    except Exception as e:
        handle_error(e)


@subscription_app.command("create")
def subscription_create(
    ctx: typer.Context,
    name: Annotated[str, typer.Argument(help="Subscription name")],
    topic: Annotated[str, typer.Argument(help="Topic to subscribe to")],
    ack_deadline: Optional[int] = typer.Option(
        None, "--ack-deadline", help="Ack deadline in seconds (10-600)"
    ),
    push_endpoint: Optional[str] = typer.Option(
        None, "--push-endpoint", help="Push messages to this URL instead of pull"
    ),
) -> None:
    """
    Create a subscription to a topic.
    """
    try:
        project = get_project(ctx)
        subscription = pubsub.create_subscription(
            get_service("pubsub"), project, name, topic, ack_deadline, push_endpoint
        )
        emit(ctx, [subscription], "subscription")
    except Exception as e:
        handle_error(e)


@subscription_app.command("delete")
def subscription_delete(ctx: typer.Context, names: Names) -> None:
    """
    Delete subscriptions.
    """
    try:
        project = get_project(ctx)
        service = get_service("pubsub")
        for_each(names, lambda n: pubsub.delete_subscription(service, project, n))
    except Exception as e:
        handle_error(e)


@app.command("publish")
def publish(
    ctx: typer.Context,
    topic: Annotated[str, typer.Argument(help="Topic to publish to")],
    data: Annotated[
        Optional[List[str]],
        typer.Option("--data", "-d", help="Message text, one message per flag"),
    ] = None,
    attributes: Annotated[
        Optional[List[str]],
        typer.Option("--attribute", "-a", help="key=value attribute for every message"),
    ] = None,
) -> None:
    """
    Publish messages to a topic and print them with their message IDs.
    """
    try:
        project = get_project(ctx)
        attrs = parse_key_values(attributes, "--attribute")
        texts = list(data or [])
        messages = [pubsub.build_message(text, attrs) for text in texts]
        if not messages:
            messages = [pubsub.build_message(None, attrs)]
        emit(ctx, pubsub.publish(get_service("pubsub"), project, topic, messages), "message")
    except Exception as e:
        handle_error(e)
