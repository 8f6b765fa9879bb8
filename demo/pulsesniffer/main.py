"""Pulse sniffer: listens to some real world Pulse messages.

Two independent subscriptions run concurrently on one connection:
- a named, shared queue receiving Taskcluster task messages, acknowledged
  after they are printed
- a temporary queue receiving every normalized buildbot message, acknowledged
  automatically

Credentials come from PULSE_USERNAME / PULSE_PASSWORD; the server is production.
"""

import logging

from pulse import (
    BindingConfig,
    Delivery,
    ExchangeRegistry,
    RoutingKeyConfig,
    TopicWildcard,
    bind,
    new_connection,
)
from pulse.log_setup import setup_logging

logger = logging.getLogger(__name__)

GAIA_TASKS = RoutingKeyConfig([TopicWildcard.ANY] * 6 + ["gaia", TopicWildcard.ALL])
AWS_PROVISIONER_TASKS = RoutingKeyConfig(
    [TopicWildcard.ANY] * 5 + ["aws-provisioner", TopicWildcard.ALL]
)


def format_task_message(delivery: Delivery) -> str:
    return f"Received from exchange {delivery.exchange}:\n{delivery.body.decode('utf-8', errors='replace')}\n"


def print_task_message(delivery: Delivery) -> None:
    print(format_task_message(delivery))
    delivery.ack()  # acknowledge message *after* processing


def print_buildbot_message(delivery: Delivery) -> None:
    print("Buildbot message received\n")


def main():
    setup_logging(app_name="pulsesniffer")
    with new_connection() as conn:
        tasks = conn.subscribe(
            "taskprocessing",
            print_task_message,
            1,
            False,
            bind(str(GAIA_TASKS), ExchangeRegistry.TASK_DEFINED),
            bind(str(AWS_PROVISIONER_TASKS), ExchangeRegistry.TASK_RUNNING),
        )
        conn.subscribe(
            "",
            print_buildbot_message,
            1,
            True,
            BindingConfig(
                exchange=ExchangeRegistry.BUILD_NORMALIZED,
                routing_keys=[TopicWildcard.ALL],
            ),
        )
        try:
            tasks.wait()
        except KeyboardInterrupt:
            logger.info("Interrupted, shutting down")


if __name__ == "__main__":
    main()
