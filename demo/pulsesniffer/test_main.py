"""Tests for the pulsesniffer demo."""

from unittest.mock import Mock

from demo.pulsesniffer.main import (
    AWS_PROVISIONER_TASKS,
    GAIA_TASKS,
    format_task_message,
    print_task_message,
)
from pulse import Delivery


def _delivery():
    message = Mock()
    message.body = b'{"status": "pending"}'
    message.method = {"exchange": "exchange/taskcluster-queue/v1/task-defined", "delivery_tag": 7}
    return Delivery(message, auto_ack=False), message


def test_routing_key_patterns():
    """Routing keys select workers by their position in the key."""
    assert str(GAIA_TASKS) == "*.*.*.*.*.*.gaia.#"
    assert str(AWS_PROVISIONER_TASKS) == "*.*.*.*.*.aws-provisioner.#"


def test_format_task_message():
    delivery, _ = _delivery()
    text = format_task_message(delivery)
    assert text.startswith("Received from exchange exchange/taskcluster-queue/v1/task-defined:")
    assert '{"status": "pending"}' in text


def test_print_task_message_acks_after_printing(capsys):
    delivery, message = _delivery()
    print_task_message(delivery)

    assert "pending" in capsys.readouterr().out
    message.channel.basic.ack.assert_called_once_with(delivery_tag=7, multiple=False)
