"""Command line interface to publish and consume RabbitMQ messages line by line."""
from __future__ import annotations

import argparse
import asyncio
import signal
import sys
from typing import Any, BinaryIO

from loguru import logger
from pydantic import ValidationError

from amqpcli.app.application.auto_ack_loop import AutoAckLoop
from amqpcli.app.application.batched_ack_loop import BatchedAckLoop
from amqpcli.app.application.line_publisher import LinePublisher
from amqpcli.app.composition import create_broker_session
from amqpcli.app.config.settings import Settings
from amqpcli.app.constants import EXIT_FAILURE, EXIT_INTERRUPTED, EXIT_OK, ConsumeMode
from amqpcli.app.core import SERVICE_NAME
from amqpcli.app.core.logging import configure_logging
from amqpcli.app.domain.pending_window import LogicInvariantViolation
from amqpcli.app.ports.broker import BrokerError


def _log(event: str, **kwargs: Any) -> None:
    logger.bind(service_name=SERVICE_NAME, event=event, **kwargs).info("")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="amqpcli",
        description="Command line interface to publish and consume rabbitmq messages.",
    )
    parser.add_argument("-a", "--addr", help="broker address (default: $AMQP_ADDR or amqp://localhost:5672/%%2f)")
    parser.add_argument("--log-level", help="log level for stderr (default: $LOG_LEVEL or INFO)")
    commands = parser.add_subparsers(dest="command", required=True)

    consume = commands.add_parser(
        "consume",
        help="read messages from rabbitmq and write them line by line to stdout",
    )
    consume.add_argument("queue", help="the queue from which to read")
    consume.add_argument("-c", "--consumer-tag", default="", help="identifies the consumer")
    consume.add_argument(
        "-n",
        "--newline-error-ack",
        action="store_true",
        help="acknowledge messages containing newlines instead of rejecting them",
    )
    consume.add_argument(
        "-p",
        "--parse-error-ack",
        action="store_true",
        help="acknowledge messages which cannot be parsed as utf-8 instead of rejecting them",
    )
    consume.add_argument(
        "--no-ack",
        action="store_true",
        help="let the broker acknowledge on delivery and print every payload unchecked",
    )
    consume.add_argument("--batch-size", type=int, help="deliveries per cumulative ack")
    consume.add_argument("--idle-timeout", type=float, help="seconds of silence before pending acks are flushed")

    publish = commands.add_parser(
        "publish",
        help="read messages line by line from stdin and write them to rabbitmq",
    )
    publish.add_argument("-e", "--exchange", default="", help="destination exchange")
    publish.add_argument("-r", "--routing-key", default="", help="routing key for all messages")
    return parser


def load_settings(args: argparse.Namespace) -> Settings:
    overrides = {
        "amqp_addr": args.addr,
        "log_level": args.log_level,
        "batch_size": getattr(args, "batch_size", None),
        "idle_timeout_seconds": getattr(args, "idle_timeout", None),
    }
    return Settings(**{key: value for key, value in overrides.items() if value is not None})


def consume_mode(args: argparse.Namespace) -> ConsumeMode:
    return ConsumeMode.AUTO_ACK if args.no_ack else ConsumeMode.BATCHED


async def run_command(args: argparse.Namespace, settings: Settings) -> None:
    session = create_broker_session(settings)
    await session.connect()
    try:
        if args.command == "consume":
            if consume_mode(args) is ConsumeMode.AUTO_ACK:
                await AutoAckLoop(
                    session.channel,
                    args.queue,
                    out=sys.stdout.buffer,
                    consumer_tag=args.consumer_tag,
                ).run()
            else:
                await BatchedAckLoop(
                    session.channel,
                    args.queue,
                    out=sys.stdout.buffer,
                    err=sys.stderr.buffer,
                    consumer_tag=args.consumer_tag,
                    batch_size=settings.batch_size,
                    idle_timeout=settings.idle_timeout_seconds,
                    newline_error_ack=args.newline_error_ack,
                    parse_error_ack=args.parse_error_ack,
                ).run()
        else:
            await LinePublisher(
                session.channel,
                exchange=args.exchange,
                routing_key=args.routing_key,
            ).run(open_stdin())
    finally:
        await session.close()


def open_stdin() -> BinaryIO:
    """Binary stdin that is not shared with sys.stdin.

    The line reader thread may still be blocked in a read on it when an interrupted
    interpreter exits, so it must not be the buffer that shutdown closes.
    """
    return open(sys.stdin.fileno(), "rb", closefd=False)


def reset_signal_pipe_handler() -> None:
    """Die quietly on SIGPIPE, like other filters, when the reader of stdout goes away."""
    if hasattr(signal, "SIGPIPE"):
        signal.signal(signal.SIGPIPE, signal.SIG_DFL)


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        settings = load_settings(args)
    except ValidationError as e:
        configure_logging()
        logger.error("invalid configuration: {}", e)
        return EXIT_FAILURE

    configure_logging(settings.log_level)
    reset_signal_pipe_handler()
    try:
        asyncio.run(run_command(args, settings))
    except KeyboardInterrupt:
        _log("interrupted", command=args.command)
        return EXIT_INTERRUPTED
    except (BrokerError, LogicInvariantViolation) as e:
        logger.error("{} failed: {}", args.command, e)
        return EXIT_FAILURE
    except Exception as e:
        logger.exception("{} failed: {}", args.command, e)
        return EXIT_FAILURE
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
