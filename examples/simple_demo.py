#!/usr/bin/env python3
"""
Simple demo of the messagepipe service and consumer group.

Creates a few messages through the service, lets one worker consume them
and reads them back by sender.
"""

from messagepipe.bootstrap import build_application
from messagepipe.consumer.worker import WorkerConfig
from messagepipe.model.message import MessageType


def main():
    print("=" * 60)
    print("messagepipe - Simple Service/Consumer Demo")
    print("=" * 60)

    print("\n[1] Building application...")
    app = build_application(worker_configs=[WorkerConfig("demo-consumer", poll_timeout_ms=200)])
    app.start()
    print("✅ Consumer group started")

    try:
        print("\n[2] Sending messages...")
        for i, message_type in enumerate([MessageType.INFO, MessageType.WARNING, MessageType.ERROR]):
            message = app.service.create_and_send(
                f"Hello from messagepipe! Message #{i}",
                "demo-producer",
                message_type,
            )
            print(f"  ✅ Sent {message.type.name} message {message.id}")

        app.broker.flush()

        print("\n[3] Waiting for the consumer group...")
        if app.consumer_group.wait_until_drained(timeout=10):
            print("✅ All messages consumed")
        else:
            print("❌ Consumer group did not catch up")

        print("\n[4] Reading back...")
        for message in app.service.get_by_sender("demo-producer"):
            print(f"  {message.timestamp.isoformat()} [{message.type.name}] {message.content}")

        print(f"\nUrgent messages: {len(app.service.get_urgent())}")

    finally:
        app.stop()

    print("\n" + "=" * 60)
    print("Demo complete!")
    print("=" * 60)


if __name__ == "__main__":
    main()
