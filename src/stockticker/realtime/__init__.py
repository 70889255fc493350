"""Real-time fan-out — ChangeEvents to every connected client.

Learn: Events flow one way:
1. ChangeSource → ChangeDispatcher.on_change (drops no-op events)
2. ChangeDispatcher → one bounded queue per subscriber, each with its own writer
3. writer → SubscriberRegistry.deliver → Subscriber.send, with a timeout

Subscribers are anything with an async send(): a browser WebSocket, a
Redis channel other processes listen on, an in-process queue.
"""
