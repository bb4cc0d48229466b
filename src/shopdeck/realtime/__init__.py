"""Realtime infrastructure — one persistent WebSocket per session.

Learn: Events flow server → channel → dispatcher → listeners.
The channel only translates wire names into canonical event names; it never
knows who is listening.
"""
