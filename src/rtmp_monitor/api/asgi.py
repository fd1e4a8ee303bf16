"""ASGI entrypoint for the RTMP monitor API."""

from rtmp_monitor.api.app import create_app
from rtmp_monitor.containers import build_container

app = create_app(build_container())
