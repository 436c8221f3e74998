"""ASGI entrypoint for the food sync API."""

from food_sync.api.app import create_app
from food_sync.containers import build_container

app = create_app(build_container())
