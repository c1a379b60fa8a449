"""ASGI entrypoint for the statement review API."""

from nebenkosten_review.api.app import create_app
from nebenkosten_review.containers import build_container

app = create_app(build_container())
