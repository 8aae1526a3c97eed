# local_server.py
"""Run a few sample functions locally for manual testing."""

import logging
import sys
from pathlib import Path
from typing import Optional, Tuple

# Add project root to Python path so we can import the framework packages
project_root = Path(__file__).parent.parent.resolve()
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from cloudevents.http import CloudEvent
from pydantic import BaseModel

from funcframework import functions
from funcframework.config import load_config
from funcframework.context import Context
from funcserver.serve import start

logger = logging.getLogger(__name__)


class Greeting(BaseModel):
    name: str
    greeting: str = "Hello"


class Reply(BaseModel):
    message: str


@functions.http("hello")
def hello(request):
    return {"message": f"Hello from {request.path}"}


@functions.cloud_event("on_event")
def on_event(context: Context, event: CloudEvent) -> Optional[Exception]:
    logger.info(f"Received CloudEvent {event['id']} of type {event['type']}")
    return None


@functions.event("on_background")
def on_background(context: Context, data: dict) -> Optional[Exception]:
    logger.info(f"Received background event {context.event_id}: {data}")
    return None


@functions.typed("greet")
def greet(greeting: Greeting) -> Tuple[Reply, Optional[Exception]]:
    return Reply(message=f"{greeting.greeting}, {greeting.name}!"), None


if __name__ == "__main__":
    config = load_config()
    config.pretty_logs = True

    print("\n" + "=" * 50)
    print("Local functions server")
    print("=" * 50)
    print(f"URL: http://localhost:{config.port}/")
    print("\nTry:")
    print(f"  curl http://localhost:{config.port}/hello")
    print(
        f"  curl -X POST http://localhost:{config.port}/greet "
        "-H 'Content-Type: application/json' -d '{\"name\":\"Ada\"}'"
    )
    print("\nPress Ctrl+C to stop")
    print("=" * 50 + "\n")

    start(config=config)
