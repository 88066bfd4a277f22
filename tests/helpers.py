from decimal import Decimal
from unittest.mock import MagicMock

START_MS = 1_700_000_000_000


class FakeClock:
    """Epoch-ms clock that only moves when told to."""

    def __init__(self, now: int = START_MS):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


def product(pid="A", price="10", available=None, **display):
    data = {"id": pid, "price": Decimal(price), "name": display.pop("name", f"Product {pid}")}
    data.update(display)
    if available is not None:
        data["availableQuantity"] = available
    return data


def catalog_entry(pid="A", price=10.0, available=5, **extra):
    data = {
        "externalId": pid,
        "name": f"Product {pid}",
        "price": price,
        "availableQuantity": available,
        "category": "general",
        "brand": "Acme",
        "image": f"/img/{pid}.png",
        "unit": "pcs",
    }
    data.update(extra)
    return data


def http_response(status=200, payload=None):
    resp = MagicMock()
    resp.status_code = status
    if isinstance(payload, Exception):
        resp.json.side_effect = payload
    else:
        resp.json.return_value = payload
    return resp


async def no_sleep(seconds):
    return None
