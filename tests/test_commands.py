import json
from io import StringIO

from django.core.management import call_command

from stockkeeper.engine import set_engine
from stockkeeper.models import Product


def test_checkstock(engine, main):
    set_engine(engine)
    engine.inventories.add_products(["a"], main)
    out = StringIO()

    call_command("checkstock", stdout=out)

    first_line = out.getvalue().splitlines()[0]
    assert json.loads(first_line) == {
        "available": 1,
        "threshold": 10,
        "alert_fired": True,
        "kind": "low_stock",
    }
    assert "Alert sent: low_stock" in out.getvalue()


def test_runstockkeeper_once(engine, clock, main):
    set_engine(engine)
    engine.inventories.add_products(["old"], main)
    clock.advance(days=3)
    out = StringIO()

    call_command("runstockkeeper", "--once", stdout=out)

    assert "moved=1 deleted=0 skipped=False" in out.getvalue()
    assert Product.objects.get(content="old").inventory.name == "Expired"
