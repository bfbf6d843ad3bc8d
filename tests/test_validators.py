import pytest

from stockkeeper.exceptions import InvalidInput
from stockkeeper.validators import validate_contents, validate_order_id, validate_quantity


@pytest.mark.parametrize("value", ["ORD-1", "a.b:c#1", "x" * 100, "  padded_1  "])
def test_valid_order_ids(value):
    assert validate_order_id(value) == value.strip()


@pytest.mark.parametrize(
    "value, message",
    [
        ("x" * 101, "Order ID must be at most 100 characters"),
        ("has space", "Order ID contains invalid characters"),
        ("", "Order ID is required"),
        (None, "Order ID is required"),
    ],
)
def test_invalid_order_ids(value, message):
    with pytest.raises(InvalidInput) as excinfo:
        validate_order_id(value)

    if message:
        assert excinfo.value.message == message


def test_newline_inside_order_id_is_rejected():
    with pytest.raises(InvalidInput, match="invalid characters"):
        validate_order_id("ORD\n-1")


@pytest.mark.parametrize("value, expected", [(1, 1), ("7", 7), (" 3 ", 3), (100, 100)])
def test_valid_quantities(value, expected):
    assert validate_quantity(value, 100) == expected


def test_quantity_above_maximum():
    with pytest.raises(InvalidInput, match="at most 5"):
        validate_quantity(6, 5)


def test_contents_are_stripped():
    assert validate_contents([" a ", "b"], 10) == ["a", "b"]
