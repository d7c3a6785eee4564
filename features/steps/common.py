import typing

from behave import given, then, use_step_matcher

from xion_sdk.hex_validation import normalize_hex_prefix

# Use regular expressions
use_step_matcher("re")


def parse_value(value_type: str, value: str) -> typing.Any:
    """Turn a ``<type> <value>`` pair from a feature file into a Python value.

    ``""`` stands for the empty string, which a table cell cannot hold.
    """
    if value_type == "string":
        return "" if value == '""' else value
    if value_type == "bool":
        return value == "true"
    if value_type == "hex":
        return bytes.fromhex(normalize_hex_prefix(value))
    raise ValueError(f"Unrecognized value type {value_type}")


@given(r"(?P<value_type>string|bool|hex) (?P<value>\S+)")
def given_value(context: typing.Any, value_type: str, value: str):
    context.input = parse_value(value_type, value)


@then(r"the result should be (?P<value_type>string|bool|hex) (?P<value>\S+)")
def then_result(context: typing.Any, value_type: str, value: str):
    expected = parse_value(value_type, value)
    assert context.output == expected, f"Expected {expected!r} but got {context.output!r}"
