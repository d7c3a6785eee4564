from behave import *

from xion_sdk.hex_validation import is_valid_hex, normalize_hex_prefix

# Use regular expressions
use_step_matcher("re")


@when("I normalize the hex prefix")
def when_normalize_hex_prefix(context):
    context.output = normalize_hex_prefix(context.input)


@when("I apply hex prefix normalization two times")
def when_normalize_hex_prefix_twice(context):
    context.output = normalize_hex_prefix(normalize_hex_prefix(context.input))


@when("I check whether the string is hex")
def when_check_hex(context):
    context.output = is_valid_hex(context.input)
