from behave import *

from xion_sdk.authenticator import AuthenticatorKind
from xion_sdk.errors import InputValidationError
from xion_sdk.salt import calculate_salt

# Use regular expressions
use_step_matcher("re")


@when(r"I derive the (?P<kind>[a-zA-Z0-9]+) salt")
def when_derive_salt(context, kind):
    try:
        context.output = calculate_salt(AuthenticatorKind.from_str(kind), context.input)
    except InputValidationError as e:
        context.output = e


@then("the salt derivation should fail")
def then_fail_salt(context):
    assert isinstance(context.output, InputValidationError)
