import base64
import struct
import typing

from behave import given, then, use_step_matcher, when
from stellar_sdk import xdr as stellar_xdr

from soroban_snippets import errors
from soroban_snippets.operations import OutcomeKind
from soroban_snippets.result_decoder import _meta_xdr_with_return_value, decode
from soroban_snippets.submission import Failed, Success

from parsing import parse_scval

# Use regular expressions
use_step_matcher("re")

TX_HASH = "ab" * 32

OPERATION_KINDS = {
    "invoke": OutcomeKind.SCALAR,
    "upload": OutcomeKind.HASH,
    "create": OutcomeKind.ADDRESS,
}


@given(
    r"a successful (?P<operation>invoke|upload|create) result returning (?P<input_type>[a-z0-9]+) (?P<input_value>\S+)"
)
def given_success(
    context: typing.Any, operation: str, input_type: str, input_value: str
):
    meta = _meta_xdr_with_return_value(parse_scval(input_type, input_value))
    context.input = Success(TX_HASH, 10, meta, None, OPERATION_KINDS[operation])


@given(r"a failed result with code (?P<code>tx[A-Z_]+)")
def given_failed(context: typing.Any, code: str):
    result_code = stellar_xdr.TransactionResultCode[code]
    result_xdr = base64.b64encode(
        struct.pack(">qii", 100, result_code.value, 0)
    ).decode()
    context.input = Failed(TX_HASH, result_code, 10, result_xdr)


@when(r"I decode the result")
def when_decode(context: typing.Any):
    try:
        context.output = decode(context.input).value
    except errors.SorobanError as e:
        context.output = e


@then(r"the decoded value should be (?P<expected_type>int|string) (?P<expected_value>\S+)")
def then_decoded_value(context: typing.Any, expected_type: str, expected_value: str):
    expected_val: typing.Union[int, str] = expected_value
    if expected_type == "int":
        expected_val = int(expected_value)
    assert context.output == expected_val, (
        "Expected " + str(expected_val) + " but got " + str(context.output)
    )


@then(r"decoding should fail with (?P<error>[A-Za-z]+)")
def then_decoding_fails(context: typing.Any, error: str):
    assert isinstance(context.output, getattr(errors, error)), (
        "Expected " + error + " but got " + repr(context.output)
    )
