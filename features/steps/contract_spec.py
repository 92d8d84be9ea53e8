import typing

from behave import given, then, use_step_matcher, when

from soroban_snippets.contract_spec import (
    _function_entry_bytes,
    decode_contract_spec,
    decode_contract_spec_stream,
    function_names,
)
from soroban_snippets.wasm import CONTRACT_SPEC_SECTION, _module_bytes, custom_section

from parsing import parse_hex, parse_sequence

# Use regular expressions
use_step_matcher("re")


def spec_bytes(names: str) -> bytes:
    return b"".join(_function_entry_bytes(name) for name in parse_sequence(names))


@given(r"spec entries for functions \[(?P<names>.*)]")
def given_spec_entries(context: typing.Any, names: str):
    context.input = spec_bytes(names)


@given(
    r"spec entries followed by bytes (?P<trailing>[0-9a-f]+) for functions \[(?P<names>.*)]"
)
def given_spec_entries_with_trailing(context: typing.Any, names: str, trailing: str):
    context.input = spec_bytes(names) + parse_hex(trailing)


@given(r"a module with spec entries for functions \[(?P<names>.*)]")
def given_module(context: typing.Any, names: str):
    context.input = _module_bytes({CONTRACT_SPEC_SECTION: spec_bytes(names)})


@when(r"I probe decode the contract spec")
def when_probe_decode(context: typing.Any):
    context.output = decode_contract_spec(context.input)


@when(r"I stream decode the contract spec")
def when_stream_decode(context: typing.Any):
    context.output = decode_contract_spec_stream(context.input)


@when(r"I read the contract spec section of the module")
def when_probe_decode_module(context: typing.Any):
    section = custom_section(context.input, CONTRACT_SPEC_SECTION)
    assert section is not None, "Module has no spec section"
    context.output = decode_contract_spec(section)


@then(r"the result should be functions \[(?P<expected_value>.*)]")
def then_result_functions(context: typing.Any, expected_value: str):
    expected_val = parse_sequence(expected_value)
    actual = function_names(context.output)
    assert actual == expected_val, (
        "Expected " + str(expected_val) + " but got " + str(actual)
    )
