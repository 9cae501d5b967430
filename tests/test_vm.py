import pytest

from vimib.bytecode import OpCode as Op, I32_MAX, I32_MIN
from vimib_runtime.vm import VimibVM, Value, Tag, VMRuntimeError, ExecutionStopped


def push_i(n):
    return [Op.PUSH_I] + list(n.to_bytes(4, "big", signed=True))


def run(code, constants=(), **kwargs):
    out = []
    vm = VimibVM(bytes(code), list(constants), output_callback=out.append, **kwargs)
    result = vm.run()
    return vm, result, "".join(out)


def binop(a, b, op):
    vm, _, _ = run(push_i(a) + push_i(b) + [op])
    return vm.stack[-1]


def test_one_plus_two_times_three():
    vm, result, _ = run(push_i(1) + push_i(2) + push_i(3) + [Op.MUL_I, Op.ADD_I])
    assert result is None
    assert vm.stack == [Value.i32(7)]
    assert vm.halted


def test_add_wraps_to_min():
    assert binop(I32_MAX, 1, Op.ADD_I) == Value.i32(I32_MIN)
    assert binop(I32_MAX, 1, Op.ADD_I).payload == -2147483648


def test_mul_wraps():
    assert binop(65536, 65536, Op.MUL_I).payload == 0
    assert binop(I32_MAX, 2, Op.MUL_I).payload == -2


def test_sub_and_neg_wrap():
    assert binop(I32_MIN, 1, Op.SUB_I).payload == I32_MAX
    vm, _, _ = run(push_i(I32_MIN) + [Op.NEG])
    assert vm.stack[-1].payload == I32_MIN


@pytest.mark.parametrize("a, b, q, r", [
    (7, 2, 3, 1),
    (-7, 2, -3, -1),
    (7, -2, -3, 1),
    (-7, -2, 3, -1),
    (I32_MIN, -1, I32_MIN, 0),
])
def test_division_truncates_toward_zero(a, b, q, r):
    assert binop(a, b, Op.DIV_I).payload == q
    assert binop(a, b, Op.MOD_I).payload == r


def test_division_by_zero():
    with pytest.raises(VMRuntimeError) as exc:
        run(push_i(1) + push_i(0) + [Op.DIV_I])
    assert exc.value.offset == 10


@pytest.mark.parametrize("op, expected", [
    (Op.EQ, False), (Op.NE, True), (Op.LT, True),
    (Op.GT, False), (Op.LE, True), (Op.GE, False),
])
def test_comparisons_push_bools(op, expected):
    assert binop(3, 4, op) == Value.boolean(expected)


def test_logical_and_bitwise():
    vm, _, _ = run([Op.PUSH_B, 1, Op.PUSH_B, 0, Op.AND, Op.PUSH_B, 1, Op.PUSH_B, 0, Op.OR, Op.PUSH_B, 0, Op.NOT])
    assert vm.stack == [Value.boolean(False), Value.boolean(True), Value.boolean(True)]
    assert binop(12, 10, Op.AND).payload == 8
    assert binop(12, 10, Op.OR).payload == 14
    vm, _, _ = run(push_i(0) + [Op.NOT])
    assert vm.stack[-1].payload == -1


def test_bool_equality():
    vm, _, _ = run([Op.PUSH_B, 1, Op.PUSH_B, 1, Op.EQ])
    assert vm.stack == [Value.boolean(True)]


@pytest.mark.parametrize("code", [
    push_i(1) + [Op.PUSH_B, 1, Op.ADD_I],
    [Op.PUSH_B, 1, Op.PUSH_B, 0, Op.LT],
    push_i(1) + [Op.PUSH_B, 1, Op.EQ],
    push_i(1) + [Op.PUSH_B, 1, Op.AND],
    push_i(1) + [Op.IF_F, 0],
    [Op.PUSH_B, 1, Op.NEG],
])
def test_type_mismatch(code):
    with pytest.raises(VMRuntimeError) as exc:
        run(code)
    assert "Type mismatch" in str(exc.value)


def test_registers():
    vm, _, _ = run(push_i(9) + [Op.STO_I, 200, Op.LOAD_I, 200, Op.LOAD_I, 200])
    assert vm.stack == [Value.i32(9), Value.i32(9)]
    assert vm.registers[200] == Value.i32(9)


def test_invalid_register():
    with pytest.raises(VMRuntimeError) as exc:
        run([Op.LOAD_I, 5])
    assert "register" in str(exc.value)


def test_stack_underflow():
    with pytest.raises(VMRuntimeError) as exc:
        run(push_i(1) + [Op.ADD_I])
    assert "underflow" in str(exc.value)
    assert exc.value.offset == 5


def test_stack_overflow():
    with pytest.raises(VMRuntimeError) as exc:
        run(push_i(1) * 3, max_stack=2)
    assert "overflow" in str(exc.value)


def test_invalid_opcode():
    with pytest.raises(VMRuntimeError) as exc:
        run([Op.PUSH_B, 1, 0x99])
    assert exc.value.offset == 2


def test_truncated_operand():
    with pytest.raises(VMRuntimeError):
        run([Op.PUSH_I, 0, 0])


def test_jump_past_end_is_an_error():
    with pytest.raises(VMRuntimeError) as exc:
        run([Op.GOTO, 10])
    assert exc.value.offset == 0


def test_conditional_jump_past_end_is_an_error():
    with pytest.raises(VMRuntimeError):
        run([Op.PUSH_B, 0, Op.IF_F, 200])


def test_jump_to_end_halts():
    vm, _, _ = run([Op.GOTO, 4, Op.PUSH_B, 1])
    assert vm.halted
    assert vm.stack == []


def test_if_f_falls_through_on_true():
    vm, _, _ = run([Op.PUSH_B, 1, Op.IF_F, 6, Op.PUSH_B, 1])
    assert vm.stack == [Value.boolean(True)]


def test_ldc_and_print_str():
    vm, _, out = run([Op.LDC, 1, Op.VIRTUAL, 2], constants=["a", "hello"])
    assert out == "hello\n"
    assert vm.stack == []


def test_invalid_constant_index():
    with pytest.raises(VMRuntimeError):
        run([Op.LDC, 0])


def test_builtin_output():
    _, _, out = run(push_i(-3) + [Op.VIRTUAL, 0, Op.PUSH_B, 0, Op.VIRTUAL, 3])
    assert out == "-3\nfalse\n"


def test_debug_builtin_dumps_state():
    _, _, out = run(push_i(4) + [Op.STO_I, 0] + push_i(5) + [Op.VIRTUAL, 1])
    assert out == "STACK: [5]\nREGS: {0: 4}\n"


def test_unknown_builtin():
    with pytest.raises(VMRuntimeError):
        run([Op.VIRTUAL, 42])


def test_custom_builtin_table():
    seen = []
    vm = VimibVM(bytes(push_i(8) + [Op.VIRTUAL, 0]), [], builtins={0: lambda vm: seen.append(vm.pop())})
    vm.run()
    assert seen == [Value.i32(8)]


def test_default_output_goes_to_stdout(capsys):
    VimibVM(bytes(push_i(12) + [Op.VIRTUAL, 0]), []).run()
    assert capsys.readouterr().out == "12\n"


def test_ret_stops_execution():
    vm, result, out = run(push_i(5) + [Op.RET] + push_i(1) + [Op.VIRTUAL, 0])
    assert result == 5
    assert out == ""
    assert vm.halted


def test_ret_string_value():
    _, result, _ = run([Op.LDC, 0, Op.RET], constants=["done"])
    assert result == "done"


def test_step_by_step():
    vm = VimibVM(bytes(push_i(1) + [Op.PUSH_B, 1]), [])
    assert vm.step()
    assert vm.ip == 5
    assert not vm.step()
    assert vm.halted
    assert not vm.step()
    assert vm.steps == 2


def test_empty_program_halts_immediately():
    vm, result, _ = run([])
    assert result is None
    assert vm.steps == 0


def test_request_stop():
    vm = VimibVM(bytes([Op.GOTO, 0]), [])
    vm.run(max_steps=10)
    vm.request_stop()
    with pytest.raises(ExecutionStopped):
        vm.run()


def test_values():
    assert Value.i32(2 ** 32 + 3) == Value(Tag.I32, 3)
    assert repr(Value.boolean(True)) == "true"
    assert repr(Value(Tag.STR, 2)) == "str#2"
