"""Tests for InstructionRegistry primitives."""

import random
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import pytest
from chip8_vm.errors import (
    OutOfBoundsError,
    StackOverflowError,
    StackUnderflowError,
    UnknownOpcodeError,
)
from chip8_vm.registry import InstructionRegistry, get_registry
from chip8_vm.state import MEMORY_SIZE, SCREEN_WIDTH, VMState


@pytest.fixture
def registry():
    return get_registry()


@pytest.fixture
def state():
    return VMState()


def lit(state, x, y):
    return state.display[x + SCREEN_WIDTH * y]


class TestRegistryLifecycle:
    """Test registry freezing and lookup."""

    def test_frozen_after_init(self, registry):
        """The registry cannot be extended after construction."""
        assert registry.is_frozen() is True
        with pytest.raises(RuntimeError):
            registry.register("OP_EXTRA", lambda state, params, rng: None)

    def test_duplicate_registration(self):
        """Registering a key twice raises ValueError."""
        reg = InstructionRegistry.__new__(InstructionRegistry)
        reg._primitives = {}
        reg._frozen = False
        reg.register("OP_X", lambda state, params, rng: None)
        with pytest.raises(ValueError):
            reg.register("OP_X", lambda state, params, rng: None)

    def test_unknown_key(self, registry, state):
        """Executing an unregistered key raises KeyError."""
        with pytest.raises(KeyError):
            registry.execute(state, "OP_BOGUS", {})

    def test_singleton(self):
        """get_registry returns the same instance."""
        assert get_registry() is get_registry()

    def test_execute_counts_cycle(self, registry, state):
        """Each completed primitive increments the cycle count."""
        registry.execute(state, "OP_NOP", {})
        assert state.cycle_count == 1

    def test_failed_primitive_not_counted(self, registry, state):
        """A primitive that raises does not count as a cycle."""
        with pytest.raises(StackUnderflowError):
            registry.execute(state, "OP_RET", {})
        assert state.cycle_count == 0

    def test_invalid_raises(self, registry, state):
        """OP_INVALID always raises UnknownOpcodeError."""
        with pytest.raises(UnknownOpcodeError) as excinfo:
            registry.execute(state, "OP_INVALID", {"raw": 0xFFFF, "address": 0x20A})
        assert excinfo.value.opcode == 0xFFFF
        assert excinfo.value.address == 0x20A


class TestFlowControl:
    """Test jumps, calls and returns."""

    def test_jp(self, registry, state):
        """1nnn sets PC."""
        registry.execute(state, "OP_JP", {"nnn": 0x345})
        assert state.pc == 0x345

    def test_call_pushes_current_pc(self, registry, state):
        """2nnn pushes the (already advanced) PC."""
        state.pc = 0x206
        registry.execute(state, "OP_CALL", {"nnn": 0x400})
        assert state.pc == 0x400
        assert state.stack_pointer == 1
        assert state.stack[0] == 0x206

    def test_ret(self, registry, state):
        """00EE pops into PC."""
        state.push(0x20C)
        registry.execute(state, "OP_RET", {})
        assert state.pc == 0x20C
        assert state.stack_pointer == 0

    def test_call_overflow(self, registry, state):
        """A call with a full stack raises StackOverflowError."""
        for _ in range(16):
            registry.execute(state, "OP_CALL", {"nnn": 0x300})
        with pytest.raises(StackOverflowError):
            registry.execute(state, "OP_CALL", {"nnn": 0x300})

    def test_jp_v0(self, registry, state):
        """Bnnn jumps to V0 + nnn."""
        state.registers[0] = 0x10
        registry.execute(state, "OP_JP_V0", {"nnn": 0x300})
        assert state.pc == 0x310


class TestSkips:
    """Test conditional skip primitives."""

    @pytest.mark.parametrize("key,value,skipped", [
        ("OP_SE_IMM", 0x42, True),
        ("OP_SE_IMM", 0x41, False),
        ("OP_SNE_IMM", 0x42, False),
        ("OP_SNE_IMM", 0x41, True),
    ])
    def test_immediate(self, registry, state, key, value, skipped):
        """3xnn / 4xnn compare a register against a byte."""
        state.registers[1] = value
        registry.execute(state, key, {"x": 1, "nn": 0x42})
        assert state.pc == (0x202 if skipped else 0x200)

    @pytest.mark.parametrize("key,equal,skipped", [
        ("OP_SE_REG", True, True),
        ("OP_SE_REG", False, False),
        ("OP_SNE_REG", True, False),
        ("OP_SNE_REG", False, True),
    ])
    def test_register(self, registry, state, key, equal, skipped):
        """5xy0 / 9xy0 compare two registers."""
        state.registers[1] = 7
        state.registers[2] = 7 if equal else 8
        registry.execute(state, key, {"x": 1, "y": 2})
        assert state.pc == (0x202 if skipped else 0x200)

    def test_skp(self, registry, state):
        """Ex9E skips when the key named by Vx is down."""
        state.registers[4] = 0xA
        state.keys[0xA] = True
        registry.execute(state, "OP_SKP", {"x": 4})
        assert state.pc == 0x202

    def test_sknp(self, registry, state):
        """ExA1 skips when the key named by Vx is up."""
        state.registers[4] = 0xA
        registry.execute(state, "OP_SKNP", {"x": 4})
        assert state.pc == 0x202

        state.pc = 0x200
        state.keys[0xA] = True
        registry.execute(state, "OP_SKNP", {"x": 4})
        assert state.pc == 0x200

    def test_key_index_out_of_range(self, registry, state):
        """A key index above 0xF in Vx raises OutOfBoundsError."""
        state.registers[4] = 0x10
        with pytest.raises(OutOfBoundsError):
            registry.execute(state, "OP_SKP", {"x": 4})


class TestArithmetic:
    """Test register arithmetic and logic."""

    def test_ld_imm(self, registry, state):
        """6xnn loads a byte."""
        registry.execute(state, "OP_LD_IMM", {"x": 3, "nn": 0x99})
        assert state.registers[3] == 0x99

    def test_add_imm_wraps_without_flag(self, registry, state):
        """7xnn wraps at 8 bits and leaves VF alone."""
        state.registers[0] = 0xFF
        state.registers[0xF] = 0x55
        registry.execute(state, "OP_ADD_IMM", {"x": 0, "nn": 0x01})
        assert state.registers[0] == 0x00
        assert state.registers[0xF] == 0x55

    def test_add_imm_all_pairs(self, registry):
        """7xnn is addition modulo 256 for every operand pair."""
        for a in range(0, 256, 17):
            for b in range(256):
                state = VMState()
                state.registers[2] = a
                registry.execute(state, "OP_ADD_IMM", {"x": 2, "nn": b})
                assert state.registers[2] == (a + b) % 256

    def test_ld_reg(self, registry, state):
        """8xy0 copies Vy into Vx."""
        state.registers[2] = 0x33
        registry.execute(state, "OP_LD_REG", {"x": 1, "y": 2})
        assert state.registers[1] == 0x33

    @pytest.mark.parametrize("key,expected", [
        ("OP_OR", 0b1110),
        ("OP_AND", 0b1000),
        ("OP_XOR", 0b0110),
    ])
    def test_logic(self, registry, state, key, expected):
        """8xy1-8xy3 combine bitwise."""
        state.registers[1] = 0b1100
        state.registers[2] = 0b1010
        registry.execute(state, key, {"x": 1, "y": 2})
        assert state.registers[1] == expected

    def test_add_reg_carry(self, registry, state):
        """8xy4 wraps and sets VF on carry."""
        state.registers[0] = 0xFF
        state.registers[1] = 0x01
        registry.execute(state, "OP_ADD_REG", {"x": 0, "y": 1})
        assert state.registers[0] == 0x00
        assert state.registers[0xF] == 1

    def test_add_reg_no_carry(self, registry, state):
        """8xy4 clears VF without carry."""
        state.registers[0] = 0x10
        state.registers[1] = 0x20
        state.registers[0xF] = 1
        registry.execute(state, "OP_ADD_REG", {"x": 0, "y": 1})
        assert state.registers[0] == 0x30
        assert state.registers[0xF] == 0

    def test_add_reg_all_pairs(self, registry):
        """8xy4 result and flag agree with integer addition."""
        for a in range(0, 256, 15):
            for b in range(0, 256, 3):
                state = VMState()
                state.registers[0] = a
                state.registers[1] = b
                registry.execute(state, "OP_ADD_REG", {"x": 0, "y": 1})
                assert state.registers[0] == (a + b) & 0xFF
                assert state.registers[0xF] == (1 if a + b > 0xFF else 0)

    def test_sub_with_borrow(self, registry, state):
        """8xy5: 1 - 2 wraps to 0xFF with VF = 0."""
        state.registers[0] = 0x01
        state.registers[1] = 0x02
        registry.execute(state, "OP_SUB", {"x": 0, "y": 1})
        assert state.registers[0] == 0xFF
        assert state.registers[0xF] == 0

    def test_sub_without_borrow(self, registry, state):
        """8xy5: 5 - 2 = 3 with VF = 1."""
        state.registers[0] = 0x05
        state.registers[1] = 0x02
        registry.execute(state, "OP_SUB", {"x": 0, "y": 1})
        assert state.registers[0] == 0x03
        assert state.registers[0xF] == 1

    def test_sub_equal_operands(self, registry, state):
        """8xy5 with equal operands is no borrow."""
        state.registers[0] = 0x07
        state.registers[1] = 0x07
        registry.execute(state, "OP_SUB", {"x": 0, "y": 1})
        assert state.registers[0] == 0
        assert state.registers[0xF] == 1

    def test_subn(self, registry, state):
        """8xy7 computes Vy - Vx with the same flag convention."""
        state.registers[0] = 0x05
        state.registers[1] = 0x02
        registry.execute(state, "OP_SUBN", {"x": 0, "y": 1})
        assert state.registers[0] == 0xFD
        assert state.registers[0xF] == 0

        state.registers[0] = 0x02
        state.registers[1] = 0x05
        registry.execute(state, "OP_SUBN", {"x": 0, "y": 1})
        assert state.registers[0] == 0x03
        assert state.registers[0xF] == 1

    def test_shr(self, registry, state):
        """8xy6: 0x03 >> 1 = 0x01, VF = old lsb 1."""
        state.registers[2] = 0x03
        registry.execute(state, "OP_SHR", {"x": 2, "y": 5})
        assert state.registers[2] == 0x01
        assert state.registers[0xF] == 1

    def test_shr_even(self, registry, state):
        """8xy6 clears VF when the lsb was 0."""
        state.registers[2] = 0x04
        registry.execute(state, "OP_SHR", {"x": 2, "y": 0})
        assert state.registers[2] == 0x02
        assert state.registers[0xF] == 0

    def test_shl(self, registry, state):
        """8xyE: 0x81 << 1 = 0x02, VF = old msb 1."""
        state.registers[2] = 0x81
        registry.execute(state, "OP_SHL", {"x": 2, "y": 0})
        assert state.registers[2] == 0x02
        assert state.registers[0xF] == 1

    def test_flag_wins_when_target_is_vf(self, registry, state):
        """With x = F the flag overwrites the arithmetic result."""
        state.registers[0xF] = 0xFF
        state.registers[1] = 0x01
        registry.execute(state, "OP_ADD_REG", {"x": 0xF, "y": 1})
        assert state.registers[0xF] == 1

    def test_rnd_masks(self, registry, state):
        """Cxnn ANDs the random byte with nn."""
        rng = random.Random(1234)
        for _ in range(50):
            registry.execute(state, "OP_RND", {"x": 3, "nn": 0x0F}, rng)
            assert 0 <= state.registers[3] <= 0x0F

    def test_rnd_deterministic_with_seed(self, registry):
        """Cxnn draws from the supplied random source."""
        a, b = VMState(), VMState()
        registry.execute(a, "OP_RND", {"x": 0, "nn": 0xFF}, random.Random(7))
        registry.execute(b, "OP_RND", {"x": 0, "nn": 0xFF}, random.Random(7))
        assert a.registers[0] == b.registers[0]


class TestIndexAndMemory:
    """Test I-register and memory primitives."""

    def test_ld_i(self, registry, state):
        """Annn sets I."""
        registry.execute(state, "OP_LD_I", {"nnn": 0x2F0})
        assert state.index_register == 0x2F0

    def test_add_i_wraps(self, registry, state):
        """Fx1E wraps at 16 bits."""
        state.index_register = 0xFFFF
        state.registers[1] = 0x02
        registry.execute(state, "OP_ADD_I", {"x": 1})
        assert state.index_register == 0x0001

    def test_ld_f(self, registry, state):
        """Fx29 points I at glyph Vx."""
        state.registers[0] = 0xA
        registry.execute(state, "OP_LD_F", {"x": 0})
        assert state.index_register == 50
        assert state.memory[50:55] == bytearray([0xF0, 0x90, 0xF0, 0x90, 0x90])

    def test_ld_b(self, registry, state):
        """Fx33 stores 234 as 2, 3, 4."""
        state.registers[5] = 234
        state.index_register = 0x300
        registry.execute(state, "OP_LD_B", {"x": 5})
        assert list(state.memory[0x300:0x303]) == [2, 3, 4]

    def test_ld_b_small_value(self, registry, state):
        """Fx33 writes leading zeros."""
        state.registers[5] = 7
        state.index_register = 0x300
        registry.execute(state, "OP_LD_B", {"x": 5})
        assert list(state.memory[0x300:0x303]) == [0, 0, 7]

    def test_ld_b_out_of_bounds(self, registry, state):
        """Fx33 near the end of memory raises without writing."""
        state.registers[5] = 123
        state.index_register = MEMORY_SIZE - 2
        with pytest.raises(OutOfBoundsError):
            registry.execute(state, "OP_LD_B", {"x": 5})
        assert state.memory[MEMORY_SIZE - 2] == 0

    def test_store_registers(self, registry, state):
        """Fx55 copies V0..Vx to memory and leaves I alone."""
        state.registers[:4] = [1, 2, 3, 4]
        state.index_register = 0x400
        registry.execute(state, "OP_LD_I_VX", {"x": 2})
        assert list(state.memory[0x400:0x404]) == [1, 2, 3, 0]
        assert state.index_register == 0x400

    def test_load_registers(self, registry, state):
        """Fx65 copies memory into V0..Vx and leaves I alone."""
        state.memory[0x400:0x404] = bytes([9, 8, 7, 6])
        state.index_register = 0x400
        registry.execute(state, "OP_LD_VX_I", {"x": 2})
        assert state.registers[:4] == [9, 8, 7, 0]
        assert state.index_register == 0x400

    def test_store_registers_out_of_bounds(self, registry, state):
        """Fx55 running past memory raises without a partial write."""
        state.registers[:16] = list(range(1, 17))
        state.index_register = MEMORY_SIZE - 4
        with pytest.raises(OutOfBoundsError):
            registry.execute(state, "OP_LD_I_VX", {"x": 0xF})
        assert not any(state.memory[MEMORY_SIZE - 4:])

    def test_load_registers_out_of_bounds(self, registry, state):
        """Fx65 running past memory raises without touching registers."""
        state.index_register = MEMORY_SIZE
        with pytest.raises(OutOfBoundsError):
            registry.execute(state, "OP_LD_VX_I", {"x": 0})
        assert state.registers == [0] * 16


class TestDraw:
    """Test the Dxyn sprite primitive."""

    def test_draw_glyph(self, registry, state):
        """Drawing glyph 0 lights its outline."""
        state.index_register = 0  # glyph "0"
        registry.execute(state, "OP_DRW", {"x": 0, "y": 1, "n": 5})
        # Row 0 of "0" is 0xF0: four lit pixels then four dark
        assert [lit(state, c, 0) for c in range(8)] == [True] * 4 + [False] * 4
        # Row 1 is 0x90
        assert [lit(state, c, 1) for c in range(4)] == [True, False, False, True]
        assert state.registers[0xF] == 0
        assert sum(state.display) == 14

    def test_draw_twice_collides(self, registry, state):
        """Second draw at the same spot erases and reports collision."""
        state.memory[0x300] = 0xFF
        state.index_register = 0x300
        registry.execute(state, "OP_DRW", {"x": 0, "y": 1, "n": 1})
        assert state.registers[0xF] == 0
        assert sum(state.display) == 8

        registry.execute(state, "OP_DRW", {"x": 0, "y": 1, "n": 1})
        assert state.registers[0xF] == 1
        assert not any(state.display)

    def test_partial_overlap_sets_flag(self, registry, state):
        """Any single overlapping pixel is a collision."""
        state.memory[0x300] = 0x80
        state.index_register = 0x300
        state.registers[0] = 10
        state.registers[1] = 10
        registry.execute(state, "OP_DRW", {"x": 0, "y": 1, "n": 1})
        state.memory[0x300] = 0xC0
        registry.execute(state, "OP_DRW", {"x": 0, "y": 1, "n": 1})
        assert state.registers[0xF] == 1
        assert lit(state, 10, 10) is False
        assert lit(state, 11, 10) is True

    def test_horizontal_wrap(self, registry, state):
        """A sprite at x=63 wraps columns 1-7 to x=0..6."""
        state.memory[0x300] = 0xFF
        state.index_register = 0x300
        state.registers[0] = 63
        state.registers[1] = 0
        registry.execute(state, "OP_DRW", {"x": 0, "y": 1, "n": 1})
        assert lit(state, 63, 0) is True
        assert all(lit(state, c, 0) for c in range(7))
        assert lit(state, 7, 0) is False
        assert sum(state.display) == 8

    def test_vertical_wrap(self, registry, state):
        """Rows past the bottom edge reappear at the top."""
        state.memory[0x300:0x303] = bytes([0x80, 0x80, 0x80])
        state.index_register = 0x300
        state.registers[0] = 5
        state.registers[1] = 31
        registry.execute(state, "OP_DRW", {"x": 0, "y": 1, "n": 3})
        assert lit(state, 5, 31) is True
        assert lit(state, 5, 0) is True
        assert lit(state, 5, 1) is True

    def test_origin_wraps(self, registry, state):
        """Origins beyond the screen size wrap too."""
        state.memory[0x300] = 0x80
        state.index_register = 0x300
        state.registers[0] = 64 + 3
        state.registers[1] = 32 + 2
        registry.execute(state, "OP_DRW", {"x": 0, "y": 1, "n": 1})
        assert lit(state, 3, 2) is True

    def test_zero_height_clears_flag(self, registry, state):
        """A zero-row sprite draws nothing and clears VF."""
        state.registers[0xF] = 1
        registry.execute(state, "OP_DRW", {"x": 0, "y": 1, "n": 0})
        assert state.registers[0xF] == 0
        assert not any(state.display)

    def test_sprite_past_memory(self, registry, state):
        """Sprite rows beyond memory raise and leave the display alone."""
        state.index_register = MEMORY_SIZE - 2
        state.memory[MEMORY_SIZE - 2] = 0xFF
        with pytest.raises(OutOfBoundsError):
            registry.execute(state, "OP_DRW", {"x": 0, "y": 1, "n": 4})
        assert not any(state.display)

    def test_cls(self, registry, state):
        """00E0 turns all pixels off."""
        state.display[:] = [True] * len(state.display)
        registry.execute(state, "OP_CLS", {})
        assert not any(state.display)


class TestTimersAndInput:
    """Test timer and key-wait primitives."""

    def test_timer_loads(self, registry, state):
        """Fx15 / Fx18 set timers, Fx07 reads the delay timer."""
        state.registers[1] = 30
        registry.execute(state, "OP_LD_DT_VX", {"x": 1})
        registry.execute(state, "OP_LD_ST_VX", {"x": 1})
        assert state.delay_timer == 30
        assert state.sound_timer == 30

        state.delay_timer = 12
        registry.execute(state, "OP_LD_VX_DT", {"x": 2})
        assert state.registers[2] == 12

    def test_wait_key_rewinds(self, registry, state):
        """Fx0A with no key down rewinds PC onto itself."""
        state.pc = 0x202  # already advanced past the instruction at 0x200
        registry.execute(state, "OP_LD_VX_K", {"x": 3})
        assert state.pc == 0x200
        assert state.registers[3] == 0

    def test_wait_key_lowest_index(self, registry, state):
        """Fx0A picks the lowest pressed key."""
        state.pc = 0x202
        state.keys[0xC] = True
        state.keys[0x5] = True
        registry.execute(state, "OP_LD_VX_K", {"x": 3})
        assert state.pc == 0x202
        assert state.registers[3] == 0x5
