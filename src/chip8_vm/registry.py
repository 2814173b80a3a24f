"""InstructionRegistry: Verified instruction primitives for the CHIP-8 VM.

This module implements the registry pattern for machine operations:
each decoded operation key maps to exactly one frozen primitive that
applies that instruction's state transition.

Registry Keys:
    OP_NOP, OP_CLS, OP_RET                      0000, 00E0, 00EE
    OP_JP, OP_CALL, OP_JP_V0                    1nnn, 2nnn, Bnnn
    OP_SE_IMM, OP_SNE_IMM, OP_SE_REG, OP_SNE_REG 3xnn, 4xnn, 5xy0, 9xy0
    OP_LD_IMM, OP_ADD_IMM                       6xnn, 7xnn
    OP_LD_REG, OP_OR, OP_AND, OP_XOR            8xy0-8xy3
    OP_ADD_REG, OP_SUB, OP_SHR, OP_SUBN, OP_SHL 8xy4-8xy7, 8xyE
    OP_LD_I, OP_RND, OP_DRW                     Annn, Cxnn, Dxyn
    OP_SKP, OP_SKNP                             Ex9E, ExA1
    OP_LD_VX_DT ... OP_LD_VX_I                  Fx07-Fx65
    OP_INVALID: Undecodable word, always raises UnknownOpcodeError

Each primitive has the signature (state, params, rng) -> None and mutates
the state in place. The program counter has already been advanced past
the instruction when a primitive runs.

Flag convention: arithmetic and shift primitives write their result
before VF, so an instruction targeting VF itself leaves the flag there.
"""

import random
from typing import Any, Callable, Dict, Optional

from .errors import OutOfBoundsError, UnknownOpcodeError
from .state import (
    BYTE_MASK,
    GLYPH_SIZE,
    MEMORY_SIZE,
    NUM_KEYS,
    WORD_MASK,
    VMState,
)


Primitive = Callable[[VMState, Dict[str, int], random.Random], None]


class InstructionRegistry:
    """Verified registry of instruction primitives.

    The registry is frozen after initialization to ensure
    no runtime modifications can occur.

    Attributes:
        _primitives: Dictionary mapping operation keys to handler functions
        _frozen: Whether the registry is locked against modifications
        _default_rng: Random source used when the caller supplies none
    """

    def __init__(self):
        """Initialize registry with all instruction primitives."""
        self._primitives: Dict[str, Primitive] = {}
        self._frozen = False
        self._default_rng = random.Random()
        self._register_all_primitives()
        self.freeze()

    def _register_all_primitives(self) -> None:
        """Register all instruction primitives."""
        # System and flow control
        self.register("OP_NOP", self._op_nop)
        self.register("OP_CLS", self._op_cls)
        self.register("OP_RET", self._op_ret)
        self.register("OP_JP", self._op_jp)
        self.register("OP_CALL", self._op_call)
        self.register("OP_JP_V0", self._op_jp_v0)

        # Conditional skips
        self.register("OP_SE_IMM", self._op_se_imm)
        self.register("OP_SNE_IMM", self._op_sne_imm)
        self.register("OP_SE_REG", self._op_se_reg)
        self.register("OP_SNE_REG", self._op_sne_reg)
        self.register("OP_SKP", self._op_skp)
        self.register("OP_SKNP", self._op_sknp)

        # Register loads and arithmetic
        self.register("OP_LD_IMM", self._op_ld_imm)
        self.register("OP_ADD_IMM", self._op_add_imm)
        self.register("OP_LD_REG", self._op_ld_reg)
        self.register("OP_OR", self._op_or)
        self.register("OP_AND", self._op_and)
        self.register("OP_XOR", self._op_xor)
        self.register("OP_ADD_REG", self._op_add_reg)
        self.register("OP_SUB", self._op_sub)
        self.register("OP_SHR", self._op_shr)
        self.register("OP_SUBN", self._op_subn)
        self.register("OP_SHL", self._op_shl)
        self.register("OP_RND", self._op_rnd)

        # Index register and memory
        self.register("OP_LD_I", self._op_ld_i)
        self.register("OP_ADD_I", self._op_add_i)
        self.register("OP_LD_F", self._op_ld_f)
        self.register("OP_LD_B", self._op_ld_b)
        self.register("OP_LD_I_VX", self._op_ld_i_vx)
        self.register("OP_LD_VX_I", self._op_ld_vx_i)

        # Display
        self.register("OP_DRW", self._op_drw)

        # Timers and input
        self.register("OP_LD_VX_DT", self._op_ld_vx_dt)
        self.register("OP_LD_DT_VX", self._op_ld_dt_vx)
        self.register("OP_LD_ST_VX", self._op_ld_st_vx)
        self.register("OP_LD_VX_K", self._op_ld_vx_k)

        # Special
        self.register("OP_INVALID", self._op_invalid)

    def register(self, key: str, handler: Primitive) -> None:
        """Register a primitive operation.

        Args:
            key: Operation key (e.g., "OP_DRW")
            handler: Function that takes (state, params, rng) and mutates state

        Raises:
            RuntimeError: If registry is frozen
            ValueError: If key already registered
        """
        if self._frozen:
            raise RuntimeError("Cannot register primitives: registry is frozen")
        if key in self._primitives:
            raise ValueError(f"Primitive already registered: {key}")
        self._primitives[key] = handler

    def freeze(self) -> None:
        """Freeze the registry to prevent further modifications."""
        self._frozen = True

    def is_frozen(self) -> bool:
        """Check if registry is frozen."""
        return self._frozen

    def get_valid_keys(self) -> set:
        """Get set of all valid operation keys."""
        return set(self._primitives.keys())

    def execute(
        self,
        state: VMState,
        key: str,
        params: Dict[str, Any],
        rng: Optional[random.Random] = None,
    ) -> None:
        """Execute a registered primitive against the state.

        Args:
            state: Machine state, mutated in place
            key: Operation key
            params: Operand fields from the decoder
            rng: Random source for OP_RND (registry default if None)

        Raises:
            KeyError: If key not in registry
            VMError: Any typed fault raised by the primitive
        """
        if key not in self._primitives:
            raise KeyError(f"Unknown operation key: {key}")

        handler = self._primitives[key]
        handler(state, params, rng if rng is not None else self._default_rng)

        # Only completed instructions count as cycles
        state.cycle_count += 1

    # =========================================================================
    # System and Flow Control
    # =========================================================================

    def _op_nop(self, state: VMState, params: Dict[str, int], rng: random.Random) -> None:
        """0000 - No operation."""

    def _op_cls(self, state: VMState, params: Dict[str, int], rng: random.Random) -> None:
        """00E0 - Clear the display."""
        state.clear_display()

    def _op_ret(self, state: VMState, params: Dict[str, int], rng: random.Random) -> None:
        """00EE - Return from subroutine.

        Raises:
            StackUnderflowError: If there is no return address
        """
        state.pc = state.pop()

    def _op_jp(self, state: VMState, params: Dict[str, int], rng: random.Random) -> None:
        """1nnn - Jump to nnn."""
        state.pc = params["nnn"]

    def _op_call(self, state: VMState, params: Dict[str, int], rng: random.Random) -> None:
        """2nnn - Call subroutine at nnn.

        The return address pushed is the already-advanced PC, i.e. the
        instruction after the call.

        Raises:
            StackOverflowError: If the stack is full
        """
        state.push(state.pc)
        state.pc = params["nnn"]

    def _op_jp_v0(self, state: VMState, params: Dict[str, int], rng: random.Random) -> None:
        """Bnnn - Jump to V0 + nnn.

        Targets past the end of memory are not rejected here; the next
        fetch reports them.
        """
        state.pc = state.registers[0] + params["nnn"]

    # =========================================================================
    # Conditional Skips
    # =========================================================================

    def _skip_if(self, state: VMState, condition: bool) -> None:
        if condition:
            state.pc = (state.pc + 2) & WORD_MASK

    def _op_se_imm(self, state: VMState, params: Dict[str, int], rng: random.Random) -> None:
        """3xnn - Skip next instruction if Vx == nn."""
        self._skip_if(state, state.get_register(params["x"]) == params["nn"])

    def _op_sne_imm(self, state: VMState, params: Dict[str, int], rng: random.Random) -> None:
        """4xnn - Skip next instruction if Vx != nn."""
        self._skip_if(state, state.get_register(params["x"]) != params["nn"])

    def _op_se_reg(self, state: VMState, params: Dict[str, int], rng: random.Random) -> None:
        """5xy0 - Skip next instruction if Vx == Vy."""
        vx = state.get_register(params["x"])
        vy = state.get_register(params["y"])
        self._skip_if(state, vx == vy)

    def _op_sne_reg(self, state: VMState, params: Dict[str, int], rng: random.Random) -> None:
        """9xy0 - Skip next instruction if Vx != Vy."""
        vx = state.get_register(params["x"])
        vy = state.get_register(params["y"])
        self._skip_if(state, vx != vy)

    def _key_pressed(self, state: VMState, params: Dict[str, int]) -> bool:
        key = state.get_register(params["x"])
        if key >= NUM_KEYS:
            raise OutOfBoundsError("key", key, NUM_KEYS)
        return state.keys[key]

    def _op_skp(self, state: VMState, params: Dict[str, int], rng: random.Random) -> None:
        """Ex9E - Skip next instruction if key Vx is pressed.

        Raises:
            OutOfBoundsError: If Vx is not a valid key index
        """
        self._skip_if(state, self._key_pressed(state, params))

    def _op_sknp(self, state: VMState, params: Dict[str, int], rng: random.Random) -> None:
        """ExA1 - Skip next instruction if key Vx is not pressed.

        Raises:
            OutOfBoundsError: If Vx is not a valid key index
        """
        self._skip_if(state, not self._key_pressed(state, params))

    # =========================================================================
    # Register Loads and Arithmetic
    # =========================================================================

    def _op_ld_imm(self, state: VMState, params: Dict[str, int], rng: random.Random) -> None:
        """6xnn - Vx = nn."""
        state.set_register(params["x"], params["nn"])

    def _op_add_imm(self, state: VMState, params: Dict[str, int], rng: random.Random) -> None:
        """7xnn - Vx += nn, wrapping. VF is not touched."""
        x = params["x"]
        state.set_register(x, state.get_register(x) + params["nn"])

    def _op_ld_reg(self, state: VMState, params: Dict[str, int], rng: random.Random) -> None:
        """8xy0 - Vx = Vy."""
        state.set_register(params["x"], state.get_register(params["y"]))

    def _op_or(self, state: VMState, params: Dict[str, int], rng: random.Random) -> None:
        """8xy1 - Vx |= Vy."""
        x = params["x"]
        state.set_register(x, state.get_register(x) | state.get_register(params["y"]))

    def _op_and(self, state: VMState, params: Dict[str, int], rng: random.Random) -> None:
        """8xy2 - Vx &= Vy."""
        x = params["x"]
        state.set_register(x, state.get_register(x) & state.get_register(params["y"]))

    def _op_xor(self, state: VMState, params: Dict[str, int], rng: random.Random) -> None:
        """8xy3 - Vx ^= Vy."""
        x = params["x"]
        state.set_register(x, state.get_register(x) ^ state.get_register(params["y"]))

    def _op_add_reg(self, state: VMState, params: Dict[str, int], rng: random.Random) -> None:
        """8xy4 - Vx += Vy, VF = 1 on carry out of bit 7, else 0."""
        x = params["x"]
        total = state.get_register(x) + state.get_register(params["y"])
        state.set_register(x, total)
        state.set_flag(total > BYTE_MASK)

    def _op_sub(self, state: VMState, params: Dict[str, int], rng: random.Random) -> None:
        """8xy5 - Vx -= Vy, VF = 0 if a borrow occurred, else 1."""
        x = params["x"]
        vx = state.get_register(x)
        vy = state.get_register(params["y"])
        state.set_register(x, vx - vy)
        state.set_flag(vx >= vy)

    def _op_shr(self, state: VMState, params: Dict[str, int], rng: random.Random) -> None:
        """8xy6 - VF = lsb of Vx, then Vx >>= 1. Vy is ignored."""
        x = params["x"]
        vx = state.get_register(x)
        state.set_register(x, vx >> 1)
        state.set_flag(vx & 0x01)

    def _op_subn(self, state: VMState, params: Dict[str, int], rng: random.Random) -> None:
        """8xy7 - Vx = Vy - Vx, VF = 0 if a borrow occurred, else 1."""
        x = params["x"]
        vx = state.get_register(x)
        vy = state.get_register(params["y"])
        state.set_register(x, vy - vx)
        state.set_flag(vy >= vx)

    def _op_shl(self, state: VMState, params: Dict[str, int], rng: random.Random) -> None:
        """8xyE - VF = msb of Vx, then Vx <<= 1. Vy is ignored."""
        x = params["x"]
        vx = state.get_register(x)
        state.set_register(x, vx << 1)
        state.set_flag(vx & 0x80)

    def _op_rnd(self, state: VMState, params: Dict[str, int], rng: random.Random) -> None:
        """Cxnn - Vx = random byte AND nn."""
        state.set_register(params["x"], rng.randrange(256) & params["nn"])

    # =========================================================================
    # Index Register and Memory
    # =========================================================================

    def _check_span(self, start: int, count: int) -> None:
        """Ensure [start, start + count) lies inside memory before any write."""
        end = start + count - 1
        if end >= MEMORY_SIZE:
            raise OutOfBoundsError("memory", end, MEMORY_SIZE)

    def _op_ld_i(self, state: VMState, params: Dict[str, int], rng: random.Random) -> None:
        """Annn - I = nnn."""
        state.index_register = params["nnn"]

    def _op_add_i(self, state: VMState, params: Dict[str, int], rng: random.Random) -> None:
        """Fx1E - I += Vx, wrapping at 16 bits. VF is not touched."""
        total = state.index_register + state.get_register(params["x"])
        state.index_register = total & WORD_MASK

    def _op_ld_f(self, state: VMState, params: Dict[str, int], rng: random.Random) -> None:
        """Fx29 - I = address of the glyph for Vx (5 bytes per glyph)."""
        state.index_register = state.get_register(params["x"]) * GLYPH_SIZE

    def _op_ld_b(self, state: VMState, params: Dict[str, int], rng: random.Random) -> None:
        """Fx33 - Store the decimal digits of Vx at I, I+1, I+2.

        Raises:
            OutOfBoundsError: If I+2 is outside memory (nothing is written)
        """
        value = state.get_register(params["x"])
        i = state.index_register
        self._check_span(i, 3)
        state.write_byte(i, value // 100)
        state.write_byte(i + 1, (value // 10) % 10)
        state.write_byte(i + 2, value % 10)

    def _op_ld_i_vx(self, state: VMState, params: Dict[str, int], rng: random.Random) -> None:
        """Fx55 - Store V0..Vx in memory starting at I. I is unchanged.

        Raises:
            OutOfBoundsError: If I+x is outside memory (nothing is written)
        """
        x = params["x"]
        i = state.index_register
        self._check_span(i, x + 1)
        for offset in range(x + 1):
            state.write_byte(i + offset, state.registers[offset])

    def _op_ld_vx_i(self, state: VMState, params: Dict[str, int], rng: random.Random) -> None:
        """Fx65 - Load V0..Vx from memory starting at I. I is unchanged.

        Raises:
            OutOfBoundsError: If I+x is outside memory (no register changes)
        """
        x = params["x"]
        i = state.index_register
        self._check_span(i, x + 1)
        for offset in range(x + 1):
            state.registers[offset] = state.read_byte(i + offset)

    # =========================================================================
    # Display
    # =========================================================================

    def _op_drw(self, state: VMState, params: Dict[str, int], rng: random.Random) -> None:
        """Dxyn - Draw an n-row sprite from memory[I] at (Vx, Vy).

        Each sprite byte is one row of 8 pixels, bit 7 leftmost. Set bits
        are XORed onto the display with toroidal wrap on both axes. VF is
        set to 1 if any pixel that was lit before this draw got turned off,
        else 0.

        Raises:
            OutOfBoundsError: If the sprite rows extend past memory
                (display is left untouched)
        """
        x_origin = state.get_register(params["x"])
        y_origin = state.get_register(params["y"])
        height = params["n"]
        i = state.index_register

        self._check_span(i, height)
        rows = [state.read_byte(i + row) for row in range(height)]

        collision = False
        for row, sprite_byte in enumerate(rows):
            for col in range(8):
                if sprite_byte & (0x80 >> col):
                    if state.toggle_pixel(x_origin + col, y_origin + row):
                        collision = True

        state.set_flag(collision)

    # =========================================================================
    # Timers and Input
    # =========================================================================

    def _op_ld_vx_dt(self, state: VMState, params: Dict[str, int], rng: random.Random) -> None:
        """Fx07 - Vx = delay timer."""
        state.set_register(params["x"], state.delay_timer)

    def _op_ld_dt_vx(self, state: VMState, params: Dict[str, int], rng: random.Random) -> None:
        """Fx15 - delay timer = Vx."""
        state.delay_timer = state.get_register(params["x"])

    def _op_ld_st_vx(self, state: VMState, params: Dict[str, int], rng: random.Random) -> None:
        """Fx18 - sound timer = Vx."""
        state.sound_timer = state.get_register(params["x"])

    def _op_ld_vx_k(self, state: VMState, params: Dict[str, int], rng: random.Random) -> None:
        """Fx0A - Wait for a key press, store its index in Vx.

        With no key down the PC is rewound onto this instruction so the
        next tick executes it again. With several keys down the lowest
        index wins.
        """
        for index, pressed in enumerate(state.keys):
            if pressed:
                state.set_register(params["x"], index)
                return
        state.pc = (state.pc - 2) & WORD_MASK

    # =========================================================================
    # Special
    # =========================================================================

    def _op_invalid(self, state: VMState, params: Dict[str, int], rng: random.Random) -> None:
        """INVALID - Undecodable instruction word.

        Params:
            raw: Original instruction word
            address: Address it was fetched from

        Raises:
            UnknownOpcodeError: Always
        """
        raise UnknownOpcodeError(params.get("raw", 0), params.get("address"))


# Singleton registry instance
_registry: Optional[InstructionRegistry] = None


def get_registry() -> InstructionRegistry:
    """Get the singleton instruction registry instance.

    Returns:
        The frozen InstructionRegistry instance
    """
    global _registry
    if _registry is None:
        _registry = InstructionRegistry()
    return _registry
