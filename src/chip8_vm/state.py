"""VMState: Machine state representation for the CHIP-8 virtual machine.

This module defines the complete state of the machine together with the
bounds-checked primitives every instruction goes through to touch it.

State Components:
    - Memory: 4096 bytes, glyph table at 0x000, programs loaded at 0x200
    - Registers: V0-VF (16 general-purpose 8-bit values, VF doubles as flag)
    - Index register I and program counter PC (16-bit)
    - Stack: 16 return addresses plus a stack pointer
    - Display: 64x32 monochrome bitmap stored row-major
    - Keys: 16-slot input latch
    - Timers: delay and sound, 8-bit countdowns
    - Cycle count: Total executed instructions

The state is mutated in place. A machine owns exactly one VMState for its
lifetime and resets it rather than replacing it.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from .errors import (
    LoadTooLargeError,
    OutOfBoundsError,
    StackOverflowError,
    StackUnderflowError,
)


MEMORY_SIZE = 4096
NUM_REGISTERS = 16
STACK_DEPTH = 16
NUM_KEYS = 16
SCREEN_WIDTH = 64
SCREEN_HEIGHT = 32
PROGRAM_START = 0x200
FLAG_REGISTER = 0xF

BYTE_MASK = 0xFF
WORD_MASK = 0xFFFF

GLYPH_SIZE = 5

# Hexadecimal digit sprites 0-F, 4 pixels wide, one byte per row
FONTSET = bytes([
    0xF0, 0x90, 0x90, 0x90, 0xF0,  # 0
    0x20, 0x60, 0x20, 0x20, 0x70,  # 1
    0xF0, 0x10, 0xF0, 0x80, 0xF0,  # 2
    0xF0, 0x10, 0xF0, 0x10, 0xF0,  # 3
    0x90, 0x90, 0xF0, 0x10, 0x10,  # 4
    0xF0, 0x80, 0xF0, 0x10, 0xF0,  # 5
    0xF0, 0x80, 0xF0, 0x90, 0xF0,  # 6
    0xF0, 0x10, 0x20, 0x40, 0x40,  # 7
    0xF0, 0x90, 0xF0, 0x90, 0xF0,  # 8
    0xF0, 0x90, 0xF0, 0x10, 0xF0,  # 9
    0xF0, 0x90, 0xF0, 0x90, 0x90,  # A
    0xE0, 0x90, 0xE0, 0x90, 0xE0,  # B
    0xF0, 0x80, 0x80, 0x80, 0xF0,  # C
    0xE0, 0x90, 0x90, 0x90, 0xE0,  # D
    0xF0, 0x80, 0xF0, 0x80, 0xF0,  # E
    0xF0, 0x80, 0xF0, 0x80, 0x80,  # F
])


def _fresh_memory() -> bytearray:
    memory = bytearray(MEMORY_SIZE)
    memory[:len(FONTSET)] = FONTSET
    return memory


@dataclass
class VMState:
    """Mutable CHIP-8 machine state.

    Attributes:
        memory: 4096-byte addressable memory, glyph table preloaded
        display: 64*32 booleans, row-major, index x + 64*y
        registers: V0-VF as a list of 16 unsigned bytes
        index_register: 16-bit I register
        pc: Program counter (address of the next instruction)
        stack: Return addresses, only the first stack_pointer entries are live
        stack_pointer: Number of stack entries in use
        keys: Pressed state of keys 0x0-0xF
        delay_timer: 8-bit delay countdown
        sound_timer: 8-bit sound countdown, tone plays while non-zero
        cycle_count: Number of instructions executed
    """
    memory: bytearray = field(default_factory=_fresh_memory)
    display: List[bool] = field(default_factory=lambda: [False] * (SCREEN_WIDTH * SCREEN_HEIGHT))
    registers: List[int] = field(default_factory=lambda: [0] * NUM_REGISTERS)
    index_register: int = 0
    pc: int = PROGRAM_START
    stack: List[int] = field(default_factory=lambda: [0] * STACK_DEPTH)
    stack_pointer: int = 0
    keys: List[bool] = field(default_factory=lambda: [False] * NUM_KEYS)
    delay_timer: int = 0
    sound_timer: int = 0
    cycle_count: int = 0

    def reset(self) -> None:
        """Restore the power-on state in place.

        Memory is zeroed and the glyph table reloaded, so any loaded
        program is discarded.
        """
        self.memory[:] = _fresh_memory()
        self.display[:] = [False] * (SCREEN_WIDTH * SCREEN_HEIGHT)
        self.registers[:] = [0] * NUM_REGISTERS
        self.index_register = 0
        self.pc = PROGRAM_START
        self.stack[:] = [0] * STACK_DEPTH
        self.stack_pointer = 0
        self.keys[:] = [False] * NUM_KEYS
        self.delay_timer = 0
        self.sound_timer = 0
        self.cycle_count = 0

    # =========================================================================
    # Memory
    # =========================================================================

    def read_byte(self, addr: int) -> int:
        """Read one byte of memory.

        Raises:
            OutOfBoundsError: If addr is outside memory
        """
        if not 0 <= addr < MEMORY_SIZE:
            raise OutOfBoundsError("memory", addr, MEMORY_SIZE)
        return self.memory[addr]

    def write_byte(self, addr: int, value: int) -> None:
        """Write one byte of memory (value masked to 8 bits).

        Raises:
            OutOfBoundsError: If addr is outside memory
        """
        if not 0 <= addr < MEMORY_SIZE:
            raise OutOfBoundsError("memory", addr, MEMORY_SIZE)
        self.memory[addr] = value & BYTE_MASK

    def read_word(self, addr: int) -> int:
        """Read a big-endian 16-bit word at addr and addr + 1."""
        return (self.read_byte(addr) << 8) | self.read_byte(addr + 1)

    # =========================================================================
    # Registers
    # =========================================================================

    def get_register(self, index: int) -> int:
        """Get value of register V[index].

        Raises:
            OutOfBoundsError: If index is not in [0, 15]
        """
        if not 0 <= index < NUM_REGISTERS:
            raise OutOfBoundsError("register", index, NUM_REGISTERS)
        return self.registers[index]

    def set_register(self, index: int, value: int) -> None:
        """Set register V[index], wrapping value to 8 bits.

        Raises:
            OutOfBoundsError: If index is not in [0, 15]
        """
        if not 0 <= index < NUM_REGISTERS:
            raise OutOfBoundsError("register", index, NUM_REGISTERS)
        self.registers[index] = value & BYTE_MASK

    def set_flag(self, value: bool) -> None:
        """Set VF to 1 or 0."""
        self.registers[FLAG_REGISTER] = 1 if value else 0

    # =========================================================================
    # Stack
    # =========================================================================

    def push(self, addr: int) -> None:
        """Push a return address.

        Raises:
            StackOverflowError: If all stack entries are in use
        """
        if self.stack_pointer >= STACK_DEPTH:
            raise StackOverflowError(STACK_DEPTH)
        self.stack[self.stack_pointer] = addr & WORD_MASK
        self.stack_pointer += 1

    def pop(self) -> int:
        """Pop the most recent return address.

        Raises:
            StackUnderflowError: If the stack is empty
        """
        if self.stack_pointer == 0:
            raise StackUnderflowError()
        self.stack_pointer -= 1
        return self.stack[self.stack_pointer]

    # =========================================================================
    # Display
    # =========================================================================

    def clear_display(self) -> None:
        """Turn every pixel off."""
        self.display[:] = [False] * (SCREEN_WIDTH * SCREEN_HEIGHT)

    def toggle_pixel(self, x: int, y: int) -> bool:
        """XOR the pixel at (x, y) with lit, wrapping both coordinates.

        Returns:
            True if the pixel was lit before the toggle (a collision)
        """
        idx = (x % SCREEN_WIDTH) + SCREEN_WIDTH * (y % SCREEN_HEIGHT)
        was_lit = self.display[idx]
        self.display[idx] = not was_lit
        return was_lit

    # =========================================================================
    # Introspection
    # =========================================================================

    def snapshot(self) -> dict:
        """Create a snapshot of the CPU-visible state for tracing.

        Returns:
            Dictionary with copies of registers, pc, I, stack and timers
        """
        return {
            "registers": list(self.registers),
            "pc": self.pc,
            "index_register": self.index_register,
            "stack": self.stack[:self.stack_pointer],
            "delay_timer": self.delay_timer,
            "sound_timer": self.sound_timer,
            "cycle_count": self.cycle_count,
            # Memory and display excluded: too large to copy every cycle
        }

    def validate(self) -> bool:
        """Validate state integrity.

        Checks:
            - Fixed array sizes have not changed
            - Registers and timers hold unsigned bytes
            - PC, I and stack pointer are within their ranges

        Returns:
            True if state is valid, False otherwise
        """
        if len(self.memory) != MEMORY_SIZE:
            return False
        if len(self.display) != SCREEN_WIDTH * SCREEN_HEIGHT:
            return False
        if len(self.registers) != NUM_REGISTERS or len(self.keys) != NUM_KEYS:
            return False
        if len(self.stack) != STACK_DEPTH:
            return False

        for value in self.registers:
            if not isinstance(value, int) or not 0 <= value <= BYTE_MASK:
                return False

        for timer in (self.delay_timer, self.sound_timer):
            if not 0 <= timer <= BYTE_MASK:
                return False

        if not 0 <= self.pc <= WORD_MASK:
            return False
        if not 0 <= self.index_register <= WORD_MASK:
            return False
        if not 0 <= self.stack_pointer <= STACK_DEPTH:
            return False

        if self.cycle_count < 0:
            return False

        return True

    def dump_registers(self) -> Dict[str, int]:
        """Get a copy of all register values keyed V0-VF."""
        return {f"V{i:X}": value for i, value in enumerate(self.registers)}

    def __str__(self) -> str:
        """Human-readable state representation."""
        regs = " ".join(f"V{i:X}={v:02X}" for i, v in enumerate(self.registers))
        return (
            f"[Cycle {self.cycle_count}] PC={self.pc:03X} I={self.index_register:03X} "
            f"SP={self.stack_pointer} DT={self.delay_timer} ST={self.sound_timer} {regs}"
        )


def create_initial_state(image: Optional[Iterable[int]] = None) -> VMState:
    """Create a power-on state, optionally with a program image loaded.

    Args:
        image: Program bytes to place at PROGRAM_START

    Returns:
        Fresh VMState

    Raises:
        LoadTooLargeError: If the image does not fit in memory
    """
    state = VMState()
    if image is not None:
        load_image(state, image)
    return state


def load_image(state: VMState, image: Iterable[int]) -> int:
    """Copy a program image into memory at PROGRAM_START.

    Returns:
        Number of bytes written

    Raises:
        LoadTooLargeError: If PROGRAM_START + len(image) exceeds memory
    """
    data = bytes(image)
    capacity = MEMORY_SIZE - PROGRAM_START
    if len(data) > capacity:
        raise LoadTooLargeError(len(data), capacity)
    state.memory[PROGRAM_START:PROGRAM_START + len(data)] = data
    return len(data)
