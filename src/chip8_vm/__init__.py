"""CHIP8-VM: Virtual CPU for the CHIP-8 instruction set.

This package implements the fetch-decode-execute engine of the CHIP-8
8-bit virtual machine: 4 KiB memory with a built-in hex glyph table,
sixteen V registers, an index register, a 16-deep call stack, a 64x32
XOR-composited monochrome display, two 60 Hz countdown timers and a
16-key input latch.

Architecture:
    MEMORY -> FETCH -> DECODE -> KEY -> REGISTRY -> EXECUTE -> STATE
               |         |        |        |            |
           [PC-based] [nibbles] [OP_*] [Verified]   [In place]
                                        Primitives

Modules:
    errors: Typed failures (out of bounds, stack, unknown opcode, load)
    state: VMState and its bounds-checked primitives
    decoder: 16-bit word -> operation key and operand fields
    registry: Verified instruction primitives (OP_DRW, OP_CALL, etc.)
    cpu: Main Chip8VM orchestrator used by hosts
"""

__version__ = "0.1.0"
__author__ = "CHIP8-VM Project"

from .errors import (
    LoadTooLargeError,
    OutOfBoundsError,
    StackOverflowError,
    StackUnderflowError,
    UnknownOpcodeError,
    VMError,
)
from .state import VMState
from .registry import InstructionRegistry
from .decoder import Decoder, DecodeResult, disassemble
from .cpu import Chip8VM, ExecutionTraceEntry

__all__ = [
    "Chip8VM",
    "ExecutionTraceEntry",
    "VMState",
    "InstructionRegistry",
    "Decoder",
    "DecodeResult",
    "disassemble",
    "VMError",
    "OutOfBoundsError",
    "StackOverflowError",
    "StackUnderflowError",
    "UnknownOpcodeError",
    "LoadTooLargeError",
]
