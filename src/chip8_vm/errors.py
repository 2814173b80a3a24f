"""Typed failures raised by the CHIP-8 virtual machine.

Every fault the machine can hit while loading or executing a program is
reported as a subclass of VMError, so a host can catch the whole family
with one clause or single out the cases it wants to handle:

    OutOfBoundsError     memory, register or key index outside its range
    StackOverflowError   CALL with all 16 stack entries in use
    StackUnderflowError  RET with an empty stack
    UnknownOpcodeError   instruction word matches no defined pattern
    LoadTooLargeError    program image does not fit above 0x200
"""

from typing import Optional


class VMError(RuntimeError):
    """Base class for all virtual machine faults."""


class OutOfBoundsError(VMError):
    """Raised when an address or index falls outside its fixed array."""

    def __init__(self, kind: str, index: int, limit: int):
        self.kind = kind
        self.index = index
        self.limit = limit
        super().__init__(f"{kind} index {index:#x} out of range [0, {limit:#x})")


class StackOverflowError(VMError):
    """Raised when a subroutine call exceeds the fixed stack depth."""

    def __init__(self, depth: int):
        self.depth = depth
        super().__init__(f"Stack overflow: depth {depth} exhausted")


class StackUnderflowError(VMError):
    """Raised when returning from a subroutine with an empty stack."""

    def __init__(self):
        super().__init__("Stack underflow: return with empty stack")


class UnknownOpcodeError(VMError):
    """Raised when an instruction word does not decode to any instruction."""

    def __init__(self, opcode: int, address: Optional[int] = None):
        self.opcode = opcode
        self.address = address
        where = f" at 0x{address:03X}" if address is not None else ""
        super().__init__(f"Unknown opcode 0x{opcode:04X}{where}")


class LoadTooLargeError(VMError):
    """Raised when a program image would overrun the end of memory."""

    def __init__(self, size: int, capacity: int):
        self.size = size
        self.capacity = capacity
        super().__init__(
            f"Program image of {size} bytes exceeds {capacity} bytes available"
        )
