"""Chip8VM: Host-facing orchestrator for the CHIP-8 virtual machine.

This module implements the full execution pipeline:
    MEMORY -> FETCH -> DECODE -> KEY -> REGISTRY -> EXECUTE -> STATE

A host creates one machine, loads a program image, then drives it by
calling tick() once per instruction and tick_timers() at its own fixed
cadence (conventionally 60 Hz). Input arrives through set_key() and the
display is read back with get_display(). Nothing here schedules itself,
blocks, or spawns threads; all calls must come from one thread.
"""

import logging
import random
from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, Iterable, List, Optional, Tuple

from .decoder import Decoder, DecodeResult, disassemble
from .errors import OutOfBoundsError, UnknownOpcodeError, VMError
from .registry import InstructionRegistry, get_registry
from .state import (
    NUM_KEYS,
    PROGRAM_START,
    SCREEN_HEIGHT,
    SCREEN_WIDTH,
    WORD_MASK,
    VMState,
    load_image,
)


LOGGER = logging.getLogger("chip8_vm.cpu")


@dataclass
class ExecutionTraceEntry:
    """Single entry in the execution trace.

    Captures one fetch-decode-execute cycle for debugging.

    Attributes:
        cycle: Cycle number at fetch time (0-indexed)
        address: Address the instruction was fetched from
        instruction: Raw instruction word (None if the fetch itself failed)
        decode_result: Result from the decoder (None if the fetch failed)
        pre_state: State snapshot before execution
        post_state: State snapshot after execution (or at the fault)
        error: Error message if execution failed
    """
    cycle: int
    address: int
    instruction: Optional[int]
    decode_result: Optional[DecodeResult]
    pre_state: dict
    post_state: dict
    error: Optional[str] = None


class Chip8VM:
    """CHIP-8 virtual machine.

    Attributes:
        state: The machine state, owned exclusively by this instance
        decoder: Instruction decoder
        registry: Frozen registry of instruction primitives
        rng: Random source for the RND instruction
        trace_enabled: Whether ticks are recorded
        trace: Most recent trace entries, bounded by trace_depth
    """

    DEFAULT_TRACE_DEPTH = 1000

    def __init__(
        self,
        seed: Optional[int] = None,
        rng: Optional[random.Random] = None,
        trace: bool = False,
        trace_depth: int = DEFAULT_TRACE_DEPTH,
    ):
        """Create a zero-initialized machine with the glyph table loaded.

        Args:
            seed: Seed for a private random source (ignored if rng given)
            rng: Random source for RND, shared with the caller
            trace: Record an execution trace entry per tick
            trace_depth: Maximum number of trace entries kept
        """
        self.state = VMState()
        self.decoder = Decoder()
        self.registry: InstructionRegistry = get_registry()
        self.rng = rng if rng is not None else random.Random(seed)
        self.trace_enabled = trace
        self.trace: Deque[ExecutionTraceEntry] = deque(maxlen=trace_depth)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def reset(self) -> None:
        """Restore the power-on state in place, discarding the program."""
        self.state.reset()
        self.trace.clear()
        LOGGER.info("Machine reset")

    def load(self, image: Iterable[int]) -> None:
        """Copy a program image into memory at 0x200.

        Args:
            image: Program bytes

        Raises:
            LoadTooLargeError: If the image would run past the end of memory
        """
        size = load_image(self.state, image)
        LOGGER.info("Loaded %d byte program image at 0x%03X", size, PROGRAM_START)

    # =========================================================================
    # Execution
    # =========================================================================

    def tick(self) -> DecodeResult:
        """Execute exactly one fetch-decode-execute cycle.

        When an UnknownOpcodeError is raised the PC already points past
        the offending word, so ticking again skips it.

        Returns:
            DecodeResult of the executed instruction

        Raises:
            OutOfBoundsError: Fetch or operand access outside its range
            StackOverflowError: CALL with a full stack
            StackUnderflowError: RET with an empty stack
            UnknownOpcodeError: Word matches no instruction
        """
        state = self.state
        address = state.pc
        cycle = state.cycle_count
        pre_state = state.snapshot() if self.trace_enabled else {}
        word: Optional[int] = None
        decode_result: Optional[DecodeResult] = None

        try:
            # FETCH
            word = state.read_word(address)
            state.pc = (address + 2) & WORD_MASK

            # DECODE
            decode_result = self.decoder.decode(word)
            if not decode_result.valid:
                raise UnknownOpcodeError(word, address)

            # EXECUTE
            if LOGGER.isEnabledFor(logging.DEBUG):
                LOGGER.debug("0x%03X: %04X  %s", address, word, disassemble(word))
            self.registry.execute(state, decode_result.key, decode_result.params, self.rng)
        except VMError as e:
            LOGGER.warning("Fault at 0x%03X: %s", address, e)
            self._record(cycle, address, word, decode_result, pre_state, str(e))
            raise

        self._record(cycle, address, word, decode_result, pre_state, None)
        return decode_result

    def run(self, cycles: int) -> int:
        """Execute up to `cycles` instructions.

        Timers are not ticked; hosts that want them interleave
        tick_timers() themselves.

        Returns:
            Number of instructions executed

        Raises:
            VMError: The first fault, after which execution stops
        """
        for _ in range(cycles):
            self.tick()
        return cycles

    def _record(
        self,
        cycle: int,
        address: int,
        word: Optional[int],
        decode_result: Optional[DecodeResult],
        pre_state: dict,
        error: Optional[str],
    ) -> None:
        if not self.trace_enabled:
            return
        self.trace.append(ExecutionTraceEntry(
            cycle=cycle,
            address=address,
            instruction=word,
            decode_result=decode_result,
            pre_state=pre_state,
            post_state=self.state.snapshot(),
            error=error,
        ))

    # =========================================================================
    # Timers
    # =========================================================================

    def tick_timers(self) -> bool:
        """Decrement the delay and sound timers by one, never below zero.

        Returns:
            True if the sound timer went from 1 to 0 on this call, i.e. the
            host should stop the tone now
        """
        state = self.state
        if state.delay_timer > 0:
            state.delay_timer -= 1

        tone_stopped = False
        if state.sound_timer > 0:
            tone_stopped = state.sound_timer == 1
            state.sound_timer -= 1
        return tone_stopped

    @property
    def sound_active(self) -> bool:
        """True while the sound timer is non-zero (tone should play)."""
        return self.state.sound_timer > 0

    # =========================================================================
    # Input and Display
    # =========================================================================

    def set_key(self, index: int, pressed: bool) -> None:
        """Update the input latch for one key.

        Raises:
            OutOfBoundsError: If index is not in [0, 15]
        """
        if not 0 <= index < NUM_KEYS:
            raise OutOfBoundsError("key", index, NUM_KEYS)
        self.state.keys[index] = bool(pressed)

    def get_display(self) -> Tuple[bool, ...]:
        """Get a read-only copy of the 64x32 display, row-major."""
        return tuple(self.state.display)

    def get_display_rows(self) -> Tuple[Tuple[bool, ...], ...]:
        """Get the display as 32 rows of 64 pixels."""
        display = self.state.display
        return tuple(
            tuple(display[row * SCREEN_WIDTH:(row + 1) * SCREEN_WIDTH])
            for row in range(SCREEN_HEIGHT)
        )

    def render_display(self, lit: str = "#", unlit: str = ".") -> str:
        """Render the display as text, one line per row."""
        return "\n".join(
            "".join(lit if pixel else unlit for pixel in row)
            for row in self.get_display_rows()
        )

    # =========================================================================
    # Accessors
    # =========================================================================

    def get_register(self, index: int) -> int:
        """Get value of register V[index]."""
        return self.state.get_register(index)

    def dump_registers(self) -> Dict[str, int]:
        """Get all register values keyed V0-VF."""
        return self.state.dump_registers()

    def get_pc(self) -> int:
        """Get current program counter."""
        return self.state.pc

    def get_index(self) -> int:
        """Get the index register I."""
        return self.state.index_register

    def get_timers(self) -> Tuple[int, int]:
        """Get (delay_timer, sound_timer)."""
        return self.state.delay_timer, self.state.sound_timer

    def get_cycle_count(self) -> int:
        """Get number of executed instructions."""
        return self.state.cycle_count

    def get_trace(self) -> List[ExecutionTraceEntry]:
        """Get the recorded trace entries, oldest first."""
        return list(self.trace)

    def print_trace(self) -> None:
        """Print execution trace in human-readable format."""
        print("=" * 70)
        print("CHIP8-VM EXECUTION TRACE")
        print("=" * 70)

        for entry in self.trace:
            status = "OK" if not entry.error else f"ERROR: {entry.error}"
            print(f"\n[Cycle {entry.cycle}] 0x{entry.address:03X} {status}")
            if entry.instruction is not None:
                print(f"  Instruction: {entry.instruction:04X}  {disassemble(entry.instruction)}")
            if entry.decode_result is not None:
                print(f"  Decoded Key: {entry.decode_result.key}")
                print(f"  Params: {entry.decode_result.params}")

            # Show register changes
            pre_regs = entry.pre_state.get("registers", [])
            post_regs = entry.post_state.get("registers", [])
            changes = [
                f"V{i:X}: {before} → {after}"
                for i, (before, after) in enumerate(zip(pre_regs, post_regs))
                if before != after
            ]
            if changes:
                print(f"  Changes: {', '.join(changes)}")

            pre_i = entry.pre_state.get("index_register")
            post_i = entry.post_state.get("index_register")
            if pre_i != post_i:
                print(f"  I: 0x{pre_i:03X} → 0x{post_i:03X}")

        print("\n" + "=" * 70)
        print("FINAL STATE")
        print("=" * 70)
        print(f"  {self.state}")

    def get_summary(self) -> Dict:
        """Get execution summary.

        Returns:
            Dictionary with execution statistics and final state
        """
        delay, sound = self.get_timers()
        return {
            "cycles": self.get_cycle_count(),
            "pc": self.get_pc(),
            "index_register": self.get_index(),
            "registers": self.dump_registers(),
            "stack_depth": self.state.stack_pointer,
            "delay_timer": delay,
            "sound_timer": sound,
            "sound_active": self.sound_active,
            "lit_pixels": sum(self.state.display),
            "trace_length": len(self.trace),
            "errors": [e.error for e in self.trace if e.error],
        }
