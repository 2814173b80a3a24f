"""Decoder: Instruction decoder for the CHIP-8 virtual machine.

The decoder turns a raw 16-bit instruction word into an operation key
from a closed set plus the operand fields that key needs. Execution is
left entirely to the registry.

Architecture:
    Raw word -> Decoder -> (operation_key, params) -> Registry -> Execute

The word is split into four nibbles d1 d2 d3 d4 (high to low). Operand
fields follow the usual naming:

    x    second nibble, register index
    y    third nibble, register index
    n    fourth nibble, 4-bit count
    nn   low byte, 8-bit immediate
    nnn  low 12 bits, address
"""

from dataclasses import dataclass, field
from typing import Dict, Optional, Set, Tuple


@dataclass
class DecodeResult:
    """Result of instruction decode operation.

    Attributes:
        key: Operation key (e.g., "OP_DRW")
        params: Operand fields used by the operation
        valid: Whether decode succeeded
        error: Error message if decode failed
        raw_instruction: Original instruction word
    """
    key: str
    params: Dict[str, int] = field(default_factory=dict)
    valid: bool = True
    error: Optional[str] = None
    raw_instruction: int = 0


def split_nibbles(word: int) -> Tuple[int, int, int, int]:
    """Split a 16-bit word into its four nibbles, high to low."""
    return (
        (word & 0xF000) >> 12,
        (word & 0x0F00) >> 8,
        (word & 0x00F0) >> 4,
        word & 0x000F,
    )


# Second byte of 0x0/0xE/0xF family instructions -> key
_ZERO_FAMILY = {0x00: "OP_NOP", 0xE0: "OP_CLS", 0xEE: "OP_RET"}
_KEY_FAMILY = {0x9E: "OP_SKP", 0xA1: "OP_SKNP"}
_MISC_FAMILY = {
    0x07: "OP_LD_VX_DT",
    0x0A: "OP_LD_VX_K",
    0x15: "OP_LD_DT_VX",
    0x18: "OP_LD_ST_VX",
    0x1E: "OP_ADD_I",
    0x29: "OP_LD_F",
    0x33: "OP_LD_B",
    0x55: "OP_LD_I_VX",
    0x65: "OP_LD_VX_I",
}
# Last nibble of 0x8xyN register-register ALU instructions -> key
_ALU_FAMILY = {
    0x0: "OP_LD_REG",
    0x1: "OP_OR",
    0x2: "OP_AND",
    0x3: "OP_XOR",
    0x4: "OP_ADD_REG",
    0x5: "OP_SUB",
    0x6: "OP_SHR",
    0x7: "OP_SUBN",
    0xE: "OP_SHL",
}


class Decoder:
    """Nibble-pattern instruction decoder.

    Every defined pattern maps to exactly one key; any other word
    decodes to OP_INVALID with an error message. Decoding never raises.
    """

    # Valid operation keys that can be emitted
    VALID_KEYS: Set[str] = {
        "OP_NOP",
        "OP_CLS",
        "OP_RET",
        "OP_JP",
        "OP_CALL",
        "OP_SE_IMM",
        "OP_SNE_IMM",
        "OP_SE_REG",
        "OP_LD_IMM",
        "OP_ADD_IMM",
        "OP_LD_REG",
        "OP_OR",
        "OP_AND",
        "OP_XOR",
        "OP_ADD_REG",
        "OP_SUB",
        "OP_SHR",
        "OP_SUBN",
        "OP_SHL",
        "OP_SNE_REG",
        "OP_LD_I",
        "OP_JP_V0",
        "OP_RND",
        "OP_DRW",
        "OP_SKP",
        "OP_SKNP",
        "OP_LD_VX_DT",
        "OP_LD_VX_K",
        "OP_LD_DT_VX",
        "OP_LD_ST_VX",
        "OP_ADD_I",
        "OP_LD_F",
        "OP_LD_B",
        "OP_LD_I_VX",
        "OP_LD_VX_I",
        "OP_INVALID",
    }

    def decode(self, word: int) -> DecodeResult:
        """Decode a single instruction word.

        Args:
            word: 16-bit instruction word

        Returns:
            DecodeResult with key and params
        """
        word &= 0xFFFF
        d1, x, y, n = split_nibbles(word)
        nn = word & 0x00FF
        nnn = word & 0x0FFF

        key: Optional[str] = None
        params: Dict[str, int] = {}

        if d1 == 0x0:
            if x == 0:
                key = _ZERO_FAMILY.get(nn)
        elif d1 == 0x1:
            key, params = "OP_JP", {"nnn": nnn}
        elif d1 == 0x2:
            key, params = "OP_CALL", {"nnn": nnn}
        elif d1 == 0x3:
            key, params = "OP_SE_IMM", {"x": x, "nn": nn}
        elif d1 == 0x4:
            key, params = "OP_SNE_IMM", {"x": x, "nn": nn}
        elif d1 == 0x5:
            if n == 0:
                key, params = "OP_SE_REG", {"x": x, "y": y}
        elif d1 == 0x6:
            key, params = "OP_LD_IMM", {"x": x, "nn": nn}
        elif d1 == 0x7:
            key, params = "OP_ADD_IMM", {"x": x, "nn": nn}
        elif d1 == 0x8:
            key = _ALU_FAMILY.get(n)
            params = {"x": x, "y": y}
        elif d1 == 0x9:
            if n == 0:
                key, params = "OP_SNE_REG", {"x": x, "y": y}
        elif d1 == 0xA:
            key, params = "OP_LD_I", {"nnn": nnn}
        elif d1 == 0xB:
            key, params = "OP_JP_V0", {"nnn": nnn}
        elif d1 == 0xC:
            key, params = "OP_RND", {"x": x, "nn": nn}
        elif d1 == 0xD:
            key, params = "OP_DRW", {"x": x, "y": y, "n": n}
        elif d1 == 0xE:
            key, params = _KEY_FAMILY.get(nn), {"x": x}
        else:
            key, params = _MISC_FAMILY.get(nn), {"x": x}

        if key is None:
            return DecodeResult(
                "OP_INVALID",
                {},
                False,
                error=f"Unknown opcode: 0x{word:04X}",
                raw_instruction=word,
            )
        return DecodeResult(key, params, True, raw_instruction=word)


# Mnemonic templates for disassembly, formatted with the decoded params
_MNEMONICS: Dict[str, str] = {
    "OP_NOP": "NOP",
    "OP_CLS": "CLS",
    "OP_RET": "RET",
    "OP_JP": "JP 0x{nnn:03X}",
    "OP_CALL": "CALL 0x{nnn:03X}",
    "OP_SE_IMM": "SE V{x:X}, 0x{nn:02X}",
    "OP_SNE_IMM": "SNE V{x:X}, 0x{nn:02X}",
    "OP_SE_REG": "SE V{x:X}, V{y:X}",
    "OP_LD_IMM": "LD V{x:X}, 0x{nn:02X}",
    "OP_ADD_IMM": "ADD V{x:X}, 0x{nn:02X}",
    "OP_LD_REG": "LD V{x:X}, V{y:X}",
    "OP_OR": "OR V{x:X}, V{y:X}",
    "OP_AND": "AND V{x:X}, V{y:X}",
    "OP_XOR": "XOR V{x:X}, V{y:X}",
    "OP_ADD_REG": "ADD V{x:X}, V{y:X}",
    "OP_SUB": "SUB V{x:X}, V{y:X}",
    "OP_SHR": "SHR V{x:X}",
    "OP_SUBN": "SUBN V{x:X}, V{y:X}",
    "OP_SHL": "SHL V{x:X}",
    "OP_SNE_REG": "SNE V{x:X}, V{y:X}",
    "OP_LD_I": "LD I, 0x{nnn:03X}",
    "OP_JP_V0": "JP V0, 0x{nnn:03X}",
    "OP_RND": "RND V{x:X}, 0x{nn:02X}",
    "OP_DRW": "DRW V{x:X}, V{y:X}, {n}",
    "OP_SKP": "SKP V{x:X}",
    "OP_SKNP": "SKNP V{x:X}",
    "OP_LD_VX_DT": "LD V{x:X}, DT",
    "OP_LD_VX_K": "LD V{x:X}, K",
    "OP_LD_DT_VX": "LD DT, V{x:X}",
    "OP_LD_ST_VX": "LD ST, V{x:X}",
    "OP_ADD_I": "ADD I, V{x:X}",
    "OP_LD_F": "LD F, V{x:X}",
    "OP_LD_B": "LD B, V{x:X}",
    "OP_LD_I_VX": "LD [I], V{x:X}",
    "OP_LD_VX_I": "LD V{x:X}, [I]",
}

_default_decoder = Decoder()


def disassemble(word: int) -> str:
    """Render an instruction word as assembly text.

    Undecodable words are shown as a raw data word, e.g. "DW 0xFFFF".
    """
    result = _default_decoder.decode(word)
    if not result.valid:
        return f"DW 0x{result.raw_instruction:04X}"
    return _MNEMONICS[result.key].format(**result.params)


def disassemble_image(image: bytes, origin: int = 0x200) -> list:
    """Disassemble a program image two bytes at a time.

    Args:
        image: Program bytes
        origin: Address of the first byte

    Returns:
        List of (address, word, text) tuples; a trailing odd byte is
        shown as a one-byte data directive
    """
    listing = []
    for offset in range(0, len(image) - 1, 2):
        word = (image[offset] << 8) | image[offset + 1]
        listing.append((origin + offset, word, disassemble(word)))
    if len(image) % 2:
        last = image[-1]
        listing.append((origin + len(image) - 1, last, f"DB 0x{last:02X}"))
    return listing
