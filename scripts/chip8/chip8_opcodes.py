# CHIP-8 INSTRUCTION DECODER
# https://github.com/mattmikolay/chip-8/wiki/CHIP%E2%80%908-Instruction-Set
#
# An opcode word is split into fixed bit-fields:
#   0xF000 family | 0x0F00 X | 0x00F0 Y | 0x000F N | 0x00FF NN | 0x0FFF NNN


from collections import namedtuple


Instruction = namedtuple("Instruction", ["op", "opcode", "x", "y", "n", "nn", "nnn"])

UNKNOWN = "UNKNOWN"

# ********** (mask, pattern, op, asm template)
# WATCH OUT: order is important!!!
# decode() stops at the first entry whose masked opcode equals the pattern,
# so the catch-all SYS entry must stay last
OPCODE_TABLE = [
    (0xFFFF, 0x00E0, "CLS",        "CLS"),
    (0xFFFF, 0x00EE, "RET",        "RET"),
    (0xF000, 0x1000, "JP",         "JP 0x{nnn:03x}"),
    (0xF000, 0x2000, "CALL",       "CALL 0x{nnn:03x}"),
    (0xF000, 0x3000, "SE_VX_NN",   "SE V{x:X}, 0x{nn:02x}"),
    (0xF000, 0x4000, "SNE_VX_NN",  "SNE V{x:X}, 0x{nn:02x}"),
    (0xF00F, 0x5000, "SE_VX_VY",   "SE V{x:X}, V{y:X}"),
    (0xF000, 0x6000, "LD_VX_NN",   "LD V{x:X}, 0x{nn:02x}"),
    (0xF000, 0x7000, "ADD_VX_NN",  "ADD V{x:X}, 0x{nn:02x}"),
    (0xF00F, 0x8000, "LD_VX_VY",   "LD V{x:X}, V{y:X}"),
    (0xF00F, 0x8001, "OR",         "OR V{x:X}, V{y:X}"),
    (0xF00F, 0x8002, "AND",        "AND V{x:X}, V{y:X}"),
    (0xF00F, 0x8003, "XOR",        "XOR V{x:X}, V{y:X}"),
    (0xF00F, 0x8004, "ADD_VX_VY",  "ADD V{x:X}, V{y:X}"),
    (0xF00F, 0x8005, "SUB",        "SUB V{x:X}, V{y:X}"),
    (0xF00F, 0x8006, "SHR",        "SHR V{x:X}, V{y:X}"),
    (0xF00F, 0x8007, "SUBN",       "SUBN V{x:X}, V{y:X}"),
    (0xF00F, 0x800E, "SHL",        "SHL V{x:X}, V{y:X}"),
    (0xF00F, 0x9000, "SNE_VX_VY",  "SNE V{x:X}, V{y:X}"),
    (0xF000, 0xA000, "LD_I",       "LD I, 0x{nnn:03x}"),
    (0xF000, 0xB000, "JP_V0",      "JP V0, 0x{nnn:03x}"),
    (0xF000, 0xC000, "RND",        "RND V{x:X}, 0x{nn:02x}"),
    (0xF000, 0xD000, "DRW",        "DRW V{x:X}, V{y:X}, {n}"),
    (0xF0FF, 0xE09E, "SKP",        "SKP V{x:X}"),
    (0xF0FF, 0xE0A1, "SKNP",       "SKNP V{x:X}"),
    (0xF0FF, 0xF007, "LD_VX_DT",   "LD V{x:X}, DT"),
    (0xF0FF, 0xF00A, "LD_VX_K",    "LD V{x:X}, K"),
    (0xF0FF, 0xF015, "LD_DT_VX",   "LD DT, V{x:X}"),
    (0xF0FF, 0xF018, "LD_ST_VX",   "LD ST, V{x:X}"),
    (0xF0FF, 0xF01E, "ADD_I_VX",   "ADD I, V{x:X}"),
    (0xF0FF, 0xF029, "LD_F_VX",    "LD F, V{x:X}"),
    (0xF0FF, 0xF033, "LD_B_VX",    "LD B, V{x:X}"),
    (0xF0FF, 0xF055, "LD_MEM_VX",  "LD [I], V{x:X}"),
    (0xF0FF, 0xF065, "LD_VX_MEM",  "LD V{x:X}, [I]"),
    (0xF000, 0x0000, "SYS",        "SYS 0x{nnn:03x}"),
]

ASM_TEMPLATES = {op: template for _, _, op, template in OPCODE_TABLE}
ASM_TEMPLATES[UNKNOWN] = "DW 0x{opcode:04x}"


def decode(opcode):
    """split an opcode word into its fields and tag it with the matching instruction"""
    if not 0 <= opcode <= 0xFFFF:
        raise ValueError(f"An opcode is a 16 bit word, got {opcode!r}")
    op = UNKNOWN
    for mask, pattern, name, _ in OPCODE_TABLE:
        if opcode & mask == pattern:
            op = name
            break
    return Instruction(
        op=op,
        opcode=opcode,
        x=(opcode & 0x0F00) >> 8,
        y=(opcode & 0x00F0) >> 4,
        n=opcode & 0x000F,
        nn=opcode & 0x00FF,
        nnn=opcode & 0x0FFF,
    )


def disassemble(instruction):
    return ASM_TEMPLATES[instruction.op].format(**instruction._asdict())
