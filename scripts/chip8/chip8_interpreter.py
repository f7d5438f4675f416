# CHIP-8 INTERPRETER CORE
# https://github.com/mattmikolay/chip-8/wiki/Mastering-CHIP%E2%80%908
#
# COMPATIBILITY QUIRKS TABLE
# https://games.gulrak.net/cadmium/chip8-opcode-table.html#quirk6
#
# The core never touches a window, a keyboard or a file: it is fed program
# bytes and keypad snapshots and it is read back through the framebuffer,
# the redraw flag and the beep signal. See chip8.py for the pygame front end.


import logging
import os
import random
from functools import wraps

from chip8_opcodes import UNKNOWN, decode, disassemble


logger = logging.getLogger(__name__)


# ******************** STATIC SECTION
C8_FONTS = [0xF0, 0x90, 0x90, 0x90, 0xF0,  # 0
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
            0xF0, 0x80, 0xF0, 0x80, 0x80]  # F

FONT_SPRITE_SIZE = 5            # each character font is made of 5 bytes
MEMORY_SIZE = 4096
ADDRESS_MASK = MEMORY_SIZE - 1  # PC and I wrap around the 4KB address space
ROM_START_ADDRESS = 0x200
MAX_PROGRAM_SIZE = MEMORY_SIZE - ROM_START_ADDRESS
STACK_SIZE = 16
KEY_COUNT = 16
SPRITE_WIDTH = 8
SCREEN_WIDTH = 64
SCREEN_HEIGHT = 32
DEBUG = True if int(os.getenv('DEBUG', 0)) >= 1 else False


# ******************** ERRORS SECTION
class Chip8Error(Exception):
    """base class of every error raised by the interpreter"""


class ProgramTooLarge(Chip8Error):
    def __init__(self, size):
        super().__init__(
            f"A program of {size} bytes does not fit in the {MAX_PROGRAM_SIZE} bytes "
            f"available from 0x{ROM_START_ADDRESS:03x}"
        )
        self.size = size


class CoreFault(Chip8Error):
    """
    unrecoverable fault of the running program
    step() fills in the address and the opcode of the faulting instruction before re-raising
    """
    address = None
    opcode = None

    def __str__(self):
        msg = super().__str__()
        if self.address is None:
            return msg
        return f"{msg} (mem_addr: 0x{self.address:04x}, opcode: 0x{self.opcode:04x})"


class StackOverflow(CoreFault):
    pass


class StackUnderflow(CoreFault):
    pass


class IllegalOpcode(CoreFault):
    pass


# ******************** UTILITIES SECTION
def trace(fn):
    """decorator to log the ASM of the instruction being executed"""
    @wraps(fn)
    def wrapper_fn(self, instruction):
        if DEBUG:
            logger.debug(
                "mem_addr: 0x%04x    opcode: 0x%04x    instruction: %s",
                self.current_address, instruction.opcode, disassemble(instruction),
            )
        return fn(self, instruction)
    return wrapper_fn


# ******************** I/O SECTION
class Framebuffer:
    """monochrome screen, one byte per pixel holding either 0 or 1, stored row by row"""

    def __init__(self, w=SCREEN_WIDTH, h=SCREEN_HEIGHT):
        if w <= 0 or h <= 0:
            raise ValueError(f"Invalid screen size {w}x{h}")
        self.w, self.h = w, h
        self.buffer = bytearray(w * h)

    def _offset(self, x, y):
        # the screen is a torus, coordinates past an edge come back on the other side
        return (y % self.h) * self.w + (x % self.w)

    def __getitem__(self, xy):
        return self.buffer[self._offset(*xy)]

    def flip(self, x, y):
        """XOR a set sprite bit onto the pixel at (x, y), return True if the pixel got erased"""
        offset = self._offset(x, y)
        self.buffer[offset] ^= 1
        return self.buffer[offset] == 0

    def clear(self):
        self.buffer[:] = bytes(len(self.buffer))

    def snapshot(self):
        return bytes(self.buffer)


class Keypad:
    """
    the 16 keys of the hex keypad, as last reported by the input collaborator
    the most recent key going from released to pressed is latched for LD Vx, K
    """

    def __init__(self):
        self.states = [False] * KEY_COUNT
        self.last_pressed = None

    def __getitem__(self, key):
        return self.states[key & 0xF]

    def update(self, states):
        states = [bool(s) for s in states]
        if len(states) != KEY_COUNT:
            raise ValueError(f"The keypad has {KEY_COUNT} keys, got {len(states)} states")
        for key, (was_pressed, is_pressed) in enumerate(zip(self.states, states)):
            if is_pressed and not was_pressed:
                self.last_pressed = key
        self.states = states

    def take_last_pressed(self):
        key, self.last_pressed = self.last_pressed, None
        return key


# ******************** MEMORY SECTION
# ********** WRAPS A LIST TO REPRESENT A STACK WITH A LIMITED SIZE OF 16 ADDRESSES
class Stack:
    def __init__(self):
        self.addr_list = []

    def __len__(self):
        return len(self.addr_list)

    def append(self, address):
        if len(self.addr_list) >= STACK_SIZE:
            raise StackOverflow(f"The CHIP-8 stack can contain at most {STACK_SIZE} addresses. Limit exceeded")
        self.addr_list.append(address)

    def pop(self):
        if not self.addr_list:
            raise StackUnderflow("Tried to return from a subroutine with an empty stack")
        return self.addr_list.pop()


# ********** WRAPS A BYTEARRAY TO REPRESENT THE MAIN MEMORY WITH A LIMITED SIZE OF 4KB
class Memory:
    def __init__(self):
        self.inner = bytearray(MEMORY_SIZE)
        self.inner[0x00:0x00+len(C8_FONTS)] = bytes(C8_FONTS)

    def __getitem__(self, address):
        return self.inner[address & ADDRESS_MASK]

    def __setitem__(self, address, value):
        address &= ADDRESS_MASK
        if address < ROM_START_ADDRESS:
            # the interpreter area below 0x200 only ever holds the fonts
            logger.warning("Write of 0x%02x to reserved address 0x%03x dropped", value, address)
            return
        self.inner[address] = value

    def load(self, program):
        """copy the program at ROM_START_ADDRESS, raise ProgramTooLarge if it doesn't fit"""
        program = bytes(program)
        if len(program) > MAX_PROGRAM_SIZE:
            raise ProgramTooLarge(len(program))
        self.inner[ROM_START_ADDRESS:ROM_START_ADDRESS+len(program)] = program
        return len(program)


# ******************** CPU SECTION
class Chip8:
    def __init__(self, width=SCREEN_WIDTH, height=SCREEN_HEIGHT, rng=None, strict=False):
        self.mem = Memory()
        self.stack = Stack()
        self.v_regs = [0] * 16
        self.pc = ROM_START_ADDRESS
        self.idx = 0    # specify where the sprites reside in memory
        self.dt = 0     # delay timer, active when non-zero
        self.st = 0     # sound timer, active when non-zero
        self.screen = Framebuffer(width, height)
        self.keypad = Keypad()
        self.rng = rng if rng is not None else random.Random()
        self.strict = strict
        self.draw = False
        self.beep = False
        self.waiting_for_key = False
        self.current_address = self.pc
        self.instructions = {
            "CLS": self._clear_screen,
            "RET": self._return,
            "SYS": self._sys,
            "JP": self._jump,
            "CALL": self._call_addr,
            "SE_VX_NN": self._skip_if_eq,
            "SNE_VX_NN": self._skip_if_not_eq,
            "SE_VX_VY": self._skip_if_eq_regs,
            "LD_VX_NN": self._set_vk,
            "ADD_VX_NN": self._add_to_vk,
            "LD_VX_VY": self._set_vx_to_vy,
            "OR": self._set_vx_or_vy,
            "AND": self._set_vx_and_vy,
            "XOR": self._set_vx_xor_vy,
            "ADD_VX_VY": self._add_vx_vy,
            "SUB": self._sub_vx_vy,
            "SHR": self._shr,
            "SUBN": self._subn_vx_vy,
            "SHL": self._shl,
            "SNE_VX_VY": self._skip_if_not_eq_regs,
            "LD_I": self._set_idx,
            "JP_V0": self._jump_plus,
            "RND": self._random_byte_and,
            "DRW": self._to_screen,
            "SKP": self._skip_if_pressed,
            "SKNP": self._skip_if_not_pressed,
            "LD_VX_DT": self._set_vx_dt,
            "LD_VX_K": self._wait_keypress,
            "LD_DT_VX": self._set_dt_vx,
            "LD_ST_VX": self._set_st,
            "ADD_I_VX": self._add_to_idx,
            "LD_F_VX": self._select_char,
            "LD_B_VX": self._bcd_repr,
            "LD_MEM_VX": self._store_vregs,
            "LD_VX_MEM": self._load_vregs,
            UNKNOWN: self._unknown,
        }

    def __str__(self):
        registers = f"PC_REGISTER:0x{self.pc:04x} | IDX_REGISTER:0x{self.idx:04x} | VARIABLE_REGISTERS:{self.v_regs}"
        timers = f"DELAY_TIMER:{self.dt} | SOUND_TIMER:{self.st}"
        stack = f"STACK:{[hex(addr) for addr in self.stack.addr_list]}"
        flags = f"DRAW: {self.draw} | WAITING_FOR_KEY: {self.waiting_for_key}"
        return f"{registers}\n{timers}\n{stack}\n{flags}"

    # ********** PUBLIC INTERFACE
    @property
    def width(self):
        return self.screen.w

    @property
    def height(self):
        return self.screen.h

    def load_program(self, program):
        size = self.mem.load(program)
        logger.debug("Program of %d bytes loaded at 0x%03x", size, ROM_START_ADDRESS)

    def framebuffer(self):
        """read-only copy of the screen, one byte (0 or 1) per pixel, row by row"""
        return self.screen.snapshot()

    def pixel(self, x, y):
        return self.screen[x, y]

    @property
    def redraw_requested(self):
        return self.draw

    def clear_redraw_flag(self):
        self.draw = False

    def take_redraw_flag(self):
        draw, self.draw = self.draw, False
        return draw

    def set_keypad(self, states):
        self.keypad.update(states)

    @property
    def last_pressed_key(self):
        return self.keypad.last_pressed

    def pending_beep(self):
        beep, self.beep = self.beep, False
        return beep

    def step(self):
        """emulate one machine cycle (fetch opcode, decode opcode, execute opcode, update timers)"""
        address = self.current_address = self.pc
        # fetch (each instruction is two bytes long)
        opcode = self.mem[address] << 8 | self.mem[address + 1]
        self._goto_next_instruction()
        # decode + execute
        instruction = decode(opcode)
        try:
            self.instructions[instruction.op](instruction)
        except CoreFault as fault:
            fault.address, fault.opcode = address, opcode
            self.pc = address
            raise
        # delay/sound timers (dt/st)
        self._tick_timers()

    # ********** HELPERS
    def _goto_next_instruction(self):
        self.pc = (self.pc + 0x2) & ADDRESS_MASK

    def _tick_timers(self):
        if self.dt > 0:
            self.dt -= 1
        if self.st > 0:
            self.st -= 1
            if self.st == 0:
                self.beep = True

    # ********** INSTRUCTIONS
    def _unknown(self, instruction):
        if self.strict:
            raise IllegalOpcode(f"Unknown opcode 0x{instruction.opcode:04x}")
        logger.warning(
            "Unknown opcode 0x%04x at mem_addr 0x%04x, skipped",
            instruction.opcode, self.current_address,
        )

    @trace
    def _sys(self, instruction):
        """machine code routine call of the original interpreters, ignored"""

    @trace
    def _clear_screen(self, instruction):
        self.screen.clear()
        self.draw = True

    @trace
    def _return(self, instruction):
        """return from a subroutine, resuming right after the CALL"""
        self.pc = (self.stack.pop() + 0x2) & ADDRESS_MASK

    @trace
    def _jump(self, instruction):
        self.pc = instruction.nnn

    @trace
    def _call_addr(self, instruction):
        """push the address of the CALL itself and jump to NNN"""
        self.stack.append(self.current_address)
        self.pc = instruction.nnn

    @trace
    def _skip_if_eq(self, instruction):
        if self.v_regs[instruction.x] == instruction.nn:
            self._goto_next_instruction()

    @trace
    def _skip_if_not_eq(self, instruction):
        if self.v_regs[instruction.x] != instruction.nn:
            self._goto_next_instruction()

    @trace
    def _skip_if_eq_regs(self, instruction):
        if self.v_regs[instruction.x] == self.v_regs[instruction.y]:
            self._goto_next_instruction()

    @trace
    def _skip_if_not_eq_regs(self, instruction):
        if self.v_regs[instruction.x] != self.v_regs[instruction.y]:
            self._goto_next_instruction()

    @trace
    def _set_vk(self, instruction):
        """set the value of one of the 16 variable registers, Vx"""
        self.v_regs[instruction.x] = instruction.nn

    @trace
    def _add_to_vk(self, instruction):
        """add to the value already present in one of the variable registers, VF untouched"""
        x = instruction.x
        self.v_regs[x] = (self.v_regs[x] + instruction.nn) & 0xFF

    @trace
    def _set_vx_to_vy(self, instruction):
        self.v_regs[instruction.x] = self.v_regs[instruction.y]

    @trace
    def _set_vx_or_vy(self, instruction):
        self.v_regs[instruction.x] |= self.v_regs[instruction.y]

    @trace
    def _set_vx_and_vy(self, instruction):
        self.v_regs[instruction.x] &= self.v_regs[instruction.y]

    @trace
    def _set_vx_xor_vy(self, instruction):
        self.v_regs[instruction.x] ^= self.v_regs[instruction.y]

    # the flag is always written last so VF holds it even when X is F
    @trace
    def _add_vx_vy(self, instruction):
        """set the value of Vx to Vx + Vy, VF = carry"""
        x, y = instruction.x, instruction.y
        total = self.v_regs[x] + self.v_regs[y]
        self.v_regs[x] = total & 0xFF
        self.v_regs[0xF] = 1 if total > 0xFF else 0

    @trace
    def _sub_vx_vy(self, instruction):
        """set the value of Vx to Vx - Vy, VF = NOT borrow"""
        x, y = instruction.x, instruction.y
        no_borrow = 0 if self.v_regs[x] < self.v_regs[y] else 1
        self.v_regs[x] = (self.v_regs[x] - self.v_regs[y]) & 0xFF
        self.v_regs[0xF] = no_borrow

    @trace
    def _subn_vx_vy(self, instruction):
        """set the value of Vx to Vy - Vx, VF = NOT borrow"""
        x, y = instruction.x, instruction.y
        no_borrow = 0 if self.v_regs[y] < self.v_regs[x] else 1
        self.v_regs[x] = (self.v_regs[y] - self.v_regs[x]) & 0xFF
        self.v_regs[0xF] = no_borrow

    @trace
    def _shr(self, instruction):
        """set Vx equal to Vy SHR 1, VF = the bit shifted out"""
        vy = self.v_regs[instruction.y]
        self.v_regs[instruction.x] = vy >> 1
        self.v_regs[0xF] = vy & 0x1

    @trace
    def _shl(self, instruction):
        """set both Vx and Vy equal to Vy SHL 1, VF = the bit shifted out"""
        vy = self.v_regs[instruction.y]
        shifted = (vy << 1) & 0xFF
        self.v_regs[instruction.x] = self.v_regs[instruction.y] = shifted
        self.v_regs[0xF] = vy >> 7

    @trace
    def _set_idx(self, instruction):
        self.idx = instruction.nnn

    @trace
    def _jump_plus(self, instruction):
        self.pc = (instruction.nnn + self.v_regs[0x0]) & ADDRESS_MASK

    @trace
    def _random_byte_and(self, instruction):
        self.v_regs[instruction.x] = self.rng.randrange(256) & instruction.nn

    @trace
    def _to_screen(self, instruction):
        """display n-byte sprite starting at memory location I at (Vx, Vy), set VF = collision"""
        x, y = self.v_regs[instruction.x], self.v_regs[instruction.y]
        collision = 0
        for row in range(instruction.n):
            sprite_byte = self.mem[self.idx + row]
            for col in range(SPRITE_WIDTH):
                if sprite_byte & (0x80 >> col) and self.screen.flip(x + col, y + row):
                    collision = 1
        self.v_regs[0xF] = collision
        self.draw = True

    @trace
    def _skip_if_pressed(self, instruction):
        """skip the following instruction if the key corresponding to the hex value stored in Vx is pressed"""
        if self.keypad[self.v_regs[instruction.x]]:
            self._goto_next_instruction()

    @trace
    def _skip_if_not_pressed(self, instruction):
        """skip the following instruction if the key corresponding to the hex value stored in Vx is NOT pressed"""
        if not self.keypad[self.v_regs[instruction.x]]:
            self._goto_next_instruction()

    @trace
    def _set_vx_dt(self, instruction):
        self.v_regs[instruction.x] = self.dt

    @trace
    def _wait_keypress(self, instruction):
        """
        wait for a key press and store its value in Vx
        the wait never blocks: the PC stays on this instruction and the next step polls again
        """
        if not self.waiting_for_key:
            self.waiting_for_key = True
            self.keypad.last_pressed = None     # only presses made while waiting count
        key = self.keypad.take_last_pressed()
        if key is None:
            self.pc = self.current_address
            return
        self.waiting_for_key = False
        self.v_regs[instruction.x] = key

    @trace
    def _set_dt_vx(self, instruction):
        self.dt = self.v_regs[instruction.x]

    @trace
    def _set_st(self, instruction):
        self.st = self.v_regs[instruction.x]

    @trace
    def _add_to_idx(self, instruction):
        self.idx = (self.idx + self.v_regs[instruction.x]) & ADDRESS_MASK

    @trace
    def _select_char(self, instruction):
        """set I to location of sprite for digit Vx"""
        self.idx = self.v_regs[instruction.x] * FONT_SPRITE_SIZE

    @trace
    def _bcd_repr(self, instruction):
        """store the hundreds digit of Vx at I, the tens digit at I+1, the ones digit at I+2"""
        value = self.v_regs[instruction.x]
        self.mem[self.idx] = value // 100
        self.mem[self.idx + 1] = value // 10 % 10
        self.mem[self.idx + 2] = value % 10

    @trace
    def _store_vregs(self, instruction):
        """store registers V0 through Vx (included) in memory starting at location I"""
        x = instruction.x
        for i in range(x + 1):
            self.mem[self.idx + i] = self.v_regs[i]
        self.idx = (self.idx + x + 1) & ADDRESS_MASK     # compatibility quirk 6

    @trace
    def _load_vregs(self, instruction):
        """read registers V0 through Vx (included) from memory starting at location I"""
        x = instruction.x
        for i in range(x + 1):
            self.v_regs[i] = self.mem[self.idx + i]
        self.idx = (self.idx + x + 1) & ADDRESS_MASK     # compatibility quirk 6
