# CHIP-8 INFO
# https://chip-8.github.io/extensions/#chip-8
# https://chip-8.github.io/links/
#
# COWGOD'S TECHNICAL REFERENCE
# http://devernay.free.fr/hacks/chip8/C8TECH10.HTM
#
# TEST SUITE
# https://github.com/Timendus/chip8-test-suite


import os
import random
import sys
from functools import wraps

from framebuffer import Framebuffer


# ******************** STATIC SECTION
# hex digit glyphs, 5 rows of 4 pixels each (the low nibble of every row is unused)
C8_FONTS = list(bytes.fromhex(
    "F0909090F0"  # 0
    "2060202070"  # 1
    "F010F080F0"  # 2
    "F010F010F0"  # 3
    "9090F01010"  # 4
    "F080F010F0"  # 5
    "F080F090F0"  # 6
    "F010204040"  # 7
    "F090F090F0"  # 8
    "F090F010F0"  # 9
    "F090F09090"  # A
    "E090E090E0"  # B
    "F0808080F0"  # C
    "E0909090E0"  # D
    "F080F080F0"  # E
    "F080F08080"  # F
))

MEMORY_SIZE = 4096
FONT_START_ADDRESS = 0x000
ROM_START_ADDRESS = 0x200
MAX_ROM_SIZE = MEMORY_SIZE - ROM_START_ADDRESS
KEY_COUNT = 16
TONE_FREQUENCY = 440
INSTRUCTIONS_PER_FRAME = 10
DEBUG = True if int(os.getenv('DEBUG', 0)) >= 1 else False

# WATCH OUT: masks order is important!!!
# decode stops at the first mask whose masked opcode is a known instruction
DECODE_MASKS = {
    0xFFFF: [0x00E0, 0x00EE],
    0xF0FF: [0xE09E, 0xE0A1, 0xF007, 0xF00A, 0xF015, 0xF018, 0xF01E, 0xF029, 0xF033, 0xF055, 0xF065],
    0xF00F: [0x8000, 0x8001, 0x8002, 0x8003, 0x8004, 0x8005, 0x8006, 0x8007, 0x800E],
    0xF000: [0x1000, 0x2000, 0x3000, 0x4000, 0x5000, 0x6000, 0x7000, 0x9000, 0xA000, 0xB000, 0xC000, 0xD000],
}


# ******************** ERRORS SECTION
class Chip8Error(Exception):
    """base class for the errors that halt the emulation"""

class LoadError(Chip8Error):
    pass

class StackUnderflow(Chip8Error):
    pass

class AddressOutOfRange(Chip8Error, IndexError):
    pass


# ******************** UTILITIES SECTION
def asm(msg):
    """decorator to print out the ASM of the instruction being called"""
    def decorator(fn):
        @wraps(fn)
        def wrapper_fn(*args, **kwargs):
            mem_addr = args[0].pc - 0x2     # args[0] equals self, pc already points to the next instruction
            vals = fn(*args, **kwargs)      # use the locals() values of each decorated function in the print
            vals['mem_addr'] = mem_addr
            if DEBUG: print(msg.format(**vals))
        return wrapper_fn
    return decorator

# opcode fields, named after the nibbles of an instruction like 8xy4, 6xkk, Annn, Dxyn
def _x(opcode):
    return (opcode >> 8) & 0xF

def _y(opcode):
    return (opcode >> 4) & 0xF

def _n(opcode):
    return opcode & 0xF

def _kk(opcode):
    return opcode & 0xFF

def _nnn(opcode):
    return opcode & 0xFFF


# ******************** MEMORY SECTION
# ********** WRAPS A LIST TO REPRESENT A GROWABLE STACK OF RETURN ADDRESSES
class Stack:
    def __init__(self):
        self.addr_list = []

    def __len__(self):
        return len(self.addr_list)

    def __repr__(self):
        return f"Stack({[hex(a) for a in self.addr_list]})"

    def append(self, address):
        self.addr_list.append(address)

    def pop(self):
        if not self.addr_list:
            raise StackUnderflow("RET executed with an empty call stack")
        return self.addr_list.pop()

# ********** WRAPS A LIST TO REPRESENT THE MAIN MEMORY WITH A LIMITED SIZE OF 4KB
class Memory:
    def __init__(self, size=MEMORY_SIZE):
        self.inner = [0] * size

    def __len__(self):
        return len(self.inner)

    def _span(self, key):
        """
        first address and end (excluded) touched by an index or a slice
        open slice ends stand for the memory bounds, steps are not supported
        raise if any of the addresses falls outside of memory
        """
        if isinstance(key, slice):
            if key.step not in (None, 1):
                raise ValueError("memory slices must be contiguous")
            start = 0 if key.start is None else key.start
            end = len(self.inner) if key.stop is None else key.stop
        else:
            start, end = key, key + 1
        if start < 0 or end > len(self.inner):
            raise AddressOutOfRange(f"memory access at 0x{start:04x}-0x{end - 1:04x} is outside 0x000-0x{len(self.inner) - 1:03x}")
        return start, max(start, end)

    def __setitem__(self, key, value):
        start, end = self._span(key)
        if isinstance(key, slice):
            value = [v & 0xFF for v in value]
            if len(value) != end - start:
                raise ValueError("slice assignment cannot change the memory size")
            self.inner[start:end] = value
        else:
            self.inner[start] = value & 0xFF

    def __getitem__(self, key):
        start, end = self._span(key)
        if isinstance(key, slice):
            return self.inner[start:end]
        return self.inner[start]


# ******************** CPU SECTION
class Chip8:
    """
    the CHIP-8 interpreter

    collaborators are duck-typed and all optional:
    - keypad:  is_key_pressed(key) -> bool
    - speaker: start(frequency), stop()
    - screen:  render(snapshot)
    - rng:     randint(a, b), random.Random() if not given
    """
    def __init__(self, framebuffer=None, keypad=None, speaker=None, screen=None, rng=None, speed=INSTRUCTIONS_PER_FRAME):
        self.framebuffer = framebuffer if framebuffer is not None else Framebuffer()
        self.keypad = keypad
        self.speaker = speaker
        self.screen = screen
        self.rng = rng if rng is not None else random.Random()
        self.speed = speed
        self.instructions = {
            0x00E0: self._clear_screen,
            0x00EE: self._return,
            0x1000: self._jump,
            0x2000: self._call_addr,
            0x3000: self._skip_if_eq,
            0x4000: self._skip_if_not_eq,
            0x5000: self._skip_if_eq_regs,
            0x6000: self._set_vk,
            0x7000: self._add_to_vk,
            0x8000: self._set_vx_to_vy,
            0x8001: self._set_vx_or_vy,
            0x8002: self._set_vx_and_vy,
            0x8003: self._set_vx_xor_vy,
            0x8004: self._add_vx_vy,
            0x8005: self._sub_vx_vy,
            0x8006: self._shr,
            0x8007: self._subn_vx_vy,
            0x800E: self._shl,
            0x9000: self._skip_if_not_eq_regs,
            0xA000: self._set_idx,
            0xB000: self._jump_plus,
            0xC000: self._random_byte_and,
            0xD000: self._to_screen,
            0xE09E: self._skip_if_pressed,
            0xE0A1: self._skip_if_not_pressed,
            0xF007: self._set_vx_dt,
            0xF00A: self._wait_keypress,
            0xF015: self._set_dt_vx,
            0xF018: self._set_st,
            0xF01E: self._add_to_idx,
            0xF029: self._select_char,
            0xF033: self._bcd_repr,
            0xF055: self._store_vregs,
            0xF065: self._load_vregs,
        }
        self.reset()

    def __str__(self):
        registers = f"PC_REGISTER:0x{self.pc:04x} | IDX_REGISTER:0x{self.idx:04x} | VARIABLE_REGISTERS:{self.v_regs}"
        timers = f"DELAY_TIMER:{self.dt} | SOUND_TIMER:{self.st}"
        stack = f"STACK:{self.stack}"
        flags = f"PAUSED:{self.paused} | UNKNOWN_OPCODES:{self.unknown_opcodes}"
        return f"{registers}\n{timers}\n{stack}\n{flags}"

    def reset(self):
        """bring the machine back to its power-on state, memory included"""
        self.mem = Memory()
        self._reset_registers()
        self.unknown_opcodes = 0
        self.framebuffer.clear()

    def _reset_registers(self):
        """CPU state a program starts with, memory and screen excluded"""
        self.stack = Stack()
        self.v_regs = [0] * 16
        self.pc = ROM_START_ADDRESS
        self.idx = 0    # specify where the sprites reside in memory
        self.dt = 0     # delay timer, active when non-zero
        self.st = 0     # sound timer, active when non-zero
        self.waiting_register = None    # Vx waiting for a key press (Fx0A), None while running
        self.held_keys = set()

    @property
    def paused(self):
        return self.waiting_register is not None

    def load_font(self):
        """write the 16 hex digit glyphs (5 bytes each) at the start of memory"""
        self.mem[FONT_START_ADDRESS:FONT_START_ADDRESS+len(C8_FONTS)] = C8_FONTS

    def load(self, program):
        """copy a program image in memory starting at 0x200, the program starts from fresh registers, stack and timers"""
        rom = bytes(program)
        if len(rom) > MAX_ROM_SIZE:
            raise LoadError(f"the program is {len(rom)} bytes long, at most {MAX_ROM_SIZE} bytes fit in memory")
        self.mem[ROM_START_ADDRESS:MEMORY_SIZE] = [0] * MAX_ROM_SIZE
        self.mem[ROM_START_ADDRESS:ROM_START_ADDRESS+len(rom)] = rom
        self._reset_registers()
        if DEBUG: print(f"{len(rom)} bytes have been loaded at 0x{ROM_START_ADDRESS:04x}")

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: SKP V{x:X}")
    def _skip_if_pressed(self, opcode):
        """skip the following instruction if the key corresponding to the hex value stored in Vx is pressed"""
        x = _x(opcode)
        key = self.v_regs[x]
        if self._is_pressed(key):
            self._goto_next_instruction()
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: SKNP V{x:X}")
    def _skip_if_not_pressed(self, opcode):
        """skip the following instruction if the key corresponding to the hex value stored in Vx is NOT pressed"""
        x = _x(opcode)
        key = self.v_regs[x]
        if not self._is_pressed(key):
            self._goto_next_instruction()
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: LD V{x:X}, K")
    def _wait_keypress(self, opcode):
        """pause until a key is pressed, the key will be stored in Vx by the following cycles"""
        x = _x(opcode)
        self.waiting_register = x
        # keys already down don't count, only a new press resumes the machine
        self.held_keys = self._pressed_keys()
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: LD V{x:X}, DT")
    def _set_vx_dt(self, opcode):
        """set Vx = DT (delay timer) value"""
        x = _x(opcode)
        self.v_regs[x] = self.dt
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: LD DT, V{x:X}")
    def _set_dt_vx(self, opcode):
        """set DT (delay timer) = Vx"""
        x = _x(opcode)
        self.dt = self.v_regs[x]
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: CLS")
    def _clear_screen(self, opcode):
        self.framebuffer.clear()
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: RET")
    def _return(self, opcode):
        """return from a subroutine"""
        self.pc = self.stack.pop()
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: JP 0x{address:04x}")
    def _jump(self, opcode):
        address = _nnn(opcode)
        self.pc = address
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: CALL 0x{address:04x}")
    def _call_addr(self, opcode):
        address = _nnn(opcode)
        self.stack.append(self.pc)
        self.pc = address
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: SE V{x:X}, {comparison_value}")
    def _skip_if_eq(self, opcode):
        x = _x(opcode)
        comparison_value = _kk(opcode)
        if self.v_regs[x] == comparison_value:
            self._goto_next_instruction()
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: SNE V{x:X}, {comparison_value}")
    def _skip_if_not_eq(self, opcode):
        x = _x(opcode)
        comparison_value = _kk(opcode)
        if self.v_regs[x] != comparison_value:
            self._goto_next_instruction()
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: SE V{x:X}, V{y:X}")
    def _skip_if_eq_regs(self, opcode):
        x, y = _x(opcode), _y(opcode)
        if self.v_regs[x] == self.v_regs[y]:
            self._goto_next_instruction()
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: SNE V{x:X}, V{y:X}")
    def _skip_if_not_eq_regs(self, opcode):
        x, y = _x(opcode), _y(opcode)
        if self.v_regs[x] != self.v_regs[y]:
            self._goto_next_instruction()
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: LD V{x:X}, {value}")
    def _set_vk(self, opcode):
        """set the value of one of the 16 variable registers, Vx"""
        x, value = _x(opcode), _kk(opcode)
        self.v_regs[x] = value
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: LD V{x:X}, V{y:X}")
    def _set_vx_to_vy(self, opcode):
        """set the value of Vx equal to that of Vy"""
        x, y = _x(opcode), _y(opcode)
        self.v_regs[x] = self.v_regs[y]
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: OR V{x:X}, V{y:X}")
    def _set_vx_or_vy(self, opcode):
        """set the value of Vx to Vx OR Vy"""
        x, y = _x(opcode), _y(opcode)
        self.v_regs[x] |= self.v_regs[y]
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: AND V{x:X}, V{y:X}")
    def _set_vx_and_vy(self, opcode):
        """set the value of Vx to Vx AND Vy"""
        x, y = _x(opcode), _y(opcode)
        self.v_regs[x] &= self.v_regs[y]
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: XOR V{x:X}, V{y:X}")
    def _set_vx_xor_vy(self, opcode):
        """set the value of Vx to Vx XOR Vy"""
        x, y = _x(opcode), _y(opcode)
        self.v_regs[x] ^= self.v_regs[y]
        return locals()

    # the ALU instructions below write VF last, so when Vx is VF the flag wins

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: ADD V{x:X}, V{y:X}")
    def _add_vx_vy(self, opcode):
        """set the value of Vx to Vx + Vy, VF = carry"""
        x, y = _x(opcode), _y(opcode)
        sum = self.v_regs[x] + self.v_regs[y]
        self.v_regs[x] = sum & 0xFF     # keep only the lowest 8 bits from the result and store them in Vx
        self.v_regs[0xF] = 1 if sum > 255 else 0
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: SUB V{x:X}, V{y:X}")
    def _sub_vx_vy(self, opcode):
        """set the value of Vx to Vx - Vy, VF = NOT borrow"""
        x, y = _x(opcode), _y(opcode)
        not_borrow = 1 if self.v_regs[x] > self.v_regs[y] else 0
        self.v_regs[x] = (self.v_regs[x] - self.v_regs[y]) & 0xFF
        self.v_regs[0xF] = not_borrow
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: SHR V{x:X}")
    def _shr(self, opcode):
        """set Vx equal to Vx SHR 1, VF = the bit shifted out"""
        x = _x(opcode)
        LSB = self.v_regs[x] & 0x1
        self.v_regs[x] = self.v_regs[x] >> 1
        self.v_regs[0xF] = LSB
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: SUBN V{x:X}, V{y:X}")
    def _subn_vx_vy(self, opcode):
        """set the value of Vx to Vy - Vx, VF = NOT borrow"""
        x, y = _x(opcode), _y(opcode)
        not_borrow = 1 if self.v_regs[y] > self.v_regs[x] else 0
        self.v_regs[x] = (self.v_regs[y] - self.v_regs[x]) & 0xFF
        self.v_regs[0xF] = not_borrow
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: SHL V{x:X}")
    def _shl(self, opcode):
        """set Vx equal to Vx SHL 1, VF = the bit shifted out"""
        x = _x(opcode)
        MSB = (self.v_regs[x] & 0x80) >> 7
        self.v_regs[x] = (self.v_regs[x] << 1) & 0xFF   # multiply by 2 and keep only the lowest 8 bits from the result
        self.v_regs[0xF] = MSB
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: ADD V{x:X}, {value}")
    def _add_to_vk(self, opcode):
        """add to the value already present in one of the variable registers, VF untouched"""
        x, value = _x(opcode), _kk(opcode)
        self.v_regs[x] = (self.v_regs[x] + value) & 0xFF
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: LD I, 0x{value:04x}")
    def _set_idx(self, opcode):
        """point the I register at address nnn"""
        value = _nnn(opcode)
        self.idx = value
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: JP V0, 0x{address:04x}")
    def _jump_plus(self, opcode):
        address = _nnn(opcode)
        v0 = self.v_regs[0x0]
        self.pc = address + v0
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: RND V{x:X}, 0x{kk:02x}")
    def _random_byte_and(self, opcode):
        x, kk = _x(opcode), _kk(opcode)
        rnd = self.rng.randint(0, 255)
        self.v_regs[x] = rnd & kk
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: LD ST, V{x:X}")
    def _set_st(self, opcode):
        """set ST = Vx"""
        x = _x(opcode)
        self.st = self.v_regs[x]
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: ADD I, V{x:X}")
    def _add_to_idx(self, opcode):
        """set I = I + Vx, VF is not used as an overflow flag"""
        x = _x(opcode)
        self.idx = (self.idx + self.v_regs[x]) & 0xFFFF
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: LD F, V{x:X}")
    def _select_char(self, opcode):
        """set I to location of sprite for digit Vx"""
        x = _x(opcode)
        self.idx = FONT_START_ADDRESS + self.v_regs[x] * 5    # each character font is made of 5 bytes
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: LD [I], V{x:X}")
    def _store_vregs(self, opcode):
        """store registers V0 through Vx (included) in memory starting at location I"""
        x = _x(opcode)
        self.mem[self.idx:self.idx+x+1] = self.v_regs[:x+1]
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: LD V{x:X}, [I]")
    def _load_vregs(self, opcode):
        """read registers V0 through Vx (included) from memory starting at location I"""
        x = _x(opcode)
        self.v_regs[:x+1] = self.mem[self.idx:self.idx+x+1]
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: LD B, V{x:X}")
    def _bcd_repr(self, opcode):
        """takes the decimal value of Vx and the hundreds digit in memory at I, the tens digit at I+1, the ones digit at I+2"""
        x = _x(opcode)
        ones = self.v_regs[x] % 10
        tens = self.v_regs[x] // 10 % 10
        hundreds = self.v_regs[x] // 100
        self.mem[self.idx:self.idx+3] = [hundreds, tens, ones]
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: DRW V{x:X}, V{y:X}, {n_bytes}")
    def _to_screen(self, opcode):
        """display n-byte sprite starting at memory location I at (Vx, Vy), set VF = collision"""
        x, y = _x(opcode), _y(opcode)
        x_pos, y_pos = self.v_regs[x], self.v_regs[y]
        n_bytes = _n(opcode)
        self.v_regs[0xF] = 0
        # step through each sprite byte, one row each
        for i in range(n_bytes):
            sprite_byte = self.mem[self.idx + i]
            # step through each byte's bits starting from the MSB
            # the framebuffer wraps every pixel around the edges on its own
            for j in range(8):
                if sprite_byte & (0x80 >> j):
                    # sprites are XORed onto the existing screen and if this
                    # causes any pixel to be erased then VF=1, otherwise VF=0
                    if self.framebuffer.toggle_pixel(x_pos + j, y_pos + i):
                        self.v_regs[0xF] = 1
        return locals()

    def _unknown(self, opcode):
        """malformed ROMs are reported and skipped, the PC already points past the opcode"""
        self.unknown_opcodes += 1
        if DEBUG: print("instruction: ???")     # ends the trace line opened by decode
        print(f"unknown opcode 0x{opcode:04x} at 0x{self.pc - 0x2:04x}, skipped", file=sys.stderr)

    def _goto_next_instruction(self):
        self.pc += 0x2

    def _is_pressed(self, key):
        return self.keypad is not None and self.keypad.is_key_pressed(key)

    def _pressed_keys(self):
        return {key for key in range(KEY_COUNT) if self._is_pressed(key)}

    def _poll_keypad(self):
        """complete a pending Fx0A if a key went down since the last poll"""
        pressed = self._pressed_keys()
        new_keys = sorted(pressed - self.held_keys)
        self.held_keys = pressed
        if new_keys:
            self.v_regs[self.waiting_register] = new_keys[0]
            self.waiting_register = None

    def _play_sound(self):
        if self.speaker is None:
            return
        if self.st > 0:
            self.speaker.start(TONE_FREQUENCY)
        else:
            self.speaker.stop()

    def decode(self, opcode):
        """decode opcodes using masks and return respective function"""
        if DEBUG: print(f"opcode: 0x{opcode:04x}", end="    ")
        for m, ops in DECODE_MASKS.items():
            if (opcode & m) in ops:
                return self.instructions[opcode & m]     # retrieve and return relative instruction
        return self._unknown

    def step(self):
        """execute one instruction"""
        # fetch (each instruction is two bytes long, big endian)
        opcode = self.mem[self.pc] << 8 | self.mem[self.pc + 1]
        self._goto_next_instruction()
        # decode + execute
        instruction = self.decode(opcode)
        instruction(opcode)

    def cycle(self, instructions_per_frame=None):
        """emulate one frame: a batch of instructions, one timers tick, sound and screen refresh"""
        if instructions_per_frame is None:
            instructions_per_frame = self.speed
        if self.paused:
            self._poll_keypad()
        for _ in range(instructions_per_frame):
            if self.paused:
                break
            self.step()
        # delay/sound timers (dt/st) keep ticking while waiting for a key
        if self.dt > 0:
            self.dt -= 1
        if self.st > 0:
            self.st -= 1
        self._play_sound()
        if self.screen is not None:
            self.screen.render(self.framebuffer.snapshot())
