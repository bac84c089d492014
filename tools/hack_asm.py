#!/usr/bin/env python3
r"""
hack_asm.py  –  Assembler for the Hack 16-bit computer
=======================================================

Usage:
    python3 hack_asm.py prog.asm [more.asm ...] [-o output.hack] [-l]
    python3 hack_asm.py < prog.asm > prog.hack

Output:
    Machine code (.hack)        one 16-character '0'/'1' line per instruction
    Listing file   (.lst)       optional, addresses + binary + source, with
                                the label and variable tables

Features:
    A-instructions  @123  @SYMBOL         (symbols: A-Z a-z 0-9 _ . : $,
                                           not starting with a digit)
    C-instructions  dest=comp;jump        (dest and jump optional)
    Labels          (NAME)                binds NAME to the next instruction
    Variables       @name                 unknown names get RAM 16, 17, ...
    Predefined      SP LCL ARG THIS THAT  R0..R15  SCREEN  KBD
    Comments        // to end of line

Instruction encoding recap:
    A:  0 vvvvvvvvvvvvvvv               (value masked to 15 bits)
    C:  1 1 1 a c1 c2 c3 c4 c5 c6 d1 d2 d3 j1 j2 j3
"""

import re
import sys
import os
import argparse
from dataclasses import dataclass, field, replace

# ── Instruction tables ────────────────────────────────────────────────────────
# The comp field is the 7-bit group 'a c1..c6'.  a=1 selects M instead of A.

COMP_CODES = {
    '0':   0b0101010,
    '1':   0b0111111,
    '-1':  0b0111010,
    'D':   0b0001100,
    'A':   0b0110000,
    '!D':  0b0001101,
    '!A':  0b0110001,
    '-D':  0b0001111,
    '-A':  0b0110011,
    'D+1': 0b0011111,
    'A+1': 0b0110111,
    'D-1': 0b0001110,
    'A-1': 0b0110010,
    'D+A': 0b0000010,
    'D-A': 0b0010011,
    'A-D': 0b0000111,
    'D&A': 0b0000000,
    'D|A': 0b0010101,
    'M':   0b1110000,
    '!M':  0b1110001,
    '-M':  0b1110011,
    'M+1': 0b1110111,
    'M-1': 0b1110010,
    'D+M': 0b1000010,
    'D-M': 0b1010011,
    'M-D': 0b1000111,
    'D&M': 0b1000000,
    'D|M': 0b1010101,
}

DEST_CODES = {
    'M':   0b001,
    'D':   0b010,
    'MD':  0b011,
    'A':   0b100,
    'AM':  0b101,
    'AD':  0b110,
    'AMD': 0b111,
}

JUMP_CODES = {
    'JGT': 0b001,
    'JEQ': 0b010,
    'JGE': 0b011,
    'JLT': 0b100,
    'JNE': 0b101,
    'JLE': 0b110,
    'JMP': 0b111,
}

# Spellings share prefixes ('AMD'/'AM'/'A', 'D+1'/'D'), so try longest first.
COMP_TOKENS = tuple(sorted(COMP_CODES, key=len, reverse=True))
DEST_TOKENS = tuple(sorted(DEST_CODES, key=len, reverse=True))
JUMP_TOKENS = tuple(sorted(JUMP_CODES, key=len, reverse=True))

# ── Memory map ────────────────────────────────────────────────────────────────

PREDEFINED_SYMBOLS = {
    'SP':     0x0000,
    'LCL':    0x0001,
    'ARG':    0x0002,
    'THIS':   0x0003,
    'THAT':   0x0004,
    **{f'R{n}': n for n in range(16)},
    'SCREEN': 0x4000,
    'KBD':    0x6000,
}

VARIABLE_BASE = 16          # first RAM word after R15
ADDRESS_MASK  = 0x7FFF      # A-instructions carry 15 bits of value
MAX_CONSTANT  = 0xFFFF      # largest literal the parser accepts

# ── Error / warning helpers ───────────────────────────────────────────────────

class AsmError(Exception):
    def __init__(self, msg, filename=None, lineno=None):
        super().__init__(msg)
        self.msg      = msg
        self.filename = filename
        self.lineno   = lineno
    def __str__(self):
        loc = ''
        if self.filename:
            loc = f'{self.filename}'
        if self.lineno is not None:
            loc += f':{self.lineno}'
        return f'Error ({loc}): {self.msg}' if loc else f'Error: {self.msg}'


class ParseError(AsmError):
    """Source text the grammar cannot consume; `remainder` is what was left."""
    def __init__(self, msg, remainder, filename=None, lineno=None):
        super().__init__(msg, filename, lineno)
        self.remainder = remainder


class AsmSyntaxError(ParseError):
    pass


class TrailingInputError(ParseError):
    pass


class DuplicateSymbolError(AsmError):
    def __init__(self, name, filename=None, lineno=None):
        super().__init__(f"Duplicate symbol '{name}'", filename, lineno)
        self.name = name


class InternalError(AsmError):
    pass


warnings_issued = []

def warn(msg, filename=None, lineno=None):
    loc = ''
    if filename:
        loc = f'{filename}'
    if lineno is not None:
        loc += f':{lineno}'
    w = f'Warning ({loc}): {msg}' if loc else f'Warning: {msg}'
    warnings_issued.append(w)
    print(w, file=sys.stderr)

# ── Instructions ──────────────────────────────────────────────────────────────
# lineno is carried for diagnostics and listings only; it never takes part in
# equality, so two parses of the same text compare equal.

@dataclass(frozen=True)
class MemoryReference:
    address: object                 # int once resolved, str while symbolic
    lineno:  int = field(default=None, compare=False)

    @property
    def is_resolved(self):
        return isinstance(self.address, int)

    def __str__(self):
        return f'@{self.address}'


@dataclass(frozen=True)
class Compute:
    comp:   str
    dest:   str = None
    jump:   str = None
    lineno: int = field(default=None, compare=False)

    def __str__(self):
        s = self.comp
        if self.dest:
            s = f'{self.dest}={s}'
        if self.jump:
            s = f'{s};{self.jump}'
        return s


@dataclass(frozen=True)
class Label:
    name:   str
    lineno: int = field(default=None, compare=False)

    def __str__(self):
        return f'({self.name})'

# ── Parser ────────────────────────────────────────────────────────────────────

SYMBOL_RE   = re.compile(r'[A-Za-z_.:$][A-Za-z0-9_.:$]*')
CONSTANT_RE = re.compile(r'[0-9]+')
HSPACE_RE   = re.compile(r'[ \t]*')
COMMENT_RE  = re.compile(r'//[^\r\n]*')
BREAKS_RE   = re.compile(r'[ \t\r\n]+')


def _match_token(text, pos, tokens):
    """Return the first spelling in `tokens` found at text[pos:], or None."""
    for tok in tokens:
        if text.startswith(tok, pos):
            return tok
    return None


def _parse_memory_reference(text, pos):
    if not text.startswith('@', pos):
        return None
    pos += 1
    m = CONSTANT_RE.match(text, pos)
    if m:
        value = int(m.group())
        if value > MAX_CONSTANT:
            return None
        return MemoryReference(value), m.end()
    m = SYMBOL_RE.match(text, pos)
    if m:
        return MemoryReference(m.group()), m.end()
    return None


def _parse_compute(text, pos):
    dest = _match_token(text, pos, DEST_TOKENS)
    if dest is not None and text.startswith('=', pos + len(dest)):
        pos += len(dest) + 1
    else:
        dest = None

    comp = _match_token(text, pos, COMP_TOKENS)
    if comp is None:
        return None
    pos += len(comp)

    # An unknown jump leaves ';' unconsumed; the line trailer then rejects it.
    jump = None
    if text.startswith(';', pos):
        jump = _match_token(text, pos + 1, JUMP_TOKENS)
        if jump is not None:
            pos += 1 + len(jump)
    return Compute(comp, dest, jump), pos


def _parse_label(text, pos):
    if not text.startswith('(', pos):
        return None
    m = SYMBOL_RE.match(text, pos + 1)
    if not m or not text.startswith(')', m.end()):
        return None
    return Label(m.group()), m.end() + 1


def _parse_blank(text, pos):
    return None, HSPACE_RE.match(text, pos).end()


# Tried in order at every line start; the first that matches wins.
LINE_RULES = (
    _parse_memory_reference,
    _parse_compute,
    _parse_label,
    _parse_blank,
)


def _line_trailer(text, pos):
    """
    Consume  [spaces] [// comment] line-break(s)  and return the new position,
    or None when the trailer is missing.
    """
    pos = HSPACE_RE.match(text, pos).end()
    m = COMMENT_RE.match(text, pos)
    if m:
        pos = m.end()
    m = BREAKS_RE.match(text, pos)
    return m.end() if m else None


def _show(remainder):
    first = remainder.splitlines()[0] if remainder else ''
    return repr(first) if first else 'end of input'


def parse(text, filename='<string>'):
    """
    Parse Hack assembly source into a list of MemoryReference / Compute /
    Label instructions, in source order.  Blank and comment-only lines
    produce nothing.  Every line, including the last, must end with a line
    break.  Raises AsmSyntaxError or TrailingInputError on the first
    position that cannot be consumed; nothing is returned in that case.
    """
    instructions = []
    lineno = 1
    prev   = 0
    pos    = 0
    m = BREAKS_RE.match(text)
    if m:
        pos = m.end()

    while pos < len(text):
        lineno += text.count('\n', prev, pos)
        prev = pos

        for rule in LINE_RULES:
            result = rule(text, pos)
            if result is not None:
                break
        instr, end = result

        after = _line_trailer(text, end)
        if after is None:
            if instr is None:
                raise AsmSyntaxError(
                    f"Syntax error at {_show(text[end:])}",
                    text[end:], filename, lineno)
            raise TrailingInputError(
                f"Unexpected {_show(text[end:])} after '{instr}'",
                text[end:], filename, lineno)

        if instr is not None:
            instructions.append(replace(instr, lineno=lineno))
        pos = after

    return instructions

# ── Symbol table ──────────────────────────────────────────────────────────────

class SymbolTable:
    """
    Name -> address map for one assembly run.  Starts from the predefined
    symbols; pass 1 adds labels, pass 2 allocates variables from RAM 16 up.
    """

    def __init__(self):
        self._symbols      = dict(PREDEFINED_SYMBOLS)
        self.next_variable = VARIABLE_BASE
        self.labels        = []    # names, in binding order
        self.variables     = []

    def __contains__(self, name):
        return name in self._symbols

    def __getitem__(self, name):
        return self._symbols[name]

    def __len__(self):
        return len(self._symbols)

    def items(self):
        return self._symbols.items()

    def define_label(self, name, address, filename=None, lineno=None):
        if name in self._symbols:
            raise DuplicateSymbolError(name, filename, lineno)
        self._symbols[name] = address
        self.labels.append(name)

    def resolve(self, name):
        """Address of `name`, allocating the next variable slot if unknown."""
        if name not in self._symbols:
            self._symbols[name] = self.next_variable
            self.variables.append(name)
            self.next_variable += 1
        return self._symbols[name]

# ── Pass 1: collect labels ────────────────────────────────────────────────────

def pass1(instructions, symbols=None, filename=None):
    """
    First pass: bind every label to the address of the instruction after it.
    Returns the SymbolTable.  A label that reuses any existing name aborts
    with DuplicateSymbolError.
    """
    if symbols is None:
        symbols = SymbolTable()
    address = 0
    for instr in instructions:
        if isinstance(instr, Label):
            symbols.define_label(instr.name, address, filename, instr.lineno)
        elif isinstance(instr, (MemoryReference, Compute)):
            address += 1
        else:
            raise InternalError(f"Unknown instruction {instr!r}",
                                filename, getattr(instr, 'lineno', None))
    return symbols

# ── Encoder ───────────────────────────────────────────────────────────────────

def encode(instr):
    """Encode one resolved instruction as 16 '0'/'1' characters, MSB first."""
    if isinstance(instr, MemoryReference):
        if not instr.is_resolved:
            raise InternalError(f"Unresolved symbol in '{instr}'",
                                lineno=instr.lineno)
        return '0' + format(instr.address & ADDRESS_MASK, '015b')

    if isinstance(instr, Compute):
        try:
            comp = COMP_CODES[instr.comp]
            dest = DEST_CODES[instr.dest] if instr.dest else 0
            jump = JUMP_CODES[instr.jump] if instr.jump else 0
        except KeyError as e:
            raise InternalError(f"Cannot encode '{instr}': unknown field {e}",
                                lineno=instr.lineno)
        return f'111{comp:07b}{dest:03b}{jump:03b}'

    if isinstance(instr, Label):
        raise InternalError(f"Label '{instr.name}' has no binary form",
                            lineno=instr.lineno)

    raise InternalError(f"Unknown instruction {instr!r}")

# ── Pass 2: resolve and encode ────────────────────────────────────────────────

def pass2(instructions, symbols):
    """
    Second pass: resolve symbolic addresses (allocating variables on first
    use) and encode.  Returns (lines, listing) where listing holds
    (address, instruction, binary) with binary None for labels.
    """
    lines   = []
    listing = []
    address = 0

    for instr in instructions:
        if isinstance(instr, Label):
            listing.append((address, instr, None))
            continue

        if isinstance(instr, MemoryReference) and not instr.is_resolved:
            resolved = replace(instr, address=symbols.resolve(instr.address))
        else:
            resolved = instr

        binary = encode(resolved)
        lines.append(binary)
        listing.append((address, instr, binary))
        address += 1

    return lines, listing


def assemble(text, filename='<string>'):
    """Assemble source text, return the list of 16-character binary lines."""
    instructions = parse(text, filename)
    symbols = pass1(instructions, filename=filename)
    lines, _ = pass2(instructions, symbols)
    return lines

# ── Writers ───────────────────────────────────────────────────────────────────

def write_hack(lines, out_path):
    """Write machine code, one newline-terminated word per line."""
    with open(out_path, 'w') as fh:
        fh.write(''.join(f'{line}\n' for line in lines))


def write_listing(listing, symbols, out_path, src_path):
    """Write annotated listing file."""
    lines = []
    lines.append('// Hack Assembler listing')
    lines.append(f'// Source: {src_path}')
    lines.append('')

    for title, names in (('Labels', symbols.labels),
                         ('Variables', symbols.variables)):
        if names:
            lines.append(f'// {title}:')
            for name in names:
                val = symbols[name]
                lines.append(f'//   {name:<24} = 0x{val:04X}  ({val})')
            lines.append('')

    lines.append(f'{"Addr":>6}  {"Binary":<16}  Source')
    lines.append('-' * 72)

    for addr, instr, binary in listing:
        lines.append(f'  {addr:04X}  {binary or "":<16}  {instr}')

    with open(out_path, 'w') as fh:
        fh.write('\n'.join(lines) + '\n')

# ── Main ──────────────────────────────────────────────────────────────────────

def assemble_file(in_path, out_path, listing_path=None):
    """Assemble one .asm file.  Returns the number of instructions written."""
    with open(in_path, 'r', encoding='utf-8') as fh:
        text = fh.read()

    instructions = parse(text, in_path)
    symbols = pass1(instructions, filename=in_path)
    lines, listing = pass2(instructions, symbols)

    # Only touch the output once the whole file has assembled.
    write_hack(lines, out_path)
    if listing_path:
        write_listing(listing, symbols, listing_path, in_path)
    return len(lines)


def main(argv=None):
    parser = argparse.ArgumentParser(
        description='Hack 16-bit computer assembler',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__)
    parser.add_argument('inputs', nargs='*', metavar='input',
                        help='Assembly source files (.asm); stdin if omitted')
    parser.add_argument('-o', '--output',
                        help='Output file (default: <input>.hack, or stdout)')
    parser.add_argument('-l', '--listing', action='store_true',
                        help='Also write <output>.lst')
    args = parser.parse_args(argv)
    warnings_issued.clear()

    if args.output and len(args.inputs) > 1:
        parser.error('-o/--output needs exactly one input file')
    if args.listing and not args.inputs:
        parser.error('-l/--listing needs an input file')

    if not args.inputs:
        try:
            lines = assemble(sys.stdin.read(), '<stdin>')
            if args.output:
                write_hack(lines, args.output)
            else:
                sys.stdout.write(''.join(f'{line}\n' for line in lines))
        except AsmError as e:
            print(str(e), file=sys.stderr)
            return 1
        except OSError as e:
            print(f'Error: {e}', file=sys.stderr)
            return 1
        return 0

    failed = 0
    for in_path in args.inputs:
        stem, ext = os.path.splitext(in_path)
        if ext != '.asm':
            warn('Unsupported format', in_path)
            continue

        out_path = args.output or stem + '.hack'
        listing_path = os.path.splitext(out_path)[0] + '.lst' if args.listing else None

        try:
            count = assemble_file(in_path, out_path, listing_path)
            print(f'Wrote {count} instructions to {out_path}')
            if listing_path:
                print(f'Wrote listing to {listing_path}')
        except AsmError as e:
            print(str(e), file=sys.stderr)
            failed += 1
        except OSError as e:
            print(f'Error: {e}', file=sys.stderr)
            failed += 1

    if warnings_issued:
        print(f'{len(warnings_issued)} warning(s).', file=sys.stderr)
    return 1 if failed else 0


if __name__ == '__main__':
    sys.exit(main())
