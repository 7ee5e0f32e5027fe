#!/usr/bin/env python3
"""
miniforth.py — a tiny Forth-style evaluator for embedding.

One integer stack, one dictionary, colon definitions expanded in place.

Architecture:
  - Tokenizer: control chars to spaces, uppercase, split on whitespace
  - Resolver: token -> literal, or a copy of the word's dictionary body
  - Definition state machine: NORMAL / NAME / BODY, routes resolved items
    either to the output sequence or into the word being defined
  - Evaluator: runs the output sequence against the stack

Instruction set:
  ('LIT',   n)    push integer n
  ('ARITH', op)   + - * /  on the top two cells
  ('STACK', op)   DUP DROP SWAP OVER
  ('MARK',  m)    ':' or ';' (only seen by the definition state machine)

Values are 32-bit signed cells; arithmetic wraps around.
"""

import logging
import re
import sys
import unicodedata

log = logging.getLogger('miniforth')

CELL_BITS = 32
INT_MIN   = -(1 << (CELL_BITS - 1))
INT_MAX   = (1 << (CELL_BITS - 1)) - 1

COLON = ('MARK', ':')
SEMI  = ('MARK', ';')

BUILTINS = {
    'DUP':  (('STACK', 'DUP'),),
    'DROP': (('STACK', 'DROP'),),
    'SWAP': (('STACK', 'SWAP'),),
    'OVER': (('STACK', 'OVER'),),
    '+':    (('ARITH', '+'),),
    '-':    (('ARITH', '-'),),
    '*':    (('ARITH', '*'),),
    '/':    (('ARITH', '/'),),
    ':':    (COLON,),
    ';':    (SEMI,),
}

# Definition state machine states
NORMAL = 'NORMAL'   # top level: resolved items go to the output
NAME   = 'NAME'     # next token names the word being defined
BODY   = 'BODY'     # resolved items go into the word being defined


# ── Errors ────────────────────────────────────────────────────────────────────

class ForthError(Exception):
    pass


class DivisionByZero(ForthError):
    def __init__(self, msg='Division by zero'):
        super().__init__(msg)


class StackUnderflow(ForthError):
    def __init__(self, msg='Stack underflow'):
        super().__init__(msg)


class UnknownWord(ForthError):
    def __init__(self, word):
        self.word = word
        super().__init__(f'Undefined: {word}')


class InvalidWord(ForthError):
    def __init__(self, msg='Invalid word'):
        super().__init__(msg)


# ── Tokenizer ─────────────────────────────────────────────────────────────────

def tokenize(src: str) -> list:
    src = ''.join(' ' if unicodedata.category(c) == 'Cc' else c for c in src)
    return src.upper().split()


_NUM = re.compile(r'[+-]?[0-9]+')

def parse_num(s: str):
    """Return the cell value of a decimal literal, or None if *s* is not one."""
    if not _NUM.fullmatch(s):
        return None
    n = int(s, 10)
    if not INT_MIN <= n <= INT_MAX:
        return None
    return n


def wrap(n: int) -> int:
    return ((n - INT_MIN) & ((1 << CELL_BITS) - 1)) + INT_MIN


def trunc_div(b: int, a: int) -> int:
    q = abs(b) // abs(a)
    return -q if (a < 0) != (b < 0) else q


# ── Interpreter ───────────────────────────────────────────────────────────────

class Forth:
    def __init__(self, atomic=False):
        self.stack: list = []
        self.words: dict = dict(BUILTINS)
        self.atomic      = atomic

    # ── Public ────────────────────────────────────────────────────────────────

    def eval(self, line: str):
        """Run one line through tokenize -> parse -> execute.

        Raises the first ForthError met. Work already done stays done,
        unless the instance is atomic, in which case the stack and the
        dictionary are put back as they were before the call.
        """
        if self.atomic:
            saved = (list(self.stack), dict(self.words))
        try:
            self.execute(self.parse(tokenize(line)))
        except ForthError as e:
            log.debug('eval aborted: %s', e)
            if self.atomic:
                self.stack[:] = saved[0]
                self.words = saved[1]
            raise

    def render_stack(self) -> str:
        return ' '.join(str(v) for v in self.stack)

    def interpret(self, line: str) -> str:
        try:
            self.eval(line)
        except ForthError as e:
            return f'Error: {e}'
        out = self.render_stack()
        return f'{out} ok' if out else 'ok'

    def words_list(self) -> list:
        return list(self.words)

    def see(self, name: str) -> str:
        name = name.upper()
        body = self.words.get(name)
        if body is None:
            raise UnknownWord(name)
        if body is BUILTINS.get(name):
            return f': {name} <builtin> ;'
        return ' '.join([':', name] + [str(item[1]) for item in body] + [';'])

    # ── Resolver ──────────────────────────────────────────────────────────────

    def resolve(self, token: str) -> tuple:
        n = parse_num(token)
        if n is not None:
            return (('LIT', n),)
        body = self.words.get(token.upper())
        if body is None:
            raise UnknownWord(token)
        return body

    # ── Definition state machine ──────────────────────────────────────────────

    def parse(self, tokens) -> list:
        out   = []
        state = NORMAL
        name  = None

        for tok in tokens:
            if state == NORMAL:
                items = self.resolve(tok)
                if not items:
                    raise InvalidWord(f'Empty word: {tok}')
                if items[-1] == COLON:
                    state = NAME
                else:
                    out.extend(items)

            elif state == NAME:
                try:
                    items = self.resolve(tok)
                except UnknownWord:
                    items = ()
                if items and items[-1][0] == 'LIT':
                    raise InvalidWord(f'Cannot redefine number: {tok}')
                name = tok.upper()
                if name in self.words:
                    log.debug('redefining %s', name)
                self.words[name] = ()
                state = BODY

            else:
                items = self.resolve(tok)
                if not items:
                    raise InvalidWord(f'Empty word: {tok}')
                if items[-1] == SEMI:
                    log.debug('defined %s (%d items)', name, len(self.words[name]))
                    state = NORMAL
                else:
                    self.words[name] += items

        if state != NORMAL:
            raise InvalidWord(f'Unterminated definition: {name or ":"}')
        return out

    # ── Evaluator ─────────────────────────────────────────────────────────────

    def _pop(self):
        if not self.stack:
            raise StackUnderflow()
        return self.stack.pop()

    def _need(self, n):
        if len(self.stack) < n:
            raise StackUnderflow()

    def execute(self, code):
        s = self.stack
        for instr in code:
            op, arg = instr

            if op == 'LIT':
                s.append(arg)

            elif op == 'ARITH':
                a = self._pop(); b = self._pop()
                if   arg == '+': s.append(wrap(b + a))
                elif arg == '-': s.append(wrap(b - a))
                elif arg == '*': s.append(wrap(b * a))
                elif arg == '/':
                    if a == 0: raise DivisionByZero()
                    s.append(wrap(trunc_div(b, a)))
                else: raise ForthError(f'Bad arithmetic op: {arg}')

            elif op == 'STACK':
                if arg == 'DUP':
                    self._need(1); s.append(s[-1])
                elif arg == 'DROP':
                    self._pop()
                elif arg == 'SWAP':
                    a = self._pop(); b = self._pop()
                    s.append(a); s.append(b)
                elif arg == 'OVER':
                    self._need(2); s.append(s[-2])
                else: raise ForthError(f'Bad stack op: {arg}')

            elif op == 'MARK':
                continue   # stray ';' at top level is a no-op

            else:
                raise ForthError(f'Bad instruction: {op}')


# ── Tests ─────────────────────────────────────────────────────────────────────

def run_tests():
    # (lines, expected stack text or expected error class)
    cases = [
        # Arithmetic
        (['1 2 +'],                       '3'),
        (['3 4 -'],                       '-1'),
        (['6 7 *'],                       '42'),
        (['20 4 /'],                      '5'),
        (['-7 2 /'],                      '-3'),
        (['7 -2 /'],                      '-3'),
        (['1 0 /'],                       DivisionByZero),
        (['2147483647 1 +'],              '-2147483648'),
        (['-2147483648 -1 /'],            '-2147483648'),

        # Stack ops
        (['3 DUP'],                       '3 3'),
        (['3 DROP'],                      ''),
        (['3 4 SWAP'],                    '4 3'),
        (['1 2 OVER'],                    '1 2 1'),
        (['DROP'],                        StackUnderflow),
        (['1 OVER'],                      StackUnderflow),
        (['+'],                           StackUnderflow),

        # Case folding and whitespace
        (['1 dup Dup'],                   '1 1 1'),
        (['1\t2\n+'],                     '3'),
        (['  '],                          ''),

        # User-defined words
        ([': DOUBLE DUP + ; 5 DOUBLE'],   '10'),
        ([': SQUARE DUP * ;', '5 SQUARE'], '25'),
        ([': FOO DUP ;', ': DUP DROP ;', '3 FOO'], '3 3'),
        ([': FOO 5 0 + ;', ': BAR FOO ;', ': FOO 6 0 + ;', 'BAR FOO'], '5 6'),
        ([': NOTHING ;', ': NOTHING 1 ; NOTHING'], '1'),
        ([': SWAP DUP ;', '1 SWAP'],      '1 1'),
        ([': 1 DUP ;'],                   InvalidWord),
        ([': -5 DUP ;'],                  InvalidWord),
        ([': FOO 1 2'],                   InvalidWord),
        ([':'],                           InvalidWord),
        ([': EMPTY ;', 'EMPTY'],          InvalidWord),

        # Unknown words
        (['FROBNICATE'],                  UnknownWord),
        ([': FOO FROBNICATE ;'],          UnknownWord),
    ]

    passed = 0
    failures = []

    for lines, expected in cases:
        f = Forth()
        try:
            for line in lines:
                f.eval(line)
            got = f.render_stack()
        except ForthError as e:
            got = type(e)
        if got == expected:
            passed += 1
        else:
            failures.append((' / '.join(lines)[:60], expected, got))

    print(f'Tests: {passed}/{len(cases)} passed')
    for src, exp, got in failures:
        print(f'  FAIL: {src}')
        print(f'    exp: {exp!r}')
        print(f'    got: {got!r}')
    return passed, len(cases)


USAGE = """\
usage: python -m miniforth [-v] --test

  --test         run the built-in case table
  -v, --verbose  log definitions and aborted evaluations
"""


def main(argv=None):
    argv = sys.argv[1:] if argv is None else argv
    logging.basicConfig(level=logging.WARNING)
    if '-v' in argv or '--verbose' in argv:
        logging.getLogger().setLevel(logging.DEBUG)
    if '--test' in argv:
        p, t = run_tests()
        return 0 if p == t else 1
    print(USAGE, end='')
    return 2


if __name__ == '__main__':
    sys.exit(main())
