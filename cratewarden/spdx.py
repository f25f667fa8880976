"""SPDX license identifiers, licensees and license expressions."""

from __future__ import annotations

import re
from collections import deque
from dataclasses import dataclass, field, replace
from functools import total_ordering
from typing import Callable, Iterator, Union

_LICENSE_IDS = frozenset(
    """
    0BSD AFL-3.0 AGPL-1.0 AGPL-3.0 AGPL-3.0-only AGPL-3.0-or-later Aladdin
    Apache-1.0 Apache-1.1 Apache-2.0 APSL-2.0 Artistic-1.0 Artistic-2.0
    BlueOak-1.0.0 BSD-1-Clause BSD-2-Clause BSD-2-Clause-Patent BSD-3-Clause
    BSD-3-Clause-Clear BSD-4-Clause BSL-1.0 CC-BY-3.0 CC-BY-4.0 CC-BY-SA-4.0
    CC0-1.0 CDDL-1.0 CDDL-1.1 CECILL-2.1 CPL-1.0 ECL-2.0 EPL-1.0 EPL-2.0
    EUPL-1.1 EUPL-1.2 FTL GFDL-1.3 GPL-1.0 GPL-2.0 GPL-2.0-only
    GPL-2.0-or-later GPL-3.0 GPL-3.0-only GPL-3.0-or-later HPND ICU IJG ISC
    LGPL-2.0 LGPL-2.0-only LGPL-2.0-or-later LGPL-2.1 LGPL-2.1-only
    LGPL-2.1-or-later LGPL-3.0 LGPL-3.0-only LGPL-3.0-or-later Libpng MIT
    MIT-0 MPL-1.1 MPL-2.0 MS-PL MS-RL NCSA Nokia OFL-1.1 OpenSSL OSL-3.0
    PostgreSQL PSF-2.0 Python-2.0 Ruby Unicode-3.0 Unicode-DFS-2016 Unlicense
    UPL-1.0 Vim W3C WTFPL X11 Zlib zlib-acknowledgement ZPL-2.1
    """.split()
)

_EXCEPTION_IDS = frozenset(
    """
    Autoconf-exception-3.0 Bison-exception-2.2 Classpath-exception-2.0
    Font-exception-2.0 GCC-exception-2.0 GCC-exception-3.1 Linux-syscall-note
    LLVM-exception LZMA-exception OCaml-LGPL-linking-exception
    openvpn-openssl-exception Qt-LGPL-exception-1.1 Swift-exception
    u-boot-exception-2.0 WxWindows-exception-3.1
    """.split()
)

_LICENSE_REF = re.compile(r"(DocumentRef-[A-Za-z0-9.\-]+:)?LicenseRef-[A-Za-z0-9.\-]+")
_TOKEN_RE = re.compile(
    r"(?P<ws>\s+)|(?P<paren>[()])|(?P<word>[A-Za-z0-9.+:\-]+)|(?P<bad>.)", re.S
)
_OPERATORS = frozenset({"AND", "OR", "WITH"})


def license_id(name: str) -> str | None:
    """The SPDX identifier ``name`` if it is a known license, otherwise None."""
    return name if name in _LICENSE_IDS else None


class ParseError(ValueError):
    """An SPDX text could not be parsed; ``span`` locates the offending part."""

    def __init__(self, original: str, span: range, reason: str) -> None:
        super().__init__(f"{reason} at {span.start}..{span.stop} in '{original}'")
        self.original = original
        self.span = span
        self.reason = reason


@total_ordering
@dataclass(frozen=True)
class LicenseReq:
    """A single license requirement, optionally with an exception or ``+``."""

    license: str
    exception: str | None = None
    or_later: bool = False

    def _key(self) -> tuple[str, str, bool]:
        return (self.license, self.exception or "", self.or_later)

    def __lt__(self, other: object) -> bool:
        if isinstance(other, LicenseReq):
            return self._key() < other._key()
        return NotImplemented

    def __str__(self) -> str:
        text = self.license + ("+" if self.or_later else "")
        return f"{text} WITH {self.exception}" if self.exception else text


@dataclass(frozen=True)
class _Token:
    text: str
    span: range


def _tokenize(text: str) -> deque[_Token]:
    tokens: deque[_Token] = deque()
    for match in _TOKEN_RE.finditer(text):
        kind = match.lastgroup
        if kind == "ws":
            continue
        span = range(match.start(), match.end())
        if kind == "bad":
            raise ParseError(text, span, "invalid character")
        tokens.append(_Token(match.group(), span))
    return tokens


def _is_known_license(name: str) -> bool:
    return license_id(name) is not None or _LICENSE_REF.fullmatch(name) is not None


def _license_token(text: str, token: _Token, allow_plus: bool) -> LicenseReq:
    name = token.text
    or_later = name.endswith("+")
    if or_later:
        if not allow_plus:
            raise ParseError(text, token.span, "a licensee cannot use the `+` operator")
        name = name[:-1]
    if token.text in _OPERATORS or token.text in "()":
        raise ParseError(text, token.span, "unexpected token")
    if not _is_known_license(name):
        raise ParseError(text, token.span, "unknown term")
    return LicenseReq(name, None, or_later)


def _exception_token(text: str, tokens: deque[_Token], with_token: _Token) -> _Token:
    if not tokens:
        raise ParseError(text, range(with_token.span.stop, len(text)), "expected an exception")
    exc = tokens.popleft()
    if exc.text not in _EXCEPTION_IDS:
        raise ParseError(text, exc.span, "unknown term")
    return exc


@total_ordering
@dataclass(frozen=True)
class Licensee:
    """A license, optionally with an exception, that a user accepts."""

    license: str
    exception: str | None = None

    @classmethod
    def parse(cls, text: str) -> Licensee:
        tokens = _tokenize(text)
        if not tokens:
            raise ParseError(text, range(0, len(text)), "empty expression")
        req = _license_token(text, tokens.popleft(), allow_plus=False)
        exception = None
        if tokens and tokens[0].text == "WITH":
            exception = _exception_token(text, tokens, tokens.popleft()).text
        if tokens:
            raise ParseError(text, tokens[0].span, "unexpected token")
        return cls(req.license, exception)

    def satisfies(self, req: LicenseReq) -> bool:
        """Whether this licensee meets the requirement ``req``."""
        return self.license == req.license and self.exception == req.exception

    def _key(self) -> tuple[str, str]:
        return (self.license, self.exception or "")

    def __lt__(self, other: object) -> bool:
        if isinstance(other, Licensee):
            return self._key() < other._key()
        return NotImplemented

    def __str__(self) -> str:
        return f"{self.license} WITH {self.exception}" if self.exception else self.license


@dataclass(frozen=True)
class _Req:
    req: LicenseReq
    span: range = field(compare=False)

    def reqs(self) -> Iterator[LicenseReq]:
        yield self.req

    def evaluate(self, predicate: Callable[[LicenseReq], bool]) -> bool:
        return bool(predicate(self.req))


@dataclass(frozen=True)
class _And:
    left: _Node
    right: _Node

    def reqs(self) -> Iterator[LicenseReq]:
        yield from self.left.reqs()
        yield from self.right.reqs()

    def evaluate(self, predicate: Callable[[LicenseReq], bool]) -> bool:
        return self.left.evaluate(predicate) and self.right.evaluate(predicate)


@dataclass(frozen=True)
class _Or:
    left: _Node
    right: _Node

    def reqs(self) -> Iterator[LicenseReq]:
        yield from self.left.reqs()
        yield from self.right.reqs()

    def evaluate(self, predicate: Callable[[LicenseReq], bool]) -> bool:
        return self.left.evaluate(predicate) or self.right.evaluate(predicate)


_Node = Union[_Req, _And, _Or]


class _Parser:
    def __init__(self, text: str) -> None:
        self.text = text
        self.tokens = _tokenize(text)

    def _peek(self, word: str) -> bool:
        return bool(self.tokens) and self.tokens[0].text == word

    def parse(self) -> _Node:
        if not self.tokens:
            raise ParseError(self.text, range(0, len(self.text)), "empty expression")
        node = self._or()
        if self.tokens:
            token = self.tokens[0]
            reason = "unopened parens" if token.text == ")" else "unexpected token"
            raise ParseError(self.text, token.span, reason)
        return node

    def _or(self) -> _Node:
        node = self._and()
        while self._peek("OR"):
            self.tokens.popleft()
            node = _Or(node, self._and())
        return node

    def _and(self) -> _Node:
        node = self._atom()
        while self._peek("AND"):
            self.tokens.popleft()
            node = _And(node, self._atom())
        return node

    def _atom(self) -> _Node:
        if not self.tokens:
            end = len(self.text)
            raise ParseError(self.text, range(end, end), "expected a license or `(`")
        token = self.tokens.popleft()
        if token.text == "(":
            node = self._or()
            if not self._peek(")"):
                raise ParseError(self.text, token.span, "unclosed parens")
            self.tokens.popleft()
            return node
        req = _license_token(self.text, token, allow_plus=True)
        span = token.span
        if self._peek("WITH"):
            exc = _exception_token(self.text, self.tokens, self.tokens.popleft())
            req = replace(req, exception=exc.text)
            span = range(token.span.start, exc.span.stop)
        return _Req(req, span)


class Expression:
    """A parsed SPDX license expression such as ``MIT OR Apache-2.0``."""

    def __init__(self, original: str, root: _Node) -> None:
        self._original = original
        self._root = root

    @classmethod
    def parse(cls, text: str) -> Expression:
        return cls(text, _Parser(text).parse())

    def requirements(self) -> Iterator[LicenseReq]:
        """Every license requirement, in the order it appears."""
        return self._root.reqs()

    def evaluate(self, predicate: Callable[[LicenseReq], bool]) -> bool:
        """Whether the expression holds when each requirement is judged by ``predicate``."""
        return self._root.evaluate(predicate)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Expression):
            return self._root == other._root
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._root)

    def __str__(self) -> str:
        return self._original

    def __repr__(self) -> str:
        return f"Expression({self._original!r})"