"""Command-line option parsing that permutes non-option arguments to the end."""

from __future__ import annotations

import os
import sys
from typing import Iterator, Optional, Sequence, Tuple

Option = Tuple[Optional[str], Optional[str]]


class GetOpt:
    """Iterate over (option, argument) pairs of an argument vector.

    ``argv[0]`` is the program name. Unknown options and options lacking a
    required argument yield ``"?"`` with :attr:`optopt` set. If the option
    string starts with ``-``, non-option arguments are yielded in order as
    ``(None, argument)``; if it starts with ``+`` (or ``POSIXLY_CORRECT`` is
    set) parsing stops at the first non-option. Otherwise non-options are
    moved to the end of :attr:`argv`. After parsing, :attr:`optind` is the
    index of the first non-option argument in :attr:`argv`.
    """

    def __init__(self, argv: Sequence[str], optstring: str, opterr: bool = True) -> None:
        self.argv = list(argv)
        self.optstring = optstring
        self.opterr = opterr
        self.optind = 0
        self.optopt = "?"
        self._argc = len(self.argv)
        self._index = 1
        self._index2 = 1
        self._offset = 1
        self._dashdash = False
        self._nonopt = 0

    def __iter__(self) -> Iterator[Option]:
        return self

    def _at(self, i: int) -> Optional[str]:
        return self.argv[i] if 0 <= i < len(self.argv) else None

    def _increment_index(self) -> None:
        if self._index < self._index2:
            while True:
                self._index += 1
                arg = self._at(self._index)
                if not (
                    arg is not None
                    and not arg.startswith("-")
                    and self._index < self._index2 + 1
                ):
                    break
        else:
            self._index += 1
        self._offset = 1

    def _permute_once(self) -> bool:
        """Move the current argument to the end; return False if it was moved."""
        if self._index + self._nonopt >= self._argc:
            return True
        self.argv.append(self.argv.pop(self._index))
        self._nonopt += 1
        return False

    def _error(self, message: str, opt: str) -> None:
        if self.opterr:
            prog = self.argv[0] if self.argv else ""
            print(f"{prog}: {message} -- {opt}", file=sys.stderr)

    def __next__(self) -> Option:
        optarg: Optional[str] = None
        done = False
        opt: Optional[str] = None

        while True:
            optarg = None
            arg = self._at(self._index)
            if arg == "--":
                self._dashdash = True
                self._increment_index()
                arg = self._at(self._index)

            if arg is None:
                done = True
            elif self._dashdash or not arg.startswith("-") or arg == "-":
                if self.optstring.startswith("-"):
                    opt = None
                    optarg = arg
                    self._increment_index()
                elif self.optstring.startswith("+") or os.environ.get("POSIXLY_CORRECT"):
                    done = True
                    self._nonopt = self._argc - self._index
                elif not self._permute_once():
                    continue
                else:
                    done = True
            else:
                opt = arg[self._offset]
                self._offset += 1
                spec = self.optstring[1:] if self.optstring.startswith("-") else self.optstring
                pos = spec.find(opt)
                if pos < 0:
                    self._error("invalid option", opt)
                    self.optopt = opt
                    opt = "?"
                    self._increment_index()
                elif spec[pos + 1 : pos + 2] == ":":
                    optional = spec[pos + 2 : pos + 3] == ":"
                    rest = arg[self._offset :]
                    if rest:
                        optarg = rest
                        self._increment_index()
                    elif not optional:
                        if self._index2 < self._index:
                            self._index2 = self._index
                        while True:
                            self._index2 += 1
                            nxt = self._at(self._index2)
                            if not (nxt is not None and nxt.startswith("-")):
                                break
                        optarg = self._at(self._index2)
                        if self._index2 + self._nonopt >= self._argc:
                            optarg = None
                        self._increment_index()
                    else:
                        self._increment_index()

                    if optarg is None and not optional:
                        self.optopt = opt
                        opt = "?"
                        self._error("option requires an argument", self.optopt)
                elif self._offset >= len(arg):
                    self._increment_index()
            break

        if done:
            self.optind = self._argc - self._nonopt
            raise StopIteration
        self.optind = self._index
        return opt, optarg