"""Gather a crate's LICENSE files and derive a license expression from their text."""

from __future__ import annotations

import enum
import struct
from dataclasses import dataclass, field
from pathlib import Path
from typing import Union

from . import spdx
from .diag import Label
from .krates import Krate
from .licenses_cfg import FileSource
from .licensestore import LicenseStore

_MASK = 0xFFFFFFFF
_PRIME1 = 2654435761
_PRIME2 = 2246822519
_PRIME3 = 3266489917
_PRIME4 = 668265263
_PRIME5 = 374761393


def _rotl(value: int, count: int) -> int:
    return ((value << count) | (value >> (32 - count))) & _MASK


def _round(acc: int, lane: int) -> int:
    acc = (acc + lane * _PRIME2) & _MASK
    return (_rotl(acc, 13) * _PRIME1) & _MASK


def license_hash(data: bytes | str) -> int:
    """The 32-bit xxHash (seed 0) of ``data``, used to fingerprint license texts."""
    if isinstance(data, str):
        data = data.encode("utf-8")
    length = len(data)
    stripes = length // 16 * 16

    if length >= 16:
        v1 = (_PRIME1 + _PRIME2) & _MASK
        v2 = _PRIME2
        v3 = 0
        v4 = (-_PRIME1) & _MASK
        for a, b, c, d in struct.iter_unpack("<4I", data[:stripes]):
            v1 = _round(v1, a)
            v2 = _round(v2, b)
            v3 = _round(v3, c)
            v4 = _round(v4, d)
        h = (_rotl(v1, 1) + _rotl(v2, 7) + _rotl(v3, 12) + _rotl(v4, 18)) & _MASK
    else:
        h = _PRIME5

    h = (h + length) & _MASK

    tail = data[stripes:]
    words = len(tail) // 4 * 4
    for (word,) in struct.iter_unpack("<I", tail[:words]):
        h = (h + word * _PRIME3) & _MASK
        h = (_rotl(h, 17) * _PRIME4) & _MASK
    for byte in tail[words:]:
        h = (h + byte * _PRIME5) & _MASK
        h = (_rotl(h, 11) * _PRIME1) & _MASK

    h ^= h >> 15
    h = (h * _PRIME2) & _MASK
    h ^= h >> 13
    h = (h * _PRIME3) & _MASK
    h ^= h >> 16
    return h


def _ends_with(path: Path, suffix: Path | str) -> bool:
    """Whether the trailing components of ``path`` are exactly those of ``suffix``."""
    tail = Path(suffix).parts
    parts = Path(path).parts
    return bool(tail) and len(tail) <= len(parts) and parts[-len(tail):] == tail


def find_license_files(directory: Path | str) -> list[Path]:
    """Regular files directly inside ``directory`` whose names start with ``LICENSE``."""
    return sorted(
        entry
        for entry in Path(directory).iterdir()
        if entry.name.startswith("LICENSE") and entry.is_file()
    )


@dataclass(frozen=True)
class LicenseFile:
    """The newline-normalized text of a license file and its hash."""

    hash: int
    content: str


@dataclass
class PackFile:
    """A license file path with either its contents or the error reading it."""

    path: Path
    data: Union[LicenseFile, OSError]


def get_file_source(path: Path | str) -> PackFile:
    """Read a license file, normalizing every line ending to a single ``\\n``."""
    path = Path(path)
    lines: list[str] = []
    try:
        with path.open("rb") as handle:
            for raw in handle:
                try:
                    line = raw.decode("utf-8")
                except UnicodeDecodeError:
                    break
                lines.append(line.rstrip("\r\n") + "\n")
    except OSError as err:
        return PackFile(path, err)

    content = "".join(lines)
    return PackFile(path, LicenseFile(license_hash(content), content))


class MismatchReason(enum.Enum):
    """Why a clarification's license file did not match what the crate holds."""

    FILE_NOT_FOUND = "file-not-found"
    ERROR = "error"
    HASH_DIFFERS = "hash-differs"


@dataclass
class LicensePack:
    """All the license files found for one crate."""

    license_files: list[PackFile] = field(default_factory=list)
    err: OSError | None = None

    @classmethod
    def read(cls, krate: Krate) -> LicensePack:
        """Collect the LICENSE files next to the crate manifest plus its ``license-file``."""
        if krate.manifest_path is None:
            raise ValueError(f"crate '{krate.name}' has no manifest path")
        root = Path(krate.manifest_path).parent

        try:
            paths = find_license_files(root)
        except OSError as err:
            return cls([], err)

        if krate.license_file and not any(_ends_with(p, krate.license_file) for p in paths):
            paths.append(root / krate.license_file)

        files = sorted((get_file_source(p) for p in paths), key=lambda pf: pf.path)
        return cls(files, None)

    def license_files_match(self, expected: FileSource) -> MismatchReason | None:
        """None if ``expected`` is present with the same hash, otherwise why not."""
        found = next(
            (lf for lf in self.license_files if _ends_with(lf.path, expected.path.value)),
            None,
        )
        if found is None:
            return MismatchReason.FILE_NOT_FOUND
        if isinstance(found.data, OSError):
            return MismatchReason.ERROR
        if found.data.hash != expected.hash:
            return MismatchReason.HASH_DIFFERS
        return None

    def get_expression(
        self,
        krate: Krate,
        file_id: int,
        store: LicenseStore,
        confidence: float,
    ) -> tuple[str, spdx.Expression | None, list[Label]]:
        """Identify each license file and join the licenses found with ``AND``.

        Returns the synthesized TOML describing the files, the expression (None
        when any file could not be identified) and labels, pointing into the
        TOML, for every file that failed.
        """
        if self.err is not None:
            synth = f'license-files = "{self.err}"'
            label = Label.secondary(
                file_id, range(17, len(synth) - 1), "unable to gather license files"
            )
            return synth, None, [label]

        if krate.manifest_path is None:
            raise ValueError(f"crate '{krate.name}' has no manifest path")
        root = Path(krate.manifest_path).parent

        ids: list[str] = []
        fails: list[Label] = []
        synth = "license-files = [\n"

        for pack_file in self.license_files:
            synth += f'    {{ path = "{pack_file.path.relative_to(root)}", '
            data = pack_file.data

            if isinstance(data, OSError):
                start = len(synth)
                synth += f'err = "{data}"'
                fails.append(
                    Label.secondary(
                        file_id, range(start + 7, len(synth) - 1), "unable to read license file"
                    )
                )
            else:
                synth += f"hash = 0x{data.hash:08x}, "
                found = store.scan(data.content)
                if found.license is not None and found.score >= confidence:
                    identified = spdx.license_id(found.license)
                    if identified is not None:
                        ids.append(identified)
                    else:
                        synth += f"score = {found.score:.2f}"
                        start = len(synth)
                        synth += f', license = "{found.license}"'
                        fails.append(
                            Label.secondary(
                                file_id,
                                range(start + 13, len(synth) - 1),
                                "unknown SPDX identifier",
                            )
                        )
                else:
                    # still show what the best guess was when the score is too low
                    start = len(synth)
                    synth += f"score = {found.score:.2f}"
                    end = len(synth)
                    if found.license is not None:
                        synth += f', license = "{found.license}"'
                    fails.append(
                        Label.secondary(
                            file_id,
                            range(start + 8, end),
                            "low confidence in the license text",
                        )
                    )

            synth += " },\n"

        synth += "]"

        if fails:
            return synth, None, fails
        return synth, spdx.Expression.parse(" AND ".join(ids)), []